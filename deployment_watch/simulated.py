import asyncio

from .errors import DeploymentNotFound, SourceUnavailable
from .models import BuildEvent, RegionObservation


class ScriptedStatusSource:
    """In-memory stand-in for the remote platform.

    `snapshots` is a list of {region_id: instance_count} dicts, one per
    snapshot fetch; the last one repeats once the script runs out.
    `fail_cycles` holds 1-based fetch numbers that raise SourceUnavailable.
    """

    def __init__(self, snapshots=None, fail_cycles=None, delay=0, events=None, deployment=None, event_delay=0):
        self.snapshots = list(snapshots or [{}])
        self.fail_cycles = set(fail_cycles or ())
        self.delay = delay
        self.events = list(events or [])
        self.deployment = deployment
        self.event_delay = event_delay
        self.snapshot_calls = 0
        self.scale_requests = []
        self.streams = []

    async def get_deployment(self, deployment_id):
        if self.deployment is None or deployment_id not in (self.deployment.uid, self.deployment.url):
            raise DeploymentNotFound(deployment_id)
        return self.deployment

    async def get_snapshot(self, deployment_id):
        self.snapshot_calls += 1
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if self.snapshot_calls in self.fail_cycles:
            raise SourceUnavailable(f"Simulated snapshot failure #{self.snapshot_calls}")
        counts = self.snapshots[min(self.snapshot_calls, len(self.snapshots)) - 1]
        return {region_id: RegionObservation(region_id, count) for region_id, count in counts.items()}

    async def set_scale(self, deployment_id, constraints):
        self.scale_requests.append((deployment_id, dict(constraints)))

    def stream_events(self, deployment_id, follow=True):
        stream = ScriptedEventStream(self.events, delay=self.event_delay)
        self.streams.append((follow, stream))
        return stream


class ScriptedEventStream:
    """Async iterator over scripted events.

    Items may be BuildEvents, wire dicts, or an exception instance which is
    raised at that point to simulate a severed connection. Tracks how many
    events were actually pulled.
    """

    def __init__(self, items, delay=0):
        self.items = list(items)
        self.delay = delay
        self.delivered = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or self.delivered >= len(self.items):
            raise StopAsyncIteration
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        item = self.items[self.delivered]
        self.delivered += 1
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            return BuildEvent.from_wire(item, self.delivered - 1)
        return item

    async def aclose(self):
        self.closed = True
