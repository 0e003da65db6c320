import asyncio

from .cancellation import CancellableWait
from .errors import BuildFailed, SourceUnavailable
from .logger import get_logger
from .models import BuildSignal, BuildUpdate, DeploymentLifecycle, DeploymentState, EventKind

FORWARDED_KINDS = {
    EventKind.BUILD_START.value: BuildSignal.BUILD_START,
    EventKind.COMMAND.value: BuildSignal.COMMAND,
    EventKind.STDOUT.value: BuildSignal.STDOUT,
    EventKind.STDERR.value: BuildSignal.STDERR,
}


def trim_text(text):
    """Drop one trailing and one leading newline"""
    if text.endswith("\n"):
        text = text[:-1]
    if text.startswith("\n"):
        text = text[1:]
    return text


class BuildEventConsumer:
    """Single forward pass over a build event stream until a terminal state"""

    def __init__(self):
        self.logger = get_logger("consumer")

    async def consume(self, events, on_event=None, cancel=None, deployment_id=None):
        """Fold `events` (an async iterable of BuildEvent) into a lifecycle state.

        Returns DeploymentState.READY once the build completes. Raises BuildFailed
        on an ERROR state, SourceUnavailable if the stream breaks or ends before a
        terminal state, WaitCancelled if `cancel` is aborted.
        """
        cancel = cancel if cancel is not None else CancellableWait(signals=())
        lifecycle = DeploymentLifecycle()
        last_sequence = None
        iterator = events.__aiter__()

        try:
            while True:
                cancel.checkpoint()
                try:
                    event = await cancel.call(iterator.__anext__())
                except StopAsyncIteration:
                    self.logger.error(f"Event stream ended in state {lifecycle.value}")
                    raise SourceUnavailable(
                        f"Event stream ended before the build finished (last state {lifecycle.value})")
                except SourceUnavailable:
                    raise
                except (ConnectionError, TimeoutError, asyncio.TimeoutError) as e:
                    raise SourceUnavailable(f"Event stream failed: {e}", cause=e) from e

                if last_sequence is not None and event.sequence < last_sequence:
                    self.logger.warning(f"Event {event.sequence} arrived after {last_sequence}")
                last_sequence = event.sequence

                kind = getattr(event.kind, "value", event.kind)
                if kind == EventKind.STATE_CHANGE.value:
                    state = self._on_state_change(lifecycle, event, on_event, deployment_id)
                    if state is not None:
                        return state
                elif kind in FORWARDED_KINDS:
                    if on_event is not None:
                        on_event(BuildUpdate(FORWARDED_KINDS[kind], trim_text(event.text), event))
                else:
                    self.logger.debug(f"Ignoring event {event.sequence} of type {event.kind!r}")
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _on_state_change(self, lifecycle, event, on_event, deployment_id):
        moved = lifecycle.advance(event.state)
        if moved:
            self.logger.debug(f"Deployment state is now {lifecycle.value}")
        else:
            self.logger.debug(f"Ignoring state-change to {event.state} (current {lifecycle.value})")

        if lifecycle.value == DeploymentState.READY.value:
            self.logger.info("Build completed")
            if on_event is not None:
                on_event(BuildUpdate(BuildSignal.COMPLETED, "Build completed", event))
            return DeploymentState.READY
        if lifecycle.value == DeploymentState.ERROR.value:
            self.logger.error("Build failed")
            if on_event is not None:
                on_event(BuildUpdate(BuildSignal.FAILED, "Build failed", event))
            raise BuildFailed(deployment_id, event)
        return None
