import asyncio
import os
import signal
import time
import pytest
from deployment_watch.cancellation import CancellableWait
from deployment_watch.consumer import BuildEventConsumer
from deployment_watch.errors import WaitCancelled
from deployment_watch.models import BuildEvent, RegionConstraint, VerifyConfig
from deployment_watch.poller import ConvergencePoller
from deployment_watch.simulated import ScriptedEventStream, ScriptedStatusSource


class TestCancellableWait:
    """Abort handling and scoped signal registration."""

    @pytest.mark.asyncio
    async def test_abort_is_idempotent(self):
        calls = []
        wait = CancellableWait(signals=(), on_abort=calls.append)

        assert wait.abort("first") is True
        assert wait.abort("second") is False
        assert wait.reason == "first"
        assert calls == ["first"]
        with pytest.raises(WaitCancelled) as exc_info:
            wait.checkpoint()
        assert exc_info.value.reason == "first"

    @pytest.mark.asyncio
    async def test_sleep_is_interrupted(self):
        wait = CancellableWait(signals=())
        asyncio.get_running_loop().call_later(0.05, wait.abort, "operator")

        start_time = time.time()
        with pytest.raises(WaitCancelled):
            await wait.sleep(10)
        assert time.time() - start_time < 1.0

    @pytest.mark.asyncio
    async def test_sleep_runs_full_duration_without_abort(self):
        wait = CancellableWait(signals=())
        start_time = time.time()
        await wait.sleep(0.05)
        assert time.time() - start_time >= 0.04
        assert wait.cancelled is False

    @pytest.mark.asyncio
    async def test_call_discards_result_after_abort(self):
        wait = CancellableWait(signals=())
        finished = []

        async def network_call():
            await asyncio.sleep(0.05)
            finished.append(True)
            return "snapshot"

        asyncio.get_running_loop().call_later(0.01, wait.abort)
        with pytest.raises(WaitCancelled):
            await wait.call(network_call())
        # the call itself ran to completion
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_only_one_signal_wait_at_a_time(self):
        async with CancellableWait():
            with pytest.raises(RuntimeError, match="cancellable wait already active"):
                async with CancellableWait():
                    pass
        # released, so a new one can be acquired
        async with CancellableWait():
            assert CancellableWait._active is not None
        assert CancellableWait._active is None

    @pytest.mark.asyncio
    async def test_released_on_error_path(self):
        with pytest.raises(ValueError):
            async with CancellableWait():
                raise ValueError("boom")
        assert CancellableWait._active is None

    @pytest.mark.asyncio
    async def test_signal_wait_does_not_block_signal_free_waits(self):
        async with CancellableWait():
            async with CancellableWait(signals=()) as inner:
                assert inner.cancelled is False

    @pytest.mark.asyncio
    async def test_sigint_aborts_wait(self):
        async with CancellableWait() as wait:
            os.kill(os.getpid(), signal.SIGINT)
            with pytest.raises(WaitCancelled) as exc_info:
                await wait.sleep(5)
        assert exc_info.value.reason == "signal SIGINT"


class TestCancellingLoops:
    """Loops stop at their next checkpoint after an abort."""

    @pytest.mark.asyncio
    async def test_poller_stops_after_abort(self):
        source = ScriptedStatusSource(snapshots=[{"sfo1": 0}])
        wait = CancellableWait(signals=())
        asyncio.get_running_loop().call_later(0.05, wait.abort, "operator")

        with pytest.raises(WaitCancelled):
            await ConvergencePoller(source).wait_for_convergence(
                "dep1", {"sfo1": RegionConstraint(1, 1)},
                VerifyConfig(deadline_s=10, poll_interval_s=1.0), cancel=wait)
        assert source.snapshot_calls == 1

    @pytest.mark.asyncio
    async def test_double_abort_same_as_single(self):
        results = []
        for aborts in (1, 2):
            source = ScriptedStatusSource(snapshots=[{"sfo1": 0}])
            wait = CancellableWait(signals=())
            for _ in range(aborts):
                wait.abort("operator")
            with pytest.raises(WaitCancelled) as exc_info:
                await ConvergencePoller(source).wait_for_convergence(
                    "dep1", {"sfo1": RegionConstraint(1, 1)}, VerifyConfig(), cancel=wait)
            results.append((source.snapshot_calls, exc_info.value.reason))
        assert results[0] == results[1]

    @pytest.mark.asyncio
    async def test_consumer_stops_after_abort(self):
        events = [BuildEvent(i, "stdout", {"text": str(i)}) for i in range(5)]
        wait = CancellableWait(signals=())
        seen = []

        def on_event(update):
            seen.append(update.text)
            if update.text == "1":
                wait.abort("operator")

        stream = ScriptedEventStream(events)
        with pytest.raises(WaitCancelled):
            await BuildEventConsumer().consume(stream, on_event=on_event, cancel=wait)
        assert seen == ["0", "1"]
        assert stream.closed is True
