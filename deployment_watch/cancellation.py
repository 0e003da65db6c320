import asyncio
import signal

from .errors import WaitCancelled
from .logger import get_logger

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class CancellableWait:
    """Operator-abortable scope for a poll or consume loop.

    Use as ``async with CancellableWait() as wait:``. On entry the process
    signal handlers are registered, on every exit path they are removed again.
    Only one signal-registering wait may be active at a time. Loops call
    ``checkpoint()`` between iterations and ``sleep()`` between polls; once
    aborted both raise WaitCancelled. Aborting never touches remote state.
    """

    _active = None

    def __init__(self, signals=DEFAULT_SIGNALS, on_abort=None):
        self.signals = tuple(signals or ())
        self.on_abort = on_abort
        self.reason = None
        self._aborted = asyncio.Event()
        self._registered = []
        self.logger = get_logger("cancel")

    @property
    def cancelled(self):
        return self._aborted.is_set()

    async def __aenter__(self):
        if self.signals:
            if CancellableWait._active is not None:
                raise RuntimeError("cancellable wait already active")
            CancellableWait._active = self
            loop = asyncio.get_running_loop()
            try:
                for sig in self.signals:
                    try:
                        loop.add_signal_handler(sig, self.abort, f"signal {sig.name}")
                    except NotImplementedError:
                        # Windows event loops have no signal handler support
                        self.logger.debug(f"Cannot watch {sig.name} on this platform")
                        continue
                    self._registered.append(sig)
            except BaseException:
                self._release(loop)
                raise
            self.logger.debug(f"Watching {', '.join(s.name for s in self._registered)} for abort")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.signals:
            self._release(asyncio.get_running_loop())
        return False

    def _release(self, loop):
        for sig in self._registered:
            loop.remove_signal_handler(sig)
        self._registered = []
        if CancellableWait._active is self:
            CancellableWait._active = None

    def abort(self, reason="aborted"):
        """Request the loop to stop at its next checkpoint. Only the first call counts."""
        if self._aborted.is_set():
            self.logger.debug(f"Ignoring repeated abort ({reason})")
            return False
        self.reason = reason
        self._aborted.set()
        self.logger.info(f"Wait aborted: {reason}")
        if self.on_abort is not None:
            self.on_abort(reason)
        return True

    def checkpoint(self):
        if self._aborted.is_set():
            raise WaitCancelled(self.reason)

    async def sleep(self, seconds):
        """Sleep that returns early with WaitCancelled when aborted"""
        self.checkpoint()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._aborted.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self.checkpoint()

    async def call(self, awaitable):
        """Run a network call to completion, then drop its result if aborted meanwhile"""
        result = await awaitable
        self.checkpoint()
        return result
