"""
Cancellation signal and OS interrupt bridge.

A CancelSignal is a one-shot flag shared between the workflow and anything
it awaits. The SignalBridge turns SIGINT/SIGTERM into a single cancel() call
from an event loop callback, so the step that is currently awaiting is never
preempted: it notices the cancellation at its next check or wait.
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional

import structlog

from chartflow.core.errors import InstallationCancelledError

logger = structlog.get_logger()

INTERRUPTED = "interrupted"
DEADLINE_EXCEEDED = "deadline exceeded"
DECLINED = "declined"

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

CancelCallback = Callable[[str], None]


class CancelSignal:
    """One-shot cancellation signal for a workflow run.

    Children created through ``deadline()`` fire when their parent fires or
    when their own deadline expires, whichever comes first.
    """

    def __init__(self, parent: Optional["CancelSignal"] = None) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: List[CancelCallback] = []
        self._parent = parent
        self._timer: Optional[asyncio.TimerHandle] = None
        if parent is not None:
            if parent.cancelled:
                self.cancel(parent.reason or INTERRUPTED)
            else:
                parent.on_cancel(self.cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def deadline_exceeded(self) -> bool:
        return self._reason == DEADLINE_EXCEEDED

    def cancel(self, reason: str = INTERRUPTED) -> bool:
        """Fire the signal. Returns True only for the call that fired it."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)
        return True

    def on_cancel(self, callback: CancelCallback) -> None:
        """Run callback(reason) once when the signal fires."""
        if self.cancelled:
            callback(self._reason or INTERRUPTED)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: CancelCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise InstallationCancelledError(self._reason or INTERRUPTED)

    async def wait(self) -> None:
        """Block until the signal fires."""
        await self._event.wait()

    async def sleep(self, delay: float) -> None:
        """Sleep for delay seconds unless the signal fires first.

        Raises InstallationCancelledError if the signal is (or becomes) set.
        """
        self.raise_if_cancelled()
        if delay > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                return
        self.raise_if_cancelled()

    @contextmanager
    def deadline(self, seconds: float) -> Iterator["CancelSignal"]:
        """Yield a child signal that also fires after ``seconds``."""
        child = CancelSignal(parent=self)
        if not child.cancelled:
            loop = asyncio.get_running_loop()
            child._timer = loop.call_later(seconds, child.cancel, DEADLINE_EXCEEDED)
        try:
            yield child
        finally:
            child.detach()

    def detach(self) -> None:
        """Stop following the parent and drop any pending deadline."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._parent is not None:
            self._parent.remove_callback(self.cancel)
            self._parent = None


class SignalBridge:
    """Turns OS interrupt/termination signals into one CancelSignal.cancel().

    Use as a context manager inside a running event loop; handlers are
    removed on exit regardless of how the block ends.
    """

    def __init__(
        self,
        cancel_signal: CancelSignal,
        signals: Iterable[int] = DEFAULT_SIGNALS,
    ) -> None:
        self._cancel_signal = cancel_signal
        self._signals = tuple(signals)
        self._installed: List[int] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._fired = False
        self.deliveries = 0

    @property
    def interrupted(self) -> bool:
        """Whether a delivered signal fired the cancellation."""
        return self._fired

    def __enter__(self) -> "SignalBridge":
        self._loop = asyncio.get_running_loop()
        for signum in self._signals:
            try:
                self._loop.add_signal_handler(signum, self._on_signal, signum)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.warning(
                    "signal_handler_unavailable",
                    signal=_signal_name(signum),
                    error=str(exc),
                )
                continue
            self._installed.append(signum)
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._loop is not None:
            for signum in self._installed:
                self._loop.remove_signal_handler(signum)
        self._installed.clear()
        self._loop = None

    def _on_signal(self, signum: int) -> None:
        self.deliveries += 1
        name = _signal_name(signum)
        if self._cancel_signal.cancel(INTERRUPTED):
            self._fired = True
            logger.info("installation_interrupted", signal=name)
        else:
            logger.debug("interrupt_ignored", signal=name, deliveries=self.deliveries)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
