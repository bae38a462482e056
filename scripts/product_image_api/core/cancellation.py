"""Cooperative cancellation for generation calls."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, wait
from typing import Callable, Optional, TypeVar

from .errors import GenerationCancelled

T = TypeVar("T")

_POLL_INTERVAL = 0.05


class CancelToken:
    """Threading-event backed token with an optional deadline.

    One token may be shared by every call of a batch; cancelling it aborts
    backoff sleeps, image fetches and in-flight transport calls.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise GenerationCancelled("Generation cancelled by caller")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise as soon as the token fires."""
        end = time.monotonic() + max(0.0, seconds)
        while True:
            self.raise_if_cancelled()
            left = end - time.monotonic()
            if left <= 0:
                return
            wait_for = left
            remaining = self.remaining()
            if remaining is not None:
                wait_for = min(wait_for, remaining + _POLL_INTERVAL)
            self._event.wait(wait_for)

    def run(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` on a worker thread and stop waiting when cancelled.

        The worker is abandoned on cancel; its eventual result is discarded.
        """
        self.raise_if_cancelled()
        future: Future = Future()

        def _target() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn())
            except BaseException as exc:  # handed back to the waiting caller
                future.set_exception(exc)

        worker = threading.Thread(target=_target, name="generation-call", daemon=True)
        worker.start()
        while not future.done():
            if self.cancelled:
                raise GenerationCancelled("Generation cancelled by caller")
            wait([future], timeout=_POLL_INTERVAL)
        return future.result()


def run_cancellable(fn: Callable[[], T], cancel: Optional[CancelToken]) -> T:
    if cancel is None:
        return fn()
    return cancel.run(fn)


def sleep_cancellable(seconds: float, cancel: Optional[CancelToken]) -> None:
    if seconds <= 0:
        if cancel is not None:
            cancel.raise_if_cancelled()
        return
    if cancel is None:
        time.sleep(seconds)
        return
    cancel.sleep(seconds)
