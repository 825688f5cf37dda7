"""Single-threaded timer loops.

Each sandbox (host page side, isolated logic side) runs every callback on exactly
one loop, so component state is only ever touched from one thread:
- TimerLoop: real time, one daemon thread per loop.
- ManualLoop: virtual time advanced explicitly (tests, offline replays).

Ordering: callbacks run in (due time, scheduling order). Two callbacks scheduled
for the same instant from the same thread therefore run in the order they were
scheduled.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

_LOGGER = logging.getLogger("chat_helpers.loop")


class TimerHandle:
    """Cancellable handle for one scheduled callback."""

    __slots__ = ("due_ms", "seq", "callback", "args", "cancelled")

    def __init__(self, due_ms: int, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self.due_ms = due_ms
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: TimerHandle) -> bool:
        return (self.due_ms, self.seq) < (other.due_ms, other.seq)


class Loop(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


def _run_handle(handle: TimerHandle) -> None:
    try:
        handle.callback(*handle.args)
    except Exception:
        # A failing callback must never take the loop down with it.
        _LOGGER.exception("loop callback failed: %r", handle.callback)


class ManualLoop:
    """Deterministic loop driven by `advance()`."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now = int(start_ms)
        self._heap: list[TimerHandle] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(self._now + max(0, int(delay_ms)), next(self._seq), callback, args)
        heapq.heappush(self._heap, handle)
        return handle

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.call_later(0, callback, *args)

    def pending(self) -> int:
        return sum(1 for h in self._heap if not h.cancelled)

    def advance_to(self, target_ms: int) -> None:
        """Run every callback due at or before `target_ms`, moving the clock along."""
        target = int(target_ms)
        while self._heap and self._heap[0].due_ms <= target:
            handle = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, handle.due_ms)
            _run_handle(handle)
        self._now = max(self._now, target)

    def advance(self, delta_ms: int) -> None:
        self.advance_to(self._now + max(0, int(delta_ms)))

    def run_until_idle(self) -> None:
        """Run everything already due without moving the clock."""
        self.advance_to(self._now)


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class TimerLoop:
    """Real-time loop running callbacks on one daemon thread."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._cond = threading.Condition()
        self._heap: list[TimerHandle] = []
        self._seq = itertools.count()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def in_loop_thread(self) -> bool:
        return self._thread is threading.current_thread()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        t = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread = t
        t.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        with self._cond:
            self._heap.clear()
            self._cond.notify_all()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=timeout)
        self._thread = None

    def call_later(self, delay_ms: int, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        with self._cond:
            handle = TimerHandle(_monotonic_ms() + max(0, int(delay_ms)), next(self._seq), callback, args)
            heapq.heappush(self._heap, handle)
            self._cond.notify()
        return handle

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.call_later(0, callback, *args)

    def _next_due(self) -> TimerHandle | None:
        """Pop the next runnable handle, waiting for it (called with the lock held)."""
        while not self._stop.is_set():
            while self._heap and self._heap[0].cancelled:
                heapq.heappop(self._heap)
            if not self._heap:
                self._cond.wait(timeout=0.5)
                continue
            wait_ms = self._heap[0].due_ms - _monotonic_ms()
            if wait_ms > 0:
                self._cond.wait(timeout=wait_ms / 1000.0)
                continue
            return heapq.heappop(self._heap)
        return None

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._cond:
                handle = self._next_due()
            if handle is None:
                break
            if handle.cancelled:
                continue
            _run_handle(handle)


__all__ = ["Loop", "ManualLoop", "TimerHandle", "TimerLoop"]
