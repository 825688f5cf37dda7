"""Activity-quiescence detector.

Infers "the streamed answer has finished" from request timing alone:
- every matching request increments an in-flight counter;
- the first increment after a settle emits exactly one `start`;
- each completion (success, error or abort alike) decrements and re-arms a
  silence timer;
- when the timer fires with nothing in flight (and the optional validation hook
  agrees) a single `settle` is emitted.

Payloads are never inspected. All methods must be called from the owning loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Literal

from .loop import Loop, TimerHandle

_LOGGER = logging.getLogger("chat_helpers.detector")

DEFAULT_SILENCE_THRESHOLD_MS = 3000
VALIDATION_POLL_MS = 1000

TRANSPORT_STREAM = "stream"
TRANSPORT_XHR = "xhr"
TRANSPORTS = frozenset({TRANSPORT_STREAM, TRANSPORT_XHR})

Transport = Literal["stream", "xhr"]


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """URL substrings to watch and the silence needed before settling."""

    url_patterns: frozenset[str]
    silence_threshold_ms: int = DEFAULT_SILENCE_THRESHOLD_MS

    @classmethod
    def create(cls, url_patterns: Iterable[str], silence_threshold_ms: int | None = None) -> MonitorConfig:
        patterns = frozenset(str(p) for p in (url_patterns or ()) if isinstance(p, str) and p)
        try:
            threshold = int(silence_threshold_ms or 0)
        except (TypeError, ValueError):
            threshold = 0
        if threshold <= 0:
            threshold = DEFAULT_SILENCE_THRESHOLD_MS
        return cls(url_patterns=patterns, silence_threshold_ms=threshold)

    def matches(self, url: str | None) -> bool:
        if not url or not self.url_patterns:
            return False
        return any(pattern in url for pattern in self.url_patterns)


@dataclass(frozen=True, slots=True)
class ActivityEvent:
    kind: Literal["start", "settle"]
    url: str
    timestamp_ms: int
    transport: Transport | None = None


@dataclass(frozen=True, slots=True)
class SettleContext:
    """What the validation hook sees when a settle is about to be emitted."""

    active_count: int
    last_url: str
    timestamp_ms: int
    polls: int = 0


@dataclass(eq=False, slots=True)
class ActivityTicket:
    """One tracked request; finishing it performs its single decrement."""

    url: str
    transport: Transport
    epoch: int
    done: bool = field(default=False)


class ActivityQuiescenceDetector:
    def __init__(
        self,
        loop: Loop,
        *,
        on_start: Callable[[ActivityEvent], None] | None = None,
        on_settle: Callable[[ActivityEvent], None] | None = None,
        dom_validation: Callable[[SettleContext], bool] | None = None,
    ) -> None:
        self._loop = loop
        self._on_start = on_start
        self._on_settle = on_settle
        self._dom_validation = dom_validation

        self._config: MonitorConfig | None = None
        self._monitoring = False
        self._epoch = 0
        self._active = 0
        self._has_triggered_start = False
        self._last_url = ""
        self._timer: TimerHandle | None = None
        self._polls = 0

    # Introspection -------------------------------------------------------

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def has_triggered_start(self) -> bool:
        return self._has_triggered_start

    @property
    def config(self) -> MonitorConfig | None:
        return self._config

    # Lifecycle -----------------------------------------------------------

    def start(self, config: MonitorConfig) -> None:
        if self._monitoring:
            return
        self._config = config
        self._epoch += 1
        self._monitoring = True
        _LOGGER.info(
            "monitor started patterns=%s silence_ms=%d",
            sorted(config.url_patterns),
            config.silence_threshold_ms,
        )

    def stop(self) -> None:
        if not self._monitoring:
            return
        self._cancel_timer()
        self._monitoring = False
        self._active = 0
        self._has_triggered_start = False
        self._last_url = ""
        self._polls = 0
        _LOGGER.info("monitor stopped")

    # Interception entry points --------------------------------------------

    def is_target_url(self, url: str | None) -> bool:
        return self._config is not None and self._config.matches(url)

    def track(self, url: str, transport: Transport) -> ActivityTicket | None:
        """Register an outbound request; returns None when it is not watched."""
        if not self._monitoring or not self.is_target_url(url):
            return None

        self._active += 1
        self._last_url = url
        self._cancel_timer()

        if not self._has_triggered_start:
            self._has_triggered_start = True
            self._emit(
                self._on_start,
                ActivityEvent(kind="start", url=url, timestamp_ms=self._loop.now_ms(), transport=transport),
            )
        return ActivityTicket(url=url, transport=transport, epoch=self._epoch)

    def finish(self, ticket: ActivityTicket | None) -> None:
        """Resolve a tracked request (body drained, failed or aborted)."""
        if ticket is None or ticket.done:
            return
        ticket.done = True
        if not self._monitoring or self._config is None:
            return
        if ticket.epoch != self._epoch:
            # Dispatched before a stop()/start() cycle; still decrements (clamped).
            _LOGGER.debug("stale ticket finished url=%s", ticket.url)
        self._active = max(0, self._active - 1)
        self._schedule_check(self._config.silence_threshold_ms)

    # Settle timing ---------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_check(self, delay_ms: int) -> None:
        self._cancel_timer()
        self._timer = self._loop.call_later(delay_ms, self._try_settle)

    def _try_settle(self) -> None:
        self._timer = None
        if not self._monitoring or self._active > 0:
            return

        if self._dom_validation is not None:
            ctx = SettleContext(
                active_count=self._active,
                last_url=self._last_url,
                timestamp_ms=self._loop.now_ms(),
                polls=self._polls,
            )
            try:
                ok = bool(self._dom_validation(ctx))
            except Exception:
                _LOGGER.warning("settle validation hook failed; settling anyway", exc_info=True)
                ok = True
            if not ok:
                # No upper bound: the hook decides when generation is really over.
                self._polls += 1
                self._schedule_check(VALIDATION_POLL_MS)
                return

        self._polls = 0
        self._has_triggered_start = False
        self._emit(
            self._on_settle,
            ActivityEvent(kind="settle", url=self._last_url, timestamp_ms=self._loop.now_ms()),
        )

    def _emit(self, callback: Callable[[ActivityEvent], None] | None, event: ActivityEvent) -> None:
        _LOGGER.info("activity %s url=%s", event.kind, event.url)
        if callback is None:
            return
        try:
            callback(event)
        except Exception:
            _LOGGER.exception("activity %s callback failed", event.kind)


__all__ = [
    "DEFAULT_SILENCE_THRESHOLD_MS",
    "TRANSPORTS",
    "TRANSPORT_STREAM",
    "TRANSPORT_XHR",
    "VALIDATION_POLL_MS",
    "ActivityEvent",
    "ActivityQuiescenceDetector",
    "ActivityTicket",
    "MonitorConfig",
    "SettleContext",
    "Transport",
]
