"""Network interception for the detector, driven by CDP `Network.*` events.

The page's fetch/XHR calls are observed from outside the page:
- `Fetch` / `EventSource` requests are the future-returning shape ("stream");
- `XHR` requests are the open/send shape ("xhr").

`Network.loadingFinished` arrives only once the whole body has been received,
which for a streamed response means the stream was drained. Observation is
passive, so the page's own read of the body is never disturbed.

Nothing is hooked at import time: `start()` installs the bus listener and
`stop()` removes it again, leaving the bus's listener list as it was.

A bus reconnect loses the finish events of requests in flight across the gap,
so those tickets are released at once and the silence timer re-arms.
"""

from __future__ import annotations

import logging
from typing import Any

from .detector import TRANSPORT_STREAM, TRANSPORT_XHR, ActivityQuiescenceDetector, ActivityTicket
from .event_bus import BUS_RECONNECTED, CdpEventBus
from .loop import Loop

_LOGGER = logging.getLogger("chat_helpers.interceptor")

_TRANSPORT_BY_TYPE = {
    "Fetch": TRANSPORT_STREAM,
    "EventSource": TRANSPORT_STREAM,
    "XHR": TRANSPORT_XHR,
}

_FINISH_EVENTS = frozenset({"Network.loadingFinished", "Network.loadingFailed"})


def transport_for(resource_type: Any) -> str | None:
    """Map a CDP resource type to a detector transport (None = not intercepted)."""
    return _TRANSPORT_BY_TYPE.get(str(resource_type or ""))


class NetworkInterceptor:
    def __init__(self, bus: CdpEventBus, loop: Loop, detector: ActivityQuiescenceDetector) -> None:
        self._bus = bus
        self._loop = loop
        self._detector = detector
        self._tickets: dict[str, ActivityTicket] = {}
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def in_flight(self) -> int:
        return len(self._tickets)

    def start(self) -> None:
        if self._installed:
            return
        self._bus.add_listener(self._on_bus_event)
        self._installed = True

    def stop(self) -> None:
        if not self._installed:
            return
        self._bus.remove_listener(self._on_bus_event)
        self._installed = False
        self._tickets.clear()

    def _on_bus_event(self, event: dict[str, Any]) -> None:
        # Reader thread: hand over to the owning loop.
        method = event.get("method")
        if method == "Network.requestWillBeSent" or method in _FINISH_EVENTS:
            self._loop.call_soon(self.handle_event, event)
        elif method == BUS_RECONNECTED:
            self._loop.call_soon(self.release_all)

    def release_all(self) -> int:
        """Finish every outstanding ticket; returns how many were released."""
        if not self._installed:
            return 0
        tickets = list(self._tickets.values())
        self._tickets.clear()
        for ticket in tickets:
            self._detector.finish(ticket)
        if tickets:
            _LOGGER.info("released %d request(s) orphaned by a bus reconnect", len(tickets))
        return len(tickets)

    def handle_event(self, event: dict[str, Any]) -> None:
        if not self._installed:
            return
        method = event.get("method")
        params = event.get("params")
        if not isinstance(params, dict):
            return
        request_id = params.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            return

        if method == "Network.requestWillBeSent":
            if request_id in self._tickets:
                # Redirect hop of a request we already track.
                return
            transport = transport_for(params.get("type"))
            if transport is None:
                return
            request = params.get("request")
            url = request.get("url") if isinstance(request, dict) else None
            if not isinstance(url, str):
                return
            ticket = self._detector.track(url, transport)  # type: ignore[arg-type]
            if ticket is not None:
                self._tickets[request_id] = ticket
            return

        if method in _FINISH_EVENTS:
            ticket = self._tickets.pop(request_id, None)
            if ticket is None:
                return
            if method == "Network.loadingFailed":
                _LOGGER.debug("tracked request failed url=%s error=%s", ticket.url, params.get("errorText"))
            self._detector.finish(ticket)


__all__ = ["NetworkInterceptor", "transport_for"]
