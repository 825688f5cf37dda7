"""Page-side user signals (visibility, focus, wheel, scroll).

The signal script reports through a CDP binding; each call arrives as a
`Runtime.bindingCalled` event on the logic bus and is routed to the handlers
subscribed for its kind, on the logic loop.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

from ..event_bus import CdpEventBus
from ..loop import Loop
from .js import SIGNAL_BINDING, SIGNAL_SCRIPT, render

_LOGGER = logging.getLogger("chat_helpers.signals")

SIGNAL_KINDS = frozenset({"visibility", "focus", "blur", "wheel", "scroll"})

SignalHandler = Callable[[dict[str, Any]], None]


def signal_setup_commands(container_selectors: list[str] | None = None) -> list[dict[str, Any]]:
    """CDP commands that expose the binding and install the signal script on every document."""
    source = render(SIGNAL_SCRIPT, containers=list(container_selectors or []), binding=SIGNAL_BINDING)
    return [
        {"method": "Runtime.addBinding", "params": {"name": SIGNAL_BINDING}},
        {"method": "Page.addScriptToEvaluateOnNewDocument", "params": {"source": source}},
        {"method": "Runtime.evaluate", "params": {"expression": source, "returnByValue": True}},
    ]


def parse_signal(event: dict[str, Any]) -> dict[str, Any] | None:
    """Decode one bindingCalled event into a signal dict with a `kind` key."""
    if event.get("method") != "Runtime.bindingCalled":
        return None
    params = event.get("params")
    if not isinstance(params, dict) or params.get("name") != SIGNAL_BINDING:
        return None
    try:
        data = json.loads(params.get("payload") or "")
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("kind") not in SIGNAL_KINDS:
        return None
    return data


class PageSignalRouter:
    def __init__(self, bus: CdpEventBus, loop: Loop) -> None:
        self._bus = bus
        self._loop = loop
        self._lock = threading.Lock()
        self._handlers: dict[str, list[SignalHandler]] = {}
        self._installed = False

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

    def subscribe(self, kind: str, handler: SignalHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        if kind not in SIGNAL_KINDS:
            raise ValueError(f"unknown signal kind: {kind}")
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(kind, [])
                if handler in handlers:
                    handlers.remove(handler)

        return _unsubscribe

    def _on_bus_event(self, event: dict[str, Any]) -> None:
        signal = parse_signal(event)
        if signal is not None:
            self._loop.call_soon(self.dispatch, signal)

    def dispatch(self, signal: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers.get(str(signal.get("kind")), ()))
        for handler in handlers:
            try:
                handler(signal)
            except Exception:
                _LOGGER.warning("signal handler failed kind=%s", signal.get("kind"), exc_info=True)


__all__ = ["SIGNAL_KINDS", "PageSignalRouter", "parse_signal", "signal_setup_commands"]
