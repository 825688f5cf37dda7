"""Background CDP event reader.

One bus owns one CDP connection to the chat tab and fans every received event
out to its listeners. Listeners run on the reader thread and are expected to
hand work over to a loop (`loop.call_soon`) rather than act in place.

Reconnects with backoff; listener failures never stop the reader. Every
reconnect is announced to listeners as a `BUS_RECONNECTED` event.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .session_cdp import CdpConnection

_LOGGER = logging.getLogger("chat_helpers.event_bus")

EventListener = Callable[[dict[str, Any]], None]

DEFAULT_DOMAINS = ("Page.enable", "Runtime.enable", "Network.enable")

# Synthetic event dispatched after a dropped connection is re-established.
# Events of the gap (e.g. `Network.loadingFinished`) are lost for good.
BUS_RECONNECTED = "ChatHelper.busReconnected"


class CdpEventBus:
    def __init__(
        self,
        *,
        ws_url: str,
        name: str,
        domains: tuple[str, ...] = DEFAULT_DOMAINS,
        setup: list[dict[str, Any]] | None = None,
        timeout: float = 5.0,
        connect: Callable[[str, float], CdpConnection] | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.name = name
        self._domains = tuple(domains)
        self._setup = list(setup or [])
        self._timeout = timeout
        self._connect = connect or (lambda url, t: CdpConnection(url, timeout=t))
        self._listeners: list[EventListener] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._conn: CdpConnection | None = None

    # Listener registry -------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def listeners(self) -> list[EventListener]:
        with self._lock:
            return list(self._listeners)

    def dispatch(self, event: dict[str, Any]) -> None:
        """Deliver one CDP event to every listener (also used by tests/replays)."""
        if not isinstance(event, dict) or not isinstance(event.get("method"), str):
            return
        for listener in self.listeners():
            try:
                listener(event)
            except Exception:
                _LOGGER.debug("event listener failed for %s", event.get("method"), exc_info=True)

    # Reader thread ---------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        t = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread = t
        t.start()

    def stop(self) -> None:
        self._stop.set()
        conn = self._conn
        if conn is not None:
            with suppress(Exception):
                conn.close()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout=2.0)
        self._thread = None

    def _on_connected(self, conn: CdpConnection) -> None:
        cmds = [{"method": m, "params": {}} for m in self._domains] + self._setup
        results = conn.send_many(cmds, stop_on_error=False)
        for res in results:
            if isinstance(res, dict) and res.get("ok") is False:
                _LOGGER.warning("%s setup command failed: %s", self.name, res.get("error"))

    def _run(self) -> None:
        backoff = 0.2
        connected_before = False
        while not self._stop.is_set():
            conn: CdpConnection | None = None
            try:
                conn = self._connect(self.ws_url, self._timeout)
                self._conn = conn
                self._on_connected(conn)
                _LOGGER.info("%s connected", self.name)
                backoff = 0.2
                if connected_before:
                    self.dispatch({"method": BUS_RECONNECTED, "params": {}})
                connected_before = True

                while not self._stop.is_set():
                    event = conn.recv_event(timeout=0.5)
                    if event is not None:
                        self.dispatch(event)
            except Exception as exc:  # noqa: BLE001
                if not self._stop.is_set():
                    _LOGGER.warning("%s disconnected: %s", self.name, exc)
            finally:
                if conn is not None:
                    with suppress(Exception):
                        conn.close()
                self._conn = None

            if self._stop.is_set():
                break

            time.sleep(backoff)
            backoff = min(backoff * 1.5, 2.0)


__all__ = ["BUS_RECONNECTED", "CdpEventBus", "EventListener"]
