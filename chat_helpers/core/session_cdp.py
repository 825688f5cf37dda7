"""Raw CDP WebSocket connection (websocket-client).

One connection is used from one thread only: either a loop thread issuing
commands, or an event bus reader thread pulling events.
"""

from __future__ import annotations

import json
import socket
import time
from collections import deque
from contextlib import suppress
from typing import Any

import websocket

from .errors import CdpError

MAX_QUEUED_EVENTS = 2000


def _is_event(data: Any) -> bool:
    return isinstance(data, dict) and isinstance(data.get("method"), str) and "id" not in data


class CdpConnection:
    """Low-level CDP WebSocket connection for one page target."""

    def __init__(self, ws_url: str, timeout: float = 5.0):
        try:
            self.ws = websocket.create_connection(ws_url, timeout=timeout, suppress_origin=True)
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"CDP connect failed: {exc}") from exc
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        # Events seen while waiting for a command reply; oldest dropped first.
        self._pending_events: deque[dict[str, Any]] = deque(maxlen=MAX_QUEUED_EVENTS)

    def _recv_json(self, timeout: float) -> Any:
        """One frame decoded as JSON; None on timeout or an undecodable frame."""
        try:
            self.ws.settimeout(timeout)
            raw = self.ws.recv()
        except Exception as exc:  # noqa: BLE001
            if isinstance(exc, (TimeoutError, websocket.WebSocketTimeoutException)) or "timed out" in str(exc).lower():
                return None
            raise CdpError(str(exc)) from exc
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None

    def recv_event(self, timeout: float = 0.5) -> dict[str, Any] | None:
        """Next CDP event (None on timeout). Command replies are discarded."""
        if self._pending_events:
            return self._pending_events.popleft()
        data = self._recv_json(timeout)
        return data if _is_event(data) else None

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a CDP command and wait for its reply."""
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        try:
            self.ws.settimeout(min(2.0, max(0.5, float(self.timeout))))
            self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"{method}: {exc}") from exc

        deadline = time.monotonic() + float(self.timeout)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CdpError(f"{method}: CDP response timed out")
            data = self._recv_json(min(0.5, remaining))
            if data is None:
                continue
            if _is_event(data):
                self._pending_events.append(data)
                continue
            if isinstance(data, dict) and data.get("id") == msg_id:
                if "error" in data:
                    raise CdpError(f"{method}: {data['error']}")
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    def send_many(self, commands: list[dict[str, Any]], *, stop_on_error: bool = True) -> list[dict[str, Any]]:
        """Send several commands in order; with stop_on_error=False failures become {"ok": False} entries."""
        out: list[dict[str, Any]] = []
        for cmd in commands:
            method = cmd.get("method") if isinstance(cmd, dict) else None
            if not isinstance(method, str) or not method:
                if stop_on_error:
                    raise CdpError("send_many: command without a method")
                out.append({"ok": False, "error": "missing method"})
                continue
            params = cmd.get("params")
            try:
                out.append(self.send(method, params if isinstance(params, dict) else None))
            except CdpError as exc:
                if stop_on_error:
                    raise
                out.append({"ok": False, "error": str(exc), "method": method})
        return out

    def close(self) -> None:
        """Close the socket without a close handshake (which can hang)."""
        sock = getattr(self.ws, "sock", None)
        if sock is not None:
            with suppress(Exception):
                sock.shutdown(socket.SHUT_RDWR)
            with suppress(Exception):
                sock.close()


__all__ = ["CdpConnection"]
