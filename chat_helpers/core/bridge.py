"""Cross-sandbox bridge.

The host side (detector) and the logic side (reactors) share no objects: every
message crosses as a JSON string and is decoded + validated again by each
receiver. Semantics mirror `window.postMessage`:
- broadcast, unacknowledged, at-most-once;
- only listeners registered at post time receive a message (earlier posts are lost);
- delivery is asynchronous, scheduled on each listener's own loop, which keeps
  the relative order of messages from one sender.

The envelope set is closed and versioned: Init | Start | Settle.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from .detector import TRANSPORTS
from .loop import Loop

_LOGGER = logging.getLogger("chat_helpers.bridge")

ENVELOPE_VERSION = 1

EVENT_MONITOR_INIT = "CH_MONITOR_INIT"
EVENT_MONITOR_START = "CH_MONITOR_START"
EVENT_MONITOR_COMPLETE = "CH_MONITOR_COMPLETE"


class EnvelopeError(ValueError):
    """Raised when a received message is not a valid envelope."""


@dataclass(frozen=True, slots=True)
class InitEnvelope:
    url_patterns: tuple[str, ...]
    silence_threshold_ms: int

    type = EVENT_MONITOR_INIT

    def payload(self) -> dict[str, Any]:
        return {"urlPatterns": list(self.url_patterns), "silenceThresholdMs": self.silence_threshold_ms}


@dataclass(frozen=True, slots=True)
class StartEnvelope:
    url: str
    timestamp: int
    transport: str

    type = EVENT_MONITOR_START

    def payload(self) -> dict[str, Any]:
        return {"url": self.url, "timestamp": self.timestamp, "transport": self.transport}


@dataclass(frozen=True, slots=True)
class SettleEnvelope:
    url: str
    timestamp: int

    type = EVENT_MONITOR_COMPLETE

    def payload(self) -> dict[str, Any]:
        return {"url": self.url, "timestamp": self.timestamp}


Envelope = Union[InitEnvelope, StartEnvelope, SettleEnvelope]


def _require_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise EnvelopeError(f"{key} must be a string")
    return value


def _require_int(payload: dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EnvelopeError(f"{key} must be a number")
    if value < 0:
        raise EnvelopeError(f"{key} must be non-negative")
    return int(value)


def _decode_init(payload: dict[str, Any]) -> InitEnvelope:
    patterns = payload.get("urlPatterns")
    if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
        raise EnvelopeError("urlPatterns must be a list of strings")
    return InitEnvelope(url_patterns=tuple(patterns), silence_threshold_ms=_require_int(payload, "silenceThresholdMs"))


def _decode_start(payload: dict[str, Any]) -> StartEnvelope:
    transport = _require_str(payload, "transport")
    if transport not in TRANSPORTS:
        raise EnvelopeError(f"unknown transport: {transport}")
    return StartEnvelope(
        url=_require_str(payload, "url"), timestamp=_require_int(payload, "timestamp"), transport=transport
    )


def _decode_settle(payload: dict[str, Any]) -> SettleEnvelope:
    return SettleEnvelope(url=_require_str(payload, "url"), timestamp=_require_int(payload, "timestamp"))


_DECODERS: dict[str, Callable[[dict[str, Any]], Envelope]] = {
    EVENT_MONITOR_INIT: _decode_init,
    EVENT_MONITOR_START: _decode_start,
    EVENT_MONITOR_COMPLETE: _decode_settle,
}


def encode_envelope(envelope: Envelope) -> str:
    return json.dumps(
        {"type": envelope.type, "version": ENVELOPE_VERSION, "payload": envelope.payload()},
        ensure_ascii=False,
        separators=(",", ":"),
    )


def decode_envelope(raw: str | bytes) -> Envelope:
    """Parse and validate one wire message; raises EnvelopeError."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise EnvelopeError(f"not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise EnvelopeError("envelope must be an object")
    kind = data.get("type")
    decoder = _DECODERS.get(kind) if isinstance(kind, str) else None
    if decoder is None:
        raise EnvelopeError(f"unknown envelope type: {kind!r}")
    version = data.get("version", ENVELOPE_VERSION)
    if version != ENVELOPE_VERSION:
        raise EnvelopeError(f"unsupported envelope version: {version!r}")
    payload = data.get("payload")
    if not isinstance(payload, dict):
        raise EnvelopeError("payload must be an object")
    return decoder(payload)


EnvelopeHandler = Callable[[Envelope], None]


class Subscription:
    def __init__(self, bridge: CrossSandboxBridge, loop: Loop, handler: EnvelopeHandler) -> None:
        self._bridge = bridge
        self.loop = loop
        self.handler = handler
        self.active = True

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bridge._unsubscribe(self)  # noqa: SLF001

    def _deliver(self, raw: str) -> None:
        if not self.active:
            return
        try:
            envelope = decode_envelope(raw)
        except EnvelopeError as exc:
            _LOGGER.debug("dropping malformed envelope: %s", exc)
            return
        self.handler(envelope)


class CrossSandboxBridge:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: list[Subscription] = []

    def subscribe(self, loop: Loop, handler: EnvelopeHandler) -> Subscription:
        sub = Subscription(self, loop, handler)
        with self._lock:
            self._subs.append(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def post(self, envelope: Envelope) -> int:
        """Broadcast an envelope; returns how many listeners it was scheduled for."""
        return self.post_raw(encode_envelope(envelope))

    def post_raw(self, raw: str) -> int:
        with self._lock:
            targets = list(self._subs)
        for sub in targets:
            sub.loop.call_soon(sub._deliver, raw)  # noqa: SLF001
        if not targets:
            _LOGGER.debug("envelope posted with no listeners (lost)")
        return len(targets)


__all__ = [
    "ENVELOPE_VERSION",
    "EVENT_MONITOR_COMPLETE",
    "EVENT_MONITOR_INIT",
    "EVENT_MONITOR_START",
    "CrossSandboxBridge",
    "Envelope",
    "EnvelopeError",
    "InitEnvelope",
    "SettleEnvelope",
    "StartEnvelope",
    "Subscription",
    "decode_envelope",
    "encode_envelope",
]
