"""Host-sandbox entry: owns the detector and speaks to the bridge.

On every Init the running detector is stopped and a fresh one is started with
the new configuration; its start/settle callbacks are posted back as envelopes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .bridge import CrossSandboxBridge, Envelope, InitEnvelope, SettleEnvelope, StartEnvelope, Subscription
from .detector import ActivityEvent, ActivityQuiescenceDetector, MonitorConfig, SettleContext
from .event_bus import CdpEventBus
from .interceptor import NetworkInterceptor
from .loop import Loop

_LOGGER = logging.getLogger("chat_helpers.monitor_host")


class MonitorHost:
    def __init__(
        self,
        *,
        bridge: CrossSandboxBridge,
        loop: Loop,
        bus: CdpEventBus,
        dom_validation: Callable[[SettleContext], bool] | None = None,
    ) -> None:
        self._bridge = bridge
        self._loop = loop
        self._bus = bus
        self._dom_validation = dom_validation
        self._subscription: Subscription | None = None
        self.detector: ActivityQuiescenceDetector | None = None
        self.interceptor: NetworkInterceptor | None = None

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._bridge.subscribe(self._loop, self._on_envelope)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._teardown()

    def reset(self) -> None:
        """Stop monitoring until the next Init (subscription stays)."""
        self._teardown()

    def _teardown(self) -> None:
        if self.interceptor is not None:
            self.interceptor.stop()
            self.interceptor = None
        if self.detector is not None:
            self.detector.stop()
            self.detector = None

    def _on_envelope(self, envelope: Envelope) -> None:
        if not isinstance(envelope, InitEnvelope):
            return
        self._teardown()

        config = MonitorConfig.create(envelope.url_patterns, envelope.silence_threshold_ms)
        detector = ActivityQuiescenceDetector(
            self._loop,
            on_start=self._post_start,
            on_settle=self._post_settle,
            dom_validation=self._dom_validation,
        )
        detector.start(config)
        interceptor = NetworkInterceptor(self._bus, self._loop, detector)
        interceptor.start()
        self.detector = detector
        self.interceptor = interceptor

    def _post_start(self, event: ActivityEvent) -> None:
        self._bridge.post(
            StartEnvelope(url=event.url, timestamp=event.timestamp_ms, transport=event.transport or "stream")
        )

    def _post_settle(self, event: ActivityEvent) -> None:
        self._bridge.post(SettleEnvelope(url=event.url, timestamp=event.timestamp_ms))


__all__ = ["MonitorHost"]
