"""Keeps the reading position while an answer streams in.

Intent comes from two sources: generation state from the bridge, and the
user's own scrolling from page signals (wheel direction, distance from the
bottom of the scroll container). With `prevent_auto_scroll` on, the page-side
scroll lock is engaged exactly while generating with the user scrolled up.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from ..bridge import CrossSandboxBridge, Envelope, SettleEnvelope, StartEnvelope, Subscription
from ..config import SettingsSnapshot
from ..loop import Loop
from ..page.driver import PageDriver
from ..page.signals import PageSignalRouter

_LOGGER = logging.getLogger("chat_helpers.scroll_guard")

SCROLL_UP_THRESHOLD_PX = 100


@dataclass(frozen=True, slots=True)
class ScrollIntent:
    is_generating: bool = False
    user_scrolled_up: bool = False


class ScrollPositionGuard:
    def __init__(
        self,
        *,
        bridge: CrossSandboxBridge,
        loop: Loop,
        page: PageDriver,
        settings: SettingsSnapshot,
        signals: PageSignalRouter | None = None,
        container_selectors: Sequence[str] = (),
        content_selectors: Sequence[str] = (),
    ) -> None:
        self._bridge = bridge
        self._loop = loop
        self._page = page
        self._settings = settings
        self._signals = signals
        self._lock_targets = {"containers": list(container_selectors), "content": list(content_selectors)}
        self.intent = ScrollIntent()
        self.lock_engaged = False
        self._subscription: Subscription | None = None
        self._unsubscribers: list[Callable[[], None]] = []

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self._bridge.subscribe(self._loop, self.handle_envelope)
        if self._signals is not None and not self._unsubscribers:
            self._unsubscribers = [
                self._signals.subscribe("wheel", self.on_wheel),
                self._signals.subscribe("scroll", self.on_scroll),
            ]

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self.lock_engaged:
            self._page.set_scroll_lock(False, **self._lock_targets)
            self.lock_engaged = False

    def update_settings(self, settings: SettingsSnapshot) -> None:
        self._settings = settings
        self._sync_lock()

    # Inputs -------------------------------------------------------------------

    def handle_envelope(self, envelope: Envelope) -> None:
        if isinstance(envelope, StartEnvelope):
            self.intent = ScrollIntent(is_generating=True, user_scrolled_up=self.intent.user_scrolled_up)
        elif isinstance(envelope, SettleEnvelope):
            self.intent = ScrollIntent()
        else:
            return
        self._sync_lock()

    def on_wheel(self, signal: dict[str, Any]) -> None:
        delta = signal.get("deltaY")
        if isinstance(delta, (int, float)) and delta < 0 and not self.intent.user_scrolled_up:
            self._set_scrolled_up(True)

    def on_scroll(self, signal: dict[str, Any]) -> None:
        distance = signal.get("distanceFromBottom")
        if isinstance(distance, (int, float)) and not isinstance(distance, bool):
            self._set_scrolled_up(distance > SCROLL_UP_THRESHOLD_PX)

    def _set_scrolled_up(self, value: bool) -> None:
        if value == self.intent.user_scrolled_up:
            return
        self.intent = ScrollIntent(is_generating=self.intent.is_generating, user_scrolled_up=value)
        _LOGGER.debug("user_scrolled_up=%s", value)
        self._sync_lock()

    # Enforcement ---------------------------------------------------------------

    def should_lock(self) -> bool:
        return (
            self._settings.prevent_auto_scroll
            and self.intent.is_generating
            and self.intent.user_scrolled_up
        )

    def _sync_lock(self) -> None:
        wanted = self.should_lock()
        if wanted == self.lock_engaged:
            return
        if self._page.set_scroll_lock(wanted, **self._lock_targets):
            self.lock_engaged = wanted
            _LOGGER.info("scroll lock %s", "engaged" if wanted else "released")


__all__ = ["SCROLL_UP_THRESHOLD_PX", "ScrollIntent", "ScrollPositionGuard"]
