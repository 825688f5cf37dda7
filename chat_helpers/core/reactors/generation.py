"""Tab title / completion-notification reactor.

States: IDLE -> GENERATING (Start) -> COMPLETED (Settle) -> GENERATING (next Start).
The GENERATING -> COMPLETED transition notifies at most once per cycle, and not
at all when the user already saw the answer finish in the foreground.

Envelopes may be lost: a Settle without a preceding Start changes no state, and
a stuck GENERATING is resynced by the next Start/Settle pair.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Callable
from typing import Any

from ..adapters.base import SiteAdapter
from ..bridge import CrossSandboxBridge, Envelope, SettleEnvelope, StartEnvelope, Subscription
from ..config import DEFAULT_PRIVACY_TITLE, DEFAULT_TITLE_FORMAT, SettingsSnapshot
from ..loop import Loop, TimerHandle
from ..page.driver import PageDriver
from ..page.signals import PageSignalRouter

_LOGGER = logging.getLogger("chat_helpers.generation")

STATUS_GENERATING = "⏳ "
STATUS_DONE = "✅ "

PRIVACY_TOAST_MS = 2000

_POLLUTED_PREFIX = re.compile(r"^[⏳✅]")
_MODEL_TAG = re.compile(r"\[[\w\s.\-]+\]")
_WHITESPACE = re.compile(r"\s+")


class GenerationState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"


def render_title_template(template: str, *, status: str, title: str, model: str, site: str) -> str:
    out = (template or DEFAULT_TITLE_FORMAT).replace("{status}", status)
    out = out.replace("{title}", title).replace("{model}", f"[{model}] " if model else "")
    out = out.replace("{site}", site)
    return _WHITESPACE.sub(" ", out).strip()


def is_polluted_name(name: str | None, privacy_title: str = DEFAULT_PRIVACY_TITLE) -> bool:
    """True for names that are really one of our own rendered titles."""
    if not name:
        return False
    if _POLLUTED_PREFIX.search(name) or _MODEL_TAG.search(name):
        return True
    return name == (privacy_title or DEFAULT_PRIVACY_TITLE)


class GenerationStateMachine:
    def __init__(
        self,
        *,
        bridge: CrossSandboxBridge,
        loop: Loop,
        adapter: SiteAdapter,
        page: PageDriver,
        settings: SettingsSnapshot,
        signals: PageSignalRouter | None = None,
    ) -> None:
        self._bridge = bridge
        self._loop = loop
        self._adapter = adapter
        self._page = page
        self._settings = settings
        self._signals = signals

        self.state = GenerationState.IDLE
        self.last_state = GenerationState.IDLE
        self.seen = False
        self._last_session_name: str | None = None

        self._subscription: Subscription | None = None
        self._unsubscribers: list[Callable[[], None]] = []
        self._rename_timer: TimerHandle | None = None
        self._renaming = False

    @property
    def settings(self) -> SettingsSnapshot:
        return self._settings

    @property
    def is_renaming(self) -> bool:
        return self._renaming

    # Lifecycle -----------------------------------------------------------------

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self._bridge.subscribe(self._loop, self.handle_envelope)
        if self._signals is not None and not self._unsubscribers:
            self._unsubscribers = [
                self._signals.subscribe("visibility", self.on_page_signal),
                self._signals.subscribe("focus", self.on_page_signal),
            ]
        self._start_renaming()

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._stop_renaming()

    def update_settings(self, settings: SettingsSnapshot) -> None:
        old = self._settings
        self._settings = settings
        if not self._subscription:
            return
        if settings.privacy_mode != old.privacy_mode:
            self._page.show_toast(
                "Privacy mode on" if settings.privacy_mode else "Privacy mode off", PRIVACY_TOAST_MS
            )

        if self._wants_renaming() and not self._renaming:
            self._start_renaming()
        elif not self._wants_renaming() and self._renaming:
            self._stop_renaming()
        elif self._renaming and old.rename_interval_s != settings.rename_interval_s:
            self._schedule_rename()

        if self._renaming:
            self.render_title(force=True)

    def toggle_privacy_mode(self) -> bool:
        self.update_settings(self._settings.replace(privacy_mode=not self._settings.privacy_mode))
        if not self._renaming:
            self.render_title(force=True)
        return self._settings.privacy_mode

    # Periodic rename -------------------------------------------------------------

    def _wants_renaming(self) -> bool:
        return self._settings.tab_enabled and self._settings.auto_rename

    def _start_renaming(self) -> None:
        if self._renaming or not self._wants_renaming():
            return
        self._renaming = True
        self.render_title()
        self._schedule_rename()

    def _stop_renaming(self) -> None:
        self._renaming = False
        if self._rename_timer is not None:
            self._rename_timer.cancel()
            self._rename_timer = None

    def _schedule_rename(self) -> None:
        if self._rename_timer is not None:
            self._rename_timer.cancel()
        interval_ms = max(1, self._settings.rename_interval_s) * 1000
        self._rename_timer = self._loop.call_later(interval_ms, self._on_rename_tick)

    def _on_rename_tick(self) -> None:
        self._rename_timer = None
        if not self._renaming:
            return
        try:
            self.render_title()
        finally:
            self._schedule_rename()

    # Events -------------------------------------------------------------------

    def handle_envelope(self, envelope: Envelope) -> None:
        if not self._settings.tab_enabled:
            return
        if isinstance(envelope, StartEnvelope):
            self.on_start()
        elif isinstance(envelope, SettleEnvelope):
            self.on_settle()

    def on_start(self) -> None:
        self.last_state = self.state
        self.state = GenerationState.GENERATING
        self.render_title()

    def on_settle(self) -> None:
        was_generating = self.state is GenerationState.GENERATING
        if was_generating:
            self.last_state = self.state
            self.state = GenerationState.COMPLETED
            away = self._page.is_user_away()
            if not self.seen and (away or self._settings.notify_when_focused):
                self.notify_completion()
        else:
            _LOGGER.debug("settle without start (state=%s); no transition", self.state.value)
        self.seen = False
        self.render_title(force=True, dom_fallback=was_generating)

    def on_page_signal(self, signal: dict[str, Any]) -> None:
        if self.state is not GenerationState.GENERATING:
            return
        if signal.get("kind") == "visibility":
            if signal.get("visible") is False or self._page.is_user_away():
                return
        if not self._adapter.is_generating():
            self.seen = True

    # Side effects ---------------------------------------------------------------

    def notify_completion(self) -> None:
        s = self._settings
        site = self._adapter.get_name()
        _LOGGER.info("generation completed on %s; notifying", site)
        if s.show_notification:
            body = self._last_session_name or self._adapter.get_conversation_title() or "Task complete"
            self._page.show_notification(f"{STATUS_DONE}{site} finished", body)
        if s.notification_sound:
            self._page.play_sound(s.notification_volume)
        if s.auto_focus:
            self._page.bring_to_front()

    def _clean_session_name(self) -> str | None:
        if self._adapter.is_new_conversation():
            self._last_session_name = None
            return None
        name = self._adapter.get_conversation_title() or self._adapter.get_session_name()
        if name and not is_polluted_name(name, self._settings.privacy_title):
            self._last_session_name = name
            return name
        return self._last_session_name

    def _is_currently_generating(self) -> bool:
        if self.state is GenerationState.COMPLETED:
            return False
        return self.state is GenerationState.GENERATING or self._adapter.is_generating()

    def render_title(self, *, force: bool = False, dom_fallback: bool = True) -> str | None:
        """Re-render the tab title; returns the title written, if any.

        With `dom_fallback`, a generation the adapter saw end while the user was
        away (and that no Settle covered) sends the completion notification.
        """
        s = self._settings
        if not s.tab_enabled or (not self._renaming and not force):
            return None

        current = self._page.get_title()
        if s.privacy_mode:
            privacy = s.privacy_title or DEFAULT_PRIVACY_TITLE
            if current != privacy:
                self._page.set_title(privacy)
                return privacy
            return None

        session_name = self._clean_session_name()
        generating = self._is_currently_generating()

        # DOM fallback for completions the network monitor missed.
        if (
            dom_fallback
            and self.last_state is GenerationState.GENERATING
            and not generating
            and self.state is not GenerationState.COMPLETED
            and self._page.is_user_away()
        ):
            self.notify_completion()
        self.last_state = GenerationState.GENERATING if generating else GenerationState.IDLE

        status = (STATUS_GENERATING if generating else STATUS_DONE) if s.show_status else ""
        site = self._adapter.get_name()
        fmt = s.title_format or DEFAULT_TITLE_FORMAT
        model = (self._adapter.get_model_name() or "") if "{model}" in fmt else ""
        title = render_title_template(fmt, status=status, title=session_name or site, model=model, site=site)

        if title and (force or title != current):
            self._page.set_title(title)
            return title
        return None


__all__ = [
    "STATUS_DONE",
    "STATUS_GENERATING",
    "GenerationState",
    "GenerationStateMachine",
    "is_polluted_name",
    "render_title_template",
]
