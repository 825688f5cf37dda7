from __future__ import annotations

from collections.abc import Iterable

from ..detector import DEFAULT_SILENCE_THRESHOLD_MS, MonitorConfig
from .base import SiteAdapter


class UniversalAdapter(SiteAdapter):
    """Selector-driven adapter for any chat page (best-effort heuristics).

    Network monitoring needs explicit URL substrings; without them the page
    still gets title/notification handling from DOM polling only.
    """

    name = "universal"
    display_name = "Chat"

    def __init__(
        self,
        *,
        url_patterns: Iterable[str] = (),
        silence_threshold_ms: int = DEFAULT_SILENCE_THRESHOLD_MS,
        textarea_selectors: list[str] | None = None,
        submit_selectors: list[str] | None = None,
        generating_selectors: list[str] | None = None,
    ) -> None:
        super().__init__()
        self.url_patterns = [p for p in url_patterns if p]
        self.silence_threshold_ms = silence_threshold_ms
        self._textarea = textarea_selectors or [
            'textarea:not([type="search"])',
            '[contenteditable="true"]',
            '[role="textbox"]',
        ]
        self._submit = submit_selectors or [
            'button[type="submit"]',
            'button[aria-label*="Send"]',
            '[data-testid*="send"]',
        ]
        self._generating = generating_selectors or ['button[aria-label*="Stop"]', '[data-testid="stop-button"]']

    def match(self, *, url: str) -> bool:  # noqa: ARG002
        # Always available as a fallback when no site-specific adapter matches.
        return True

    def get_network_monitor_config(self) -> MonitorConfig | None:
        if not self.url_patterns:
            return None
        return MonitorConfig.create(self.url_patterns, self.silence_threshold_ms)

    def get_textarea_selectors(self) -> list[str]:
        return list(self._textarea)

    def get_submit_button_selectors(self) -> list[str]:
        return list(self._submit)

    def get_generating_selectors(self) -> list[str]:
        return list(self._generating)

    def get_conversation_title(self) -> str | None:
        return self.get_session_name()
