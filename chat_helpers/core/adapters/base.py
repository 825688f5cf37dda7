from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..detector import MonitorConfig
from ..errors import AdapterError
from ..page.dom_tree import DomNode, text_content

if TYPE_CHECKING:
    from ..page.driver import ElementRef, PageDriver

DEFAULT_SCROLL_CONTAINER_SELECTORS = [
    "infinite-scroller.chat-history",
    ".chat-mode-scroller",
    "main",
    '[role="main"]',
    ".conversation-container",
    ".chat-container",
    "div.content-container",
]


class SiteAdapter(ABC):
    """Per-site capability object: selectors plus the DOM operations the reactors need.

    Live operations go through the bound `PageDriver`; snapshot operations
    (`find_latest_turn`, `extract_user_query_text`) work on `DomNode` trees.
    """

    name: str
    display_name: str = ""
    # Tags whose presence inside the latest turn means "answer was blocked".
    blocked_marker_tags: frozenset[str] = frozenset()

    def __init__(self) -> None:
        self._page: PageDriver | None = None

    # Binding ------------------------------------------------------------------

    def bind(self, page: PageDriver) -> SiteAdapter:
        self._page = page
        return self

    @property
    def page(self) -> PageDriver:
        if self._page is None:
            raise AdapterError(
                adapter=self.name,
                op="page",
                reason="Adapter is not bound to a page",
                suggestion="Call adapter.bind(PageDriver(session)) first",
            )
        return self._page

    # Identity -----------------------------------------------------------------

    @abstractmethod
    def match(self, *, url: str) -> bool:
        """Return True if the adapter can operate on the given URL."""

    def get_name(self) -> str:
        return self.display_name or self.name

    def get_network_monitor_config(self) -> MonitorConfig | None:
        return None

    # Selectors ----------------------------------------------------------------

    @abstractmethod
    def get_textarea_selectors(self) -> list[str]:
        """Prompt input candidates, most specific first."""

    def get_submit_button_selectors(self) -> list[str]:
        return []

    def get_generating_selectors(self) -> list[str]:
        return []

    def get_model_selectors(self) -> list[str]:
        return []

    def get_scroll_container_selectors(self) -> list[str]:
        return list(DEFAULT_SCROLL_CONTAINER_SELECTORS)

    def get_chat_content_selectors(self) -> list[str]:
        """Message elements whose insertion may drag the scroll position."""
        return []

    # Live page ----------------------------------------------------------------

    def is_generating(self) -> bool:
        selectors = self.get_generating_selectors()
        return bool(selectors) and self.page.any_visible(selectors)

    def find_textarea(self) -> ElementRef | None:
        return self.page.query_deep(self.get_textarea_selectors())

    def clear_textarea(self) -> None:
        ref = self.find_textarea()
        if ref is not None:
            self.page.clear(ref)

    def insert_prompt(self, text: str) -> bool:
        ref = self.find_textarea()
        if ref is None:
            return False
        return self.page.insert_text(ref, text)

    def get_session_name(self) -> str | None:
        """Session name from the document title ("Chat name - Site" -> "Chat name")."""
        title = self.page.get_title().strip()
        if not title:
            return None
        parts = title.split(" - ")
        if len(parts) > 1:
            return " - ".join(parts[:-1]).strip() or None
        return title

    def get_conversation_title(self) -> str | None:
        return None

    def get_model_name(self) -> str | None:
        selectors = self.get_model_selectors()
        return self.page.text_of(selectors) if selectors else None

    def is_new_conversation(self) -> bool:
        return False

    # Policy retry -------------------------------------------------------------

    def supports_policy_retry(self) -> bool:
        return bool(self.blocked_marker_tags)

    def find_latest_turn(self, document: DomNode) -> DomNode | None:  # noqa: ARG002
        return None

    def extract_user_query_text(self, turn: DomNode) -> str:
        return text_content(turn)


__all__ = ["DEFAULT_SCROLL_CONTAINER_SELECTORS", "SiteAdapter"]
