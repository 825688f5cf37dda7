"""Gemini Enterprise (business.gemini.google).

The conversation lives several shadow roots deep:
`ucs-conversation` -> shadowRoot -> `.main` -> `.turn` (one per exchange).
Each turn holds `.question-block` (the user's prompt, rendered by
`ucs-fast-markdown` inside its own shadow root) and `ucs-summary` (the answer).
A policy-blocked answer renders a `ucs-banned-answer` element in the summary.
"""

from __future__ import annotations

from urllib.parse import urlparse

from ..detector import MonitorConfig
from ..page import js
from ..page.dom_tree import DomNode, find_all_nested, find_nested, text_content
from .base import SiteAdapter

_STOP_SELECTORS = [
    'button[aria-label*="Stop"]',
    '[data-test-id="stop-button"]',
    ".stop-button",
    'md-icon-button[aria-label*="Stop"]',
]
_SPINNER_SELECTORS = [
    "mat-spinner",
    "md-spinner",
    ".loading-spinner",
    '[role="progressbar"]',
    ".generating-indicator",
    ".response-loading",
]

_ACTIVE_CONVERSATION_JS = r"""
(() => {
  __DEEP_QUERY__
  for (const item of __chQueryAllDeep('.conversation')) {
    const button = item.querySelector('button.list-item') || item.querySelector('button');
    if (!button) continue;
    const active = button.classList.contains('selected') || button.classList.contains('active')
      || button.getAttribute('aria-selected') === 'true';
    if (!active) continue;
    const title = button.querySelector('.conversation-title');
    const text = ((title || button).textContent || '').trim();
    if (text) return text;
  }
  return null;
})()
"""


def _is_conversation(node: DomNode) -> bool:
    return node.tag == "ucs-conversation"


def _is_turn(node: DomNode) -> bool:
    return node.matches(classes=("turn",))


class GeminiEnterpriseAdapter(SiteAdapter):
    name = "gemini_enterprise"
    display_name = "Gemini Enterprise"
    blocked_marker_tags = frozenset({"ucs-banned-answer"})

    def match(self, *, url: str) -> bool:
        return "business.gemini.google" in (urlparse(url).hostname or "")

    def get_network_monitor_config(self) -> MonitorConfig | None:
        return MonitorConfig.create(["widgetStreamAssist"], 3000)

    # Selectors ----------------------------------------------------------------

    def get_textarea_selectors(self) -> list[str]:
        return [
            "div.ProseMirror",
            ".ProseMirror",
            '[contenteditable="true"]:not([type="search"])',
            '[role="textbox"]',
            'textarea:not([type="search"])',
        ]

    def get_submit_button_selectors(self) -> list[str]:
        return ['button[aria-label*="Submit"]', ".send-button", '[data-testid*="send"]']

    def get_generating_selectors(self) -> list[str]:
        return _STOP_SELECTORS + _SPINNER_SELECTORS

    def get_model_selectors(self) -> list[str]:
        return [
            "#model-selector-menu-anchor",
            ".action-model-selector",
            ".model-selector",
            '[data-test-id="model-selector"]',
            ".current-model",
        ]

    def get_scroll_container_selectors(self) -> list[str]:
        return [".chat-mode-scroller", *super().get_scroll_container_selectors()]

    def get_chat_content_selectors(self) -> list[str]:
        return [
            ".model-response-container",
            ".message-content",
            "[data-message-id]",
            "ucs-conversation-message",
            ".conversation-message",
        ]

    # Live page ----------------------------------------------------------------

    def get_conversation_title(self) -> str | None:
        title = self.page.evaluate(js.render(_ACTIVE_CONVERSATION_JS))
        return title if isinstance(title, str) and title else None

    def is_new_conversation(self) -> bool:
        return "/session/" not in urlparse(self.page.get_url()).path

    # Snapshot -----------------------------------------------------------------

    def find_latest_turn(self, document: DomNode) -> DomNode | None:
        conversation = find_nested(document, _is_conversation)
        if conversation is None:
            return None
        # Turns live in the conversation's own shadow root; nested components are not searched.
        turns: list[DomNode] = []
        for root in conversation.shadow_roots:
            turns.extend(find_all_nested(root, _is_turn, pierce=False))
        if not turns:
            return None
        # `.turn.last` when the page marks it, else the last one in document order.
        for turn in reversed(turns):
            if "last" in turn.classes:
                return turn
        return turns[-1]

    def extract_user_query_text(self, turn: DomNode) -> str:
        question = find_nested(turn, lambda n: n.matches(classes=("question-block",)))
        if question is None:
            return ""
        markdown = find_nested(question, lambda n: n.tag == "ucs-fast-markdown")
        if markdown is not None:
            for root in markdown.shadow_roots:
                doc = find_nested(root, lambda n: n.matches(classes=("markdown-document",)))
                if doc is not None:
                    return text_content(doc)
        return text_content(question)


__all__ = ["GeminiEnterpriseAdapter"]
