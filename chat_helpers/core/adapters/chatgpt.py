from __future__ import annotations

import re
from urllib.parse import urlparse

from ..detector import MonitorConfig
from ..page import js
from .base import SiteAdapter

_MODEL_LABEL = re.compile(r"model is\s*(.+)", re.IGNORECASE)

_MODEL_LABEL_JS = r"""
(() => {
  __DEEP_QUERY__
  const btn = __chQueryAllDeep('[data-testid="model-switcher-dropdown-button"]')[0];
  if (btn) {
    const version = btn.querySelector('.text-token-text-tertiary');
    const text = ((version || btn).textContent || '').trim();
    return { label: btn.getAttribute('aria-label') || '', text };
  }
  const msg = document.querySelector('[data-message-model-slug]');
  return msg ? { text: msg.getAttribute('data-message-model-slug') || '' } : null;
})()
"""


class ChatGPTAdapter(SiteAdapter):
    name = "chatgpt"
    display_name = "ChatGPT"

    def match(self, *, url: str) -> bool:
        return "chatgpt.com" in (urlparse(url).hostname or "")

    def get_network_monitor_config(self) -> MonitorConfig | None:
        return MonitorConfig.create(["conversation", "backend-api"], 3000)

    def get_textarea_selectors(self) -> list[str]:
        return ["#prompt-textarea", 'textarea[data-id="root"]', '[contenteditable="true"]']

    def get_submit_button_selectors(self) -> list[str]:
        return ['[data-testid="send-button"]', 'button[aria-label="Send prompt"]']

    def get_generating_selectors(self) -> list[str]:
        return ['[data-testid="stop-button"]']

    def get_scroll_container_selectors(self) -> list[str]:
        return ['[class*="scrollbar-gutter"]', '[class*="@container/main"] > div', *super().get_scroll_container_selectors()]

    def get_chat_content_selectors(self) -> list[str]:
        return ['[data-message-author-role="assistant"]', '[data-message-author-role="user"]', ".markdown"]

    def get_conversation_title(self) -> str | None:
        return self.page.text_of(["#history a[data-active] span"])

    def get_model_name(self) -> str | None:
        found = self.page.evaluate(js.render(_MODEL_LABEL_JS))
        if not isinstance(found, dict):
            return None
        label = found.get("label")
        if isinstance(label, str):
            m = _MODEL_LABEL.search(label)
            if m:
                return m.group(1).strip() or None
        text = found.get("text")
        return (text.strip() or None) if isinstance(text, str) else None

    def is_new_conversation(self) -> bool:
        return urlparse(self.page.get_url()).path in ("", "/")
