from __future__ import annotations

from typing import Any

import pytest

from chat_helpers.core.adapters import adapter_registry
from chat_helpers.core.adapters.chatgpt import ChatGPTAdapter
from chat_helpers.core.adapters.gemini_enterprise import GeminiEnterpriseAdapter
from chat_helpers.core.adapters.universal import UniversalAdapter
from chat_helpers.core.errors import AdapterError


class FakePage:
    def __init__(self, *, title: str = "", url: str = "", evaluated: Any = None, text: str | None = None) -> None:
        self.title = title
        self.url = url
        self.evaluated = evaluated
        self.text = text
        self.visible = False
        self.text_queries: list[list[str]] = []

    def get_title(self) -> str:
        return self.title

    def get_url(self) -> str:
        return self.url

    def evaluate(self, expression: str) -> Any:  # noqa: ARG002
        return self.evaluated

    def text_of(self, selectors: list[str]) -> str | None:
        self.text_queries.append(list(selectors))
        return self.text

    def any_visible(self, selectors: list[str]) -> bool:  # noqa: ARG002
        return self.visible


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://chatgpt.com/c/123", "chatgpt"),
        ("https://business.gemini.google/home/cid/x/r/session/42", "gemini_enterprise"),
        ("https://example.org/chat", "universal"),
        ("", "universal"),
    ],
)
def test_registry_selects_by_url(url: str, expected: str) -> None:
    selection = adapter_registry.select(name="auto", url=url)
    assert selection is not None
    assert selection.adapter.name == expected
    assert selection.matched_by == "url"


def test_registry_selects_by_name_and_rejects_unknown() -> None:
    selection = adapter_registry.select(name="Gemini_Enterprise", url="https://chatgpt.com/")
    assert selection is not None
    assert isinstance(selection.adapter, GeminiEnterpriseAdapter)
    assert selection.matched_by == "name"
    assert adapter_registry.select(name="claude", url="https://chatgpt.com/") is None
    assert set(adapter_registry.available()) >= {"chatgpt", "gemini_enterprise", "universal"}


def test_registry_returns_fresh_instances() -> None:
    a = adapter_registry.create("chatgpt")
    b = adapter_registry.create("chatgpt")
    assert a is not None and b is not None and a is not b


def test_unbound_adapter_raises_structured_error() -> None:
    with pytest.raises(AdapterError) as excinfo:
        ChatGPTAdapter().is_generating()
    err = excinfo.value
    assert err.to_dict()["adapter"] == "chatgpt"
    assert err.to_dict()["op"] == "page"
    assert "bind" in str(err)


def test_monitor_configs() -> None:
    assert ChatGPTAdapter().get_network_monitor_config().url_patterns == frozenset({"conversation", "backend-api"})
    ge = GeminiEnterpriseAdapter().get_network_monitor_config()
    assert ge.url_patterns == frozenset({"widgetStreamAssist"})
    assert ge.silence_threshold_ms == 3000
    assert UniversalAdapter().get_network_monitor_config() is None
    assert UniversalAdapter(url_patterns=["api/chat"], silence_threshold_ms=900).get_network_monitor_config().matches(
        "https://x/api/chat?stream=1"
    )


def test_session_name_from_document_title() -> None:
    adapter = UniversalAdapter().bind(FakePage(title="Trip plan - Big Chat - Site"))  # type: ignore[arg-type]
    assert adapter.get_session_name() == "Trip plan - Big Chat"
    assert adapter.get_conversation_title() == "Trip plan - Big Chat"
    assert UniversalAdapter().bind(FakePage(title="Solo")).get_session_name() == "Solo"  # type: ignore[arg-type]
    assert UniversalAdapter().bind(FakePage(title="  ")).get_session_name() is None  # type: ignore[arg-type]


def test_is_generating_uses_generating_selectors() -> None:
    page = FakePage()
    adapter = GeminiEnterpriseAdapter().bind(page)  # type: ignore[arg-type]
    assert adapter.is_generating() is False
    page.visible = True
    assert adapter.is_generating() is True


def test_chatgpt_model_name_and_new_conversation() -> None:
    page = FakePage(url="https://chatgpt.com/", evaluated={"label": "Model selector, current model is GPT-4o", "text": "4o"})
    adapter = ChatGPTAdapter().bind(page)  # type: ignore[arg-type]
    assert adapter.get_model_name() == "GPT-4o"
    assert adapter.is_new_conversation() is True

    page.evaluated = {"label": "", "text": " o3 "}
    page.url = "https://chatgpt.com/c/abc"
    assert adapter.get_model_name() == "o3"
    assert adapter.is_new_conversation() is False

    page.evaluated = None
    assert adapter.get_model_name() is None


def test_gemini_enterprise_live_helpers() -> None:
    page = FakePage(url="https://business.gemini.google/home/cid/x", evaluated="Quarterly report", text="Gemini 2.5")
    adapter = GeminiEnterpriseAdapter().bind(page)  # type: ignore[arg-type]
    assert adapter.get_conversation_title() == "Quarterly report"
    assert adapter.get_model_name() == "Gemini 2.5"
    assert adapter.is_new_conversation() is True
    page.url = "https://business.gemini.google/home/cid/x/r/session/42"
    assert adapter.is_new_conversation() is False
    assert adapter.get_scroll_container_selectors()[0] == ".chat-mode-scroller"
    assert "ucs-conversation-message" in adapter.get_chat_content_selectors()
    assert UniversalAdapter().get_chat_content_selectors() == []
    assert adapter.supports_policy_retry() is True
    assert ChatGPTAdapter().supports_policy_retry() is False


def test_gemini_enterprise_latest_turn_and_prompt(gemini_document) -> None:  # noqa: ANN001
    adapter = GeminiEnterpriseAdapter()
    doc = gemini_document([("first prompt", False), ("second prompt", True)])
    turn = adapter.find_latest_turn(doc)
    assert turn is not None
    assert "last" in turn.classes
    assert adapter.extract_user_query_text(turn) == "second prompt"

    unmarked = gemini_document([("a", False), ("b", False)], mark_last=False)
    assert adapter.extract_user_query_text(adapter.find_latest_turn(unmarked)) == "b"

    assert adapter.find_latest_turn(gemini_document([])) is None


def test_gemini_enterprise_latest_turn_ignores_turns_of_nested_components(gemini_document) -> None:  # noqa: ANN001
    adapter = GeminiEnterpriseAdapter()
    doc = gemini_document([("outer one", False), ("outer two", False)], mark_last=False, embedded_turn="inner")
    turn = adapter.find_latest_turn(doc)
    assert turn is not None
    assert adapter.extract_user_query_text(turn) == "outer two"
