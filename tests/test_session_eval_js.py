from __future__ import annotations

from typing import Any

import pytest

from chat_helpers.core.browser_session import BrowserSession
from chat_helpers.core.errors import CdpError
from chat_helpers.core.page.driver import ElementRef, PageDriver


def test_eval_js_awaits_and_returns_by_value() -> None:
    calls: list[tuple[str, dict[str, Any] | None]] = []

    class DummyConn:
        timeout = 5.0

        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
            calls.append((method, params))
            if method == "Runtime.evaluate":
                return {"result": {"type": "number", "value": 123}}
            return {}

    session = BrowserSession(DummyConn(), tab_id="t1")
    assert session.eval_js("1 + 2") == 123

    eval_calls = [(m, p) for (m, p) in calls if m == "Runtime.evaluate"]
    assert len(eval_calls) == 1
    params = eval_calls[0][1] or {}
    assert params.get("awaitPromise") is True
    assert params.get("returnByValue") is True


@pytest.mark.parametrize("result", [{"type": "undefined"}, {"type": "object", "subtype": "null"}])
def test_eval_js_maps_undefined_and_null_to_none(result: dict[str, Any]) -> None:
    class DummyConn:
        timeout = 5.0

        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:  # noqa: ARG002
            return {"result": result}

    session = BrowserSession(DummyConn(), tab_id="t1")
    assert session.eval_js("globalThis.__nope") is None


def test_eval_js_raises_on_page_exception_and_restores_timeout() -> None:
    class DummyConn:
        timeout = 5.0

        def __init__(self) -> None:
            self.seen_timeout: float | None = None

        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:  # noqa: ARG002
            self.seen_timeout = self.timeout
            return {"exceptionDetails": {"text": "Uncaught ReferenceError"}}

    conn = DummyConn()
    session = BrowserSession(conn, tab_id="t1")
    with pytest.raises(CdpError, match="ReferenceError"):
        session.eval_js("nope()", timeout=1.5)
    assert conn.seen_timeout == 1.5
    assert conn.timeout == 5.0


def test_get_document_pierces_shadow_roots() -> None:
    calls: list[tuple[str, dict[str, Any] | None]] = []

    class DummyConn:
        timeout = 5.0

        def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
            calls.append((method, params))
            return {"root": {"nodeType": 9, "nodeName": "#document"}}

    session = BrowserSession(DummyConn(), tab_id="t1")
    assert session.get_document() == {"nodeType": 9, "nodeName": "#document"}
    assert calls == [("DOM.getDocument", {"depth": -1, "pierce": True})]


class DummySession:
    def __init__(self, value: Any = None, *, fail: bool = False) -> None:
        self.value = value
        self.fail = fail
        self.expressions: list[str] = []
        self.scripts: list[str] = []
        self.granted: list[list[str]] = []

    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:  # noqa: ARG002
        self.expressions.append(expression)
        if self.fail:
            raise CdpError("socket closed")
        return self.value

    def get_document(self) -> dict[str, Any] | None:
        if self.fail:
            raise CdpError("socket closed")
        return {"nodeType": 9, "nodeName": "#document", "children": []}

    def add_script_on_new_document(self, source: str) -> str | None:
        self.scripts.append(source)
        return "1"

    def bring_to_front(self) -> None:
        if self.fail:
            raise CdpError("socket closed")

    def grant_permissions(self, permissions: list[str], origin: str | None = None) -> None:  # noqa: ARG002
        self.granted.append(list(permissions))


def test_driver_absorbs_transport_faults() -> None:
    page = PageDriver(DummySession(fail=True))
    assert page.evaluate("1") is None
    assert page.query_deep(["textarea"]) is None
    assert page.any_visible(["button"]) is False
    assert page.snapshot_document() is None
    assert page.get_title() == ""
    assert page.click(ElementRef(selector="button")) is False
    assert page.bring_to_front() is False
    # Unknown visibility counts as away.
    assert page.is_user_away() is True


def test_query_deep_builds_element_ref() -> None:
    session = DummySession({"selector": "div[contenteditable]", "index": 2, "tagName": "DIV"})
    page = PageDriver(session)
    ref = page.query_deep(["div[contenteditable]", "textarea"], visible_only=True)
    assert ref == ElementRef(selector="div[contenteditable]", index=2, tag_name="DIV")
    assert '"div[contenteditable]"' in session.expressions[-1]
    assert "__SELECTORS__" not in session.expressions[-1]
    assert page.query_deep([]) is None


def test_element_actions_report_ok_flag() -> None:
    page = PageDriver(DummySession({"ok": True}))
    ref = ElementRef(selector="textarea")
    assert page.insert_text(ref, "hello")
    assert page.press_enter(ref)

    failing = PageDriver(DummySession({"ok": False, "reason": "not found"}))
    assert failing.clear(ref) is False


def test_install_script_runs_once_and_notifications_grant_once() -> None:
    session = DummySession(True)
    page = PageDriver(session)
    assert page.set_scroll_lock(True)
    assert page.set_scroll_lock(False)
    assert len(session.scripts) == 1

    page.show_notification("done", "body")
    page.show_notification("done", "body")
    assert session.granted == [["notifications"]]


def test_sound_volume_is_clamped() -> None:
    session = DummySession(True)
    page = PageDriver(session)
    page.play_sound(5)
    assert "gain.gain.value = 1.0;" in session.expressions[-1]
    page.play_sound(0)
    assert "gain.gain.value = 0.1;" in session.expressions[-1]


def test_scroll_lock_script_rolls_back_unwrapped_jumps() -> None:
    session = DummySession(True)
    page = PageDriver(session)
    assert page.set_scroll_lock(True, containers=[".chat-mode-scroller"], content=[".message-content"])

    script = session.scripts[0]
    assert "new MutationObserver" in script
    assert "rollback(100, false)" in script
    assert "setInterval(() => rollback(200, true), 500)" in script
    assert "__chatHelperScrollLockArm" in script

    toggle = session.expressions[-1]
    assert '"enabled": true' in toggle
    assert '"containers": [".chat-mode-scroller"]' in toggle
    assert '"content": [".message-content"]' in toggle
    assert "__CONFIG__" not in toggle

    page.set_scroll_lock(False)
    assert '"enabled": false' in session.expressions[-1]
    assert len(session.scripts) == 1
