from __future__ import annotations

from collections.abc import Callable

import pytest

from chat_helpers.core.page.dom_tree import DomNode


def _el(tag: str, *children: dict, cls: str = "", shadow: list[dict] | None = None) -> dict:
    node: dict = {
        "nodeType": 1,
        "localName": tag,
        "nodeName": tag.upper(),
        "attributes": ["class", cls] if cls else [],
        "children": list(children),
    }
    if shadow is not None:
        node["shadowRoots"] = shadow
    return node


def _txt(value: str) -> dict:
    return {"nodeType": 3, "nodeName": "#text", "nodeValue": value}


def _root(*children: dict) -> dict:
    return {"nodeType": 11, "nodeName": "#document-fragment", "children": list(children)}


def _turn(prompt: str, *, blocked: bool, last: bool, extra: tuple[dict, ...] = ()) -> dict:
    question = _el(
        "div",
        _el("ucs-fast-markdown", shadow=[_root(_el("div", _el("p", _txt(prompt)), cls="markdown-document"))]),
        cls="question-block",
    )
    answer = _el("ucs-banned-answer", _txt("This answer was blocked.")) if blocked else _el("p", _txt("Sure."))
    summary = _el("ucs-summary", shadow=[_root(answer)])
    return _el("div", question, summary, *extra, cls="turn last" if last else "turn")


@pytest.fixture
def gemini_document() -> Callable[..., DomNode]:
    """Build a pierced Gemini Enterprise DOM: [(prompt, blocked), ...] turns, last one marked.

    `embedded_turn` puts a component whose own shadow root holds a `.turn.last`
    (with that prompt) inside the first turn.
    """

    def build(turns: list[tuple[str, bool]], *, mark_last: bool = True, embedded_turn: str | None = None) -> DomNode:
        extra: tuple[dict, ...] = ()
        if embedded_turn is not None:
            extra = (_el("ucs-card", shadow=[_root(_turn(embedded_turn, blocked=True, last=True))]),)
        rendered = [
            _turn(prompt, blocked=blocked, last=mark_last and i == len(turns) - 1, extra=extra if i == 0 else ())
            for i, (prompt, blocked) in enumerate(turns)
        ]
        conversation = _el("ucs-conversation", shadow=[_root(_el("div", *rendered, cls="main"))])
        app = _el("ucs-standalone-app", shadow=[_root(_el("div", conversation, cls="chat-mode-scroller"))])
        body = _el("body", app)
        return DomNode({"nodeType": 9, "nodeName": "#document", "children": [_el("html", body)]})

    return build
