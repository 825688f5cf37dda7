"""Live page actions for the logic sandbox.

Every method touches the browser and absorbs transport/DOM faults locally:
failures are logged and reported as a falsy result, never raised to reactors.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from ..errors import CdpError
from . import js
from .dom_tree import DomNode

_LOGGER = logging.getLogger("chat_helpers.page")


class _Session(Protocol):
    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any: ...

    def get_document(self) -> dict[str, Any] | None: ...

    def add_script_on_new_document(self, source: str) -> str | None: ...

    def bring_to_front(self) -> None: ...

    def grant_permissions(self, permissions: list[str], origin: str | None = None) -> None: ...


@dataclass(frozen=True, slots=True)
class ElementRef:
    """Re-resolvable pointer to a live element (deep selector + visible index)."""

    selector: str
    index: int = 0
    tag_name: str = ""


class PageDriver:
    def __init__(self, session: _Session) -> None:
        self.session = session
        self._notifications_granted = False
        self._installed: set[str] = set()

    def _eval(self, expression: str, *, what: str) -> Any:
        try:
            return self.session.eval_js(expression)
        except CdpError as exc:
            _LOGGER.warning("page %s failed: %s", what, exc)
            return None

    def evaluate(self, expression: str) -> Any:
        """Run an adapter-provided snippet; faults come back as None."""
        return self._eval(expression, what="evaluate")

    # Queries -----------------------------------------------------------------

    def query_deep(self, selectors: list[str], *, visible_only: bool = False) -> ElementRef | None:
        if not selectors:
            return None
        found = self._eval(
            js.render(js.FIND_FIRST_JS, selectors=list(selectors), visible_only=visible_only),
            what="query",
        )
        if not isinstance(found, dict) or not isinstance(found.get("selector"), str):
            return None
        return ElementRef(
            selector=found["selector"], index=int(found.get("index") or 0), tag_name=str(found.get("tagName") or "")
        )

    def any_visible(self, selectors: list[str]) -> bool:
        if not selectors:
            return False
        return bool(self._eval(js.render(js.ANY_VISIBLE_JS, selectors=list(selectors)), what="visibility query"))

    def snapshot_document(self) -> DomNode | None:
        try:
            root = self.session.get_document()
        except CdpError as exc:
            _LOGGER.warning("DOM snapshot failed: %s", exc)
            return None
        return DomNode(root) if root else None

    def is_user_away(self) -> bool:
        away = self._eval(js.USER_AWAY_JS, what="visibility check")
        # Unknown counts as away: better one extra notification than a missed one.
        return True if away is None else bool(away)

    def get_title(self) -> str:
        return str(self._eval("document.title", what="title read") or "")

    def get_url(self) -> str:
        return str(self._eval("location.href", what="url read") or "")

    def text_of(self, selectors: list[str]) -> str | None:
        """Trimmed text of the first non-empty deep match."""
        if not selectors:
            return None
        text = self._eval(js.render(js.FIRST_TEXT_JS, selectors=list(selectors)), what="text query")
        return text if isinstance(text, str) and text else None

    def scroll_metrics(self, selectors: list[str]) -> dict[str, Any] | None:
        res = self._eval(js.render(js.SCROLL_METRICS_JS, selectors=list(selectors)), what="scroll metrics")
        return res if isinstance(res, dict) else None

    # Element actions ---------------------------------------------------------

    def _act(self, ref: ElementRef, action: str, text: str = "") -> bool:
        res = self._eval(
            js.render(js.ELEMENT_ACTION_JS, selector=ref.selector, index=ref.index, action=action, text=text),
            what=action,
        )
        if isinstance(res, dict) and res.get("ok"):
            return True
        reason = res.get("reason") if isinstance(res, dict) else "no result"
        _LOGGER.debug("element %s failed selector=%s reason=%s", action, ref.selector, reason)
        return False

    def click(self, ref: ElementRef) -> bool:
        return self._act(ref, "click")

    def focus(self, ref: ElementRef) -> bool:
        return self._act(ref, "focus")

    def press_enter(self, ref: ElementRef) -> bool:
        """Synthetic keydown/keypress/keyup Enter dispatched on the element itself."""
        return self._act(ref, "enter")

    def clear(self, ref: ElementRef) -> bool:
        return self._act(ref, "clear")

    def insert_text(self, ref: ElementRef, text: str) -> bool:
        return self._act(ref, "insert", text)

    # Window-level side effects -------------------------------------------------

    def set_title(self, title: str) -> bool:
        return self._eval(js.render(js.SET_TITLE_JS, title=title), what="title write") is not None

    def show_toast(self, message: str, duration_ms: int = 3000) -> bool:
        return bool(self._eval(js.render(js.TOAST_JS, message=message, duration=int(duration_ms)), what="toast"))

    def show_notification(self, title: str, body: str) -> bool:
        if not self._notifications_granted:
            try:
                self.session.grant_permissions(["notifications"])
                self._notifications_granted = True
            except CdpError as exc:
                _LOGGER.debug("notification permission grant failed: %s", exc)
        return bool(self._eval(js.render(js.NOTIFY_JS, title=title, body=body), what="notification"))

    def play_sound(self, volume: float) -> bool:
        vol = max(0.1, min(float(volume), 1.0))
        return bool(self._eval(js.render(js.SOUND_JS, volume=vol), what="sound"))

    def bring_to_front(self) -> bool:
        try:
            self.session.bring_to_front()
            return True
        except CdpError as exc:
            _LOGGER.warning("focus request failed: %s", exc)
            return False

    # Page scripts --------------------------------------------------------------

    def install_script(self, key: str, source: str) -> bool:
        """Install a page script once (current document and future navigations)."""
        if key in self._installed:
            return True
        try:
            self.session.add_script_on_new_document(source)
        except CdpError as exc:
            _LOGGER.warning("page script %s install failed: %s", key, exc)
            return False
        self._installed.add(key)
        return True

    def set_scroll_lock(
        self,
        enabled: bool,
        *,
        containers: Sequence[str] = (),
        content: Sequence[str] = (),
    ) -> bool:
        """Toggle the page-side scroll lock; `containers` and `content` steer its rollback layer."""
        if not self.install_script("scroll_lock", js.SCROLL_LOCK_SCRIPT):
            return False
        config = {"enabled": bool(enabled), "containers": list(containers), "content": list(content)}
        return bool(self._eval(js.render(js.SET_SCROLL_LOCK_JS, config=config), what="scroll lock toggle"))


__all__ = ["ElementRef", "PageDriver"]
