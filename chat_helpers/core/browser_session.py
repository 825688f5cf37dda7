from __future__ import annotations

from contextlib import suppress
from typing import Any, Protocol

from .errors import CdpError


class _Connection(Protocol):
    timeout: float

    def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]: ...

    def close(self) -> None: ...


class BrowserSession:
    """
    High-level session for the chat tab.

    Wraps a CdpConnection with the handful of operations the reactors need.
    Use as context manager for automatic cleanup.
    """

    def __init__(self, connection: _Connection, tab_id: str, tab_url: str = ""):
        self.conn = connection
        self.tab_id = tab_id
        self.tab_url = tab_url
        self._page_enabled = False

    def __enter__(self) -> BrowserSession:
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        with suppress(Exception):
            self.conn.close()

    def enable_page(self) -> None:
        if self._page_enabled:
            return
        self.conn.send("Page.enable", {})
        self._page_enabled = True

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        """Evaluate JavaScript and return its JSON value (undefined/null -> None)."""
        old_timeout: float | None = None
        if timeout is not None:
            old_timeout = float(self.conn.timeout)
            self.conn.timeout = float(timeout)
        try:
            result = self.conn.send(
                "Runtime.evaluate",
                {
                    "expression": expression,
                    "returnByValue": True,
                    "awaitPromise": True,
                },
            )
        finally:
            if old_timeout is not None:
                self.conn.timeout = old_timeout

        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            text = details.get("text") if isinstance(details, dict) else None
            raise CdpError(f"JS exception: {text or details}")
        if "result" not in result:
            return None
        value = result["result"]
        if isinstance(value, dict) and value.get("type") == "undefined":
            return None
        if isinstance(value, dict) and value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value", value) if isinstance(value, dict) else value

    def add_script_on_new_document(self, source: str) -> str | None:
        """Register a script for future documents and run it in the current one."""
        self.enable_page()
        res = self.conn.send("Page.addScriptToEvaluateOnNewDocument", {"source": source})
        self.eval_js(source)
        ident = res.get("identifier")
        return ident if isinstance(ident, str) else None

    # ─────────────────────────────────────────────────────────────────────────
    # DOM & window
    # ─────────────────────────────────────────────────────────────────────────

    def get_document(self) -> dict[str, Any] | None:
        """Full DOM tree, piercing shadow roots and same-origin frames."""
        res = self.conn.send("DOM.getDocument", {"depth": -1, "pierce": True})
        root = res.get("root")
        return root if isinstance(root, dict) else None

    def get_title(self) -> str:
        return self.eval_js("document.title") or ""

    def bring_to_front(self) -> None:
        self.conn.send("Page.bringToFront", {})

    def grant_permissions(self, permissions: list[str], origin: str | None = None) -> None:
        params: dict[str, Any] = {"permissions": list(permissions)}
        if origin:
            params["origin"] = origin
        self.conn.send("Browser.grantPermissions", params)


__all__ = ["BrowserSession"]
