"""Nested-container traversal over a pierced CDP DOM snapshot.

`DOM.getDocument(depth=-1, pierce=True)` returns the whole tree, including
shadow roots (`shadowRoots`) and same-origin frame documents (`contentDocument`).
Searches here walk that tree iteratively. Depth counts *container boundaries*
(shadow root or frame document entered), capped by MAX_TRAVERSAL_DEPTH. A total
node budget guards against pathological pages.

Malformed nodes and predicate errors are treated as "not a match".
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from typing import Any

_LOGGER = logging.getLogger("chat_helpers.dom_tree")

MAX_TRAVERSAL_DEPTH = 15
MAX_SCAN_NODES = 50_000

ELEMENT_NODE = 1
TEXT_NODE = 3


class DomNode:
    """Read-only view over one CDP DOM node dict."""

    __slots__ = ("raw",)

    def __init__(self, raw: dict[str, Any]) -> None:
        self.raw = raw if isinstance(raw, dict) else {}

    def __repr__(self) -> str:
        return f"DomNode({self.tag or self.raw.get('nodeName')!r})"

    @property
    def node_type(self) -> int:
        value = self.raw.get("nodeType")
        return value if isinstance(value, int) else 0

    @property
    def node_id(self) -> int | None:
        value = self.raw.get("nodeId")
        return value if isinstance(value, int) else None

    @property
    def backend_node_id(self) -> int | None:
        value = self.raw.get("backendNodeId")
        return value if isinstance(value, int) else None

    @property
    def is_element(self) -> bool:
        return self.node_type == ELEMENT_NODE

    @property
    def tag(self) -> str:
        if not self.is_element:
            return ""
        name = self.raw.get("localName") or self.raw.get("nodeName") or ""
        return str(name).lower()

    @property
    def attributes(self) -> dict[str, str]:
        flat = self.raw.get("attributes")
        if not isinstance(flat, list):
            return {}
        return {str(flat[i]): str(flat[i + 1]) for i in range(0, len(flat) - 1, 2)}

    def attr(self, name: str) -> str | None:
        return self.attributes.get(name)

    @property
    def classes(self) -> frozenset[str]:
        return frozenset((self.attr("class") or "").split())

    @property
    def text(self) -> str:
        if self.node_type != TEXT_NODE:
            return ""
        value = self.raw.get("nodeValue")
        return value if isinstance(value, str) else ""

    def _wrap(self, key: str) -> list[DomNode]:
        items = self.raw.get(key)
        if not isinstance(items, list):
            return []
        return [DomNode(item) for item in items if isinstance(item, dict)]

    @property
    def children(self) -> list[DomNode]:
        return self._wrap("children")

    @property
    def shadow_roots(self) -> list[DomNode]:
        return self._wrap("shadowRoots")

    @property
    def content_document(self) -> DomNode | None:
        doc = self.raw.get("contentDocument")
        return DomNode(doc) if isinstance(doc, dict) else None

    def matches(self, *, tag: str | None = None, classes: tuple[str, ...] = ()) -> bool:
        if not self.is_element:
            return False
        if tag is not None and self.tag != tag.lower():
            return False
        return all(c in self.classes for c in classes)


def iter_nested(
    root: DomNode,
    *,
    max_depth: int = MAX_TRAVERSAL_DEPTH,
    prune: Callable[[DomNode], bool] | None = None,
    pierce: bool = True,
) -> Iterator[tuple[DomNode, int]]:
    """Yield (node, container_depth) in document order, shadow content first.

    Nodes for which `prune` returns True are skipped together with their subtree.
    With `pierce=False` only the light DOM below `root` is walked.
    """
    stack: list[tuple[DomNode, int]] = [(root, 0)]
    scanned = 0
    while stack:
        node, depth = stack.pop()
        scanned += 1
        if scanned > MAX_SCAN_NODES:
            _LOGGER.debug("dom traversal node budget exhausted")
            return
        if prune is not None and prune(node):
            continue
        yield node, depth

        nested: list[tuple[DomNode, int]] = []
        if pierce and depth < max_depth:
            nested.extend((sr, depth + 1) for sr in node.shadow_roots)
        nested.extend((child, depth) for child in node.children)
        doc = node.content_document if pierce else None
        if doc is not None and depth < max_depth:
            nested.append((doc, depth + 1))
        stack.extend(reversed(nested))


def find_nested(
    root: DomNode | None,
    predicate: Callable[[DomNode], bool],
    *,
    max_depth: int = MAX_TRAVERSAL_DEPTH,
) -> DomNode | None:
    """First node (document order) satisfying `predicate`, or None."""
    if root is None:
        return None
    for node, _depth in iter_nested(root, max_depth=max_depth):
        try:
            if predicate(node):
                return node
        except Exception:
            continue
    return None


def find_all_nested(
    root: DomNode | None,
    predicate: Callable[[DomNode], bool],
    *,
    max_depth: int = MAX_TRAVERSAL_DEPTH,
    pierce: bool = True,
) -> list[DomNode]:
    if root is None:
        return []
    out: list[DomNode] = []
    for node, _depth in iter_nested(root, max_depth=max_depth, pierce=pierce):
        try:
            if predicate(node):
                out.append(node)
        except Exception:
            continue
    return out


_BLOCK_TAGS = frozenset({"p", "div", "li", "br", "pre", "h1", "h2", "h3", "h4", "h5", "h6", "tr"})
_SKIP_TAGS = frozenset({"script", "style", "template"})


def text_content(root: DomNode | None, *, max_depth: int = MAX_TRAVERSAL_DEPTH) -> str:
    """Visible-ish text of a subtree (shadow content included), block elements on new lines."""
    if root is None:
        return ""
    parts: list[str] = []
    for node, _depth in iter_nested(root, max_depth=max_depth, prune=lambda n: n.tag in _SKIP_TAGS):
        if node.tag in _BLOCK_TAGS and parts and not parts[-1].endswith("\n"):
            parts.append("\n")
        if node.node_type == TEXT_NODE:
            parts.append(node.text)
    lines = [line.strip() for line in "".join(parts).splitlines()]
    return "\n".join(line for line in lines if line)


__all__ = [
    "MAX_SCAN_NODES",
    "MAX_TRAVERSAL_DEPTH",
    "DomNode",
    "find_all_nested",
    "find_nested",
    "iter_nested",
    "text_content",
]
