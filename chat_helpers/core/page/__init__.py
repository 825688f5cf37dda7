"""Page layer: live actions, page-side scripts, DOM snapshot traversal, user signals."""

from __future__ import annotations

from .dom_tree import MAX_TRAVERSAL_DEPTH, DomNode, find_all_nested, find_nested, iter_nested, text_content
from .driver import ElementRef, PageDriver
from .signals import PageSignalRouter, parse_signal, signal_setup_commands

__all__ = [
    "MAX_TRAVERSAL_DEPTH",
    "DomNode",
    "ElementRef",
    "PageDriver",
    "PageSignalRouter",
    "find_all_nested",
    "find_nested",
    "iter_nested",
    "parse_signal",
    "signal_setup_commands",
    "text_content",
]
