"""
Site adapters: the per-site knowledge (selectors, turn structure, prompt I/O)
the reactors consume through `SiteAdapter`.
"""

from __future__ import annotations

from .base import SiteAdapter
from .registry import AdapterRegistry, AdapterSelection, adapter_registry

__all__ = ["AdapterRegistry", "AdapterSelection", "SiteAdapter", "adapter_registry"]
