from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .base import SiteAdapter

_LOGGER = logging.getLogger("chat_helpers.adapters")

AdapterFactory = Callable[[], SiteAdapter]


@dataclass
class AdapterSelection:
    adapter: SiteAdapter
    matched_by: str  # "name" | "url"


class AdapterRegistry:
    """Registry of site adapters (factories, so each runtime gets a fresh instance)."""

    def __init__(self) -> None:
        self._factories: dict[str, AdapterFactory] = {}

    def register(self, name: str, factory: AdapterFactory) -> None:
        self._factories[str(name)] = factory

    def available(self) -> list[str]:
        return sorted(self._factories.keys())

    def create(self, name: str) -> SiteAdapter | None:
        factory = self._factories.get(str(name or "").strip().lower())
        return factory() if factory is not None else None

    def select(self, *, name: str, url: str) -> AdapterSelection | None:
        wanted = str(name or "").strip().lower()
        if wanted and wanted != "auto":
            ad = self.create(wanted)
            return AdapterSelection(adapter=ad, matched_by="name") if ad is not None else None

        u = str(url or "").strip()
        fallback: SiteAdapter | None = None
        for key, factory in self._factories.items():
            ad = factory()
            if key == "universal":
                # Matches everything; only used when nothing specific does.
                fallback = ad
                continue
            try:
                if u and ad.match(url=u):
                    return AdapterSelection(adapter=ad, matched_by="url")
            except Exception:
                _LOGGER.debug("adapter %s match failed", key, exc_info=True)
                continue
        return AdapterSelection(adapter=fallback, matched_by="url") if fallback is not None else None


adapter_registry = AdapterRegistry()

# Register built-in adapters.
try:
    from .chatgpt import ChatGPTAdapter

    adapter_registry.register(ChatGPTAdapter.name, ChatGPTAdapter)
except Exception:
    # Adapter errors must never break package import.
    _LOGGER.warning("chatgpt adapter unavailable", exc_info=True)

try:
    from .gemini_enterprise import GeminiEnterpriseAdapter

    adapter_registry.register(GeminiEnterpriseAdapter.name, GeminiEnterpriseAdapter)
except Exception:
    _LOGGER.warning("gemini_enterprise adapter unavailable", exc_info=True)

try:
    from .universal import UniversalAdapter

    adapter_registry.register(UniversalAdapter.name, UniversalAdapter)
except Exception:
    _LOGGER.warning("universal adapter unavailable", exc_info=True)
