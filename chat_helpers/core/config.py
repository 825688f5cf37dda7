from __future__ import annotations

import dataclasses
import json
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import HelperError

DEFAULT_TITLE_FORMAT = "{status}{title}->{model}"
DEFAULT_PRIVACY_TITLE = "Google"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _bool_env(name: str, *, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() not in {"0", "false", "no", "off"}


def _int_env(name: str, *, default: int, lo: int, hi: int) -> int:
    try:
        val = int(float(os.environ.get(name) or default))
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _float_env(name: str, *, default: float, lo: float, hi: float) -> float:
    try:
        val = float(os.environ.get(name) or default)
    except Exception:
        val = default
    return max(lo, min(val, hi))


def _split_csv(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@dataclass
class HelperConfig:
    """Process-level configuration (where to attach, what to load)."""

    cdp_host: str = "127.0.0.1"
    cdp_port: int = 9222
    cdp_timeout: float = 5.0
    tab_match: str = ""
    adapter: str = "auto"
    settings_path: str | None = None
    url_patterns: list[str] = field(default_factory=list)
    log_level: str = "INFO"

    @staticmethod
    def normalize_adapter(raw: str | None) -> str:
        name = (raw or "").strip().lower()
        return name or "auto"

    @classmethod
    def from_env(cls) -> HelperConfig:
        settings_raw = os.environ.get("CHAT_HELPER_SETTINGS", "").strip()
        return cls(
            cdp_host=os.environ.get("CHAT_HELPER_CDP_HOST", "127.0.0.1").strip() or "127.0.0.1",
            cdp_port=_int_env("CHAT_HELPER_CDP_PORT", default=9222, lo=1, hi=65535),
            cdp_timeout=_float_env("CHAT_HELPER_CDP_TIMEOUT", default=5.0, lo=0.5, hi=60.0),
            tab_match=os.environ.get("CHAT_HELPER_TAB_MATCH", "").strip(),
            adapter=cls.normalize_adapter(os.environ.get("CHAT_HELPER_ADAPTER")),
            settings_path=expand_path(settings_raw) if settings_raw else None,
            url_patterns=_split_csv(os.environ.get("CHAT_HELPER_URL_PATTERNS")),
            log_level=(os.environ.get("CHAT_HELPER_LOG_LEVEL") or "INFO").strip().upper(),
        )


def _camel_to_snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", str(key)).lower()


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_int(value: Any, default: int, lo: int, hi: int) -> int:
    try:
        if value is None or isinstance(value, bool):
            raise ValueError
        n = int(float(value))
    except Exception:
        n = default
    return max(lo, min(n, hi))


def _coerce_float(value: Any, default: float, lo: float, hi: float) -> float:
    try:
        if value is None or isinstance(value, bool):
            raise ValueError
        n = float(value)
    except Exception:
        n = default
    return max(lo, min(n, hi))


# Numeric bounds per field: (lo, hi).
_INT_BOUNDS: dict[str, tuple[int, int]] = {
    "silence_threshold_ms": (0, 120_000),
    "rename_interval_s": (1, 3600),
    "max_retries": (0, 100),
    "retry_budget_max_entries": (0, 1_000_000),
}
_FLOAT_BOUNDS: dict[str, tuple[float, float]] = {
    "notification_volume": (0.1, 1.0),
}


@dataclass(frozen=True, slots=True)
class SettingsSnapshot:
    """Feature toggles, thresholds and templates consumed by the reactors.

    Immutable: a settings change produces a new snapshot, handed to
    `HelperRuntime.update_settings`.
    """

    # Monitoring
    tab_enabled: bool = True
    silence_threshold_ms: int = 0  # 0 = use the adapter's threshold
    validate_with_dom: bool = False

    # Tab title / notification
    auto_rename: bool = True
    rename_interval_s: int = 3
    show_status: bool = True
    title_format: str = DEFAULT_TITLE_FORMAT
    show_notification: bool = True
    notification_sound: bool = True
    notification_volume: float = 0.6
    notify_when_focused: bool = False
    auto_focus: bool = True
    privacy_mode: bool = False
    privacy_title: str = DEFAULT_PRIVACY_TITLE

    # Policy retry
    policy_retry_enabled: bool = False
    max_retries: int = 3
    retry_budget_max_entries: int = 0  # 0 = unbounded

    # Scroll
    prevent_auto_scroll: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> SettingsSnapshot:
        """Build a snapshot from camelCase or snake_case keys; unknown keys are ignored."""
        defaults = cls()
        if not isinstance(data, Mapping):
            return defaults
        known = {f.name: f for f in dataclasses.fields(cls)}
        values: dict[str, Any] = {}
        for raw_key, raw_value in data.items():
            key = _camel_to_snake(raw_key)
            if key not in known:
                continue
            default = getattr(defaults, key)
            if isinstance(default, bool):
                values[key] = _coerce_bool(raw_value, default)
            elif isinstance(default, int):
                lo, hi = _INT_BOUNDS.get(key, (0, 1_000_000))
                values[key] = _coerce_int(raw_value, default, lo, hi)
            elif isinstance(default, float):
                lo_f, hi_f = _FLOAT_BOUNDS.get(key, (0.0, 1.0))
                values[key] = _coerce_float(raw_value, default, lo_f, hi_f)
            elif isinstance(raw_value, str):
                values[key] = raw_value
        return cls(**values)

    def replace(self, **changes: Any) -> SettingsSnapshot:
        return dataclasses.replace(self, **changes)

    def monitor_needed(self) -> bool:
        """True when any reactor consumes bridge events."""
        return self.tab_enabled or self.policy_retry_enabled or self.prevent_auto_scroll


def load_settings(path: str | None) -> SettingsSnapshot:
    """Load a settings snapshot from a JSON file (missing path -> defaults)."""
    if not path:
        return SettingsSnapshot()
    p = Path(path).expanduser()
    if not p.exists():
        return SettingsSnapshot()
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HelperError(f"cannot read settings file {p}: {exc}") from exc
    return SettingsSnapshot.from_mapping(data if isinstance(data, dict) else None)


__all__ = [
    "DEFAULT_PRIVACY_TITLE",
    "DEFAULT_TITLE_FORMAT",
    "HelperConfig",
    "SettingsSnapshot",
    "expand_path",
    "load_settings",
]
