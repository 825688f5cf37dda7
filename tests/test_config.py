from __future__ import annotations

import json

import pytest

from chat_helpers.core.config import (
    DEFAULT_PRIVACY_TITLE,
    DEFAULT_TITLE_FORMAT,
    HelperConfig,
    SettingsSnapshot,
    load_settings,
)
from chat_helpers.core.errors import HelperError


def test_helper_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAT_HELPER_CDP_PORT", "99999")
    monkeypatch.setenv("CHAT_HELPER_CDP_TIMEOUT", "nope")
    monkeypatch.setenv("CHAT_HELPER_ADAPTER", "  ChatGPT ")
    monkeypatch.setenv("CHAT_HELPER_URL_PATTERNS", "conversation, ,backend-api")
    monkeypatch.setenv("CHAT_HELPER_TAB_MATCH", "chatgpt.com")
    monkeypatch.delenv("CHAT_HELPER_SETTINGS", raising=False)

    cfg = HelperConfig.from_env()
    assert cfg.cdp_port == 65535
    assert cfg.cdp_timeout == 5.0
    assert cfg.adapter == "chatgpt"
    assert cfg.url_patterns == ["conversation", "backend-api"]
    assert cfg.tab_match == "chatgpt.com"
    assert cfg.settings_path is None


def test_helper_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CHAT_HELPER_CDP_HOST", "CHAT_HELPER_CDP_PORT", "CHAT_HELPER_ADAPTER", "CHAT_HELPER_URL_PATTERNS"):
        monkeypatch.delenv(name, raising=False)
    cfg = HelperConfig.from_env()
    assert (cfg.cdp_host, cfg.cdp_port, cfg.adapter) == ("127.0.0.1", 9222, "auto")
    assert cfg.url_patterns == []


def test_settings_defaults() -> None:
    s = SettingsSnapshot()
    assert s.tab_enabled and s.auto_rename and s.show_notification
    assert s.title_format == DEFAULT_TITLE_FORMAT
    assert s.privacy_title == DEFAULT_PRIVACY_TITLE
    assert s.max_retries == 3
    assert s.policy_retry_enabled is False
    assert s.prevent_auto_scroll is False


def test_settings_from_mapping_accepts_camel_case_and_clamps() -> None:
    s = SettingsSnapshot.from_mapping(
        {
            "tabEnabled": "off",
            "renameIntervalS": 0,
            "notificationVolume": 4,
            "maxRetries": "5",
            "titleFormat": "{status}{title}",
            "policy_retry_enabled": True,
            "somethingElse": 1,
            "privacyTitle": 42,
        }
    )
    assert s.tab_enabled is False
    assert s.rename_interval_s == 1
    assert s.notification_volume == 1.0
    assert s.max_retries == 5
    assert s.title_format == "{status}{title}"
    assert s.policy_retry_enabled is True
    assert s.privacy_title == DEFAULT_PRIVACY_TITLE
    assert SettingsSnapshot.from_mapping(None) == SettingsSnapshot()


def test_monitor_needed_tracks_consumers() -> None:
    off = SettingsSnapshot(tab_enabled=False)
    assert off.monitor_needed() is False
    assert off.replace(policy_retry_enabled=True).monitor_needed() is True
    assert off.replace(prevent_auto_scroll=True).monitor_needed() is True
    assert SettingsSnapshot().monitor_needed() is True


def test_load_settings(tmp_path) -> None:  # noqa: ANN001
    assert load_settings(None) == SettingsSnapshot()
    assert load_settings(str(tmp_path / "missing.json")) == SettingsSnapshot()

    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"privacyMode": True, "silenceThresholdMs": 1500}), encoding="utf-8")
    s = load_settings(str(path))
    assert s.privacy_mode is True
    assert s.silence_threshold_ms == 1500

    path.write_text("[1, 2]", encoding="utf-8")
    assert load_settings(str(path)) == SettingsSnapshot()


def test_load_settings_rejects_malformed_json(tmp_path) -> None:  # noqa: ANN001
    path = tmp_path / "settings.json"
    path.write_text("{\"privacyMode\": tru", encoding="utf-8")
    with pytest.raises(HelperError, match="settings.json"):
        load_settings(str(path))
