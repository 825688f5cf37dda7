from __future__ import annotations

from typing import Any

from chat_helpers.core.bridge import CrossSandboxBridge, SettleEnvelope, StartEnvelope
from chat_helpers.core.config import SettingsSnapshot
from chat_helpers.core.loop import ManualLoop
from chat_helpers.core.reactors.scroll_guard import SCROLL_UP_THRESHOLD_PX, ScrollPositionGuard


class FakePage:
    def __init__(self) -> None:
        self.lock_calls: list[bool] = []
        self.fail = False
        self.targets: dict[str, Any] = {}

    def set_scroll_lock(self, enabled: bool, **targets: Any) -> bool:
        if self.fail:
            return False
        self.lock_calls.append(enabled)
        self.targets = targets
        return True


def _guard(**overrides):  # noqa: ANN003
    loop = ManualLoop()
    bridge = CrossSandboxBridge()
    page = FakePage()
    settings = SettingsSnapshot(prevent_auto_scroll=True).replace(**overrides)
    guard = ScrollPositionGuard(bridge=bridge, loop=loop, page=page, settings=settings)  # type: ignore[arg-type]
    guard.start()
    return guard, loop, bridge, page


def _post(bridge: CrossSandboxBridge, loop: ManualLoop, envelope) -> None:  # noqa: ANN001
    bridge.post(envelope)
    loop.run_until_idle()


START = StartEnvelope(url="u", timestamp=0, transport="stream")
SETTLE = SettleEnvelope(url="u", timestamp=1)


def test_lock_engages_only_while_generating_and_scrolled_up() -> None:
    guard, loop, bridge, page = _guard()
    guard.on_wheel({"kind": "wheel", "deltaY": -30})
    assert guard.intent.user_scrolled_up is True
    assert page.lock_calls == []

    _post(bridge, loop, START)
    assert guard.lock_engaged is True
    assert page.lock_calls == [True]

    _post(bridge, loop, SETTLE)
    assert guard.lock_engaged is False
    assert guard.intent.user_scrolled_up is False
    assert page.lock_calls == [True, False]


def test_scroll_distance_threshold() -> None:
    guard, loop, bridge, page = _guard()
    _post(bridge, loop, START)

    guard.on_scroll({"kind": "scroll", "distanceFromBottom": SCROLL_UP_THRESHOLD_PX})
    assert guard.lock_engaged is False
    guard.on_scroll({"kind": "scroll", "distanceFromBottom": SCROLL_UP_THRESHOLD_PX + 1})
    assert guard.lock_engaged is True

    # Back at the bottom: follow the stream again.
    guard.on_scroll({"kind": "scroll", "distanceFromBottom": 0})
    assert guard.lock_engaged is False
    assert page.lock_calls == [True, False]


def test_downward_wheel_does_not_clear_flag() -> None:
    guard, loop, bridge, _page = _guard()
    _post(bridge, loop, START)
    guard.on_wheel({"deltaY": -10})
    guard.on_wheel({"deltaY": 40})
    assert guard.lock_engaged is True


def test_setting_off_never_locks_and_releases_when_turned_off() -> None:
    guard, loop, bridge, page = _guard(prevent_auto_scroll=False)
    _post(bridge, loop, START)
    guard.on_wheel({"deltaY": -10})
    assert guard.should_lock() is False
    assert page.lock_calls == []

    guard.update_settings(SettingsSnapshot(prevent_auto_scroll=True))
    assert guard.lock_engaged is True
    guard.update_settings(SettingsSnapshot(prevent_auto_scroll=False))
    assert guard.lock_engaged is False


def test_failed_toggle_is_retried_on_next_change() -> None:
    guard, loop, bridge, page = _guard()
    page.fail = True
    _post(bridge, loop, START)
    guard.on_wheel({"deltaY": -10})
    assert guard.lock_engaged is False

    page.fail = False
    guard.on_scroll({"distanceFromBottom": 500})
    assert guard.lock_engaged is False
    guard.update_settings(SettingsSnapshot(prevent_auto_scroll=True))
    assert guard.lock_engaged is True


def test_stop_releases_lock_and_unsubscribes() -> None:
    guard, loop, bridge, page = _guard()
    _post(bridge, loop, START)
    guard.on_wheel({"deltaY": -10})
    guard.stop()
    assert page.lock_calls[-1] is False
    assert guard.lock_engaged is False

    _post(bridge, loop, SETTLE)
    assert guard.intent.is_generating is True


def test_lock_carries_rollback_targets() -> None:
    loop = ManualLoop()
    bridge = CrossSandboxBridge()
    page = FakePage()
    guard = ScrollPositionGuard(
        bridge=bridge,
        loop=loop,
        page=page,  # type: ignore[arg-type]
        settings=SettingsSnapshot(prevent_auto_scroll=True),
        container_selectors=[".chat-mode-scroller"],
        content_selectors=[".message-content"],
    )
    guard.start()
    guard.on_wheel({"kind": "wheel", "deltaY": -30})
    _post(bridge, loop, START)
    assert page.lock_calls == [True]
    assert page.targets == {"containers": [".chat-mode-scroller"], "content": [".message-content"]}
