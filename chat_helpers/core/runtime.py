"""Wires the two sandboxes together for one chat tab.

Host side: host loop + host event bus (Network domain) + MonitorHost.
Logic side: logic loop + logic event bus (page signals) + the three reactors.
The only thing crossing between them is the bridge.

Each side gets its own CDP command connection, so no websocket is ever used
from two threads.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .adapters.base import SiteAdapter
from .bridge import CrossSandboxBridge, InitEnvelope
from .browser_session import BrowserSession
from .config import SettingsSnapshot
from .detector import MonitorConfig, SettleContext
from .event_bus import CdpEventBus
from .loop import Loop, TimerLoop
from .monitor_host import MonitorHost
from .page.driver import PageDriver
from .page.signals import PageSignalRouter, signal_setup_commands
from .reactors import GenerationStateMachine, PolicyRetryCoordinator, ScrollPositionGuard
from .session_cdp import CdpConnection

_LOGGER = logging.getLogger("chat_helpers.runtime")

Connect = Callable[[str, float], CdpConnection]


def _default_connect(url: str, timeout: float) -> CdpConnection:
    return CdpConnection(url, timeout=timeout)


def _call_in(loop: Loop, fn: Callable[[], Any], timeout: float = 2.0) -> None:
    """Run `fn` on the loop's thread and wait for it (inline when the loop is not running)."""
    if not isinstance(loop, TimerLoop) or not loop.is_running or loop.in_loop_thread():
        fn()
        return
    done = threading.Event()

    def _run() -> None:
        try:
            fn()
        finally:
            done.set()

    loop.call_soon(_run)
    if not done.wait(timeout):
        _LOGGER.warning("timed out waiting for %s on %s", getattr(fn, "__name__", fn), loop.name)


class HelperRuntime:
    def __init__(
        self,
        *,
        ws_url: str,
        adapter: SiteAdapter,
        settings: SettingsSnapshot,
        tab_id: str = "",
        tab_url: str = "",
        cdp_timeout: float = 5.0,
        connect: Connect | None = None,
        host_loop: Loop | None = None,
        logic_loop: Loop | None = None,
        page: PageDriver | None = None,
        host_page: PageDriver | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.tab_id = tab_id
        self.tab_url = tab_url
        self.settings = settings
        self.adapter = adapter
        self._timeout = cdp_timeout
        self._connect = connect or _default_connect

        self._owned_loops: list[TimerLoop] = []
        self.host_loop = host_loop or self._own_loop("chat-helper-host")
        self.logic_loop = logic_loop or self._own_loop("chat-helper-logic")

        self.bridge = CrossSandboxBridge()
        self.host_bus = CdpEventBus(
            ws_url=ws_url, name="chat-helper-host-events", timeout=cdp_timeout, connect=self._connect
        )
        self.logic_bus = CdpEventBus(
            ws_url=ws_url,
            name="chat-helper-logic-events",
            domains=("Page.enable", "Runtime.enable"),
            setup=signal_setup_commands(adapter.get_scroll_container_selectors()),
            timeout=cdp_timeout,
            connect=self._connect,
        )
        self.host = MonitorHost(
            bridge=self.bridge, loop=self.host_loop, bus=self.host_bus, dom_validation=self.validate_settle
        )
        self.signals = PageSignalRouter(self.logic_bus, self.logic_loop)

        self._sessions: list[BrowserSession] = []
        self.page = page
        self.host_page = host_page
        self._host_adapter: SiteAdapter | None = None

        self.generation: GenerationStateMachine | None = None
        self.policy_retry: PolicyRetryCoordinator | None = None
        self.scroll_guard: ScrollPositionGuard | None = None
        self._started = False

    def _own_loop(self, name: str) -> TimerLoop:
        loop = TimerLoop(name)
        self._owned_loops.append(loop)
        return loop

    def _open_page(self) -> PageDriver:
        session = BrowserSession(self._connect(self.ws_url, self._timeout), self.tab_id, self.tab_url)
        self._sessions.append(session)
        return PageDriver(session)

    @property
    def reactors(self) -> list[Any]:
        return [r for r in (self.generation, self.policy_retry, self.scroll_guard) if r is not None]

    # Lifecycle -----------------------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        if self.page is None:
            self.page = self._open_page()
        if self.host_page is None:
            self.host_page = self._open_page()
        self.adapter.bind(self.page)
        # Same selectors, separate connection: the validation hook runs on the host loop.
        self._host_adapter = copy.copy(self.adapter).bind(self.host_page)

        for loop in self._owned_loops:
            loop.start()
        self.host.start()
        self.host_bus.start()
        self.logic_bus.start()
        self.signals.start()

        common: dict[str, Any] = {"bridge": self.bridge, "loop": self.logic_loop, "page": self.page}
        self.generation = GenerationStateMachine(
            adapter=self.adapter, settings=self.settings, signals=self.signals, **common
        )
        self.policy_retry = PolicyRetryCoordinator(adapter=self.adapter, settings=self.settings, **common)
        self.scroll_guard = ScrollPositionGuard(
            settings=self.settings,
            signals=self.signals,
            container_selectors=self.adapter.get_scroll_container_selectors(),
            content_selectors=self.adapter.get_chat_content_selectors(),
            **common,
        )
        self.logic_loop.call_soon(self._start_reactors)
        _LOGGER.info("runtime started adapter=%s tab=%s", self.adapter.name, self.tab_url or self.tab_id)

    def _start_reactors(self) -> None:
        for reactor in self.reactors:
            reactor.start()
        self.init_monitor()

    def _stop_reactors(self) -> None:
        for reactor in self.reactors:
            reactor.stop()

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        _call_in(self.logic_loop, self._stop_reactors)
        _call_in(self.host_loop, self.host.stop)
        self.signals.stop()
        self.host_bus.stop()
        self.logic_bus.stop()
        for loop in self._owned_loops:
            loop.stop()
        for session in self._sessions:
            with suppress(Exception):
                session.close()
        self._sessions.clear()
        _LOGGER.info("runtime stopped")

    # Monitor ---------------------------------------------------------------------

    def monitor_config(self) -> MonitorConfig | None:
        config = self.adapter.get_network_monitor_config()
        if config is None or not config.url_patterns:
            return None
        if self.settings.silence_threshold_ms > 0:
            return MonitorConfig.create(config.url_patterns, self.settings.silence_threshold_ms)
        return config

    def init_monitor(self) -> bool:
        """(Re)start the host detector when any reactor needs it; stop it otherwise."""
        config = self.monitor_config() if self.settings.monitor_needed() else None
        if config is None:
            self.host_loop.call_soon(self.host.reset)
            return False
        self.bridge.post(
            InitEnvelope(
                url_patterns=tuple(sorted(config.url_patterns)),
                silence_threshold_ms=config.silence_threshold_ms,
            )
        )
        return True

    def validate_settle(self, ctx: SettleContext) -> bool:  # noqa: ARG002
        if not self.settings.validate_with_dom or self._host_adapter is None:
            return True
        return not self._host_adapter.is_generating()

    # Settings --------------------------------------------------------------------

    def update_settings(self, settings: SettingsSnapshot) -> None:
        """Apply a new snapshot on the logic loop (thread-safe)."""
        self.logic_loop.call_soon(self._apply_settings, settings)

    def toggle_privacy_mode(self) -> None:
        self.update_settings(self.settings.replace(privacy_mode=not self.settings.privacy_mode))

    def _apply_settings(self, settings: SettingsSnapshot) -> None:
        old = self.settings
        self.settings = settings
        for reactor in self.reactors:
            reactor.update_settings(settings)
        before = (old.monitor_needed(), old.silence_threshold_ms)
        if before != (settings.monitor_needed(), settings.silence_threshold_ms):
            _LOGGER.info("monitor settings changed; reinitialising")
            self.init_monitor()


__all__ = ["HelperRuntime"]
