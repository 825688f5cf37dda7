"""
Chat helper entry point.

Attaches to one chat tab of a Chromium started with --remote-debugging-port,
runs the helper runtime until SIGINT/SIGTERM, then shuts it down cleanly.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .adapters import adapter_registry
from .adapters.universal import UniversalAdapter
from .config import HelperConfig, load_settings
from .errors import HelperError
from .http_client import list_page_targets, pick_target
from .runtime import HelperRuntime

logger = logging.getLogger("chat_helpers")

__all__ = ["build_parser", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chat-helper", description="Completion notifications for AI chat tabs.")
    parser.add_argument("--host", help="DevTools host (CHAT_HELPER_CDP_HOST)")
    parser.add_argument("--port", type=int, help="DevTools port (CHAT_HELPER_CDP_PORT)")
    parser.add_argument("--tab-match", help="URL substring selecting the chat tab (CHAT_HELPER_TAB_MATCH)")
    parser.add_argument("--adapter", help=f"auto or one of: {', '.join(adapter_registry.available())}")
    parser.add_argument("--settings", help="JSON settings file (CHAT_HELPER_SETTINGS)")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def _apply_args(config: HelperConfig, args: argparse.Namespace) -> HelperConfig:
    if args.host:
        config.cdp_host = args.host
    if args.port:
        config.cdp_port = int(args.port)
    if args.tab_match:
        config.tab_match = args.tab_match
    if args.adapter:
        config.adapter = HelperConfig.normalize_adapter(args.adapter)
    if args.settings:
        config.settings_path = args.settings
    if args.verbose:
        config.log_level = "DEBUG"
    return config


def create_runtime(config: HelperConfig) -> HelperRuntime:
    targets = list_page_targets(config.cdp_host, config.cdp_port, timeout=config.cdp_timeout)
    target = pick_target(targets, config.tab_match)
    if target is None:
        raise HelperError(f"no page target matches {config.tab_match!r} on {config.cdp_host}:{config.cdp_port}")
    url = str(target.get("url") or "")

    if config.adapter == "universal" or (config.adapter == "auto" and config.url_patterns):
        adapter = UniversalAdapter(url_patterns=config.url_patterns)
    else:
        selection = adapter_registry.select(name=config.adapter, url=url)
        if selection is None:
            raise HelperError(f"unknown adapter {config.adapter!r}; available: {adapter_registry.available()}")
        adapter = selection.adapter
        logger.info("adapter %s selected by %s", adapter.name, selection.matched_by)

    return HelperRuntime(
        ws_url=str(target["webSocketDebuggerUrl"]),
        adapter=adapter,
        settings=load_settings(config.settings_path),
        tab_id=str(target.get("id") or ""),
        tab_url=url,
        cdp_timeout=config.cdp_timeout,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = _apply_args(HelperConfig.from_env(), args)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        runtime = create_runtime(config)
    except HelperError as exc:
        logger.error("%s", exc)
        return 1

    stop = threading.Event()

    def _on_signal(signum, _frame) -> None:
        logger.info("signal %s received, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        runtime.start()
    except HelperError as exc:
        logger.error("failed to attach: %s", exc)
        runtime.stop()
        return 1
    try:
        while not stop.wait(0.5):
            pass
    finally:
        runtime.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
