from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

from .errors import CdpError


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from a DevTools HTTP endpoint (/json/list, /json/version)."""
    req = Request(url, headers={"User-Agent": "chat-helpers/1.0"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (TimeoutError, URLError, OSError) as exc:
        raise CdpError(str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise CdpError(f"Invalid JSON from {url}: {exc}") from exc


def list_page_targets(host: str, port: int, *, timeout: float = 2.0) -> list[dict[str, Any]]:
    """Return DevTools page targets (type == "page") with a debugger URL."""
    data = http_get_json(f"http://{host}:{int(port)}/json/list", timeout=timeout)
    if not isinstance(data, list):
        return []
    out: list[dict[str, Any]] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        if item.get("type") != "page":
            continue
        if not isinstance(item.get("webSocketDebuggerUrl"), str):
            continue
        out.append(item)
    return out


def pick_target(targets: list[dict[str, Any]], match: str = "") -> dict[str, Any] | None:
    """Pick the first target whose URL contains `match` (or the first one)."""
    needle = (match or "").strip()
    for target in targets:
        url = str(target.get("url") or "")
        if not needle or needle in url:
            return target
    return None


__all__ = ["http_get_json", "list_page_targets", "pick_target"]
