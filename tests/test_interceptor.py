from __future__ import annotations

import threading
import time
from typing import Any

from chat_helpers.core.detector import ActivityQuiescenceDetector, MonitorConfig
from chat_helpers.core.errors import CdpError
from chat_helpers.core.event_bus import BUS_RECONNECTED, CdpEventBus
from chat_helpers.core.interceptor import NetworkInterceptor, transport_for
from chat_helpers.core.loop import ManualLoop


def _request(request_id: str, url: str, rtype: str = "Fetch") -> dict:
    return {
        "method": "Network.requestWillBeSent",
        "params": {"requestId": request_id, "type": rtype, "request": {"url": url, "method": "POST"}},
    }


def _finished(request_id: str, failed: bool = False) -> dict:
    if failed:
        return {"method": "Network.loadingFailed", "params": {"requestId": request_id, "errorText": "net::ERR_ABORTED"}}
    return {"method": "Network.loadingFinished", "params": {"requestId": request_id}}


def _setup(threshold: int = 500):
    loop = ManualLoop()
    bus = CdpEventBus(ws_url="ws://127.0.0.1:9222/devtools/page/x", name="test-bus")
    events: list[tuple[str, str | None]] = []
    det = ActivityQuiescenceDetector(
        loop,
        on_start=lambda ev: events.append(("start", ev.transport)),
        on_settle=lambda ev: events.append(("settle", None)),
    )
    det.start(MonitorConfig.create(["chat/completions"], threshold))
    icpt = NetworkInterceptor(bus, loop, det)
    return loop, bus, det, icpt, events


def test_transport_mapping() -> None:
    assert transport_for("Fetch") == "stream"
    assert transport_for("EventSource") == "stream"
    assert transport_for("XHR") == "xhr"
    assert transport_for("Document") is None
    assert transport_for(None) is None


def test_start_stop_restore_listener_list() -> None:
    _loop, bus, _det, icpt, _events = _setup()
    other = lambda _ev: None  # noqa: E731
    bus.add_listener(other)
    before = bus.listeners()

    icpt.start()
    icpt.start()
    assert len(bus.listeners()) == len(before) + 1
    icpt.stop()
    icpt.stop()
    assert bus.listeners() == before


def test_events_are_handled_on_the_loop_not_the_reader() -> None:
    loop, bus, det, icpt, events = _setup()
    icpt.start()
    bus.dispatch(_request("1", "https://api/chat/completions"))
    assert det.active_count == 0
    loop.run_until_idle()
    assert det.active_count == 1
    assert events == [("start", "stream")]


def test_fetch_and_xhr_complete_on_finish_or_failure() -> None:
    loop, bus, det, icpt, events = _setup(threshold=200)
    icpt.start()
    bus.dispatch(_request("1", "https://api/chat/completions", "XHR"))
    bus.dispatch(_request("2", "https://api/chat/completions", "Fetch"))
    loop.run_until_idle()
    assert det.active_count == 2
    assert icpt.in_flight == 2

    bus.dispatch(_finished("1", failed=True))
    bus.dispatch(_finished("2"))
    loop.run_until_idle()
    assert det.active_count == 0
    loop.advance(200)
    assert events == [("start", "xhr"), ("settle", None)]


def test_ignores_documents_redirect_hops_and_unknown_ids() -> None:
    loop, bus, det, icpt, _events = _setup()
    icpt.start()
    bus.dispatch(_request("doc", "https://site/chat/completions", "Document"))
    bus.dispatch(_request("1", "https://api/chat/completions"))
    bus.dispatch(_request("1", "https://api2/chat/completions"))
    bus.dispatch(_request("2", "https://cdn/app.js"))
    bus.dispatch(_finished("nope"))
    loop.run_until_idle()
    assert det.active_count == 1
    assert icpt.in_flight == 1


def test_stopped_interceptor_does_not_track() -> None:
    loop, bus, det, icpt, _events = _setup()
    icpt.start()
    bus.dispatch(_request("1", "https://api/chat/completions"))
    icpt.stop()
    loop.run_until_idle()
    bus.dispatch(_request("2", "https://api/chat/completions"))
    loop.run_until_idle()
    assert det.active_count == 0


def test_reconnect_releases_requests_whose_finish_was_lost() -> None:
    loop, bus, det, icpt, events = _setup(threshold=300)
    icpt.start()
    bus.dispatch(_request("1", "https://api/chat/completions"))
    loop.run_until_idle()
    assert det.active_count == 1

    # The socket dropped before loadingFinished(1) arrived.
    bus.dispatch({"method": BUS_RECONNECTED, "params": {}})
    bus.dispatch(_request("2", "https://api/chat/completions"))
    bus.dispatch(_finished("2"))
    loop.run_until_idle()
    assert icpt.in_flight == 0
    assert det.active_count == 0

    loop.advance(300)
    assert events == [("start", "stream"), ("settle", None)]


def test_reconnect_without_outstanding_requests_is_a_no_op() -> None:
    loop, bus, det, icpt, events = _setup()
    icpt.start()
    bus.dispatch({"method": BUS_RECONNECTED, "params": {}})
    loop.run_until_idle()
    assert icpt.release_all() == 0
    loop.advance(1000)
    assert events == []
    assert det.active_count == 0


class ScriptedConn:
    def __init__(self, events: list[dict[str, Any]], *, drop: bool) -> None:
        self.events = list(events)
        self.drop = drop

    def send_many(self, commands: list[dict[str, Any]], *, stop_on_error: bool = True) -> list[dict[str, Any]]:  # noqa: ARG002
        return [{} for _ in commands]

    def recv_event(self, timeout: float = 0.5) -> dict[str, Any] | None:
        if self.events:
            return self.events.pop(0)
        if self.drop:
            raise CdpError("socket closed")
        time.sleep(min(timeout, 0.05))
        return None

    def close(self) -> None:
        pass


def test_bus_announces_reconnect_before_new_events() -> None:
    conns = [
        ScriptedConn([_request("1", "https://api/chat/completions")], drop=True),
        ScriptedConn([_request("2", "https://api/chat/completions"), _finished("2")], drop=False),
    ]
    bus = CdpEventBus(
        ws_url="ws://x",
        name="test-bus",
        connect=lambda _url, _t: conns.pop(0) if conns else ScriptedConn([], drop=False),  # type: ignore[arg-type,return-value]
    )
    seen: list[str] = []
    done = threading.Event()

    def listener(event: dict[str, Any]) -> None:
        seen.append(event["method"])
        if event["method"] == "Network.loadingFinished":
            done.set()

    bus.add_listener(listener)
    bus.start()
    try:
        assert done.wait(5.0)
    finally:
        bus.stop()
    assert seen == [
        "Network.requestWillBeSent",
        BUS_RECONNECTED,
        "Network.requestWillBeSent",
        "Network.loadingFinished",
    ]
