"""Automatic resubmission after a content-policy block.

On every Settle (after a short grace delay) the latest conversation turn is
searched for the adapter's "blocked" marker. A blocked prompt is resubmitted up
to `max_retries` times; the budget is keyed by the SHA-256 of the prompt text,
lives for the process only and is never reset once exhausted.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..adapters.base import SiteAdapter
from ..bridge import CrossSandboxBridge, Envelope, SettleEnvelope, Subscription
from ..config import SettingsSnapshot
from ..loop import Loop, TimerHandle
from ..page.dom_tree import MAX_TRAVERSAL_DEPTH, DomNode, find_nested
from ..page.driver import PageDriver

_LOGGER = logging.getLogger("chat_helpers.policy_retry")

GRACE_DELAY_MS = 500
CLEAR_DELAY_MS = 100
SUBMIT_DELAY_MS = 300
TOAST_DURATION_MS = 3000


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class RetryRecord:
    fingerprint: str
    attempts: int = 0


class RetryBudget:
    """Attempts per prompt fingerprint; unbounded unless `max_entries` is set (LRU)."""

    def __init__(self, max_entries: int | None = None) -> None:
        self._records: OrderedDict[str, RetryRecord] = OrderedDict()
        self.max_entries = max_entries

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, fp: object) -> bool:
        return fp in self._records

    def get(self, fp: str) -> RetryRecord | None:
        record = self._records.get(fp)
        if record is not None:
            self._records.move_to_end(fp)
        return record

    def attempts(self, fp: str) -> int:
        record = self.get(fp)
        return record.attempts if record is not None else 0

    def record_attempt(self, fp: str) -> RetryRecord:
        record = self.get(fp)
        if record is None:
            record = RetryRecord(fingerprint=fp)
            self._records[fp] = record
        record.attempts += 1
        self._evict()
        return record

    def _evict(self) -> None:
        if not self.max_entries:
            return
        while len(self._records) > self.max_entries:
            evicted, _ = self._records.popitem(last=False)
            _LOGGER.debug("retry budget evicted %s", evicted[:12])


class PolicyRetryCoordinator:
    def __init__(
        self,
        *,
        bridge: CrossSandboxBridge,
        loop: Loop,
        adapter: SiteAdapter,
        page: PageDriver,
        settings: SettingsSnapshot,
        budget: RetryBudget | None = None,
    ) -> None:
        self._bridge = bridge
        self._loop = loop
        self._adapter = adapter
        self._page = page
        self._settings = settings
        self.budget = budget or RetryBudget(settings.retry_budget_max_entries or None)
        self._subscription: Subscription | None = None
        self._handles: set[TimerHandle] = set()

    @property
    def enabled(self) -> bool:
        return self._settings.policy_retry_enabled and self._adapter.supports_policy_retry()

    def start(self) -> None:
        if self._subscription is None:
            self._subscription = self._bridge.subscribe(self._loop, self.handle_envelope)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

    def update_settings(self, settings: SettingsSnapshot) -> None:
        self._settings = settings
        self.budget.max_entries = settings.retry_budget_max_entries or None

    # Scheduling -------------------------------------------------------------------

    def _later(self, delay_ms: int, callback: Callable[..., None], *args: Any) -> None:
        handle: TimerHandle | None = None

        def _run() -> None:
            self._handles.discard(handle)
            callback(*args)

        handle = self._loop.call_later(delay_ms, _run)
        self._handles.add(handle)

    def handle_envelope(self, envelope: Envelope) -> None:
        if isinstance(envelope, SettleEnvelope) and self.enabled:
            self._later(GRACE_DELAY_MS, self.check_and_retry)

    # Detection ---------------------------------------------------------------------

    def _is_marker(self, node: DomNode) -> bool:
        return node.tag in self._adapter.blocked_marker_tags

    def find_blocked_turn(self) -> DomNode | None:
        """Latest turn when it contains a blocked marker, else None (faults count as not found)."""
        document = self._page.snapshot_document()
        if document is None:
            return None
        try:
            turn = self._adapter.find_latest_turn(document)
            if turn is None:
                return None
            marker = find_nested(turn, self._is_marker, max_depth=MAX_TRAVERSAL_DEPTH)
        except Exception:
            _LOGGER.debug("blocked-marker search failed", exc_info=True)
            return None
        return turn if marker is not None else None

    def check_and_retry(self) -> str:
        """One detection pass; returns the outcome (for logs and tests)."""
        if not self.enabled:
            return "disabled"
        turn = self.find_blocked_turn()
        if turn is None:
            return "not_blocked"

        text = self._adapter.extract_user_query_text(turn)
        if not text:
            _LOGGER.warning("blocked answer found but the user prompt is empty")
            return "no_prompt"

        fp = fingerprint(text)
        max_retries = self._settings.max_retries
        if self.budget.attempts(fp) >= max_retries:
            _LOGGER.info("policy retry budget exhausted fp=%s", fp[:12])
            self._page.show_toast("Policy retry limit reached", TOAST_DURATION_MS)
            return "exhausted"

        record = self.budget.record_attempt(fp)
        _LOGGER.info("policy retry %d/%d fp=%s", record.attempts, max_retries, fp[:12])
        self._page.show_toast(
            f"Policy block detected, retrying ({record.attempts}/{max_retries})", TOAST_DURATION_MS
        )
        self._adapter.clear_textarea()
        self._later(CLEAR_DELAY_MS, self._insert, text)
        return "retrying"

    # Resubmission --------------------------------------------------------------------

    def _insert(self, text: str) -> None:
        if not self._adapter.insert_prompt(text):
            _LOGGER.error("policy retry: failed to insert prompt")
            return
        self._later(SUBMIT_DELAY_MS, self._submit)

    def _submit(self) -> None:
        button = self._page.query_deep(self._adapter.get_submit_button_selectors())
        if button is not None and self._page.click(button):
            return
        textarea = self._adapter.find_textarea()
        if textarea is not None:
            self._page.press_enter(textarea)
            return
        _LOGGER.error("policy retry: no submit control or input to press Enter on")


__all__ = [
    "CLEAR_DELAY_MS",
    "GRACE_DELAY_MS",
    "SUBMIT_DELAY_MS",
    "PolicyRetryCoordinator",
    "RetryBudget",
    "RetryRecord",
    "fingerprint",
]
