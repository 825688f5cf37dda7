"""Reactors: independent bridge consumers, each with private state."""

from __future__ import annotations

from .generation import GenerationState, GenerationStateMachine
from .policy_retry import PolicyRetryCoordinator, RetryBudget, RetryRecord, fingerprint
from .scroll_guard import ScrollIntent, ScrollPositionGuard

__all__ = [
    "GenerationState",
    "GenerationStateMachine",
    "PolicyRetryCoordinator",
    "RetryBudget",
    "RetryRecord",
    "ScrollIntent",
    "ScrollPositionGuard",
    "fingerprint",
]
