from __future__ import annotations

from typing import Any


class HelperError(Exception):
    """Base class for chat-helper errors."""


class CdpError(HelperError):
    """CDP transport or protocol failure (socket, timeout, error reply)."""


class AdapterError(HelperError):
    """Site adapter operation failed (structured, log-friendly)."""

    def __init__(
        self,
        *,
        adapter: str,
        op: str,
        reason: str,
        suggestion: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(reason)
        self.adapter = adapter
        self.op = op
        self.reason = reason
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        msg = f"[{self.adapter}] {self.op} failed: {self.reason}"
        if self.suggestion:
            msg += f". Suggestion: {self.suggestion}"
        return msg

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "adapter": self.adapter,
            "op": self.op,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


__all__ = ["AdapterError", "CdpError", "HelperError"]
