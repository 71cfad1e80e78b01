"""Error taxonomy shared by agents, the memory store and the dispatcher.

- ProtocolError: malformed or unaddressable message (answered as an envelope)
- UnknownActionError: task action the agent does not implement
- InvalidInputError: task input missing a required field
- AgentError: base for failures agents answer as error envelopes
- StorageError: memory store / manifest I/O failure
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict


class BrandHiveError(Exception):
    """Base exception for all BrandHive errors."""

    def __init__(
        self,
        detail: str,
        error_code: str = "INTERNAL_ERROR",
        retryable: bool = False,
    ):
        self.detail = detail
        self.error_code = error_code
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.detail,
            "retryable": self.retryable,
        }


class AgentError(BrandHiveError):
    """Failure an agent answers with an error envelope instead of raising."""


class ProtocolError(BrandHiveError):
    """Raised when a message is malformed or cannot be addressed."""

    def __init__(self, detail: str, error_code: str = "INVALID_MESSAGE"):
        super().__init__(detail=detail, error_code=error_code, retryable=False)


class UnknownActionError(AgentError):
    """Raised when an agent receives a task action it does not implement."""

    def __init__(self, action: str):
        super().__init__(
            detail=f"Unknown: {action}",
            error_code="UNKNOWN_ACTION",
            retryable=False,
        )
        self.action = action


class InvalidInputError(AgentError):
    """Raised when a task is missing required input."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="INVALID_INPUT", retryable=False)


class StorageError(BrandHiveError):
    """Raised when reading or writing persisted state fails."""

    def __init__(self, detail: str, original_error: Exception | None = None):
        super().__init__(
            detail=f"Storage error: {detail}",
            error_code="STORAGE_ERROR",
            retryable=True,
        )
        self.original_error = original_error
