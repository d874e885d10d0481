"""Domain-specific error types for studio repository operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Supported error codes exposed by repository operations and tools."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_PATH = "INVALID_PATH"
    FILE_SYSTEM_LOOP = "FILE_SYSTEM_LOOP"
    INDEX_CONFLICT = "INDEX_CONFLICT"
    IO_FAILURE = "IO_FAILURE"
    GIT_FAILURE = "GIT_FAILURE"
    NO_CURRENT_USER = "NO_CURRENT_USER"
    CONFIG_LOAD_FAILURE = "CONFIG_LOAD_FAILURE"
    UPGRADE_FAILURE = "UPGRADE_FAILURE"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    INVALID_INPUT = "INVALID_INPUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Failures that boolean/optional operations report as False/None instead of raising.
RECOVERABLE_CODES = frozenset({ErrorCode.IO_FAILURE, ErrorCode.GIT_FAILURE})


@dataclass
class StudioError(Exception):
    """Structured exception carrying a stable error contract."""

    code: ErrorCode
    message: str
    suggestion: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    @property
    def recoverable(self) -> bool:
        return self.code in RECOVERABLE_CODES

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.code.value,
            "message": self.message,
            "suggestion": self.suggestion or "",
            "details": self.details,
        }
