"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PERMISSION_DENIED = "PERMISSION_DENIED"
PRECONDITION_FAILED = "PRECONDITION_FAILED"
ITEM_RECALLED = "ITEM_RECALLED"
VALIDATION_FAILED = "VALIDATION_FAILED"
STORE_ERROR = "STORE_ERROR"
NOT_FOUND = "NOT_FOUND"


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def permission_denied(message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=PERMISSION_DENIED, http_status=403, message=message, details=details)


def precondition_failed(message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=PRECONDITION_FAILED, http_status=409, message=message, details=details)


def validation_failed(message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=VALIDATION_FAILED, http_status=422, message=message, details=details)


def item_recalled(message: str, details: dict[str, Any] | None = None) -> DomainError:
    """The record left the submitted state between read and write."""
    return DomainError(code=ITEM_RECALLED, http_status=409, message=message, details=details)


def not_found(message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=NOT_FOUND, http_status=404, message=message, details=details)


def store_error(message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=STORE_ERROR, http_status=500, message=message, details=details)
