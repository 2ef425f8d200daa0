"""
Error taxonomy and explicit operation results.

Expected failures (bad input, access denied, missing records, lost races,
collaborator outages) are returned as Result values carrying an EngineError,
never raised. Exceptions are reserved for the storage layer, where they are
converted into results by the caller.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure categories, each mapping to one HTTP status class."""
    VALIDATION = "validation"
    NOT_AUTHENTICATED = "not_authenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTEGRATION = "integration"


HTTP_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_AUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTEGRATION: 500,
}


@dataclass(frozen=True)
class EngineError:
    """
    A single failure.

    Attributes:
        kind: Failure category
        code: Stable machine-readable code (e.g. DUPLICATE_PROPOSAL)
        message: Human-readable description
        details: Extra context; conflicts carry the current authoritative
            state here so the caller can react to it
    """
    kind: ErrorKind
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.INTEGRATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class Result:
    """Outcome of an engine operation: either a value or an error."""
    ok: bool
    value: Any = None
    error: Optional[EngineError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


# =============================================================================
# Constructors
# =============================================================================


def validation_error(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.VALIDATION, code, message, details)


def not_authenticated(message: str = "Authentication required") -> EngineError:
    return EngineError(ErrorKind.NOT_AUTHENTICATED, "NOT_AUTHENTICATED", message)


def forbidden(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.FORBIDDEN, code, message, details)


def not_found(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.NOT_FOUND, code, message, details)


def conflict(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.CONFLICT, code, message, details)


def integration_error(code: str, message: str, **details: Any) -> EngineError:
    return EngineError(ErrorKind.INTEGRATION, code, message, details)


def fail(error: EngineError) -> Result:
    """Shorthand for Result.failure(error)."""
    return Result.failure(error)


# =============================================================================
# Storage-layer exceptions
# =============================================================================


class StorageError(Exception):
    """Raised by repositories when the backing store fails."""


class UniqueViolation(StorageError):
    """Raised when an insert breaks a uniqueness constraint."""

    def __init__(self, constraint: str, message: str = ""):
        self.constraint = constraint
        super().__init__(message or f"unique constraint violated: {constraint}")


class AuctionClosed(StorageError):
    """Raised when a proposal insert finds its auction no longer active."""

    def __init__(self, auction_id: str):
        self.auction_id = auction_id
        super().__init__(f"auction {auction_id} is not active")
