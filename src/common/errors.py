# This file defines the error taxonomy shared by the booking core modules.
# Every failure carries a stable machine code and a human message, with optional structured details.
# Callers map these to transport responses; the core never retries any of them internally.

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class MarketplaceError(Exception):
    """Domain error type with structured details."""

    error_code = "MARKETPLACE_ERROR"

    def __init__(self, message: str, *, details: Any | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MarketplaceError):
    """Malformed or out-of-range input."""

    error_code = "VALIDATION_ERROR"


class DuplicateKeyError(MarketplaceError):
    """A unique field collides with an existing record."""

    error_code = "DUPLICATE_KEY"

    def __init__(self, message: str, *, field: str | None = None, details: Any | None = None) -> None:
        super().__init__(message, details=details)
        self.field = field


class InvalidCredentials(MarketplaceError):
    error_code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid credentials.") -> None:
        super().__init__(message)


class AccountLocked(MarketplaceError):
    """Authentication refused until `locked_until` passes."""

    error_code = "ACCOUNT_LOCKED"

    def __init__(self, *, locked_until: datetime, now: datetime | None = None) -> None:
        reference = now or datetime.now(tz=UTC)
        self.locked_until = locked_until
        self.retry_after_seconds = max(0, int((locked_until - reference).total_seconds()))
        super().__init__(
            "Account is temporarily locked after repeated failed logins.",
            details={
                "locked_until": locked_until.isoformat(),
                "retry_after_seconds": self.retry_after_seconds,
            },
        )


class NotFoundError(MarketplaceError):
    error_code = "NOT_FOUND"


class InvalidTransitionError(MarketplaceError):
    """Requested status change is not an edge of the lifecycle graph."""

    error_code = "INVALID_TRANSITION"


class ConcurrentUpdateError(MarketplaceError):
    """The stored record changed since it was read."""

    error_code = "CONCURRENT_UPDATE"


class PersistenceError(MarketplaceError):
    """The store failed; the write is reported as failed and not retried."""

    error_code = "PERSISTENCE_ERROR"
