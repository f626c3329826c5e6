from typing import Any


class DomainError(Exception):
    """Base class for errors surfaced by the marketplace core."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DomainError):
    """Malformed or out-of-range input."""


class NotFoundError(DomainError):
    """No candidate, booking, account or profile."""


class AuthorizationError(DomainError):
    """Role or ownership does not permit the operation."""


class ConflictError(DomainError):
    """Overlapping booking or duplicate review."""


class ConsistencyError(DomainError):
    """
    verified flag disagrees with the account status.

    Only ever logged and repaired by reconciliation, never raised to a caller.
    """
