"""
Error Taxonomy

Every operation fails with one of these typed errors.
Each carries the wire code used by the remote-operation surface.

Validation, auth, conflict and not-found are terminal: the caller must
change something before trying again. TransientError is the only
retryable failure, and any optimistic local change must be rolled back
before it is raised.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for all ledger operations."""

    code: str = "internal"
    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Serialize for an error response."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(LedgerError):
    """Malformed or missing arguments."""
    code = "invalid-argument"


class AuthError(LedgerError):
    """Caller identity missing or not allowed to touch the record."""
    code = "permission-denied"


class UnauthenticatedError(AuthError):
    """No authenticated caller."""
    code = "unauthenticated"


class PermissionDeniedError(AuthError):
    """Caller is not the owner or a participant of the record."""
    code = "permission-denied"


class ConflictError(LedgerError):
    """Duplicate group name, duplicate invite, or already a member."""
    code = "already-exists"


class NotFoundError(LedgerError):
    """Missing user, group or invite."""
    code = "not-found"


class TransientError(LedgerError):
    """Connectivity, contention or timeout. Safe to retry."""
    code = "unavailable"
    retryable = True


class InternalError(LedgerError):
    """Unexpected failure."""
    code = "internal"
