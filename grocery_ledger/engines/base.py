"""
Shared engine helpers: caller checks and storage error translation.

Authorization is always checked before any mutation is computed.
Storage failures never leak out of an engine as StorageError; they are
reported as TransientError so callers know the request can be retried.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from grocery_ledger.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    UnauthenticatedError,
)
from grocery_ledger.models.group import Group
from grocery_ledger.models.user import Caller
from grocery_ledger.services.storage import StorageError, TransactionConflictError


logger = structlog.get_logger(__name__)


def require_caller(caller: Optional[Caller]) -> Caller:
    if caller is None:
        raise UnauthenticatedError("The operation must be called while authenticated.")
    return caller


def require_self(caller: Optional[Caller], user_id: str, action: str = "access") -> Caller:
    """The caller may only act on their own user record."""
    caller = require_caller(caller)
    if caller.uid != user_id:
        raise PermissionDeniedError(f"You can only {action} your own user data.")
    return caller


def require_group(group: Optional[Group], group_id: str) -> Group:
    if group is None:
        raise NotFoundError("Group not found.", details={"group_id": group_id})
    return group


def require_member(group: Group, caller: Caller) -> None:
    if not group.is_member(caller.uid):
        raise PermissionDeniedError("You are not a member of this group.")


@asynccontextmanager
async def storage_errors_as_transient(operation: str) -> AsyncIterator[None]:
    """Translate storage failures raised inside the block into TransientError."""
    try:
        yield
    except TransactionConflictError as e:
        logger.warning("transaction_contended", operation=operation, error=str(e))
        raise TransientError(
            f"{operation} could not commit because of concurrent changes. Please retry.",
            details={"operation": operation},
        ) from e
    except StorageError as e:
        logger.warning("storage_unavailable", operation=operation, error=str(e))
        raise TransientError(
            f"{operation} failed. Please check your connection.",
            details={"operation": operation},
        ) from e
