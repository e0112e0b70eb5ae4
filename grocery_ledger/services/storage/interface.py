"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the JSON file backend for a real database later
2. Use in-memory storage for testing
3. Inject failures in tests without touching business logic
4. Keep engines decoupled from storage implementation

Group and User records support single-record reads and writes.
Anything that must change two records (or two fields that may never be
seen half-applied) goes through `run_transaction`.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from grocery_ledger.models.audit import AuditEvent
from grocery_ledger.models.group import Group
from grocery_ledger.models.user import User
from grocery_ledger.services.realtime import Subscription


T = TypeVar("T")


class StorageTransaction(ABC):
    """
    A unit of work spanning any number of Group and User records.

    Reads see committed state (or this transaction's own pending writes).
    Writes are buffered and applied all together at commit, or not at all.
    A transaction whose reads were invalidated by a concurrent commit is
    rejected with TransactionConflictError.
    """

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[Group]:
        """Read a group inside the transaction."""
        pass

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Read a user inside the transaction."""
        pass

    @abstractmethod
    def put_group(self, group: Group) -> None:
        """Buffer a full group write."""
        pass

    @abstractmethod
    def put_user(self, user: User) -> None:
        """Buffer a full user write."""
        pass


class GroupStorageInterface(ABC):
    """
    Abstract interface for group storage operations.
    """

    @abstractmethod
    async def get_group(self, group_id: str) -> Optional[Group]:
        """
        Retrieve the latest committed group.

        Args:
            group_id: The group's identifier

        Returns:
            The group if found, None otherwise
        """
        pass

    @abstractmethod
    async def save_group(self, group: Group) -> Group:
        """
        Single-record write of a group (insert or overwrite).

        Returns:
            The stored group with its new version

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def subscribe_group(self, group_id: str) -> Subscription:
        """
        Open a live stream of group snapshots.

        The current snapshot (if any) is delivered first, then one
        snapshot per committed write.
        """
        pass


class UserStorageInterface(ABC):
    """
    Abstract interface for user storage operations.
    """

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """Retrieve a user by id."""
        pass

    @abstractmethod
    async def find_user_by_email(self, email: str) -> Optional[User]:
        """
        Resolve a user by exact email match.

        Args:
            email: Email address, compared verbatim

        Returns:
            The first matching user, None if nobody has that email
        """
        pass

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Single-record write of a user (insert or overwrite)."""
        pass

    @abstractmethod
    async def subscribe_user(self, user_id: str) -> Subscription:
        """Open a live stream of user snapshots."""
        pass


class LedgerStorageInterface(GroupStorageInterface, UserStorageInterface):
    """
    Combined group and user storage with multi-record transactions.
    """

    @abstractmethod
    def new_id(self) -> str:
        """Mint a new record identifier."""
        pass

    @abstractmethod
    async def run_transaction(
        self,
        work: Callable[[StorageTransaction], Awaitable[T]],
    ) -> T:
        """
        Run `work` inside a transaction and commit its writes atomically.

        `work` may be invoked more than once if the transaction is
        contended, so it must not have side effects outside the
        transaction object.

        Returns:
            Whatever `work` returned on the attempt that committed

        Raises:
            TransactionConflictError: If contention persists past the retry budget
            StorageUnavailableError: If the backend cannot be written
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for one request, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageUnavailableError(StorageError):
    """Could not reach or write the storage backend."""
    pass


class TransactionConflictError(StorageError):
    """A record read by the transaction changed before it could commit."""
    pass
