"""
In-Memory Storage Implementation

Records are held as JSON-compatible dicts (not live model objects), so every
read hands out a fresh model and no caller can mutate committed state by
accident.

CONCURRENCY MODEL:
- Every record carries a version counter, bumped on each committed write
- A transaction remembers the version of every record it read
- Commit re-checks those versions under the store lock; if any changed,
  the transaction is rejected and retried with exponential backoff
- Commit publishes the new snapshots before releasing the lock, so each
  record's subscribers see writes in commit order

The persistence hook `_persist` runs before in-memory state is touched.
If it raises, the commit is abandoned and nothing is applied.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from grocery_ledger.config import StorageSettings, get_settings
from grocery_ledger.models.audit import AuditEvent
from grocery_ledger.models.group import Group, new_id
from grocery_ledger.models.user import User
from grocery_ledger.services.realtime import (
    RealtimeNotifier,
    Subscription,
    group_key,
    user_key,
)
from grocery_ledger.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    StorageTransaction,
    TransactionConflictError,
)


logger = structlog.get_logger(__name__)

T = TypeVar("T")

GROUPS = "groups"
USERS = "users"

_MODELS = {GROUPS: Group, USERS: User}
_KEYS = {GROUPS: group_key, USERS: user_key}


class _MemoryTransaction(StorageTransaction):
    """Buffered transaction over an InMemoryLedgerStorage."""

    def __init__(self, storage: "InMemoryLedgerStorage"):
        self._storage = storage
        # (collection, id) -> version observed at first read (0 = absent)
        self.reads: dict[tuple[str, str], int] = {}
        # (collection, id) -> model to write
        self.writes: dict[tuple[str, str], Group | User] = {}

    def _get(self, collection: str, record_id: str):
        key = (collection, record_id)
        if key in self.writes:
            return self.writes[key].model_copy(deep=True)
        record = self._storage._records[collection].get(record_id)
        self.reads.setdefault(key, record["version"] if record else 0)
        if record is None:
            return None
        return _MODELS[collection].model_validate(record)

    async def get_group(self, group_id: str) -> Optional[Group]:
        return self._get(GROUPS, group_id)

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._get(USERS, user_id)

    def put_group(self, group: Group) -> None:
        self.writes[(GROUPS, group.id)] = group.model_copy(deep=True)

    def put_user(self, user: User) -> None:
        self.writes[(USERS, user.id)] = user.model_copy(deep=True)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Process-local implementation of group and user storage.

    Used directly in tests, and as the base of the JSON file backend.
    """

    def __init__(
        self,
        notifier: Optional[RealtimeNotifier] = None,
        settings: Optional[StorageSettings] = None,
    ):
        self._settings = settings or get_settings().storage
        self._notifier = notifier or RealtimeNotifier()
        self._records: dict[str, dict[str, dict]] = {GROUPS: {}, USERS: {}}
        self._lock = asyncio.Lock()

    @property
    def notifier(self) -> RealtimeNotifier:
        return self._notifier

    def new_id(self) -> str:
        return new_id()

    # -------------------------------------------------------------------------
    # Commit machinery
    # -------------------------------------------------------------------------

    async def _persist(self, records: dict[str, dict[str, dict]]) -> None:
        """
        Durability hook, called with the full post-commit state.

        The in-memory backend has nothing to do here.
        """
        return None

    async def _commit(
        self,
        writes: dict[tuple[str, str], Group | User],
        reads: Optional[dict[tuple[str, str], int]] = None,
    ) -> dict[tuple[str, str], Group | User]:
        """
        Check, persist and apply one set of writes.

        Runs shielded: once started, a commit completes even if the caller
        is cancelled, and the file and memory stay in step. A cancelled
        caller sees the outcome through its subscription.
        """
        return await asyncio.shield(self._commit_locked(writes, reads))

    async def _commit_locked(
        self,
        writes: dict[tuple[str, str], Group | User],
        reads: Optional[dict[tuple[str, str], int]],
    ) -> dict[tuple[str, str], Group | User]:
        async with self._lock:
            for (collection, record_id), seen in (reads or {}).items():
                current = self._records[collection].get(record_id)
                current_version = current["version"] if current else 0
                if current_version != seen:
                    raise TransactionConflictError(
                        f"{collection}/{record_id} changed during transaction "
                        f"(read v{seen}, now v{current_version})"
                    )

            staged = {name: dict(records) for name, records in self._records.items()}
            committed = {}
            for (collection, record_id), model in writes.items():
                current = self._records[collection].get(record_id)
                stored = model.model_copy(
                    update={"version": (current["version"] if current else 0) + 1}
                )
                staged[collection][record_id] = stored.model_dump(mode="json")
                committed[(collection, record_id)] = stored

            await self._persist(staged)
            self._records = staged

            for (collection, record_id), stored in committed.items():
                self._notifier.publish(_KEYS[collection](record_id), stored)

        return committed

    async def run_transaction(
        self,
        work: Callable[[StorageTransaction], Awaitable[T]],
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.transaction_max_attempts),
            wait=wait_exponential(
                multiplier=self._settings.retry_wait_min_seconds,
                min=self._settings.retry_wait_min_seconds,
                max=self._settings.retry_wait_max_seconds,
            ),
            retry=retry_if_exception_type(TransactionConflictError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                transaction = _MemoryTransaction(self)
                result = await work(transaction)
                if transaction.writes:
                    await self._commit(transaction.writes, transaction.reads)
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "transaction_committed_after_retry",
                        attempts=attempt.retry_state.attempt_number,
                    )
        return result

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    async def get_group(self, group_id: str) -> Optional[Group]:
        record = self._records[GROUPS].get(group_id)
        return Group.model_validate(record) if record else None

    async def save_group(self, group: Group) -> Group:
        committed = await self._commit({(GROUPS, group.id): group})
        return committed[(GROUPS, group.id)]

    async def subscribe_group(self, group_id: str) -> Subscription:
        async with self._lock:
            return self._notifier.subscribe(
                group_key(group_id),
                initial=await self.get_group(group_id),
            )

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[User]:
        record = self._records[USERS].get(user_id)
        return User.model_validate(record) if record else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        for record in self._records[USERS].values():
            if record.get("email") == email:
                return User.model_validate(record)
        return None

    async def save_user(self, user: User) -> User:
        committed = await self._commit({(USERS, user.id): user})
        return committed[(USERS, user.id)]

    async def subscribe_user(self, user_id: str) -> Subscription:
        async with self._lock:
            return self._notifier.subscribe(
                user_key(user_id),
                initial=await self.get_user(user_id),
            )


class InMemoryAuditStorage(AuditStorageInterface):
    """
    In-memory audit log.

    Audit events are append-only.
    """

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
