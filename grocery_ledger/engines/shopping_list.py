"""
Shopping List Engine

Add / toggle / rename / delete on a group's active item list.

Three layers:
1. Pure list functions - take a list of items, return a new list.
   They never mutate their input.
2. ShoppingListEngine - persists one targeted change at a time. Each change
   is re-applied to the latest stored list inside a transaction, addressed
   by item id, so two members editing different items never overwrite each
   other.
3. ShoppingListSession - a member's local, optimistic view. Every mutation
   is applied locally first; if persisting it fails, the session restores
   the exact snapshot it cached before the change and raises TransientError.
"""

import asyncio
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from grocery_ledger.audit import AuditLogger
from grocery_ledger.config import AppSettings, get_settings
from grocery_ledger.engines.base import (
    require_caller,
    require_group,
    require_member,
    storage_errors_as_transient,
)
from grocery_ledger.errors import LedgerError, NotFoundError, TransientError, ValidationError
from grocery_ledger.models.audit import AuditEventType
from grocery_ledger.models.group import Checkout, Group, Item
from grocery_ledger.models.user import Caller
from grocery_ledger.services.storage import LedgerStorageInterface, StorageTransaction


logger = structlog.get_logger(__name__)


# =============================================================================
# PURE LIST OPERATIONS
# =============================================================================

def _index_of(items: list[Item], item_id: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    return -1


def normalize_item_name(name: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Trim an item name, rejecting empty or oversized names.

    Raises:
        ValidationError: If the trimmed name is empty or too long
    """
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Item name cannot be empty.")
    if max_length is not None and len(trimmed) > max_length:
        raise ValidationError(f"Item name cannot be longer than {max_length} characters.")
    return trimmed


def add_item(
    items: list[Item],
    name: str,
    max_length: Optional[int] = None,
) -> list[Item]:
    """Append a new unchecked item. The new item is the last element."""
    return [*items, Item(name=normalize_item_name(name, max_length), checked=False)]


def insert_item(items: list[Item], item: Item) -> list[Item]:
    """Append an already-built item, unless an item with its id is present."""
    if _index_of(items, item.id) != -1:
        return list(items)
    return [*items, item]


def set_checked(items: list[Item], item_id: str, checked: bool) -> list[Item]:
    index = _index_of(items, item_id)
    if index == -1:
        raise NotFoundError("Item not found.", details={"item_id": item_id})
    updated = list(items)
    updated[index] = items[index].model_copy(update={"checked": checked})
    return updated


def toggle_item(items: list[Item], item_id: str) -> list[Item]:
    """Flip `checked` on one item. Applying it twice restores the original."""
    index = _index_of(items, item_id)
    if index == -1:
        raise NotFoundError("Item not found.", details={"item_id": item_id})
    return set_checked(items, item_id, not items[index].checked)


def rename_item(items: list[Item], item_id: str, new_name: Optional[str]) -> list[Item]:
    """
    Replace one item's name.

    A no-op (returns an equal list) when the item is missing or the new
    name is empty after trimming.
    """
    trimmed = (new_name or "").strip()
    index = _index_of(items, item_id)
    if index == -1 or not trimmed:
        return list(items)
    updated = list(items)
    updated[index] = items[index].model_copy(update={"name": trimmed})
    return updated


def delete_item(items: list[Item], item_id: str) -> list[Item]:
    index = _index_of(items, item_id)
    if index == -1:
        raise NotFoundError("Item not found.", details={"item_id": item_id})
    return items[:index] + items[index + 1:]


def checked_items(items: list[Item]) -> list[Item]:
    return [item for item in items if item.checked]


def remove_items(items: list[Item], item_ids: set[str]) -> list[Item]:
    """Drop every item whose id is in item_ids; ids not present are ignored."""
    return [item for item in items if item.id not in item_ids]


# =============================================================================
# PERSISTENCE
# =============================================================================

class ShoppingListEngine:
    """
    Persists targeted shopping list changes.

    Each method re-reads the latest stored group inside a transaction,
    checks the caller is a member, applies one change by item id and
    commits. The list it returns is the list as committed.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    @property
    def max_item_name_length(self) -> int:
        return self._settings.max_item_name_length

    async def _mutate(
        self,
        caller: Optional[Caller],
        group_id: str,
        operation: str,
        change: Callable[[list[Item]], list[Item]],
    ) -> list[Item]:
        caller = require_caller(caller)

        async def work(txn: StorageTransaction) -> list[Item]:
            group = require_group(await txn.get_group(group_id), group_id)
            require_member(group, caller)
            updated = change(group.shopping_list)
            txn.put_group(group.model_copy(update={"shopping_list": updated}))
            return updated

        try:
            async with storage_errors_as_transient(operation):
                return await self._storage.run_transaction(work)
        except TransientError as e:
            if self._audit_logger:
                await self._audit_logger.log_persistence_failed(
                    entity_type="group",
                    entity_id=group_id,
                    operation=operation,
                    error_message=e.message,
                )
            raise

    async def record_rollback(self, group_id: str, operation: str, error: LedgerError) -> None:
        """Audit a session restoring its local list after a failed write."""
        if self._audit_logger and error.retryable:
            await self._audit_logger.log_persistence_failed(
                entity_type="group",
                entity_id=group_id,
                operation=operation,
                error_message=error.message,
                rolled_back=True,
            )

    async def add_item(
        self,
        caller: Optional[Caller],
        group_id: str,
        item: Item,
        correlation_id: Optional[UUID] = None,
    ) -> list[Item]:
        """Persist a new item built by the caller (keeping its id)."""
        item = item.model_copy(
            update={"name": normalize_item_name(item.name, self.max_item_name_length)}
        )
        updated = await self._mutate(
            caller, group_id, "add item",
            lambda items: insert_item(items, item),
        )
        await self._audit(AuditEventType.ITEM_ADDED, group_id, item.id, caller,
                          {"name": item.name}, correlation_id)
        return updated

    async def set_checked(
        self,
        caller: Optional[Caller],
        group_id: str,
        item_id: str,
        checked: bool,
        correlation_id: Optional[UUID] = None,
    ) -> list[Item]:
        """Set one item's checked flag to the value the caller saw after toggling."""
        updated = await self._mutate(
            caller, group_id, "toggle item",
            lambda items: set_checked(items, item_id, checked),
        )
        await self._audit(AuditEventType.ITEM_TOGGLED, group_id, item_id, caller,
                          {"checked": checked}, correlation_id)
        return updated

    async def rename_item(
        self,
        caller: Optional[Caller],
        group_id: str,
        item_id: str,
        new_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Item]:
        updated = await self._mutate(
            caller, group_id, "rename item",
            lambda items: rename_item(items, item_id, new_name),
        )
        await self._audit(AuditEventType.ITEM_RENAMED, group_id, item_id, caller,
                          {"name": (new_name or "").strip()}, correlation_id)
        return updated

    async def delete_item(
        self,
        caller: Optional[Caller],
        group_id: str,
        item_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Item]:
        """Remove one item. Deleting an item someone else already removed is a no-op."""
        updated = await self._mutate(
            caller, group_id, "delete item",
            lambda items: remove_items(items, {item_id}),
        )
        await self._audit(AuditEventType.ITEM_DELETED, group_id, item_id, caller,
                          None, correlation_id)
        return updated

    async def _audit(
        self,
        event_type: AuditEventType,
        group_id: str,
        item_id: str,
        caller: Caller,
        details: Optional[dict],
        correlation_id: Optional[UUID],
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_item_mutated(
                event_type=event_type,
                group_id=group_id,
                item_id=item_id,
                actor_id=caller.uid,
                details=details,
                correlation_id=correlation_id,
            )


# =============================================================================
# OPTIMISTIC LOCAL SESSION
# =============================================================================

class ShoppingListSession:
    """
    A member's local view of one group's shopping list.

    Mutations change `items` immediately, then persist. While a write is
    in flight `items` already shows the change. If the write fails (or
    times out) `items` is restored to the snapshot taken just before the
    change and the failure is re-raised as TransientError.

    `apply_snapshot` replaces local state with a committed snapshot from
    the realtime feed.
    """

    def __init__(
        self,
        engine: ShoppingListEngine,
        caller: Caller,
        group_id: str,
        items: Optional[list[Item]] = None,
        settlement=None,
        timeout: Optional[float] = None,
    ):
        self._engine = engine
        self._settlement = settlement
        self._caller = caller
        self._group_id = group_id
        self._items: list[Item] = list(items or [])
        self._timeout = timeout

    @property
    def group_id(self) -> str:
        return self._group_id

    @property
    def items(self) -> list[Item]:
        return list(self._items)

    @property
    def has_checked_items(self) -> bool:
        return any(item.checked for item in self._items)

    def apply_snapshot(self, group: Group) -> None:
        """Adopt the shopping list of a committed group snapshot."""
        self._items = list(group.shopping_list)

    async def _apply(
        self,
        updated: list[Item],
        persist: Callable[[], Awaitable[object]],
        operation: str,
    ):
        snapshot = self._items
        self._items = updated
        try:
            if self._timeout is None:
                return await persist()
            return await asyncio.wait_for(persist(), self._timeout)
        except asyncio.TimeoutError as e:
            self._items = snapshot
            error = TransientError(f"{operation} timed out. Please retry.")
            logger.warning("local_state_rolled_back", operation=operation, reason="timeout")
            await self._engine.record_rollback(self._group_id, operation, error)
            raise error from e
        except LedgerError as e:
            self._items = snapshot
            logger.warning("local_state_rolled_back", operation=operation, reason=e.code)
            await self._engine.record_rollback(self._group_id, operation, e)
            raise

    async def add_item(self, name: str) -> Item:
        updated = add_item(self._items, name, self._engine.max_item_name_length)
        item = updated[-1]
        await self._apply(
            updated,
            lambda: self._engine.add_item(self._caller, self._group_id, item),
            "add item",
        )
        return item

    async def toggle_item(self, item_id: str) -> Item:
        updated = toggle_item(self._items, item_id)
        item = updated[_index_of(updated, item_id)]
        await self._apply(
            updated,
            lambda: self._engine.set_checked(self._caller, self._group_id, item_id, item.checked),
            "toggle item",
        )
        return item

    async def rename_item(self, item_id: str, new_name: str) -> Optional[Item]:
        """Rename an item; returns None (and persists nothing) for a no-op."""
        updated = rename_item(self._items, item_id, new_name)
        if updated == self._items:
            return None
        await self._apply(
            updated,
            lambda: self._engine.rename_item(self._caller, self._group_id, item_id, new_name),
            "rename item",
        )
        return updated[_index_of(updated, item_id)]

    async def delete_item(self, item_id: str) -> None:
        updated = delete_item(self._items, item_id)
        await self._apply(
            updated,
            lambda: self._engine.delete_item(self._caller, self._group_id, item_id),
            "delete item",
        )

    async def checkout(self, amount) -> Checkout:
        """
        Settle the locally checked items.

        The checked items leave the local list immediately; if the
        settlement cannot be committed they come back.
        """
        if self._settlement is None:
            raise ValidationError("Checkout is not available in this session.")
        local_view = list(self._items)
        settled_ids = {item.id for item in checked_items(local_view)}
        return await self._apply(
            remove_items(local_view, settled_ids),
            lambda: self._settlement.checkout(
                self._caller, self._group_id, amount, local_view,
            ),
            "checkout",
        )
