"""
Settlement Engine (checkout)

Turns the caller's checked items into a priced history entry and removes
those items from the active list.

CRITICAL: Both effects are committed in ONE transaction. Money recorded
without the list being trimmed (or the reverse) is never acceptable.

The group is re-read inside the transaction, so history entries written
concurrently by other members are never lost. Items to remove are matched
by id against that fresh list: an item someone else already deleted is
simply not there to remove, and a new item someone else added survives.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence
from uuid import UUID

import structlog

from grocery_ledger.audit import AuditLogger
from grocery_ledger.engines.base import (
    require_caller,
    require_group,
    require_member,
    storage_errors_as_transient,
)
from grocery_ledger.engines.shopping_list import checked_items, remove_items
from grocery_ledger.errors import TransientError, ValidationError
from grocery_ledger.models.group import Checkout, Item, utc_now
from grocery_ledger.models.user import Caller
from grocery_ledger.services.storage import LedgerStorageInterface, StorageTransaction


logger = structlog.get_logger(__name__)


def parse_amount(raw) -> Decimal:
    """
    Parse a checkout amount.

    Accepts strings, ints and Decimals. Floats go through str() so 12.5
    becomes Decimal('12.5') rather than its binary expansion.

    Raises:
        ValidationError: If the amount isn't a finite number above zero
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError("Please enter a valid amount.")
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValidationError("Please enter a valid amount.")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero.")
    return amount


class SettlementEngine:
    """Commits checkouts."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def checkout(
        self,
        caller: Optional[Caller],
        group_id: str,
        amount,
        local_items: Sequence[Item],
        correlation_id: Optional[UUID] = None,
    ) -> Checkout:
        """
        Settle the items checked in the caller's local view.

        Args:
            caller: Authenticated member paying for the items
            group_id: Group being settled
            amount: Total paid (string or number)
            local_items: The caller's current view of the list

        Returns:
            The committed Checkout

        Raises:
            ValidationError: Bad amount, or nothing checked
            PermissionDeniedError: Caller is not a member
            NotFoundError: Group doesn't exist
            TransientError: The write could not be committed
        """
        caller = require_caller(caller)
        parsed = parse_amount(amount)

        settled = checked_items(list(local_items))
        if not settled:
            raise ValidationError("Please select at least one item.")

        settled_ids = {item.id for item in settled}

        async def work(txn: StorageTransaction) -> Checkout:
            group = require_group(await txn.get_group(group_id), group_id)
            require_member(group, caller)

            checkout = Checkout(
                amount=parsed,
                date=utc_now().isoformat(),
                buyer=caller.buyer_name,
                items=[item.name for item in settled],
            )
            txn.put_group(group.model_copy(update={
                "shopping_list": remove_items(group.shopping_list, settled_ids),
                "history": [*group.history, checkout],
            }))
            return checkout

        try:
            async with storage_errors_as_transient("checkout"):
                checkout = await self._storage.run_transaction(work)
        except TransientError as e:
            if self._audit_logger:
                await self._audit_logger.log_persistence_failed(
                    entity_type="group",
                    entity_id=group_id,
                    operation="checkout",
                    error_message=e.message,
                    correlation_id=correlation_id,
                )
            raise

        logger.info(
            "checkout_settled",
            group_id=group_id,
            amount=str(parsed),
            item_count=len(checkout.items),
        )
        if self._audit_logger:
            await self._audit_logger.log_checkout_settled(
                group_id=group_id,
                checkout_id=checkout.id,
                buyer=checkout.buyer,
                amount=checkout.amount,
                items=checkout.items,
                actor_id=caller.uid,
                correlation_id=correlation_id,
            )
        return checkout
