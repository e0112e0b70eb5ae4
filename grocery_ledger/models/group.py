"""
Group Models for Grocery Ledger

A Group is the shared unit of membership, active shopping list and
settlement history. These models define the strict schemas for all
group data flowing through the system.

DESIGN DECISION: Shopping list items carry a stable id assigned at
creation. Every list operation (toggle, rename, delete, checkout)
addresses items by that id, never by position or by name, so duplicate
names and concurrent reordering cannot make an edit land on the wrong item.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def new_id() -> str:
    """Mint a new record identifier."""
    return uuid4().hex


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# SHOPPING LIST
# =============================================================================

class Item(BaseModel):
    """A single entry on a group's active shopping list."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_id,
        description="Stable identifier assigned at creation"
    )
    name: str = Field(
        ...,
        min_length=1,
        description="What to buy"
    )
    checked: bool = Field(
        default=False,
        description="Marked as picked up, pending checkout"
    )


class Checkout(BaseModel):
    """
    A settled purchase in a group's history.

    CRITICAL: History is append-only. A Checkout is never edited or
    deleted once it has been committed.

    The date is kept as the ISO-8601 string it was written with.
    Aggregation parses it and skips entries whose date cannot be read,
    so one bad entry never hides the rest of the history.
    """

    id: str = Field(
        default_factory=new_id,
        description="Unique checkout identifier"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Total paid"
    )
    date: str = Field(
        default_factory=lambda: utc_now().isoformat(),
        description="When the purchase was settled (ISO-8601)"
    )
    buyer: str = Field(
        ...,
        description="Display name or email of the member who paid"
    )
    items: list[str] = Field(
        default_factory=list,
        description="Names of the items settled by this purchase"
    )


# =============================================================================
# MEMBERSHIP
# =============================================================================

class Member(BaseModel):
    """A user's association with a group."""

    id: str
    name: str
    join_date: datetime = Field(default_factory=utc_now)


class GroupRef(BaseModel):
    """Lightweight pointer to a group, indexed on the user record."""

    id: str
    name: str


# =============================================================================
# GROUP
# =============================================================================

class Group(BaseModel):
    """
    A shared group record.

    Created once by membership; list mutated by the shopping list engine;
    list and history mutated together by settlement; members mutated by
    membership. Never deleted.
    """

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    creation_date: datetime = Field(default_factory=utc_now)
    members: list[Member] = Field(default_factory=list)
    shopping_list: list[Item] = Field(default_factory=list)
    history: list[Checkout] = Field(default_factory=list)

    # Incremented by the store on every committed write
    version: int = Field(default=0, ge=0)

    def is_member(self, user_id: str) -> bool:
        """Check whether a user belongs to this group."""
        return any(member.id == user_id for member in self.members)

    def find_item(self, item_id: str) -> Optional[Item]:
        """Look up a shopping list item by id."""
        for item in self.shopping_list:
            if item.id == item_id:
                return item
        return None

    def to_ref(self) -> GroupRef:
        return GroupRef(id=self.id, name=self.name)
