"""
History Models

Derived, read-only views over a group's settlement history.
Nothing here is ever persisted; summaries are recomputed from
`Group.history` whenever a new snapshot arrives.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from grocery_ledger.models.group import Checkout


class Trend(str, Enum):
    """Month-over-month spending direction."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class HistoryView(str, Enum):
    """Drill-down level of the history browser."""
    MONTHS = "months"
    CHECKOUTS = "checkouts"
    ITEMS = "items"


class DatedCheckout(BaseModel):
    """A checkout paired with its parsed date."""

    checkout: Checkout
    settled_at: datetime


class MonthlySummary(BaseModel):
    """
    Spending for one calendar month.

    `checkouts` keeps the entries in the order they were bucketed;
    use `sorted_checkouts()` for the newest-first drill-down.
    """

    year: int
    month: int = Field(ge=1, le=12)
    total: Decimal = Field(default=Decimal("0"))
    checkouts: list[DatedCheckout] = Field(default_factory=list)
    trend: Trend = Field(default=Trend.NEUTRAL)

    @property
    def key(self) -> str:
        return f"{self.year}-{self.month}"

    @property
    def label(self) -> str:
        """Display name, e.g. 'May 2024'."""
        return datetime(self.year, self.month, 1).strftime("%B %Y")

    @property
    def checkout_count(self) -> int:
        return len(self.checkouts)

    def sorted_checkouts(self) -> list[Checkout]:
        """Checkouts of this month, most recent first."""
        ordered = sorted(self.checkouts, key=lambda dc: dc.settled_at, reverse=True)
        return [dc.checkout for dc in ordered]
