"""
History Aggregator

Pure, read-only derivation of monthly spending from a group's history.

Steps:
1. Parse every checkout (date and amount). Unreadable entries are skipped
   with a warning; one bad entry never fails the whole aggregation.
2. Bucket by (year, month), summing amounts.
3. Order buckets newest first by (year, month).
4. Compare each month with the one before it: 'down' if it spent strictly
   less, 'up' if strictly more, 'neutral' otherwise. The oldest month is
   always 'neutral'.

The HistoryBrowser on top of it is a three-level drill-down
(months -> checkouts -> items). Navigating never mutates anything.
"""

from datetime import datetime, timezone, tzinfo
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError as SchemaError

from grocery_ledger.errors import NotFoundError, ValidationError
from grocery_ledger.models.group import Checkout
from grocery_ledger.models.history import DatedCheckout, HistoryView, MonthlySummary, Trend


logger = structlog.get_logger(__name__)


def parse_checkout_date(value: str) -> datetime:
    """
    Parse an ISO-8601 checkout date.

    A trailing 'Z' is accepted. Naive dates are taken as UTC so every
    parsed date can be compared with every other.

    Raises:
        ValueError: If the string isn't a readable date
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Not a date: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def partition_history(
    history: Iterable[Any],
) -> tuple[list[DatedCheckout], list[tuple[Any, str]]]:
    """
    Split history into readable checkouts and skipped entries.

    Accepts Checkout models or raw mappings (as read from storage).

    Returns:
        (dated_checkouts, [(entry, reason), ...])
    """
    readable: list[DatedCheckout] = []
    skipped: list[tuple[Any, str]] = []

    for entry in history:
        try:
            checkout = entry if isinstance(entry, Checkout) else Checkout.model_validate(entry)
            settled_at = parse_checkout_date(checkout.date)
        except (SchemaError, ValueError, TypeError) as e:
            reason = str(e).splitlines()[0]
            logger.warning("history_entry_skipped", reason=reason, entry=repr(entry)[:200])
            skipped.append((entry, reason))
            continue
        readable.append(DatedCheckout(checkout=checkout, settled_at=settled_at))

    return readable, skipped


def compute_trend(current: Decimal, previous: Optional[Decimal]) -> Trend:
    """Trend of a month relative to the month before it."""
    if previous is None:
        return Trend.NEUTRAL
    if current < previous:
        return Trend.DOWN
    if current > previous:
        return Trend.UP
    return Trend.NEUTRAL


class HistoryAggregator:
    """
    Computes monthly spending summaries.

    Stateless: aggregating the same history twice gives identical
    totals, ordering and trends.

    Calendar months are taken in `tz`, UTC by default.
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        self._tz = tz or timezone.utc

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def aggregate(self, history: Iterable[Any]) -> list[MonthlySummary]:
        """
        Bucket checkouts by calendar month, newest first, with trends.
        """
        readable, _ = partition_history(history)

        buckets: dict[tuple[int, int], MonthlySummary] = {}
        for dated in readable:
            settled_at = dated.settled_at.astimezone(self._tz)
            key = (settled_at.year, settled_at.month)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = MonthlySummary(year=key[0], month=key[1])
            bucket.total += dated.checkout.amount
            bucket.checkouts.append(dated)

        ordered = [buckets[key] for key in sorted(buckets, reverse=True)]

        for index, summary in enumerate(ordered):
            previous = ordered[index + 1].total if index + 1 < len(ordered) else None
            summary.trend = compute_trend(summary.total, previous)

        return ordered

    def total_spent(self, history: Iterable[Any]) -> Decimal:
        """Sum of all readable checkouts."""
        readable, _ = partition_history(history)
        return sum((dated.checkout.amount for dated in readable), Decimal("0"))


class HistoryBrowser:
    """
    Three-level navigation over a group's history.

    MONTHS -> select_month -> CHECKOUTS -> select_checkout -> ITEMS.
    `back()` goes up one level. Loading new history (e.g. from a fresh
    snapshot) recomputes the months and keeps the current selection when
    it still exists.
    """

    def __init__(
        self,
        history: Iterable[Any] = (),
        aggregator: Optional[HistoryAggregator] = None,
    ):
        self._aggregator = aggregator or HistoryAggregator()
        self._months: list[MonthlySummary] = []
        self._view = HistoryView.MONTHS
        self._month: Optional[MonthlySummary] = None
        self._checkout: Optional[Checkout] = None
        self.load(history)

    @property
    def view(self) -> HistoryView:
        return self._view

    @property
    def months(self) -> list[MonthlySummary]:
        return list(self._months)

    @property
    def selected_month(self) -> Optional[MonthlySummary]:
        return self._month

    @property
    def selected_checkout(self) -> Optional[Checkout]:
        return self._checkout

    @property
    def checkouts(self) -> list[Checkout]:
        """Checkouts of the selected month, most recent first."""
        if self._month is None:
            return []
        return self._month.sorted_checkouts()

    @property
    def items(self) -> list[str]:
        """Item names of the selected checkout."""
        if self._checkout is None:
            return []
        return list(self._checkout.items)

    def load(self, history: Iterable[Any]) -> None:
        self._months = self._aggregator.aggregate(history)

        if self._month is not None:
            self._month = next(
                (m for m in self._months if m.key == self._month.key), None
            )
        if self._checkout is not None and self._month is not None:
            self._checkout = next(
                (c for c in self._month.sorted_checkouts() if c.id == self._checkout.id),
                None,
            )
        else:
            self._checkout = None

        if self._month is None:
            self._view = HistoryView.MONTHS
        elif self._checkout is None and self._view == HistoryView.ITEMS:
            self._view = HistoryView.CHECKOUTS

    def select_month(self, key: str) -> list[Checkout]:
        if self._view != HistoryView.MONTHS:
            raise ValidationError("Go back to the month list first.")
        month = next((m for m in self._months if m.key == key), None)
        if month is None:
            raise NotFoundError(f"No spending recorded for {key}.")
        self._month = month
        self._view = HistoryView.CHECKOUTS
        return self.checkouts

    def select_checkout(self, checkout_id: str) -> list[str]:
        if self._view != HistoryView.CHECKOUTS:
            raise ValidationError("Select a month first.")
        checkout = next((c for c in self.checkouts if c.id == checkout_id), None)
        if checkout is None:
            raise NotFoundError("Checkout not found in this month.")
        self._checkout = checkout
        self._view = HistoryView.ITEMS
        return self.items

    def back(self) -> HistoryView:
        if self._view == HistoryView.ITEMS:
            self._checkout = None
            self._view = HistoryView.CHECKOUTS
        elif self._view == HistoryView.CHECKOUTS:
            self._month = None
            self._view = HistoryView.MONTHS
        return self._view
