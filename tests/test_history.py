"""
Tests for monthly history aggregation and the history browser.
"""

from datetime import timedelta, timezone
from decimal import Decimal

import pytest

from grocery_ledger.engines import (
    HistoryAggregator,
    HistoryBrowser,
    compute_trend,
    parse_checkout_date,
    partition_history,
)
from grocery_ledger.errors import NotFoundError, ValidationError
from grocery_ledger.models import Checkout, HistoryView, Trend


def make_checkout(amount, date, items=("milk",)):
    return Checkout(amount=Decimal(str(amount)), date=date, buyer="Alice", items=list(items))


@pytest.fixture
def aggregator():
    return HistoryAggregator()


class TestDates:
    """Checkout date parsing."""

    def test_zulu_suffix(self):
        """A trailing Z means UTC."""
        parsed = parse_checkout_date("2024-05-03T10:00:00Z")
        assert parsed.tzinfo is not None
        assert parsed.utcoffset().total_seconds() == 0

    def test_naive_dates_are_utc(self):
        """Dates without an offset are read as UTC."""
        assert parse_checkout_date("2024-05-03T10:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["", "yesterday", "2024-13-01T00:00:00", None])
    def test_unreadable_dates(self, value):
        """Unreadable dates raise ValueError."""
        with pytest.raises(ValueError):
            parse_checkout_date(value)


class TestTrend:
    """Month-over-month comparison."""

    def test_trend_values(self):
        """Less is down, more is up, equal or first is neutral."""
        assert compute_trend(Decimal("80"), Decimal("100")) == Trend.DOWN
        assert compute_trend(Decimal("120"), Decimal("100")) == Trend.UP
        assert compute_trend(Decimal("100"), Decimal("100")) == Trend.NEUTRAL
        assert compute_trend(Decimal("100"), None) == Trend.NEUTRAL


class TestHistoryAggregator:
    """Bucketing checkouts into months."""

    def test_lower_month_trends_down(self, aggregator):
        """80 in May against 100 in April is a downward trend."""
        history = [
            make_checkout(60, "2024-04-02T09:00:00+00:00"),
            make_checkout(40, "2024-04-20T09:00:00+00:00"),
            make_checkout(80, "2024-05-05T09:00:00+00:00"),
        ]
        months = aggregator.aggregate(history)

        assert [m.key for m in months] == ["2024-5", "2024-4"]
        assert [m.total for m in months] == [Decimal("80"), Decimal("100")]
        assert [m.trend for m in months] == [Trend.DOWN, Trend.NEUTRAL]

    def test_orders_across_years(self, aggregator):
        """January follows December of the previous year, newest first."""
        history = [
            make_checkout(10, "2024-01-15T12:00:00+00:00"),
            make_checkout(30, "2023-12-15T12:00:00+00:00"),
            make_checkout(20, "2023-02-15T12:00:00+00:00"),
        ]
        months = aggregator.aggregate(history)
        assert [m.key for m in months] == ["2024-1", "2023-12", "2023-2"]
        assert [m.trend for m in months] == [Trend.DOWN, Trend.UP, Trend.NEUTRAL]

    def test_months_are_taken_in_utc(self, aggregator):
        """A late-evening checkout west of UTC lands in the next UTC month."""
        months = aggregator.aggregate([make_checkout(5, "2024-05-31T23:30:00-02:00")])
        assert months[0].key == "2024-6"

    def test_configured_zone_decides_the_month(self):
        """With a zone set, months follow that zone's calendar."""
        aggregator = HistoryAggregator(timezone(timedelta(hours=-2)))
        months = aggregator.aggregate([make_checkout(5, "2024-05-31T23:30:00-02:00")])
        assert months[0].key == "2024-5"
        assert months[0].label == "May 2024"

    def test_aggregation_is_idempotent(self, aggregator):
        """Aggregating twice gives identical results."""
        history = [
            make_checkout(12.5, "2024-03-01T08:00:00+00:00"),
            make_checkout(7.25, "2024-03-09T08:00:00+00:00"),
            make_checkout(30, "2024-02-01T08:00:00+00:00"),
        ]
        first = [m.model_dump() for m in aggregator.aggregate(history)]
        second = [m.model_dump() for m in aggregator.aggregate(history)]
        assert first == second
        assert first[0]["total"] == Decimal("19.75")

    def test_empty_history(self, aggregator):
        """No history, no months."""
        assert aggregator.aggregate([]) == []
        assert aggregator.total_spent([]) == Decimal("0")

    def test_unreadable_entries_are_skipped(self, aggregator):
        """Bad entries are left out without failing the rest."""
        good = make_checkout(10, "2024-05-01T08:00:00+00:00")
        history = [
            good,
            make_checkout(99, "not a date"),
            {"amount": "abc", "date": "2024-05-02T08:00:00Z", "buyer": "Bob", "items": []},
            {"amount": "5", "date": "2024-05-02T08:00:00Z"},
        ]

        readable, skipped = partition_history(history)
        assert [d.checkout.id for d in readable] == [good.id]
        assert len(skipped) == 3

        months = aggregator.aggregate(history)
        assert len(months) == 1
        assert months[0].total == Decimal("10")
        assert aggregator.total_spent(history) == Decimal("10")

    def test_raw_mappings_are_accepted(self, aggregator):
        """Entries read straight from storage aggregate like models."""
        months = aggregator.aggregate([
            {"amount": "4.50", "date": "2024-05-02T08:00:00Z", "buyer": "Bob", "items": ["tea"]},
        ])
        assert months[0].total == Decimal("4.50")


class TestHistoryBrowser:
    """Months -> checkouts -> items drill-down."""

    @pytest.fixture
    def history(self):
        return [
            make_checkout(20, "2024-05-02T08:00:00+00:00", items=("milk", "eggs")),
            make_checkout(30, "2024-05-20T08:00:00+00:00", items=("bread",)),
            make_checkout(50, "2024-04-10T08:00:00+00:00", items=("rice",)),
        ]

    def test_full_navigation(self, history):
        """Select a month, then a checkout, then go back up."""
        browser = HistoryBrowser(history)
        assert browser.view == HistoryView.MONTHS
        assert [m.label for m in browser.months] == ["May 2024", "April 2024"]

        checkouts = browser.select_month("2024-5")
        assert browser.view == HistoryView.CHECKOUTS
        assert [c.items for c in checkouts] == [["bread"], ["milk", "eggs"]]

        items = browser.select_checkout(history[0].id)
        assert browser.view == HistoryView.ITEMS
        assert items == ["milk", "eggs"]

        assert browser.back() == HistoryView.CHECKOUTS
        assert browser.selected_checkout is None
        assert browser.back() == HistoryView.MONTHS
        assert browser.selected_month is None
        assert browser.back() == HistoryView.MONTHS

    def test_selection_errors(self, history):
        """Selections must follow the drill-down order and exist."""
        browser = HistoryBrowser(history)
        with pytest.raises(ValidationError):
            browser.select_checkout(history[0].id)
        with pytest.raises(NotFoundError):
            browser.select_month("1999-1")

        browser.select_month("2024-4")
        with pytest.raises(ValidationError):
            browser.select_month("2024-5")
        with pytest.raises(NotFoundError):
            browser.select_checkout(history[0].id)

    def test_reload_keeps_selection(self, history):
        """A new snapshot keeps the open month and recomputes its total."""
        browser = HistoryBrowser(history)
        browser.select_month("2024-5")
        browser.select_checkout(history[1].id)

        newer = make_checkout(5, "2024-05-25T08:00:00+00:00", items=("jam",))
        browser.load([*history, newer])

        assert browser.view == HistoryView.ITEMS
        assert browser.selected_month.total == Decimal("55")
        assert browser.items == ["bread"]
        assert browser.checkouts[0].id == newer.id

    def test_reload_without_selected_month(self, history):
        """If the open month disappears the browser returns to the month list."""
        browser = HistoryBrowser(history)
        browser.select_month("2024-4")
        browser.load(history[:2])
        assert browser.view == HistoryView.MONTHS
        assert browser.selected_month is None
        assert browser.checkouts == []
