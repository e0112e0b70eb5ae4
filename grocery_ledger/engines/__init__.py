"""
Engines Package

Domain logic on top of storage: shopping list edits, settlement,
history aggregation and membership.
"""

from grocery_ledger.engines.history import (
    HistoryAggregator,
    HistoryBrowser,
    compute_trend,
    parse_checkout_date,
    partition_history,
)
from grocery_ledger.engines.live import GroupFeed
from grocery_ledger.engines.membership import MembershipCoordinator
from grocery_ledger.engines.settlement import SettlementEngine, parse_amount
from grocery_ledger.engines.shopping_list import (
    ShoppingListEngine,
    ShoppingListSession,
)

__all__ = [
    "GroupFeed",
    "HistoryAggregator",
    "HistoryBrowser",
    "MembershipCoordinator",
    "SettlementEngine",
    "ShoppingListEngine",
    "ShoppingListSession",
    "compute_trend",
    "parse_amount",
    "parse_checkout_date",
    "partition_history",
]
