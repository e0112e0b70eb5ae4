"""
Realtime Package

Per-record change subscriptions delivering full snapshots.
"""

from grocery_ledger.services.realtime.notifier import (
    RealtimeNotifier,
    Subscription,
    group_key,
    user_key,
)

__all__ = [
    "RealtimeNotifier",
    "Subscription",
    "group_key",
    "user_key",
]
