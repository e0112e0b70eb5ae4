"""Services package."""

from grocery_ledger.services.realtime import (
    RealtimeNotifier,
    Subscription,
)
from grocery_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
    StorageError,
    StorageUnavailableError,
    TransactionConflictError,
)

__all__ = [
    # Realtime
    "RealtimeNotifier",
    "Subscription",
    # Storage services
    "AuditStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "JsonFileLedgerStorage",
    "LedgerStorageInterface",
    "StorageError",
    "StorageUnavailableError",
    "TransactionConflictError",
]
