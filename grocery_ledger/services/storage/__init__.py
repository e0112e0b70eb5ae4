"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory backend (tests, single session) and a JSON file backend,
but is designed to be swappable.
"""

from grocery_ledger.services.storage.interface import (
    AuditStorageInterface,
    GroupStorageInterface,
    LedgerStorageInterface,
    StorageError,
    StorageTransaction,
    StorageUnavailableError,
    TransactionConflictError,
    UserStorageInterface,
)
from grocery_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from grocery_ledger.services.storage.json_file import JsonFileLedgerStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "GroupStorageInterface",
    "LedgerStorageInterface",
    "StorageTransaction",
    "UserStorageInterface",
    # Exceptions
    "StorageError",
    "StorageUnavailableError",
    "TransactionConflictError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "JsonFileLedgerStorage",
]
