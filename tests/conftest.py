"""
Shared fixtures.

Everything runs against the in-memory store. Failures are injected by
subclassing it, never by talking to a real backend.
"""

import pytest

from grocery_ledger.audit import AuditLogger
from grocery_ledger.config import AppSettings, Settings, StorageSettings
from grocery_ledger.engines import (
    MembershipCoordinator,
    SettlementEngine,
    ShoppingListEngine,
)
from grocery_ledger.models import Caller, Group, Member, User
from grocery_ledger.services.realtime import RealtimeNotifier
from grocery_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    StorageUnavailableError,
)


class FailingLedgerStorage(InMemoryLedgerStorage):
    """In-memory store whose commits fail while `failing` is set."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = False
        self.persist_calls = 0

    async def _persist(self, records):
        self.persist_calls += 1
        if self.failing:
            raise StorageUnavailableError("backend offline")


@pytest.fixture
def storage_settings():
    return StorageSettings(
        backend="memory",
        transaction_max_attempts=3,
        retry_wait_min_seconds=0,
        retry_wait_max_seconds=0,
    )


@pytest.fixture
def app_settings():
    return AppSettings(operation_timeout_seconds=2.0)


@pytest.fixture
def settings(monkeypatch):
    """Root settings whose sections match the fixtures above."""
    monkeypatch.setenv("LEDGER_STORAGE_TRANSACTION_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("LEDGER_STORAGE_RETRY_WAIT_MIN_SECONDS", "0")
    monkeypatch.setenv("LEDGER_STORAGE_RETRY_WAIT_MAX_SECONDS", "0")
    monkeypatch.setenv("OPERATION_TIMEOUT_SECONDS", "2")
    return Settings()


@pytest.fixture
def notifier():
    return RealtimeNotifier(queue_size=0)


@pytest.fixture
def storage(notifier, storage_settings):
    return FailingLedgerStorage(notifier=notifier, settings=storage_settings)


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def coordinator(storage, audit_logger, app_settings):
    return MembershipCoordinator(storage, audit_logger, app_settings)


@pytest.fixture
def shopping_engine(storage, audit_logger, app_settings):
    return ShoppingListEngine(storage, audit_logger, app_settings)


@pytest.fixture
def settlement_engine(storage, audit_logger):
    return SettlementEngine(storage, audit_logger)


@pytest.fixture
def alice():
    return Caller(uid="alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def bob():
    return Caller(uid="bob", email="bob@example.com", display_name="Bob")


@pytest.fixture
def carol():
    return Caller(uid="carol", email="carol@example.com")


@pytest.fixture
def seed_users(storage, alice, bob, carol):
    """Register alice, bob and carol directly in the store."""
    async def seed():
        for caller in (alice, bob, carol):
            await storage.save_user(User(
                id=caller.uid,
                email=caller.email,
                name=caller.display_name or caller.email,
            ))
    return seed


@pytest.fixture
def seed_group(storage):
    """Write a group with the given members, list and history."""
    async def seed(members, items=(), history=(), group_id="g1", name="Groceries"):
        group = Group(
            id=group_id,
            name=name,
            members=[Member(id=caller.uid, name=caller.uid) for caller in members],
            shopping_list=list(items),
            history=list(history),
        )
        return await storage.save_group(group)
    return seed

