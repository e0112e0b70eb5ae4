"""
Tests for shopping list operations, persistence and optimistic sessions.
"""

import asyncio

import pytest

from grocery_ledger.engines import ShoppingListSession
from grocery_ledger.engines.shopping_list import (
    add_item,
    delete_item,
    remove_items,
    rename_item,
    toggle_item,
)
from grocery_ledger.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransientError,
    UnauthenticatedError,
    ValidationError,
)
from grocery_ledger.models import AuditEventType, Item
from grocery_ledger.services.storage import InMemoryLedgerStorage


def make_items(*specs):
    return [Item(name=name, checked=checked) for name, checked in specs]


class GatedLedgerStorage(InMemoryLedgerStorage):
    """Store whose commits block until the gate is opened."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = asyncio.Event()

    async def _persist(self, records):
        await self.gate.wait()


class TestListOperations:
    """Pure list functions."""

    def test_add_item_appends_unchecked(self):
        """The new item is last and unchecked; the input is untouched."""
        items = make_items(("milk", False))
        updated = add_item(items, "  eggs ")
        assert len(items) == 1
        assert [i.name for i in updated] == ["milk", "eggs"]
        assert updated[-1].checked is False

    def test_add_item_rejects_blank_and_long_names(self):
        """Empty and oversized names raise ValidationError."""
        with pytest.raises(ValidationError):
            add_item([], "   ")
        with pytest.raises(ValidationError):
            add_item([], "x" * 11, max_length=10)

    def test_toggle_twice_restores(self):
        """Toggling is its own inverse."""
        items = make_items(("milk", False), ("eggs", True))
        for item in items:
            twice = toggle_item(toggle_item(items, item.id), item.id)
            assert twice == items

    def test_toggle_missing_item(self):
        """Toggling an unknown id raises NotFoundError."""
        with pytest.raises(NotFoundError):
            toggle_item(make_items(("milk", False)), "nope")

    def test_rename_trims_and_ignores_blank(self):
        """Rename trims; blank names and unknown ids are no-ops."""
        items = make_items(("milk", False))
        item_id = items[0].id
        assert rename_item(items, item_id, "  oat milk ")[0].name == "oat milk"
        assert rename_item(items, item_id, "   ") == items
        assert rename_item(items, "nope", "bread") == items

    def test_rename_keeps_checked_state(self):
        """Renaming doesn't touch the checked flag."""
        items = make_items(("milk", True))
        assert rename_item(items, items[0].id, "cream")[0].checked is True

    def test_delete_item(self):
        """Delete removes exactly the addressed item, even among duplicates."""
        items = make_items(("milk", False), ("milk", False))
        updated = delete_item(items, items[1].id)
        assert [i.id for i in updated] == [items[0].id]
        with pytest.raises(NotFoundError):
            delete_item(items, "nope")

    def test_remove_items_ignores_unknown_ids(self):
        """Ids not on the list are ignored."""
        items = make_items(("milk", False), ("eggs", True))
        assert remove_items(items, {items[1].id, "gone"}) == [items[0]]


class TestShoppingListEngine:
    """Persistence of targeted changes."""

    async def test_add_item_is_persisted(self, shopping_engine, storage, seed_group, alice):
        """An added item lands in the stored list with its id."""
        await seed_group([alice])
        item = Item(name="bread")
        await shopping_engine.add_item(alice, "g1", item)
        group = await storage.get_group("g1")
        assert [(i.id, i.name) for i in group.shopping_list] == [(item.id, "bread")]

    async def test_non_member_is_rejected(self, shopping_engine, storage, seed_group, alice, bob):
        """Only members may edit the list."""
        await seed_group([alice])
        with pytest.raises(PermissionDeniedError):
            await shopping_engine.add_item(bob, "g1", Item(name="bread"))
        assert (await storage.get_group("g1")).shopping_list == []

    async def test_unauthenticated_and_missing_group(self, shopping_engine, seed_group, alice):
        """No caller and unknown groups are rejected."""
        await seed_group([alice])
        with pytest.raises(UnauthenticatedError):
            await shopping_engine.add_item(None, "g1", Item(name="bread"))
        with pytest.raises(NotFoundError):
            await shopping_engine.add_item(alice, "nope", Item(name="bread"))

    async def test_delete_of_removed_item_is_noop(self, shopping_engine, storage, seed_group, alice):
        """Deleting an item someone else already removed succeeds quietly."""
        items = make_items(("milk", False))
        await seed_group([alice], items=items)
        await shopping_engine.delete_item(alice, "g1", items[0].id)
        await shopping_engine.delete_item(alice, "g1", items[0].id)
        assert (await storage.get_group("g1")).shopping_list == []

    async def test_mutations_are_audited(self, shopping_engine, audit_storage, seed_group, alice):
        """Each change records an item event."""
        await seed_group([alice])
        item = Item(name="bread")
        await shopping_engine.add_item(alice, "g1", item)
        await shopping_engine.set_checked(alice, "g1", item.id, True)
        events = await audit_storage.get_events_by_entity("group", "g1")
        assert [e.event_type for e in events if e.details.get("item_id") == item.id] == [
            AuditEventType.ITEM_ADDED,
            AuditEventType.ITEM_TOGGLED,
        ]


class TestShoppingListSession:
    """Optimistic local sessions."""

    async def test_concurrent_edits_to_different_items_survive(
        self, shopping_engine, storage, seed_group, alice, bob
    ):
        """Two members toggling different items at once both win."""
        items = make_items(("milk", False), ("eggs", False))
        group = await seed_group([alice, bob], items=items)
        mine = ShoppingListSession(shopping_engine, alice, "g1", group.shopping_list)
        theirs = ShoppingListSession(shopping_engine, bob, "g1", group.shopping_list)

        await asyncio.gather(
            mine.toggle_item(items[0].id),
            theirs.toggle_item(items[1].id),
        )

        stored = await storage.get_group("g1")
        assert [i.checked for i in stored.shopping_list] == [True, True]

    async def test_add_and_rename_by_different_members(
        self, shopping_engine, storage, seed_group, alice, bob
    ):
        """An add and a rename started from the same view don't overwrite each other."""
        items = make_items(("milk", False))
        group = await seed_group([alice, bob], items=items)
        mine = ShoppingListSession(shopping_engine, alice, "g1", group.shopping_list)
        theirs = ShoppingListSession(shopping_engine, bob, "g1", group.shopping_list)

        await asyncio.gather(
            mine.add_item("bread"),
            theirs.rename_item(items[0].id, "oat milk"),
        )

        stored = await storage.get_group("g1")
        assert sorted(i.name for i in stored.shopping_list) == ["bread", "oat milk"]

    async def test_local_state_changes_before_write_completes(
        self, notifier, storage_settings, alice, app_settings
    ):
        """The view shows the new item while the write is still in flight."""
        from grocery_ledger.engines import ShoppingListEngine
        from grocery_ledger.models import Group, Member

        gated = GatedLedgerStorage(notifier=notifier, settings=storage_settings)
        gated.gate.set()
        await gated.save_group(Group(id="g1", name="G", members=[Member(id="alice", name="A")]))
        gated.gate.clear()

        engine = ShoppingListEngine(gated, settings=app_settings)
        session = ShoppingListSession(engine, alice, "g1")
        task = asyncio.create_task(session.add_item("bread"))
        await asyncio.sleep(0)

        assert [i.name for i in session.items] == ["bread"]
        assert (await gated.get_group("g1")).shopping_list == []

        gated.gate.set()
        item = await task
        assert (await gated.get_group("g1")).find_item(item.id) is not None

    async def test_failed_toggle_rolls_back(
        self, shopping_engine, storage, audit_storage, seed_group, alice
    ):
        """A failed write restores exactly the cached snapshot."""
        items = make_items(("milk", False), ("eggs", True))
        group = await seed_group([alice], items=items)
        session = ShoppingListSession(shopping_engine, alice, "g1", group.shopping_list)
        before = session.items

        storage.failing = True
        with pytest.raises(TransientError):
            await session.toggle_item(items[0].id)

        assert session.items == before
        assert (await storage.get_group("g1")).shopping_list == group.shopping_list
        events = await audit_storage.get_events_by_entity("group", "g1")
        assert AuditEventType.LOCAL_STATE_ROLLED_BACK in [e.event_type for e in events]

    async def test_failed_add_rolls_back(self, shopping_engine, storage, seed_group, alice):
        """A failed add leaves the local list as it was."""
        group = await seed_group([alice], items=make_items(("milk", False)))
        session = ShoppingListSession(shopping_engine, alice, "g1", group.shopping_list)

        storage.failing = True
        with pytest.raises(TransientError):
            await session.add_item("bread")
        assert [i.name for i in session.items] == ["milk"]

        storage.failing = False
        await session.add_item("bread")
        assert [i.name for i in session.items] == ["milk", "bread"]

    async def test_rejected_change_rolls_back(self, shopping_engine, seed_group, alice, bob):
        """Non-retryable rejections also restore the snapshot."""
        group = await seed_group([alice], items=make_items(("milk", False)))
        session = ShoppingListSession(shopping_engine, bob, "g1", group.shopping_list)
        before = session.items
        with pytest.raises(PermissionDeniedError):
            await session.delete_item(before[0].id)
        assert session.items == before

    async def test_timeout_rolls_back(self, notifier, storage_settings, alice, app_settings):
        """A write that doesn't finish in time is rolled back as transient."""
        from grocery_ledger.engines import ShoppingListEngine
        from grocery_ledger.models import Group, Member

        gated = GatedLedgerStorage(notifier=notifier, settings=storage_settings)
        gated.gate.set()
        await gated.save_group(Group(id="g1", name="G", members=[Member(id="alice", name="A")]))
        gated.gate.clear()

        session = ShoppingListSession(
            ShoppingListEngine(gated, settings=app_settings), alice, "g1", timeout=0.05,
        )
        with pytest.raises(TransientError):
            await session.add_item("bread")
        assert session.items == []

        # The commit itself still completes; the feed brings it back
        gated.gate.set()
        subscription = await gated.subscribe_group("g1")
        latest = await subscription.next(timeout=1)
        assert [i.name for i in latest.shopping_list] == ["bread"]
        subscription.close()

    async def test_noop_rename_persists_nothing(self, shopping_engine, storage, seed_group, alice):
        """A blank rename changes nothing and writes nothing."""
        group = await seed_group([alice], items=make_items(("milk", False)))
        session = ShoppingListSession(shopping_engine, alice, "g1", group.shopping_list)
        calls = storage.persist_calls
        assert await session.rename_item(group.shopping_list[0].id, "  ") is None
        assert storage.persist_calls == calls

    async def test_apply_snapshot_replaces_items(self, shopping_engine, alice):
        """A committed snapshot becomes the local view."""
        from grocery_ledger.models import Group

        session = ShoppingListSession(shopping_engine, alice, "g1", make_items(("milk", False)))
        session.apply_snapshot(Group(id="g1", name="G", shopping_list=make_items(("eggs", True))))
        assert [i.name for i in session.items] == ["eggs"]
        assert session.has_checked_items
