"""
Tests for change subscriptions and the live group feed.
"""

import asyncio

import pytest

from grocery_ledger.engines import GroupFeed, HistoryBrowser, ShoppingListSession
from grocery_ledger.models import Group, Item, Member
from grocery_ledger.services.realtime import RealtimeNotifier, group_key
from grocery_ledger.services.storage import StorageUnavailableError


async def wait_until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


class TestRealtimeNotifier:
    """Fan-out and buffering."""

    async def test_publish_reaches_every_subscriber(self):
        """Every subscriber of a key gets the snapshot."""
        notifier = RealtimeNotifier(queue_size=0)
        first = notifier.subscribe("groups/g1")
        second = notifier.subscribe("groups/g1")
        other = notifier.subscribe("groups/g2")

        assert notifier.publish("groups/g1", Group(id="g1", name="G")) == 2
        assert (await first.next(timeout=1)).id == "g1"
        assert (await second.next(timeout=1)).id == "g1"
        assert other.pending() == 0

    async def test_snapshots_are_copies(self):
        """A subscriber mutating its snapshot doesn't affect another."""
        notifier = RealtimeNotifier(queue_size=0)
        first = notifier.subscribe("k")
        second = notifier.subscribe("k")
        notifier.publish("k", Group(id="g1", name="G"))

        mine = await first.next(timeout=1)
        mine.shopping_list.append(Item(name="milk"))
        assert (await second.next(timeout=1)).shopping_list == []

    async def test_bounded_buffer_drops_oldest(self):
        """A slow subscriber keeps the newest snapshots."""
        notifier = RealtimeNotifier(queue_size=2)
        subscription = notifier.subscribe("k")
        for version in (1, 2, 3):
            notifier.publish("k", Group(id="g1", name="G", version=version))

        assert (await subscription.next(timeout=1)).version == 2
        assert (await subscription.next(timeout=1)).version == 3

    async def test_close_ends_iteration(self):
        """Closing releases readers and stops delivery."""
        notifier = RealtimeNotifier(queue_size=0)
        subscription = notifier.subscribe("k")
        received = []

        async def consume():
            async for snapshot in subscription:
                received.append(snapshot.version)

        task = asyncio.create_task(consume())
        notifier.publish("k", Group(id="g1", name="G", version=1))
        await wait_until(lambda: received == [1])

        subscription.close()
        await asyncio.wait_for(task, 1)
        assert notifier.publish("k", Group(id="g1", name="G", version=2)) == 0
        assert notifier.subscriber_count("k") == 0
        assert subscription.closed

    async def test_next_times_out(self):
        """Waiting with a timeout on a quiet stream raises TimeoutError."""
        subscription = RealtimeNotifier(queue_size=0).subscribe("k")
        with pytest.raises(asyncio.TimeoutError):
            await subscription.next(timeout=0.01)

    async def test_close_all(self):
        """close_all closes every open subscription."""
        notifier = RealtimeNotifier(queue_size=0)
        subscriptions = [notifier.subscribe("a"), notifier.subscribe("b")]
        notifier.close_all()
        assert all(s.closed for s in subscriptions)
        with pytest.raises(StopAsyncIteration):
            await subscriptions[0].next(timeout=1)


class TestStoreSubscriptions:
    """Subscriptions opened through the store."""

    async def test_current_snapshot_then_commits_in_order(self, storage):
        """The stream starts with the current record, then one per commit."""
        group = await storage.save_group(Group(id="g1", name="G"))
        subscription = await storage.subscribe_group("g1")

        for name in ("A", "B"):
            group = await storage.save_group(group.model_copy(update={"name": name}))

        seen = [(await subscription.next(timeout=1)) for _ in range(3)]
        assert [(g.version, g.name) for g in seen] == [(1, "G"), (2, "A"), (3, "B")]
        subscription.close()

    async def test_subscribing_before_the_record_exists(self, storage):
        """No initial snapshot for a missing record; the first commit arrives."""
        subscription = await storage.subscribe_group("g1")
        assert subscription.pending() == 0
        await storage.save_group(Group(id="g1", name="G"))
        assert (await subscription.next(timeout=1)).name == "G"

    async def test_failed_commit_publishes_nothing(self, storage):
        """Subscribers only ever see committed state."""
        await storage.save_group(Group(id="g1", name="G"))
        subscription = await storage.subscribe_group("g1")
        await subscription.next(timeout=1)

        storage.failing = True
        with pytest.raises(StorageUnavailableError):
            await storage.save_group(Group(id="g1", name="Nope"))
        assert subscription.pending() == 0

    async def test_user_subscription(self, storage, seed_users):
        """User records stream the same way."""
        await seed_users()
        subscription = await storage.subscribe_user("bob")
        assert (await subscription.next(timeout=1)).email == "bob@example.com"
        assert storage.notifier.subscriber_count("users/bob") == 1
        subscription.close()
        assert storage.notifier.subscriber_count("users/bob") == 0

    async def test_resubscribe_starts_fresh(self, storage):
        """A new subscription starts from the latest snapshot."""
        group = await storage.save_group(Group(id="g1", name="G"))
        first = await storage.subscribe_group("g1")
        await storage.save_group(group.model_copy(update={"name": "A"}))
        first.close()

        second = await storage.subscribe_group("g1")
        latest = await second.next(timeout=1)
        assert (latest.version, latest.name) == (2, "A")
        assert storage.notifier.subscriber_count(group_key("g1")) == 1


class TestGroupFeed:
    """Pushing snapshots into the list and history views."""

    async def test_feed_updates_session_and_history(
        self, storage, shopping_engine, settlement_engine, alice, bob
    ):
        """Another member's edits and checkouts show up in our views."""
        await storage.save_group(Group(
            id="g1",
            name="Groceries",
            members=[Member(id="alice", name="Alice"), Member(id="bob", name="Bob")],
        ))
        session = ShoppingListSession(shopping_engine, alice, "g1")
        browser = HistoryBrowser()
        feed = GroupFeed(await storage.subscribe_group("g1"), session=session, browser=browser)
        feed.start()
        await wait_until(lambda: feed.applied == 1)

        item = Item(name="eggs", checked=True)
        items = await shopping_engine.add_item(bob, "g1", item)
        await wait_until(lambda: feed.applied == 2)
        assert [i.name for i in session.items] == ["eggs"]

        await settlement_engine.checkout(bob, "g1", "6", items)
        await wait_until(lambda: feed.applied == 3)
        assert session.items == []
        assert len(browser.months) == 1
        assert str(browser.months[0].total) == "6"

        await feed.stop()
        assert not feed.running
        assert feed.latest.version == 3
