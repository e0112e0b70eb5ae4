"""
Live group view.

Consumes a group's snapshot stream and pushes every committed snapshot
into whatever is displaying it: the member's shopping list session and
the history browser. History is recomputed on every snapshot.
"""

import asyncio
from typing import Callable, Optional

import structlog

from grocery_ledger.engines.history import HistoryBrowser
from grocery_ledger.engines.shopping_list import ShoppingListSession
from grocery_ledger.models.group import Group
from grocery_ledger.services.realtime import Subscription


logger = structlog.get_logger(__name__)


class GroupFeed:
    """
    Applies snapshots from one group subscription, in commit order.

    Usage:
        feed = GroupFeed(await storage.subscribe_group(gid), session, browser)
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        subscription: Subscription,
        session: Optional[ShoppingListSession] = None,
        browser: Optional[HistoryBrowser] = None,
        on_snapshot: Optional[Callable[[Group], None]] = None,
    ):
        self._subscription = subscription
        self._session = session
        self._browser = browser
        self._on_snapshot = on_snapshot
        self._task: Optional[asyncio.Task] = None
        self.latest: Optional[Group] = None
        self.applied = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def apply(self, group: Group) -> None:
        self.latest = group
        if self._session is not None:
            self._session.apply_snapshot(group)
        if self._browser is not None:
            self._browser.load(group.history)
        if self._on_snapshot is not None:
            self._on_snapshot(group)
        self.applied += 1

    async def run(self) -> None:
        """Apply snapshots until the subscription is closed."""
        async for group in self._subscription:
            logger.debug("snapshot_applied", key=self._subscription.key, version=group.version)
            self.apply(group)

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Close the subscription and wait for the feed to drain."""
        self._subscription.close()
        if self._task is not None:
            await self._task
            self._task = None
