"""
Main Orchestrator for Grocery Ledger

This module ties together all the components and exposes the remote
operations a client calls:
1. Membership (register, create group, invite, accept, decline)
2. Reads (user data, groups, invites, group details, monthly history)
3. Live views (shopping list session, group feed)

DESIGN DECISION: The orchestrator is the only place typed errors become
responses. Engines raise; LedgerService answers every request with an
OperationResponse:
- `{success: True, data}` on success
- `{success: False, error: {code, message, retryable}}` on failure

Every request gets a correlation ID, a timeout and an audit trail.
Nothing unexpected escapes as a raw exception.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog

from grocery_ledger.audit import AuditLogger, create_correlation_id
from grocery_ledger.config import Settings, get_settings, validate_all_settings
from grocery_ledger.engines import (
    GroupFeed,
    HistoryAggregator,
    HistoryBrowser,
    MembershipCoordinator,
    SettlementEngine,
    ShoppingListEngine,
    ShoppingListSession,
    partition_history,
)
from grocery_ledger.engines.base import require_caller, require_self
from grocery_ledger.errors import InternalError, LedgerError, TransientError
from grocery_ledger.models.user import Caller
from grocery_ledger.models.responses import OperationResponse
from grocery_ledger.services.realtime import RealtimeNotifier, Subscription
from grocery_ledger.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    JsonFileLedgerStorage,
    LedgerStorageInterface,
)


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Remote-operation surface.

    Request = caller identity + named arguments.
    Response = OperationResponse.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        coordinator: Optional[MembershipCoordinator] = None,
        shopping_list_engine: Optional[ShoppingListEngine] = None,
        settlement_engine: Optional[SettlementEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        operation_timeouts: Optional[dict[str, float]] = None,
    ):
        self._settings = settings or get_settings()
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._coordinator = coordinator or MembershipCoordinator(
            storage, self._audit_logger, self._settings.app
        )
        self._shopping_list = shopping_list_engine or ShoppingListEngine(
            storage, self._audit_logger, self._settings.app
        )
        self._settlement = settlement_engine or SettlementEngine(storage, self._audit_logger)
        self._aggregator = HistoryAggregator(self._settings.app.history_tzinfo)
        self._timeouts = dict(operation_timeouts or {})

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit_logger

    def timeout_for(self, operation: str) -> float:
        return self._timeouts.get(operation, self._settings.app.operation_timeout_seconds)

    async def _call(
        self,
        operation: str,
        caller: Optional[Caller],
        work: Callable[[UUID], Awaitable[Any]],
    ) -> OperationResponse:
        """
        Run one operation and convert its outcome into a response.

        LedgerErrors keep their wire code. A timeout is reported as
        `unavailable`. Anything else is logged with its traceback and
        reported as `internal`.
        """
        correlation_id = create_correlation_id()
        actor_id = caller.uid if caller else None
        log = logger.bind(
            operation=operation,
            correlation_id=str(correlation_id),
            actor_id=actor_id,
        )

        try:
            data = await asyncio.wait_for(work(correlation_id), self.timeout_for(operation))
        except LedgerError as e:
            return await self._reject(operation, e, actor_id, correlation_id, log)
        except asyncio.TimeoutError:
            error = TransientError(f"{operation} timed out. Please retry.")
            return await self._reject(operation, error, actor_id, correlation_id, log)
        except Exception as e:
            log.error("operation_failed", error=str(e), exc_info=True)
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            error = InternalError("An unexpected error occurred. Please try again.")
            return OperationResponse.fail(error.code, error.message, error.retryable)

        log.info("operation_succeeded")
        return OperationResponse.ok(data)

    async def _reject(
        self,
        operation: str,
        error: LedgerError,
        actor_id: Optional[str],
        correlation_id: UUID,
        log,
    ) -> OperationResponse:
        log.info("operation_rejected", code=error.code, message=error.message)
        await self._audit_logger.log_operation_rejected(
            operation=operation,
            error_code=error.code,
            error_message=error.message,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )
        return OperationResponse.fail(error.code, error.message, error.retryable)

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def register_user(
        self,
        caller: Optional[Caller],
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> OperationResponse:
        """Create the caller's user record; email and name default to the identity's."""
        async def work(correlation_id: UUID):
            identity = require_caller(caller)
            user = await self._coordinator.register_user(
                uid=identity.uid,
                email=email or identity.email,
                name=name or identity.display_name,
                correlation_id=correlation_id,
            )
            return user.model_dump(mode="json")

        return await self._call("register_user", caller, work)

    async def get_user_data(self, caller: Optional[Caller], uid: str) -> OperationResponse:
        async def work(correlation_id: UUID):
            user = await self._coordinator.get_user_data(caller, uid)
            return user.model_dump(mode="json")

        return await self._call("get_user_data", caller, work)

    async def get_user_groups(self, caller: Optional[Caller], uid: str) -> OperationResponse:
        async def work(correlation_id: UUID):
            groups = await self._coordinator.get_user_groups(caller, uid)
            return [ref.model_dump(mode="json") for ref in groups]

        return await self._call("get_user_groups", caller, work)

    async def get_user_invites(self, caller: Optional[Caller], uid: str) -> OperationResponse:
        async def work(correlation_id: UUID):
            invites = await self._coordinator.get_user_invites(caller, uid)
            return [invite.model_dump(mode="json") for invite in invites]

        return await self._call("get_user_invites", caller, work)

    async def search_user_groups(
        self,
        caller: Optional[Caller],
        uid: str,
        search_term: Optional[str] = None,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            groups = await self._coordinator.search_user_groups(caller, uid, search_term)
            return [ref.model_dump(mode="json") for ref in groups]

        return await self._call("search_user_groups", caller, work)

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    async def create_group(
        self,
        caller: Optional[Caller],
        uid: str,
        name: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            ref = await self._coordinator.create_group(caller, uid, name, correlation_id)
            return ref.model_dump(mode="json")

        return await self._call("create_group", caller, work)

    async def check_group_name_exists(
        self,
        caller: Optional[Caller],
        uid: str,
        name: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            exists = await self._coordinator.check_group_name_exists(caller, uid, name)
            return {"exists": exists}

        return await self._call("check_group_name_exists", caller, work)

    async def get_group_details(
        self,
        caller: Optional[Caller],
        group_id: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            group = await self._coordinator.get_group_details(caller, group_id)
            return group.model_dump(mode="json")

        return await self._call("get_group_details", caller, work)

    async def get_group_history(
        self,
        caller: Optional[Caller],
        group_id: str,
    ) -> OperationResponse:
        """Monthly spending summaries for a group, newest month first."""
        async def work(correlation_id: UUID):
            group = await self._coordinator.get_group_details(caller, group_id)
            _, skipped = partition_history(group.history)
            for entry, reason in skipped:
                await self._audit_logger.log_history_entry_skipped(
                    group_id=group.id,
                    reason=reason,
                    entry=entry,
                    correlation_id=correlation_id,
                )
            symbol = self._settings.app.currency_symbol
            months = self._aggregator.aggregate(group.history)
            return [
                {
                    "key": summary.key,
                    "label": summary.label,
                    "total": str(summary.total),
                    "display_total": f"{symbol}{summary.total:.2f}",
                    "trend": summary.trend.value,
                    "checkouts": [
                        checkout.model_dump(mode="json")
                        for checkout in summary.sorted_checkouts()
                    ],
                }
                for summary in months
            ]

        return await self._call("get_group_history", caller, work)

    # -------------------------------------------------------------------------
    # Invitations
    # -------------------------------------------------------------------------

    async def invite_to_group(
        self,
        caller: Optional[Caller],
        group_id: str,
        email: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            invite = await self._coordinator.send_invitation(
                caller, group_id, email, correlation_id
            )
            return invite.model_dump(mode="json")

        return await self._call("invite_to_group", caller, work)

    async def accept_invitation(
        self,
        caller: Optional[Caller],
        invite_id: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            ref = await self._coordinator.accept_invitation(caller, invite_id, correlation_id)
            return ref.model_dump(mode="json")

        return await self._call("accept_invitation", caller, work)

    async def decline_invitation(
        self,
        caller: Optional[Caller],
        invite_id: str,
    ) -> OperationResponse:
        async def work(correlation_id: UUID):
            invite = await self._coordinator.decline_invitation(
                caller, invite_id, correlation_id
            )
            return {"inviteId": invite.id, "groupId": invite.group_id}

        return await self._call("decline_invitation", caller, work)

    # -------------------------------------------------------------------------
    # Live views
    # -------------------------------------------------------------------------

    async def open_session(
        self,
        caller: Optional[Caller],
        group_id: str,
    ) -> ShoppingListSession:
        """
        Start a member's optimistic shopping list session.

        Raises the engine's typed errors directly; sessions are local objects,
        not remote responses.
        """
        group = await self._coordinator.get_group_details(caller, group_id)
        return ShoppingListSession(
            engine=self._shopping_list,
            caller=caller,
            group_id=group.id,
            items=group.shopping_list,
            settlement=self._settlement,
            timeout=self.timeout_for("shopping_list"),
        )

    async def watch_group(
        self,
        caller: Optional[Caller],
        group_id: str,
        session: Optional[ShoppingListSession] = None,
        browser: Optional[HistoryBrowser] = None,
    ) -> GroupFeed:
        """Subscribe a member's views to a group's committed snapshots."""
        await self._coordinator.get_group_details(caller, group_id)
        subscription = await self._storage.subscribe_group(group_id)
        return GroupFeed(subscription, session=session, browser=browser)

    async def subscribe_user(self, caller: Optional[Caller], uid: str) -> Subscription:
        """Live stream of the caller's own user record (groups and invites)."""
        require_self(caller, uid, "watch")
        return await self._storage.subscribe_user(uid)


def create_app_components(
    storage: Optional[LedgerStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    settings: Optional[Settings] = None,
) -> LedgerService:
    """
    Factory function to create all application components.

    Args:
        storage: Ledger storage to use. Built from settings when omitted
                 ('memory' or 'json' backend).
        audit_storage: Where audit events are kept. In-memory when omitted.

    Returns:
        A ready LedgerService

    Raises:
        InternalError: If any settings section is invalid
    """
    settings = settings or get_settings()

    report = validate_all_settings(settings)
    invalid = [name for name, ok in report.items() if ok is False]
    if invalid:
        logger.error("settings_invalid", **report)
        raise InternalError(
            f"Invalid configuration: {', '.join(invalid)}",
            details=report,
        )

    if storage is None:
        notifier = RealtimeNotifier(settings.realtime.queue_size)
        if settings.storage.backend == "json":
            storage = JsonFileLedgerStorage(
                path=settings.storage.data_path,
                notifier=notifier,
                settings=settings.storage,
            )
        else:
            storage = InMemoryLedgerStorage(notifier=notifier, settings=settings.storage)

    audit_logger = AuditLogger(audit_storage or InMemoryAuditStorage())

    logger.info(
        "app_components_created",
        backend=type(storage).__name__,
        environment=settings.app.app_environment,
    )
    return LedgerService(storage=storage, audit_logger=audit_logger, settings=settings)
