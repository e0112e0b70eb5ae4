"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of who changed which record
2. Debugging capability when writes fail and local state rolls back
3. A record of how every amount entered a group's history

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from grocery_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from grocery_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("grocery_ledger.audit")

    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def _emit(self, build: Callable[..., AuditEvent], **kwargs) -> bool:
        """
        Build an event and log it.

        Callers run after their write has committed, so a bad event is
        reported locally and dropped instead of raised.
        """
        try:
            event = build(**kwargs)
        except Exception as e:
            self._logger.error(
                "audit_event_invalid",
                builder=build.__name__,
                error=str(e),
            )
            return False
        return await self.log(event)

    async def log_user_registered(
        self,
        user_id: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.user_registered,
            user_id=user_id,
            email=email,
            correlation_id=correlation_id,
        )

    async def log_group_created(
        self,
        group_id: str,
        name: str,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log group creation."""
        await self._emit(
            AuditEventBuilder.group_created,
            group_id=group_id,
            name=name,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )

    async def log_invite_sent(
        self,
        invite_id: str,
        group_id: str,
        inviter_id: str,
        invitee_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.invite_sent,
            invite_id=invite_id,
            group_id=group_id,
            inviter_id=inviter_id,
            invitee_id=invitee_id,
            correlation_id=correlation_id,
        )

    async def log_invite_resolved(
        self,
        invite_id: str,
        group_id: str,
        user_id: str,
        accepted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an invitation being accepted or declined."""
        await self._emit(
            AuditEventBuilder.invite_resolved,
            invite_id=invite_id,
            group_id=group_id,
            user_id=user_id,
            accepted=accepted,
            correlation_id=correlation_id,
        )

    async def log_stale_invite_dropped(
        self,
        invite_id: str,
        group_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.stale_invite_dropped,
            invite_id=invite_id,
            group_id=group_id,
            user_id=user_id,
            correlation_id=correlation_id,
        )

    async def log_item_mutated(
        self,
        event_type: AuditEventType,
        group_id: str,
        item_id: str,
        actor_id: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.item_mutated,
            event_type=event_type,
            group_id=group_id,
            item_id=item_id,
            actor_id=actor_id,
            details=details,
            correlation_id=correlation_id,
        )

    async def log_checkout_settled(
        self,
        group_id: str,
        checkout_id: str,
        buyer: str,
        amount: Decimal,
        items: list[str],
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a settled checkout."""
        await self._emit(
            AuditEventBuilder.checkout_settled,
            group_id=group_id,
            checkout_id=checkout_id,
            buyer=buyer,
            amount=amount,
            items=items,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )

    async def log_persistence_failed(
        self,
        entity_type: str,
        entity_id: str,
        operation: str,
        error_message: str,
        rolled_back: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed write (and whether local state was rolled back)."""
        await self._emit(
            AuditEventBuilder.persistence_failed,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            error_message=error_message,
            rolled_back=rolled_back,
            correlation_id=correlation_id,
        )

    async def log_history_entry_skipped(
        self,
        group_id: str,
        reason: str,
        entry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.history_entry_skipped,
            group_id=group_id,
            reason=reason,
            entry=entry,
            correlation_id=correlation_id,
        )

    async def log_operation_rejected(
        self,
        operation: str,
        error_code: str,
        error_message: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self._emit(
            AuditEventBuilder.operation_rejected,
            operation=operation,
            error_code=error_code,
            error_message=error_message,
            actor_id=actor_id,
            correlation_id=correlation_id,
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self._emit(
            AuditEventBuilder.system_error,
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new request.
    Pass it through all subsequent operations.
    """
    return uuid4()
