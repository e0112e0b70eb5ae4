"""
Audit Models for Grocery Ledger

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of who changed which group or user record
2. Debugging information when a write fails and state is rolled back
3. Ability to reconstruct how money entered a group's history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from grocery_ledger.models.group import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every state-changing operation has its own event type.
    """
    # Users
    USER_REGISTERED = "user_registered"

    # Groups and membership
    GROUP_CREATED = "group_created"
    INVITE_SENT = "invite_sent"
    INVITE_ACCEPTED = "invite_accepted"
    INVITE_DECLINED = "invite_declined"
    STALE_INVITE_DROPPED = "stale_invite_dropped"

    # Shopping list
    ITEM_ADDED = "item_added"
    ITEM_TOGGLED = "item_toggled"
    ITEM_RENAMED = "item_renamed"
    ITEM_DELETED = "item_deleted"

    # Settlement
    CHECKOUT_SETTLED = "checkout_settled"

    # Failures
    PERSISTENCE_FAILED = "persistence_failed"
    LOCAL_STATE_ROLLED_BACK = "local_state_rolled_back"
    HISTORY_ENTRY_SKIPPED = "history_entry_skipped"
    OPERATION_REJECTED = "operation_rejected"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'group', 'user', 'invite')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[str] = Field(
        default=None,
        description="Caller who triggered the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one request)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.group_created(group_id, name, owner_id)
        event = AuditEventBuilder.checkout_settled(group_id, buyer, amount, items)
    """

    @staticmethod
    def user_registered(
        user_id: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_REGISTERED,
            entity_type="user",
            entity_id=user_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description="User registered",
            details={"email": email},
        )

    @staticmethod
    def group_created(
        group_id: str,
        name: str,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            entity_type="group",
            entity_id=group_id,
            actor_id=owner_id,
            correlation_id=correlation_id,
            description="Group created",
            details={"name": name},
        )

    @staticmethod
    def invite_sent(
        invite_id: str,
        group_id: str,
        inviter_id: str,
        invitee_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITE_SENT,
            entity_type="invite",
            entity_id=invite_id,
            actor_id=inviter_id,
            correlation_id=correlation_id,
            description="Invitation sent",
            details={
                "group_id": group_id,
                "invitee_id": invitee_id,
            },
        )

    @staticmethod
    def invite_resolved(
        invite_id: str,
        group_id: str,
        user_id: str,
        accepted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INVITE_ACCEPTED if accepted
                else AuditEventType.INVITE_DECLINED
            ),
            entity_type="invite",
            entity_id=invite_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description=f"Invitation {'accepted' if accepted else 'declined'}",
            details={"group_id": group_id},
        )

    @staticmethod
    def stale_invite_dropped(
        invite_id: str,
        group_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_INVITE_DROPPED,
            severity=AuditSeverity.WARNING,
            entity_type="invite",
            entity_id=invite_id,
            actor_id=user_id,
            correlation_id=correlation_id,
            description="Invitation dropped: group no longer exists",
            details={"group_id": group_id},
        )

    @staticmethod
    def item_mutated(
        event_type: AuditEventType,
        group_id: str,
        item_id: str,
        actor_id: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.DEBUG,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Shopping list {event_type.value.replace('_', ' ')}",
            details={"item_id": item_id, **(details or {})},
        )

    @staticmethod
    def checkout_settled(
        group_id: str,
        checkout_id: str,
        buyer: str,
        amount: Decimal,
        items: list[str],
        actor_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKOUT_SETTLED,
            entity_type="group",
            entity_id=group_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Checkout of {len(items)} item(s) settled",
            details={
                "buyer": buyer,
                "checkout_id": checkout_id,
                "amount": str(amount),
                "items": items,
            },
        )

    @staticmethod
    def persistence_failed(
        entity_type: str,
        entity_id: str,
        operation: str,
        error_message: str,
        rolled_back: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.LOCAL_STATE_ROLLED_BACK if rolled_back
                else AuditEventType.PERSISTENCE_FAILED
            ),
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Write failed during {operation}",
            details={"operation": operation, "rolled_back": rolled_back},
            error_message=error_message,
        )

    @staticmethod
    def history_entry_skipped(
        group_id: str,
        reason: str,
        entry: Any,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HISTORY_ENTRY_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="group",
            entity_id=group_id,
            correlation_id=correlation_id,
            description="Unreadable history entry skipped during aggregation",
            details={"reason": reason, "entry": repr(entry)[:200]},
        )

    @staticmethod
    def operation_rejected(
        operation: str,
        error_code: str,
        error_message: str,
        actor_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.INFO,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Operation rejected: {operation}",
            details={"operation": operation},
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_message=error_message,
        )
