"""
Data Models Package

This package contains all Pydantic models used in the Grocery Ledger system.
All data flowing through the system must conform to these schemas.
"""

from grocery_ledger.models.group import (
    Checkout,
    Group,
    GroupRef,
    Item,
    Member,
    new_id,
    utc_now,
)
from grocery_ledger.models.user import (
    Caller,
    Invite,
    User,
)
from grocery_ledger.models.history import (
    DatedCheckout,
    HistoryView,
    MonthlySummary,
    Trend,
)
from grocery_ledger.models.responses import (
    ErrorPayload,
    OperationResponse,
)
from grocery_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Group models
    "Checkout",
    "Group",
    "GroupRef",
    "Item",
    "Member",
    "new_id",
    "utc_now",
    # User models
    "Caller",
    "Invite",
    "User",
    # History models
    "DatedCheckout",
    "HistoryView",
    "MonthlySummary",
    "Trend",
    # Responses
    "ErrorPayload",
    "OperationResponse",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
