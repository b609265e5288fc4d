"""
Audit Event Models

One event per ledger mutation: who changed which entity, under which
correlation id, and with what outcome. Failed operations get an event too,
carrying the error class and message.

Events are append-only and are written after the ledger unit commits or
rolls back, never inside it.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from ledger.models.ledger import utcnow


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every mutating ledger operation has its own event type.
    """
    # Accounts and categories
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"

    # Postings
    TRANSACTION_POSTED = "transaction_posted"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"

    # Recurring rules
    RECURRING_CREATED = "recurring_created"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_EXECUTED = "recurring_executed"
    RECURRING_SKIPPED = "recurring_skipped"
    RECURRING_TOGGLED = "recurring_toggled"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_DELETED = "goal_deleted"
    GOAL_CONTRIBUTED = "goal_contributed"
    GOAL_COMPLETED = "goal_completed"

    # Budgets, shortcuts, settings
    BUDGET_SAVED = "budget_saved"
    BUDGET_DELETED = "budget_deleted"
    SHORTCUT_SAVED = "shortcut_saved"
    SHORTCUT_DELETED = "shortcut_deleted"
    SHORTCUT_EXECUTED = "shortcut_executed"
    SETTINGS_UPDATED = "settings_updated"

    # Backup
    BACKUP_EXPORTED = "backup_exported"
    BACKUP_RESTORED = "backup_restored"
    BACKUP_RESTORE_FAILED = "backup_restore_failed"

    # System events
    OPERATION_FAILED = "operation_failed"


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
    Every mutating operation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
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

    # Context - what entity is this about, and whose?
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner whose ledger was touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'goal', 'backup')"
    )
    entity_id: Optional[int] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one user action)"
    )

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

    is_user_action: bool = Field(
        default=True,
        description="Was this triggered by a user action (vs. a scheduled caller)?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def details_json(self) -> str:
        return json.dumps(self.details, default=str) if self.details else ""


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_posted(owner_id, tx_id, ...)
        event = AuditEventBuilder.operation_failed(owner_id, "edit_transaction", err)
    """

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: Optional[int],
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=is_user_action,
        )

    @staticmethod
    def transaction_posted(
        owner_id: str,
        transaction_id: int,
        kind: str,
        amount: int,
        from_account_id: int,
        to_account_id: int,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_POSTED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Posted {kind} of {amount} from account {from_account_id} to {to_account_id}",
            details={
                "kind": kind,
                "amount": amount,
                "from_account_id": from_account_id,
                "to_account_id": to_account_id,
            },
            is_user_action=is_user_action,
        )

    @staticmethod
    def recurring_executed(
        owner_id: str,
        rule_id: int,
        transaction_id: int,
        completed_occurrences: int,
        exhausted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_EXECUTED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Recurring rule executed (occurrence {completed_occurrences})",
            details={
                "transaction_id": transaction_id,
                "completed_occurrences": completed_occurrences,
                "exhausted": exhausted,
            },
            is_user_action=False,
        )

    @staticmethod
    def goal_completed(
        owner_id: str,
        goal_id: int,
        amount: int,
        to_account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            owner_id=owner_id,
            entity_type="goal",
            entity_id=goal_id,
            correlation_id=correlation_id,
            description=f"Goal completed, {amount} withdrawn to account {to_account_id}",
            details={
                "amount": amount,
                "to_account_id": to_account_id,
            },
        )

    @staticmethod
    def backup_restored(
        owner_id: str,
        row_count: int,
        backup_timestamp: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_RESTORED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="backup",
            correlation_id=correlation_id,
            description=f"Ledger replaced from backup taken at {backup_timestamp}",
            details={
                "row_count": row_count,
                "backup_timestamp": backup_timestamp,
            },
        )

    @staticmethod
    def operation_failed(
        owner_id: str,
        operation: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.BACKUP_RESTORE_FAILED
            if operation == "restore_backup"
            else AuditEventType.OPERATION_FAILED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Operation failed: {operation}",
            error_code=type(error).__name__,
            error_message=str(error),
            details={"operation": operation, **(details or {})},
        )
