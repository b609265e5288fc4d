"""
Ledger Audit Trail

DESIGN DECISION: Every ledger mutation leaves an event behind, so a balance
can be traced back to the postings, edits and restores that produced it.

Events are written once the ledger unit is over:
- after commit, describing what changed
- after rollback, describing what failed and why

A broken audit table is logged and ignored; it never fails a posting.
Correlation ids group the events of one caller action.
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from ledger.services.storage import AuditStorageInterface


def configure_logging(environment: str = "production", debug: bool = False) -> None:
    """
    Configure structlog for the ledger.

    Development gets the console renderer, every other environment one JSON
    object per line. debug lowers the ledger loggers to DEBUG.
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if environment == "development":
        # ConsoleRenderer formats exceptions itself
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Module loggers must pick up a later reconfiguration
        cache_logger_on_first_use=False,
    )
    logging.getLogger("ledger").setLevel(logging.DEBUG if debug else logging.INFO)


configure_logging()


class AuditLogger:
    """
    Writes ledger audit events to structlog and, when an audit store is
    given, to the audit table.

    Without a store (scripts, tests) events only reach the local log.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when the audit store rejected the write.
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # The ledger unit is already over; nothing to roll back
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: Optional[int],
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        is_user_action: bool = True,
    ) -> None:
        """Log a create, update, delete or other single-entity change."""
        event = AuditEventBuilder.entity_changed(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
            is_user_action=is_user_action,
        )
        await self.log(event)

    async def log_transaction_posted(
        self,
        owner_id: str,
        transaction_id: int,
        kind: str,
        amount: int,
        from_account_id: int,
        to_account_id: int,
        correlation_id: Optional[UUID] = None,
        is_user_action: bool = True,
    ) -> None:
        event = AuditEventBuilder.transaction_posted(
            owner_id=owner_id,
            transaction_id=transaction_id,
            kind=kind,
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            correlation_id=correlation_id,
            is_user_action=is_user_action,
        )
        await self.log(event)

    async def log_recurring_executed(
        self,
        owner_id: str,
        rule_id: int,
        transaction_id: int,
        completed_occurrences: int,
        exhausted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.recurring_executed(
            owner_id=owner_id,
            rule_id=rule_id,
            transaction_id=transaction_id,
            completed_occurrences=completed_occurrences,
            exhausted=exhausted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_goal_completed(
        self,
        owner_id: str,
        goal_id: int,
        amount: int,
        to_account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.goal_completed(
            owner_id=owner_id,
            goal_id=goal_id,
            amount=amount,
            to_account_id=to_account_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backup_restored(
        self,
        owner_id: str,
        row_count: int,
        backup_timestamp: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.backup_restored(
            owner_id=owner_id,
            row_count=row_count,
            backup_timestamp=backup_timestamp,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_operation_failed(
        self,
        owner_id: str,
        operation: str,
        error: Exception,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Log an operation whose unit was rolled back."""
        event = AuditEventBuilder.operation_failed(
            owner_id=owner_id,
            operation=operation,
            error=error,
            correlation_id=correlation_id,
            details=details,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """One id per caller action; pass it to every service call the action makes."""
    return uuid4()
