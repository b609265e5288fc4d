"""
Data Models Package

This package contains all Pydantic models used by the personal ledger.
All data flowing through the engines must conform to these schemas.
"""

from ledger.models.ledger import (
    Account,
    AccountClass,
    Budget,
    BudgetPeriod,
    BudgetProgress,
    Category,
    Entry,
    EntrySide,
    Frequency,
    Goal,
    LedgerModel,
    PostingChanges,
    PostingRequest,
    RecurringRule,
    RecurringState,
    Shortcut,
    Transaction,
    TransactionKind,
    TransactionWithEntries,
    UserSettings,
    ValidationIssue,
    ValidationResult,
)
from ledger.models.backup import (
    BACKUP_FORMAT_VERSION,
    BackupData,
    BackupPayload,
)
from ledger.models.reports import (
    CategorySpending,
    JournalLine,
    MonthlyTotals,
    NetWorth,
    UpcomingRecurring,
)
from ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountClass",
    "Budget",
    "BudgetPeriod",
    "BudgetProgress",
    "Category",
    "Entry",
    "EntrySide",
    "Frequency",
    "Goal",
    "LedgerModel",
    "PostingChanges",
    "PostingRequest",
    "RecurringRule",
    "RecurringState",
    "Shortcut",
    "Transaction",
    "TransactionKind",
    "TransactionWithEntries",
    "UserSettings",
    "ValidationIssue",
    "ValidationResult",
    # Backup models
    "BACKUP_FORMAT_VERSION",
    "BackupData",
    "BackupPayload",
    # Report models
    "CategorySpending",
    "JournalLine",
    "MonthlyTotals",
    "NetWorth",
    "UpcomingRecurring",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
