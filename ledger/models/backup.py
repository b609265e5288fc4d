"""
Backup Document Models

A backup is a full snapshot of one owner's ledger:
    {"version": 1, "timestamp": "...", "data": {...}}

DESIGN DECISION: The document keeps the exact shape and camelCase field
names the web tracker exported, so those files restore unchanged.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from ledger.models.ledger import (
    Account,
    Budget,
    Category,
    Entry,
    Goal,
    LedgerModel,
    RecurringRule,
    Shortcut,
    Transaction,
    UserSettings,
    utcnow,
)


BACKUP_FORMAT_VERSION = 1


class BackupPayload(LedgerModel):
    """Every entity of one owner, one list per table."""

    user_settings: Optional[UserSettings] = None
    accounts: list[Account] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    transaction_entries: list[Entry] = Field(default_factory=list)
    budgets: list[Budget] = Field(default_factory=list)
    goals: list[Goal] = Field(default_factory=list)
    recurring_transactions: list[RecurringRule] = Field(default_factory=list)
    shortcuts: list[Shortcut] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return (
            (1 if self.user_settings else 0)
            + len(self.accounts)
            + len(self.categories)
            + len(self.transactions)
            + len(self.transaction_entries)
            + len(self.budgets)
            + len(self.goals)
            + len(self.recurring_transactions)
            + len(self.shortcuts)
        )


class BackupData(LedgerModel):
    """The versioned backup document."""

    version: int = BACKUP_FORMAT_VERSION
    timestamp: datetime = Field(default_factory=utcnow)
    data: BackupPayload = Field(default_factory=BackupPayload)

    def to_document(self) -> dict:
        """Serialize to the JSON-ready dict written to a backup file."""
        return self.model_dump(mode="json", by_alias=True)
