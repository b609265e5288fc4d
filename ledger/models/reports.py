"""
Read-side Models

Rows returned by the report executor. None of these are stored.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from ledger.models.ledger import EntrySide, RecurringRule


class JournalLine(BaseModel):
    """One entry of the journal, joined with its transaction and account."""

    entry_id: int
    transaction_id: int
    date: date
    description: str
    account_name: str
    side: EntrySide
    amount: int


class MonthlyTotals(BaseModel):
    """Income and expense totals for one month (key is YYYY-MM)."""

    month: str
    income: int = 0
    expense: int = 0


class CategorySpending(BaseModel):
    name: str
    value: int


class NetWorth(BaseModel):
    """Assets minus liabilities."""

    total: int
    assets: int
    liabilities: int
    defined: Optional[int] = Field(
        default=None,
        description="Net worth over the accounts listed in user settings"
    )


class UpcomingRecurring(BaseModel):
    """An active recurring rule with its due-date flags."""

    rule: RecurringRule
    is_due_today: bool
    is_due_soon: bool
    is_overdue: bool
