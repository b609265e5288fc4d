"""
Core Data Models for the Personal Ledger

These models define the strict schemas for every row the ledger stores.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage, logging and backups
4. Stay wire-compatible with backups exported by the web tracker

DESIGN DECISION: Field names are snake_case in Python but serialize to the
camelCase names the web tracker used (userId, defaultCategoryId, ...).
Both spellings are accepted on input.

All money is an integer number of minor-currency units (cents).
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_date(value: Any) -> Any:
    """Accept ISO dates, ISO datetimes (with or without 'Z') and datetimes."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


LedgerDate = Annotated[date, BeforeValidator(_parse_date)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountClass(str, Enum):
    """
    The four account classes.

    The class decides the sign of every entry posted to the account,
    see ledger.engine.balance.
    """
    ASSET = "asset"
    LIABILITY = "liability"
    EXPENSE = "expense"
    REVENUE = "revenue"


class EntrySide(str, Enum):
    """Side of a ledger entry."""
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionKind(str, Enum):
    """
    What the user meant by a posting.

    The kind decides which account classes are allowed as source
    (credited) and destination (debited).
    """
    WITHDRAWAL = "withdrawal"
    DEPOSIT = "deposit"
    TRANSFER = "transfer"


class Frequency(str, Enum):
    """How often a recurring rule fires."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetPeriod(str, Enum):
    MONTHLY = "monthly"


class RecurringState(str, Enum):
    """
    Lifecycle of a recurring rule.

    ACTIVE <-> PAUSED is user-toggled.
    EXHAUSTED is terminal: the occurrence cap has been reached.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    EXHAUSTED = "exhausted"


# =============================================================================
# BASE
# =============================================================================

class LedgerModel(BaseModel):
    """Shared configuration for every ledger row."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# =============================================================================
# ACCOUNTS AND CATEGORIES
# =============================================================================

class Account(LedgerModel):
    """
    A balance-bearing account.

    CRITICAL: balance is a materialized running total. It must always
    equal the sum of signed entry effects ever applied to the account.
    Only the posting engine changes it.
    """

    id: Optional[int] = None
    owner_id: str = Field(
        ...,
        min_length=1,
        alias="userId",
        description="Owner of the account"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    account_class: AccountClass = Field(
        ...,
        alias="type",
        description="asset, liability, expense or revenue"
    )
    balance: int = Field(
        default=0,
        description="Running balance in minor-currency units"
    )
    currency: str = Field(
        default="USD",
        min_length=1,
        max_length=10,
        description="Currency label (no conversion is ever applied)"
    )

    # Credit-card style fields, liabilities only
    statement_balance: Optional[int] = None
    due_date: Optional[LedgerDate] = None

    default_category_id: Optional[int] = None
    is_pinned: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_liability_fields(self) -> 'Account':
        """Statement balance and due date only make sense on a liability."""
        if self.account_class != AccountClass.LIABILITY:
            if self.statement_balance is not None or self.due_date is not None:
                raise ValueError(
                    "Statement balance and due date are only allowed on liability accounts"
                )
        return self


class Category(LedgerModel):
    """
    A classification label for transactions and budgets.

    Categories never carry a balance.
    """

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    name: str = Field(..., min_length=1, max_length=200)
    account_class: Optional[AccountClass] = Field(
        default=None,
        alias="type",
        description="expense or revenue"
    )
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# TRANSACTIONS AND ENTRIES
# =============================================================================

class Entry(LedgerModel):
    """
    One side of a posting.

    amount is always the absolute value; the side plus the account class
    decide the sign of the balance effect.
    """

    id: Optional[int] = None
    transaction_id: Optional[int] = None
    account_id: int
    side: EntrySide = Field(..., alias="type")
    amount: int = Field(..., gt=0)


class Transaction(LedgerModel):
    """
    A posted transaction.

    amount is the absolute amount carried by every entry of the transaction.
    kind is None for transactions restored from backups that never stored it.
    """

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    date: LedgerDate
    description: str = Field(..., min_length=1, max_length=500)
    amount: int = Field(..., gt=0)
    category_id: Optional[int] = None
    kind: Optional[TransactionKind] = None
    created_at: datetime = Field(default_factory=utcnow)


class TransactionWithEntries(Transaction):
    """A transaction together with its entries."""

    entries: list[Entry] = Field(default_factory=list)

    @property
    def debit_total(self) -> int:
        return sum(e.amount for e in self.entries if e.side == EntrySide.DEBIT)

    @property
    def credit_total(self) -> int:
        return sum(e.amount for e in self.entries if e.side == EntrySide.CREDIT)

    @property
    def is_balanced(self) -> bool:
        """Debits equal credits equal the transaction amount."""
        return (
            any(e.side == EntrySide.DEBIT for e in self.entries)
            and any(e.side == EntrySide.CREDIT for e in self.entries)
            and self.debit_total == self.credit_total == self.amount
        )


# =============================================================================
# BUDGETS, GOALS, RECURRING RULES, SHORTCUTS
# =============================================================================

class Budget(LedgerModel):
    """Monthly spending limit for one category."""

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    category_id: int
    amount: int = Field(..., gt=0, description="Monthly limit")
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    created_at: datetime = Field(default_factory=utcnow)


class BudgetProgress(Budget):
    """A budget with its spending computed for one calendar month."""

    category_name: Optional[str] = None
    spent: int = 0
    remaining: int = 0
    progress: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="Percent of the limit spent, capped at 100"
    )


class Goal(LedgerModel):
    """
    A savings goal backed by its own asset account.

    CRITICAL: while the goal is active, current_amount must equal
    the balance of the linked account.
    """

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: int = Field(..., gt=0)
    current_amount: int = Field(
        default=0,
        description="Mirrors the linked account balance while active"
    )
    account_id: Optional[int] = None
    completed: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return not self.completed

    @property
    def progress(self) -> float:
        """Percent of the target reached, clamped to 0..100."""
        return max(0.0, min(self.current_amount / self.target_amount * 100, 100.0))


class RecurringRule(LedgerModel):
    """
    A posting that repeats on a schedule.

    The engine never runs rules on its own; callers decide when to
    execute or skip a due rule.
    """

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    description: str = Field(..., min_length=1, max_length=500)
    amount: int = Field(..., gt=0)
    category_id: Optional[int] = None
    kind: TransactionKind = Field(..., alias="type")
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    frequency: Frequency
    next_run_date: LedgerDate
    last_run_date: Optional[LedgerDate] = None
    active: bool = True
    total_occurrences: Optional[int] = Field(
        default=None,
        gt=0,
        description="None means the rule repeats forever"
    )
    completed_occurrences: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_occurrences(self) -> 'RecurringRule':
        """Completed occurrences can never exceed the cap."""
        if (
            self.total_occurrences is not None
            and self.completed_occurrences > self.total_occurrences
        ):
            raise ValueError("Completed occurrences cannot exceed total occurrences")
        return self

    @property
    def is_exhausted(self) -> bool:
        return (
            self.total_occurrences is not None
            and self.completed_occurrences >= self.total_occurrences
        )

    @property
    def state(self) -> RecurringState:
        if self.is_exhausted:
            return RecurringState.EXHAUSTED
        return RecurringState.ACTIVE if self.active else RecurringState.PAUSED


class Shortcut(LedgerModel):
    """A saved posting template executed with just an amount."""

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = "⚡"
    from_account_id: int
    to_account_id: int
    category_id: Optional[int] = None
    kind: TransactionKind = Field(default=TransactionKind.WITHDRAWAL, alias="type")
    created_at: datetime = Field(default_factory=utcnow)


class UserSettings(LedgerModel):
    """Per-owner preferences. Only the currency label touches the ledger."""

    id: Optional[int] = None
    owner_id: str = Field(..., min_length=1, alias="userId")
    currency: str = Field(default="USD", min_length=1, max_length=10)
    show_net_worth: bool = True
    show_monthly_spending: bool = True
    show_defined_net_worth: bool = False
    defined_net_worth_includes: list[int] = Field(
        default_factory=list,
        description="Account ids counted in the defined net worth"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('defined_net_worth_includes', mode='before')
    @classmethod
    def none_means_empty(cls, v: Any) -> Any:
        return [] if v is None else v


# =============================================================================
# POSTING INPUT
# =============================================================================

class PostingRequest(LedgerModel):
    """
    Caller input for one posting.

    Deliberately loose: amounts, descriptions and account roles are
    checked by the posting validator so that every problem is reported
    as a ValidationError with its issue list, not a pydantic error.
    """

    date: LedgerDate
    description: str = ""
    amount: int
    category_id: Optional[int] = None
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    kind: TransactionKind = Field(default=TransactionKind.WITHDRAWAL, alias="type")


class PostingChanges(LedgerModel):
    """
    Fields to change on an existing posting.

    Unset fields keep their current value. category_id is only changed
    when it was passed explicitly, so None clears the category.
    """

    date: Optional[LedgerDate] = None
    description: Optional[str] = None
    amount: Optional[int] = None
    category_id: Optional[int] = None
    from_account_id: Optional[int] = None
    to_account_id: Optional[int] = None
    kind: Optional[TransactionKind] = Field(default=None, alias="type")


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'wrong_class')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of validating one posting request."""

    validated_at: datetime = Field(default_factory=utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def is_valid(self) -> bool:
        return not self.has_errors
