"""
Ledger Storage Interface

DESIGN DECISION: The engines talk to storage only through a unit of work.
Every engine operation opens one atomic unit, does all of its reads and
writes through it, and either the whole unit commits or none of it does.
The engines never see a session, a connection or a SQL statement, which
keeps backends swappable and lets tests fail any single write on purpose.

Only the row operations the engines actually need are declared here.
"""

from abc import ABC, abstractmethod
from datetime import date
from enum import Enum
from typing import AsyncContextManager, Optional
from uuid import UUID

from ledger.models.audit import AuditEvent
from ledger.models.ledger import (
    Account,
    Budget,
    Category,
    Entry,
    Goal,
    RecurringRule,
    Shortcut,
    Transaction,
    UserSettings,
)


class LedgerTable(str, Enum):
    """The owner-scoped tables, named as in the backup document."""
    USER_SETTINGS = "user_settings"
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
    TRANSACTIONS = "transactions"
    TRANSACTION_ENTRIES = "transaction_entries"
    BUDGETS = "budgets"
    GOALS = "goals"
    RECURRING_TRANSACTIONS = "recurring_transactions"
    SHORTCUTS = "shortcuts"


class LedgerUnitOfWork(ABC):
    """
    Row operations bound to one storage transaction.

    Every method takes or returns pydantic models, never ORM rows.
    Methods that look a row up by id return None when the row does not
    exist or belongs to another owner; raising NotFoundError is the
    engine's job.

    Inserts keep the model's id when it is set (used by restore) and
    let the store assign one otherwise.
    """

    # -- accounts -------------------------------------------------------------

    @abstractmethod
    async def get_account(self, owner_id: str, account_id: int) -> Optional[Account]:
        pass

    @abstractmethod
    async def list_accounts(self, owner_id: str) -> list[Account]:
        pass

    @abstractmethod
    async def add_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> Account:
        """Persist metadata changes. The balance column is never written here."""
        pass

    @abstractmethod
    async def delete_account(self, owner_id: str, account_id: int) -> bool:
        pass

    @abstractmethod
    async def apply_balance_delta(self, account_id: int, delta: int) -> None:
        """
        Add a signed delta to an account balance.

        Must be a single `balance = balance + delta` statement so that
        concurrent postings commute under the store's isolation.
        """
        pass

    @abstractmethod
    async def set_balance(self, account_id: int, balance: int) -> None:
        pass

    @abstractmethod
    async def count_account_references(self, owner_id: str, account_id: int) -> dict[str, int]:
        """
        Count rows that reference an account.

        Returns:
            {"entries": n, "goals": n, "recurring": n, "shortcuts": n}
        """
        pass

    # -- categories -----------------------------------------------------------

    @abstractmethod
    async def get_category(self, owner_id: str, category_id: int) -> Optional[Category]:
        pass

    @abstractmethod
    async def list_categories(self, owner_id: str) -> list[Category]:
        pass

    @abstractmethod
    async def add_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, owner_id: str, category_id: int) -> bool:
        pass

    @abstractmethod
    async def count_category_references(self, owner_id: str, category_id: int) -> dict[str, int]:
        """
        Count rows that reference a category.

        Returns:
            {"transactions": n, "budgets": n, "recurring": n,
             "accounts": n, "shortcuts": n}
        """
        pass

    # -- transactions and entries ---------------------------------------------

    @abstractmethod
    async def get_transaction(self, owner_id: str, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> list[Transaction]:
        """
        List transactions, newest first.

        Args:
            owner_id: Owner whose transactions to list
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
            category_id: Only transactions in this category
        """
        pass

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def delete_transaction(self, owner_id: str, transaction_id: int) -> bool:
        """Delete the transaction row. Entries must already be gone."""
        pass

    @abstractmethod
    async def add_entry(self, entry: Entry) -> Entry:
        pass

    @abstractmethod
    async def list_entries(self, transaction_id: int) -> list[Entry]:
        pass

    @abstractmethod
    async def list_owner_entries(self, owner_id: str) -> list[Entry]:
        """All entries of all transactions of an owner."""
        pass

    @abstractmethod
    async def delete_entries(self, transaction_id: int) -> int:
        pass

    # -- budgets --------------------------------------------------------------

    @abstractmethod
    async def get_budget(self, owner_id: str, budget_id: int) -> Optional[Budget]:
        pass

    @abstractmethod
    async def find_budget_by_category(self, owner_id: str, category_id: int) -> Optional[Budget]:
        pass

    @abstractmethod
    async def list_budgets(self, owner_id: str) -> list[Budget]:
        pass

    @abstractmethod
    async def add_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def update_budget(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def delete_budget(self, owner_id: str, budget_id: int) -> bool:
        pass

    # -- goals ----------------------------------------------------------------

    @abstractmethod
    async def get_goal(self, owner_id: str, goal_id: int) -> Optional[Goal]:
        pass

    @abstractmethod
    async def find_goal_by_account(self, owner_id: str, account_id: int) -> Optional[Goal]:
        pass

    @abstractmethod
    async def list_goals(self, owner_id: str) -> list[Goal]:
        pass

    @abstractmethod
    async def add_goal(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def update_goal(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def delete_goal(self, owner_id: str, goal_id: int) -> bool:
        pass

    # -- recurring rules ------------------------------------------------------

    @abstractmethod
    async def get_rule(self, owner_id: str, rule_id: int) -> Optional[RecurringRule]:
        pass

    @abstractmethod
    async def list_rules(self, owner_id: str) -> list[RecurringRule]:
        pass

    @abstractmethod
    async def add_rule(self, rule: RecurringRule) -> RecurringRule:
        pass

    @abstractmethod
    async def update_rule(self, rule: RecurringRule) -> RecurringRule:
        pass

    @abstractmethod
    async def delete_rule(self, owner_id: str, rule_id: int) -> bool:
        pass

    # -- shortcuts ------------------------------------------------------------

    @abstractmethod
    async def get_shortcut(self, owner_id: str, shortcut_id: int) -> Optional[Shortcut]:
        pass

    @abstractmethod
    async def list_shortcuts(self, owner_id: str) -> list[Shortcut]:
        pass

    @abstractmethod
    async def add_shortcut(self, shortcut: Shortcut) -> Shortcut:
        pass

    @abstractmethod
    async def update_shortcut(self, shortcut: Shortcut) -> Shortcut:
        pass

    @abstractmethod
    async def delete_shortcut(self, owner_id: str, shortcut_id: int) -> bool:
        pass

    # -- settings -------------------------------------------------------------

    @abstractmethod
    async def get_user_settings(self, owner_id: str) -> Optional[UserSettings]:
        pass

    @abstractmethod
    async def save_user_settings(self, settings: UserSettings) -> UserSettings:
        """Insert or update the single settings row of an owner."""
        pass

    # -- restore --------------------------------------------------------------

    @abstractmethod
    async def purge(self, owner_id: str, table: LedgerTable) -> int:
        """
        Delete every row of one table that belongs to an owner.

        Callers are responsible for the order: dependents first.

        Returns:
            Number of rows deleted
        """
        pass


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the relational ledger store.

    Implementations hand out units of work bound to one database
    transaction each.
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Prepare the store (open the engine, create missing tables).

        Raises:
            ConnectionError: If the store cannot be reached
        """
        pass

    @abstractmethod
    def atomic(self) -> AsyncContextManager[LedgerUnitOfWork]:
        """
        Open one atomic unit.

        Usage:
            async with storage.atomic() as uow:
                ...

        Commits when the block exits cleanly. Any exception rolls back
        every write made through the unit and propagates; storage-level
        failures are re-raised as StorageError.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Append-only store for audit events.

    Events are never updated or deleted once written.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one user action).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class IntegrityError(StorageError):
    """A constraint was violated (duplicate id, dangling foreign key)."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
