"""
Ledger Service

The entry point callers use. It wires the engines to one storage backend
and one audit logger, and runs:
1. Postings (create, edit, delete a transaction)
2. Recurring rules, goals and shortcuts, which post through the same engine
3. Catalogue maintenance (accounts, categories, budgets, settings)
4. Backup export and restore
5. Reports

DESIGN DECISION: The service owns the unit boundaries:
- Every operation runs in exactly one atomic storage unit
- Engines never open or commit units themselves
- Every mutation is audited once its unit has committed or failed

A failed step therefore never leaves a half-applied posting behind.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

import structlog

from ledger.audit import AuditLogger, configure_logging, create_correlation_id
from ledger.config import Settings, get_settings
from ledger.engine.accounts import AccountEngine, CategoryEngine, SettingsEngine
from ledger.engine.backup import BackupEngine
from ledger.engine.budgets import BudgetEngine
from ledger.engine.errors import build_model, editable_changes
from ledger.engine.goals import GoalEngine
from ledger.engine.posting import PostingEngine
from ledger.engine.recurring import PROTECTED_FIELDS as RULE_PROTECTED_FIELDS
from ledger.engine.recurring import RecurringEngine
from ledger.engine.shortcuts import ShortcutEngine
from ledger.models.audit import AuditEventType
from ledger.models.backup import BackupData
from ledger.models.ledger import (
    Account,
    Budget,
    BudgetProgress,
    Category,
    EntrySide,
    Goal,
    PostingChanges,
    PostingRequest,
    RecurringRule,
    Shortcut,
    TransactionWithEntries,
    UserSettings,
)
from ledger.models.reports import (
    CategorySpending,
    JournalLine,
    MonthlyTotals,
    NetWorth,
    UpcomingRecurring,
)
from ledger.queries import ReportExecutor
from ledger.services.storage import (
    LedgerStorageInterface,
    LedgerUnitOfWork,
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
)

logger = structlog.get_logger(__name__)


def _posting_refs(posted: TransactionWithEntries) -> tuple[int, int]:
    """(source, destination) account ids of a posted transaction."""
    source = next(e.account_id for e in posted.entries if e.side == EntrySide.CREDIT)
    destination = next(e.account_id for e in posted.entries if e.side == EntrySide.DEBIT)
    return source, destination


class LedgerService:
    """
    Owner-scoped facade over the ledger engines.

    Every public method takes the owner id first. Mutations return the
    created or updated entity; failures raise the typed ledger errors
    (ValidationError, NotFoundError, InvalidStateError, FormatError) or
    StorageError, and nothing is committed.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
        posting: Optional[PostingEngine] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()

        ledger_settings = (settings or get_settings()).ledger
        self._upcoming_window_days = ledger_settings.upcoming_window_days
        self._report_months = ledger_settings.report_months

        self._posting = posting or PostingEngine()
        self._accounts = AccountEngine(ledger_settings.default_currency)
        self._categories = CategoryEngine()
        self._user_settings = SettingsEngine(ledger_settings.default_currency)
        self._budgets = BudgetEngine()
        self._goals = GoalEngine(self._posting, ledger_settings.goal_account_prefix)
        self._recurring = RecurringEngine(self._posting)
        self._shortcuts = ShortcutEngine(self._posting)
        self._backup = BackupEngine()
        self._reports = ReportExecutor()
        self._default_currency = ledger_settings.default_currency

    @property
    def storage(self) -> LedgerStorageInterface:
        return self._storage

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    @asynccontextmanager
    async def _unit(
        self,
        owner_id: str,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AsyncIterator[LedgerUnitOfWork]:
        """
        One atomic unit for one operation.

        A failure is audited after the rollback and re-raised unchanged.
        """
        try:
            async with self._storage.atomic() as uow:
                yield uow
        except Exception as e:
            logger.warning("operation_failed", operation=operation, error=str(e))
            await self._audit.log_operation_failed(
                owner_id=owner_id,
                operation=operation,
                error=e,
                correlation_id=correlation_id,
            )
            raise

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[LedgerUnitOfWork]:
        async with self._storage.atomic() as uow:
            yield uow

    async def _changed(
        self,
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: Optional[int],
        description: str,
        correlation_id: Optional[UUID] = None,
        details: Optional[dict] = None,
    ) -> None:
        await self._audit.log_entity_changed(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            correlation_id=correlation_id,
            details=details,
        )

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(
        self,
        owner_id: str,
        request: Union[PostingRequest, dict],
        correlation_id: Optional[UUID] = None,
    ) -> TransactionWithEntries:
        """
        Post a new transaction.

        FLOW:
        1. Validate amount, description, accounts and their classes
        2. Insert the transaction, credit the source, debit the destination
        3. Commit, then audit
        """
        correlation_id = correlation_id or create_correlation_id()
        if isinstance(request, dict):
            request = build_model(PostingRequest, request)

        async with self._unit(owner_id, "create_transaction", correlation_id) as uow:
            posted = await self._posting.create(uow, owner_id, request)

        source, destination = _posting_refs(posted)
        await self._audit.log_transaction_posted(
            owner_id=owner_id,
            transaction_id=posted.id,
            kind=request.kind.value,
            amount=posted.amount,
            from_account_id=source,
            to_account_id=destination,
            correlation_id=correlation_id,
        )
        return posted

    async def edit_transaction(
        self,
        owner_id: str,
        transaction_id: int,
        changes: Union[PostingChanges, dict],
        correlation_id: Optional[UUID] = None,
    ) -> TransactionWithEntries:
        """Reverse the old entries and post the new values, in one unit."""
        correlation_id = correlation_id or create_correlation_id()
        if isinstance(changes, dict):
            changes = build_model(PostingChanges, changes)

        async with self._unit(owner_id, "edit_transaction", correlation_id) as uow:
            before = await self._posting.load(uow, owner_id, transaction_id)
            posted = await self._posting.edit(uow, owner_id, transaction_id, changes)

        await self._changed(
            AuditEventType.TRANSACTION_EDITED,
            owner_id,
            "transaction",
            transaction_id,
            f"Transaction edited, amount {before.amount} -> {posted.amount}",
            correlation_id,
            details={
                "before": before.model_dump(mode="json"),
                "changes": changes.model_dump(mode="json", exclude_unset=True),
            },
        )
        return posted

    async def delete_transaction(
        self,
        owner_id: str,
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionWithEntries:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_transaction", correlation_id) as uow:
            deleted = await self._posting.delete(uow, owner_id, transaction_id)

        await self._changed(
            AuditEventType.TRANSACTION_DELETED,
            owner_id,
            "transaction",
            transaction_id,
            f"Transaction deleted and {len(deleted.entries)} entries reversed",
            correlation_id,
            details={"deleted": deleted.model_dump(mode="json")},
        )
        return deleted

    async def get_transaction(self, owner_id: str, transaction_id: int) -> TransactionWithEntries:
        async with self._read() as uow:
            return await self._posting.load(uow, owner_id, transaction_id)

    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> list[TransactionWithEntries]:
        """Transactions newest first, with their entries."""
        async with self._read() as uow:
            transactions = await uow.list_transactions(
                owner_id, date_from=date_from, date_to=date_to, category_id=category_id
            )
            return [
                TransactionWithEntries.model_validate(
                    {**t.model_dump(), "entries": await uow.list_entries(t.id)}
                )
                for t in transactions
            ]

    # =========================================================================
    # RECURRING RULES
    # =========================================================================

    async def create_recurring(
        self,
        owner_id: str,
        fields: dict,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        correlation_id = correlation_id or create_correlation_id()
        rule = build_model(RecurringRule, {
            **editable_changes(RecurringRule, fields, RULE_PROTECTED_FIELDS),
            "owner_id": owner_id,
        })

        async with self._unit(owner_id, "create_recurring", correlation_id) as uow:
            created = await self._recurring.create(uow, owner_id, rule)

        await self._changed(
            AuditEventType.RECURRING_CREATED,
            owner_id,
            "recurring_rule",
            created.id,
            f"Recurring rule created ({created.frequency.value}, first run {created.next_run_date})",
            correlation_id,
        )
        return created

    async def update_recurring(
        self,
        owner_id: str,
        rule_id: int,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_recurring", correlation_id) as uow:
            updated = await self._recurring.update(uow, owner_id, rule_id, changes)

        await self._changed(
            AuditEventType.RECURRING_UPDATED,
            owner_id,
            "recurring_rule",
            rule_id,
            "Recurring rule updated",
            correlation_id,
            details={"changes": sorted(changes)},
        )
        return updated

    async def delete_recurring(
        self,
        owner_id: str,
        rule_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_recurring", correlation_id) as uow:
            deleted = await self._recurring.delete(uow, owner_id, rule_id)

        await self._changed(
            AuditEventType.RECURRING_DELETED,
            owner_id,
            "recurring_rule",
            rule_id,
            "Recurring rule deleted",
            correlation_id,
        )
        return deleted

    async def execute_recurring(
        self,
        owner_id: str,
        rule_id: int,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[RecurringRule, TransactionWithEntries]:
        """
        Post one occurrence of a rule now and advance its schedule.

        Returns:
            (updated_rule, posted_transaction)
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "execute_recurring", correlation_id) as uow:
            rule, posted = await self._recurring.execute(uow, owner_id, rule_id, today)

        await self._audit.log_recurring_executed(
            owner_id=owner_id,
            rule_id=rule_id,
            transaction_id=posted.id,
            completed_occurrences=rule.completed_occurrences,
            exhausted=rule.is_exhausted,
            correlation_id=correlation_id,
        )
        return rule, posted

    async def skip_recurring(
        self,
        owner_id: str,
        rule_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "skip_recurring", correlation_id) as uow:
            rule = await self._recurring.skip(uow, owner_id, rule_id)

        await self._changed(
            AuditEventType.RECURRING_SKIPPED,
            owner_id,
            "recurring_rule",
            rule_id,
            f"Occurrence skipped, next run {rule.next_run_date}",
            correlation_id,
        )
        return rule

    async def toggle_recurring(
        self,
        owner_id: str,
        rule_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRule:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "toggle_recurring", correlation_id) as uow:
            rule = await self._recurring.toggle(uow, owner_id, rule_id)

        await self._changed(
            AuditEventType.RECURRING_TOGGLED,
            owner_id,
            "recurring_rule",
            rule_id,
            f"Recurring rule {'resumed' if rule.active else 'paused'}",
            correlation_id,
        )
        return rule

    async def list_recurring(self, owner_id: str) -> list[RecurringRule]:
        async with self._read() as uow:
            return await uow.list_rules(owner_id)

    async def upcoming_recurring(
        self,
        owner_id: str,
        today: Optional[date] = None,
        window_days: Optional[int] = None,
    ) -> list[UpcomingRecurring]:
        async with self._read() as uow:
            return await self._recurring.upcoming(
                uow,
                owner_id,
                today or date.today(),
                window_days or self._upcoming_window_days,
            )

    # =========================================================================
    # GOALS
    # =========================================================================

    async def create_goal(
        self,
        owner_id: str,
        name: str,
        target_amount: int,
        currency: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        """Create a goal together with its linked asset account."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "create_goal", correlation_id) as uow:
            goal = await self._goals.create(
                uow, owner_id, name, target_amount, currency or self._default_currency
            )

        await self._changed(
            AuditEventType.GOAL_CREATED,
            owner_id,
            "goal",
            goal.id,
            f"Goal created with target {target_amount}",
            correlation_id,
            details={"account_id": goal.account_id},
        )
        return goal

    async def update_goal(
        self,
        owner_id: str,
        goal_id: int,
        name: Optional[str] = None,
        target_amount: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_goal", correlation_id) as uow:
            goal = await self._goals.update(uow, owner_id, goal_id, name, target_amount)

        await self._changed(
            AuditEventType.GOAL_UPDATED, owner_id, "goal", goal_id, "Goal updated", correlation_id
        )
        return goal

    async def delete_goal(
        self,
        owner_id: str,
        goal_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Goal:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_goal", correlation_id) as uow:
            goal = await self._goals.delete(uow, owner_id, goal_id)

        await self._changed(
            AuditEventType.GOAL_DELETED, owner_id, "goal", goal_id, "Goal deleted", correlation_id
        )
        return goal

    async def contribute_to_goal(
        self,
        owner_id: str,
        goal_id: int,
        from_account_id: int,
        amount: int,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Goal, TransactionWithEntries]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "contribute_to_goal", correlation_id) as uow:
            goal, posted = await self._goals.contribute(
                uow, owner_id, goal_id, from_account_id, amount, today
            )

        await self._changed(
            AuditEventType.GOAL_CONTRIBUTED,
            owner_id,
            "goal",
            goal_id,
            f"Contributed {amount} from account {from_account_id}",
            correlation_id,
            details={"transaction_id": posted.id, "current_amount": goal.current_amount},
        )
        return goal, posted

    async def complete_goal(
        self,
        owner_id: str,
        goal_id: int,
        to_account_id: int,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Goal, TransactionWithEntries]:
        """Withdraw everything saved for a goal and mark it completed."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "complete_goal", correlation_id) as uow:
            goal, posted = await self._goals.complete_and_withdraw(
                uow, owner_id, goal_id, to_account_id, today
            )

        await self._audit.log_goal_completed(
            owner_id=owner_id,
            goal_id=goal_id,
            amount=posted.amount,
            to_account_id=to_account_id,
            correlation_id=correlation_id,
        )
        return goal, posted

    async def get_goal(self, owner_id: str, goal_id: int) -> Goal:
        async with self._read() as uow:
            return await self._goals.get(uow, owner_id, goal_id)

    async def list_goals(self, owner_id: str) -> list[Goal]:
        async with self._read() as uow:
            return await uow.list_goals(owner_id)

    # =========================================================================
    # ACCOUNTS, CATEGORIES, SETTINGS
    # =========================================================================

    async def create_account(
        self,
        owner_id: str,
        fields: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "create_account", correlation_id) as uow:
            account = await self._accounts.create(uow, owner_id, fields)

        await self._changed(
            AuditEventType.ACCOUNT_CREATED,
            owner_id,
            "account",
            account.id,
            f"{account.account_class.value.capitalize()} account created",
            correlation_id,
        )
        return account

    async def update_account(
        self,
        owner_id: str,
        account_id: int,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_account", correlation_id) as uow:
            account = await self._accounts.update(uow, owner_id, account_id, changes)

        await self._changed(
            AuditEventType.ACCOUNT_UPDATED,
            owner_id,
            "account",
            account_id,
            "Account updated",
            correlation_id,
            details={"changes": sorted(changes)},
        )
        return account

    async def toggle_account_pin(
        self,
        owner_id: str,
        account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "toggle_account_pin", correlation_id) as uow:
            account = await self._accounts.toggle_pin(uow, owner_id, account_id)

        await self._changed(
            AuditEventType.ACCOUNT_UPDATED,
            owner_id,
            "account",
            account_id,
            "Account pinned" if account.is_pinned else "Account unpinned",
            correlation_id,
        )
        return account

    async def delete_account(
        self,
        owner_id: str,
        account_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_account", correlation_id) as uow:
            account = await self._accounts.delete(uow, owner_id, account_id)

        await self._changed(
            AuditEventType.ACCOUNT_DELETED, owner_id, "account", account_id,
            "Account deleted", correlation_id,
        )
        return account

    async def get_account(self, owner_id: str, account_id: int) -> Account:
        async with self._read() as uow:
            return await self._accounts.get(uow, owner_id, account_id)

    async def list_accounts(self, owner_id: str, **options: Any) -> list[Account]:
        """See AccountEngine.list_accounts for the options."""
        async with self._read() as uow:
            return await self._accounts.list_accounts(uow, owner_id, **options)

    async def create_category(
        self,
        owner_id: str,
        fields: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "create_category", correlation_id) as uow:
            category = await self._categories.create(uow, owner_id, fields)

        await self._changed(
            AuditEventType.CATEGORY_CREATED, owner_id, "category", category.id,
            "Category created", correlation_id,
        )
        return category

    async def update_category(
        self,
        owner_id: str,
        category_id: int,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_category", correlation_id) as uow:
            category = await self._categories.update(uow, owner_id, category_id, changes)

        await self._changed(
            AuditEventType.CATEGORY_UPDATED, owner_id, "category", category_id,
            "Category updated", correlation_id,
        )
        return category

    async def delete_category(
        self,
        owner_id: str,
        category_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Category:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_category", correlation_id) as uow:
            category = await self._categories.delete(uow, owner_id, category_id)

        await self._changed(
            AuditEventType.CATEGORY_DELETED, owner_id, "category", category_id,
            "Category deleted", correlation_id,
        )
        return category

    async def list_categories(self, owner_id: str) -> list[Category]:
        async with self._read() as uow:
            return await self._categories.list_categories(uow, owner_id)

    async def get_user_settings(self, owner_id: str) -> UserSettings:
        async with self._read() as uow:
            return await self._user_settings.get(uow, owner_id)

    async def update_user_settings(
        self,
        owner_id: str,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> UserSettings:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_user_settings", correlation_id) as uow:
            saved = await self._user_settings.update(uow, owner_id, changes)

        await self._changed(
            AuditEventType.SETTINGS_UPDATED, owner_id, "user_settings", saved.id,
            "Settings updated", correlation_id, details={"changes": sorted(changes)},
        )
        return saved

    # =========================================================================
    # BUDGETS
    # =========================================================================

    async def save_budget(
        self,
        owner_id: str,
        category_id: int,
        amount: int,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "save_budget", correlation_id) as uow:
            budget = await self._budgets.save(uow, owner_id, category_id, amount)

        await self._changed(
            AuditEventType.BUDGET_SAVED, owner_id, "budget", budget.id,
            f"Budget for category {category_id} set to {amount}", correlation_id,
        )
        return budget

    async def update_budget(
        self,
        owner_id: str,
        budget_id: int,
        amount: int,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_budget", correlation_id) as uow:
            budget = await self._budgets.update(uow, owner_id, budget_id, amount)

        await self._changed(
            AuditEventType.BUDGET_SAVED, owner_id, "budget", budget_id,
            f"Budget set to {amount}", correlation_id,
        )
        return budget

    async def delete_budget(
        self,
        owner_id: str,
        budget_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Budget:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_budget", correlation_id) as uow:
            budget = await self._budgets.delete(uow, owner_id, budget_id)

        await self._changed(
            AuditEventType.BUDGET_DELETED, owner_id, "budget", budget_id,
            "Budget deleted", correlation_id,
        )
        return budget

    async def list_budgets(
        self,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> list[BudgetProgress]:
        """Budgets with spending for the calendar month of as_of (default today)."""
        async with self._read() as uow:
            return await self._budgets.progress(uow, owner_id, as_of)

    # =========================================================================
    # SHORTCUTS
    # =========================================================================

    async def create_shortcut(
        self,
        owner_id: str,
        fields: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Shortcut:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "create_shortcut", correlation_id) as uow:
            shortcut = await self._shortcuts.create(uow, owner_id, fields)

        await self._changed(
            AuditEventType.SHORTCUT_SAVED, owner_id, "shortcut", shortcut.id,
            "Shortcut created", correlation_id,
        )
        return shortcut

    async def update_shortcut(
        self,
        owner_id: str,
        shortcut_id: int,
        changes: dict,
        correlation_id: Optional[UUID] = None,
    ) -> Shortcut:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "update_shortcut", correlation_id) as uow:
            shortcut = await self._shortcuts.update(uow, owner_id, shortcut_id, changes)

        await self._changed(
            AuditEventType.SHORTCUT_SAVED, owner_id, "shortcut", shortcut_id,
            "Shortcut updated", correlation_id,
        )
        return shortcut

    async def delete_shortcut(
        self,
        owner_id: str,
        shortcut_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> Shortcut:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "delete_shortcut", correlation_id) as uow:
            shortcut = await self._shortcuts.delete(uow, owner_id, shortcut_id)

        await self._changed(
            AuditEventType.SHORTCUT_DELETED, owner_id, "shortcut", shortcut_id,
            "Shortcut deleted", correlation_id,
        )
        return shortcut

    async def list_shortcuts(self, owner_id: str) -> list[Shortcut]:
        async with self._read() as uow:
            return await self._shortcuts.list_shortcuts(uow, owner_id)

    async def execute_shortcut(
        self,
        owner_id: str,
        shortcut_id: int,
        amount: int,
        description: Optional[str] = None,
        today: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionWithEntries:
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "execute_shortcut", correlation_id) as uow:
            posted = await self._shortcuts.execute(
                uow, owner_id, shortcut_id, amount, description, today
            )

        await self._changed(
            AuditEventType.SHORTCUT_EXECUTED, owner_id, "shortcut", shortcut_id,
            f"Shortcut posted {amount}", correlation_id,
            details={"transaction_id": posted.id},
        )
        return posted

    # =========================================================================
    # BACKUP
    # =========================================================================

    async def export_backup(
        self,
        owner_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> BackupData:
        """Snapshot the owner's ledger. Use .to_document() for the JSON form."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._read() as uow:
            backup = await self._backup.export(uow, owner_id)

        await self._changed(
            AuditEventType.BACKUP_EXPORTED, owner_id, "backup", None,
            f"Backup exported with {backup.data.row_count} rows", correlation_id,
        )
        return backup

    async def restore_backup(
        self,
        owner_id: str,
        document: dict,
        correlation_id: Optional[UUID] = None,
    ) -> BackupData:
        """
        Replace the owner's ledger with a backup document.

        CRITICAL: all or nothing. On any failure the previous data is
        left exactly as it was.
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._unit(owner_id, "restore_backup", correlation_id) as uow:
            backup = await self._backup.restore(uow, owner_id, document)

        await self._audit.log_backup_restored(
            owner_id=owner_id,
            row_count=backup.data.row_count,
            backup_timestamp=backup.timestamp.isoformat(),
            correlation_id=correlation_id,
        )
        return backup

    # =========================================================================
    # REPORTS
    # =========================================================================

    async def journal(self, owner_id: str) -> list[JournalLine]:
        async with self._read() as uow:
            return await self._reports.journal(uow, owner_id)

    async def monthly_spending(self, owner_id: str, as_of: Optional[date] = None) -> int:
        async with self._read() as uow:
            return await self._reports.monthly_spending(uow, owner_id, as_of)

    async def income_vs_expense(
        self,
        owner_id: str,
        as_of: Optional[date] = None,
        months: Optional[int] = None,
    ) -> list[MonthlyTotals]:
        async with self._read() as uow:
            return await self._reports.income_vs_expense(
                uow, owner_id, as_of, months or self._report_months
            )

    async def spending_by_category(
        self,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> list[CategorySpending]:
        async with self._read() as uow:
            return await self._reports.spending_by_category(uow, owner_id, as_of)

    async def net_worth(self, owner_id: str) -> NetWorth:
        async with self._read() as uow:
            return await self._reports.net_worth(uow, owner_id)

    async def close(self) -> None:
        await self._storage.close()


async def create_ledger(
    settings: Optional[Settings] = None,
    use_audit_storage: bool = True,
) -> LedgerService:
    """
    Factory function to create a connected ledger service.

    Args:
        settings: Settings to use instead of the cached environment settings.
        use_audit_storage: Whether to persist audit events in the database.
                    Set to False to keep audit logging local only.

    Returns:
        A LedgerService whose storage is connected and whose schema exists.
    """
    settings = settings or get_settings()
    configure_logging(settings.ledger.environment, settings.ledger.debug_mode)

    database = SqlDatabase(settings.database)
    storage = SqlLedgerStorage(database)
    await storage.connect()

    if use_audit_storage:
        audit_logger = AuditLogger(SqlAuditStorage(database))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    return LedgerService(storage, audit_logger=audit_logger, settings=settings)
