"""
Report Execution

DESIGN DECISION: Reports are DETERMINISTIC reads of stored rows.
Nothing here is cached or stored; every figure is recomputed from the
accounts, transactions and entries inside the caller's unit of work.

A transaction is classified by the accounts its entries touch:
- income: it credits a revenue account
- expense: it debits an expense or liability account
- spending: it credits an asset account and debits an expense or liability account
"""

from collections import defaultdict
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from ledger.engine.budgets import month_bounds
from ledger.engine.errors import ValidationError
from ledger.models.ledger import (
    Account,
    AccountClass,
    Entry,
    EntrySide,
    TransactionWithEntries,
)
from ledger.models.reports import CategorySpending, JournalLine, MonthlyTotals, NetWorth
from ledger.services.storage import LedgerUnitOfWork


UNCATEGORIZED = "Uncategorized"

SPENDING_TARGETS = frozenset({AccountClass.EXPENSE, AccountClass.LIABILITY})


def _touches(
    transaction: TransactionWithEntries,
    accounts: dict[int, Account],
    side: EntrySide,
    classes: frozenset,
) -> bool:
    return any(
        e.side == side
        and e.account_id in accounts
        and accounts[e.account_id].account_class in classes
        for e in transaction.entries
    )


def is_income(transaction: TransactionWithEntries, accounts: dict[int, Account]) -> bool:
    return _touches(transaction, accounts, EntrySide.CREDIT, frozenset({AccountClass.REVENUE}))


def is_expense(transaction: TransactionWithEntries, accounts: dict[int, Account]) -> bool:
    return _touches(transaction, accounts, EntrySide.DEBIT, SPENDING_TARGETS)


def is_spending(transaction: TransactionWithEntries, accounts: dict[int, Account]) -> bool:
    return (
        _touches(transaction, accounts, EntrySide.CREDIT, frozenset({AccountClass.ASSET}))
        and is_expense(transaction, accounts)
    )


def _signed_worth(account: Account) -> int:
    if account.account_class == AccountClass.ASSET:
        return account.balance
    if account.account_class == AccountClass.LIABILITY:
        return -account.balance
    return 0


class ReportExecutor:
    """
    Read-side reports over a unit of work.

    GUARANTEES:
    - Only returns figures computed from stored rows
    - Never writes
    - Empty results (not errors) when nothing matches
    """

    async def _accounts(self, uow: LedgerUnitOfWork, owner_id: str) -> dict[int, Account]:
        return {a.id: a for a in await uow.list_accounts(owner_id)}

    async def _postings(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[TransactionWithEntries]:
        """Transactions in a date range with their entries attached."""
        transactions = await uow.list_transactions(owner_id, date_from=date_from, date_to=date_to)

        entries: dict[int, list[Entry]] = defaultdict(list)
        for entry in await uow.list_owner_entries(owner_id):
            entries[entry.transaction_id].append(entry)

        return [
            TransactionWithEntries(**t.model_dump(), entries=entries.get(t.id, []))
            for t in transactions
        ]

    async def journal(self, uow: LedgerUnitOfWork, owner_id: str) -> list[JournalLine]:
        """Every entry with its transaction and account, newest first."""
        accounts = await self._accounts(uow, owner_id)
        lines = []
        for transaction in await self._postings(uow, owner_id):
            for entry in transaction.entries:
                account = accounts.get(entry.account_id)
                lines.append(JournalLine(
                    entry_id=entry.id,
                    transaction_id=transaction.id,
                    date=transaction.date,
                    description=transaction.description,
                    account_name=account.name if account else f"#{entry.account_id}",
                    side=entry.side,
                    amount=entry.amount,
                ))
        lines.sort(key=lambda line: (line.date, line.transaction_id, line.entry_id), reverse=True)
        return lines

    async def monthly_spending(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> int:
        """Money that left asset accounts for expenses or liabilities this month."""
        start, end = month_bounds(as_of or date.today())
        accounts = await self._accounts(uow, owner_id)
        return sum(
            t.amount
            for t in await self._postings(uow, owner_id, start, end)
            if is_spending(t, accounts)
        )

    async def income_vs_expense(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        as_of: Optional[date] = None,
        months: int = 6,
    ) -> list[MonthlyTotals]:
        """
        Income and expense totals per month, oldest first.

        Covers the month of as_of and the months - 1 before it; months
        without activity are reported with zero totals.
        """
        if months < 1:
            raise ValidationError.single("months", "invalid_value", "months must be at least 1")

        first_month, end = month_bounds(as_of or date.today())
        start = first_month - relativedelta(months=months - 1)
        totals = {
            (start + relativedelta(months=i)).strftime("%Y-%m"): MonthlyTotals(
                month=(start + relativedelta(months=i)).strftime("%Y-%m")
            )
            for i in range(months)
        }

        accounts = await self._accounts(uow, owner_id)
        for transaction in await self._postings(uow, owner_id, start, end):
            bucket = totals[transaction.date.strftime("%Y-%m")]
            if is_income(transaction, accounts):
                bucket.income += transaction.amount
            if is_expense(transaction, accounts):
                bucket.expense += transaction.amount

        return list(totals.values())

    async def spending_by_category(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> list[CategorySpending]:
        """Expense totals of one month grouped by category name, largest first."""
        start, end = month_bounds(as_of or date.today())
        accounts = await self._accounts(uow, owner_id)
        names = {c.id: c.name for c in await uow.list_categories(owner_id)}

        grouped: dict[str, int] = defaultdict(int)
        for transaction in await self._postings(uow, owner_id, start, end):
            if not is_expense(transaction, accounts):
                continue
            grouped[names.get(transaction.category_id, UNCATEGORIZED)] += transaction.amount

        return sorted(
            (CategorySpending(name=name, value=value) for name, value in grouped.items()),
            key=lambda row: (-row.value, row.name),
        )

    async def net_worth(self, uow: LedgerUnitOfWork, owner_id: str) -> NetWorth:
        """
        Assets minus liabilities.

        defined is only computed when the owner turned on the defined net
        worth and covers just the accounts listed in their settings.
        """
        accounts = list((await self._accounts(uow, owner_id)).values())
        assets = sum(a.balance for a in accounts if a.account_class == AccountClass.ASSET)
        liabilities = sum(a.balance for a in accounts if a.account_class == AccountClass.LIABILITY)

        defined = None
        settings = await uow.get_user_settings(owner_id)
        if settings is not None and settings.show_defined_net_worth:
            included = set(settings.defined_net_worth_includes)
            defined = sum(_signed_worth(a) for a in accounts if a.id in included)

        return NetWorth(
            total=assets - liabilities,
            assets=assets,
            liabilities=liabilities,
            defined=defined,
        )
