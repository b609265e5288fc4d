"""
Backup/Restore Engine

Export reads every row of one owner into a versioned document.
Restore replaces every row of one owner with the document's rows.

CRITICAL: restore runs inside one unit. A failure at any point (bad row,
constraint violation, lost connection) leaves the owner's previous data
exactly as it was. A half-restored ledger is worse than a rejected restore.

Ids are preserved so that every cross reference in the document (entry to
transaction, goal to account, ...) stays valid without remapping. Every
row is re-stamped with the restoring owner.
"""

from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from ledger.engine.errors import FormatError
from ledger.models.backup import BACKUP_FORMAT_VERSION, BackupData, BackupPayload
from ledger.models.ledger import TransactionWithEntries
from ledger.services.storage import LedgerTable, LedgerUnitOfWork

logger = structlog.get_logger(__name__)


# Dependents first
PURGE_ORDER = [
    LedgerTable.SHORTCUTS,
    LedgerTable.RECURRING_TRANSACTIONS,
    LedgerTable.GOALS,
    LedgerTable.BUDGETS,
    LedgerTable.TRANSACTION_ENTRIES,
    LedgerTable.TRANSACTIONS,
    LedgerTable.ACCOUNTS,
    LedgerTable.CATEGORIES,
    LedgerTable.USER_SETTINGS,
]

# Owner-stamped lists in the document's data object
OWNED_LISTS = [
    "accounts",
    "categories",
    "transactions",
    "budgets",
    "goals",
    "recurringTransactions",
    "shortcuts",
]


def _restamp(row: Any, owner_id: str) -> Any:
    if not isinstance(row, dict):
        return row
    stamped = {k: v for k, v in row.items() if k not in ("owner_id", "userId")}
    stamped["userId"] = owner_id
    return stamped


class BackupEngine:
    """Full export and atomic wipe-and-restore of one owner's ledger."""

    async def export(self, uow: LedgerUnitOfWork, owner_id: str) -> BackupData:
        """Snapshot every entity of the owner. Read-only."""
        payload = BackupPayload(
            user_settings=await uow.get_user_settings(owner_id),
            accounts=await uow.list_accounts(owner_id),
            categories=await uow.list_categories(owner_id),
            transactions=await uow.list_transactions(owner_id),
            transaction_entries=await uow.list_owner_entries(owner_id),
            budgets=await uow.list_budgets(owner_id),
            goals=await uow.list_goals(owner_id),
            recurring_transactions=await uow.list_rules(owner_id),
            shortcuts=await uow.list_shortcuts(owner_id),
        )
        return BackupData(version=BACKUP_FORMAT_VERSION, data=payload)

    def parse(self, document: Any, owner_id: str) -> BackupData:
        """
        Check and load a backup document for one owner.

        Raises:
            FormatError: Wrong version, malformed rows, dangling or
                unbalanced entries
        """
        if not isinstance(document, dict) or not isinstance(document.get("data"), dict):
            raise FormatError("Invalid backup file format: missing data object")

        version = document.get("version")
        if version != BACKUP_FORMAT_VERSION:
            raise FormatError(
                f"Unsupported backup version {version!r}, expected {BACKUP_FORMAT_VERSION}",
                details={"version": version},
            )

        data = dict(document["data"])
        for key in OWNED_LISTS:
            snake = "recurring_transactions" if key == "recurringTransactions" else key
            rows = data.pop(key, None)
            if rows is None:
                rows = data.pop(snake, None)
            data[key] = [_restamp(row, owner_id) for row in rows or []]
        for key in ("userSettings", "user_settings"):
            if data.get(key):
                data[key] = _restamp(data[key], owner_id)

        try:
            backup = BackupData.model_validate({**document, "data": data})
        except PydanticValidationError as e:
            raise FormatError(
                f"Invalid backup file format: {e.error_count()} invalid field(s)",
                details={"errors": e.errors(include_url=False, include_input=False)},
            ) from e

        self._check_entries(backup.data)
        return backup

    def _check_entries(self, payload: BackupPayload) -> None:
        account_ids = {a.id for a in payload.accounts}
        grouped: dict[int, list] = {t.id: [] for t in payload.transactions}

        for entry in payload.transaction_entries:
            if entry.transaction_id not in grouped:
                raise FormatError(
                    f"Entry {entry.id} belongs to transaction {entry.transaction_id}, "
                    f"which is not in the backup"
                )
            if entry.account_id not in account_ids:
                raise FormatError(
                    f"Entry {entry.id} posts to account {entry.account_id}, "
                    f"which is not in the backup"
                )
            grouped[entry.transaction_id].append(entry)

        for transaction in payload.transactions:
            posted = TransactionWithEntries.model_validate(
                {**transaction.model_dump(), "entries": grouped[transaction.id]}
            )
            if not posted.is_balanced:
                raise FormatError(
                    f"Transaction {transaction.id} is unbalanced: debits {posted.debit_total}, "
                    f"credits {posted.credit_total}, amount {posted.amount}"
                )

    async def restore(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        document: Any,
    ) -> BackupData:
        """
        Replace the owner's ledger with the document's contents.

        The document is fully parsed and checked before anything is deleted.
        """
        backup = self.parse(document, owner_id)
        payload = backup.data

        for table in PURGE_ORDER:
            removed = await uow.purge(owner_id, table)
            logger.debug("restore_purged", table=table.value, rows=removed)

        for category in payload.categories:
            await uow.add_category(category)
        if payload.user_settings is not None:
            await uow.save_user_settings(payload.user_settings)
        for account in payload.accounts:
            await uow.add_account(account)
        for transaction in payload.transactions:
            await uow.add_transaction(transaction)
        for entry in payload.transaction_entries:
            await uow.add_entry(entry)
        for budget in payload.budgets:
            await uow.add_budget(budget)
        for goal in payload.goals:
            await uow.add_goal(goal)
        for rule in payload.recurring_transactions:
            await uow.add_rule(rule)
        for shortcut in payload.shortcuts:
            await uow.add_shortcut(shortcut)

        logger.info("restore_inserted", owner_id=owner_id, rows=payload.row_count)
        return backup
