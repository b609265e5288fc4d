"""
Posting Engine

Creates, edits and deletes balanced transactions.

Every posting is exactly two entries: a credit on the source account and a
debit on the destination account, both carrying the transaction amount.
Balances move only through delta()/reverse() from ledger.engine.balance.

DESIGN DECISION: The engine never opens its own storage transaction.
It receives a unit of work from the caller, so a goal contribution or a
recurring run can post and update their own rows in the same atomic unit.

Edit is reversal-then-reapply; delete is reversal-then-removal. Entries
are deleted explicitly before their transaction; no storage cascade is
relied upon.

When an entry touches the linked account of an active goal, the goal's
current amount moves by the same signed delta, so the goal always mirrors
its account balance.
"""

from typing import Optional

import structlog

from ledger.engine.balance import delta, infer_kind, reverse
from ledger.engine.errors import InvalidStateError, NotFoundError, ValidationError, build_model
from ledger.models.ledger import (
    Account,
    Entry,
    EntrySide,
    PostingChanges,
    PostingRequest,
    Transaction,
    TransactionWithEntries,
)
from ledger.services.storage import LedgerUnitOfWork
from ledger.validation import PostingValidator

logger = structlog.get_logger(__name__)


class PostingEngine:
    """
    Double-entry posting over a unit of work.

    Usage:
        async with storage.atomic() as uow:
            posted = await engine.create(uow, owner_id, request)
    """

    def __init__(self, validator: Optional[PostingValidator] = None):
        self._validator = validator or PostingValidator()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load_account(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        account_id: Optional[int],
    ) -> Account:
        account = await uow.get_account(owner_id, account_id) if account_id is not None else None
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def load(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        transaction_id: int,
    ) -> TransactionWithEntries:
        """Load a transaction with its entries."""
        transaction = await uow.get_transaction(owner_id, transaction_id)
        if transaction is None:
            raise NotFoundError("transaction", transaction_id)
        entries = await uow.list_entries(transaction_id)
        return TransactionWithEntries.model_validate(
            {**transaction.model_dump(), "entries": entries}
        )

    async def _check_category(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        category_id: Optional[int],
    ) -> None:
        if category_id is not None and await uow.get_category(owner_id, category_id) is None:
            raise NotFoundError("category", category_id)

    async def resolve(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        request: PostingRequest,
    ) -> tuple[Account, Account]:
        """Validate a request and load its accounts. Nothing is written."""
        self._validator.check_request(request)
        source = await self.load_account(uow, owner_id, request.from_account_id)
        destination = await self.load_account(uow, owner_id, request.to_account_id)
        self._validator.check_roles(request.kind, source, destination)
        await self._check_category(uow, owner_id, request.category_id)
        return source, destination

    # -------------------------------------------------------------------------
    # Balance application
    # -------------------------------------------------------------------------

    async def _sync_goal(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        account_id: int,
        change: int,
    ) -> None:
        goal = await uow.find_goal_by_account(owner_id, account_id)
        if goal is None or goal.completed:
            return
        await uow.update_goal(
            goal.model_copy(update={"current_amount": goal.current_amount + change})
        )

    async def _apply(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        account: Account,
        change: int,
    ) -> None:
        await uow.apply_balance_delta(account.id, change)
        await self._sync_goal(uow, owner_id, account.id, change)

    async def _post_entries(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        transaction_id: int,
        source: Account,
        destination: Account,
        amount: int,
    ) -> list[Entry]:
        """Insert the credit/debit pair and apply both balance deltas."""
        entries = []
        for account, side in ((source, EntrySide.CREDIT), (destination, EntrySide.DEBIT)):
            entries.append(await uow.add_entry(Entry(
                transaction_id=transaction_id,
                account_id=account.id,
                side=side,
                amount=amount,
            )))
            await self._apply(uow, owner_id, account, delta(account.account_class, side, amount))
        return entries

    async def _reverse_entries(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        entries: list[Entry],
    ) -> None:
        """Undo the balance effect of every entry, then delete them."""
        if not entries:
            return
        for entry in entries:
            account = await self.load_account(uow, owner_id, entry.account_id)
            await self._apply(
                uow,
                owner_id,
                account,
                reverse(account.account_class, entry.side, entry.amount),
            )
        await uow.delete_entries(entries[0].transaction_id)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        request: PostingRequest,
    ) -> TransactionWithEntries:
        """
        Post a new transaction.

        Raises:
            ValidationError: Bad amount, missing account, wrong account class
            NotFoundError: An account or the category does not exist
        """
        source, destination = await self.resolve(uow, owner_id, request)

        transaction = await uow.add_transaction(build_model(Transaction, {
            "owner_id": owner_id,
            "date": request.date,
            "description": request.description,
            "amount": request.amount,
            "category_id": request.category_id,
            "kind": request.kind,
        }))
        entries = await self._post_entries(
            uow, owner_id, transaction.id, source, destination, request.amount
        )

        logger.debug(
            "transaction_posted",
            transaction_id=transaction.id,
            kind=request.kind.value,
            amount=request.amount,
        )
        return TransactionWithEntries.model_validate(
            {**transaction.model_dump(), "entries": entries}
        )

    async def edit(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        transaction_id: int,
        changes: PostingChanges,
    ) -> TransactionWithEntries:
        """
        Replace a posting with new values.

        Same end state as delete followed by create, inside one unit.
        The new values are fully validated before the old entries are
        reversed.
        """
        current = await self.load(uow, owner_id, transaction_id)

        credit = next((e for e in current.entries if e.side == EntrySide.CREDIT), None)
        debit = next((e for e in current.entries if e.side == EntrySide.DEBIT), None)
        if credit is None or debit is None:
            raise InvalidStateError(
                f"Transaction {transaction_id} does not have a debit and a credit entry"
            )

        kind = changes.kind or current.kind
        if kind is None:
            old_source = await self.load_account(uow, owner_id, credit.account_id)
            old_destination = await self.load_account(uow, owner_id, debit.account_id)
            kind = infer_kind(old_source.account_class, old_destination.account_class)
            if kind is None:
                raise ValidationError.single(
                    "kind",
                    "missing",
                    f"Cannot tell the kind of transaction {transaction_id}; pass it explicitly",
                )

        request = PostingRequest(
            date=changes.date or current.date,
            description=(
                changes.description if changes.description is not None else current.description
            ),
            amount=changes.amount if changes.amount is not None else current.amount,
            category_id=(
                changes.category_id
                if "category_id" in changes.model_fields_set
                else current.category_id
            ),
            from_account_id=changes.from_account_id or credit.account_id,
            to_account_id=changes.to_account_id or debit.account_id,
            kind=kind,
        )
        source, destination = await self.resolve(uow, owner_id, request)

        await self._reverse_entries(uow, owner_id, current.entries)

        transaction = await uow.update_transaction(current.model_copy(update={
            "date": request.date,
            "description": request.description,
            "amount": request.amount,
            "category_id": request.category_id,
            "kind": request.kind,
        }))
        entries = await self._post_entries(
            uow, owner_id, transaction.id, source, destination, request.amount
        )

        logger.debug("transaction_edited", transaction_id=transaction_id)
        return TransactionWithEntries.model_validate(
            {**transaction.model_dump(), "entries": entries}
        )

    async def delete(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        transaction_id: int,
    ) -> TransactionWithEntries:
        """Reverse a posting and remove it. Returns what was deleted."""
        current = await self.load(uow, owner_id, transaction_id)

        await self._reverse_entries(uow, owner_id, current.entries)
        await uow.delete_transaction(owner_id, transaction_id)

        logger.debug("transaction_deleted", transaction_id=transaction_id)
        return current
