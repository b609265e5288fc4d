"""
Shortcuts

A shortcut is a saved posting template: kind, accounts and category are
fixed, and executing it only needs an amount.
"""

from datetime import date
from typing import Optional

from ledger.engine.errors import NotFoundError, build_model, editable_changes
from ledger.engine.posting import PostingEngine
from ledger.models.ledger import PostingRequest, Shortcut, TransactionWithEntries
from ledger.services.storage import LedgerUnitOfWork


PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at"})


class ShortcutEngine:
    """Shortcut maintenance and execution over a unit of work."""

    def __init__(self, posting: Optional[PostingEngine] = None):
        self._posting = posting or PostingEngine()

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, shortcut_id: int) -> Shortcut:
        shortcut = await uow.get_shortcut(owner_id, shortcut_id)
        if shortcut is None:
            raise NotFoundError("shortcut", shortcut_id)
        return shortcut

    def _as_posting(
        self,
        shortcut: Shortcut,
        amount: int,
        on: date,
        description: Optional[str] = None,
    ) -> PostingRequest:
        return PostingRequest(
            date=on,
            description=description or shortcut.description or shortcut.name,
            amount=amount,
            category_id=shortcut.category_id,
            from_account_id=shortcut.from_account_id,
            to_account_id=shortcut.to_account_id,
            kind=shortcut.kind,
        )

    async def _check(self, uow: LedgerUnitOfWork, owner_id: str, shortcut: Shortcut) -> None:
        # Any positive amount will do; only accounts, roles and category matter here.
        await self._posting.resolve(uow, owner_id, self._as_posting(shortcut, 1, date.today()))

    async def create(self, uow: LedgerUnitOfWork, owner_id: str, fields: dict) -> Shortcut:
        shortcut = build_model(Shortcut, {
            **editable_changes(Shortcut, fields, PROTECTED_FIELDS),
            "owner_id": owner_id,
        })
        await self._check(uow, owner_id, shortcut)
        return await uow.add_shortcut(shortcut)

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        shortcut_id: int,
        changes: dict,
    ) -> Shortcut:
        current = await self.get(uow, owner_id, shortcut_id)
        editable = editable_changes(Shortcut, changes, PROTECTED_FIELDS)
        updated = build_model(Shortcut, {**current.model_dump(), **editable})
        await self._check(uow, owner_id, updated)
        return await uow.update_shortcut(updated)

    async def list_shortcuts(self, uow: LedgerUnitOfWork, owner_id: str) -> list[Shortcut]:
        return await uow.list_shortcuts(owner_id)

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, shortcut_id: int) -> Shortcut:
        shortcut = await self.get(uow, owner_id, shortcut_id)
        await uow.delete_shortcut(owner_id, shortcut_id)
        return shortcut

    async def execute(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        shortcut_id: int,
        amount: int,
        description: Optional[str] = None,
        today: Optional[date] = None,
    ) -> TransactionWithEntries:
        """Post the shortcut's template with the given amount, dated today."""
        shortcut = await self.get(uow, owner_id, shortcut_id)
        return await self._posting.create(
            uow,
            owner_id,
            self._as_posting(shortcut, amount, today or date.today(), description),
        )
