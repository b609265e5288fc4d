"""
Accounts, Categories and User Settings

Metadata maintenance around the ledger. None of these operations moves a
balance: an account is created at zero and its balance changes only through
postings.

Deletes are refused while anything still references the row, so the
ledger never ends up with entries pointing at nothing.
"""

from typing import Optional

from ledger.engine.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    build_model,
    editable_changes,
)
from ledger.models.ledger import Account, AccountClass, Category, UserSettings, utcnow
from ledger.services.storage import LedgerUnitOfWork


ACCOUNT_SORT_KEYS = {
    "name": lambda a: a.name.lower(),
    "type": lambda a: a.account_class.value,
    "balance": lambda a: a.balance,
    "updated_at": lambda a: a.updated_at,
}

CATEGORY_CLASSES = frozenset({AccountClass.EXPENSE, AccountClass.REVENUE})

# Balances move only through postings; ownership and timestamps never change here.
ACCOUNT_PROTECTED_FIELDS = frozenset({"id", "owner_id", "balance", "created_at", "updated_at"})
CATEGORY_PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at"})
SETTINGS_PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at"})


def _describe_references(references: dict[str, int]) -> str:
    return ", ".join(f"{count} {name}" for name, count in references.items() if count)


class AccountEngine:
    """Account metadata over a unit of work."""

    def __init__(self, default_currency: str = "USD"):
        self._default_currency = default_currency

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, account_id: int) -> Account:
        account = await uow.get_account(owner_id, account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def _check_category(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        category_id: Optional[int],
    ) -> None:
        if category_id is not None and await uow.get_category(owner_id, category_id) is None:
            raise NotFoundError("category", category_id)

    async def create(self, uow: LedgerUnitOfWork, owner_id: str, fields: dict) -> Account:
        """Create an account. Any balance passed in is ignored; accounts start at 0."""
        data = {
            "currency": self._default_currency,
            **editable_changes(Account, fields, ACCOUNT_PROTECTED_FIELDS),
            "owner_id": owner_id,
        }
        account = build_model(Account, data)
        await self._check_category(uow, owner_id, account.default_category_id)
        return await uow.add_account(account)

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        account_id: int,
        changes: dict,
    ) -> Account:
        """
        Change account metadata.

        The class is fixed once entries exist (the signs of past postings
        depend on it) and for goal accounts.
        """
        current = await self.get(uow, owner_id, account_id)
        editable = editable_changes(Account, changes, ACCOUNT_PROTECTED_FIELDS)
        updated = build_model(Account, {**current.model_dump(), **editable, "updated_at": utcnow()})

        if updated.account_class != current.account_class:
            references = await uow.count_account_references(owner_id, account_id)
            if references["entries"] or references["goals"]:
                raise InvalidStateError(
                    f"Cannot change the class of account {account_id}: "
                    f"{_describe_references(references)} depend on it"
                )

        await self._check_category(uow, owner_id, updated.default_category_id)
        return await uow.update_account(updated)

    async def toggle_pin(self, uow: LedgerUnitOfWork, owner_id: str, account_id: int) -> Account:
        account = await self.get(uow, owner_id, account_id)
        return await uow.update_account(account.model_copy(update={"is_pinned": not account.is_pinned}))

    async def list_accounts(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        search: Optional[str] = None,
        sort_by: str = "updated_at",
        descending: bool = True,
        hide_completed_goal_accounts: bool = False,
    ) -> list[Account]:
        """
        List accounts.

        Args:
            search: Case-insensitive substring of the name
            sort_by: name, type, balance or updated_at
            descending: Sort order
            hide_completed_goal_accounts: Drop the accounts of finished goals
        """
        if sort_by not in ACCOUNT_SORT_KEYS:
            raise ValidationError.single(
                "sort_by",
                "invalid_value",
                f"Cannot sort accounts by {sort_by!r}; use one of {sorted(ACCOUNT_SORT_KEYS)}",
            )

        accounts = await uow.list_accounts(owner_id)

        if hide_completed_goal_accounts:
            hidden = {
                goal.account_id
                for goal in await uow.list_goals(owner_id)
                if goal.completed and goal.account_id is not None
            }
            accounts = [a for a in accounts if a.id not in hidden]

        if search:
            needle = search.lower()
            accounts = [a for a in accounts if needle in a.name.lower()]

        return sorted(accounts, key=ACCOUNT_SORT_KEYS[sort_by], reverse=descending)

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, account_id: int) -> Account:
        account = await self.get(uow, owner_id, account_id)
        references = await uow.count_account_references(owner_id, account_id)
        if any(references.values()):
            raise InvalidStateError(
                f"Cannot delete account {account_id}: still referenced by "
                f"{_describe_references(references)}",
                details={"references": references},
            )
        await uow.delete_account(owner_id, account_id)
        return account


class CategoryEngine:
    """Category maintenance over a unit of work."""

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, category_id: int) -> Category:
        category = await uow.get_category(owner_id, category_id)
        if category is None:
            raise NotFoundError("category", category_id)
        return category

    def _check_class(self, category: Category) -> None:
        if category.account_class is not None and category.account_class not in CATEGORY_CLASSES:
            raise ValidationError.single(
                "account_class",
                "wrong_class",
                f"A category is either expense or revenue, not {category.account_class.value}",
            )

    async def create(self, uow: LedgerUnitOfWork, owner_id: str, fields: dict) -> Category:
        category = build_model(Category, {
            **editable_changes(Category, fields, CATEGORY_PROTECTED_FIELDS),
            "owner_id": owner_id,
        })
        self._check_class(category)
        return await uow.add_category(category)

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        category_id: int,
        changes: dict,
    ) -> Category:
        current = await self.get(uow, owner_id, category_id)
        editable = editable_changes(Category, changes, CATEGORY_PROTECTED_FIELDS)
        updated = build_model(Category, {**current.model_dump(), **editable})
        self._check_class(updated)
        return await uow.update_category(updated)

    async def list_categories(self, uow: LedgerUnitOfWork, owner_id: str) -> list[Category]:
        return sorted(await uow.list_categories(owner_id), key=lambda c: c.name.lower())

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, category_id: int) -> Category:
        category = await self.get(uow, owner_id, category_id)
        references = await uow.count_category_references(owner_id, category_id)
        if any(references.values()):
            raise InvalidStateError(
                f"Cannot delete category {category_id}: still referenced by "
                f"{_describe_references(references)}",
                details={"references": references},
            )
        await uow.delete_category(owner_id, category_id)
        return category


class SettingsEngine:
    """Per-owner preferences."""

    def __init__(self, default_currency: str = "USD"):
        self._default_currency = default_currency

    async def get(self, uow: LedgerUnitOfWork, owner_id: str) -> UserSettings:
        """Stored settings, or unsaved defaults when the owner has none yet."""
        settings = await uow.get_user_settings(owner_id)
        if settings is None:
            return UserSettings(owner_id=owner_id, currency=self._default_currency)
        return settings

    async def update(self, uow: LedgerUnitOfWork, owner_id: str, changes: dict) -> UserSettings:
        current = await self.get(uow, owner_id)
        editable = editable_changes(UserSettings, changes, SETTINGS_PROTECTED_FIELDS)
        updated = build_model(
            UserSettings, {**current.model_dump(), **editable, "updated_at": utcnow()}
        )
        for account_id in updated.defined_net_worth_includes:
            if await uow.get_account(owner_id, account_id) is None:
                raise NotFoundError("account", account_id)
        return await uow.save_user_settings(updated)
