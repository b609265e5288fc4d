"""
Tests for the metadata around the ledger: accounts, categories,
budgets, shortcuts and user settings.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from ledger.engine.errors import InvalidStateError, NotFoundError, ValidationError
from ledger.models.ledger import AccountClass
from tests.conftest import OTHER_OWNER, OWNER, balance_of


async def _spend(service, accounts, amount, category_id=None, on=date(2024, 3, 5)):
    return await service.create_transaction(OWNER, {
        "date": on,
        "description": "Shop",
        "amount": amount,
        "category_id": category_id,
        "from_account_id": accounts["checking"].id,
        "to_account_id": accounts["groceries"].id,
        "type": "withdrawal",
    })


class TestAccounts:
    """Tests for account maintenance."""

    async def test_new_account_starts_at_zero(self, service):
        account = await service.create_account(
            OWNER, {"name": "Wallet", "type": "asset", "balance": 5000}
        )

        assert account.balance == 0
        assert account.currency == "USD"
        assert account.owner_id == OWNER

    async def test_liability_statement_fields(self, service):
        card = await service.create_account(OWNER, {
            "name": "Visa",
            "type": "liability",
            "statement_balance": 12000,
            "due_date": "2024-12-15",
        })
        assert card.due_date == date(2024, 12, 15)

        with pytest.raises(ValidationError):
            await service.create_account(
                OWNER, {"name": "Checking", "type": "asset", "statement_balance": 1}
            )

    async def test_update_never_touches_balance(self, service, accounts):
        await _spend(service, accounts, 700)

        updated = await service.update_account(
            OWNER, accounts["checking"].id, {"name": "Main checking", "balance": 99}
        )

        assert updated.name == "Main checking"
        assert updated.balance == -700

    async def test_camel_case_protected_keys_ignored(self, service, accounts):
        await _spend(service, accounts, 700)
        checking = accounts["checking"]

        updated = await service.update_account(OWNER, checking.id, {
            "name": "Renamed",
            "userId": OTHER_OWNER,
            "createdAt": datetime(2000, 1, 1, tzinfo=timezone.utc),
            "isPinned": True,
        })

        assert updated.name == "Renamed"
        assert updated.is_pinned is True
        assert updated.owner_id == OWNER
        assert updated.created_at == checking.created_at
        assert updated.balance == -700
        assert await service.list_accounts(OTHER_OWNER) == []

    async def test_create_keeps_the_callers_owner(self, service):
        account = await service.create_account(
            OWNER, {"name": "Wallet", "type": "asset", "userId": OTHER_OWNER}
        )

        assert account.owner_id == OWNER
        assert await service.list_accounts(OTHER_OWNER) == []

    async def test_reloaded_timestamps_are_utc(self, service, accounts):
        reloaded = await service.get_account(OWNER, accounts["checking"].id)

        assert reloaded.created_at.utcoffset() == timedelta(0)
        assert reloaded.updated_at.utcoffset() == timedelta(0)
        assert reloaded.created_at == accounts["checking"].created_at

    async def test_class_fixed_once_entries_exist(self, service, accounts):
        await _spend(service, accounts, 700)

        with pytest.raises(InvalidStateError):
            await service.update_account(OWNER, accounts["checking"].id, {"type": "liability"})

        unused = await service.create_account(OWNER, {"name": "Spare", "type": "asset"})
        changed = await service.update_account(OWNER, unused.id, {"type": "liability"})
        assert changed.account_class == AccountClass.LIABILITY

    async def test_delete_refused_while_referenced(self, service, accounts):
        await _spend(service, accounts, 700)

        with pytest.raises(InvalidStateError) as exc_info:
            await service.delete_account(OWNER, accounts["checking"].id)
        assert exc_info.value.details["references"]["entries"] == 1

        await service.delete_account(OWNER, accounts["salary"].id)
        with pytest.raises(NotFoundError):
            await service.get_account(OWNER, accounts["salary"].id)

    async def test_list_sort_and_search(self, service, accounts):
        by_name = await service.list_accounts(OWNER, sort_by="name", descending=False)
        assert [a.name for a in by_name] == ["Checking", "Credit Card", "Groceries", "Salary"]

        found = await service.list_accounts(OWNER, search="CARD")
        assert [a.name for a in found] == ["Credit Card"]

        with pytest.raises(ValidationError):
            await service.list_accounts(OWNER, sort_by="colour")

    async def test_accounts_are_owner_scoped(self, service, accounts):
        assert await service.list_accounts(OTHER_OWNER) == []
        with pytest.raises(NotFoundError):
            await service.update_account(OTHER_OWNER, accounts["checking"].id, {"name": "Mine"})

    async def test_toggle_pin(self, service, accounts):
        pinned = await service.toggle_account_pin(OWNER, accounts["checking"].id)
        unpinned = await service.toggle_account_pin(OWNER, accounts["checking"].id)

        assert pinned.is_pinned is True
        assert unpinned.is_pinned is False


class TestCategories:
    """Tests for category maintenance."""

    async def test_category_must_be_expense_or_revenue(self, service):
        with pytest.raises(ValidationError):
            await service.create_category(OWNER, {"name": "Cash", "type": "asset"})

        untyped = await service.create_category(OWNER, {"name": "Misc"})
        assert untyped.account_class is None

    async def test_list_sorted_by_name(self, service):
        await service.create_category(OWNER, {"name": "rent", "type": "expense"})
        await service.create_category(OWNER, {"name": "Food", "type": "expense"})

        names = [c.name for c in await service.list_categories(OWNER)]

        assert names == ["Food", "rent"]

    async def test_delete_refused_while_used(self, service, accounts):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        await _spend(service, accounts, 300, category_id=food.id)

        with pytest.raises(InvalidStateError):
            await service.delete_category(OWNER, food.id)

        spare = await service.create_category(OWNER, {"name": "Spare", "type": "expense"})
        await service.delete_category(OWNER, spare.id)
        assert [c.name for c in await service.list_categories(OWNER)] == ["Food"]

    async def test_rename(self, service):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})

        renamed = await service.update_category(OWNER, food.id, {"name": "Groceries"})

        assert renamed.name == "Groceries"
        assert renamed.account_class == AccountClass.EXPENSE

    async def test_owner_cannot_be_changed_under_its_alias(self, service):
        food = await service.create_category(
            OWNER, {"name": "Food", "type": "expense", "userId": OTHER_OWNER}
        )

        renamed = await service.update_category(
            OWNER, food.id, {"name": "Groceries", "userId": OTHER_OWNER}
        )

        assert food.owner_id == OWNER
        assert renamed.owner_id == OWNER
        assert await service.list_categories(OTHER_OWNER) == []


class TestBudgets:
    """Tests for budgets and their monthly progress."""

    async def test_save_is_an_upsert_per_category(self, service):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})

        first = await service.save_budget(OWNER, food.id, 40000)
        second = await service.save_budget(OWNER, food.id, 50000)

        assert first.id == second.id
        assert second.amount == 50000
        assert len(await service.list_budgets(OWNER, as_of=date(2024, 3, 1))) == 1

    async def test_invalid_budget(self, service):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})

        with pytest.raises(ValidationError):
            await service.save_budget(OWNER, food.id, 0)
        with pytest.raises(NotFoundError):
            await service.save_budget(OWNER, 404, 100)

    async def test_progress_for_the_month(self, service, accounts):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        await service.save_budget(OWNER, food.id, 10000)
        await _spend(service, accounts, 2500, category_id=food.id, on=date(2024, 3, 2))
        await _spend(service, accounts, 1500, category_id=food.id, on=date(2024, 3, 31))
        await _spend(service, accounts, 9999, category_id=food.id, on=date(2024, 2, 29))
        await _spend(service, accounts, 8000, on=date(2024, 3, 3))

        progress = (await service.list_budgets(OWNER, as_of=date(2024, 3, 15)))[0]

        assert progress.category_name == "Food"
        assert progress.spent == 4000
        assert progress.remaining == 6000
        assert progress.progress == 40.0

    async def test_overspent_budget(self, service, accounts):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        budget = await service.save_budget(OWNER, food.id, 1000)
        await _spend(service, accounts, 1500, category_id=food.id)

        progress = (await service.list_budgets(OWNER, as_of=date(2024, 3, 15)))[0]

        assert progress.progress == 100.0
        assert progress.remaining == -500

        await service.update_budget(OWNER, budget.id, 2000)
        progress = (await service.list_budgets(OWNER, as_of=date(2024, 3, 15)))[0]
        assert progress.progress == 75.0

    async def test_delete(self, service):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        budget = await service.save_budget(OWNER, food.id, 1000)

        await service.delete_budget(OWNER, budget.id)

        assert await service.list_budgets(OWNER) == []
        with pytest.raises(NotFoundError):
            await service.delete_budget(OWNER, budget.id)


class TestShortcuts:
    """Tests for saved posting templates."""

    async def test_execute_posts_the_template(self, service, accounts):
        food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        shortcut = await service.create_shortcut(OWNER, {
            "name": "Coffee",
            "from_account_id": accounts["checking"].id,
            "to_account_id": accounts["groceries"].id,
            "category_id": food.id,
        })

        posted = await service.execute_shortcut(OWNER, shortcut.id, 450, today=date(2024, 3, 8))

        assert posted.description == "Coffee"
        assert posted.date == date(2024, 3, 8)
        assert posted.category_id == food.id
        assert await balance_of(service, accounts["checking"].id) == -450

        named = await service.execute_shortcut(OWNER, shortcut.id, 500, description="Flat white")
        assert named.description == "Flat white"

    async def test_template_checked_like_a_posting(self, service, accounts):
        with pytest.raises(ValidationError):
            await service.create_shortcut(OWNER, {
                "name": "Broken",
                "from_account_id": accounts["groceries"].id,
                "to_account_id": accounts["checking"].id,
            })
        assert await service.list_shortcuts(OWNER) == []

    async def test_execute_with_bad_amount_posts_nothing(self, service, accounts):
        shortcut = await service.create_shortcut(OWNER, {
            "name": "Coffee",
            "from_account_id": accounts["checking"].id,
            "to_account_id": accounts["groceries"].id,
        })

        with pytest.raises(ValidationError):
            await service.execute_shortcut(OWNER, shortcut.id, 0)
        assert await service.list_transactions(OWNER) == []

    async def test_update_and_delete(self, service, accounts):
        shortcut = await service.create_shortcut(OWNER, {
            "name": "Coffee",
            "from_account_id": accounts["checking"].id,
            "to_account_id": accounts["groceries"].id,
        })

        updated = await service.update_shortcut(OWNER, shortcut.id, {
            "fromAccountId": accounts["card"].id,
            "userId": OTHER_OWNER,
            "createdAt": datetime(2000, 1, 1, tzinfo=timezone.utc),
        })
        assert updated.from_account_id == accounts["card"].id
        assert updated.owner_id == OWNER
        assert updated.created_at == shortcut.created_at
        assert await service.list_shortcuts(OTHER_OWNER) == []

        await service.delete_shortcut(OWNER, shortcut.id)
        assert await service.list_shortcuts(OWNER) == []


class TestUserSettings:
    """Tests for per-owner preferences."""

    async def test_defaults_before_anything_is_saved(self, service):
        settings = await service.get_user_settings(OWNER)

        assert settings.id is None
        assert settings.currency == "USD"
        assert settings.show_defined_net_worth is False
        assert settings.defined_net_worth_includes == []

    async def test_update_persists(self, service, accounts):
        await service.update_user_settings(OWNER, {"currency": "EUR", "show_net_worth": False})
        saved = await service.update_user_settings(
            OWNER, {"defined_net_worth_includes": [accounts["checking"].id]}
        )

        assert saved.id is not None
        assert saved.currency == "EUR"
        assert saved.show_net_worth is False
        assert (await service.get_user_settings(OWNER)).defined_net_worth_includes == [
            accounts["checking"].id
        ]

    async def test_owner_and_timestamps_not_editable(self, service):
        first = await service.update_user_settings(OWNER, {"currency": "EUR"})

        saved = await service.update_user_settings(OWNER, {
            "currency": "GBP",
            "userId": OTHER_OWNER,
            "createdAt": datetime(2000, 1, 1, tzinfo=timezone.utc),
        })

        assert saved.currency == "GBP"
        assert saved.owner_id == OWNER
        assert saved.created_at == first.created_at
        assert (await service.get_user_settings(OTHER_OWNER)).id is None

    async def test_unknown_included_account_rejected(self, service, accounts):
        with pytest.raises(NotFoundError):
            await service.update_user_settings(
                OWNER, {"defined_net_worth_includes": [accounts["checking"].id, 999]}
            )
        assert (await service.get_user_settings(OWNER)).id is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
