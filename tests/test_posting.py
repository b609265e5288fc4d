"""
Tests for the posting engine: create, edit and delete through the service.
"""

from datetime import date

import pytest

from ledger.engine.balance import delta
from ledger.engine.errors import InvalidStateError, NotFoundError, ValidationError
from ledger.models.ledger import EntrySide, TransactionKind
from ledger.services.storage import SqlLedgerUnitOfWork, StorageError
from tests.conftest import OTHER_OWNER, OWNER, balance_of


def _withdrawal(accounts, amount=5000, **overrides) -> dict:
    fields = {
        "date": date(2024, 3, 5),
        "description": "Weekly shop",
        "amount": amount,
        "from_account_id": accounts["checking"].id,
        "to_account_id": accounts["groceries"].id,
        "type": "withdrawal",
    }
    fields.update(overrides)
    return fields


async def _assert_balances_match_entries(service):
    """Every account balance equals the signed sum of its current entries."""
    expected = {}
    for account in await service.list_accounts(OWNER):
        expected[account.id] = 0
    for transaction in await service.list_transactions(OWNER):
        assert transaction.is_balanced
        for entry in transaction.entries:
            account = await service.get_account(OWNER, entry.account_id)
            expected[entry.account_id] += delta(account.account_class, entry.side, entry.amount)
    for account in await service.list_accounts(OWNER):
        assert account.balance == expected[account.id], account.name


class TestCreate:
    """Tests for posting new transactions."""

    async def test_withdrawal_from_asset_to_expense(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        assert await balance_of(service, accounts["checking"].id) == -5000
        assert await balance_of(service, accounts["groceries"].id) == 5000
        assert posted.kind == TransactionKind.WITHDRAWAL
        assert posted.is_balanced
        credit = next(e for e in posted.entries if e.side == EntrySide.CREDIT)
        assert credit.account_id == accounts["checking"].id

    async def test_card_purchase_increases_liability(self, service, accounts):
        await service.create_transaction(
            OWNER, _withdrawal(accounts, 2000, from_account_id=accounts["card"].id)
        )

        assert await balance_of(service, accounts["card"].id) == 2000
        assert await balance_of(service, accounts["groceries"].id) == 2000

    async def test_deposit_from_revenue(self, service, accounts):
        await service.create_transaction(OWNER, {
            "date": date(2024, 3, 1),
            "description": "March salary",
            "amount": 300000,
            "from_account_id": accounts["salary"].id,
            "to_account_id": accounts["checking"].id,
            "type": "deposit",
        })

        assert await balance_of(service, accounts["salary"].id) == 300000
        assert await balance_of(service, accounts["checking"].id) == 300000

    async def test_card_payment_transfer_reduces_debt(self, service, accounts):
        await service.create_transaction(
            OWNER, _withdrawal(accounts, 2000, from_account_id=accounts["card"].id)
        )
        await service.create_transaction(OWNER, {
            "date": date(2024, 3, 20),
            "description": "Card payment",
            "amount": 2000,
            "from_account_id": accounts["checking"].id,
            "to_account_id": accounts["card"].id,
            "type": "transfer",
        })

        assert await balance_of(service, accounts["card"].id) == 0
        assert await balance_of(service, accounts["checking"].id) == -2000

    async def test_wrong_class_rejected_without_writes(self, service, accounts):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_transaction(
                OWNER, _withdrawal(accounts, to_account_id=accounts["salary"].id)
            )

        assert exc_info.value.issues[0].issue_type == "wrong_class"
        assert await service.list_transactions(OWNER) == []
        assert await balance_of(service, accounts["checking"].id) == 0

    async def test_zero_amount_rejected(self, service, accounts):
        with pytest.raises(ValidationError):
            await service.create_transaction(OWNER, _withdrawal(accounts, 0))

    async def test_overlong_description_rejected(self, service, accounts):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_transaction(
                OWNER, _withdrawal(accounts, description="x" * 501)
            )

        assert exc_info.value.issues[0].field == "description"
        assert exc_info.value.issues[0].issue_type == "too_long"
        assert await service.list_transactions(OWNER) == []
        assert await balance_of(service, accounts["checking"].id) == 0

        posted = await service.create_transaction(
            OWNER, _withdrawal(accounts, description="x" * 500)
        )
        assert len(posted.description) == 500

    async def test_missing_account_not_found(self, service, accounts):
        with pytest.raises(NotFoundError):
            await service.create_transaction(OWNER, _withdrawal(accounts, to_account_id=9999))

    async def test_other_owners_account_not_found(self, service, accounts):
        """Test that an owner cannot post to someone else's account."""
        with pytest.raises(NotFoundError):
            await service.create_transaction(OTHER_OWNER, _withdrawal(accounts))

    async def test_unknown_category_not_found(self, service, accounts):
        with pytest.raises(NotFoundError):
            await service.create_transaction(OWNER, _withdrawal(accounts, category_id=42))

    async def test_storage_fault_rolls_back_everything(self, service, accounts, monkeypatch):
        """Test that a failure on the second entry leaves no trace of the first."""
        original = SqlLedgerUnitOfWork.add_entry
        calls = {"count": 0}

        async def failing_add_entry(self, entry):
            calls["count"] += 1
            if calls["count"] == 2:
                raise StorageError("simulated fault")
            return await original(self, entry)

        monkeypatch.setattr(SqlLedgerUnitOfWork, "add_entry", failing_add_entry)

        with pytest.raises(StorageError):
            await service.create_transaction(OWNER, _withdrawal(accounts))

        monkeypatch.undo()
        assert await service.list_transactions(OWNER) == []
        assert await balance_of(service, accounts["checking"].id) == 0
        assert await balance_of(service, accounts["groceries"].id) == 0


class TestEdit:
    """Tests for editing posted transactions."""

    async def test_amount_change_replaces_old_effect(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        edited = await service.edit_transaction(OWNER, posted.id, {"amount": 3000})

        assert await balance_of(service, accounts["checking"].id) == -3000
        assert await balance_of(service, accounts["groceries"].id) == 3000
        assert edited.amount == 3000
        assert edited.id == posted.id

    async def test_edit_with_same_values_changes_nothing(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        await service.edit_transaction(OWNER, posted.id, {
            "date": posted.date,
            "description": posted.description,
            "amount": posted.amount,
        })

        assert await balance_of(service, accounts["checking"].id) == -5000
        assert await balance_of(service, accounts["groceries"].id) == 5000

    async def test_edit_matches_delete_then_recreate(self, service, accounts):
        first = await service.create_transaction(OWNER, _withdrawal(accounts))
        await service.edit_transaction(OWNER, first.id, {
            "amount": 1200,
            "from_account_id": accounts["card"].id,
        })
        edited_balances = {
            name: await balance_of(service, account.id) for name, account in accounts.items()
        }

        second = await service.create_transaction(OWNER, _withdrawal(accounts, 7000))
        await service.delete_transaction(OWNER, second.id)
        await service.delete_transaction(OWNER, first.id)
        await service.create_transaction(
            OWNER, _withdrawal(accounts, 1200, from_account_id=accounts["card"].id)
        )
        recreated_balances = {
            name: await balance_of(service, account.id) for name, account in accounts.items()
        }

        assert edited_balances == recreated_balances

    async def test_moving_to_another_account(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        await service.edit_transaction(OWNER, posted.id, {"from_account_id": accounts["card"].id})

        assert await balance_of(service, accounts["checking"].id) == 0
        assert await balance_of(service, accounts["card"].id) == 5000
        assert await balance_of(service, accounts["groceries"].id) == 5000

    async def test_invalid_edit_leaves_balances_untouched(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        with pytest.raises(ValidationError):
            await service.edit_transaction(
                OWNER, posted.id, {"to_account_id": accounts["salary"].id}
            )
        with pytest.raises(ValidationError):
            await service.edit_transaction(OWNER, posted.id, {"description": "x" * 501})

        assert await balance_of(service, accounts["checking"].id) == -5000
        assert await balance_of(service, accounts["groceries"].id) == 5000
        assert (await service.get_transaction(OWNER, posted.id)).amount == 5000

    async def test_category_can_be_cleared(self, service, accounts):
        category = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
        posted = await service.create_transaction(
            OWNER, _withdrawal(accounts, category_id=category.id)
        )

        kept = await service.edit_transaction(OWNER, posted.id, {"amount": 10})
        assert kept.category_id == category.id

        cleared = await service.edit_transaction(OWNER, posted.id, {"category_id": None})
        assert cleared.category_id is None

    async def test_kind_reconstructed_when_missing(self, service, storage, accounts):
        """Test editing a transaction stored without a kind (old backups)."""
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))
        async with storage.atomic() as uow:
            transaction = await uow.get_transaction(OWNER, posted.id)
            await uow.update_transaction(transaction.model_copy(update={"kind": None}))

        edited = await service.edit_transaction(OWNER, posted.id, {"amount": 4000})

        assert edited.kind == TransactionKind.WITHDRAWAL
        assert await balance_of(service, accounts["checking"].id) == -4000

    async def test_unknown_transaction_not_found(self, service, accounts):
        with pytest.raises(NotFoundError):
            await service.edit_transaction(OWNER, 12345, {"amount": 1})

    async def test_transaction_without_entries_cannot_be_edited(self, service, storage, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))
        async with storage.atomic() as uow:
            await uow.delete_entries(posted.id)

        with pytest.raises(InvalidStateError):
            await service.edit_transaction(OWNER, posted.id, {"amount": 1})


class TestDelete:
    """Tests for deleting transactions."""

    async def test_delete_reverses_balances(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        deleted = await service.delete_transaction(OWNER, posted.id)

        assert deleted.id == posted.id
        assert await balance_of(service, accounts["checking"].id) == 0
        assert await balance_of(service, accounts["groceries"].id) == 0
        with pytest.raises(NotFoundError):
            await service.get_transaction(OWNER, posted.id)

    async def test_other_owner_cannot_delete(self, service, accounts):
        posted = await service.create_transaction(OWNER, _withdrawal(accounts))

        with pytest.raises(NotFoundError):
            await service.delete_transaction(OTHER_OWNER, posted.id)

        assert await balance_of(service, accounts["checking"].id) == -5000


class TestBalanceIntegrity:
    """Balances always equal the signed sum of current entries."""

    async def test_mixed_sequence(self, service, accounts):
        salary = await service.create_transaction(OWNER, {
            "date": date(2024, 3, 1),
            "description": "Salary",
            "amount": 250000,
            "from_account_id": accounts["salary"].id,
            "to_account_id": accounts["checking"].id,
            "type": "deposit",
        })
        shop = await service.create_transaction(OWNER, _withdrawal(accounts, 4200))
        card = await service.create_transaction(
            OWNER, _withdrawal(accounts, 1800, from_account_id=accounts["card"].id)
        )
        await service.edit_transaction(OWNER, shop.id, {"amount": 3900})
        await service.edit_transaction(OWNER, salary.id, {"amount": 260000})
        await service.delete_transaction(OWNER, card.id)
        await service.create_transaction(OWNER, {
            "date": date(2024, 3, 25),
            "description": "Pay card",
            "amount": 500,
            "from_account_id": accounts["checking"].id,
            "to_account_id": accounts["card"].id,
            "type": "transfer",
        })

        await _assert_balances_match_entries(service)
        assert await balance_of(service, accounts["checking"].id) == 260000 - 3900 - 500


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
