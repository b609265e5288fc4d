"""
Tests for the read-side reports.
"""

from datetime import date

import pytest

from ledger.engine.errors import ValidationError
from ledger.models.ledger import EntrySide
from tests.conftest import OTHER_OWNER, OWNER


async def _post(service, accounts, source, destination, amount, on, kind, category_id=None):
    return await service.create_transaction(OWNER, {
        "date": on,
        "description": f"{source} to {destination}",
        "amount": amount,
        "category_id": category_id,
        "from_account_id": accounts[source].id,
        "to_account_id": accounts[destination].id,
        "type": kind,
    })


@pytest.fixture
async def march(service, accounts):
    """A month of activity: salary, two categorized purchases, a card purchase, a card payment."""
    food = await service.create_category(OWNER, {"name": "Food", "type": "expense"})
    fun = await service.create_category(OWNER, {"name": "Fun", "type": "expense"})

    await _post(service, accounts, "salary", "checking", 300000, date(2024, 3, 1), "deposit")
    await _post(service, accounts, "checking", "groceries", 4000, date(2024, 3, 3), "withdrawal", food.id)
    await _post(service, accounts, "checking", "groceries", 6000, date(2024, 3, 9), "withdrawal", fun.id)
    await _post(service, accounts, "card", "groceries", 2500, date(2024, 3, 12), "withdrawal")
    await _post(service, accounts, "checking", "card", 2500, date(2024, 3, 28), "transfer")
    await _post(service, accounts, "checking", "groceries", 1000, date(2024, 1, 20), "withdrawal", food.id)
    return {"food": food, "fun": fun}


class TestJournal:
    """Tests for the journal listing."""

    async def test_every_entry_newest_first(self, service, accounts, march):
        lines = await service.journal(OWNER)

        assert len(lines) == 12
        assert lines[0].date == date(2024, 3, 28)
        assert lines[-1].date == date(2024, 1, 20)
        assert {line.side for line in lines[:2]} == {EntrySide.DEBIT, EntrySide.CREDIT}
        assert {line.account_name for line in lines[:2]} == {"Checking", "Credit Card"}

    async def test_empty_journal(self, service):
        assert await service.journal(OWNER) == []


class TestMonthlyFigures:
    """Tests for spending and income vs expense."""

    async def test_monthly_spending_counts_asset_outflows_only(self, service, accounts, march):
        """Test that a card purchase is not spending until the card is paid."""
        spending = await service.monthly_spending(OWNER, as_of=date(2024, 3, 15))

        assert spending == 4000 + 6000 + 2500

    async def test_income_vs_expense_fills_empty_months(self, service, accounts, march):
        rows = await service.income_vs_expense(OWNER, as_of=date(2024, 3, 15), months=4)

        assert [row.month for row in rows] == ["2023-12", "2024-01", "2024-02", "2024-03"]
        by_month = {row.month: row for row in rows}
        assert by_month["2024-03"].income == 300000
        assert by_month["2024-03"].expense == 4000 + 6000 + 2500 + 2500
        assert by_month["2024-01"].expense == 1000
        assert by_month["2024-02"].income == 0
        assert by_month["2024-02"].expense == 0

    async def test_default_window_from_settings(self, service, accounts, march):
        rows = await service.income_vs_expense(OWNER, as_of=date(2024, 3, 15))

        assert len(rows) == 6
        assert rows[0].month == "2023-10"

    async def test_months_must_be_positive(self, service):
        with pytest.raises(ValidationError):
            await service.income_vs_expense(OWNER, as_of=date(2024, 3, 15), months=0)


class TestSpendingByCategory:
    """Tests for the category breakdown."""

    async def test_grouped_largest_first(self, service, accounts, march):
        rows = await service.spending_by_category(OWNER, as_of=date(2024, 3, 15))

        assert [(row.name, row.value) for row in rows] == [
            ("Fun", 6000),
            ("Uncategorized", 5000),
            ("Food", 4000),
        ]

    async def test_other_month(self, service, accounts, march):
        rows = await service.spending_by_category(OWNER, as_of=date(2024, 1, 1))

        assert [(row.name, row.value) for row in rows] == [("Food", 1000)]


class TestNetWorth:
    """Tests for net worth."""

    async def test_assets_minus_liabilities(self, service, accounts, march):
        await _post(service, accounts, "card", "groceries", 700, date(2024, 3, 29), "withdrawal")

        worth = await service.net_worth(OWNER)

        checking = 300000 - 4000 - 6000 - 2500 - 1000
        assert worth.assets == checking
        assert worth.liabilities == 700
        assert worth.total == checking - 700
        assert worth.defined is None

    async def test_defined_net_worth(self, service, accounts, march):
        await _post(service, accounts, "card", "groceries", 700, date(2024, 3, 29), "withdrawal")
        savings = await service.create_account(OWNER, {"name": "Savings", "type": "asset"})
        await _post(
            service, {**accounts, "savings": savings}, "checking", "savings",
            50000, date(2024, 3, 30), "transfer",
        )
        await service.update_user_settings(OWNER, {
            "show_defined_net_worth": True,
            "defined_net_worth_includes": [savings.id, accounts["card"].id],
        })

        worth = await service.net_worth(OWNER)

        assert worth.defined == 50000 - 700

    async def test_empty_ledger(self, service):
        worth = await service.net_worth(OTHER_OWNER)

        assert worth.total == 0
        assert worth.assets == 0
        assert worth.liabilities == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
