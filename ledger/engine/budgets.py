"""
Budgets

A budget is a monthly limit for one category. Spending is never stored:
it is summed on read from the transactions of that category dated in the
calendar month of the reference date.
"""

from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta

from ledger.engine.errors import NotFoundError, ValidationError, build_model
from ledger.models.ledger import Budget, BudgetPeriod, BudgetProgress
from ledger.services.storage import LedgerUnitOfWork


def month_bounds(as_of: date) -> tuple[date, date]:
    """First and last day of the calendar month containing as_of."""
    start = as_of.replace(day=1)
    return start, start + relativedelta(months=1, days=-1)


def _check_amount(amount: int) -> None:
    if amount <= 0:
        raise ValidationError.single(
            "amount", "invalid_value", "Budget amount must be greater than zero"
        )


class BudgetEngine:
    """Budget maintenance and progress over a unit of work."""

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, budget_id: int) -> Budget:
        budget = await uow.get_budget(owner_id, budget_id)
        if budget is None:
            raise NotFoundError("budget", budget_id)
        return budget

    async def save(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        category_id: int,
        amount: int,
    ) -> Budget:
        """Set the monthly limit of a category, creating the budget if needed."""
        _check_amount(amount)
        if await uow.get_category(owner_id, category_id) is None:
            raise NotFoundError("category", category_id)

        existing = await uow.find_budget_by_category(owner_id, category_id)
        if existing is not None:
            return await uow.update_budget(existing.model_copy(update={"amount": amount}))

        return await uow.add_budget(build_model(Budget, {
            "owner_id": owner_id,
            "category_id": category_id,
            "amount": amount,
            "period": BudgetPeriod.MONTHLY,
        }))

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        budget_id: int,
        amount: int,
    ) -> Budget:
        _check_amount(amount)
        budget = await self.get(uow, owner_id, budget_id)
        return await uow.update_budget(budget.model_copy(update={"amount": amount}))

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, budget_id: int) -> Budget:
        budget = await self.get(uow, owner_id, budget_id)
        await uow.delete_budget(owner_id, budget_id)
        return budget

    async def progress(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        as_of: Optional[date] = None,
    ) -> list[BudgetProgress]:
        """
        Every budget with spent, remaining and progress for one month.

        progress is spent / limit * 100, capped at 100; remaining may go
        negative when the budget is overspent.
        """
        start, end = month_bounds(as_of or date.today())
        categories = {c.id: c.name for c in await uow.list_categories(owner_id)}

        results = []
        for budget in await uow.list_budgets(owner_id):
            transactions = await uow.list_transactions(
                owner_id,
                date_from=start,
                date_to=end,
                category_id=budget.category_id,
            )
            spent = sum(t.amount for t in transactions)
            results.append(BudgetProgress(
                **budget.model_dump(),
                category_name=categories.get(budget.category_id),
                spent=spent,
                remaining=budget.amount - spent,
                progress=min(spent / budget.amount * 100, 100.0),
            ))
        return results
