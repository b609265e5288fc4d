"""
Goal Transfer Engine

Each goal owns one dedicated asset account, created in the same unit as the
goal. Money reaches the goal only through transfers into that account, so
the goal's current amount is always a mirror of the account balance.

The mirroring itself lives in the posting engine: any entry on an active
goal's account moves current_amount by the same delta. A contribution is
therefore just a transfer posting.
"""

from datetime import date
from typing import Optional

import structlog

from ledger.engine.errors import InvalidStateError, NotFoundError, ValidationError, build_model
from ledger.engine.posting import PostingEngine
from ledger.models.ledger import (
    Account,
    AccountClass,
    Goal,
    PostingRequest,
    TransactionKind,
    TransactionWithEntries,
)
from ledger.services.storage import LedgerUnitOfWork

logger = structlog.get_logger(__name__)


class GoalEngine:
    """Goal lifecycle over a unit of work."""

    def __init__(
        self,
        posting: Optional[PostingEngine] = None,
        account_prefix: str = "💰 ",
    ):
        self._posting = posting or PostingEngine()
        self._account_prefix = account_prefix

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, goal_id: int) -> Goal:
        goal = await uow.get_goal(owner_id, goal_id)
        if goal is None:
            raise NotFoundError("goal", goal_id)
        return goal

    async def _linked_account(self, uow: LedgerUnitOfWork, owner_id: str, goal: Goal) -> Account:
        if goal.account_id is None:
            raise NotFoundError("account", None)
        return await self._posting.load_account(uow, owner_id, goal.account_id)

    async def create(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        name: str,
        target_amount: int,
        currency: str = "USD",
    ) -> Goal:
        """Create a goal and its asset account. Both start at zero."""
        if target_amount <= 0:
            raise ValidationError.single(
                "target_amount", "invalid_value", "Target amount must be greater than zero"
            )
        name = (name or "").strip()
        if not name:
            raise ValidationError.single("name", "missing", "Name is required")

        # Both rows are checked before either is written.
        goal = build_model(Goal, {
            "owner_id": owner_id,
            "name": name,
            "target_amount": target_amount,
            "current_amount": 0,
        })
        account = build_model(Account, {
            "owner_id": owner_id,
            "name": f"{self._account_prefix}{name}",
            "account_class": AccountClass.ASSET,
            "currency": currency,
        })

        account = await uow.add_account(account)
        return await uow.add_goal(goal.model_copy(update={"account_id": account.id}))

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        goal_id: int,
        name: Optional[str] = None,
        target_amount: Optional[int] = None,
    ) -> Goal:
        """Rename a goal or change its target. The amount is never edited directly."""
        goal = await self.get(uow, owner_id, goal_id)
        if target_amount is not None and target_amount <= 0:
            raise ValidationError.single(
                "target_amount", "invalid_value", "Target amount must be greater than zero"
            )
        if name is not None and not name.strip():
            raise ValidationError.single("name", "missing", "Name is required")

        return await uow.update_goal(build_model(Goal, {
            **goal.model_dump(),
            "name": name.strip() if name is not None else goal.name,
            "target_amount": target_amount if target_amount is not None else goal.target_amount,
        }))

    async def contribute(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        goal_id: int,
        from_account_id: int,
        amount: int,
        today: Optional[date] = None,
    ) -> tuple[Goal, TransactionWithEntries]:
        """
        Transfer money into the goal's account.

        Raises:
            InvalidStateError: The goal is already completed
            NotFoundError: The goal has no linked account
        """
        goal = await self.get(uow, owner_id, goal_id)
        if goal.completed:
            raise InvalidStateError(f"Goal {goal_id} is already completed")
        account = await self._linked_account(uow, owner_id, goal)

        posted = await self._posting.create(uow, owner_id, PostingRequest(
            date=today or date.today(),
            description=f"Contribution to {goal.name}",
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=account.id,
            kind=TransactionKind.TRANSFER,
        ))
        return await self.get(uow, owner_id, goal_id), posted

    async def complete_and_withdraw(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        goal_id: int,
        to_account_id: int,
        today: Optional[date] = None,
    ) -> tuple[Goal, TransactionWithEntries]:
        """
        Move the whole saved amount out and mark the goal completed.

        The linked account is left at exactly zero.

        Raises:
            InvalidStateError: Already completed, or nothing saved
        """
        goal = await self.get(uow, owner_id, goal_id)
        if goal.completed:
            raise InvalidStateError(f"Goal {goal_id} is already completed")
        if goal.current_amount <= 0:
            raise InvalidStateError(
                f"Goal {goal_id} has nothing to withdraw",
                details={"current_amount": goal.current_amount},
            )
        account = await self._linked_account(uow, owner_id, goal)

        posted = await self._posting.create(uow, owner_id, PostingRequest(
            date=today or date.today(),
            description=f"Withdrawal from {goal.name} (Goal Completed)",
            amount=goal.current_amount,
            from_account_id=account.id,
            to_account_id=to_account_id,
            kind=TransactionKind.TRANSFER,
        ))

        await uow.set_balance(account.id, 0)
        goal = await self.get(uow, owner_id, goal_id)
        goal = await uow.update_goal(goal.model_copy(update={
            "current_amount": 0,
            "completed": True,
        }))

        logger.info("goal_completed", goal_id=goal_id, amount=posted.amount)
        return goal, posted

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, goal_id: int) -> Goal:
        """
        Delete a completed or empty goal.

        The linked account goes with it when nothing was ever posted to it;
        otherwise it stays behind as an ordinary account.
        """
        goal = await self.get(uow, owner_id, goal_id)
        if not goal.completed and goal.current_amount != 0:
            raise InvalidStateError(
                f"Goal {goal_id} still holds {goal.current_amount}; withdraw it first"
            )

        await uow.delete_goal(owner_id, goal_id)
        if goal.account_id is not None:
            references = await uow.count_account_references(owner_id, goal.account_id)
            if not any(references.values()):
                await uow.delete_account(owner_id, goal.account_id)
        return goal
