"""
Recurring Execution Engine

Turns a recurring rule into a concrete posting and advances its schedule.

State machine per rule:
    ACTIVE <-> PAUSED   (toggle)
    ACTIVE  -> EXHAUSTED (execute reaches total_occurrences; terminal)

The engine never decides when a rule runs. Callers (a user action, a cron
job) call execute() or skip() for rules they consider due; upcoming()
tells them which ones are.
"""

from datetime import date, timedelta
from typing import Optional

import structlog
from dateutil.relativedelta import relativedelta

from ledger.engine.errors import (
    InactiveError,
    InvalidStateError,
    NotFoundError,
    build_model,
    editable_changes,
)
from ledger.engine.posting import PostingEngine
from ledger.models.ledger import (
    Frequency,
    PostingRequest,
    RecurringRule,
    TransactionWithEntries,
)
from ledger.models.reports import UpcomingRecurring
from ledger.services.storage import LedgerUnitOfWork

logger = structlog.get_logger(__name__)


STEPS: dict[Frequency, relativedelta] = {
    Frequency.DAILY: relativedelta(days=1),
    Frequency.WEEKLY: relativedelta(weeks=1),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.YEARLY: relativedelta(years=1),
}

# Counters and ownership only change through execute/skip/toggle.
PROTECTED_FIELDS = frozenset({
    "id",
    "owner_id",
    "active",
    "completed_occurrences",
    "last_run_date",
    "created_at",
})


def advance(run_date: date, frequency: Frequency) -> date:
    """
    Next run date after run_date.

    Calendar-aware: Jan 31 + 1 month is Feb 28 (or 29), and Feb 29 + 1 year
    is Feb 28.
    """
    return run_date + STEPS[frequency]


class RecurringEngine:
    """Recurring rule lifecycle over a unit of work."""

    def __init__(self, posting: Optional[PostingEngine] = None):
        self._posting = posting or PostingEngine()

    async def get(self, uow: LedgerUnitOfWork, owner_id: str, rule_id: int) -> RecurringRule:
        rule = await uow.get_rule(owner_id, rule_id)
        if rule is None:
            raise NotFoundError("recurring_rule", rule_id)
        return rule

    def _as_posting(self, rule: RecurringRule, on: date) -> PostingRequest:
        return PostingRequest(
            date=on,
            description=rule.description,
            amount=rule.amount,
            category_id=rule.category_id,
            from_account_id=rule.from_account_id,
            to_account_id=rule.to_account_id,
            kind=rule.kind,
        )

    # -------------------------------------------------------------------------
    # Catalogue
    # -------------------------------------------------------------------------

    async def create(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        rule: RecurringRule,
    ) -> RecurringRule:
        """
        Store a new rule, validated exactly like the posting it will make.

        next_run_date is the start date; counters start at zero.
        """
        await self._posting.resolve(uow, owner_id, self._as_posting(rule, rule.next_run_date))
        return await uow.add_rule(rule.model_copy(update={
            "id": None,
            "owner_id": owner_id,
            "active": True,
            "completed_occurrences": 0,
            "last_run_date": None,
        }))

    async def update(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        rule_id: int,
        changes: dict,
    ) -> RecurringRule:
        """
        Change a rule's template or schedule.

        Counters and the active flag are not editable here; lowering the
        cap to the completed count exhausts the rule.
        """
        current = await self.get(uow, owner_id, rule_id)
        editable = editable_changes(RecurringRule, changes, PROTECTED_FIELDS)
        updated = build_model(RecurringRule, {**current.model_dump(), **editable})
        await self._posting.resolve(uow, owner_id, self._as_posting(updated, updated.next_run_date))

        if updated.is_exhausted:
            updated = updated.model_copy(update={"active": False})
        return await uow.update_rule(updated)

    async def delete(self, uow: LedgerUnitOfWork, owner_id: str, rule_id: int) -> RecurringRule:
        rule = await self.get(uow, owner_id, rule_id)
        await uow.delete_rule(owner_id, rule_id)
        return rule

    # -------------------------------------------------------------------------
    # State machine
    # -------------------------------------------------------------------------

    async def execute(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        rule_id: int,
        today: Optional[date] = None,
    ) -> tuple[RecurringRule, TransactionWithEntries]:
        """
        Post one occurrence of a rule and advance its schedule.

        The posting is dated today. The schedule advances from the old
        next_run_date, not from today, so a late run does not shift the
        cadence.

        Raises:
            InactiveError: The rule is paused or exhausted
        """
        rule = await self.get(uow, owner_id, rule_id)
        if not rule.active or rule.is_exhausted:
            raise InactiveError(
                f"Recurring rule {rule_id} is not active ({rule.state.value})",
                details={"rule_id": rule_id, "state": rule.state.value},
            )

        posted = await self._posting.create(
            uow, owner_id, self._as_posting(rule, today or date.today())
        )

        completed = rule.completed_occurrences + 1
        exhausted = rule.total_occurrences is not None and completed >= rule.total_occurrences
        rule = await uow.update_rule(rule.model_copy(update={
            "completed_occurrences": completed,
            "last_run_date": rule.next_run_date,
            "next_run_date": advance(rule.next_run_date, rule.frequency),
            "active": not exhausted,
        }))

        logger.info(
            "recurring_executed",
            rule_id=rule_id,
            transaction_id=posted.id,
            completed_occurrences=completed,
            exhausted=exhausted,
        )
        return rule, posted

    async def skip(self, uow: LedgerUnitOfWork, owner_id: str, rule_id: int) -> RecurringRule:
        """Advance the schedule without posting or counting an occurrence."""
        rule = await self.get(uow, owner_id, rule_id)
        if rule.is_exhausted:
            raise InvalidStateError(f"Recurring rule {rule_id} is exhausted")
        return await uow.update_rule(rule.model_copy(update={
            "next_run_date": advance(rule.next_run_date, rule.frequency),
        }))

    async def toggle(self, uow: LedgerUnitOfWork, owner_id: str, rule_id: int) -> RecurringRule:
        """Pause an active rule or resume a paused one."""
        rule = await self.get(uow, owner_id, rule_id)
        if rule.is_exhausted:
            raise InvalidStateError(f"Recurring rule {rule_id} is exhausted")
        return await uow.update_rule(rule.model_copy(update={"active": not rule.active}))

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    async def upcoming(
        self,
        uow: LedgerUnitOfWork,
        owner_id: str,
        today: date,
        window_days: int,
    ) -> list[UpcomingRecurring]:
        """Active rules ordered by next run date, with due flags."""
        horizon = today + timedelta(days=window_days)
        rules = sorted(
            (rule for rule in await uow.list_rules(owner_id) if rule.active),
            key=lambda rule: (rule.next_run_date, rule.id),
        )
        return [
            UpcomingRecurring(
                rule=rule,
                is_due_today=rule.next_run_date <= today,
                is_due_soon=today < rule.next_run_date <= horizon,
                is_overdue=rule.next_run_date < today,
            )
            for rule in rules
        ]
