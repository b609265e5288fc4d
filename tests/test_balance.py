"""
Tests for the balance rules and the posting validator.

These are pure functions; no database is involved.
"""

from datetime import date, timedelta

import pytest

from ledger.engine.balance import delta, infer_kind, reverse, roles_allow
from ledger.engine.errors import ValidationError
from ledger.models.ledger import (
    Account,
    AccountClass,
    EntrySide,
    PostingRequest,
    TransactionKind,
)
from ledger.validation import PostingValidator


class TestDelta:
    """Tests for the sign table."""

    @pytest.mark.parametrize("account_class,side,expected", [
        (AccountClass.ASSET, EntrySide.DEBIT, 100),
        (AccountClass.ASSET, EntrySide.CREDIT, -100),
        (AccountClass.EXPENSE, EntrySide.DEBIT, 100),
        (AccountClass.EXPENSE, EntrySide.CREDIT, -100),
        (AccountClass.LIABILITY, EntrySide.DEBIT, -100),
        (AccountClass.LIABILITY, EntrySide.CREDIT, 100),
        (AccountClass.REVENUE, EntrySide.DEBIT, -100),
        (AccountClass.REVENUE, EntrySide.CREDIT, 100),
    ])
    def test_sign_table(self, account_class, side, expected):
        assert delta(account_class, side, 100) == expected

    def test_reverse_undoes_delta(self):
        """Test that reverse is the exact negation of delta for every combination."""
        for account_class in AccountClass:
            for side in EntrySide:
                assert delta(account_class, side, 250) + reverse(account_class, side, 250) == 0

    def test_withdrawal_to_expense_moves_balances_opposite_ways(self):
        """Test that a withdrawal credits the asset down and debits the expense up."""
        assert delta(AccountClass.ASSET, EntrySide.CREDIT, 5000) == -5000
        assert delta(AccountClass.EXPENSE, EntrySide.DEBIT, 5000) == 5000

    def test_card_purchase_increases_debt(self):
        assert delta(AccountClass.LIABILITY, EntrySide.CREDIT, 2000) == 2000


class TestRoles:
    """Tests for which account classes each kind accepts."""

    def test_withdrawal_roles(self):
        assert roles_allow(TransactionKind.WITHDRAWAL, AccountClass.ASSET, AccountClass.EXPENSE)
        assert roles_allow(TransactionKind.WITHDRAWAL, AccountClass.LIABILITY, AccountClass.EXPENSE)
        assert roles_allow(TransactionKind.WITHDRAWAL, AccountClass.ASSET, AccountClass.LIABILITY)
        assert not roles_allow(TransactionKind.WITHDRAWAL, AccountClass.ASSET, AccountClass.ASSET)
        assert not roles_allow(TransactionKind.WITHDRAWAL, AccountClass.ASSET, AccountClass.REVENUE)

    def test_deposit_roles(self):
        assert roles_allow(TransactionKind.DEPOSIT, AccountClass.REVENUE, AccountClass.ASSET)
        assert not roles_allow(TransactionKind.DEPOSIT, AccountClass.ASSET, AccountClass.ASSET)
        assert not roles_allow(TransactionKind.DEPOSIT, AccountClass.REVENUE, AccountClass.EXPENSE)

    def test_transfer_roles(self):
        assert roles_allow(TransactionKind.TRANSFER, AccountClass.ASSET, AccountClass.ASSET)
        assert roles_allow(TransactionKind.TRANSFER, AccountClass.ASSET, AccountClass.LIABILITY)
        assert not roles_allow(TransactionKind.TRANSFER, AccountClass.REVENUE, AccountClass.ASSET)

    def test_infer_kind(self):
        assert infer_kind(AccountClass.REVENUE, AccountClass.ASSET) == TransactionKind.DEPOSIT
        assert infer_kind(AccountClass.ASSET, AccountClass.EXPENSE) == TransactionKind.WITHDRAWAL
        assert infer_kind(AccountClass.LIABILITY, AccountClass.EXPENSE) == TransactionKind.WITHDRAWAL
        assert infer_kind(AccountClass.ASSET, AccountClass.ASSET) == TransactionKind.TRANSFER
        assert infer_kind(AccountClass.ASSET, AccountClass.LIABILITY) == TransactionKind.TRANSFER
        assert infer_kind(AccountClass.EXPENSE, AccountClass.ASSET) is None


def _account(account_id: int, account_class: AccountClass) -> Account:
    return Account(id=account_id, owner_id="u", name=f"acct {account_id}", account_class=account_class)


class TestPostingValidator:
    """Tests for the two-stage posting validator."""

    def _request(self, **overrides) -> PostingRequest:
        fields = {
            "date": date(2024, 3, 1),
            "description": "Groceries",
            "amount": 5000,
            "from_account_id": 1,
            "to_account_id": 2,
            "kind": TransactionKind.WITHDRAWAL,
        }
        fields.update(overrides)
        return PostingRequest(**fields)

    def test_valid_request_passes(self):
        result = PostingValidator().validate(
            self._request(),
            _account(1, AccountClass.ASSET),
            _account(2, AccountClass.EXPENSE),
        )
        assert result.is_valid
        assert result.issues == []

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            PostingValidator().check_request(self._request(amount=amount))
        assert exc_info.value.issues[0].field == "amount"
        assert exc_info.value.issues[0].issue_type == "invalid_value"

    def test_missing_accounts_reported_together(self):
        result = PostingValidator().validate(
            self._request(from_account_id=None, to_account_id=None)
        )
        fields = {issue.field for issue in result.issues}
        assert fields == {"from_account_id", "to_account_id"}
        assert result.error_count == 2

    def test_same_account_rejected(self):
        result = PostingValidator().validate(self._request(to_account_id=1))
        assert result.issues[0].issue_type == "same_account"

    def test_empty_description_rejected(self):
        result = PostingValidator().validate(self._request(description="   "))
        assert result.issues[0].field == "description"

    def test_far_future_date_is_only_a_warning(self):
        result = PostingValidator().validate(
            self._request(date=date.today() + timedelta(days=400))
        )
        assert result.is_valid
        assert result.issues[0].severity == "warning"

    def test_withdrawal_to_asset_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            PostingValidator().check_roles(
                TransactionKind.WITHDRAWAL,
                _account(1, AccountClass.ASSET),
                _account(2, AccountClass.ASSET),
            )
        assert exc_info.value.issues[0].issue_type == "wrong_class"
        assert exc_info.value.issues[0].field == "to_account_id"

    def test_deposit_from_asset_rejected(self):
        result = PostingValidator().validate(
            self._request(kind=TransactionKind.DEPOSIT),
            _account(1, AccountClass.ASSET),
            _account(2, AccountClass.ASSET),
        )
        assert [issue.field for issue in result.issues] == ["from_account_id"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
