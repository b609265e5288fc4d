"""
Balance Rules

The single place that knows how an entry moves a balance.

Asset and expense accounts are debit-normal: a debit increases them.
Liability and revenue accounts are credit-normal: a credit increases them.

Every engine that touches a balance goes through delta() or reverse();
no other module multiplies by a sign.
"""

from typing import Optional

from ledger.models.ledger import AccountClass, EntrySide, TransactionKind


DEBIT_NORMAL = frozenset({AccountClass.ASSET, AccountClass.EXPENSE})

# kind -> (classes allowed as source, classes allowed as destination)
# The source is credited, the destination is debited.
KIND_ROLES: dict[TransactionKind, tuple[frozenset, frozenset]] = {
    TransactionKind.WITHDRAWAL: (
        frozenset({AccountClass.ASSET, AccountClass.LIABILITY}),
        frozenset({AccountClass.EXPENSE, AccountClass.LIABILITY}),
    ),
    TransactionKind.DEPOSIT: (
        frozenset({AccountClass.REVENUE}),
        frozenset({AccountClass.ASSET}),
    ),
    TransactionKind.TRANSFER: (
        frozenset({AccountClass.ASSET, AccountClass.LIABILITY}),
        frozenset({AccountClass.ASSET, AccountClass.LIABILITY}),
    ),
}


def delta(account_class: AccountClass, side: EntrySide, amount: int) -> int:
    """
    Signed balance change caused by one entry.

    Args:
        account_class: Class of the account the entry is posted to
        side: Debit or credit
        amount: Absolute entry amount

    Returns:
        +amount or -amount
    """
    increases = (side == EntrySide.DEBIT) == (account_class in DEBIT_NORMAL)
    return amount if increases else -amount


def reverse(account_class: AccountClass, side: EntrySide, amount: int) -> int:
    """Signed change that undoes delta() for the same entry."""
    return -delta(account_class, side, amount)


def roles_allow(
    kind: TransactionKind,
    source_class: AccountClass,
    destination_class: AccountClass,
) -> bool:
    sources, destinations = KIND_ROLES[kind]
    return source_class in sources and destination_class in destinations


def infer_kind(
    source_class: AccountClass,
    destination_class: AccountClass,
) -> Optional[TransactionKind]:
    """
    Reconstruct the kind of a posting that was stored without one.

    Deposit is tried first, then withdrawal, then transfer. An
    asset-to-liability posting is allowed as both a withdrawal and a
    transfer; it is reported as a transfer unless the destination is an
    expense. Returns None when no kind allows the pair.
    """
    if roles_allow(TransactionKind.DEPOSIT, source_class, destination_class):
        return TransactionKind.DEPOSIT
    if destination_class == AccountClass.EXPENSE and roles_allow(
        TransactionKind.WITHDRAWAL, source_class, destination_class
    ):
        return TransactionKind.WITHDRAWAL
    if roles_allow(TransactionKind.TRANSFER, source_class, destination_class):
        return TransactionKind.TRANSFER
    return None
