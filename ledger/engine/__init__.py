"""
Ledger Engines

The stateless engines that mutate the ledger inside a unit of work.
Import the engines from their modules (ledger.engine.posting, ...);
only the error taxonomy and the balance rules are re-exported here.
"""

from ledger.engine.balance import DEBIT_NORMAL, KIND_ROLES, delta, infer_kind, reverse, roles_allow
from ledger.engine.errors import (
    FormatError,
    InactiveError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    # Balance rules
    "DEBIT_NORMAL",
    "KIND_ROLES",
    "delta",
    "infer_kind",
    "reverse",
    "roles_allow",
    # Errors
    "FormatError",
    "InactiveError",
    "InvalidStateError",
    "LedgerError",
    "NotFoundError",
    "ValidationError",
]
