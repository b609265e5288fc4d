"""
Personal Ledger - Source Package

The double-entry ledger engine behind a personal finance tracker.
It keeps account balances, goals, recurring rules and backups
consistent while callers (web forms, cron jobs, scripts) mutate them.

DESIGN PRINCIPLES:
1. Every posting is balanced: one debit, one credit, same amount
2. Balances change only inside an atomic storage unit
3. Sign rules live in exactly one place
4. Fail loudly with a typed error, never half-apply
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Ledger Team"
