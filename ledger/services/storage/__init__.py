"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLAlchemy (SQLite by default) as the backend, but
designed to be swappable.
"""

from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    IntegrityError,
    LedgerStorageInterface,
    LedgerTable,
    LedgerUnitOfWork,
    StorageError,
)
from ledger.services.storage.sql import (
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
    SqlLedgerUnitOfWork,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "LedgerTable",
    "LedgerUnitOfWork",
    # Exceptions
    "ConnectionError",
    "IntegrityError",
    "StorageError",
    # SQLAlchemy implementation
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlLedgerStorage",
    "SqlLedgerUnitOfWork",
]
