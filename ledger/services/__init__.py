"""Services package."""

from ledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    IntegrityError,
    LedgerStorageInterface,
    LedgerTable,
    LedgerUnitOfWork,
    SqlAuditStorage,
    SqlDatabase,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "IntegrityError",
    "LedgerStorageInterface",
    "LedgerTable",
    "LedgerUnitOfWork",
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlLedgerStorage",
    "StorageError",
]
