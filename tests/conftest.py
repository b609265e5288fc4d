"""
Shared fixtures.

Every test gets its own in-memory SQLite database, so tests never see
each other's rows.
"""

import pytest

from ledger.audit import AuditLogger
from ledger.config import DatabaseSettings, Settings
from ledger.orchestrator import LedgerService
from ledger.services.storage import SqlAuditStorage, SqlDatabase, SqlLedgerStorage


OWNER = "user_alice"
OTHER_OWNER = "user_bob"


def make_database() -> SqlDatabase:
    database = SqlDatabase(DatabaseSettings(url="sqlite://", connect_attempts=1))
    database.connect()
    return database


@pytest.fixture
def database():
    database = make_database()
    yield database
    database.dispose()


@pytest.fixture
def storage(database):
    return SqlLedgerStorage(database)


@pytest.fixture
def audit_storage(database):
    return SqlAuditStorage(database)


@pytest.fixture
def service(storage, audit_storage):
    return LedgerService(storage, AuditLogger(audit_storage), settings=Settings())


@pytest.fixture
async def accounts(service):
    """Checking (asset), Groceries (expense), Salary (revenue), Credit Card (liability)."""
    return {
        "checking": await service.create_account(OWNER, {"name": "Checking", "type": "asset"}),
        "groceries": await service.create_account(OWNER, {"name": "Groceries", "type": "expense"}),
        "salary": await service.create_account(OWNER, {"name": "Salary", "type": "revenue"}),
        "card": await service.create_account(OWNER, {"name": "Credit Card", "type": "liability"}),
    }


async def balance_of(service: LedgerService, account_id: int, owner_id: str = OWNER) -> int:
    return (await service.get_account(owner_id, account_id)).balance
