"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational store is used because every ledger operation
must be all-or-nothing. A posting touches a transaction row, two entry rows,
two account balances and maybe a goal; a restore replaces nine tables.
Only a real database transaction gives us that for free.

SQLite is the default backend:
1. Zero setup for a personal ledger
2. One file, trivially backed up
3. BEGIN IMMEDIATE serializes writers, so concurrent postings never
   interleave their balance updates

TRADEOFFS:
- One writer at a time (fine for personal use)
- Other backends work through the same models, but explicit ids written
  by a restore do not advance PostgreSQL sequences

The implementation follows the abstract interface, so the engines never
see a Session.
"""

import datetime as dt
import json
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Optional, Type, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    func,
    inspect,
    or_,
    select,
    update,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledger.config import DatabaseSettings, get_settings
from ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from ledger.models.ledger import (
    Account,
    AccountClass,
    Budget,
    BudgetPeriod,
    Category,
    Entry,
    EntrySide,
    Frequency,
    Goal,
    RecurringRule,
    Shortcut,
    Transaction,
    TransactionKind,
    UserSettings,
)
from ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    IntegrityError,
    LedgerStorageInterface,
    LedgerTable,
    LedgerUnitOfWork,
    StorageError,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _enum(enum_cls) -> Enum:
    """Store enums by value in a plain VARCHAR column."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# TABLES
# =============================================================================

class Base(DeclarativeBase):
    pass


class CategoryRow(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    name: Mapped[str] = mapped_column(String(200))
    account_class: Mapped[Optional[AccountClass]] = mapped_column("type", _enum(AccountClass), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    name: Mapped[str] = mapped_column(String(200))
    account_class: Mapped[AccountClass] = mapped_column("type", _enum(AccountClass))
    balance: Mapped[int] = mapped_column(BigInteger, default=0)
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    statement_balance: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    default_category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id"), nullable=True
    )
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    description: Mapped[str] = mapped_column(String(500))
    amount: Mapped[int] = mapped_column(BigInteger)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"), nullable=True)
    kind: Mapped[Optional[TransactionKind]] = mapped_column(_enum(TransactionKind), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class EntryRow(Base):
    __tablename__ = "transaction_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id"), index=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), index=True)
    side: Mapped[EntrySide] = mapped_column("type", _enum(EntrySide))
    amount: Mapped[int] = mapped_column(BigInteger)


class BudgetRow(Base):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"))
    amount: Mapped[int] = mapped_column(BigInteger)
    period: Mapped[BudgetPeriod] = mapped_column(_enum(BudgetPeriod))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GoalRow(Base):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    name: Mapped[str] = mapped_column(String(200))
    target_amount: Mapped[int] = mapped_column(BigInteger)
    current_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class RecurringRow(Base):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    description: Mapped[str] = mapped_column(String(500))
    amount: Mapped[int] = mapped_column(BigInteger)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"), nullable=True)
    kind: Mapped[TransactionKind] = mapped_column("type", _enum(TransactionKind))
    from_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    to_account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    frequency: Mapped[Frequency] = mapped_column(_enum(Frequency))
    next_run_date: Mapped[date] = mapped_column(Date)
    last_run_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    total_occurrences: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completed_occurrences: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ShortcutRow(Base):
    __tablename__ = "shortcuts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    from_account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"))
    to_account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"))
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"), nullable=True)
    kind: Mapped[TransactionKind] = mapped_column("type", _enum(TransactionKind))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class UserSettingsRow(Base):
    __tablename__ = "user_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column("user_id", String(200), unique=True)
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    show_net_worth: Mapped[bool] = mapped_column(Boolean, default=True)
    show_monthly_spending: Mapped[bool] = mapped_column(Boolean, default=True)
    show_defined_net_worth: Mapped[bool] = mapped_column(Boolean, default=False)
    defined_net_worth_includes: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditEventRow(Base):
    __tablename__ = "audit_events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    event_type: Mapped[str] = mapped_column(String(50))
    severity: Mapped[str] = mapped_column(String(20))
    owner_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(500))
    details_json: Mapped[str] = mapped_column(Text, default="")
    error_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_user_action: Mapped[bool] = mapped_column(Boolean, default=True)


# Dependents last, so purging in reverse order never trips a foreign key.
TABLE_ROWS: dict[LedgerTable, type] = {
    LedgerTable.CATEGORIES: CategoryRow,
    LedgerTable.USER_SETTINGS: UserSettingsRow,
    LedgerTable.ACCOUNTS: AccountRow,
    LedgerTable.TRANSACTIONS: TransactionRow,
    LedgerTable.TRANSACTION_ENTRIES: EntryRow,
    LedgerTable.BUDGETS: BudgetRow,
    LedgerTable.GOALS: GoalRow,
    LedgerTable.RECURRING_TRANSACTIONS: RecurringRow,
    LedgerTable.SHORTCUTS: ShortcutRow,
}


# =============================================================================
# ROW <-> MODEL CONVERSION
# =============================================================================

def _column_keys(row_cls: type) -> set[str]:
    return {attr.key for attr in inspect(row_cls).column_attrs}


def _as_utc(value: Any) -> Any:
    """
    Datetimes go in and come out as UTC.

    SQLite keeps only the wall-clock time and hands back naive values; a
    naive datetime is taken to be UTC already.
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _model_to_row(model: BaseModel, row_cls: type) -> Any:
    """Build a new row. A missing id is left for the database to assign."""
    data = {
        key: _as_utc(value)
        for key, value in model.model_dump(include=_column_keys(row_cls)).items()
    }
    if data.get("id") is None:
        data.pop("id", None)
    return row_cls(**data)


def _row_to_model(row: Any, model_cls: Type[ModelT]) -> ModelT:
    return model_cls.model_validate(
        {key: _as_utc(getattr(row, key)) for key in _column_keys(type(row))}
    )


def _copy_onto_row(model: BaseModel, row: Any, skip: set[str]) -> None:
    """Overwrite the mutable columns of an existing row."""
    data = model.model_dump(include=_column_keys(type(row)) - skip)
    for key, value in data.items():
        setattr(row, key, _as_utc(value))


def _event_to_row(event: AuditEvent) -> AuditEventRow:
    return AuditEventRow(
        event_id=str(event.event_id),
        timestamp=_as_utc(event.timestamp),
        event_type=event.event_type.value,
        severity=event.severity.value,
        owner_id=event.owner_id,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        correlation_id=str(event.correlation_id) if event.correlation_id else None,
        description=event.description,
        details_json=event.details_json(),
        error_code=event.error_code,
        error_message=event.error_message,
        is_user_action=event.is_user_action,
    )


def _row_to_event(row: AuditEventRow) -> AuditEvent:
    return AuditEvent(
        event_id=UUID(row.event_id),
        timestamp=_as_utc(row.timestamp),
        event_type=AuditEventType(row.event_type),
        severity=AuditSeverity(row.severity),
        owner_id=row.owner_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        correlation_id=UUID(row.correlation_id) if row.correlation_id else None,
        description=row.description,
        details=json.loads(row.details_json) if row.details_json else {},
        error_code=row.error_code,
        error_message=row.error_message,
        is_user_action=row.is_user_action,
    )


def _wrap_error(error: sa_exc.SQLAlchemyError) -> StorageError:
    if isinstance(error, sa_exc.IntegrityError):
        return IntegrityError(f"Constraint violated: {error.orig}")
    if isinstance(error, sa_exc.OperationalError):
        return StorageError(f"Database unavailable: {error.orig}")
    return StorageError(f"Storage operation failed: {error}")


# =============================================================================
# DATABASE
# =============================================================================

class SqlDatabase:
    """
    Low-level database wrapper.

    Owns the engine and the session factory, and provides retry logic
    for the initial connection. Shared by the ledger and audit stores.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def _create_engine(self) -> Engine:
        url = self._settings.url
        kwargs: dict[str, Any] = {"echo": self._settings.echo}

        if self._settings.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            # In-memory databases vanish with their connection; keep exactly one.
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        engine = create_engine(url, **kwargs)

        if self._settings.is_sqlite:
            busy_timeout_ms = int(self._settings.busy_timeout_seconds * 1000)

            @event.listens_for(engine, "connect")
            def _on_connect(dbapi_connection, connection_record):
                # Let SQLAlchemy emit BEGIN itself (see _on_begin).
                dbapi_connection.isolation_level = None
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
                cursor.close()

            @event.listens_for(engine, "begin")
            def _on_begin(connection):
                # Take the write lock up front so balance updates serialize.
                connection.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    def _open(self) -> None:
        engine = self._create_engine()
        try:
            Base.metadata.create_all(engine)
        except sa_exc.SQLAlchemyError as e:
            engine.dispose()
            raise ConnectionError(f"Failed to open database {self._settings.url}: {e}")
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def connect(self) -> None:
        """
        Open the engine and create missing tables.

        Retries with exponential backoff, because a locked or
        not-yet-mounted database file is usually a transient condition.
        """
        if self.is_connected:
            return

        for attempt in Retrying(
            stop=stop_after_attempt(self._settings.connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(ConnectionError),
            reraise=True,
        ):
            with attempt:
                self._open()

        logger.info("database_connected", url=self._settings.url)

    def session(self) -> Session:
        if self._session_factory is None:
            raise ConnectionError("Database is not connected, call connect() first")
        return self._session_factory()

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None


# =============================================================================
# LEDGER STORE
# =============================================================================

class SqlLedgerUnitOfWork(LedgerUnitOfWork):
    """
    Unit of work over one SQLAlchemy Session.

    Every write is flushed immediately so that database-assigned ids and
    constraint violations surface at the call site, not at commit.
    """

    def __init__(self, session: Session):
        self._session = session

    def _owned(self, row_cls: type, owner_id: str, row_id: Optional[int]) -> Any:
        if row_id is None:
            return None
        row = self._session.get(row_cls, row_id)
        if row is None or row.owner_id != owner_id:
            return None
        return row

    def _insert(self, model: ModelT, row_cls: type) -> ModelT:
        row = _model_to_row(model, row_cls)
        self._session.add(row)
        self._session.flush()
        return _row_to_model(row, type(model))

    def _update(self, model: ModelT, row_cls: type, skip: set[str]) -> ModelT:
        row = self._owned(row_cls, model.owner_id, model.id)
        if row is None:
            raise StorageError(f"{row_cls.__tablename__} row not found: {model.id}")
        _copy_onto_row(model, row, skip | {"id", "owner_id", "created_at"})
        self._session.flush()
        return _row_to_model(row, type(model))

    def _delete(self, row_cls: type, owner_id: str, row_id: int) -> bool:
        row = self._owned(row_cls, owner_id, row_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def _list(self, row_cls: type, model_cls: Type[ModelT], owner_id: str) -> list[ModelT]:
        rows = self._session.scalars(
            select(row_cls).where(row_cls.owner_id == owner_id).order_by(row_cls.id)
        )
        return [_row_to_model(row, model_cls) for row in rows]

    def _count(self, row_cls: type, *criteria) -> int:
        return self._session.scalar(
            select(func.count()).select_from(row_cls).where(*criteria)
        ) or 0

    # -- accounts -------------------------------------------------------------

    async def get_account(self, owner_id: str, account_id: int) -> Optional[Account]:
        row = self._owned(AccountRow, owner_id, account_id)
        return _row_to_model(row, Account) if row else None

    async def list_accounts(self, owner_id: str) -> list[Account]:
        return self._list(AccountRow, Account, owner_id)

    async def add_account(self, account: Account) -> Account:
        return self._insert(account, AccountRow)

    async def update_account(self, account: Account) -> Account:
        return self._update(account, AccountRow, skip={"balance"})

    async def delete_account(self, owner_id: str, account_id: int) -> bool:
        return self._delete(AccountRow, owner_id, account_id)

    async def apply_balance_delta(self, account_id: int, delta: int) -> None:
        self._session.execute(
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(balance=AccountRow.balance + delta)
            .execution_options(synchronize_session="fetch")
        )

    async def set_balance(self, account_id: int, balance: int) -> None:
        self._session.execute(
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(balance=balance)
            .execution_options(synchronize_session="fetch")
        )

    async def count_account_references(self, owner_id: str, account_id: int) -> dict[str, int]:
        return {
            "entries": self._count(EntryRow, EntryRow.account_id == account_id),
            "goals": self._count(
                GoalRow, GoalRow.owner_id == owner_id, GoalRow.account_id == account_id
            ),
            "recurring": self._count(
                RecurringRow,
                RecurringRow.owner_id == owner_id,
                or_(
                    RecurringRow.from_account_id == account_id,
                    RecurringRow.to_account_id == account_id,
                ),
            ),
            "shortcuts": self._count(
                ShortcutRow,
                ShortcutRow.owner_id == owner_id,
                or_(
                    ShortcutRow.from_account_id == account_id,
                    ShortcutRow.to_account_id == account_id,
                ),
            ),
        }

    # -- categories -----------------------------------------------------------

    async def get_category(self, owner_id: str, category_id: int) -> Optional[Category]:
        row = self._owned(CategoryRow, owner_id, category_id)
        return _row_to_model(row, Category) if row else None

    async def list_categories(self, owner_id: str) -> list[Category]:
        return self._list(CategoryRow, Category, owner_id)

    async def add_category(self, category: Category) -> Category:
        return self._insert(category, CategoryRow)

    async def update_category(self, category: Category) -> Category:
        return self._update(category, CategoryRow, skip=set())

    async def delete_category(self, owner_id: str, category_id: int) -> bool:
        return self._delete(CategoryRow, owner_id, category_id)

    async def count_category_references(self, owner_id: str, category_id: int) -> dict[str, int]:
        def by_owner(row_cls: type, column) -> int:
            return self._count(row_cls, row_cls.owner_id == owner_id, column == category_id)

        return {
            "transactions": by_owner(TransactionRow, TransactionRow.category_id),
            "budgets": by_owner(BudgetRow, BudgetRow.category_id),
            "recurring": by_owner(RecurringRow, RecurringRow.category_id),
            "accounts": by_owner(AccountRow, AccountRow.default_category_id),
            "shortcuts": by_owner(ShortcutRow, ShortcutRow.category_id),
        }

    # -- transactions and entries ---------------------------------------------

    async def get_transaction(self, owner_id: str, transaction_id: int) -> Optional[Transaction]:
        row = self._owned(TransactionRow, owner_id, transaction_id)
        return _row_to_model(row, Transaction) if row else None

    async def list_transactions(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> list[Transaction]:
        query = select(TransactionRow).where(TransactionRow.owner_id == owner_id)
        if date_from:
            query = query.where(TransactionRow.date >= date_from)
        if date_to:
            query = query.where(TransactionRow.date <= date_to)
        if category_id is not None:
            query = query.where(TransactionRow.category_id == category_id)

        # Newest first
        query = query.order_by(TransactionRow.date.desc(), TransactionRow.id.desc())
        return [_row_to_model(row, Transaction) for row in self._session.scalars(query)]

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        return self._insert(transaction, TransactionRow)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        return self._update(transaction, TransactionRow, skip=set())

    async def delete_transaction(self, owner_id: str, transaction_id: int) -> bool:
        return self._delete(TransactionRow, owner_id, transaction_id)

    async def add_entry(self, entry: Entry) -> Entry:
        return self._insert(entry, EntryRow)

    async def list_entries(self, transaction_id: int) -> list[Entry]:
        rows = self._session.scalars(
            select(EntryRow)
            .where(EntryRow.transaction_id == transaction_id)
            .order_by(EntryRow.id)
        )
        return [_row_to_model(row, Entry) for row in rows]

    async def list_owner_entries(self, owner_id: str) -> list[Entry]:
        rows = self._session.scalars(
            select(EntryRow)
            .join(TransactionRow, EntryRow.transaction_id == TransactionRow.id)
            .where(TransactionRow.owner_id == owner_id)
            .order_by(EntryRow.id)
        )
        return [_row_to_model(row, Entry) for row in rows]

    async def delete_entries(self, transaction_id: int) -> int:
        result = self._session.execute(
            delete(EntryRow)
            .where(EntryRow.transaction_id == transaction_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # -- budgets --------------------------------------------------------------

    async def get_budget(self, owner_id: str, budget_id: int) -> Optional[Budget]:
        row = self._owned(BudgetRow, owner_id, budget_id)
        return _row_to_model(row, Budget) if row else None

    async def find_budget_by_category(self, owner_id: str, category_id: int) -> Optional[Budget]:
        row = self._session.scalars(
            select(BudgetRow)
            .where(BudgetRow.owner_id == owner_id, BudgetRow.category_id == category_id)
            .order_by(BudgetRow.id)
        ).first()
        return _row_to_model(row, Budget) if row else None

    async def list_budgets(self, owner_id: str) -> list[Budget]:
        return self._list(BudgetRow, Budget, owner_id)

    async def add_budget(self, budget: Budget) -> Budget:
        return self._insert(budget, BudgetRow)

    async def update_budget(self, budget: Budget) -> Budget:
        return self._update(budget, BudgetRow, skip=set())

    async def delete_budget(self, owner_id: str, budget_id: int) -> bool:
        return self._delete(BudgetRow, owner_id, budget_id)

    # -- goals ----------------------------------------------------------------

    async def get_goal(self, owner_id: str, goal_id: int) -> Optional[Goal]:
        row = self._owned(GoalRow, owner_id, goal_id)
        return _row_to_model(row, Goal) if row else None

    async def find_goal_by_account(self, owner_id: str, account_id: int) -> Optional[Goal]:
        row = self._session.scalars(
            select(GoalRow)
            .where(GoalRow.owner_id == owner_id, GoalRow.account_id == account_id)
            .order_by(GoalRow.id)
        ).first()
        return _row_to_model(row, Goal) if row else None

    async def list_goals(self, owner_id: str) -> list[Goal]:
        return self._list(GoalRow, Goal, owner_id)

    async def add_goal(self, goal: Goal) -> Goal:
        return self._insert(goal, GoalRow)

    async def update_goal(self, goal: Goal) -> Goal:
        return self._update(goal, GoalRow, skip=set())

    async def delete_goal(self, owner_id: str, goal_id: int) -> bool:
        return self._delete(GoalRow, owner_id, goal_id)

    # -- recurring rules ------------------------------------------------------

    async def get_rule(self, owner_id: str, rule_id: int) -> Optional[RecurringRule]:
        row = self._owned(RecurringRow, owner_id, rule_id)
        return _row_to_model(row, RecurringRule) if row else None

    async def list_rules(self, owner_id: str) -> list[RecurringRule]:
        return self._list(RecurringRow, RecurringRule, owner_id)

    async def add_rule(self, rule: RecurringRule) -> RecurringRule:
        return self._insert(rule, RecurringRow)

    async def update_rule(self, rule: RecurringRule) -> RecurringRule:
        return self._update(rule, RecurringRow, skip=set())

    async def delete_rule(self, owner_id: str, rule_id: int) -> bool:
        return self._delete(RecurringRow, owner_id, rule_id)

    # -- shortcuts ------------------------------------------------------------

    async def get_shortcut(self, owner_id: str, shortcut_id: int) -> Optional[Shortcut]:
        row = self._owned(ShortcutRow, owner_id, shortcut_id)
        return _row_to_model(row, Shortcut) if row else None

    async def list_shortcuts(self, owner_id: str) -> list[Shortcut]:
        return self._list(ShortcutRow, Shortcut, owner_id)

    async def add_shortcut(self, shortcut: Shortcut) -> Shortcut:
        return self._insert(shortcut, ShortcutRow)

    async def update_shortcut(self, shortcut: Shortcut) -> Shortcut:
        return self._update(shortcut, ShortcutRow, skip=set())

    async def delete_shortcut(self, owner_id: str, shortcut_id: int) -> bool:
        return self._delete(ShortcutRow, owner_id, shortcut_id)

    # -- settings -------------------------------------------------------------

    async def get_user_settings(self, owner_id: str) -> Optional[UserSettings]:
        row = self._session.scalars(
            select(UserSettingsRow).where(UserSettingsRow.owner_id == owner_id)
        ).first()
        return _row_to_model(row, UserSettings) if row else None

    async def save_user_settings(self, settings: UserSettings) -> UserSettings:
        row = self._session.scalars(
            select(UserSettingsRow).where(UserSettingsRow.owner_id == settings.owner_id)
        ).first()
        if row is None:
            return self._insert(settings, UserSettingsRow)
        _copy_onto_row(settings, row, skip={"id", "owner_id", "created_at"})
        self._session.flush()
        return _row_to_model(row, UserSettings)

    # -- restore --------------------------------------------------------------

    async def purge(self, owner_id: str, table: LedgerTable) -> int:
        row_cls = TABLE_ROWS[table]
        if row_cls is EntryRow:
            owned_transactions = select(TransactionRow.id).where(
                TransactionRow.owner_id == owner_id
            )
            statement = delete(EntryRow).where(EntryRow.transaction_id.in_(owned_transactions))
        else:
            statement = delete(row_cls).where(row_cls.owner_id == owner_id)

        result = self._session.execute(
            statement.execution_options(synchronize_session="fetch")
        )
        return result.rowcount


class SqlLedgerStorage(LedgerStorageInterface):
    """
    SQLAlchemy implementation of the ledger store.

    Each atomic() block is one Session and one database transaction.
    """

    def __init__(self, database: Optional[SqlDatabase] = None):
        self._database = database or SqlDatabase()

    @property
    def database(self) -> SqlDatabase:
        return self._database

    async def connect(self) -> None:
        self._database.connect()

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[SqlLedgerUnitOfWork]:
        session = self._database.session()
        try:
            yield SqlLedgerUnitOfWork(session)
            session.commit()
        except sa_exc.SQLAlchemyError as e:
            session.rollback()
            raise _wrap_error(e) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    async def close(self) -> None:
        self._database.dispose()


# =============================================================================
# AUDIT STORE
# =============================================================================

class SqlAuditStorage(AuditStorageInterface):
    """
    SQLAlchemy implementation of audit log storage.

    Audit events are append-only and written in their own transaction,
    never inside a ledger unit.
    """

    def __init__(self, database: Optional[SqlDatabase] = None):
        self._database = database or SqlDatabase()

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            with self._database.session() as session:
                session.add(_event_to_row(event))
                session.commit()
            return True
        except (sa_exc.SQLAlchemyError, StorageError) as e:
            # Audit logging must not break the main flow
            logger.warning(
                "audit_write_failed",
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    def _query(self, query) -> list[AuditEvent]:
        try:
            with self._database.session() as session:
                return [_row_to_event(row) for row in session.scalars(query)]
        except sa_exc.SQLAlchemyError as e:
            raise _wrap_error(e) from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == str(correlation_id))
            .order_by(AuditEventRow.timestamp)
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: int,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .order_by(AuditEventRow.timestamp.desc())
            .limit(limit)
        )
