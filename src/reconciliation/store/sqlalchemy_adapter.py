"""SQLAlchemy payment store.

Persists payment records through the SQLAlchemy 2 async ORM. The database does
the arbitration between concurrent reconciliations:

- ``transaction_id`` is unique (NULLs allowed, for records without one)
- (``item_id``, ``session_id``) is unique; the unscoped session is ``""``
- amendments are a single ``UPDATE ... WHERE amount = 0``

An ``IntegrityError`` therefore means "someone else won", never a failure.
Connection-level errors surface as ``StoreUnavailable``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal

import structlog
from sqlalchemy import DateTime, Numeric, String, UniqueConstraint, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from reconciliation.errors import StoreUnavailable
from reconciliation.payment.record import PaymentRecord, PaymentStatus
from reconciliation.store.port import AmendOutcome, InsertOutcome, PaymentStore

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


class PaymentRecordRow(Base):
    __tablename__ = "payment_records"
    __table_args__ = (UniqueConstraint("item_id", "session_id", name="uq_payment_records_item_session"),)

    record_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    transaction_id: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    item_id: Mapped[str] = mapped_column(String(255), index=True)
    session_id: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(20))
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 6))
    currency: Mapped[str] = mapped_column(String(3))
    derived_asset_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    amended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _amount(value: Decimal | None) -> Decimal:
    amount = Decimal(value or 0)
    cents = amount.quantize(Decimal("0.01"))
    return cents if cents == amount else amount.normalize()


def _to_record(row: PaymentRecordRow) -> PaymentRecord:
    return PaymentRecord(
        record_id=row.record_id,
        transaction_id=row.transaction_id,
        item_id=row.item_id,
        session_id=row.session_id,
        status=PaymentStatus(row.status),
        amount=_amount(row.amount),
        currency=row.currency,
        derived_asset_url=row.derived_asset_url,
        created_at=_aware(row.created_at),
        amended_at=_aware(row.amended_at),
    )


def _to_row(record: PaymentRecord) -> PaymentRecordRow:
    return PaymentRecordRow(
        record_id=record.record_id,
        transaction_id=record.transaction_id,
        item_id=record.item_id,
        session_id=record.session_id,
        status=record.status.value,
        amount=record.amount,
        currency=record.currency,
        derived_asset_url=record.derived_asset_url,
        created_at=record.created_at,
        amended_at=record.amended_at,
    )


class SqlAlchemyPaymentStore(PaymentStore):
    def __init__(self, database_url: str | None = None, engine: AsyncEngine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("Either database_url or engine is required")
            options = {}
            if ":memory:" in database_url:
                options["poolclass"] = StaticPool
            engine = create_async_engine(database_url, **options)
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (DBAPIError, OSError) as exc:
            logger.error("Payment store unavailable", error=str(exc))
            raise StoreUnavailable(str(exc)) from exc

    async def find_by_transaction_id(self, transaction_id: str) -> PaymentRecord | None:
        async with self._session() as session:
            row = await session.scalar(
                select(PaymentRecordRow).where(PaymentRecordRow.transaction_id == transaction_id)
            )
            return _to_record(row) if row is not None else None

    async def find_by_item_session(self, item_id: str, session_id: str | None = None) -> PaymentRecord | None:
        query = select(PaymentRecordRow).where(PaymentRecordRow.item_id == item_id)
        if session_id is not None:
            query = query.where(PaymentRecordRow.session_id == session_id)
        query = query.order_by(PaymentRecordRow.created_at.desc()).limit(1)

        async with self._session() as session:
            row = await session.scalar(query)
            return _to_record(row) if row is not None else None

    async def insert_if_absent(self, record: PaymentRecord) -> InsertOutcome:
        async with self._session() as session:
            session.add(_to_row(record))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return InsertOutcome.ALREADY_EXISTS
            return InsertOutcome.COMMITTED

    async def amend_amount(
        self,
        record_id: str,
        new_amount: Decimal,
        new_transaction_id: str | None = None,
    ) -> AmendOutcome:
        values: dict = {"amount": new_amount, "amended_at": datetime.now(UTC)}
        if new_transaction_id:
            values["transaction_id"] = new_transaction_id

        stmt = (
            update(PaymentRecordRow)
            .where(PaymentRecordRow.record_id == record_id, PaymentRecordRow.amount == 0)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return AmendOutcome.ALREADY_AMENDED

            if result.rowcount == 1:
                return AmendOutcome.COMMITTED
            exists = await session.get(PaymentRecordRow, record_id)
            return AmendOutcome.ALREADY_AMENDED if exists is not None else AmendOutcome.NOT_FOUND
