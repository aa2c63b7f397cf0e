from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, Numeric, String, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .models import Currency, Customer, Invoice, InvoiceStatus, Money
from .store import CustomerNotFoundError, InvoiceNotFoundError


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class BillingStoreBase(DeclarativeBase):
    pass


class _CustomerRow(BillingStoreBase):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)


class _InvoiceRow(BillingStoreBase):
    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    customer_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer(), "sqlite"),
        ForeignKey("customers.id"),
        nullable=False,
        index=True,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _to_customer(row: _CustomerRow) -> Customer:
    return Customer(id=row.id, currency=Currency(row.currency))


def _to_invoice(row: _InvoiceRow) -> Invoice:
    return Invoice(
        id=row.id,
        customer_id=row.customer_id,
        amount=Money(value=Decimal(row.value), currency=Currency(row.currency)),
        status=InvoiceStatus(row.status),
    )


class SqlAlchemyBillingStore:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for INVOICE_STORE_BACKEND=postgres")
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True, connect_args=connect_args)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        # SQLite is used in tests. Production Postgres should rely on migrations.
        if database_url.startswith("sqlite"):
            BillingStoreBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.execute(delete(_InvoiceRow))
                session.execute(delete(_CustomerRow))

    def create_customer(self, currency: Currency) -> Customer:
        with self._session() as session:
            with session.begin():
                row = _CustomerRow(currency=Currency(currency).value)
                session.add(row)
                session.flush()
                return _to_customer(row)

    def create_invoice(
        self,
        customer: Customer,
        amount: Money,
        status: InvoiceStatus = InvoiceStatus.PENDING,
    ) -> Invoice:
        with self._session() as session:
            with session.begin():
                if session.get(_CustomerRow, customer.id) is None:
                    raise CustomerNotFoundError(customer.id)
                row = _InvoiceRow(
                    customer_id=customer.id,
                    value=Decimal(amount.value),
                    currency=Currency(amount.currency).value,
                    status=InvoiceStatus(status).value,
                    updated_at=_now_utc(),
                )
                session.add(row)
                session.flush()
                return _to_invoice(row)

    def fetch_customer(self, customer_id: int) -> Customer:
        with self._session() as session:
            row = session.get(_CustomerRow, customer_id)
            if row is None:
                raise CustomerNotFoundError(customer_id)
            return _to_customer(row)

    def fetch_customers(self) -> list[Customer]:
        with self._session() as session:
            rows = session.execute(select(_CustomerRow).order_by(_CustomerRow.id)).scalars().all()
            return [_to_customer(row) for row in rows]

    def fetch_invoice(self, invoice_id: int) -> Invoice:
        with self._session() as session:
            row = session.get(_InvoiceRow, invoice_id)
            if row is None:
                raise InvoiceNotFoundError(invoice_id)
            return _to_invoice(row)

    def fetch_invoices(self) -> list[Invoice]:
        with self._session() as session:
            rows = session.execute(select(_InvoiceRow).order_by(_InvoiceRow.id)).scalars().all()
            return [_to_invoice(row) for row in rows]

    def fetch_invoices_by_status(self, status: InvoiceStatus) -> list[Invoice]:
        with self._session() as session:
            rows = session.execute(
                select(_InvoiceRow)
                .where(_InvoiceRow.status == InvoiceStatus(status).value)
                .order_by(_InvoiceRow.id)
            ).scalars().all()
            return [_to_invoice(row) for row in rows]

    def update_invoice_status(self, invoice_id: int, status: InvoiceStatus) -> Invoice:
        with self._session() as session:
            with session.begin():
                row = session.get(_InvoiceRow, invoice_id)
                if row is None:
                    raise InvoiceNotFoundError(invoice_id)
                row.status = InvoiceStatus(status).value
                row.updated_at = _now_utc()
                return _to_invoice(row)
