from __future__ import annotations

from decimal import Decimal
from itertools import count
from threading import Lock
from typing import Protocol

from .models import Currency, Customer, Invoice, InvoiceStatus, Money


class InvoiceNotFoundError(KeyError):
    """Raised when an operation references an invoice id that does not exist."""


class CustomerNotFoundError(KeyError):
    """Raised when an operation references a customer id that does not exist."""


class InvoiceRepository(Protocol):
    def reset(self) -> None: ...

    def create_customer(self, currency: Currency) -> Customer: ...

    def create_invoice(self, customer: Customer, amount: Money, status: InvoiceStatus = InvoiceStatus.PENDING) -> Invoice: ...

    def fetch_customer(self, customer_id: int) -> Customer: ...

    def fetch_customers(self) -> list[Customer]: ...

    def fetch_invoice(self, invoice_id: int) -> Invoice: ...

    def fetch_invoices(self) -> list[Invoice]: ...

    def fetch_invoices_by_status(self, status: InvoiceStatus) -> list[Invoice]: ...

    def update_invoice_status(self, invoice_id: int, status: InvoiceStatus) -> Invoice: ...


class InMemoryBillingStore:
    """Thread-safe in-memory store with incremental customer and invoice ids."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._customer_ids = count(1)
        self._invoice_ids = count(1)
        self._customers: dict[int, Customer] = {}
        self._invoices: dict[int, Invoice] = {}

    def reset(self) -> None:
        with self._lock:
            self._customer_ids = count(1)
            self._invoice_ids = count(1)
            self._customers.clear()
            self._invoices.clear()

    def create_customer(self, currency: Currency) -> Customer:
        with self._lock:
            customer = Customer(id=next(self._customer_ids), currency=Currency(currency))
            self._customers[customer.id] = customer
            return customer

    def create_invoice(
        self,
        customer: Customer,
        amount: Money,
        status: InvoiceStatus = InvoiceStatus.PENDING,
    ) -> Invoice:
        with self._lock:
            if customer.id not in self._customers:
                raise CustomerNotFoundError(customer.id)
            invoice = Invoice(
                id=next(self._invoice_ids),
                customer_id=customer.id,
                amount=Money(value=Decimal(amount.value), currency=Currency(amount.currency)),
                status=InvoiceStatus(status),
            )
            self._invoices[invoice.id] = invoice
            return invoice

    def fetch_customer(self, customer_id: int) -> Customer:
        with self._lock:
            customer = self._customers.get(customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            return customer

    def fetch_customers(self) -> list[Customer]:
        with self._lock:
            return sorted(self._customers.values(), key=lambda item: item.id)

    def fetch_invoice(self, invoice_id: int) -> Invoice:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            return invoice

    def fetch_invoices(self) -> list[Invoice]:
        with self._lock:
            return sorted(self._invoices.values(), key=lambda item: item.id)

    def fetch_invoices_by_status(self, status: InvoiceStatus) -> list[Invoice]:
        with self._lock:
            return [
                invoice
                for invoice in sorted(self._invoices.values(), key=lambda item: item.id)
                if invoice.status == status
            ]

    def update_invoice_status(self, invoice_id: int, status: InvoiceStatus) -> Invoice:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            updated = invoice.with_status(InvoiceStatus(status))
            self._invoices[invoice_id] = updated
            return updated
