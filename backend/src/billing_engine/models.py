from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from pydantic import BaseModel, Field

CENTS = Decimal("0.01")


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED_INSUFFICIENT_BALANCE = "FAILED_INSUFFICIENT_BALANCE"
    FAILED_INVALID_CUSTOMER = "FAILED_INVALID_CUSTOMER"
    FAILED_INVALID_CURRENCY = "FAILED_INVALID_CURRENCY"
    FAILED_NETWORK_ERROR = "FAILED_NETWORK_ERROR"
    FAILED_UNKNOWN_ERROR = "FAILED_UNKNOWN_ERROR"
    PERMANENT_FAIL = "PERMANENT_FAIL"

    @classmethod
    def parse(cls, value: str) -> InvoiceStatus:
        normalized = value.strip().upper()
        try:
            return cls(normalized)
        except ValueError as exc:
            valid = ", ".join(item.value for item in cls)
            raise ValueError(f"invalid status value: {value}. Valid status values are: {valid}") from exc

    @property
    def is_failure(self) -> bool:
        return self.value.startswith("FAILED_")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.PERMANENT_FAIL})
FAILURE_STATUSES = frozenset(status for status in InvoiceStatus if status.is_failure)


class Currency(str, Enum):
    EUR = "EUR"
    USD = "USD"
    DKK = "DKK"
    SEK = "SEK"
    GBP = "GBP"


@dataclass(frozen=True)
class Money:
    value: Decimal
    currency: Currency

    def quantized(self) -> Decimal:
        return self.value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Customer:
    id: int
    currency: Currency


@dataclass(frozen=True)
class Invoice:
    id: int
    customer_id: int
    amount: Money
    status: InvoiceStatus

    def with_status(self, status: InvoiceStatus) -> Invoice:
        return replace(self, status=status)


class MoneyModel(BaseModel):
    value: Decimal
    currency: Currency


class InvoiceModel(BaseModel):
    id: int
    customer_id: int
    amount: MoneyModel
    status: InvoiceStatus

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> InvoiceModel:
        return cls(
            id=invoice.id,
            customer_id=invoice.customer_id,
            amount=MoneyModel(value=invoice.amount.quantized(), currency=invoice.amount.currency),
            status=invoice.status,
        )


class CustomerModel(BaseModel):
    id: int
    currency: Currency

    @classmethod
    def from_customer(cls, customer: Customer) -> CustomerModel:
        return cls(id=customer.id, currency=customer.currency)


class ChargeAttemptModel(BaseModel):
    invoice_id: int
    outcome: str | None
    resulting_status: InvoiceStatus | None
    provider_calls: int
    delays_seconds: list[float] = Field(default_factory=list)
    error: str | None = None


class BatchReportModel(BaseModel):
    status: InvoiceStatus
    fetched_count: int
    status_counts: dict[str, int] = Field(default_factory=dict)
    unchanged_count: int = 0
    errors: list[str] = Field(default_factory=list)


class SweepReportModel(BaseModel):
    status: InvoiceStatus
    marked_count: int
    invoice_ids: list[int] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class BillingRunReportModel(BaseModel):
    run_date: date
    billed_pending: bool
    batches: list[BatchReportModel] = Field(default_factory=list)
    sweeps: list[SweepReportModel] = Field(default_factory=list)


class StatusUpdateResponse(BaseModel):
    invoice_id: int
    status: InvoiceStatus
