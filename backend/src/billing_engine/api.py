from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, HTTPException, Query

from .config import get_settings
from .models import (
    BatchReportModel,
    BillingRunReportModel,
    ChargeAttemptModel,
    CustomerModel,
    InvoiceModel,
    InvoiceStatus,
    StatusUpdateResponse,
    SweepReportModel,
)
from .orchestrator import InvoiceNotChargeableError
from .services import BillingServices, build_services
from .store import CustomerNotFoundError, InvoiceNotFoundError

logger = logging.getLogger(__name__)

_settings = get_settings()
router = APIRouter(prefix=_settings.api_prefix, tags=["billing"])
health_router = APIRouter(tags=["health"])
_services: BillingServices | None = None


def get_services() -> BillingServices:
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


def configure_services(services: BillingServices | None) -> None:
    global _services
    _services = services


def _parse_status(raw_status: str) -> InvoiceStatus:
    try:
        return InvoiceStatus.parse(raw_status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _require_positive_id(value: int, *, label: str = "ID") -> int:
    if value <= 0:
        raise HTTPException(status_code=400, detail=f"Invalid {label} format")
    return value


@health_router.get("/rest/health")
def health() -> str:
    return "ok"


@router.get("/invoices", response_model=list[InvoiceModel])
def list_invoices() -> list[InvoiceModel]:
    return [InvoiceModel.from_invoice(invoice) for invoice in get_services().store.fetch_invoices()]


@router.get("/invoices/status/{status_value}", response_model=list[InvoiceModel])
def list_invoices_by_status(status_value: str) -> list[InvoiceModel]:
    status = _parse_status(status_value)
    return [InvoiceModel.from_invoice(invoice) for invoice in get_services().store.fetch_invoices_by_status(status)]


@router.get("/invoices/{invoice_id}", response_model=InvoiceModel)
def get_invoice(invoice_id: int) -> InvoiceModel:
    _require_positive_id(invoice_id)
    try:
        return InvoiceModel.from_invoice(get_services().store.fetch_invoice(invoice_id))
    except InvoiceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}") from exc


@router.get("/customers", response_model=list[CustomerModel])
def list_customers() -> list[CustomerModel]:
    return [CustomerModel.from_customer(customer) for customer in get_services().store.fetch_customers()]


@router.get("/customers/{customer_id}", response_model=CustomerModel)
def get_customer(customer_id: int) -> CustomerModel:
    _require_positive_id(customer_id)
    try:
        return CustomerModel.from_customer(get_services().store.fetch_customer(customer_id))
    except CustomerNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"customer not found: {customer_id}") from exc


@router.post("/admin/auto-billing", response_model=BillingRunReportModel)
async def auto_billing(run_date: date | None = Query(default=None)) -> BillingRunReportModel:
    orchestrator = get_services().orchestrator
    report = await (orchestrator.run_for_date(run_date) if run_date is not None else orchestrator.run_today())
    return report.to_model()


@router.post("/admin/bill-by-status/{status_value}", response_model=BatchReportModel)
async def bill_by_status(status_value: str) -> BatchReportModel:
    status = _parse_status(status_value)
    try:
        report = await get_services().orchestrator.charge_all(status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return report.to_model()


@router.post("/admin/bill-invoice/{invoice_id}", response_model=ChargeAttemptModel)
async def bill_invoice(invoice_id: int) -> ChargeAttemptModel:
    _require_positive_id(invoice_id)
    try:
        attempt = await get_services().orchestrator.charge_one(invoice_id)
    except InvoiceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}") from exc
    except InvoiceNotChargeableError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return attempt.to_model()


@router.post("/admin/mark-permanent-fail/{status_value}", response_model=SweepReportModel)
def mark_permanent_fail(status_value: str) -> SweepReportModel:
    status = _parse_status(status_value)
    if status is InvoiceStatus.PERMANENT_FAIL:
        raise HTTPException(status_code=400, detail="Invoices already marked as permanent fail.")
    try:
        report = get_services().orchestrator.sweep_permanent_failures(status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return report.to_model()


@router.post("/admin/invoices/{invoice_id}/status/{status_value}", response_model=StatusUpdateResponse)
def update_invoice_status(invoice_id: int, status_value: str) -> StatusUpdateResponse:
    _require_positive_id(invoice_id, label="invoice ID")
    status = _parse_status(status_value)
    try:
        invoice = get_services().store.update_invoice_status(invoice_id, status)
    except InvoiceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}") from exc
    logger.info("invoice %s status manually set to %s", invoice_id, status.value)
    return StatusUpdateResponse(invoice_id=invoice.id, status=invoice.status)
