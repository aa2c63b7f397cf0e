from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from .batch import BatchCharger, BatchReport
from .charging import ChargeAttempt, InvoiceCharger
from .models import BillingRunReportModel, InvoiceStatus, SweepReportModel
from .notifications import InternalNotifier
from .schedule import BillingSchedule
from .store import InvoiceRepository

logger = logging.getLogger(__name__)


class InvoiceNotChargeableError(ValueError):
    """Raised when an admin asks to charge an invoice that is already settled."""


@dataclass
class SweepReport:
    status: InvoiceStatus
    invoice_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_model(self) -> SweepReportModel:
        return SweepReportModel(
            status=self.status,
            marked_count=len(self.invoice_ids),
            invoice_ids=list(self.invoice_ids),
            errors=list(self.errors),
        )


@dataclass
class BillingRunReport:
    run_date: date
    billed_pending: bool
    batches: list[BatchReport] = field(default_factory=list)
    sweeps: list[SweepReport] = field(default_factory=list)

    def to_model(self) -> BillingRunReportModel:
        return BillingRunReportModel(
            run_date=self.run_date,
            billed_pending=self.billed_pending,
            batches=[batch.to_model() for batch in self.batches],
            sweeps=[sweep.to_model() for sweep in self.sweeps],
        )


class BillingOrchestrator:
    """Entry point for a billing run and for the individual admin operations."""

    def __init__(
        self,
        *,
        store: InvoiceRepository,
        schedule: BillingSchedule,
        batch_charger: BatchCharger,
        charger: InvoiceCharger,
        internal_notifier: InternalNotifier,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._schedule = schedule
        self._batch_charger = batch_charger
        self._charger = charger
        self._internal_notifier = internal_notifier
        self._today = today

    async def run_today(self) -> BillingRunReport:
        return await self.run_for_date(self._today())

    async def run_for_date(self, run_date: date) -> BillingRunReport:
        billed_pending = self._schedule.should_bill_pending_today(run_date)
        report = BillingRunReport(run_date=run_date, billed_pending=billed_pending)
        logger.info("billing run started for %s", run_date.isoformat())

        if billed_pending:
            logger.info("monthly billing of pending invoices initiated")
            groups: tuple[InvoiceStatus, ...] = (InvoiceStatus.PENDING,)
        else:
            groups = self._schedule.statuses_to_retry(run_date.weekday())
            logger.info(
                "retrying statuses on %s: %s",
                run_date.isoformat(),
                ", ".join(status.value for status in groups) or "none",
            )

        # Groups run one after another; invoices inside a group run concurrently.
        # An invoice is charged at most once per run, even if it fails into a later group.
        attempted: set[int] = set()
        for status in groups:
            batch = await self._batch_charger.charge_all(status, exclude=attempted)
            attempted.update(attempt.invoice_id for attempt in batch.attempts)
            report.batches.append(batch)

        if self._schedule.should_sweep_permanent_failures_today(run_date):
            logger.info("end of month sweep of failed invoices initiated")
            for status in sorted(self._schedule.permanent_failable_statuses(), key=lambda item: item.value):
                report.sweeps.append(await asyncio.to_thread(self.sweep_permanent_failures, status))

        logger.info("billing run finished for %s", run_date.isoformat())
        return report

    async def charge_all(self, status: InvoiceStatus) -> BatchReport:
        if status.is_terminal:
            raise ValueError(f"invalid status value: {status.value}. {status.value} invoices cannot be charged")
        return await self._batch_charger.charge_all(status)

    async def charge_one(self, invoice_id: int) -> ChargeAttempt:
        invoice = await asyncio.to_thread(self._store.fetch_invoice, invoice_id)
        if invoice.status.is_terminal:
            raise InvoiceNotChargeableError(f"invoice {invoice_id} is {invoice.status.value} and cannot be charged")
        return await self._charger.charge_invoice(invoice)

    def sweep_permanent_failures(self, status: InvoiceStatus) -> SweepReport:
        if status not in self._schedule.permanent_failable_statuses():
            raise ValueError(f"invalid status value: {status.value}. cannot be marked as permanent fail")

        report = SweepReport(status=status)
        try:
            invoices = self._store.fetch_invoices_by_status(status)
        except Exception as exc:
            logger.error("could not fetch %s invoices, skipping sweep: %s", status.value, exc)
            report.errors.append(f"fetch failed: {exc}")
            return report

        for invoice in invoices:
            try:
                self._store.update_invoice_status(invoice.id, InvoiceStatus.PERMANENT_FAIL)
            except Exception as exc:
                logger.warning("could not mark invoice %s as permanent fail: %s", invoice.id, exc)
                report.errors.append(f"invoice {invoice.id}: {exc}")
                continue
            report.invoice_ids.append(invoice.id)
            # The notice carries the status the invoice failed with.
            try:
                self._internal_notifier.notify_internal_permanent_fail(invoice)
            except Exception as exc:
                logger.warning("permanent fail notification for invoice %s failed: %s", invoice.id, exc)
                report.errors.append(f"invoice {invoice.id}: notification failed: {exc}")
        logger.info("%s %s invoices marked as permanent fail", len(report.invoice_ids), status.value)
        return report
