from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Collection

from .charging import ChargeAttempt, InvoiceCharger
from .models import BatchReportModel, Invoice, InvoiceStatus
from .store import InvoiceRepository

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    status: InvoiceStatus
    attempts: list[ChargeAttempt] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def fetched_count(self) -> int:
        return len(self.attempts)

    @property
    def unchanged_count(self) -> int:
        return sum(1 for attempt in self.attempts if not attempt.status_changed)

    def status_counts(self) -> dict[str, int]:
        counts = Counter(
            attempt.resulting_status.value for attempt in self.attempts if attempt.resulting_status is not None
        )
        return dict(sorted(counts.items()))

    def to_model(self) -> BatchReportModel:
        errors = list(self.errors)
        errors.extend(
            f"invoice {attempt.invoice_id}: {attempt.error}" for attempt in self.attempts if attempt.error
        )
        return BatchReportModel(
            status=self.status,
            fetched_count=self.fetched_count,
            status_counts=self.status_counts(),
            unchanged_count=self.unchanged_count,
            errors=errors,
        )


class BatchCharger:
    """Charges every invoice of one status concurrently and waits for all of them."""

    def __init__(
        self,
        *,
        store: InvoiceRepository,
        charger: InvoiceCharger,
        max_concurrency: int = 0,
    ) -> None:
        if max_concurrency < 0:
            raise ValueError("max_concurrency must be greater than or equal to 0")
        self._store = store
        self._charger = charger
        self._max_concurrency = max_concurrency

    async def charge_all(self, status: InvoiceStatus, *, exclude: Collection[int] = ()) -> BatchReport:
        """Charge a point-in-time snapshot of the invoices in `status`.

        Invoices whose id is in ``exclude`` are left out of the batch.
        """
        report = BatchReport(status=status)
        try:
            invoices = await asyncio.to_thread(self._store.fetch_invoices_by_status, status)
        except Exception as exc:
            logger.error("could not fetch %s invoices, skipping batch: %s", status.value, exc)
            report.errors.append(f"fetch failed: {exc}")
            return report
        if exclude:
            invoices = [invoice for invoice in invoices if invoice.id not in exclude]

        logger.info("start processing %s %s invoices", len(invoices), status.value)
        if not invoices:
            return report

        semaphore = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None
        tasks = [asyncio.create_task(self._charge_guarded(invoice, semaphore)) for invoice in invoices]
        # The tasks never raise, so gather cannot short-circuit on one invoice.
        report.attempts = list(await asyncio.gather(*tasks))
        logger.info("finished processing %s invoices: %s", status.value, report.status_counts())
        return report

    async def _charge_guarded(self, invoice: Invoice, semaphore: asyncio.Semaphore | None) -> ChargeAttempt:
        try:
            if semaphore is None:
                return await self._charger.charge_invoice(invoice)
            async with semaphore:
                return await self._charger.charge_invoice(invoice)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("charge task for invoice %s escaped with %s", invoice.id, exc, exc_info=exc)
            return ChargeAttempt(invoice_id=invoice.id, error=str(exc) or exc.__class__.__name__)
