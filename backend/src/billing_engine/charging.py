"""Per-invoice charge loop.

The payment provider reports its result either as a boolean or as one of the
classified exceptions from :mod:`billing_engine.payments`. The loop converts
that into a :class:`ChargeOutcome` and looks the outcome up in
:data:`TRANSITIONS`, which decides the new invoice status and who gets told.
Only network errors are retried in place; every other outcome ends the loop.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from .models import ChargeAttemptModel, Invoice, InvoiceStatus
from .notifications import CustomerNotifier, InternalNotifier
from .payments import (
    CurrencyMismatchError,
    CustomerNotFoundError,
    InvoiceAlreadyChargedError,
    NetworkError,
    PaymentProvider,
)
from .retry_policy import RetryPolicy
from .store import InvoiceRepository

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class ChargeOutcome(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    CURRENCY_MISMATCH = "currency_mismatch"
    ALREADY_CHARGED = "already_charged"
    NETWORK_ERROR = "network_error"
    UNKNOWN_ERROR = "unknown_error"


class Notification(str, Enum):
    NONE = "none"
    CUSTOMER_SUCCESS = "customer_success"
    CUSTOMER_FAILURE = "customer_failure"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Transition:
    status: InvoiceStatus | None
    notification: Notification
    reason: str | None = None


TRANSITIONS: dict[ChargeOutcome, Transition] = {
    ChargeOutcome.ACCEPTED: Transition(InvoiceStatus.PAID, Notification.CUSTOMER_SUCCESS),
    ChargeOutcome.DECLINED: Transition(InvoiceStatus.FAILED_INSUFFICIENT_BALANCE, Notification.CUSTOMER_FAILURE),
    ChargeOutcome.CUSTOMER_NOT_FOUND: Transition(
        InvoiceStatus.FAILED_INVALID_CUSTOMER, Notification.INTERNAL, "Customer not found"
    ),
    ChargeOutcome.CURRENCY_MISMATCH: Transition(
        InvoiceStatus.FAILED_INVALID_CURRENCY, Notification.INTERNAL, "Currency mismatch"
    ),
    ChargeOutcome.ALREADY_CHARGED: Transition(None, Notification.NONE),
    # Only applied once the retry budget is spent.
    ChargeOutcome.NETWORK_ERROR: Transition(
        InvoiceStatus.FAILED_NETWORK_ERROR, Notification.INTERNAL, "Network error, retries exhausted"
    ),
    ChargeOutcome.UNKNOWN_ERROR: Transition(
        InvoiceStatus.FAILED_UNKNOWN_ERROR, Notification.INTERNAL, "Unknown error"
    ),
}

_unmapped = set(ChargeOutcome) - set(TRANSITIONS)
if _unmapped:
    raise RuntimeError(f"charge outcomes without a transition: {sorted(item.value for item in _unmapped)}")


def classify_charge_error(exc: Exception) -> ChargeOutcome:
    if isinstance(exc, NetworkError):
        return ChargeOutcome.NETWORK_ERROR
    if isinstance(exc, CustomerNotFoundError):
        return ChargeOutcome.CUSTOMER_NOT_FOUND
    if isinstance(exc, CurrencyMismatchError):
        return ChargeOutcome.CURRENCY_MISMATCH
    if isinstance(exc, InvoiceAlreadyChargedError):
        return ChargeOutcome.ALREADY_CHARGED
    return ChargeOutcome.UNKNOWN_ERROR


@dataclass
class ChargeAttempt:
    """In-flight state of one invoice's charge loop. Never persisted."""

    invoice_id: int
    provider_calls: int = 0
    delays: list[float] = field(default_factory=list)
    outcome: ChargeOutcome | None = None
    resulting_status: InvoiceStatus | None = None
    error: str | None = None

    @property
    def status_changed(self) -> bool:
        return self.resulting_status is not None

    def to_model(self) -> ChargeAttemptModel:
        return ChargeAttemptModel(
            invoice_id=self.invoice_id,
            outcome=self.outcome.value if self.outcome is not None else None,
            resulting_status=self.resulting_status,
            provider_calls=self.provider_calls,
            delays_seconds=list(self.delays),
            error=self.error,
        )


class InvoiceCharger:
    def __init__(
        self,
        *,
        provider: PaymentProvider,
        store: InvoiceRepository,
        customer_notifier: CustomerNotifier,
        internal_notifier: InternalNotifier,
        policy: RetryPolicy,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._store = store
        self._customer_notifier = customer_notifier
        self._internal_notifier = internal_notifier
        self._policy = policy
        self._sleep = sleep

    async def charge_invoice(self, invoice: Invoice) -> ChargeAttempt:
        """Charge one invoice, retrying network failures with backoff.

        Always returns; store and notifier failures are logged and kept on
        the returned attempt. Cancellation propagates.
        """
        result = ChargeAttempt(invoice_id=invoice.id)
        attempt = 0
        try:
            while self._policy.should_retry(attempt):
                outcome, detail = await self._call_provider(invoice)
                result.provider_calls += 1
                if outcome is ChargeOutcome.NETWORK_ERROR and self._policy.should_retry(attempt + 1):
                    delay = self._policy.backoff_delay(attempt)
                    logger.warning(
                        "network error charging invoice %s on attempt %s, retrying in %.1fs",
                        invoice.id,
                        attempt,
                        delay,
                    )
                    result.delays.append(delay)
                    await self._sleep(delay)
                    attempt += 1
                    continue
                if outcome is ChargeOutcome.NETWORK_ERROR:
                    logger.info("max retries reached for invoice %s, marking as failed", invoice.id)
                await self._apply(invoice, outcome, detail, result)
                break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("charge loop for invoice %s aborted: %s", invoice.id, exc, exc_info=True)
            result.error = str(exc) or exc.__class__.__name__
        return result

    async def _call_provider(self, invoice: Invoice) -> tuple[ChargeOutcome, str | None]:
        try:
            accepted = await asyncio.to_thread(self._provider.charge, invoice)
        except Exception as exc:
            outcome = classify_charge_error(exc)
            if outcome is ChargeOutcome.UNKNOWN_ERROR:
                logger.error("unexpected error charging invoice %s", invoice.id, exc_info=exc)
            return outcome, str(exc) or exc.__class__.__name__
        return (ChargeOutcome.ACCEPTED if accepted else ChargeOutcome.DECLINED), None

    async def _apply(
        self,
        invoice: Invoice,
        outcome: ChargeOutcome,
        detail: str | None,
        result: ChargeAttempt,
    ) -> None:
        transition = TRANSITIONS[outcome]
        result.outcome = outcome
        if transition.status is None:
            logger.info("invoice %s has already been charged", invoice.id)
            return

        updated = await asyncio.to_thread(self._store.update_invoice_status, invoice.id, transition.status)
        result.resulting_status = transition.status
        logger.info("invoice %s charged with outcome %s, status %s", invoice.id, outcome.value, transition.status.value)

        try:
            await asyncio.to_thread(self._notify, updated, transition, detail)
        except Exception as exc:
            logger.warning("notification for invoice %s failed: %s", invoice.id, exc)
            result.error = f"notification failed: {exc}"

    def _notify(self, invoice: Invoice, transition: Transition, detail: str | None) -> None:
        if transition.notification is Notification.CUSTOMER_SUCCESS:
            self._customer_notifier.notify_customer_success(invoice)
        elif transition.notification is Notification.CUSTOMER_FAILURE:
            self._customer_notifier.notify_customer_failure(invoice)
        elif transition.notification is Notification.INTERNAL:
            reason = transition.reason or "Charge failed"
            if detail and transition.status is InvoiceStatus.FAILED_UNKNOWN_ERROR:
                reason = f"{reason}: {detail}"
            self._internal_notifier.notify_internal_failure(invoice, reason)
