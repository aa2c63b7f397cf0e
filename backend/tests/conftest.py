from __future__ import annotations

from decimal import Decimal
from threading import Lock
from typing import Callable

import pytest

from billing_engine.batch import BatchCharger
from billing_engine.charging import InvoiceCharger
from billing_engine.config import Settings
from billing_engine.models import Currency, Invoice, InvoiceStatus, Money
from billing_engine.orchestrator import BillingOrchestrator
from billing_engine.retry_policy import RetryPolicy
from billing_engine.schedule import BillingSchedule
from billing_engine.services import build_services
from billing_engine.store import InMemoryBillingStore

ProviderResult = bool | Exception


class ScriptedProvider:
    """Payment provider fake replaying scripted results per invoice id."""

    def __init__(self, default: ProviderResult | Callable[[Invoice], ProviderResult] = True) -> None:
        self._lock = Lock()
        self._default = default
        self._scripts: dict[int, list[ProviderResult]] = {}
        self.calls: list[int] = []

    def script(self, invoice_id: int, *results: ProviderResult) -> None:
        self._scripts[invoice_id] = list(results)

    def charge(self, invoice: Invoice) -> bool:
        with self._lock:
            self.calls.append(invoice.id)
            script = self._scripts.get(invoice.id)
            if script:
                result = script.pop(0) if len(script) > 1 else script[0]
            elif callable(self._default) and not isinstance(self._default, bool):
                result = self._default(invoice)
            else:
                result = self._default
        if isinstance(result, Exception):
            raise result
        return result

    def calls_for(self, invoice_id: int) -> int:
        return self.calls.count(invoice_id)


class RecordingCustomerNotifier:
    def __init__(self) -> None:
        self.successes: list[int] = []
        self.failures: list[int] = []

    def notify_customer_success(self, invoice: Invoice) -> None:
        self.successes.append(invoice.id)

    def notify_customer_failure(self, invoice: Invoice) -> None:
        self.failures.append(invoice.id)


class RecordingInternalNotifier:
    def __init__(self) -> None:
        self.failures: list[tuple[int, str]] = []
        self.permanent_fails: list[tuple[int, InvoiceStatus]] = []

    def notify_internal_failure(self, invoice: Invoice, reason: str) -> None:
        self.failures.append((invoice.id, reason))

    def notify_internal_permanent_fail(self, invoice: Invoice) -> None:
        self.permanent_fails.append((invoice.id, invoice.status))


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingStore(InMemoryBillingStore):
    def __init__(self) -> None:
        super().__init__()
        self.status_updates: list[tuple[int, InvoiceStatus]] = []

    def update_invoice_status(self, invoice_id: int, status: InvoiceStatus) -> Invoice:
        updated = super().update_invoice_status(invoice_id, status)
        self.status_updates.append((invoice_id, status))
        return updated


class BillingHarness:
    def __init__(self, *, policy: RetryPolicy | None = None, schedule: BillingSchedule | None = None) -> None:
        self.store = RecordingStore()
        self.provider = ScriptedProvider()
        self.customer_notifier = RecordingCustomerNotifier()
        self.internal_notifier = RecordingInternalNotifier()
        self.sleep = RecordingSleep()
        self.policy = policy or RetryPolicy()
        self.schedule = schedule or BillingSchedule.default()
        self.charger = InvoiceCharger(
            provider=self.provider,
            store=self.store,
            customer_notifier=self.customer_notifier,
            internal_notifier=self.internal_notifier,
            policy=self.policy,
            sleep=self.sleep,
        )
        self.batch_charger = BatchCharger(store=self.store, charger=self.charger)
        self.orchestrator = BillingOrchestrator(
            store=self.store,
            schedule=self.schedule,
            batch_charger=self.batch_charger,
            charger=self.charger,
            internal_notifier=self.internal_notifier,
        )

    def add_invoice(
        self,
        status: InvoiceStatus = InvoiceStatus.PENDING,
        *,
        currency: Currency = Currency.EUR,
        amount: str = "125.50",
    ) -> Invoice:
        customer = self.store.create_customer(currency)
        return self.store.create_invoice(customer, Money(value=Decimal(amount), currency=currency), status)

    def status_of(self, invoice_id: int) -> InvoiceStatus:
        return self.store.fetch_invoice(invoice_id).status


@pytest.fixture
def harness() -> BillingHarness:
    return BillingHarness()


@pytest.fixture
def make_harness() -> Callable[..., BillingHarness]:
    return BillingHarness


@pytest.fixture
def api_harness(harness: BillingHarness, monkeypatch: pytest.MonkeyPatch) -> BillingHarness:
    from billing_engine import api as api_module

    services = build_services(
        Settings(),
        store=harness.store,
        provider=harness.provider,
        customer_notifier=harness.customer_notifier,
        internal_notifier=harness.internal_notifier,
        sleep=harness.sleep,
    )
    monkeypatch.setattr(api_module, "_services", services)
    return harness
