from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .batch import BatchCharger
from .charging import InvoiceCharger, Sleep
from .config import Settings
from .notifications import (
    CustomerNotifier,
    InternalNotifier,
    LoggingCustomerNotifier,
    LoggingInternalNotifier,
    SlackWebhookNotifier,
)
from .orchestrator import BillingOrchestrator
from .payments import HttpPaymentProvider, PaymentProvider, StubPaymentProvider
from .retry_policy import RetryPolicy
from .seed import seed_demo_data
from .store import InMemoryBillingStore, InvoiceRepository
from .store_backends import SqlAlchemyBillingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingServices:
    settings: Settings
    store: InvoiceRepository
    provider: PaymentProvider
    customer_notifier: CustomerNotifier
    internal_notifier: InternalNotifier
    orchestrator: BillingOrchestrator


def create_store(settings: Settings) -> InvoiceRepository:
    backend = settings.invoice_store_backend.strip().lower()
    if backend == "postgres":
        if settings.database_url.strip():
            return SqlAlchemyBillingStore(settings.database_url)
        logger.warning("INVOICE_STORE_BACKEND=postgres without DATABASE_URL, falling back to the in-memory store")
        return InMemoryBillingStore()
    if backend == "inmemory":
        return InMemoryBillingStore()
    raise RuntimeError(f"unsupported INVOICE_STORE_BACKEND: {settings.invoice_store_backend}")


def create_payment_provider(settings: Settings, store: InvoiceRepository) -> PaymentProvider:
    if settings.payment_provider == "http":
        if settings.payment_provider_base_url.strip() and settings.payment_provider_api_key.strip():
            return HttpPaymentProvider(
                base_url=settings.payment_provider_base_url,
                api_key=settings.payment_provider_api_key,
                timeout_seconds=settings.payment_provider_timeout_seconds,
            )
        logger.warning("PAYMENT_PROVIDER=http without base URL or API key, falling back to the stub provider")
    return StubPaymentProvider(store, seed=settings.payment_stub_seed)


def create_internal_notifier(settings: Settings) -> InternalNotifier:
    if settings.notifier_sender_type == "slack":
        if settings.slack_webhook_url.strip():
            return SlackWebhookNotifier(
                webhook_url=settings.slack_webhook_url,
                timeout_seconds=settings.slack_timeout_seconds,
            )
        logger.warning("NOTIFIER_SENDER_TYPE=slack without SLACK_WEBHOOK_URL, falling back to log notifications")
    return LoggingInternalNotifier()


def _retry_policy(settings: Settings) -> RetryPolicy:
    try:
        return settings.retry_policy()
    except ValueError as exc:
        logger.warning("invalid retry policy settings (%s), using the default policy", exc)
        return RetryPolicy()


def build_services(
    settings: Settings,
    *,
    store: InvoiceRepository | None = None,
    provider: PaymentProvider | None = None,
    customer_notifier: CustomerNotifier | None = None,
    internal_notifier: InternalNotifier | None = None,
    sleep: Sleep = asyncio.sleep,
) -> BillingServices:
    store = store if store is not None else create_store(settings)
    provider = provider if provider is not None else create_payment_provider(settings, store)
    customer_notifier = customer_notifier if customer_notifier is not None else LoggingCustomerNotifier()
    internal_notifier = internal_notifier if internal_notifier is not None else create_internal_notifier(settings)

    charger = InvoiceCharger(
        provider=provider,
        store=store,
        customer_notifier=customer_notifier,
        internal_notifier=internal_notifier,
        policy=_retry_policy(settings),
        sleep=sleep,
    )
    orchestrator = BillingOrchestrator(
        store=store,
        schedule=settings.billing_schedule(),
        batch_charger=BatchCharger(store=store, charger=charger, max_concurrency=max(settings.max_concurrency, 0)),
        charger=charger,
        internal_notifier=internal_notifier,
    )
    if settings.seed_demo_data and not store.fetch_invoices():
        seed_demo_data(store, seed=settings.payment_stub_seed)
    return BillingServices(
        settings=settings,
        store=store,
        provider=provider,
        customer_notifier=customer_notifier,
        internal_notifier=internal_notifier,
        orchestrator=orchestrator,
    )
