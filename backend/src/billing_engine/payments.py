from __future__ import annotations

import json
import logging
import random
import socket
import urllib.error
import urllib.request
from datetime import date
from threading import Lock
from typing import Callable, Protocol

from .models import Invoice
from .store import CustomerNotFoundError, InvoiceRepository

logger = logging.getLogger(__name__)

__all__ = [
    "CurrencyMismatchError",
    "CustomerNotFoundError",
    "HttpPaymentProvider",
    "InvoiceAlreadyChargedError",
    "NetworkError",
    "PaymentProvider",
    "StubPaymentProvider",
]


class NetworkError(Exception):
    """Raised when the payment provider could not be reached."""


class CurrencyMismatchError(Exception):
    """Raised when the invoice currency does not match the customer account."""

    def __init__(self, invoice_id: int, customer_id: int) -> None:
        super().__init__(f"currency of invoice {invoice_id} does not match the currency of customer {customer_id}")
        self.invoice_id = invoice_id
        self.customer_id = customer_id


class InvoiceAlreadyChargedError(Exception):
    """Raised by the provider when the invoice was charged before."""

    def __init__(self, invoice_id: int) -> None:
        super().__init__(f"invoice {invoice_id} has already been charged")
        self.invoice_id = invoice_id


class PaymentProvider(Protocol):
    def charge(self, invoice: Invoice) -> bool:
        """Charge the customer's account for the invoice amount.

        Returns ``True`` when the charge was accepted and ``False`` when the
        account balance did not allow it. Raises ``CustomerNotFoundError``,
        ``CurrencyMismatchError``, ``InvoiceAlreadyChargedError`` or
        ``NetworkError`` for the classified failures.
        """
        ...


class StubPaymentProvider:
    """Local provider that accepts or declines at random.

    Customer existence and currency are checked against the store so the
    classified failures can be exercised without a real provider.
    """

    def __init__(
        self,
        store: InvoiceRepository,
        *,
        seed: int | None = None,
        accept_probability: float = 0.5,
        network_failure_probability: float = 0.0,
    ) -> None:
        self._store = store
        self._random = random.Random(seed)
        self._lock = Lock()
        self._accept_probability = accept_probability
        self._network_failure_probability = network_failure_probability
        self._charged: set[int] = set()

    def charge(self, invoice: Invoice) -> bool:
        customer = self._store.fetch_customer(invoice.customer_id)
        if customer.currency != invoice.amount.currency:
            raise CurrencyMismatchError(invoice.id, customer.id)
        with self._lock:
            if invoice.id in self._charged:
                raise InvoiceAlreadyChargedError(invoice.id)
            if self._random.random() < self._network_failure_probability:
                raise NetworkError(f"stub network failure for invoice {invoice.id}")
            accepted = self._random.random() < self._accept_probability
            if accepted:
                self._charged.add(invoice.id)
        return accepted


class HttpPaymentProvider:
    """Payment provider client speaking JSON over HTTP."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: int = 30,
        today: Callable[[], date] = date.today,
    ) -> None:
        stripped_url = base_url.strip().rstrip("/")
        stripped_key = api_key.strip()
        if not stripped_url:
            raise ValueError("base_url must not be empty")
        if not stripped_key:
            raise ValueError("api_key must not be empty")
        self._base_url = stripped_url
        self._api_key = stripped_key
        self._timeout_seconds = timeout_seconds
        self._today = today

    def charge(self, invoice: Invoice) -> bool:
        body = {
            "invoice_id": invoice.id,
            "customer_id": invoice.customer_id,
            "amount": str(invoice.amount.quantized()),
            "currency": invoice.amount.currency.value,
        }
        request = urllib.request.Request(
            f"{self._base_url}/v1/charges",
            data=json.dumps(body).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
                # Retries within a day share a key; a later scheduled run is a new charge.
                "Idempotency-Key": f"invoice-{invoice.id}-{self._today().isoformat()}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8") or "{}")
        except urllib.error.HTTPError as exc:
            return self._accepted_from_http_error(invoice, exc)
        except urllib.error.URLError as exc:
            raise NetworkError(f"Connection error: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise NetworkError(f"Request timed out: {exc}") from exc
        return bool(payload.get("accepted", False))

    def _accepted_from_http_error(self, invoice: Invoice, exc: urllib.error.HTTPError) -> bool:
        if exc.code == 402:
            return False
        if exc.code == 404:
            raise CustomerNotFoundError(invoice.customer_id) from exc
        if exc.code == 409:
            raise InvoiceAlreadyChargedError(invoice.id) from exc
        if exc.code == 422:
            raise CurrencyMismatchError(invoice.id, invoice.customer_id) from exc
        if exc.code >= 500 or exc.code == 429:
            raise NetworkError(f"HTTP {exc.code}: {exc.reason}") from exc
        raise RuntimeError(f"unexpected payment provider response HTTP {exc.code}: {exc.reason}") from exc
