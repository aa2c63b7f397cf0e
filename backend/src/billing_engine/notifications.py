from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Protocol

from .models import Invoice

logger = logging.getLogger(__name__)


class CustomerNotifier(Protocol):
    def notify_customer_success(self, invoice: Invoice) -> None: ...

    def notify_customer_failure(self, invoice: Invoice) -> None: ...


class InternalNotifier(Protocol):
    def notify_internal_failure(self, invoice: Invoice, reason: str) -> None: ...

    def notify_internal_permanent_fail(self, invoice: Invoice) -> None: ...


class LoggingCustomerNotifier:
    """Customer email stand-in that only records the send in the log."""

    def notify_customer_success(self, invoice: Invoice) -> None:
        logger.info(
            "sending billing success email to customer %s for invoice %s",
            invoice.customer_id,
            invoice.id,
        )

    def notify_customer_failure(self, invoice: Invoice) -> None:
        logger.info(
            "sending billing failure email to customer %s for invoice %s",
            invoice.customer_id,
            invoice.id,
        )


class LoggingInternalNotifier:
    def notify_internal_failure(self, invoice: Invoice, reason: str) -> None:
        logger.info("support channel: billing failed for invoice %s: %s", invoice.id, reason)

    def notify_internal_permanent_fail(self, invoice: Invoice) -> None:
        logger.info(
            "support channel: invoice %s marked as permanent fail, last status %s",
            invoice.id,
            invoice.status.value,
        )


class SlackWebhookNotifier:
    """Internal notifier posting to a Slack incoming webhook.

    Delivery is fire-and-forget: failures are logged and never raised to the
    billing loop.
    """

    def __init__(self, *, webhook_url: str, timeout_seconds: int = 10) -> None:
        stripped_url = webhook_url.strip()
        if not stripped_url:
            raise ValueError("webhook_url must not be empty")
        self._webhook_url = stripped_url
        self._timeout_seconds = timeout_seconds

    def notify_internal_failure(self, invoice: Invoice, reason: str) -> None:
        self._post(
            f"Billing failed for invoice {invoice.id} (customer {invoice.customer_id}). Error: {reason}"
        )

    def notify_internal_permanent_fail(self, invoice: Invoice) -> None:
        self._post(
            f"Invoice {invoice.id} (customer {invoice.customer_id}) is now marked as permanent fail, "
            f"reason: {invoice.status.value}"
        )

    def _post(self, text: str) -> None:
        request = urllib.request.Request(
            self._webhook_url,
            data=json.dumps({"text": text}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                response.read()
        except urllib.error.HTTPError as exc:
            logger.warning("slack webhook rejected message: HTTP %s %s", exc.code, exc.reason)
        except urllib.error.URLError as exc:
            logger.warning("slack webhook connection error: %s", exc.reason)
        except (socket.timeout, TimeoutError) as exc:
            logger.warning("slack webhook timed out: %s", exc)
