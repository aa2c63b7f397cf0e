from __future__ import annotations

import random
from decimal import Decimal

from .models import CENTS, Currency, InvoiceStatus, Money
from .store import InvoiceRepository


def seed_demo_data(
    store: InvoiceRepository,
    *,
    customers: int = 100,
    invoices_per_customer: int = 10,
    seed: int | None = None,
) -> int:
    """Create demo customers with one ``PENDING`` invoice each and the rest ``PAID``.

    Returns the number of invoices created.
    """
    rng = random.Random(seed)
    currencies = list(Currency)
    created = 0
    for _ in range(customers):
        customer = store.create_customer(rng.choice(currencies))
        for index in range(invoices_per_customer):
            amount = Decimal(str(rng.uniform(10.0, 500.0))).quantize(CENTS)
            store.create_invoice(
                customer,
                Money(value=amount, currency=customer.currency),
                InvoiceStatus.PENDING if index == 0 else InvoiceStatus.PAID,
            )
            created += 1
    return created
