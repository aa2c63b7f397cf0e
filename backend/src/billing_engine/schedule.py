from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from typing import Iterable, Mapping

from .models import FAILURE_STATUSES, InvoiceStatus


class Weekday(IntEnum):
    # Values match ``date.weekday()``.
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


_NOT_SWEEPABLE = frozenset({InvoiceStatus.PENDING, InvoiceStatus.PAID, InvoiceStatus.PERMANENT_FAIL})


def _ordered_unique(statuses: Iterable[InvoiceStatus]) -> tuple[InvoiceStatus, ...]:
    seen: set[InvoiceStatus] = set()
    ordered: list[InvoiceStatus] = []
    for status in statuses:
        if status in seen:
            continue
        seen.add(status)
        ordered.append(status)
    return tuple(ordered)


def is_first_day_of_month(value: date) -> bool:
    return value.day == 1


def is_last_day_of_month(value: date) -> bool:
    _, days_in_month = calendar.monthrange(value.year, value.month)
    return value.day == days_in_month


@dataclass(frozen=True)
class BillingSchedule:
    """Calendar policy deciding which invoice statuses a run processes.

    Pending invoices are billed on the first day of the month, failed ones
    are retried according to the weekday table, and on the last day of the
    month every still-failing invoice is swept into ``PERMANENT_FAIL``.
    """

    statuses_by_weekday: Mapping[Weekday, tuple[InvoiceStatus, ...]] = field(default_factory=dict)
    permanent_fail_statuses: frozenset[InvoiceStatus] = FAILURE_STATUSES

    def __post_init__(self) -> None:
        normalized = {
            Weekday(day): _ordered_unique(statuses) for day, statuses in self.statuses_by_weekday.items()
        }
        object.__setattr__(self, "statuses_by_weekday", normalized)
        sweep = frozenset(self.permanent_fail_statuses)
        invalid = sweep & _NOT_SWEEPABLE
        if invalid:
            names = ", ".join(sorted(status.value for status in invalid))
            raise ValueError(f"statuses cannot be swept to PERMANENT_FAIL: {names}")
        object.__setattr__(self, "permanent_fail_statuses", sweep)

    @classmethod
    def default(cls, *, sunday_retries_pending: bool = False) -> BillingSchedule:
        network = InvoiceStatus.FAILED_NETWORK_ERROR
        sunday = (network, InvoiceStatus.PENDING) if sunday_retries_pending else (network,)
        return cls(
            statuses_by_weekday={
                Weekday.MONDAY: (network,),
                Weekday.TUESDAY: (network,),
                Weekday.WEDNESDAY: (
                    network,
                    InvoiceStatus.FAILED_INVALID_CURRENCY,
                    InvoiceStatus.FAILED_INVALID_CUSTOMER,
                    InvoiceStatus.FAILED_UNKNOWN_ERROR,
                ),
                Weekday.THURSDAY: (network,),
                Weekday.FRIDAY: (network, InvoiceStatus.FAILED_INSUFFICIENT_BALANCE),
                Weekday.SATURDAY: (network,),
                Weekday.SUNDAY: sunday,
            },
        )

    def statuses_to_retry(self, weekday: Weekday | int) -> tuple[InvoiceStatus, ...]:
        return self.statuses_by_weekday.get(Weekday(weekday), ())

    def should_bill_pending_today(self, value: date) -> bool:
        return is_first_day_of_month(value)

    def should_sweep_permanent_failures_today(self, value: date) -> bool:
        return is_last_day_of_month(value)

    def permanent_failable_statuses(self) -> frozenset[InvoiceStatus]:
        return self.permanent_fail_statuses
