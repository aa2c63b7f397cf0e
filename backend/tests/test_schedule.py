from __future__ import annotations

from datetime import date, timedelta

import pytest

from billing_engine.models import FAILURE_STATUSES, InvoiceStatus
from billing_engine.schedule import BillingSchedule, Weekday

NETWORK = InvoiceStatus.FAILED_NETWORK_ERROR


def test_default_schedule_statuses_per_weekday() -> None:
    schedule = BillingSchedule.default()
    assert schedule.statuses_to_retry(Weekday.MONDAY) == (NETWORK,)
    assert schedule.statuses_to_retry(Weekday.TUESDAY) == (NETWORK,)
    assert schedule.statuses_to_retry(Weekday.WEDNESDAY) == (
        NETWORK,
        InvoiceStatus.FAILED_INVALID_CURRENCY,
        InvoiceStatus.FAILED_INVALID_CUSTOMER,
        InvoiceStatus.FAILED_UNKNOWN_ERROR,
    )
    assert schedule.statuses_to_retry(Weekday.THURSDAY) == (NETWORK,)
    assert schedule.statuses_to_retry(Weekday.FRIDAY) == (NETWORK, InvoiceStatus.FAILED_INSUFFICIENT_BALANCE)
    assert schedule.statuses_to_retry(Weekday.SATURDAY) == (NETWORK,)
    assert schedule.statuses_to_retry(Weekday.SUNDAY) == (NETWORK,)


def test_sunday_pending_retry_is_opt_in() -> None:
    schedule = BillingSchedule.default(sunday_retries_pending=True)
    assert schedule.statuses_to_retry(Weekday.SUNDAY) == (NETWORK, InvoiceStatus.PENDING)


def test_unconfigured_weekday_returns_empty_tuple() -> None:
    schedule = BillingSchedule(statuses_by_weekday={Weekday.MONDAY: (NETWORK,)})
    for day in Weekday:
        expected = (NETWORK,) if day is Weekday.MONDAY else ()
        assert schedule.statuses_to_retry(day) == expected


def test_statuses_to_retry_accepts_date_weekday_ints_and_keeps_order() -> None:
    schedule = BillingSchedule(
        statuses_by_weekday={
            Weekday.FRIDAY: (InvoiceStatus.FAILED_UNKNOWN_ERROR, NETWORK, InvoiceStatus.FAILED_UNKNOWN_ERROR),
        }
    )
    friday = date(2026, 10, 16)
    assert schedule.statuses_to_retry(friday.weekday()) == (InvoiceStatus.FAILED_UNKNOWN_ERROR, NETWORK)


@pytest.mark.parametrize(
    ("year", "month", "last_day"),
    [(2026, 2, 28), (2028, 2, 29), (2026, 4, 30), (2026, 10, 31)],
)
def test_first_and_last_day_of_month(year: int, month: int, last_day: int) -> None:
    schedule = BillingSchedule.default()
    for day in range(1, last_day + 1):
        current = date(year, month, day)
        assert schedule.should_bill_pending_today(current) is (day == 1)
        assert schedule.should_sweep_permanent_failures_today(current) is (day == last_day)
    assert not schedule.should_sweep_permanent_failures_today(date(year, month, last_day) - timedelta(days=1))


def test_permanent_failable_statuses_are_the_failure_statuses() -> None:
    statuses = BillingSchedule.default().permanent_failable_statuses()
    assert statuses == FAILURE_STATUSES
    assert len(statuses) == 5
    assert InvoiceStatus.PENDING not in statuses
    assert InvoiceStatus.PAID not in statuses
    assert InvoiceStatus.PERMANENT_FAIL not in statuses


@pytest.mark.parametrize("status", [InvoiceStatus.PENDING, InvoiceStatus.PAID, InvoiceStatus.PERMANENT_FAIL])
def test_schedule_rejects_non_failure_sweep_statuses(status: InvoiceStatus) -> None:
    with pytest.raises(ValueError):
        BillingSchedule(permanent_fail_statuses=frozenset({NETWORK, status}))
