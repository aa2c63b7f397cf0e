from __future__ import annotations

from fastapi.testclient import TestClient

from billing_engine.main import create_app
from billing_engine.models import InvoiceStatus
from billing_engine.payments import CustomerNotFoundError

client = TestClient(create_app())


def test_health() -> None:
    response = client.get("/rest/health")

    assert response.status_code == 200
    assert response.json() == "ok"


def test_list_and_fetch_invoices(api_harness) -> None:
    first = api_harness.add_invoice()
    second = api_harness.add_invoice(InvoiceStatus.PAID, amount="10")

    listed = client.get("/rest/v1/invoices")
    fetched = client.get(f"/rest/v1/invoices/{second.id}")

    assert listed.status_code == 200
    assert [item["id"] for item in listed.json()] == [first.id, second.id]
    assert fetched.status_code == 200
    assert fetched.json() == {
        "id": second.id,
        "customer_id": second.customer_id,
        "amount": {"value": "10.00", "currency": "EUR"},
        "status": "PAID",
    }


def test_list_invoices_by_status_is_case_insensitive(api_harness) -> None:
    api_harness.add_invoice()
    failed = api_harness.add_invoice(InvoiceStatus.FAILED_NETWORK_ERROR)

    response = client.get("/rest/v1/invoices/status/failed_network_error")

    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [failed.id]


def test_unknown_status_is_rejected(api_harness) -> None:
    response = client.get("/rest/v1/invoices/status/REFUNDED")

    assert response.status_code == 400
    assert "REFUNDED" in response.json()["detail"]


def test_invoice_lookup_errors(api_harness) -> None:
    missing = client.get("/rest/v1/invoices/404")
    invalid = client.get("/rest/v1/invoices/0")

    assert missing.status_code == 404
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "Invalid ID format"


def test_customers(api_harness) -> None:
    invoice = api_harness.add_invoice()

    listed = client.get("/rest/v1/customers")
    fetched = client.get(f"/rest/v1/customers/{invoice.customer_id}")
    missing = client.get("/rest/v1/customers/999")

    assert [item["id"] for item in listed.json()] == [invoice.customer_id]
    assert fetched.json() == {"id": invoice.customer_id, "currency": "EUR"}
    assert missing.status_code == 404


def test_auto_billing_for_first_of_month(api_harness) -> None:
    pending = api_harness.add_invoice()
    declined = api_harness.add_invoice()
    api_harness.provider.script(declined.id, False)

    response = client.post("/rest/v1/admin/auto-billing", params={"run_date": "2026-10-01"})

    assert response.status_code == 200
    body = response.json()
    assert body["run_date"] == "2026-10-01"
    assert body["billed_pending"] is True
    assert body["batches"] == [
        {
            "status": "PENDING",
            "fetched_count": 2,
            "status_counts": {"FAILED_INSUFFICIENT_BALANCE": 1, "PAID": 1},
            "unchanged_count": 0,
            "errors": [],
        }
    ]
    assert body["sweeps"] == []
    assert api_harness.status_of(pending.id) is InvoiceStatus.PAID


def test_auto_billing_sweeps_on_last_day_of_month(api_harness) -> None:
    failed = api_harness.add_invoice(InvoiceStatus.FAILED_INVALID_CUSTOMER)

    response = client.post("/rest/v1/admin/auto-billing", params={"run_date": "2026-10-31"})

    assert response.status_code == 200
    sweeps = {sweep["status"]: sweep for sweep in response.json()["sweeps"]}
    assert sweeps["FAILED_INVALID_CUSTOMER"]["invoice_ids"] == [failed.id]
    assert api_harness.status_of(failed.id) is InvoiceStatus.PERMANENT_FAIL


def test_bill_by_status(api_harness) -> None:
    failed = api_harness.add_invoice(InvoiceStatus.FAILED_INVALID_CURRENCY)
    api_harness.add_invoice()

    response = client.post("/rest/v1/admin/bill-by-status/FAILED_INVALID_CURRENCY")

    assert response.status_code == 200
    assert response.json()["fetched_count"] == 1
    assert api_harness.provider.calls == [failed.id]


def test_bill_by_status_rejects_settled_statuses(api_harness) -> None:
    paid = client.post("/rest/v1/admin/bill-by-status/PAID")
    permanent = client.post("/rest/v1/admin/bill-by-status/permanent_fail")

    assert paid.status_code == 400
    assert permanent.status_code == 400
    assert api_harness.provider.calls == []


def test_bill_invoice(api_harness) -> None:
    invoice = api_harness.add_invoice(InvoiceStatus.FAILED_INVALID_CUSTOMER)
    api_harness.provider.script(invoice.id, CustomerNotFoundError(invoice.customer_id))

    response = client.post(f"/rest/v1/admin/bill-invoice/{invoice.id}")

    assert response.status_code == 200
    assert response.json() == {
        "invoice_id": invoice.id,
        "outcome": "customer_not_found",
        "resulting_status": "FAILED_INVALID_CUSTOMER",
        "provider_calls": 1,
        "delays_seconds": [],
        "error": None,
    }
    assert api_harness.internal_notifier.failures == [(invoice.id, "Customer not found")]


def test_bill_invoice_errors(api_harness) -> None:
    paid = api_harness.add_invoice(InvoiceStatus.PAID)

    assert client.post("/rest/v1/admin/bill-invoice/404").status_code == 404
    assert client.post("/rest/v1/admin/bill-invoice/-1").status_code == 400
    conflict = client.post(f"/rest/v1/admin/bill-invoice/{paid.id}")
    assert conflict.status_code == 409
    assert api_harness.provider.calls == []


def test_mark_permanent_fail(api_harness) -> None:
    failed = api_harness.add_invoice(InvoiceStatus.FAILED_UNKNOWN_ERROR)
    pending = api_harness.add_invoice()

    response = client.post("/rest/v1/admin/mark-permanent-fail/FAILED_UNKNOWN_ERROR")

    assert response.status_code == 200
    assert response.json() == {
        "status": "FAILED_UNKNOWN_ERROR",
        "marked_count": 1,
        "invoice_ids": [failed.id],
        "errors": [],
    }
    assert api_harness.status_of(pending.id) is InvoiceStatus.PENDING
    assert api_harness.internal_notifier.permanent_fails == [(failed.id, InvoiceStatus.FAILED_UNKNOWN_ERROR)]


def test_mark_permanent_fail_rejects_non_failure_statuses(api_harness) -> None:
    already = client.post("/rest/v1/admin/mark-permanent-fail/PERMANENT_FAIL")
    pending = client.post("/rest/v1/admin/mark-permanent-fail/PENDING")
    paid = client.post("/rest/v1/admin/mark-permanent-fail/PAID")

    assert already.status_code == 400
    assert already.json()["detail"] == "Invoices already marked as permanent fail."
    assert pending.status_code == 400
    assert paid.status_code == 400


def test_manual_status_update(api_harness) -> None:
    invoice = api_harness.add_invoice(InvoiceStatus.PERMANENT_FAIL)

    response = client.post(f"/rest/v1/admin/invoices/{invoice.id}/status/pending")
    missing = client.post("/rest/v1/admin/invoices/404/status/PAID")
    invalid = client.post("/rest/v1/admin/invoices/0/status/PAID")

    assert response.status_code == 200
    assert response.json() == {"invoice_id": invoice.id, "status": "PENDING"}
    assert api_harness.status_of(invoice.id) is InvoiceStatus.PENDING
    assert missing.status_code == 404
    assert invalid.json()["detail"] == "Invalid invoice ID format"
