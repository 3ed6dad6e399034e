"""API tests for invoicing completed trips."""
from __future__ import annotations

import os
import sys
import uuid
from datetime import date, timedelta
from pathlib import Path

from fastapi.testclient import TestClient


TMP = Path(__file__).resolve().parent / ".tmp_billing"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["NEMT_DB_PATH"] = str(TMP / "nemt.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nemt.main import app  # noqa: E402


client = TestClient(app)


def _tenant() -> dict:
    return {"X-Tenant-ID": f"billing_{uuid.uuid4().hex[:10]}"}


def _completed_trip(headers: dict, fare: float = 45.0) -> str:
    driver = client.post("/fleet/profiles", json={"role": "driver", "full_name": "Bill Driver"}, headers=headers)
    trip = client.post(
        "/trips",
        json={
            "pickup_address": "5 Palm Ave",
            "dropoff_address": "City Hospital",
            "scheduled_pickup_time": "2026-03-02T13:00:00Z",
            "trip_fare": fare,
        },
        headers=headers,
    )
    trip_id = trip.json()["trip_id"]
    client.post(f"/trips/{trip_id}/assign", json={"driver_id": driver.json()["profile_id"]}, headers=headers)
    client.post(
        f"/trips/{trip_id}/status",
        json={"status": "in_progress", "actual_time": "2026-03-02T13:05:00Z"},
        headers=headers,
    )
    done = client.post(
        f"/trips/{trip_id}/status",
        json={"status": "completed", "actual_time": "2026-03-02T13:50:00Z"},
        headers=headers,
    )
    assert done.status_code == 200, done.text
    return trip_id


def test_only_completed_trips_can_be_invoiced():
    headers = _tenant()
    scheduled = client.post(
        "/trips",
        json={
            "pickup_address": "A",
            "dropoff_address": "B",
            "scheduled_pickup_time": "2026-03-02T13:00:00Z",
        },
        headers=headers,
    ).json()["trip_id"]

    rejected = client.post("/billing/invoices", json={"trip_id": scheduled}, headers=headers)
    assert rejected.status_code == 400
    assert "only completed trips" in rejected.json()["detail"]

    missing = client.post("/billing/invoices", json={"trip_id": "NOPE"}, headers=headers)
    assert missing.status_code == 404


def test_invoice_defaults_numbering_and_duplicate_guard():
    headers = _tenant()
    trip_id = _completed_trip(headers, fare=62.5)

    created = client.post("/billing/invoices", json={"trip_id": trip_id}, headers=headers)
    assert created.status_code == 200, created.text
    invoice = created.json()
    assert invoice["invoice_number"] == "INV-000001"
    assert invoice["amount"] == 62.5
    assert invoice["status"] == "pending"
    billing_date = date.fromisoformat(invoice["billing_date"])
    assert date.fromisoformat(invoice["due_date"]) == billing_date + timedelta(days=30)

    duplicate = client.post("/billing/invoices", json={"trip_id": trip_id}, headers=headers)
    assert duplicate.status_code == 400

    listed = client.get("/billing/invoices", headers=headers)
    assert listed.status_code == 200
    assert listed.json()["summary"] == {"total": 62.5, "pending": 62.5, "paid": 0.0, "overdue": 0.0}


def test_invoice_status_transitions():
    headers = _tenant()
    trip_id = _completed_trip(headers)
    invoice_id = client.post("/billing/invoices", json={"trip_id": trip_id}, headers=headers).json()["invoice_id"]

    paid = client.post(
        f"/billing/invoices/{invoice_id}/status",
        json={"status": "paid", "payment_method": "medicaid", "paid_date": "2026-03-20"},
        headers=headers,
    )
    assert paid.status_code == 200, paid.text
    assert paid.json()["paid_date"] == "2026-03-20"
    assert paid.json()["payment_method"] == "medicaid"

    reopened = client.post(f"/billing/invoices/{invoice_id}/status", json={"status": "overdue"}, headers=headers)
    assert reopened.status_code == 400

    summary = client.get("/billing/invoices", params={"status": "paid"}, headers=headers).json()["summary"]
    assert summary["paid"] == 45.0


def test_cancelled_invoice_allows_rebilling():
    headers = _tenant()
    trip_id = _completed_trip(headers)
    first = client.post("/billing/invoices", json={"trip_id": trip_id}, headers=headers).json()
    cancelled = client.post(
        f"/billing/invoices/{first['invoice_id']}/status",
        json={"status": "cancelled"},
        headers=headers,
    )
    assert cancelled.status_code == 200

    second = client.post("/billing/invoices", json={"trip_id": trip_id, "amount": 50.0}, headers=headers)
    assert second.status_code == 200
    assert second.json()["invoice_number"] == "INV-000002"
    assert second.json()["amount"] == 50.0


def test_overdue_sweep_flips_past_due_pending_invoices():
    headers = _tenant()
    old_trip = _completed_trip(headers)
    new_trip = _completed_trip(headers)
    old_billing = (date.today() - timedelta(days=45)).isoformat()
    old = client.post("/billing/invoices", json={"trip_id": old_trip, "billing_date": old_billing}, headers=headers)
    fresh = client.post("/billing/invoices", json={"trip_id": new_trip}, headers=headers)

    swept = client.post("/billing/invoices/mark-overdue", headers=headers)
    assert swept.status_code == 200
    assert swept.json()["updated"] == [old.json()["invoice_id"]]
    assert client.get(f"/billing/invoices/{fresh.json()['invoice_id']}", headers=headers).json()["status"] == "pending"

    overdue = client.get("/billing/invoices", params={"status": "overdue"}, headers=headers).json()
    assert [item["invoice_id"] for item in overdue["items"]] == [old.json()["invoice_id"]]
    assert overdue["summary"]["overdue"] == 45.0


def test_billing_routes_require_billing_role():
    headers = {**_tenant(), "X-Actor-Role": "dispatcher"}
    response = client.get("/billing/invoices", headers=headers)
    assert response.status_code == 403
