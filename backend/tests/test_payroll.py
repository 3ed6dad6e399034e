"""Tests for active-time payroll calculation and payroll periods."""
from __future__ import annotations

import os
import sys
import uuid
from datetime import date
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


TMP = Path(__file__).resolve().parent / ".tmp_payroll"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["NEMT_DB_PATH"] = str(TMP / "nemt.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nemt.main import app  # noqa: E402
from nemt.services.payroll import quick_period_window, summarize_driver_time  # noqa: E402


client = TestClient(app)


def _tenant() -> dict:
    return {"X-Tenant-ID": f"payroll_{uuid.uuid4().hex[:10]}"}


def _completed(driver: str, pickup: str, dropoff: str, **extra) -> dict:
    row = {
        "trip_id": f"T-{pickup}",
        "driver_id": driver,
        "status": "completed",
        "actual_pickup_time": pickup,
        "actual_dropoff_time": dropoff,
    }
    row.update(extra)
    return row


def test_quick_period_ends_on_previous_wednesday():
    # Monday
    week = quick_period_window("week", today=date(2026, 10, 19))
    assert (week.start_date, week.end_date) == (date(2026, 10, 8), date(2026, 10, 14))
    # Wednesday itself rolls back a full week
    wed = quick_period_window("week", today=date(2026, 10, 21))
    assert wed.end_date == date(2026, 10, 14)
    # Thursday
    thu = quick_period_window("biweek", today=date(2026, 10, 22))
    assert (thu.start_date, thu.end_date) == (date(2026, 10, 8), date(2026, 10, 21))

    with pytest.raises(ValueError):
        quick_period_window("month", today=date(2026, 10, 22))


def test_summarize_driver_time_window_and_space_types():
    trips = [
        _completed("D1", "2026-03-01T00:00:00Z", "2026-03-01T01:00:00Z", space_type="wheelchair", distance_miles=8.0),
        _completed("D1", "2026-03-03T23:00:00Z", "2026-03-03T23:30:00Z"),
        # Ends after the inclusive end date.
        _completed("D1", "2026-03-03T23:50:00Z", "2026-03-04T00:10:00Z"),
        # Starts before the window.
        _completed("D2", "2026-02-28T23:59:00Z", "2026-03-01T00:30:00Z"),
        # Dropoff precedes pickup.
        _completed("D2", "2026-03-02T10:00:00Z", "2026-03-02T09:00:00Z"),
        {"trip_id": "open", "driver_id": "D2", "status": "in_progress", "actual_pickup_time": "2026-03-02T10:00:00Z"},
        _completed(None, "2026-03-02T10:00:00Z", "2026-03-02T11:00:00Z"),
    ]

    totals = summarize_driver_time(trips, date(2026, 3, 1), date(2026, 3, 3))

    assert list(totals) == ["D1"]
    d1 = totals["D1"]
    assert d1["trips"] == 2
    assert d1["minutes"] == pytest.approx(90.0)
    assert d1["wheelchair_minutes"] == pytest.approx(60.0)
    assert d1["ambulatory_minutes"] == pytest.approx(30.0)
    assert d1["miles"] == pytest.approx(8.0)


def _driver(headers: dict, name: str) -> str:
    response = client.post("/fleet/profiles", json={"role": "driver", "full_name": name}, headers=headers)
    return response.json()["profile_id"]


def _complete_trip(headers: dict, driver_id: str, pickup: str, dropoff: str, space_type: str | None = None) -> None:
    trip_id = client.post(
        "/trips",
        json={
            "pickup_address": "Home",
            "dropoff_address": "Clinic",
            "scheduled_pickup_time": pickup,
            "space_type": space_type,
        },
        headers=headers,
    ).json()["trip_id"]
    client.post(f"/trips/{trip_id}/assign", json={"driver_id": driver_id}, headers=headers)
    client.post(f"/trips/{trip_id}/status", json={"status": "in_progress", "actual_time": pickup}, headers=headers)
    done = client.post(f"/trips/{trip_id}/status", json={"status": "completed", "actual_time": dropoff}, headers=headers)
    assert done.status_code == 200, done.text


def test_payroll_calculation_uses_rates_and_defaults():
    headers = _tenant()
    rated = _driver(headers, "Rita Rated")
    default = _driver(headers, "Dan Default")
    rate = client.put(f"/payroll/rates/{rated}", json={"hourly_rate": 20.0}, headers=headers)
    assert rate.status_code == 200, rate.text

    _complete_trip(headers, rated, "2026-03-02T10:00:00Z", "2026-03-02T11:00:00Z", space_type="wheelchair")
    _complete_trip(headers, rated, "2026-03-03T23:00:00Z", "2026-03-03T23:30:00Z")
    _complete_trip(headers, default, "2026-03-02T08:00:00Z", "2026-03-02T08:40:00Z")
    _complete_trip(headers, default, "2026-03-05T08:00:00Z", "2026-03-05T09:00:00Z")

    response = client.post(
        "/payroll/calculate",
        json={"start_date": "2026-03-01", "end_date": "2026-03-03"},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    payload = response.json()
    entries = {entry["driver_id"]: entry for entry in payload["entries"]}

    assert entries[rated]["total_trips"] == 2
    assert entries[rated]["active_hours"] == 1.5
    assert entries[rated]["wheelchair_hours"] == 1.0
    assert entries[rated]["ambulatory_hours"] == 0.5
    assert entries[rated]["hourly_pay"] == 30.0
    assert entries[rated]["bonus_pay"] == 0.0
    assert entries[rated]["mileage_pay"] == 0.0
    assert entries[rated]["total_pay"] == 30.0

    assert entries[default]["total_trips"] == 1
    assert entries[default]["hourly_rate"] == 10.5
    assert entries[default]["total_pay"] == 7.0
    assert entries[default]["driver_name"] == "Dan Default"

    period = payload["period"]
    assert period["status"] == "draft"
    assert period["total_amount"] == 37.0

    detail = client.get(f"/payroll/periods/{period['period_id']}", headers=headers)
    assert detail.status_code == 200
    assert len(detail.json()["entries"]) == 2

    processed = client.post(f"/payroll/periods/{period['period_id']}/process", headers=headers)
    assert processed.status_code == 200
    assert processed.json()["status"] == "processed"
    assert processed.json()["processed_at"]
    again = client.post(f"/payroll/periods/{period['period_id']}/process", headers=headers)
    assert again.status_code == 400


def test_empty_period_does_not_create_a_payroll_period():
    headers = _tenant()
    response = client.post(
        "/payroll/calculate",
        json={"start_date": "2026-01-01", "end_date": "2026-01-07"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "No completed trips found for this period"
    assert client.get("/payroll/periods", headers=headers).json()["total"] == 0


def test_pay_rate_requires_known_driver():
    headers = _tenant()
    response = client.put("/payroll/rates/NOPE", json={"hourly_rate": 15.0}, headers=headers)
    assert response.status_code == 404


def test_summarize_driver_time_window_edges():
    trips = [
        # Pickup exactly at the start of the window.
        _completed("D1", "2026-03-01T00:00:00Z", "2026-03-01T00:20:00Z"),
        # Dropoff exactly at the day after the end date.
        _completed("D1", "2026-03-03T23:40:00Z", "2026-03-04T00:00:00Z"),
    ]

    totals = summarize_driver_time(trips, date(2026, 3, 1), date(2026, 3, 3))

    assert totals["D1"]["trips"] == 1
    assert totals["D1"]["minutes"] == pytest.approx(20.0)


def test_zero_hourly_rate_falls_back_to_default():
    headers = _tenant()
    driver_id = _driver(headers, "Zed Zero")
    assert client.put(f"/payroll/rates/{driver_id}", json={"hourly_rate": 0}, headers=headers).status_code == 200
    _complete_trip(headers, driver_id, "2026-03-02T08:00:00Z", "2026-03-02T10:00:00Z")

    response = client.post(
        "/payroll/calculate",
        json={"start_date": "2026-03-02", "end_date": "2026-03-02"},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    entry = response.json()["entries"][0]
    assert entry["hourly_rate"] == 10.5
    assert entry["total_pay"] == 21.0
