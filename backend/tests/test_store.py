"""Unit tests for SQLite persistence of NEMT records."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import os
import sys
from pathlib import Path

import pytest


TMP = Path(__file__).resolve().parent / ".tmp_store"
TMP.mkdir(parents=True, exist_ok=True)
for _suffix in ("", "-wal", "-shm"):
    (TMP / f"unit.db{_suffix}").unlink(missing_ok=True)
os.environ["NEMT_DB_PATH"] = str(TMP / "nemt.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nemt.models.fleet import ProfileRecord, TripRecord  # noqa: E402
from nemt.services.store import NemtStore  # noqa: E402


def _store() -> NemtStore:
    return NemtStore(db_path=str(TMP / "unit.db"))


def test_sequences_are_per_tenant_and_formatted():
    store = _store()
    first = store.generate_id("seq_a", "invoice", "INV")
    second = store.generate_id("seq_a", "invoice", "INV")
    other = store.generate_id("seq_b", "invoice", "INV")
    assert first == "INV-000001"
    assert second == "INV-000002"
    assert other == "INV-000001"


def test_sequences_are_unique_under_concurrency():
    store = _store()
    with ThreadPoolExecutor(max_workers=8) as pool:
        values = list(pool.map(lambda _: store.next_sequence("seq_threads", "trip"), range(50)))
    assert sorted(values) == list(range(1, 51))


def test_trip_upsert_filters_and_tenant_isolation():
    store = _store()
    tenant = "store_trips"
    for index, status in enumerate(["scheduled", "assigned", "completed"], start=1):
        record = TripRecord(
            trip_id=f"T{index}",
            pickup_address="A",
            dropoff_address="B",
            scheduled_pickup_time=f"2026-03-0{index}T09:00:00+00:00",
            status=status,
            driver_id="D1" if status != "scheduled" else None,
        )
        store.upsert_trip(tenant, record.model_dump(mode="json"))

    assert [row["trip_id"] for row in store.list_trips(tenant)] == ["T1", "T2", "T3"]
    assert [row["trip_id"] for row in store.list_trips(tenant, status="completed")] == ["T3"]
    assert [row["trip_id"] for row in store.list_trips(tenant, driver_id="D1")] == ["T2", "T3"]
    assert [row["trip_id"] for row in store.list_trips(tenant, trip_ids=["T3", "T1"])] == ["T1", "T3"]
    assert store.list_trips(tenant, trip_ids=[]) == []
    assert store.list_trips("store_trips_other") == []

    trip = store.get_trip(tenant, "T1")
    trip["status"] = "assigned"
    store.upsert_trip(tenant, trip)
    assert store.get_trip(tenant, "T1")["status"] == "assigned"
    assert len(store.list_trips(tenant)) == 3


def test_driver_location_updates_profile_and_history():
    store = _store()
    tenant = "store_location"
    driver = ProfileRecord(profile_id="D9", role="driver", full_name="Dana Driver")
    store.upsert_profile(tenant, driver.model_dump(mode="json"))

    profile = store.record_driver_location(tenant, "D9", 26.1, -80.1, {"speed": 12.0})
    assert profile["current_latitude"] == 26.1
    assert profile["last_location_update"]
    history = store.list_driver_locations(tenant, "D9")
    assert history[0]["speed"] == 12.0

    with pytest.raises(KeyError):
        store.record_driver_location(tenant, "missing", 1.0, 1.0)


def test_timeline_and_idempotency_round_trip():
    store = _store()
    tenant = "store_timeline"
    store.record_timeline_event(tenant, "T1", "trip_created", "tester", {"source": "unit"})
    store.record_timeline_event(tenant, "T1", "trip_assigned", "tester")
    events = store.list_timeline(tenant, "T1")
    assert {event["event_type"] for event in events} == {"trip_created", "trip_assigned"}
    assert store.list_timeline(tenant, "T2") == []

    assert store.get_idempotent(tenant, "create_trip:abc") is None
    store.set_idempotent(tenant, "create_trip:abc", {"trip_id": "T1"})
    assert store.get_idempotent(tenant, "create_trip:abc") == {"trip_id": "T1"}


def test_payroll_run_persists_period_and_entries_together():
    store = _store()
    tenant = "store_payroll"
    period = {"period_id": "PAY-1", "start_date": "2026-03-01", "end_date": "2026-03-07", "status": "draft"}
    entries = [
        {"entry_id": "E1", "period_id": "PAY-1", "driver_id": "D1", "total_pay": 10.5},
        {"entry_id": "E2", "period_id": "PAY-1", "driver_id": "D2", "total_pay": 21.0},
    ]
    store.save_payroll_run(tenant, period, entries)

    assert store.get_payroll_period(tenant, "PAY-1")["status"] == "draft"
    assert [row["entry_id"] for row in store.list_payroll_entries(tenant, "PAY-1")] == ["E1", "E2"]


def test_profiles_filter_by_multiple_roles():
    store = _store()
    tenant = "store_roles"
    for profile_id, role in [("D1", "driver"), ("S1", "dispatcher"), ("A1", "admin")]:
        record = ProfileRecord(profile_id=profile_id, role=role, full_name=f"{role} person")
        store.upsert_profile(tenant, record.model_dump(mode="json"))

    staff = store.list_profiles(tenant, role=["dispatcher", "admin"])
    assert sorted(row["profile_id"] for row in staff) == ["A1", "S1"]
    assert [row["profile_id"] for row in store.list_profiles(tenant, role="driver")] == ["D1"]
