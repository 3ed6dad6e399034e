"""Tests for bearer-token tenants, role grants, and driver self-service limits."""
from __future__ import annotations

import os
import sys
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


TMP = Path(__file__).resolve().parent / ".tmp_auth"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["NEMT_DB_PATH"] = str(TMP / "nemt.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nemt.core.auth import TokenGrant, parse_tenant_tokens, require_roles  # noqa: E402
from nemt.core.config import get_settings  # noqa: E402
from nemt.main import app  # noqa: E402


client = TestClient(app)


def test_parse_tenant_tokens_with_optional_role_and_actor():
    grants = parse_tenant_tokens(
        " tok-a:acme , tok-b:acme:billing,broken,tok-c:acme:pilot,tok-d:acme:driver:DRV-000001"
    )
    assert grants == {
        "tok-a": TokenGrant(tenant_id="acme"),
        "tok-b": TokenGrant(tenant_id="acme", role="billing"),
        "tok-d": TokenGrant(tenant_id="acme", role="driver", actor="DRV-000001"),
    }


def test_require_roles_rejects_unknown_roles():
    with pytest.raises(ValueError):
        require_roles()
    with pytest.raises(ValueError):
        require_roles("captain")


@pytest.fixture()
def tokens(monkeypatch):
    tenant = f"auth_{uuid.uuid4().hex[:10]}"
    monkeypatch.setattr(get_settings(), "auth_enabled", True)
    monkeypatch.setattr(get_settings(), "tenant_tokens", f"ops-token:{tenant},books-token:{tenant}:billing")
    return tenant


def test_bearer_token_resolves_tenant(tokens):
    assert client.get("/trips").status_code == 401
    assert client.get("/trips", headers={"Authorization": "Bearer nope"}).status_code == 403
    mismatch = client.get("/trips", headers={"Authorization": "Bearer ops-token", "X-Tenant-ID": "other"})
    assert mismatch.status_code == 403

    created = client.post(
        "/trips",
        json={"pickup_address": "A", "dropoff_address": "B", "scheduled_pickup_time": "2026-03-02T10:00:00Z"},
        headers={"Authorization": "Bearer ops-token"},
    )
    assert created.status_code == 200
    listed = client.get("/trips", headers={"Authorization": "Bearer ops-token", "X-Tenant-ID": tokens})
    assert listed.json()["total"] == 1


def test_role_pinned_by_token_cannot_be_escalated(tokens):
    books = {"Authorization": "Bearer books-token"}
    assert client.get("/billing/invoices", headers=books).status_code == 200
    assert client.get("/billing/invoices", headers={**books, "X-Actor-Role": "admin"}).status_code == 403
    forbidden = client.post(
        "/trips",
        json={"pickup_address": "A", "dropoff_address": "B", "scheduled_pickup_time": "2026-03-02T10:00:00Z"},
        headers=books,
    )
    assert forbidden.status_code == 403


def test_unknown_role_header_is_rejected():
    response = client.get("/trips", headers={"X-Tenant-ID": "auth_roles", "X-Actor-Role": "pilot"})
    assert response.status_code == 400


def test_drivers_act_only_on_their_own_location_and_trips():
    headers = {"X-Tenant-ID": f"auth_{uuid.uuid4().hex[:10]}"}
    mine = client.post("/fleet/profiles", json={"role": "driver", "full_name": "Own Driver"}, headers=headers).json()
    other = client.post("/fleet/profiles", json={"role": "driver", "full_name": "Other Driver"}, headers=headers).json()
    trip_id = client.post(
        "/trips",
        json={"pickup_address": "A", "dropoff_address": "B", "scheduled_pickup_time": "2026-03-02T10:00:00Z"},
        headers=headers,
    ).json()["trip_id"]
    client.post(f"/trips/{trip_id}/assign", json={"driver_id": mine["profile_id"]}, headers=headers)

    as_driver = {**headers, "X-Actor-Role": "driver", "X-Actor": mine["profile_id"]}
    own = client.post(
        f"/fleet/drivers/{mine['profile_id']}/location",
        json={"latitude": 25.7, "longitude": -80.2},
        headers=as_driver,
    )
    assert own.status_code == 200
    foreign = client.post(
        f"/fleet/drivers/{other['profile_id']}/location",
        json={"latitude": 25.7, "longitude": -80.2},
        headers=as_driver,
    )
    assert foreign.status_code == 403

    started = client.post(f"/trips/{trip_id}/status", json={"status": "in_progress"}, headers=as_driver)
    assert started.status_code == 200
    as_other = {**headers, "X-Actor-Role": "driver", "X-Actor": other["profile_id"]}
    blocked = client.post(f"/trips/{trip_id}/status", json={"status": "completed"}, headers=as_other)
    assert blocked.status_code == 403
    assert client.post("/trips/NOPE/status", json={"status": "completed"}, headers=as_driver).status_code == 404
    assert client.post(f"/trips/{trip_id}/unassign", headers=as_driver).status_code == 403


def test_driver_token_is_bound_to_its_driver(tokens, monkeypatch):
    ops = {"Authorization": "Bearer ops-token"}
    mine = client.post("/fleet/profiles", json={"role": "driver", "full_name": "Bound Driver"}, headers=ops).json()
    other = client.post("/fleet/profiles", json={"role": "driver", "full_name": "Spoofed Driver"}, headers=ops).json()
    monkeypatch.setattr(
        get_settings(),
        "tenant_tokens",
        f"ops-token:{tokens},drv-token:{tokens}:driver:{mine['profile_id']},loose-token:{tokens}:driver",
    )
    location = {"latitude": 25.7, "longitude": -80.2}

    driver = {"Authorization": "Bearer drv-token"}
    own = client.post(f"/fleet/drivers/{mine['profile_id']}/location", json=location, headers=driver)
    assert own.status_code == 200

    spoofed = client.post(
        f"/fleet/drivers/{other['profile_id']}/location",
        json=location,
        headers={**driver, "X-Actor": other["profile_id"]},
    )
    assert spoofed.status_code == 403
    assert spoofed.json()["detail"] == "Token actor mismatch"
    assert client.post(
        f"/fleet/drivers/{other['profile_id']}/location", json=location, headers=driver
    ).status_code == 403

    unbound = client.post(
        f"/fleet/drivers/{other['profile_id']}/location",
        json=location,
        headers={"Authorization": "Bearer loose-token", "X-Actor": other["profile_id"]},
    )
    assert unbound.status_code == 403
