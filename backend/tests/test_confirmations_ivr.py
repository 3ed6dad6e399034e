"""Tests for outbound confirmation calls and the IVR keypress callback."""
from __future__ import annotations

import os
import sys
import uuid
from pathlib import Path
from urllib.parse import parse_qs, urlparse
from xml.etree import ElementTree

import httpx
import pytest
from fastapi.testclient import TestClient


TMP = Path(__file__).resolve().parent / ".tmp_confirmations"
TMP.mkdir(parents=True, exist_ok=True)
os.environ["NEMT_DB_PATH"] = str(TMP / "nemt.db")

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nemt.core.config import get_settings  # noqa: E402
from nemt.main import app  # noqa: E402
from nemt.services.telephony import telephony_client  # noqa: E402


client = TestClient(app)


@pytest.fixture()
def carrier(monkeypatch):
    """Configure telephony and capture outbound call requests."""
    settings = get_settings()
    monkeypatch.setattr(settings, "twilio_account_sid", "AC123")
    monkeypatch.setattr(settings, "twilio_auth_token", "secret-token")
    monkeypatch.setattr(settings, "twilio_phone_number", "+15550001111")
    monkeypatch.setattr(settings, "public_base_url", "https://nemt.example.com")
    monkeypatch.setattr(settings, "company_timezone", "UTC")
    state = {"requests": [], "status_code": 201}

    def _handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        if state["status_code"] >= 400:
            return httpx.Response(state["status_code"], text="carrier exploded")
        return httpx.Response(state["status_code"], json={"sid": "CA-test-1", "status": "queued"})

    monkeypatch.setattr(telephony_client, "transport", httpx.MockTransport(_handler))
    return state


def _tenant() -> str:
    return f"ivr_{uuid.uuid4().hex[:10]}"


def _trip_with_patient(tenant: str, phone: str | None = "+15557654321", language: str = "spanish") -> str:
    headers = {"X-Tenant-ID": tenant}
    patient = client.post(
        "/fleet/patients",
        json={"full_name": "Maria Lopez", "phone": phone, "preferred_language": language},
        headers=headers,
    )
    assert patient.status_code == 200, patient.text
    trip = client.post(
        "/trips",
        json={
            "patient_id": patient.json()["patient_id"],
            "pickup_address": "12 Ocean Dr",
            "dropoff_address": "Renal Center",
            "scheduled_pickup_time": "2026-03-02T09:05:00Z",
        },
        headers=headers,
    )
    assert trip.status_code == 200, trip.text
    return trip.json()["trip_id"]


def _xml(response) -> ElementTree.Element:
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    return ElementTree.fromstring(response.content)


def test_call_requires_configured_telephony(monkeypatch):
    monkeypatch.setattr(get_settings(), "twilio_account_sid", "")
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant)
    response = client.post("/confirmations/calls", json={"trip_id": trip_id}, headers={"X-Tenant-ID": tenant})
    assert response.status_code == 503


def test_call_validates_trip_and_phone(carrier):
    tenant = _tenant()
    headers = {"X-Tenant-ID": tenant}
    missing = client.post("/confirmations/calls", json={"trip_id": "NOPE"}, headers=headers)
    assert missing.status_code == 404

    trip_id = _trip_with_patient(tenant, phone=None)
    no_phone = client.post("/confirmations/calls", json={"trip_id": trip_id}, headers=headers)
    assert no_phone.status_code == 400
    assert no_phone.json()["detail"] == "Patient phone number not found"
    assert carrier["requests"] == []


def test_call_posts_form_to_carrier_and_records_attempt(carrier):
    tenant = _tenant()
    headers = {"X-Tenant-ID": tenant}
    trip_id = _trip_with_patient(tenant)

    response = client.post("/confirmations/calls", json={"trip_id": trip_id}, headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["call_sid"] == "CA-test-1"

    sent = carrier["requests"][0]
    assert sent.url.path == "/2010-04-01/Accounts/AC123/Calls.json"
    assert sent.headers["authorization"].startswith("Basic ")
    form = parse_qs(sent.content.decode())
    assert form["To"] == ["+15557654321"]
    assert form["From"] == ["+15550001111"]
    callback = urlparse(form["Url"][0])
    assert callback.path == "/confirmations/ivr/callback"
    assert parse_qs(callback.query) == {"trip_id": [trip_id], "language": ["spanish"], "tenant_id": [tenant]}

    confirmations = client.get("/confirmations", headers=headers).json()["items"]
    assert confirmations[0]["trip_id"] == trip_id
    assert confirmations[0]["ai_call_attempted"] is True
    assert confirmations[0]["ai_call_status"] == "initiated"


def test_carrier_failure_maps_to_bad_gateway(carrier):
    carrier["status_code"] = 500
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant)
    response = client.post("/confirmations/calls", json={"trip_id": trip_id}, headers={"X-Tenant-ID": tenant})
    assert response.status_code == 502


def test_callback_without_digits_prompts_in_patient_language(carrier):
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant)

    root = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": trip_id, "language": "spanish", "tenant_id": tenant},
            data={"CallSid": "CA-test-1"},
        )
    )
    gather = root.find("Gather")
    assert gather is not None
    assert gather.get("numDigits") == "1"
    assert gather.get("timeout") == "10"
    assert "trip_id=" in gather.get("action")
    say = gather.find("Say")
    assert say.get("voice") == "Polly.Joanna"
    assert say.get("language") == "es-MX"
    assert "Hola Maria" in say.text
    assert "9:05 AM" in say.text
    assert "12 Ocean Dr" in say.text
    assert root.findall("Say")[-1].text.startswith("No recibimos")


def test_keypress_one_confirms_trip(carrier):
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant, language="english")

    root = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": trip_id, "language": "english", "tenant_id": tenant},
            data={"Digits": "1", "CallSid": "CA-1"},
        )
    )
    assert root.find("Gather") is None
    assert root.find("Say").text.startswith("Thank you for confirming")
    assert root.find("Say").get("language") == "en-US"

    headers = {"X-Tenant-ID": tenant}
    confirmed = client.get("/confirmations", params={"status": "confirmed"}, headers=headers).json()["items"]
    assert confirmed[0]["confirmation_method"] == "phone_ivr"
    assert client.get(f"/trips/{trip_id}", headers=headers).json()["confirmation_status"] == "confirmed"


def test_keypress_two_cancels_trip(carrier):
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant, language="english")

    root = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": trip_id, "language": "english", "tenant_id": tenant},
            data={"Digits": "2"},
        )
    )
    assert "has been cancelled" in root.find("Say").text
    trip = client.get(f"/trips/{trip_id}", headers={"X-Tenant-ID": tenant}).json()
    assert trip["status"] == "cancelled"
    assert trip["confirmation_status"] == "cancelled"


def test_other_digits_prompt_again(carrier):
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant, language="english")
    root = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": trip_id, "language": "english", "tenant_id": tenant},
            data={"Digits": "7"},
        )
    )
    assert root.find("Gather") is not None
    assert client.get(f"/trips/{trip_id}", headers={"X-Tenant-ID": tenant}).json()["status"] == "scheduled"


def test_unknown_trip_and_errors_return_apology_markup(carrier):
    tenant = _tenant()
    unknown = _xml(
        client.post("/confirmations/ivr/callback", params={"trip_id": "NOPE", "tenant_id": tenant}, data={})
    )
    assert unknown.find("Say").text == "Sorry, we could not find your trip information."
    assert unknown.find("Say").get("voice") == "Polly.Joanna"
    assert unknown.find("Say").get("language") == "en-US"

    failed = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": "NOPE", "tenant_id": tenant},
            data={"Digits": "1"},
        )
    )
    assert failed.find("Say").text == "Sorry, an error occurred. Please call our main number."
    assert failed.find("Say").get("voice") == "Polly.Joanna"


def test_status_callback_records_final_call_status(carrier):
    tenant = _tenant()
    trip_id = _trip_with_patient(tenant)
    client.post("/confirmations/calls", json={"trip_id": trip_id}, headers={"X-Tenant-ID": tenant})

    recorded = client.post(
        "/confirmations/ivr/status",
        params={"trip_id": trip_id, "tenant_id": tenant},
        data={"CallSid": "CA-test-1", "CallStatus": "completed"},
    )
    assert recorded.status_code == 200
    assert recorded.json() == {"recorded": True, "call_sid": "CA-test-1", "status": "completed"}

    unknown = client.post(
        "/confirmations/ivr/status",
        params={"tenant_id": tenant},
        data={"CallSid": "CA-missing", "CallStatus": "failed"},
    )
    assert unknown.json() == {"recorded": False}


def test_keypress_two_on_completed_trip_leaves_it_completed(carrier):
    tenant = _tenant()
    headers = {"X-Tenant-ID": tenant}
    trip_id = _trip_with_patient(tenant, language="english")
    driver_id = client.post(
        "/fleet/profiles", json={"role": "driver", "full_name": "Done Driver"}, headers=headers
    ).json()["profile_id"]
    client.post(f"/trips/{trip_id}/assign", json={"driver_id": driver_id}, headers=headers)
    client.post(f"/trips/{trip_id}/status", json={"status": "in_progress"}, headers=headers)
    done = client.post(f"/trips/{trip_id}/status", json={"status": "completed"}, headers=headers)
    assert done.status_code == 200, done.text

    root = _xml(
        client.post(
            "/confirmations/ivr/callback",
            params={"trip_id": trip_id, "language": "english", "tenant_id": tenant},
            data={"Digits": "2", "CallSid": "CA-late"},
        )
    )
    assert "already been completed" in root.find("Say").text

    trip = client.get(f"/trips/{trip_id}", headers=headers).json()
    assert trip["status"] == "completed"
    assert trip["confirmation_status"] != "cancelled"
    assert client.get("/confirmations", params={"status": "cancelled"}, headers=headers).json()["items"] == []
