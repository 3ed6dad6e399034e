"""Automated phone confirmation of upcoming trips (IVR)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.fleet import TripStatus
from nemt.models.safety import ConfirmationStatus, TripConfirmation
from nemt.services.dispatch import dispatch_engine
from nemt.services.store import parse_iso_utc, store
from nemt.services.telephony import gather_response, say_response, telephony_client

CALLBACK_PATH = "/confirmations/ivr/callback"
STATUS_PATH = "/confirmations/ivr/status"

GREETINGS = {
    "english": (
        "Hello {name}, this is {company} calling to confirm your ride scheduled for tomorrow "
        "at {time} from {pickup}. Press 1 to confirm your trip, or press 2 to cancel. "
        "If you need to speak with someone, please call our main number."
    ),
    "spanish": (
        "Hola {name}, habla {company} para confirmar su viaje programado para mañana "
        "a las {time} desde {pickup}. Presione 1 para confirmar su viaje, o presione 2 para cancelar. "
        "Si necesita hablar con alguien, llame a nuestro número principal."
    ),
}
NO_RESPONSE = {
    "english": "We did not receive your response. Please call us to confirm your trip. Goodbye.",
    "spanish": "No recibimos su respuesta. Por favor llámenos para confirmar su viaje. Adiós.",
}
CLOSINGS = {
    "english": {
        "confirmed": "Thank you for confirming your trip. We will see you tomorrow. Goodbye.",
        "cancelled": "Your trip has been cancelled. If this was a mistake, please call our main number. Goodbye.",
        "already_completed": "This trip has already been completed and can no longer be cancelled. Goodbye.",
    },
    "spanish": {
        "confirmed": "Gracias por confirmar su viaje. Nos vemos mañana. Adiós.",
        "cancelled": "Su viaje ha sido cancelado. Si esto fue un error, llame a nuestro número principal. Adiós.",
        "already_completed": "Este viaje ya fue completado y no se puede cancelar. Adiós.",
    },
}
TRIP_NOT_FOUND_MESSAGE = "Sorry, we could not find your trip information."
ERROR_MESSAGE = "Sorry, an error occurred. Please call our main number."


def _language(value: Optional[str]) -> str:
    value = (value or "").strip().lower()
    return value if value in GREETINGS else "english"


def spoken_time(value: Any, tz_name: str = "UTC") -> str:
    """Render a pickup time as '9:05 AM' in the company time zone."""
    moment = parse_iso_utc(value)
    if moment is None:
        return ""
    try:
        moment = moment.astimezone(ZoneInfo(tz_name))
    except ZoneInfoNotFoundError:
        logger.warning("Unknown company timezone, using UTC", timezone=tz_name)
    return moment.strftime("%I:%M %p").lstrip("0")


class ConfirmationService:
    def __init__(self) -> None:
        self.settings = get_settings()

    def _callback_url(self, tenant_id: str, trip_id: str, language: str) -> str:
        query = urlencode({"trip_id": trip_id, "language": language, "tenant_id": tenant_id})
        return f"{self.settings.public_base_url.rstrip('/')}{CALLBACK_PATH}?{query}"

    def _status_url(self, tenant_id: str, trip_id: str) -> str:
        query = urlencode({"trip_id": trip_id, "tenant_id": tenant_id})
        return f"{self.settings.public_base_url.rstrip('/')}{STATUS_PATH}?{query}"

    def _confirmation(self, tenant_id: str, trip_id: str) -> Dict[str, Any]:
        existing = store.get_confirmation(tenant_id, trip_id)
        if existing:
            return existing
        return TripConfirmation(trip_id=trip_id).model_dump(mode="json")

    def _save_confirmation(self, tenant_id: str, confirmation: Dict[str, Any]) -> Dict[str, Any]:
        row = store.upsert_confirmation(tenant_id, TripConfirmation(**confirmation).model_dump(mode="json"))
        trip = store.get_trip(tenant_id, confirmation["trip_id"])
        if trip and trip.get("confirmation_status") != row["confirmation_status"]:
            trip["confirmation_status"] = row["confirmation_status"]
            store.upsert_trip(tenant_id, trip)
        return row

    def start_call(self, trip_id: str, tenant_id: str) -> Dict[str, Any]:
        """Place the confirmation call for a trip's patient.

        Raises KeyError for an unknown trip, ValueError when the patient has
        no phone, and TelephonyError when the carrier call fails.
        """
        trip = store.get_trip(tenant_id, trip_id)
        if not trip:
            raise KeyError(trip_id)
        patient = store.get_patient(tenant_id, trip["patient_id"]) if trip.get("patient_id") else None
        if not patient or not patient.get("phone"):
            raise ValueError("Patient phone number not found")

        language = _language(patient.get("preferred_language"))
        call = telephony_client.place_call(
            patient["phone"],
            self._callback_url(tenant_id, trip_id, language),
            self._status_url(tenant_id, trip_id),
        )

        now = datetime.now(timezone.utc).isoformat()
        confirmation = self._confirmation(tenant_id, trip_id)
        confirmation.update(
            {
                "ai_call_attempted": True,
                "ai_call_attempted_at": now,
                "ai_call_status": "initiated",
            }
        )
        self._save_confirmation(tenant_id, confirmation)
        store.add_call_event(
            tenant_id,
            {
                "call_sid": call["sid"],
                "trip_id": trip_id,
                "from_number": self.settings.twilio_phone_number,
                "to_number": patient["phone"],
                "direction": "outbound",
                "status": "initiated",
                "call_type": "ai_confirmation",
            },
        )
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="confirmation_call_placed",
            actor="ivr",
            details={"call_sid": call["sid"], "language": language},
        )
        return {"success": True, "message": "AI confirmation call initiated", "call_sid": call["sid"]}

    def handle_keypress(
        self,
        tenant_id: str,
        trip_id: str,
        language: Optional[str],
        digits: Optional[str],
        call_sid: Optional[str] = None,
    ) -> str:
        """Return voice markup for one step of the confirmation call."""
        language = _language(language)
        digits = (digits or "").strip()

        if digits == "1":
            self._record_answer(tenant_id, trip_id, ConfirmationStatus.CONFIRMED, call_sid)
            return say_response(CLOSINGS[language]["confirmed"], language)
        if digits == "2":
            trip = store.get_trip(tenant_id, trip_id)
            if trip and trip.get("status") == TripStatus.COMPLETED.value:
                logger.info("Cancel requested for completed trip", tenant_id=tenant_id, trip_id=trip_id)
                return say_response(CLOSINGS[language]["already_completed"], language)
            dispatch_engine.cancel_trip(tenant_id, trip_id, actor="phone_ivr", reason="patient_cancelled_by_phone")
            self._record_answer(tenant_id, trip_id, ConfirmationStatus.CANCELLED, call_sid)
            return say_response(CLOSINGS[language]["cancelled"], language)
        if digits:
            logger.info("Unrecognized IVR input, prompting again", trip_id=trip_id, digits=digits)

        trip = store.get_trip(tenant_id, trip_id) if trip_id else None
        if not trip:
            return say_response(TRIP_NOT_FOUND_MESSAGE)
        patient = store.get_patient(tenant_id, trip["patient_id"]) if trip.get("patient_id") else None
        name = (patient or {}).get("first_name") or ""
        prompt = GREETINGS[language].format(
            name=name,
            company=self.settings.company_name,
            time=spoken_time(trip.get("scheduled_pickup_time"), self.settings.company_timezone),
            pickup=trip.get("pickup_address") or "",
        )
        return gather_response(
            prompt,
            self._callback_url(tenant_id, trip_id, language),
            language,
            NO_RESPONSE[language],
        )

    def _record_answer(
        self,
        tenant_id: str,
        trip_id: str,
        status: ConfirmationStatus,
        call_sid: Optional[str],
    ) -> Dict[str, Any]:
        if not store.get_trip(tenant_id, trip_id):
            raise KeyError(trip_id)
        confirmation = self._confirmation(tenant_id, trip_id)
        confirmation.update(
            {
                "confirmation_status": status.value,
                "confirmation_method": "phone_ivr",
                "confirmed_at": datetime.now(timezone.utc).isoformat(),
                "ai_call_status": status.value,
            }
        )
        row = self._save_confirmation(tenant_id, confirmation)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type=f"trip_{status.value}_by_phone",
            actor="phone_ivr",
            details={"call_sid": call_sid},
        )
        logger.info("Trip confirmation answered", tenant_id=tenant_id, trip_id=trip_id, status=status.value)
        return row

    def record_call_status(self, tenant_id: str, call_sid: str, call_status: str) -> Dict[str, Any]:
        event = store.get_call_event(tenant_id, call_sid)
        if not event:
            raise KeyError(call_sid)
        event["status"] = call_status
        event["completed_at"] = datetime.now(timezone.utc).isoformat()
        return store.add_call_event(tenant_id, event)

    def list_confirmations(self, tenant_id: str, status: Optional[ConfirmationStatus] = None) -> List[Dict[str, Any]]:
        return store.list_confirmations(tenant_id, status=status.value if status else None)


confirmation_service = ConfirmationService()
