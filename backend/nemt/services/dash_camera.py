"""Dash-camera webhook ingestion, safety alerts, and daily safety scores."""
from __future__ import annotations

import hashlib
import hmac
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.fleet import ProfileRole
from nemt.models.safety import (
    CameraWebhookEvent,
    CameraWebhookPayload,
    DashCameraEvent,
    EventSeverity,
    SafetyScore,
    WebhookResult,
)
from nemt.services.store import store

SEVERITY_PENALTIES = {
    EventSeverity.LOW.value: 1,
    EventSeverity.MEDIUM.value: 3,
    EventSeverity.HIGH.value: 5,
    EventSeverity.CRITICAL.value: 10,
}
DEFAULT_PENALTY = 3

# First matching keyword group wins.
EVENT_COUNTERS = (
    (("braking",), "harsh_braking_count"),
    (("acceleration",), "harsh_acceleration_count"),
    (("cornering", "turn"), "harsh_cornering_count"),
    (("distraction", "phone"), "distraction_count"),
    (("speed",), "speeding_count"),
)


class WebhookSignatureError(Exception):
    """Raised when a webhook body does not match its signature."""


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str, allow_unsigned: bool = False) -> None:
    """Check a hex HMAC-SHA256 signature, optionally prefixed with 'sha256='."""
    if not secret:
        return
    if not signature:
        if allow_unsigned:
            logger.warning("Accepting unsigned camera webhook")
            return
        raise WebhookSignatureError("Missing webhook signature")
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8", "replace")):
        raise WebhookSignatureError("Invalid webhook signature")


def severity_penalty(severity: Optional[str]) -> int:
    return SEVERITY_PENALTIES.get((severity or "").lower(), DEFAULT_PENALTY)


def counter_for(event_type: str) -> Optional[str]:
    lowered = (event_type or "").lower()
    for keywords, field in EVENT_COUNTERS:
        if any(word in lowered for word in keywords):
            return field
    return None


def apply_event_to_score(
    score: Optional[Dict[str, Any]],
    driver_id: str,
    score_date: date,
    event_type: str,
    severity: Optional[str],
) -> SafetyScore:
    """Deduct the severity penalty from the day's score and bump the matching counter."""
    current = SafetyScore(**score) if score else SafetyScore(driver_id=driver_id, date=score_date)
    current.overall_score = max(0.0, current.overall_score - severity_penalty(severity))
    field = counter_for(event_type)
    if field:
        setattr(current, field, getattr(current, field) + 1)
    current.updated_at = datetime.now(timezone.utc)
    return current


def invalid_event_message(raw_event: Any, exc: ValidationError) -> str:
    event_ref = raw_event.get("event_id") if isinstance(raw_event, dict) else None
    fields = sorted({".".join(str(part) for part in error["loc"]) or "event" for error in exc.errors()})
    return f"Invalid event {event_ref or '(no id)'}: check {', '.join(fields)}"


def alert_message(event_type: str, driver_name: str, vehicle_label: str, severity: Optional[str]) -> str:
    label = event_type.replace("_", " ").upper()
    suffix = f" ({severity} severity)" if severity else ""
    return f"Safety Alert: {label} - {driver_name} in {vehicle_label}{suffix}"


class DashCameraService:
    def register_device(self, tenant_id: str, device_id: str, vehicle_id: str) -> Dict[str, Any]:
        if not store.get_vehicle(tenant_id, vehicle_id):
            raise ValueError(f"Vehicle '{vehicle_id}' not found")
        return store.register_camera_device(tenant_id, device_id, vehicle_id)

    def handle_webhook(self, tenant_id: str, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        settings = get_settings()
        verify_signature(raw_body, signature, settings.raven_webhook_secret, settings.raven_allow_unsigned)

        payload = CameraWebhookPayload.model_validate_json(raw_body)
        events = payload.all_events()
        if not events:
            return WebhookResult(success=True, message="No events to process")

        processed = 0
        errors: List[str] = []
        for raw_event in events:
            try:
                event = CameraWebhookEvent.model_validate(raw_event)
            except ValidationError as exc:
                message = invalid_event_message(raw_event, exc)
                logger.warning("Camera event rejected", error=message)
                errors.append(message)
                continue
            try:
                self._ingest(tenant_id, event)
                processed += 1
            except (KeyError, ValueError) as exc:
                logger.warning("Camera event skipped", event_id=event.event_id, error=str(exc))
                errors.append(str(exc))

        logger.info("Camera webhook processed", tenant_id=tenant_id, processed=processed, total=len(events))
        return WebhookResult(
            success=True,
            processed=processed,
            total=len(events),
            errors=errors or None,
        )

    def _ingest(self, tenant_id: str, event: CameraWebhookEvent) -> None:
        device = store.get_camera_device(tenant_id, event.device_id)
        if not device:
            raise ValueError(f"Device {event.device_id} not registered")
        if store.get_dash_camera_event(tenant_id, event.event_id):
            logger.info("Duplicate camera event ignored", event_id=event.event_id)
            return

        vehicle = store.get_vehicle(tenant_id, device["vehicle_id"]) or {}
        driver_id = vehicle.get("driver_id")
        driver = store.get_profile(tenant_id, driver_id) if driver_id else None
        driver_name = (driver or {}).get("full_name") or "Unknown Driver"

        location = event.location
        metadata = {
            "event_id": event.event_id,
            "device_serial": event.device_serial,
            "altitude": location.altitude if location else None,
            "heading": location.heading if location else None,
            "driver_info": event.driver_info,
            "vehicle_info": event.vehicle_info,
            **event.metadata,
        }
        record = DashCameraEvent(
            event_id=event.event_id,
            vehicle_id=device["vehicle_id"],
            driver_id=driver_id,
            event_type=event.event_type,
            severity=(event.severity or EventSeverity.MEDIUM.value).lower(),
            event_timestamp=event.timestamp,
            video_url=event.video_url,
            thumbnail_url=event.thumbnail_url,
            location_lat=location.latitude if location else None,
            location_lng=location.longitude if location else None,
            speed_mph=event.speed,
            metadata=metadata,
        )
        store.add_dash_camera_event(tenant_id, record.model_dump(mode="json"))

        vehicle_label = (
            vehicle.get("vehicle_name")
            or vehicle.get("license_plate")
            or (event.vehicle_info or {}).get("plate")
            or "Unknown Vehicle"
        )
        message = alert_message(event.event_type, driver_name, vehicle_label, event.severity)
        recipients: List[str] = [driver_id] if driver_id else []
        staff = store.list_profiles(tenant_id, role=[ProfileRole.DISPATCHER.value, ProfileRole.ADMIN.value])
        recipients.extend(row["profile_id"] for row in staff)
        for user_id in recipients:
            store.add_notification(tenant_id, user_id, message)

        if driver_id:
            today = datetime.now(timezone.utc).date()
            previous = store.get_safety_score(tenant_id, driver_id, today.isoformat())
            score = apply_event_to_score(previous, driver_id, today, event.event_type, event.severity)
            store.upsert_safety_score(tenant_id, score.model_dump(mode="json"))

    def list_events(
        self,
        tenant_id: str,
        driver_id: Optional[str] = None,
        vehicle_id: Optional[str] = None,
        severity: Optional[EventSeverity] = None,
        limit: int = 200,
    ) -> List[Dict[str, Any]]:
        return store.list_dash_camera_events(
            tenant_id,
            driver_id=driver_id,
            vehicle_id=vehicle_id,
            severity=severity.value if severity else None,
            limit=limit,
        )

    def list_scores(
        self,
        tenant_id: str,
        driver_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        rows = store.list_safety_scores(tenant_id, driver_id=driver_id)
        return [
            row
            for row in rows
            if (start_date is None or date.fromisoformat(row["date"]) >= start_date)
            and (end_date is None or date.fromisoformat(row["date"]) <= end_date)
        ]


dash_camera_service = DashCameraService()
