"""Dash-camera events, safety scores, and trip confirmation models."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConfirmationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# ==================== DASH CAMERA WEBHOOK ====================

class CameraLocation(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    heading: Optional[float] = None


class CameraWebhookEvent(BaseModel):
    """Event shape posted by the camera vendor."""

    event_type: str
    event_id: str
    device_id: str
    device_serial: Optional[str] = None
    timestamp: str
    severity: Optional[str] = None
    location: Optional[CameraLocation] = None
    speed: Optional[float] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    driver_info: Optional[Dict[str, Any]] = None
    vehicle_info: Optional[Dict[str, Any]] = None


class CameraWebhookPayload(BaseModel):
    """Envelope only; each event is validated on its own during ingest."""

    events: Optional[List[Any]] = None
    event: Optional[Any] = None

    def all_events(self) -> List[Any]:
        if self.events:
            return list(self.events)
        return [self.event] if self.event else []


class CameraDeviceRequest(BaseModel):
    device_id: str
    vehicle_id: str


class DashCameraEvent(BaseModel):
    event_id: str
    vehicle_id: str
    driver_id: Optional[str] = None
    event_type: str
    severity: str = EventSeverity.MEDIUM.value
    event_timestamp: str
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    speed_mph: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class SafetyScore(BaseModel):
    """Daily safety score for a driver, starting from 100."""

    driver_id: str
    date: date
    overall_score: float = 100.0
    harsh_braking_count: int = 0
    harsh_acceleration_count: int = 0
    harsh_cornering_count: int = 0
    distraction_count: int = 0
    speeding_count: int = 0
    updated_at: datetime = Field(default_factory=_utcnow)


class WebhookResult(BaseModel):
    success: bool = True
    processed: int = 0
    total: int = 0
    message: Optional[str] = None
    errors: Optional[List[str]] = None


# ==================== TRIP CONFIRMATIONS ====================

class ConfirmationCallRequest(BaseModel):
    trip_id: str


class TripConfirmation(BaseModel):
    trip_id: str
    confirmation_status: ConfirmationStatus = ConfirmationStatus.PENDING
    confirmation_method: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    ai_call_attempted: bool = False
    ai_call_attempted_at: Optional[datetime] = None
    ai_call_status: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)
