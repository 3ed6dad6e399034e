"""Domain models for NEMT fleet, patients, and trip dispatch."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileRole(str, Enum):
    """Staff roles stored on a profile."""

    DRIVER = "driver"
    DISPATCHER = "dispatcher"
    ADMIN = "admin"


class ProfileStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class VehicleType(str, Enum):
    SEDAN = "sedan"
    WHEELCHAIR_VAN = "wheelchair_van"
    AMBULANCE = "ambulance"


class VehicleStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"


class MobilityNeeds(str, Enum):
    AMBULATORY = "ambulatory"
    WHEELCHAIR = "wheelchair"
    STRETCHER = "stretcher"


class PreferredLanguage(str, Enum):
    ENGLISH = "english"
    SPANISH = "spanish"


class TripStatus(str, Enum):
    """Operational lifecycle status for a trip."""

    SCHEDULED = "scheduled"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FarmoutStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    DRIVER_CANCELED = "driver_canceled"
    RIDER_CANCELED = "rider_canceled"


# ==================== PROFILES / VEHICLES / PATIENTS ====================

class ProfileCreateRequest(BaseModel):
    profile_id: Optional[str] = None
    role: ProfileRole = ProfileRole.DRIVER
    full_name: str = Field(min_length=2)
    phone: Optional[str] = None
    email: Optional[str] = None
    status: ProfileStatus = ProfileStatus.ACTIVE
    current_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    current_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    assigned_vehicle_id: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[ProfileStatus] = None
    assigned_vehicle_id: Optional[str] = None


class ProfileRecord(BaseModel):
    """Persisted staff profile (driver, dispatcher, admin)."""

    profile_id: str
    role: ProfileRole
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    status: ProfileStatus = ProfileStatus.ACTIVE
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    last_location_update: Optional[datetime] = None
    assigned_vehicle_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DriverLocationUpdate(BaseModel):
    """Driver device location ping."""

    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    accuracy: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None


class VehicleCreateRequest(BaseModel):
    vehicle_id: Optional[str] = None
    vehicle_name: str
    license_plate: str = ""
    type: VehicleType = VehicleType.SEDAN
    capacity: int = Field(default=4, ge=1)
    space_types: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    status: VehicleStatus = VehicleStatus.AVAILABLE
    driver_id: Optional[str] = None


class VehicleRecord(BaseModel):
    vehicle_id: str
    vehicle_name: str
    license_plate: str = ""
    type: VehicleType = VehicleType.SEDAN
    capacity: int = 4
    space_types: List[str] = Field(default_factory=list)
    equipment: List[str] = Field(default_factory=list)
    status: VehicleStatus = VehicleStatus.AVAILABLE
    driver_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class PatientCreateRequest(BaseModel):
    patient_id: Optional[str] = None
    full_name: str
    first_name: Optional[str] = None
    phone: Optional[str] = None
    mobility_needs: MobilityNeeds = MobilityNeeds.AMBULATORY
    preferred_language: PreferredLanguage = PreferredLanguage.ENGLISH
    special_instructions: Optional[str] = None


class PatientRecord(BaseModel):
    patient_id: str
    full_name: str
    first_name: Optional[str] = None
    phone: Optional[str] = None
    mobility_needs: MobilityNeeds = MobilityNeeds.AMBULATORY
    preferred_language: PreferredLanguage = PreferredLanguage.ENGLISH
    special_instructions: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


# ==================== TRIPS ====================

class TripCreateRequest(BaseModel):
    """Request payload to schedule a new trip."""

    trip_id: Optional[str] = None
    trip_number: Optional[str] = None
    patient_id: Optional[str] = None
    pickup_address: str
    dropoff_address: str
    pickup_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    dropoff_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    dropoff_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    scheduled_pickup_time: datetime
    space_type: Optional[str] = None
    funding_source: Optional[str] = None
    trip_fare: float = Field(default=0.0, ge=0)
    distance_miles: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None


class TripUpdateRequest(BaseModel):
    """Patch fields for an existing trip."""

    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    pickup_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    pickup_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    dropoff_latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    dropoff_longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    scheduled_pickup_time: Optional[datetime] = None
    actual_pickup_time: Optional[datetime] = None
    actual_dropoff_time: Optional[datetime] = None
    space_type: Optional[str] = None
    funding_source: Optional[str] = None
    trip_fare: Optional[float] = Field(default=None, ge=0)
    distance_miles: Optional[float] = Field(default=None, ge=0)
    vehicle_id: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class TripRecord(BaseModel):
    """Persisted trip record."""

    trip_id: str
    trip_number: Optional[str] = None
    patient_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    pickup_address: str
    dropoff_address: str
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    dropoff_latitude: Optional[float] = None
    dropoff_longitude: Optional[float] = None
    scheduled_pickup_time: datetime
    actual_pickup_time: Optional[datetime] = None
    actual_dropoff_time: Optional[datetime] = None
    status: TripStatus = TripStatus.SCHEDULED
    space_type: Optional[str] = None
    funding_source: Optional[str] = None
    trip_fare: float = 0.0
    distance_miles: Optional[float] = None
    confirmation_status: Optional[str] = None
    notes: Optional[str] = None
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TripStatusTransitionRequest(BaseModel):
    """Request to move a trip through lifecycle states."""

    status: TripStatus
    actual_time: Optional[datetime] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class TripAssignRequest(BaseModel):
    """Assign a single trip to a driver."""

    driver_id: str
    vehicle_id: Optional[str] = None


class TimelineEvent(BaseModel):
    """Operational event associated with a trip."""

    event_id: str
    trip_id: str
    event_type: str
    actor: str
    timestamp: datetime = Field(default_factory=_utcnow)
    details: Dict[str, Any] = Field(default_factory=dict)


# ==================== FARMOUTS ====================

class FarmoutCreateRequest(BaseModel):
    """Hand a trip to a third-party vendor."""

    trip_id: str
    request_id: Optional[str] = None
    product_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    expense_memo: Optional[str] = None


class FarmoutUpdateRequest(BaseModel):
    """Vendor response fields for an outsourced trip."""

    status: Optional[FarmoutStatus] = None
    request_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None
    license_plate: Optional[str] = None
    trip_fare: Optional[float] = Field(default=None, ge=0)
    distance: Optional[float] = Field(default=None, ge=0)
    duration: Optional[str] = None
    cancellation_type: Optional[str] = None
    cancellation_time: Optional[datetime] = None
    wait_time_minutes: Optional[float] = Field(default=None, ge=0)
    rider_tracking_url: Optional[str] = None
    is_eligible_for_refund: Optional[bool] = None


class FarmoutRecord(BaseModel):
    farmout_id: str
    trip_id: str
    request_id: Optional[str] = None
    product_id: Optional[str] = None
    vehicle_type: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None
    license_plate: Optional[str] = None
    trip_fare: Optional[float] = None
    distance: Optional[float] = None
    duration: Optional[str] = None
    cancellation_type: Optional[str] = None
    cancellation_time: Optional[datetime] = None
    wait_time_minutes: Optional[float] = None
    status: FarmoutStatus = FarmoutStatus.PROCESSING
    expense_memo: Optional[str] = None
    rider_tracking_url: Optional[str] = None
    is_eligible_for_refund: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
