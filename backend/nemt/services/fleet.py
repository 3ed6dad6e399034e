"""Profiles, vehicles, patients, and farmout trip records."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from nemt.core.logging import logger
from nemt.models.fleet import (
    FarmoutCreateRequest,
    FarmoutRecord,
    FarmoutStatus,
    FarmoutUpdateRequest,
    PatientCreateRequest,
    PatientRecord,
    ProfileCreateRequest,
    ProfileRecord,
    ProfileRole,
    ProfileUpdateRequest,
    VehicleCreateRequest,
    VehicleRecord,
)
from nemt.services.store import parse_iso_utc, store


class FleetService:
    def create_profile(self, request: ProfileCreateRequest, tenant_id: str) -> Dict[str, Any]:
        role = request.role.value
        profile_id = request.profile_id or store.generate_id(tenant_id, f"profile:{role}", role.upper()[:3])
        if store.get_profile(tenant_id, profile_id):
            raise ValueError(f"Profile '{profile_id}' already exists")
        if request.assigned_vehicle_id and not store.get_vehicle(tenant_id, request.assigned_vehicle_id):
            raise ValueError(f"Vehicle '{request.assigned_vehicle_id}' not found")
        record = ProfileRecord(**{**request.model_dump(), "profile_id": profile_id})
        return store.upsert_profile(tenant_id, record.model_dump(mode="json"))

    def update_profile(self, profile_id: str, request: ProfileUpdateRequest, tenant_id: str) -> Dict[str, Any]:
        existing = store.get_profile(tenant_id, profile_id)
        if not existing:
            raise KeyError(profile_id)
        patch = request.model_dump(exclude_none=True)
        if patch.get("assigned_vehicle_id") and not store.get_vehicle(tenant_id, patch["assigned_vehicle_id"]):
            raise ValueError(f"Vehicle '{patch['assigned_vehicle_id']}' not found")
        existing.update(patch)
        return store.upsert_profile(tenant_id, ProfileRecord(**existing).model_dump(mode="json"))

    def get_profile(self, tenant_id: str, profile_id: str) -> Dict[str, Any]:
        row = store.get_profile(tenant_id, profile_id)
        if not row:
            raise KeyError(profile_id)
        return row

    def list_profiles(
        self,
        tenant_id: str,
        role: Optional[ProfileRole] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return store.list_profiles(tenant_id, role=role.value if role else None, status=status)

    def create_vehicle(self, request: VehicleCreateRequest, tenant_id: str) -> Dict[str, Any]:
        vehicle_id = request.vehicle_id or store.generate_id(tenant_id, "vehicle", "VEH")
        if store.get_vehicle(tenant_id, vehicle_id):
            raise ValueError(f"Vehicle '{vehicle_id}' already exists")
        if request.driver_id:
            driver = store.get_profile(tenant_id, request.driver_id)
            if not driver or driver.get("role") != ProfileRole.DRIVER.value:
                raise ValueError(f"Driver '{request.driver_id}' not found")
        record = VehicleRecord(**{**request.model_dump(), "vehicle_id": vehicle_id})
        return store.upsert_vehicle(tenant_id, record.model_dump(mode="json"))

    def get_vehicle(self, tenant_id: str, vehicle_id: str) -> Dict[str, Any]:
        row = store.get_vehicle(tenant_id, vehicle_id)
        if not row:
            raise KeyError(vehicle_id)
        return row

    def list_vehicles(self, tenant_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return store.list_vehicles(tenant_id, status=status)

    def create_patient(self, request: PatientCreateRequest, tenant_id: str) -> Dict[str, Any]:
        patient_id = request.patient_id or store.generate_id(tenant_id, "patient", "PAT")
        payload = request.model_dump()
        payload["patient_id"] = patient_id
        if not payload.get("first_name"):
            payload["first_name"] = request.full_name.split()[0]
        return store.upsert_patient(tenant_id, PatientRecord(**payload).model_dump(mode="json"))

    def get_patient(self, tenant_id: str, patient_id: str) -> Dict[str, Any]:
        row = store.get_patient(tenant_id, patient_id)
        if not row:
            raise KeyError(patient_id)
        return row

    def list_patients(self, tenant_id: str) -> List[Dict[str, Any]]:
        return store.list_patients(tenant_id)

    # ---------------------------------------------------------------- farmouts

    def create_farmout(self, request: FarmoutCreateRequest, tenant_id: str, actor: str) -> Dict[str, Any]:
        if not store.get_trip(tenant_id, request.trip_id):
            raise ValueError(f"Trip '{request.trip_id}' not found")
        farmout_id = store.generate_id(tenant_id, "farmout", "FRM")
        record = FarmoutRecord(farmout_id=farmout_id, **request.model_dump())
        row = store.upsert_farmout(tenant_id, record.model_dump(mode="json"))
        store.record_timeline_event(
            tenant_id,
            request.trip_id,
            event_type="trip_farmed_out",
            actor=actor,
            details={"farmout_id": farmout_id, "product_id": request.product_id},
        )
        logger.info("Farmout created", tenant_id=tenant_id, farmout_id=farmout_id, trip_id=request.trip_id)
        return row

    def update_farmout(self, farmout_id: str, request: FarmoutUpdateRequest, tenant_id: str) -> Dict[str, Any]:
        existing = store.get_farmout(tenant_id, farmout_id)
        if not existing:
            raise KeyError(farmout_id)
        patch = request.model_dump(exclude_none=True)
        existing.update(patch)
        return store.upsert_farmout(tenant_id, FarmoutRecord(**existing).model_dump(mode="json"))

    def list_farmouts(
        self,
        tenant_id: str,
        status: Optional[FarmoutStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Farmouts created in the date range plus per-status counts over that range."""
        rows = store.list_farmouts(tenant_id)
        in_range: List[Dict[str, Any]] = []
        for row in rows:
            created = parse_iso_utc(row.get("created_at"))
            if created is None:
                continue
            if start_date and created.date() < start_date:
                continue
            if end_date and created.date() > end_date:
                continue
            in_range.append(row)

        counts = {item.value: 0 for item in FarmoutStatus}
        for row in in_range:
            key = row.get("status") or FarmoutStatus.PROCESSING.value
            counts[key] = counts.get(key, 0) + 1
        items = [row for row in in_range if status is None or row.get("status") == status.value]
        return {"items": items, "counts": counts, "total": len(in_range)}


fleet_service = FleetService()
