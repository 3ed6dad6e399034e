"""API routes for staff profiles, vehicles, patients, and driver locations."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.logging import logger
from nemt.models.fleet import (
    DriverLocationUpdate,
    PatientCreateRequest,
    ProfileCreateRequest,
    ProfileRole,
    ProfileStatus,
    ProfileUpdateRequest,
    VehicleCreateRequest,
    VehicleStatus,
)
from nemt.services.dispatch import dispatch_engine
from nemt.services.fleet import fleet_service
from nemt.services.store import store

router = APIRouter(prefix="/fleet", tags=["fleet"])


@router.post("/profiles")
def create_profile(
    request: ProfileCreateRequest,
    context: TenantContext = Depends(require_roles("admin", "dispatcher")),
):
    try:
        return fleet_service.create_profile(request, tenant_id=context.tenant_id)
    except Exception as exc:
        logger.error("Failed to create profile", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/profiles")
def list_profiles(
    role: Optional[ProfileRole] = Query(default=None),
    status: Optional[ProfileStatus] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = fleet_service.list_profiles(context.tenant_id, role=role, status=status.value if status else None)
    return {"items": items, "total": len(items)}


@router.get("/profiles/{profile_id}")
def get_profile(profile_id: str, context: TenantContext = Depends(get_tenant_context)):
    try:
        return fleet_service.get_profile(context.tenant_id, profile_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Profile not found")


@router.patch("/profiles/{profile_id}")
def update_profile(
    profile_id: str,
    request: ProfileUpdateRequest,
    context: TenantContext = Depends(require_roles("admin", "dispatcher")),
):
    try:
        return fleet_service.update_profile(profile_id, request, tenant_id=context.tenant_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Profile not found")
    except Exception as exc:
        logger.error("Failed to update profile", profile_id=profile_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/drivers/{driver_id}/location")
def update_driver_location(
    driver_id: str,
    request: DriverLocationUpdate,
    context: TenantContext = Depends(require_roles("admin", "dispatcher", "driver")),
):
    if context.role == "driver" and context.actor != driver_id:
        raise HTTPException(status_code=403, detail="Drivers may only report their own location")
    try:
        return dispatch_engine.update_driver_location(driver_id, request, tenant_id=context.tenant_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Driver not found")
    except Exception as exc:
        logger.error("Failed to update driver location", driver_id=driver_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/drivers/{driver_id}/locations")
def driver_location_history(
    driver_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    context: TenantContext = Depends(get_tenant_context),
):
    return {"driver_id": driver_id, "items": store.list_driver_locations(context.tenant_id, driver_id, limit=limit)}


@router.post("/vehicles")
def create_vehicle(
    request: VehicleCreateRequest,
    context: TenantContext = Depends(require_roles("admin", "dispatcher")),
):
    try:
        return fleet_service.create_vehicle(request, tenant_id=context.tenant_id)
    except Exception as exc:
        logger.error("Failed to create vehicle", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/vehicles")
def list_vehicles(
    status: Optional[VehicleStatus] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = fleet_service.list_vehicles(context.tenant_id, status=status.value if status else None)
    return {"items": items, "total": len(items)}


@router.get("/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, context: TenantContext = Depends(get_tenant_context)):
    try:
        return fleet_service.get_vehicle(context.tenant_id, vehicle_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Vehicle not found")


@router.post("/patients")
def create_patient(
    request: PatientCreateRequest,
    context: TenantContext = Depends(require_roles("admin", "dispatcher")),
):
    try:
        return fleet_service.create_patient(request, tenant_id=context.tenant_id)
    except Exception as exc:
        logger.error("Failed to create patient", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/patients")
def list_patients(context: TenantContext = Depends(get_tenant_context)):
    items = fleet_service.list_patients(context.tenant_id)
    return {"items": items, "total": len(items)}


@router.get("/patients/{patient_id}")
def get_patient(patient_id: str, context: TenantContext = Depends(get_tenant_context)):
    try:
        return fleet_service.get_patient(context.tenant_id, patient_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Patient not found")
