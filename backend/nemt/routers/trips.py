"""API routes for trip scheduling and lifecycle."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.logging import logger
from nemt.models.fleet import (
    TripAssignRequest,
    TripCreateRequest,
    TripStatus,
    TripStatusTransitionRequest,
    TripUpdateRequest,
)
from nemt.routers.common import idempotency_lookup, idempotency_store
from nemt.services.dispatch import dispatch_engine

router = APIRouter(prefix="/trips", tags=["trips"])


def _require_own_trip(context: TenantContext, trip_id: str) -> None:
    try:
        trip = dispatch_engine.get_trip(context.tenant_id, trip_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    if trip.get("driver_id") != context.actor:
        raise HTTPException(status_code=403, detail="Trip is not assigned to this driver")


@router.post("")
def create_trip(
    request: TripCreateRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, "create_trip", idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.create_trip(request, tenant_id=context.tenant_id, actor=context.actor)
        idempotency_store(context, "create_trip", idempotency_key, response)
        return response
    except Exception as exc:
        logger.error("Failed to create trip", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("")
def list_trips(
    status: Optional[TripStatus] = Query(default=None),
    driver_id: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = dispatch_engine.list_trips(
        context.tenant_id,
        status=status,
        driver_id=driver_id,
        start_date=start_date,
        end_date=end_date,
    )
    return {"items": items, "total": len(items)}


@router.get("/{trip_id}")
def get_trip(trip_id: str, context: TenantContext = Depends(get_tenant_context)):
    try:
        return dispatch_engine.get_trip(context.tenant_id, trip_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")


@router.patch("/{trip_id}")
def update_trip(
    trip_id: str,
    request: TripUpdateRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, f"update_trip:{trip_id}", idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.update_trip(trip_id, request, tenant_id=context.tenant_id, actor=context.actor)
        idempotency_store(context, f"update_trip:{trip_id}", idempotency_key, response)
        return response
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except Exception as exc:
        logger.error("Failed to update trip", trip_id=trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{trip_id}/assign")
def assign_trip(
    trip_id: str,
    request: TripAssignRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, f"assign_trip:{trip_id}", idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.assign_trip(
            trip_id,
            request.driver_id,
            tenant_id=context.tenant_id,
            actor=context.actor,
            vehicle_id=request.vehicle_id,
        )
        idempotency_store(context, f"assign_trip:{trip_id}", idempotency_key, response)
        return response
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except Exception as exc:
        logger.error("Failed to assign trip", trip_id=trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{trip_id}/unassign")
def unassign_trip(
    trip_id: str,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return dispatch_engine.unassign_trip(trip_id, tenant_id=context.tenant_id, actor=context.actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except Exception as exc:
        logger.error("Failed to unassign trip", trip_id=trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/{trip_id}/status")
def transition_trip_status(
    trip_id: str,
    request: TripStatusTransitionRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin", "driver")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    if context.role == "driver":
        _require_own_trip(context, trip_id)
    operation = f"transition_trip:{trip_id}:{request.status.value}"
    cached = idempotency_lookup(context, operation, idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.transition_status(
            trip_id,
            request,
            tenant_id=context.tenant_id,
            actor=context.actor,
        )
        idempotency_store(context, operation, idempotency_key, response)
        return response
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except Exception as exc:
        logger.error("Failed to transition trip status", trip_id=trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/{trip_id}/timeline")
def trip_timeline(trip_id: str, context: TenantContext = Depends(get_tenant_context)):
    try:
        return {"trip_id": trip_id, "events": dispatch_engine.timeline(context.tenant_id, trip_id)}
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
