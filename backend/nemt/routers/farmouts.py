"""API routes for trips outsourced to third-party vendors."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.logging import logger
from nemt.models.fleet import FarmoutCreateRequest, FarmoutStatus, FarmoutUpdateRequest
from nemt.services.fleet import fleet_service

router = APIRouter(prefix="/farmouts", tags=["farmouts"])


@router.post("")
def create_farmout(
    request: FarmoutCreateRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return fleet_service.create_farmout(request, tenant_id=context.tenant_id, actor=context.actor)
    except Exception as exc:
        logger.error("Failed to create farmout", trip_id=request.trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("")
def list_farmouts(
    status: Optional[FarmoutStatus] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    return fleet_service.list_farmouts(context.tenant_id, status=status, start_date=start_date, end_date=end_date)


@router.patch("/{farmout_id}")
def update_farmout(
    farmout_id: str,
    request: FarmoutUpdateRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return fleet_service.update_farmout(farmout_id, request, tenant_id=context.tenant_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Farmout not found")
    except Exception as exc:
        logger.error("Failed to update farmout", farmout_id=farmout_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
