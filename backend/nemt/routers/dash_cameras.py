"""API routes for dash-camera devices, events, and driver safety scores."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.safety import CameraDeviceRequest, EventSeverity
from nemt.services.dash_camera import WebhookSignatureError, dash_camera_service

router = APIRouter(prefix="/dash-cameras", tags=["dash-cameras"])


@router.post("/webhook")
async def camera_webhook(
    request: Request,
    tenant_id: Optional[str] = Query(default=None),
    x_raven_signature: str | None = Header(default=None, alias="X-Raven-Signature"),
):
    raw_body = await request.body()
    tenant = (tenant_id or get_settings().default_tenant_id or "demo").strip() or "demo"
    try:
        result = dash_camera_service.handle_webhook(tenant, raw_body, x_raven_signature)
    except WebhookSignatureError as exc:
        logger.warning("Camera webhook rejected", error=str(exc))
        raise HTTPException(status_code=401, detail=str(exc))
    except ValueError as exc:
        logger.error("Invalid camera webhook payload", error=str(exc))
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    return result.model_dump(exclude_none=True)


@router.post("/devices")
def register_device(
    request: CameraDeviceRequest,
    context: TenantContext = Depends(require_roles("admin", "dispatcher")),
):
    try:
        return dash_camera_service.register_device(context.tenant_id, request.device_id, request.vehicle_id)
    except Exception as exc:
        logger.error("Failed to register camera device", device_id=request.device_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/events")
def list_events(
    driver_id: Optional[str] = Query(default=None),
    vehicle_id: Optional[str] = Query(default=None),
    severity: Optional[EventSeverity] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    context: TenantContext = Depends(get_tenant_context),
):
    items = dash_camera_service.list_events(
        context.tenant_id,
        driver_id=driver_id,
        vehicle_id=vehicle_id,
        severity=severity,
        limit=limit,
    )
    return {"items": items, "total": len(items)}


@router.get("/safety-scores")
def list_safety_scores(
    driver_id: Optional[str] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = dash_camera_service.list_scores(
        context.tenant_id,
        driver_id=driver_id,
        start_date=start_date,
        end_date=end_date,
    )
    return {"items": items, "total": len(items)}
