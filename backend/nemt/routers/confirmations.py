"""API routes for automated trip confirmation calls and carrier callbacks."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Response

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.safety import ConfirmationCallRequest, ConfirmationStatus
from nemt.services.confirmations import ERROR_MESSAGE, confirmation_service
from nemt.services.telephony import TelephonyError, say_response, telephony_client

router = APIRouter(prefix="/confirmations", tags=["confirmations"])


def _callback_tenant(tenant_id: str | None) -> str:
    return (tenant_id or get_settings().default_tenant_id or "demo").strip() or "demo"


def _voice(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


@router.post("/calls")
def start_confirmation_call(
    request: ConfirmationCallRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    if not telephony_client.is_configured():
        raise HTTPException(status_code=503, detail="Telephony not configured")
    try:
        return confirmation_service.start_call(request.trip_id, tenant_id=context.tenant_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except TelephonyError as exc:
        logger.error("Confirmation call failed", trip_id=request.trip_id, error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("")
def list_confirmations(
    status: Optional[ConfirmationStatus] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = confirmation_service.list_confirmations(context.tenant_id, status=status)
    return {"items": items, "total": len(items)}


@router.post("/ivr/callback")
def ivr_callback(
    trip_id: str = Query(default=""),
    language: str = Query(default="english"),
    tenant_id: Optional[str] = Query(default=None),
    digits: Optional[str] = Form(default=None, alias="Digits"),
    call_sid: Optional[str] = Form(default=None, alias="CallSid"),
):
    try:
        body = confirmation_service.handle_keypress(
            _callback_tenant(tenant_id),
            trip_id,
            language,
            digits,
            call_sid=call_sid,
        )
    except Exception as exc:
        logger.error("IVR callback failed", trip_id=trip_id, error=str(exc))
        body = say_response(ERROR_MESSAGE)
    return _voice(body)


@router.post("/ivr/status")
def ivr_status(
    tenant_id: Optional[str] = Query(default=None),
    call_sid: str = Form(alias="CallSid"),
    call_status: str = Form(alias="CallStatus"),
):
    try:
        event = confirmation_service.record_call_status(_callback_tenant(tenant_id), call_sid, call_status)
    except KeyError:
        logger.warning("Status callback for unknown call", call_sid=call_sid, call_status=call_status)
        return {"recorded": False}
    return {"recorded": True, "call_sid": event["call_sid"], "status": event["status"]}
