"""API routes for driver pay rates and payroll periods."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from nemt.core.auth import TenantContext, require_roles
from nemt.core.logging import logger
from nemt.models.billing import PayRateRequest, PayrollCalculateRequest
from nemt.services.payroll import payroll_service, quick_period_window

router = APIRouter(prefix="/payroll", tags=["payroll"])


@router.get("/rates")
def list_pay_rates(context: TenantContext = Depends(require_roles("billing", "admin"))):
    items = payroll_service.list_pay_rates(context.tenant_id)
    return {"items": items, "total": len(items)}


@router.put("/rates/{driver_id}")
def set_pay_rate(
    driver_id: str,
    request: PayRateRequest,
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    try:
        return payroll_service.set_pay_rate(driver_id, request, tenant_id=context.tenant_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Driver not found")
    except Exception as exc:
        logger.error("Failed to set pay rate", driver_id=driver_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/quick-period")
def quick_period(
    kind: str = Query(default="week", pattern="^(week|biweek)$"),
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    return quick_period_window(kind).model_dump(mode="json")


@router.post("/calculate")
def calculate_payroll(
    request: PayrollCalculateRequest,
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    try:
        return payroll_service.calculate(request, tenant_id=context.tenant_id).model_dump(mode="json")
    except Exception as exc:
        logger.error("Failed to calculate payroll", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/periods")
def list_periods(context: TenantContext = Depends(require_roles("billing", "admin"))):
    items = payroll_service.list_periods(context.tenant_id)
    return {"items": items, "total": len(items)}


@router.get("/periods/{period_id}")
def get_period(period_id: str, context: TenantContext = Depends(require_roles("billing", "admin"))):
    try:
        return payroll_service.get_period(context.tenant_id, period_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Payroll period not found")


@router.post("/periods/{period_id}/process")
def mark_period_processed(
    period_id: str,
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    try:
        return payroll_service.mark_processed(context.tenant_id, period_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Payroll period not found")
    except Exception as exc:
        logger.error("Failed to process payroll period", period_id=period_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
