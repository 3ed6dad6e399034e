"""API routes for driver reports."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from nemt.core.auth import TenantContext, get_tenant_context
from nemt.services.reports import report_service

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/driver-scores")
def driver_scores(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    try:
        return report_service.driver_scores(context.tenant_id, start_date, end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/driver-performance")
def driver_performance(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    try:
        items = report_service.performance(context.tenant_id, start_date, end_date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"items": items, "total": len(items)}
