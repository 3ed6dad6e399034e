"""API routes for batch assignment and route optimization."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from nemt.core.auth import TenantContext, get_tenant_context, require_roles
from nemt.core.logging import logger
from nemt.models.dispatch import (
    BatchCommitRequest,
    BatchProposalRequest,
    ProposalOverrideRequest,
    RouteApplyRequest,
    RouteOptimizeRequest,
)
from nemt.routers.common import idempotency_lookup, idempotency_store
from nemt.services.dispatch import dispatch_engine

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


@router.get("/drivers/available")
def available_drivers(context: TenantContext = Depends(get_tenant_context)):
    items = dispatch_engine.available_drivers(context.tenant_id)
    return {"items": items, "total": len(items)}


@router.post("/batch/propose")
def propose_batch(
    request: BatchProposalRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return dispatch_engine.propose_batch(request, tenant_id=context.tenant_id).model_dump(mode="json")
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Trip not found: {exc.args[0]}")
    except Exception as exc:
        logger.error("Failed to propose batch assignments", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/batch/override")
def override_proposal(
    request: ProposalOverrideRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return dispatch_engine.override_proposal(request, tenant_id=context.tenant_id).model_dump(mode="json")
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found in proposals")
    except Exception as exc:
        logger.error("Failed to override proposal", trip_id=request.trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/batch/commit")
def commit_batch(
    request: BatchCommitRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, "commit_batch", idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.commit_batch(
            request,
            tenant_id=context.tenant_id,
            actor=context.actor,
        ).model_dump(mode="json")
        idempotency_store(context, "commit_batch", idempotency_key, response)
        return response
    except Exception as exc:
        logger.error("Failed to commit batch assignments", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/routes/optimize")
def optimize_routes(
    request: RouteOptimizeRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
):
    try:
        return dispatch_engine.optimize(request, tenant_id=context.tenant_id).model_dump(mode="json")
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Trip not found: {exc.args[0]}")
    except Exception as exc:
        logger.error("Failed to optimize routes", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/routes/apply")
def apply_routes(
    request: RouteApplyRequest,
    context: TenantContext = Depends(require_roles("dispatcher", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, "apply_routes", idempotency_key)
    if cached:
        return cached
    try:
        response = dispatch_engine.apply_routes(
            request,
            tenant_id=context.tenant_id,
            actor=context.actor,
        ).model_dump(mode="json")
        idempotency_store(context, "apply_routes", idempotency_key, response)
        return response
    except Exception as exc:
        logger.error("Failed to apply routes", error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/notifications")
def list_notifications(
    user_id: Optional[str] = Query(default=None),
    context: TenantContext = Depends(get_tenant_context),
):
    items = dispatch_engine.notifications(context.tenant_id, user_id=user_id)
    return {"items": items, "total": len(items)}
