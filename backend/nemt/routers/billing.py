"""API routes for trip invoicing."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from nemt.core.auth import TenantContext, require_roles
from nemt.core.logging import logger
from nemt.models.billing import InvoiceCreateRequest, InvoiceStatus, InvoiceStatusRequest
from nemt.routers.common import idempotency_lookup, idempotency_store
from nemt.services.billing import billing_service

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/invoices")
def create_invoice(
    request: InvoiceCreateRequest,
    context: TenantContext = Depends(require_roles("billing", "admin")),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    cached = idempotency_lookup(context, f"create_invoice:{request.trip_id}", idempotency_key)
    if cached:
        return cached
    try:
        response = billing_service.create_invoice(request, tenant_id=context.tenant_id, actor=context.actor)
        idempotency_store(context, f"create_invoice:{request.trip_id}", idempotency_key, response)
        return response
    except KeyError:
        raise HTTPException(status_code=404, detail="Trip not found")
    except Exception as exc:
        logger.error("Failed to create invoice", trip_id=request.trip_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/invoices")
def list_invoices(
    status: Optional[InvoiceStatus] = Query(default=None),
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    return billing_service.list_invoices(context.tenant_id, status=status).model_dump(mode="json")


@router.post("/invoices/mark-overdue")
def mark_overdue(context: TenantContext = Depends(require_roles("billing", "admin"))):
    flipped = billing_service.mark_overdue(context.tenant_id)
    return {"updated": flipped, "count": len(flipped)}


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, context: TenantContext = Depends(require_roles("billing", "admin"))):
    try:
        return billing_service.get_invoice(context.tenant_id, invoice_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Invoice not found")


@router.post("/invoices/{invoice_id}/status")
def update_invoice_status(
    invoice_id: str,
    request: InvoiceStatusRequest,
    context: TenantContext = Depends(require_roles("billing", "admin")),
):
    try:
        return billing_service.update_status(invoice_id, request, tenant_id=context.tenant_id, actor=context.actor)
    except KeyError:
        raise HTTPException(status_code=404, detail="Invoice not found")
    except Exception as exc:
        logger.error("Failed to update invoice status", invoice_id=invoice_id, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
