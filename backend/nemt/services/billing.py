"""Invoices generated from completed trips."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.billing import (
    InvoiceCreateRequest,
    InvoiceListResponse,
    InvoiceRecord,
    InvoiceStatus,
    InvoiceStatusRequest,
    InvoiceSummary,
)
from nemt.models.fleet import TripStatus
from nemt.services.store import store


class BillingService:
    ALLOWED_STATUS_TRANSITIONS = {
        InvoiceStatus.PENDING.value: {
            InvoiceStatus.PAID.value,
            InvoiceStatus.OVERDUE.value,
            InvoiceStatus.CANCELLED.value,
        },
        InvoiceStatus.OVERDUE.value: {InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value},
        InvoiceStatus.PAID.value: set(),
        InvoiceStatus.CANCELLED.value: set(),
    }

    @staticmethod
    def _today() -> date:
        return datetime.now(timezone.utc).date()

    def create_invoice(self, request: InvoiceCreateRequest, tenant_id: str, actor: str) -> Dict[str, Any]:
        trip = store.get_trip(tenant_id, request.trip_id)
        if not trip:
            raise KeyError(request.trip_id)
        if trip.get("status") != TripStatus.COMPLETED.value:
            raise ValueError(f"Trip {request.trip_id} is {trip.get('status')}; only completed trips can be billed")
        open_invoices = [
            row
            for row in store.list_invoices(tenant_id, trip_id=request.trip_id)
            if row.get("status") != InvoiceStatus.CANCELLED.value
        ]
        if open_invoices:
            raise ValueError(f"Trip {request.trip_id} already has invoice {open_invoices[0]['invoice_number']}")

        billing_date = request.billing_date or self._today()
        invoice_number = store.generate_id(tenant_id, "invoice", "INV")
        record = InvoiceRecord(
            invoice_id=invoice_number,
            invoice_number=invoice_number,
            trip_id=request.trip_id,
            patient_id=trip.get("patient_id"),
            amount=request.amount if request.amount is not None else float(trip.get("trip_fare") or 0.0),
            status=InvoiceStatus.PENDING,
            billing_date=billing_date,
            due_date=billing_date + timedelta(days=get_settings().invoice_due_days),
            notes=request.notes,
        )
        row = store.upsert_invoice(tenant_id, record.model_dump(mode="json"))
        store.record_timeline_event(
            tenant_id,
            request.trip_id,
            event_type="invoice_created",
            actor=actor,
            details={"invoice_number": invoice_number, "amount": record.amount},
        )
        logger.info("Invoice created", tenant_id=tenant_id, invoice_number=invoice_number, trip_id=request.trip_id)
        return row

    def get_invoice(self, tenant_id: str, invoice_id: str) -> Dict[str, Any]:
        row = store.get_invoice(tenant_id, invoice_id)
        if not row:
            raise KeyError(invoice_id)
        return row

    def list_invoices(self, tenant_id: str, status: Optional[InvoiceStatus] = None) -> InvoiceListResponse:
        rows = store.list_invoices(tenant_id, status=status.value if status else None)
        items = [InvoiceRecord(**row) for row in rows]
        return InvoiceListResponse(items=items, summary=summarize_invoices(items))

    def update_status(
        self,
        invoice_id: str,
        request: InvoiceStatusRequest,
        tenant_id: str,
        actor: str,
    ) -> Dict[str, Any]:
        existing = self.get_invoice(tenant_id, invoice_id)
        current = existing.get("status")
        target = request.status.value
        if current == target:
            return existing
        allowed = self.ALLOWED_STATUS_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise ValueError(f"Invalid invoice transition {current} -> {target}. Allowed: {sorted(allowed)}")

        existing["status"] = target
        if target == InvoiceStatus.PAID.value:
            existing["paid_date"] = (request.paid_date or self._today()).isoformat()
            existing["payment_method"] = request.payment_method
        row = store.upsert_invoice(tenant_id, InvoiceRecord(**existing).model_dump(mode="json"))
        store.record_timeline_event(
            tenant_id,
            existing["trip_id"],
            event_type="invoice_status_changed",
            actor=actor,
            details={"invoice_number": existing["invoice_number"], "from": current, "to": target},
        )
        return row

    def mark_overdue(self, tenant_id: str, today: Optional[date] = None) -> List[str]:
        """Flip pending invoices past their due date to overdue."""
        today = today or self._today()
        flipped: List[str] = []
        for row in store.list_invoices(tenant_id, status=InvoiceStatus.PENDING.value):
            due = row.get("due_date")
            if not due or date.fromisoformat(due) >= today:
                continue
            row["status"] = InvoiceStatus.OVERDUE.value
            store.upsert_invoice(tenant_id, row)
            flipped.append(row["invoice_id"])
        if flipped:
            logger.info("Invoices marked overdue", tenant_id=tenant_id, count=len(flipped))
        return flipped


def summarize_invoices(items: List[InvoiceRecord]) -> InvoiceSummary:
    summary = InvoiceSummary()
    for item in items:
        summary.total += item.amount
        if item.status == InvoiceStatus.PENDING:
            summary.pending += item.amount
        elif item.status == InvoiceStatus.PAID:
            summary.paid += item.amount
        elif item.status == InvoiceStatus.OVERDUE:
            summary.overdue += item.amount
    summary.total = round(summary.total, 2)
    summary.pending = round(summary.pending, 2)
    summary.paid = round(summary.paid, 2)
    summary.overdue = round(summary.overdue, 2)
    return summary


billing_service = BillingService()
