"""Billing and payroll models."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PayrollPeriodStatus(str, Enum):
    DRAFT = "draft"
    PROCESSED = "processed"


# ==================== INVOICES ====================

class InvoiceCreateRequest(BaseModel):
    """Bill a completed trip."""

    trip_id: str
    amount: Optional[float] = Field(default=None, ge=0)
    billing_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceStatusRequest(BaseModel):
    status: InvoiceStatus
    payment_method: Optional[str] = None
    paid_date: Optional[date] = None


class InvoiceRecord(BaseModel):
    invoice_id: str
    invoice_number: str
    trip_id: str
    patient_id: Optional[str] = None
    amount: float = 0.0
    status: InvoiceStatus = InvoiceStatus.PENDING
    billing_date: date
    due_date: Optional[date] = None
    paid_date: Optional[date] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class InvoiceSummary(BaseModel):
    """Dollar totals per invoice status."""

    total: float = 0.0
    pending: float = 0.0
    paid: float = 0.0
    overdue: float = 0.0


class InvoiceListResponse(BaseModel):
    items: List[InvoiceRecord]
    summary: InvoiceSummary


# ==================== PAYROLL ====================

class PayRateRequest(BaseModel):
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    wheelchair_bonus: Optional[float] = Field(default=None, ge=0)
    mileage_rate: Optional[float] = Field(default=None, ge=0)
    effective_date: Optional[date] = None


class PayRateRecord(BaseModel):
    driver_id: str
    hourly_rate: Optional[float] = None
    wheelchair_bonus: float = 0.0
    mileage_rate: float = 0.0
    effective_date: date
    updated_at: datetime = Field(default_factory=_utcnow)


class PayrollCalculateRequest(BaseModel):
    start_date: date
    end_date: date


class PayrollEntry(BaseModel):
    """Per-driver pay breakdown for one period."""

    entry_id: str
    period_id: str
    driver_id: str
    driver_name: str = "Unknown"
    total_trips: int = 0
    active_hours: float = 0.0
    total_miles: float = 0.0
    wheelchair_hours: float = 0.0
    ambulatory_hours: float = 0.0
    hourly_rate: float = 0.0
    hourly_pay: float = 0.0
    mileage_pay: float = 0.0
    bonus_pay: float = 0.0
    total_pay: float = 0.0


class PayrollPeriod(BaseModel):
    period_id: str
    start_date: date
    end_date: date
    status: PayrollPeriodStatus = PayrollPeriodStatus.DRAFT
    total_amount: float = 0.0
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)


class PayrollRunResponse(BaseModel):
    period: PayrollPeriod
    entries: List[PayrollEntry]


class PayrollWindow(BaseModel):
    start_date: date
    end_date: date
