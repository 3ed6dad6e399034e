"""Active-time driver payroll."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from nemt.core.config import get_settings
from nemt.core.logging import logger
from nemt.models.billing import (
    PayRateRecord,
    PayRateRequest,
    PayrollCalculateRequest,
    PayrollEntry,
    PayrollPeriod,
    PayrollPeriodStatus,
    PayrollRunResponse,
    PayrollWindow,
)
from nemt.models.fleet import ProfileRole, TripStatus
from nemt.services.store import parse_iso_utc, store

WEDNESDAY = 2
QUICK_PERIOD_DAYS = {"week": 7, "biweek": 14}


def quick_period_window(kind: str, today: Optional[date] = None) -> PayrollWindow:
    """Week or two-week window ending on the last Wednesday before today."""
    span = QUICK_PERIOD_DAYS.get(kind)
    if span is None:
        raise ValueError(f"Unknown period '{kind}'. Expected one of: {sorted(QUICK_PERIOD_DAYS)}")
    today = today or datetime.now(timezone.utc).date()
    days_back = (today.weekday() - WEDNESDAY) % 7 or 7
    end = today - timedelta(days=days_back)
    return PayrollWindow(start_date=end - timedelta(days=span - 1), end_date=end)


def summarize_driver_time(
    trips: List[Dict[str, Any]],
    start_date: date,
    end_date: date,
) -> Dict[str, Dict[str, float]]:
    """Aggregate trip count, minutes, and miles per driver inside the window.

    The window runs from start_date 00:00 UTC up to (not including)
    end_date + 1 day, so the end date is inclusive.
    """
    window_start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    window_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    totals: Dict[str, Dict[str, float]] = {}

    for trip in trips:
        if trip.get("status") != TripStatus.COMPLETED.value or not trip.get("driver_id"):
            continue
        pickup = parse_iso_utc(trip.get("actual_pickup_time"))
        dropoff = parse_iso_utc(trip.get("actual_dropoff_time"))
        if pickup is None or dropoff is None:
            continue
        if pickup < window_start or dropoff >= window_end:
            continue
        minutes = (dropoff - pickup).total_seconds() / 60.0
        if minutes < 0:
            logger.warning("Skipping trip with dropoff before pickup", trip_id=trip.get("trip_id"))
            continue

        bucket = totals.setdefault(
            trip["driver_id"],
            {"trips": 0, "minutes": 0.0, "miles": 0.0, "wheelchair_minutes": 0.0, "ambulatory_minutes": 0.0},
        )
        bucket["trips"] += 1
        bucket["minutes"] += minutes
        bucket["miles"] += float(trip.get("distance_miles") or 0.0)
        if trip.get("space_type") == "wheelchair":
            bucket["wheelchair_minutes"] += minutes
        else:
            bucket["ambulatory_minutes"] += minutes
    return totals


class PayrollService:
    def __init__(self) -> None:
        self.settings = get_settings()

    def set_pay_rate(self, driver_id: str, request: PayRateRequest, tenant_id: str) -> Dict[str, Any]:
        driver = store.get_profile(tenant_id, driver_id)
        if not driver or driver.get("role") != ProfileRole.DRIVER.value:
            raise KeyError(driver_id)
        existing = store.get_pay_rate(tenant_id, driver_id) or {}
        patch = request.model_dump(exclude_none=True)
        record = PayRateRecord(
            driver_id=driver_id,
            hourly_rate=patch.get("hourly_rate", existing.get("hourly_rate")),
            wheelchair_bonus=patch.get("wheelchair_bonus", existing.get("wheelchair_bonus", 0.0)),
            mileage_rate=patch.get("mileage_rate", existing.get("mileage_rate", 0.0)),
            effective_date=patch.get("effective_date") or datetime.now(timezone.utc).date(),
        )
        return store.upsert_pay_rate(tenant_id, record.model_dump(mode="json"))

    def list_pay_rates(self, tenant_id: str) -> List[Dict[str, Any]]:
        return store.list_pay_rates(tenant_id)

    def _rate_for(self, tenant_id: str, driver_id: str) -> float:
        rate = store.get_pay_rate(tenant_id, driver_id) or {}
        # A zero rate is treated as unset.
        if not rate.get("hourly_rate"):
            return float(self.settings.default_hourly_rate)
        return float(rate["hourly_rate"])

    def calculate(self, request: PayrollCalculateRequest, tenant_id: str) -> PayrollRunResponse:
        if request.end_date < request.start_date:
            raise ValueError("end_date must not precede start_date")

        trips = store.list_trips(tenant_id, status=TripStatus.COMPLETED.value)
        totals = summarize_driver_time(trips, request.start_date, request.end_date)
        if not totals:
            raise ValueError("No completed trips found for this period")

        period_id = store.generate_id(tenant_id, "payroll_period", "PAY")
        entries: List[PayrollEntry] = []
        for driver_id in sorted(totals):
            bucket = totals[driver_id]
            profile = store.get_profile(tenant_id, driver_id) or {}
            rate = self._rate_for(tenant_id, driver_id)
            hours = bucket["minutes"] / 60.0
            hourly_pay = round(hours * rate, 2)
            entries.append(
                PayrollEntry(
                    entry_id=store.generate_id(tenant_id, "payroll_entry", "PAYE"),
                    period_id=period_id,
                    driver_id=driver_id,
                    driver_name=profile.get("full_name") or "Unknown",
                    total_trips=int(bucket["trips"]),
                    active_hours=round(hours, 4),
                    total_miles=round(bucket["miles"], 2),
                    wheelchair_hours=round(bucket["wheelchair_minutes"] / 60.0, 4),
                    ambulatory_hours=round(bucket["ambulatory_minutes"] / 60.0, 4),
                    hourly_rate=rate,
                    hourly_pay=hourly_pay,
                    mileage_pay=0.0,
                    bonus_pay=0.0,
                    total_pay=hourly_pay,
                )
            )

        period = PayrollPeriod(
            period_id=period_id,
            start_date=request.start_date,
            end_date=request.end_date,
            status=PayrollPeriodStatus.DRAFT,
            total_amount=round(sum(entry.total_pay for entry in entries), 2),
        )
        store.save_payroll_run(
            tenant_id,
            period.model_dump(mode="json"),
            [entry.model_dump(mode="json") for entry in entries],
        )
        logger.info(
            "Payroll calculated",
            tenant_id=tenant_id,
            period_id=period_id,
            drivers=len(entries),
            total_amount=period.total_amount,
        )
        return PayrollRunResponse(period=period, entries=entries)

    def list_periods(self, tenant_id: str) -> List[Dict[str, Any]]:
        return store.list_payroll_periods(tenant_id)

    def get_period(self, tenant_id: str, period_id: str) -> Dict[str, Any]:
        period = store.get_payroll_period(tenant_id, period_id)
        if not period:
            raise KeyError(period_id)
        return {"period": period, "entries": store.list_payroll_entries(tenant_id, period_id)}

    def mark_processed(self, tenant_id: str, period_id: str) -> Dict[str, Any]:
        period = store.get_payroll_period(tenant_id, period_id)
        if not period:
            raise KeyError(period_id)
        if period.get("status") == PayrollPeriodStatus.PROCESSED.value:
            raise ValueError(f"Payroll period {period_id} is already processed")
        period["status"] = PayrollPeriodStatus.PROCESSED.value
        period["processed_at"] = datetime.now(timezone.utc).isoformat()
        return store.update_payroll_period(tenant_id, period)


payroll_service = PayrollService()
