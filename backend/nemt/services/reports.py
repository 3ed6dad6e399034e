"""Driver punctuality and performance reports."""
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from nemt.models.fleet import ProfileRole, TripStatus
from nemt.services.store import parse_iso_utc, store

EARLY_THRESHOLD_MINUTES = -5.0
LATE_THRESHOLD_MINUTES = 5.0
PERFORMANCE_LATE_MINUTES = 15.0


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _pickup_delay_minutes(trip: Dict[str, Any]) -> Optional[float]:
    scheduled = parse_iso_utc(trip.get("scheduled_pickup_time"))
    actual = parse_iso_utc(trip.get("actual_pickup_time"))
    if scheduled is None or actual is None:
        return None
    return (actual - scheduled).total_seconds() / 60.0


def _in_range(trip: Dict[str, Any], start_date: Optional[date], end_date: Optional[date]) -> bool:
    scheduled = parse_iso_utc(trip.get("scheduled_pickup_time"))
    if scheduled is None:
        return False
    if start_date and scheduled.date() < start_date:
        return False
    if end_date and scheduled.date() > end_date:
        return False
    return True


def driver_score_report(
    trips: List[Dict[str, Any]],
    driver_names: Dict[str, str],
) -> Dict[str, Any]:
    """Classify completed pickups as early, on time, or late per driver.

    A pickup more than 5 minutes ahead of schedule is early, more than 5
    minutes behind is late, anything in between is on time. Early counts
    toward the actual on-time score.
    """
    per_driver: Dict[str, Dict[str, int]] = {}
    for trip in trips:
        if trip.get("status") != TripStatus.COMPLETED.value or not trip.get("driver_id"):
            continue
        delay = _pickup_delay_minutes(trip)
        if delay is None:
            continue
        bucket = per_driver.setdefault(trip["driver_id"], {"total": 0, "early": 0, "on_time": 0, "late": 0})
        bucket["total"] += 1
        if delay < EARLY_THRESHOLD_MINUTES:
            bucket["early"] += 1
        elif delay <= LATE_THRESHOLD_MINUTES:
            bucket["on_time"] += 1
        else:
            bucket["late"] += 1

    drivers: List[Dict[str, Any]] = []
    totals = {"total": 0, "early": 0, "on_time": 0, "late": 0}
    for driver_id, bucket in per_driver.items():
        for key in totals:
            totals[key] += bucket[key]
        drivers.append(
            {
                "driver_id": driver_id,
                "driver_name": driver_names.get(driver_id, "Unknown"),
                "total_trips": bucket["total"],
                "early": bucket["early"],
                "on_time": bucket["on_time"],
                "late": bucket["late"],
                "early_pct": _pct(bucket["early"], bucket["total"]),
                "on_time_pct": _pct(bucket["on_time"], bucket["total"]),
                "late_pct": _pct(bucket["late"], bucket["total"]),
                "actual_on_time_score": _pct(bucket["early"] + bucket["on_time"], bucket["total"]),
            }
        )
    drivers.sort(key=lambda row: (-row["actual_on_time_score"], row["driver_name"]))

    return {
        "drivers": drivers,
        "totals": {
            "total_trips": totals["total"],
            "early": totals["early"],
            "on_time": totals["on_time"],
            "late": totals["late"],
            "actual_on_time_score": _pct(totals["early"] + totals["on_time"], totals["total"]),
        },
    }


def driver_performance(
    trips: List[Dict[str, Any]],
    driver_names: Dict[str, str],
) -> List[Dict[str, Any]]:
    """Trip counts, earnings, distance and punctuality per driver."""
    stats: Dict[str, Dict[str, Any]] = {}
    for trip in trips:
        driver_id = trip.get("driver_id")
        if not driver_id:
            continue
        row = stats.setdefault(
            driver_id,
            {
                "driver_id": driver_id,
                "driver_name": driver_names.get(driver_id, "Unknown"),
                "total_trips": 0,
                "completed_trips": 0,
                "cancelled_trips": 0,
                "total_earnings": 0.0,
                "total_distance": 0.0,
                "on_time_trips": 0,
                "late_trips": 0,
            },
        )
        row["total_trips"] += 1
        status = trip.get("status")
        if status == TripStatus.CANCELLED.value:
            row["cancelled_trips"] += 1
            continue
        if status != TripStatus.COMPLETED.value:
            continue
        row["completed_trips"] += 1
        row["total_earnings"] += float(trip.get("trip_fare") or 0.0)
        row["total_distance"] += float(trip.get("distance_miles") or 0.0)
        delay = _pickup_delay_minutes(trip)
        if delay is None:
            continue
        if delay <= PERFORMANCE_LATE_MINUTES:
            row["on_time_trips"] += 1
        else:
            row["late_trips"] += 1

    results = list(stats.values())
    for row in results:
        row["total_earnings"] = round(row["total_earnings"], 2)
        row["total_distance"] = round(row["total_distance"], 2)
        row["completion_rate"] = _pct(row["completed_trips"], row["total_trips"])
        row["on_time_rate"] = _pct(row["on_time_trips"], row["on_time_trips"] + row["late_trips"])
    results.sort(key=lambda row: row["total_trips"], reverse=True)
    return results


class ReportService:
    def _driver_names(self, tenant_id: str) -> Dict[str, str]:
        return {
            row["profile_id"]: row.get("full_name") or "Unknown"
            for row in store.list_profiles(tenant_id, role=ProfileRole.DRIVER.value)
        }

    def _trips(self, tenant_id: str, start_date: Optional[date], end_date: Optional[date]) -> List[Dict[str, Any]]:
        return [row for row in store.list_trips(tenant_id) if _in_range(row, start_date, end_date)]

    def driver_scores(self, tenant_id: str, start_date: Optional[date], end_date: Optional[date]) -> Dict[str, Any]:
        if start_date and end_date and end_date < start_date:
            raise ValueError("end_date must not precede start_date")
        report = driver_score_report(self._trips(tenant_id, start_date, end_date), self._driver_names(tenant_id))
        report["start_date"] = start_date.isoformat() if start_date else None
        report["end_date"] = end_date.isoformat() if end_date else None
        return report

    def performance(self, tenant_id: str, start_date: Optional[date], end_date: Optional[date]) -> List[Dict[str, Any]]:
        if start_date and end_date and end_date < start_date:
            raise ValueError("end_date must not precede start_date")
        return driver_performance(self._trips(tenant_id, start_date, end_date), self._driver_names(tenant_id))


report_service = ReportService()
