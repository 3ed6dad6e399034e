"""Nearest-driver batch proposals and the multi-trip route optimizer.

Both heuristics are greedy and make a single pass over trips in pickup
order. They operate on plain store records and never touch persistence, so
dispatchers can review and edit results before anything is committed.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from nemt.models.dispatch import AssignmentProposal, OptimizedRoute
from nemt.services.geo import MINUTES_PER_MILE, eta_minutes, haversine_miles, point
from nemt.services.store import parse_iso_utc

# Route optimizer cost weights.
TIME_MISMATCH_WEIGHT = 0.5
ROUTE_LOAD_PENALTY = 5.0


def _pickup_sort_key(trip: Dict[str, Any]) -> datetime:
    return parse_iso_utc(trip.get("scheduled_pickup_time")) or datetime.max.replace(tzinfo=timezone.utc)


def _driver_point(driver: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    return point(driver, "current_latitude", "current_longitude")


def _proposal(trip: Dict[str, Any], driver: Optional[Dict[str, Any]], distance: Optional[float]) -> AssignmentProposal:
    return AssignmentProposal(
        trip_id=trip["trip_id"],
        scheduled_pickup_time=trip["scheduled_pickup_time"],
        pickup_address=trip.get("pickup_address") or "",
        driver_id=driver["profile_id"] if driver else None,
        driver_name=driver.get("full_name") if driver else None,
        distance_miles=round(distance, 2) if distance is not None else None,
        eta_minutes=eta_minutes(distance) if distance is not None else None,
    )


def propose_batch_assignments(
    trips: List[Dict[str, Any]],
    drivers: List[Dict[str, Any]],
) -> List[AssignmentProposal]:
    """Pair each trip with the closest driver not already used in this batch."""
    used: set[str] = set()
    proposals: List[AssignmentProposal] = []

    for trip in sorted(trips, key=_pickup_sort_key):
        pickup = point(trip, "pickup_latitude", "pickup_longitude")
        if pickup is None:
            proposals.append(_proposal(trip, None, None))
            continue

        best: Optional[Dict[str, Any]] = None
        best_distance = float("inf")
        for driver in drivers:
            if driver["profile_id"] in used:
                continue
            position = _driver_point(driver)
            if position is None:
                continue
            distance = haversine_miles(pickup[0], pickup[1], position[0], position[1])
            if distance < best_distance:
                best = driver
                best_distance = distance

        if best is None:
            proposals.append(_proposal(trip, None, None))
            continue
        used.add(best["profile_id"])
        proposals.append(_proposal(trip, best, best_distance))

    return proposals


def override_assignment(
    proposals: List[AssignmentProposal],
    trips: Dict[str, Dict[str, Any]],
    trip_id: str,
    driver: Optional[Dict[str, Any]],
) -> List[AssignmentProposal]:
    """Swap the driver on one proposal and recompute its distance and ETA."""
    index = next((i for i, item in enumerate(proposals) if item.trip_id == trip_id), None)
    if index is None:
        raise KeyError(trip_id)
    trip = trips.get(trip_id)
    if trip is None:
        raise KeyError(trip_id)

    distance: Optional[float] = None
    if driver is not None:
        pickup = point(trip, "pickup_latitude", "pickup_longitude")
        position = _driver_point(driver)
        if pickup is not None and position is not None:
            distance = haversine_miles(pickup[0], pickup[1], position[0], position[1])

    updated = list(proposals)
    updated[index] = _proposal(trip, driver, distance)
    return updated


def _route_origin(route: Dict[str, Any]) -> Tuple[float, float]:
    if route["trips"]:
        last = route["trips"][-1]
        dropoff = point(last, "dropoff_latitude", "dropoff_longitude")
        return dropoff or point(last, "pickup_latitude", "pickup_longitude")
    return route["position"]


def optimize_routes(
    trips: List[Dict[str, Any]],
    drivers: List[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> List[OptimizedRoute]:
    """Chain trips onto driver routes by lowest distance/timing/load cost.

    cost = leg distance
           + 0.5 * |leg travel minutes - minutes until scheduled pickup|
           + 5 * trips already on the route
    """
    now = now or datetime.now(timezone.utc)
    routes: List[Dict[str, Any]] = []
    for driver in drivers:
        position = _driver_point(driver)
        if position is None:
            continue
        routes.append(
            {
                "driver": driver,
                "position": position,
                "trips": [],
                "total_distance": 0.0,
                "total_time": 0.0,
            }
        )
    if not routes:
        raise ValueError("No available drivers found")

    for trip in sorted(trips, key=_pickup_sort_key):
        pickup = point(trip, "pickup_latitude", "pickup_longitude")
        if pickup is None:
            continue
        scheduled = parse_iso_utc(trip.get("scheduled_pickup_time")) or now
        minutes_until = (scheduled - now).total_seconds() / 60.0

        best_route: Optional[Dict[str, Any]] = None
        best_cost = float("inf")
        best_leg = 0.0
        for route in routes:
            origin = _route_origin(route)
            leg = haversine_miles(origin[0], origin[1], pickup[0], pickup[1])
            travel = leg * MINUTES_PER_MILE
            cost = leg + TIME_MISMATCH_WEIGHT * abs(travel - minutes_until) + ROUTE_LOAD_PENALTY * len(route["trips"])
            if cost < best_cost:
                best_route = route
                best_cost = cost
                best_leg = leg

        if best_route is None:
            continue
        best_route["trips"].append(trip)
        best_route["total_distance"] += best_leg
        best_route["total_time"] += best_leg * MINUTES_PER_MILE
        dropoff = point(trip, "dropoff_latitude", "dropoff_longitude")
        if dropoff is not None:
            best_route["total_distance"] += haversine_miles(pickup[0], pickup[1], dropoff[0], dropoff[1])

    optimized: List[OptimizedRoute] = []
    for route in routes:
        count = len(route["trips"])
        if not count:
            continue
        avg_distance = route["total_distance"] / count
        avg_time = route["total_time"] / count
        efficiency = max(0.0, 100.0 - (avg_distance * 2 + avg_time * 0.5))
        optimized.append(
            OptimizedRoute(
                driver_id=route["driver"]["profile_id"],
                driver_name=route["driver"].get("full_name") or "",
                trip_ids=[item["trip_id"] for item in route["trips"]],
                total_distance=round(route["total_distance"], 2),
                total_time=round(route["total_time"], 2),
                efficiency_score=round(efficiency, 2),
            )
        )

    optimized.sort(key=lambda item: item.efficiency_score, reverse=True)
    return optimized
