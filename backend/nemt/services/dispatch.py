"""Trip lifecycle, driver assignment, and route commit orchestration."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from nemt.core.logging import logger
from nemt.models.dispatch import (
    AssignmentFailure,
    AssignmentProposal,
    BatchCommitRequest,
    BatchCommitResponse,
    BatchProposalRequest,
    BatchProposalResponse,
    ProposalOverrideRequest,
    RouteApplyRequest,
    RouteOptimizeRequest,
    RouteOptimizeResponse,
)
from nemt.models.fleet import (
    DriverLocationUpdate,
    ProfileRole,
    ProfileStatus,
    TripCreateRequest,
    TripRecord,
    TripStatus,
    TripStatusTransitionRequest,
    TripUpdateRequest,
)
from nemt.services.assignment import optimize_routes, override_assignment, propose_batch_assignments
from nemt.services.store import parse_iso_utc, store


class DispatchEngine:
    """Dispatcher-facing trip operations.

    Every mutation bumps the trip version and writes a timeline event.
    """

    ALLOWED_STATUS_TRANSITIONS = {
        TripStatus.SCHEDULED.value: {TripStatus.ASSIGNED.value, TripStatus.CANCELLED.value},
        TripStatus.ASSIGNED.value: {
            TripStatus.IN_PROGRESS.value,
            TripStatus.SCHEDULED.value,
            TripStatus.CANCELLED.value,
        },
        TripStatus.IN_PROGRESS.value: {TripStatus.COMPLETED.value, TripStatus.CANCELLED.value},
        TripStatus.COMPLETED.value: set(),
        TripStatus.CANCELLED.value: set(),
    }

    @classmethod
    def _normalize_status(cls, status: Any) -> str:
        if isinstance(status, TripStatus):
            return status.value
        return str(status or "").strip().lower()

    @classmethod
    def _validate_status_transition(cls, current_status: str, next_status: str) -> None:
        if current_status == next_status:
            return
        allowed = cls.ALLOWED_STATUS_TRANSITIONS.get(current_status)
        if allowed is None:
            raise ValueError(f"Unknown current status '{current_status}'")
        if next_status not in allowed:
            raise ValueError(
                f"Invalid status transition {current_status} -> {next_status}. "
                f"Allowed: {sorted(allowed)}"
            )

    @staticmethod
    def _check_version(trip: Dict[str, Any], expected_version: Optional[int]) -> int:
        current_version = int(trip.get("version") or 1)
        if expected_version is not None and int(expected_version) != current_version:
            raise ValueError(
                f"Version conflict for {trip['trip_id']}. expected={expected_version} current={current_version}"
            )
        return current_version

    def _save_trip(self, tenant_id: str, trip: Dict[str, Any]) -> Dict[str, Any]:
        record = TripRecord(**trip)
        return store.upsert_trip(tenant_id, record.model_dump(mode="json"))

    def _require_trip(self, tenant_id: str, trip_id: str) -> Dict[str, Any]:
        trip = store.get_trip(tenant_id, trip_id)
        if not trip:
            raise KeyError(trip_id)
        return trip

    def _require_driver(self, tenant_id: str, driver_id: str) -> Dict[str, Any]:
        driver = store.get_profile(tenant_id, driver_id)
        if not driver or driver.get("role") != ProfileRole.DRIVER.value:
            raise ValueError(f"Driver '{driver_id}' not found")
        return driver

    # ------------------------------------------------------------------ trips

    def create_trip(self, request: TripCreateRequest, tenant_id: str, actor: str) -> Dict[str, Any]:
        if request.patient_id and not store.get_patient(tenant_id, request.patient_id):
            raise ValueError(f"Patient '{request.patient_id}' not found")
        trip_id = request.trip_id or store.generate_id(tenant_id, "trip", "TRIP")
        if store.get_trip(tenant_id, trip_id):
            raise ValueError(f"Trip '{trip_id}' already exists")

        payload = request.model_dump()
        payload["trip_id"] = trip_id
        payload["trip_number"] = request.trip_number or trip_id
        payload["status"] = TripStatus.SCHEDULED
        payload["version"] = 1
        row = self._save_trip(tenant_id, payload)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="trip_created",
            actor=actor,
            details={"scheduled_pickup_time": row["scheduled_pickup_time"]},
        )
        logger.info("Trip created", tenant_id=tenant_id, trip_id=trip_id)
        return row

    def get_trip(self, tenant_id: str, trip_id: str) -> Dict[str, Any]:
        return self._require_trip(tenant_id, trip_id)

    def list_trips(
        self,
        tenant_id: str,
        status: Optional[TripStatus] = None,
        driver_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        rows = store.list_trips(
            tenant_id,
            status=self._normalize_status(status) if status else None,
            driver_id=driver_id,
        )
        if start_date is None and end_date is None:
            return rows
        filtered: List[Dict[str, Any]] = []
        for row in rows:
            scheduled = parse_iso_utc(row.get("scheduled_pickup_time"))
            if scheduled is None:
                continue
            if start_date and scheduled.date() < start_date:
                continue
            if end_date and scheduled.date() > end_date:
                continue
            filtered.append(row)
        return filtered

    def update_trip(self, trip_id: str, request: TripUpdateRequest, tenant_id: str, actor: str) -> Dict[str, Any]:
        existing = self._require_trip(tenant_id, trip_id)
        patch = request.model_dump(exclude_none=True)
        current_version = self._check_version(existing, patch.pop("expected_version", None))
        if self._normalize_status(existing.get("status")) in {TripStatus.COMPLETED.value, TripStatus.CANCELLED.value}:
            if set(patch) - {"notes", "actual_pickup_time", "actual_dropoff_time", "distance_miles", "trip_fare"}:
                raise ValueError(f"Trip {trip_id} is {existing['status']}; only billing fields can change")

        existing.update(patch)
        existing["version"] = current_version + 1
        row = self._save_trip(tenant_id, existing)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="trip_updated",
            actor=actor,
            details={"fields": sorted(patch.keys())},
        )
        return row

    def assign_trip(
        self,
        trip_id: str,
        driver_id: str,
        tenant_id: str,
        actor: str,
        vehicle_id: Optional[str] = None,
        mode: str = "manual",
    ) -> Dict[str, Any]:
        existing = self._require_trip(tenant_id, trip_id)
        self._validate_status_transition(
            self._normalize_status(existing.get("status")),
            TripStatus.ASSIGNED.value,
        )
        driver = self._require_driver(tenant_id, driver_id)
        if driver.get("status") != ProfileStatus.ACTIVE.value:
            raise ValueError(f"Driver '{driver_id}' is {driver.get('status')}")
        if vehicle_id and not store.get_vehicle(tenant_id, vehicle_id):
            raise ValueError(f"Vehicle '{vehicle_id}' not found")

        previous_driver = existing.get("driver_id")
        existing["driver_id"] = driver_id
        existing["vehicle_id"] = vehicle_id or existing.get("vehicle_id") or driver.get("assigned_vehicle_id")
        existing["status"] = TripStatus.ASSIGNED.value
        existing["version"] = int(existing.get("version") or 1) + 1
        row = self._save_trip(tenant_id, existing)

        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="trip_assigned",
            actor=actor,
            details={"mode": mode, "driver_id": driver_id, "previous_driver_id": previous_driver},
        )
        store.add_notification(
            tenant_id,
            driver_id,
            f"New trip assigned: {row.get('pickup_address')} to {row.get('dropoff_address')}",
            trip_id=trip_id,
        )
        logger.info("Trip assigned", tenant_id=tenant_id, trip_id=trip_id, driver_id=driver_id, mode=mode)
        return row

    def unassign_trip(self, trip_id: str, tenant_id: str, actor: str) -> Dict[str, Any]:
        existing = self._require_trip(tenant_id, trip_id)
        current = self._normalize_status(existing.get("status"))
        if current != TripStatus.ASSIGNED.value:
            raise ValueError(f"Trip {trip_id} is {current}; only assigned trips can be unassigned")

        previous_driver = existing.get("driver_id")
        existing["driver_id"] = None
        existing["vehicle_id"] = None
        existing["status"] = TripStatus.SCHEDULED.value
        existing["version"] = int(existing.get("version") or 1) + 1
        row = self._save_trip(tenant_id, existing)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="trip_unassigned",
            actor=actor,
            details={"previous_driver_id": previous_driver},
        )
        return row

    def transition_status(
        self,
        trip_id: str,
        request: TripStatusTransitionRequest,
        tenant_id: str,
        actor: str,
    ) -> Dict[str, Any]:
        existing = self._require_trip(tenant_id, trip_id)
        current_version = self._check_version(existing, request.expected_version)
        current_status = self._normalize_status(existing.get("status"))
        next_status = self._normalize_status(request.status)
        if next_status == TripStatus.ASSIGNED.value and current_status != next_status:
            raise ValueError("Use the assign endpoint to assign a driver")
        self._validate_status_transition(current_status, next_status)

        moment = request.actual_time or datetime.now(timezone.utc)
        if next_status == TripStatus.SCHEDULED.value and current_status == TripStatus.ASSIGNED.value:
            existing["driver_id"] = None
            existing["vehicle_id"] = None
        if next_status == TripStatus.IN_PROGRESS.value:
            existing["actual_pickup_time"] = moment
        if next_status == TripStatus.COMPLETED.value:
            if not existing.get("actual_pickup_time"):
                raise ValueError(f"Trip {trip_id} has no actual pickup time")
            pickup = parse_iso_utc(existing["actual_pickup_time"])
            if pickup and parse_iso_utc(moment) < pickup:
                raise ValueError("Dropoff time cannot precede pickup time")
            existing["actual_dropoff_time"] = moment

        existing["status"] = next_status
        existing["version"] = current_version + 1
        row = self._save_trip(tenant_id, existing)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="status_transition",
            actor=actor,
            details={"from": current_status, "to": next_status},
        )
        logger.info("Trip status changed", tenant_id=tenant_id, trip_id=trip_id, status=next_status)
        return row

    def cancel_trip(self, tenant_id: str, trip_id: str, actor: str, reason: str) -> Dict[str, Any]:
        """Cancel from any non-terminal status; cancelling twice is a no-op."""
        existing = self._require_trip(tenant_id, trip_id)
        current_status = self._normalize_status(existing.get("status"))
        if current_status == TripStatus.CANCELLED.value:
            return existing
        self._validate_status_transition(current_status, TripStatus.CANCELLED.value)
        existing["status"] = TripStatus.CANCELLED.value
        existing["version"] = int(existing.get("version") or 1) + 1
        row = self._save_trip(tenant_id, existing)
        store.record_timeline_event(
            tenant_id,
            trip_id,
            event_type="trip_cancelled",
            actor=actor,
            details={"from": current_status, "reason": reason},
        )
        return row

    def timeline(self, tenant_id: str, trip_id: str) -> List[Dict[str, Any]]:
        self._require_trip(tenant_id, trip_id)
        return store.list_timeline(tenant_id, trip_id)

    # ------------------------------------------------------- batch assignment

    def available_drivers(self, tenant_id: str) -> List[Dict[str, Any]]:
        return store.list_profiles(tenant_id, role=ProfileRole.DRIVER.value, status=ProfileStatus.ACTIVE.value)

    def _scheduled_trips(self, tenant_id: str, trip_ids: List[str]) -> List[Dict[str, Any]]:
        if trip_ids:
            rows = store.list_trips(tenant_id, trip_ids=trip_ids)
            missing = set(trip_ids) - {row["trip_id"] for row in rows}
            if missing:
                raise KeyError(sorted(missing)[0])
        else:
            rows = store.list_trips(tenant_id, status=TripStatus.SCHEDULED.value)
        return [row for row in rows if row.get("status") == TripStatus.SCHEDULED.value]

    def propose_batch(self, request: BatchProposalRequest, tenant_id: str) -> BatchProposalResponse:
        trips = self._scheduled_trips(tenant_id, request.trip_ids)
        drivers = self.available_drivers(tenant_id)
        proposals = propose_batch_assignments(trips, drivers)
        return self._proposal_response(proposals, len(drivers))

    def override_proposal(self, request: ProposalOverrideRequest, tenant_id: str) -> BatchProposalResponse:
        trip = self._require_trip(tenant_id, request.trip_id)
        driver = self._require_driver(tenant_id, request.driver_id) if request.driver_id else None
        proposals = override_assignment(request.proposals, {trip["trip_id"]: trip}, request.trip_id, driver)
        return self._proposal_response(proposals, len(self.available_drivers(tenant_id)))

    @staticmethod
    def _proposal_response(proposals: List[AssignmentProposal], driver_count: int) -> BatchProposalResponse:
        assigned = [item for item in proposals if item.driver_id]
        return BatchProposalResponse(
            proposals=proposals,
            assigned_count=len(assigned),
            total_distance_miles=round(sum(item.distance_miles or 0.0 for item in assigned), 2),
            available_drivers=driver_count,
        )

    def _commit_pairs(self, pairs: List[tuple], tenant_id: str, actor: str, mode: str) -> BatchCommitResponse:
        result = BatchCommitResponse()
        for trip_id, driver_id in pairs:
            try:
                self.assign_trip(trip_id, driver_id, tenant_id, actor, mode=mode)
                result.assigned.append(trip_id)
            except KeyError:
                result.failed.append(AssignmentFailure(trip_id=trip_id, error="Trip not found"))
            except ValueError as exc:
                logger.warning("Batch assignment failed", trip_id=trip_id, driver_id=driver_id, error=str(exc))
                result.failed.append(AssignmentFailure(trip_id=trip_id, error=str(exc)))
        return result

    def commit_batch(self, request: BatchCommitRequest, tenant_id: str, actor: str) -> BatchCommitResponse:
        pairs = [(item.trip_id, item.driver_id) for item in request.assignments if item.driver_id]
        if not pairs:
            raise ValueError("Please assign at least one driver")
        return self._commit_pairs(pairs, tenant_id, actor, mode="batch")

    # ---------------------------------------------------------------- routes

    def optimize(
        self,
        request: RouteOptimizeRequest,
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> RouteOptimizeResponse:
        trips = self._scheduled_trips(tenant_id, request.trip_ids)
        routes = optimize_routes(trips, self.available_drivers(tenant_id), now=now)
        assigned = sum(len(route.trip_ids) for route in routes)
        return RouteOptimizeResponse(
            routes=routes,
            trips_assigned=assigned,
            average_efficiency=round(sum(r.efficiency_score for r in routes) / len(routes), 2) if routes else 0.0,
            total_distance=round(sum(r.total_distance for r in routes), 2),
        )

    def apply_routes(self, request: RouteApplyRequest, tenant_id: str, actor: str) -> BatchCommitResponse:
        pairs = [(trip_id, route.driver_id) for route in request.routes for trip_id in route.trip_ids]
        if not pairs:
            raise ValueError("No routes to apply")
        return self._commit_pairs(pairs, tenant_id, actor, mode="route")

    # -------------------------------------------------------- driver location

    def update_driver_location(
        self,
        driver_id: str,
        update: DriverLocationUpdate,
        tenant_id: str,
    ) -> Dict[str, Any]:
        if update.latitude is None or update.longitude is None:
            raise ValueError("latitude and longitude are required")
        extra = update.model_dump(exclude={"latitude", "longitude"}, exclude_none=True)
        return store.record_driver_location(tenant_id, driver_id, update.latitude, update.longitude, extra)

    def notifications(self, tenant_id: str, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return store.list_notifications(tenant_id, user_id=user_id)


dispatch_engine = DispatchEngine()
