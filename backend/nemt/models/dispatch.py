"""Models for batch trip assignment proposals and optimized routes."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AssignmentProposal(BaseModel):
    """One trip paired with a proposed driver (or none)."""

    trip_id: str
    scheduled_pickup_time: datetime
    pickup_address: str = ""
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    distance_miles: Optional[float] = None
    eta_minutes: Optional[int] = None


class BatchProposalRequest(BaseModel):
    """Trips to propose drivers for; empty means every scheduled trip."""

    trip_ids: List[str] = Field(default_factory=list)


class BatchProposalResponse(BaseModel):
    proposals: List[AssignmentProposal]
    assigned_count: int
    total_distance_miles: float
    available_drivers: int


class AssignmentPair(BaseModel):
    trip_id: str
    driver_id: Optional[str] = None


class BatchCommitRequest(BaseModel):
    """Dispatcher-reviewed assignments to write; null drivers are ignored."""

    assignments: List[AssignmentPair]


class ProposalOverrideRequest(BaseModel):
    """Dispatcher edit of one proposal before commit; null driver clears it."""

    proposals: List[AssignmentProposal]
    trip_id: str
    driver_id: Optional[str] = None


class AssignmentFailure(BaseModel):
    trip_id: str
    error: str


class BatchCommitResponse(BaseModel):
    assigned: List[str] = Field(default_factory=list)
    failed: List[AssignmentFailure] = Field(default_factory=list)


class OptimizedRoute(BaseModel):
    """Ordered trip chain for one driver from the route optimizer."""

    driver_id: str
    driver_name: str
    trip_ids: List[str] = Field(default_factory=list)
    total_distance: float = 0.0
    total_time: float = 0.0
    efficiency_score: float = 0.0


class RouteOptimizeRequest(BaseModel):
    trip_ids: List[str] = Field(default_factory=list)


class RouteOptimizeResponse(BaseModel):
    routes: List[OptimizedRoute]
    trips_assigned: int
    average_efficiency: float
    total_distance: float


class RouteApplyRequest(BaseModel):
    routes: List[OptimizedRoute]
