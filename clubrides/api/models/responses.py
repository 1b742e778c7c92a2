"""
API Response Models

Pydantic models for API responses. JSON field names are camelCase.
"""

from typing import List, Optional

from pydantic import Field

from clubrides.activity_schemas import MatchResult
from clubrides.authorization import RideCapability
from clubrides.schemas import CamelModel, Ride, RideParticipation


class RideDetailResponse(CamelModel):
    """Response for GET /api/clubs/{club_id}/rides/{ride_id}."""

    ride: Ride
    participants: List[RideParticipation] = Field(default_factory=list)
    ride_code: str = Field(..., description="Code riders add to their activity title")
    capabilities: List[RideCapability] = Field(
        default_factory=list, description="Ride capabilities the caller holds in this club"
    )


class RideListResponse(CamelModel):
    """Response for GET /api/clubs/{club_id}/rides."""

    rides: List[Ride]
    count: int
    next_cursor: Optional[str] = None


class ParticipantsResponse(CamelModel):
    participants: List[RideParticipation]
    count: int


class ActivityMatchOutcome(CamelModel):
    ride_id: str
    result: MatchResult


class IngestActivityResponse(CamelModel):
    """Response for POST /api/strava/activities."""

    strava_activity_id: str
    evaluated: List[ActivityMatchOutcome] = Field(default_factory=list)
    linked_ride_id: Optional[str] = Field(
        None, description="Ride that received the evidence, if any"
    )
