"""
Pydantic models for ride and participation data.

This module defines the core data structures for:
- Rides: scheduled club events, their lifecycle status and participant counters
- Participations: one user's role and status within one ride
- Evidence: proof of attendance linked onto a participation
- Ride Summaries: aggregates produced when a ride completes
- Request / query records accepted by the orchestration services

JSON field names are camelCase (``startDateTime``, ``maxParticipants`` ...);
Python attribute names are snake_case. Both are accepted on input.
"""

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """Opaque identifier such as ``ride_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Enumerations
# ============================================================================

class RideStatus(str, Enum):
    """Ride lifecycle states."""
    DRAFT = "draft"
    PUBLISHED = "published"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RideScope(str, Enum):
    """Who owns the ride. Only club rides are supported today."""
    CLUB = "club"
    PRIVATE = "private"
    COMMUNITY = "community"


class RideAudience(str, Enum):
    INVITE_ONLY = "invite_only"
    MEMBERS_ONLY = "members_only"
    PUBLIC_READ_ONLY = "public_read_only"


class RideType(str, Enum):
    TRAINING = "training"
    SOCIAL = "social"
    COMPETITIVE = "competitive"
    ADVENTURE = "adventure"
    MAINTENANCE = "maintenance"


class RideDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class RouteType(str, Enum):
    BASIC = "basic"
    S3_GPX = "s3_gpx"
    EXTERNAL = "external"


class ParticipationStatus(str, Enum):
    """Participation states. WITHDRAWN and REMOVED are terminal."""
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    WITHDRAWN = "withdrawn"
    REMOVED = "removed"


class RideRole(str, Enum):
    CAPTAIN = "captain"
    LEADER = "leader"
    PARTICIPANT = "participant"


class AttendanceStatus(str, Enum):
    UNKNOWN = "unknown"
    ATTENDED = "attended"
    NO_SHOW = "no_show"
    WITHDRAWN = "withdrawn"


class EvidenceType(str, Enum):
    """Where proof of attendance came from."""
    STRAVA = "strava"
    MANUAL = "manual"


class MatchType(str, Enum):
    """Strategy that produced an attendance match."""
    TAG = "tag"
    TIME_WINDOW = "time_window"
    MANUAL = "manual"


class UserRideFilter(str, Enum):
    """Coarse status filter for a user's ride list."""
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_RIDE_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})
TERMINAL_PARTICIPATION_STATUSES = frozenset(
    {ParticipationStatus.WITHDRAWN, ParticipationStatus.REMOVED}
)


# ============================================================================
# Ride Components
# ============================================================================

class Coordinates(CamelModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class Waypoint(CamelModel):
    name: str
    coordinates: Coordinates
    type: Literal["start", "waypoint", "end"] = "waypoint"


class MeetingPoint(CamelModel):
    """Where riders gather before the start."""

    name: str = Field(..., description="Short name of the meeting spot")
    address: str = Field(..., description="Street address")
    coordinates: Optional[Coordinates] = Field(
        None, description="GPS position, used for location-based activity matching"
    )
    instructions: Optional[str] = None


class Route(CamelModel):
    """
    Planned route for a ride.

    ``distance`` is expressed in kilometres and is what the activity matcher
    compares reported distances against.
    """

    name: str
    type: RouteType = RouteType.BASIC
    distance: Optional[float] = Field(None, ge=0.0, description="Planned distance in km")
    estimated_time: Optional[int] = Field(None, ge=0, description="Minutes")
    difficulty: Optional[RideDifficulty] = None
    waypoints: Optional[List[Waypoint]] = None

    # Uploaded GPX fields
    route_key: Optional[str] = None
    content_type: Optional[str] = None
    hash: Optional[str] = None

    # External route fields
    provider: Optional[str] = None
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    external_type: Optional[str] = None

    version: Optional[str] = None


class RideRequirements(CamelModel):
    equipment: List[str] = Field(default_factory=list)
    experience: str = ""
    fitness: str = ""


# ============================================================================
# Ride
# ============================================================================

class Ride(CamelModel):
    """
    One scheduled group ride.

    Instances are values: lifecycle functions in ``clubrides.ride`` return a
    new ``Ride`` instead of mutating this one. Construction enforces the
    counter invariants, so an invalid ride can never be loaded or produced.
    """

    model_config = ConfigDict(frozen=True)

    ride_id: str
    club_id: str
    title: str
    description: str
    ride_type: RideType
    difficulty: RideDifficulty
    status: RideStatus = RideStatus.DRAFT
    scope: RideScope = RideScope.CLUB
    audience: RideAudience = RideAudience.INVITE_ONLY
    start_date_time: datetime
    estimated_duration: int = Field(..., description="Estimated duration in minutes")
    max_participants: Optional[int] = None
    current_participants: int = Field(0, ge=0)
    waitlist_count: int = Field(0, ge=0)
    allow_waitlist: bool = True
    is_public: bool = False

    created_by: str
    created_at: datetime
    updated_at: datetime
    published_by: Optional[str] = None
    published_at: Optional[datetime] = None
    started_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    meeting_point: MeetingPoint
    route: Optional[Route] = None
    requirements: Optional[RideRequirements] = None

    @field_validator(
        "start_date_time",
        "created_at",
        "updated_at",
        "published_at",
        "started_at",
        "completed_at",
        "cancelled_at",
    )
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store every timestamp as aware UTC."""
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_counters(self):
        """Participant counters must respect capacity and waitlist settings."""
        if self.max_participants is not None and self.current_participants > self.max_participants:
            raise ValueError(
                f"currentParticipants ({self.current_participants}) exceeds "
                f"maxParticipants ({self.max_participants})"
            )
        if self.waitlist_count > 0 and not self.allow_waitlist:
            raise ValueError("waitlistCount must be zero when the waitlist is disabled")
        return self


class CreateRideRequest(CamelModel):
    """
    Payload for creating a ride.

    Business validation (non-empty text, future start, positive duration ...)
    happens in ``clubrides.validator`` so failures surface as domain errors.
    """

    title: str
    description: str
    ride_type: RideType
    difficulty: RideDifficulty
    start_date_time: datetime
    estimated_duration: int
    max_participants: Optional[int] = None
    publish_immediately: bool = False
    meeting_point: MeetingPoint
    route: Optional[Route] = None
    requirements: Optional[RideRequirements] = None
    is_public: bool = False
    allow_waitlist: Optional[bool] = None

    @field_validator("start_date_time")
    @classmethod
    def normalize_start(cls, v: datetime) -> datetime:
        return _as_utc(v)


class UpdateRideRequest(CamelModel):
    """Partial update. Only fields that are present (and not null) are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    start_date_time: Optional[datetime] = None
    estimated_duration: Optional[int] = None
    max_participants: Optional[int] = None
    meeting_point: Optional[MeetingPoint] = None
    route: Optional[Route] = None
    requirements: Optional[RideRequirements] = None
    is_public: Optional[bool] = None
    allow_waitlist: Optional[bool] = None

    @field_validator("start_date_time")
    @classmethod
    def normalize_start(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    def present_fields(self) -> dict:
        """Fields the caller actually supplied, keyed by attribute name."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if getattr(self, name) is not None
        }


class PublishRideRequest(CamelModel):
    audience: Optional[RideAudience] = None
    is_public: Optional[bool] = None
    publish_message: Optional[str] = None


class CancelRideRequest(CamelModel):
    reason: Optional[str] = None
    notify_participants: bool = False


class CompleteRideRequest(CamelModel):
    completion_notes: Optional[str] = None


class ListRidesQuery(CamelModel):
    """Filters and pagination for listing a club's rides."""

    limit: int = Field(20, ge=1, le=100)
    cursor: Optional[str] = None
    status: Optional[RideStatus] = None
    ride_type: Optional[RideType] = None
    difficulty: Optional[RideDifficulty] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    include_drafts: bool = False
    # When set, drafts of other creators are left out
    drafts_created_by: Optional[str] = None


class PaginatedRides(CamelModel):
    rides: List[Ride] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# ============================================================================
# Participation
# ============================================================================

class EvidenceMetrics(CamelModel):
    """Activity metrics captured at the moment evidence was linked."""

    distance_meters: Optional[float] = Field(None, ge=0.0)
    moving_time_seconds: Optional[int] = Field(None, ge=0)
    elevation_gain_meters: Optional[float] = None
    start_time_utc: Optional[datetime] = None

    @field_validator("start_time_utc")
    @classmethod
    def normalize_start(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class Evidence(CamelModel):
    """Proof that a participant actually rode."""

    type: EvidenceType
    ref_id: str = Field(..., description="Strava activity id or manual evidence id")
    match_type: MatchType
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    metrics_snapshot: Optional[EvidenceMetrics] = None
    linked_at: datetime

    @field_validator("linked_at")
    @classmethod
    def normalize_linked_at(cls, v: datetime) -> datetime:
        return _as_utc(v)


class RideParticipation(CamelModel):
    """
    One user's relationship to one ride.

    ``waitlist_position`` exists exactly while the participation is
    waitlisted; this is checked whenever a participation is built.
    """

    model_config = ConfigDict(frozen=True)

    participation_id: str
    ride_id: str
    club_id: str
    user_id: str
    role: RideRole = RideRole.PARTICIPANT
    status: ParticipationStatus = ParticipationStatus.CONFIRMED
    joined_at: datetime
    message: Optional[str] = None
    waitlist_position: Optional[int] = Field(None, ge=1)
    attendance_status: AttendanceStatus = AttendanceStatus.UNKNOWN
    evidence: Optional[Evidence] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    @field_validator("joined_at", "confirmed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_waitlist_position(self):
        """Position is present if and only if the participation is waitlisted."""
        waitlisted = self.status == ParticipationStatus.WAITLISTED
        if waitlisted and self.waitlist_position is None:
            raise ValueError("Waitlisted participation requires a waitlistPosition")
        if not waitlisted and self.waitlist_position is not None:
            raise ValueError(
                f"waitlistPosition must be empty for status '{self.status.value}'"
            )
        return self


class JoinRideRequest(CamelModel):
    message: Optional[str] = Field(None, max_length=500)


class UpdateParticipantRequest(CamelModel):
    role: RideRole
    reason: Optional[str] = None


class UpdateAttendanceRequest(CamelModel):
    attendance_status: AttendanceStatus


class LinkManualEvidenceRequest(CamelModel):
    description: str = Field(..., min_length=1)
    evidence_id: Optional[str] = None


class LinkStravaEvidenceRequest(CamelModel):
    strava_activity_id: str
    match_type: MatchType = MatchType.TIME_WINDOW
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    metrics: Optional[EvidenceMetrics] = None


class ListUserRidesQuery(CamelModel):
    status: Optional[UserRideFilter] = None
    role: Optional[RideRole] = None
    limit: int = Field(20, ge=1, le=100)
    cursor: Optional[str] = None


class UserRideInfo(CamelModel):
    """A ride as seen from one participant's list of rides."""

    participation_id: str
    ride_id: str
    club_id: str
    title: str
    ride_type: RideType
    difficulty: RideDifficulty
    start_date_time: datetime
    ride_status: RideStatus
    role: RideRole
    status: ParticipationStatus
    joined_at: datetime


class PaginatedUserRides(CamelModel):
    rides: List[UserRideInfo] = Field(default_factory=list)
    next_cursor: Optional[str] = None


# ============================================================================
# Ride Summary
# ============================================================================

class AggregatedMetrics(CamelModel):
    total_distance_meters: float = 0.0
    total_elevation_gain_meters: float = 0.0
    average_speed_mps: float = 0.0


class RideSummary(CamelModel):
    """Attendance and effort aggregates produced when a ride completes."""

    ride_id: str
    club_id: str
    completed_at: datetime
    participants_planned: int = Field(..., ge=0)
    participants_attended: int = Field(..., ge=0)
    participants_no_show: int = Field(..., ge=0)
    participants_with_strava: int = Field(..., ge=0)
    participants_with_manual_evidence: int = Field(..., ge=0)
    aggregated_metrics: Optional[AggregatedMetrics] = None
    last_updated_at: datetime
