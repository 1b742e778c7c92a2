"""
Pydantic models for externally reported activities and matching.

A ``StravaActivity`` is what the tracker told us a rider did; the matcher
compares it with a planned ``Ride`` and produces a ``MatchResult``.
"""

from datetime import datetime, timedelta
from typing import Any, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from clubrides.schemas import CamelModel, EvidenceMetrics, MatchType, _as_utc, utcnow

# Lower-case so both ``type`` and ``sport_type`` values compare equal
CYCLING_ACTIVITY_TYPES = frozenset(
    {
        "ride",
        "virtualride",
        "ebikeride",
        "handcycle",
        "gravelride",
        "mountainbikeride",
        "emountainbikeride",
        "velomobile",
    }
)


def normalize_activity_type(value: Any) -> Optional[str]:
    """Lower-case, stripped activity type, or ``None`` when missing."""
    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def _lat_lng(value: Any) -> Optional[Tuple[float, float]]:
    # Strava sends [] for activities without GPS
    if not value or len(value) != 2:
        return None
    return float(value[0]), float(value[1])


class StravaActivity(CamelModel):
    """
    One activity ingested from Strava.

    Distances are metres and times are seconds, as reported by the API.
    """

    provider: Literal["strava"] = "strava"
    strava_activity_id: str
    user_id: str
    name: str = ""
    description: Optional[str] = None
    type: str
    sport_type: Optional[str] = None
    start_date_utc: datetime
    distance_meters: float = Field(0.0, ge=0.0)
    moving_time_seconds: int = Field(0, ge=0)
    elevation_gain_meters: float = 0.0
    start_lat_lng: Optional[Tuple[float, float]] = None
    end_lat_lng: Optional[Tuple[float, float]] = None
    ingested_at: datetime = Field(default_factory=utcnow)

    @field_validator("start_date_utc", "ingested_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @classmethod
    def from_strava_response(cls, user_id: str, payload: Mapping[str, Any]) -> "StravaActivity":
        """
        Build an activity from a Strava ``GET /activities/{id}`` payload.

        Args:
            user_id: Platform user owning the Strava account
            payload: Decoded JSON body from the Strava API

        Returns:
            StravaActivity with ``ingested_at`` set to now
        """
        return cls(
            strava_activity_id=str(payload["id"]),
            user_id=user_id,
            name=payload.get("name") or "",
            description=payload.get("description"),
            type=payload.get("type") or "",
            sport_type=payload.get("sport_type"),
            start_date_utc=payload["start_date"],
            distance_meters=payload.get("distance") or 0.0,
            moving_time_seconds=payload.get("moving_time") or 0,
            elevation_gain_meters=payload.get("total_elevation_gain") or 0.0,
            start_lat_lng=_lat_lng(payload.get("start_latlng")),
            end_lat_lng=_lat_lng(payload.get("end_latlng")),
        )

    def is_cycling_activity(self) -> bool:
        for value in (self.sport_type, self.type):
            normalized = normalize_activity_type(value)
            if normalized and normalized in CYCLING_ACTIVITY_TYPES:
                return True
        return False

    def get_start_time(self) -> datetime:
        return self.start_date_utc

    def get_average_speed(self) -> float:
        """Average moving speed in m/s; 0 when no moving time was recorded."""
        if self.moving_time_seconds == 0:
            return 0.0
        return self.distance_meters / self.moving_time_seconds

    def is_within_time_window(
        self, ride_start: datetime, before_minutes: int, after_minutes: int
    ) -> bool:
        """True when the activity started in [ride_start - before, ride_start + after]."""
        ride_start = _as_utc(ride_start)
        earliest = ride_start - timedelta(minutes=before_minutes)
        latest = ride_start + timedelta(minutes=after_minutes)
        return earliest <= self.start_date_utc <= latest

    def is_within_distance_tolerance(
        self, planned_distance_meters: Optional[float], tolerance_percent: float
    ) -> bool:
        if not planned_distance_meters:
            return True

        tolerance = planned_distance_meters * (tolerance_percent / 100)
        return (
            planned_distance_meters - tolerance
            <= self.distance_meters
            <= planned_distance_meters + tolerance
        )

    def get_metrics_snapshot(self) -> EvidenceMetrics:
        return EvidenceMetrics(
            distance_meters=self.distance_meters,
            moving_time_seconds=self.moving_time_seconds,
            elevation_gain_meters=self.elevation_gain_meters,
            start_time_utc=self.start_date_utc,
        )


class MatchResult(CamelModel):
    """Outcome of comparing one activity with one ride."""

    matched: bool
    match_type: MatchType
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    reason: Optional[str] = None


class MatchingConfig(BaseModel):
    """Tolerances used by the activity matcher."""

    before_minutes: int = Field(60, ge=0, description="Minutes before ride start")
    after_minutes: int = Field(240, ge=0, description="Minutes after ride start")
    distance_tolerance_percent: float = Field(25.0, ge=0.0)
    location_tolerance_km: Optional[float] = Field(
        None, gt=0.0, description="Meeting point radius; no location boost when unset"
    )
