"""
Activity-to-ride matching.

Two strategies are tried in order:

1. Tag: the rider put the ride code (``RIDE-XXXXXX``) in the activity name or
   description. This is an explicit claim and scores 1.0.
2. Time window: a cycling activity that started near the ride's start time.
   Scores 0.6, plus 0.2 when the distance fits the planned route and 0.2 when
   it started near the meeting point.
"""

import logging
import math
import string
from typing import Optional

from clubrides.activity_schemas import MatchingConfig, MatchResult, StravaActivity
from clubrides.config import Settings, get_settings
from clubrides.schemas import Coordinates, MatchType, Ride

logger = logging.getLogger(__name__)

RIDE_CODE_PREFIX = "RIDE-"
RIDE_CODE_LENGTH = 6
EARTH_RADIUS_KM = 6371.0

BASE_TIME_WINDOW_CONFIDENCE = 0.6
DISTANCE_MATCH_BOOST = 0.2
LOCATION_MATCH_BOOST = 0.2

_BASE36_DIGITS = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_ride_code(ride_id: str) -> str:
    """
    Short, stable code riders can paste into an activity title.

    The ride id is folded with a 31-multiplier string hash kept in signed
    32-bit range; the absolute value is written in upper-case base 36 and
    truncated to six characters.

    Args:
        ride_id: Ride identifier

    Returns:
        Code such as ``RIDE-1K3ZQ9``
    """
    h = 0
    for char in ride_id:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return RIDE_CODE_PREFIX + _to_base36(abs(h))[:RIDE_CODE_LENGTH]


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude))
        * math.cos(math.radians(b.latitude))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def config_from_settings(settings: Optional[Settings] = None) -> MatchingConfig:
    settings = settings or get_settings()
    return MatchingConfig(
        before_minutes=settings.MATCH_WINDOW_BEFORE_MINUTES,
        after_minutes=settings.MATCH_WINDOW_AFTER_MINUTES,
        distance_tolerance_percent=settings.MATCH_DISTANCE_TOLERANCE_PERCENT,
        location_tolerance_km=settings.MATCH_LOCATION_TOLERANCE_KM,
    )


class ActivityMatcher:
    """Decides whether an activity is evidence of riding a given ride."""

    def __init__(self, config: Optional[MatchingConfig] = None):
        """
        Initialize matcher.

        Args:
            config: Matching tolerances; read from settings when omitted
        """
        self.config = config or config_from_settings()

    def match_by_tag(self, activity: StravaActivity, ride: Ride, ride_code: str) -> MatchResult:
        """Look for ``ride_code`` in the activity name or description, ignoring case."""
        needle = ride_code.lower()
        haystacks = [activity.name or "", activity.description or ""]

        if any(needle in text.lower() for text in haystacks):
            return MatchResult(
                matched=True,
                match_type=MatchType.TAG,
                confidence=1.0,
                reason=f"Found ride code {ride_code} in activity",
            )

        return MatchResult(
            matched=False,
            match_type=MatchType.TAG,
            confidence=0.0,
            reason="No ride tag found in activity title or description",
        )

    def match_by_time_window(self, activity: StravaActivity, ride: Ride) -> MatchResult:
        """Match on start time, then confirm or boost with distance and location."""
        if not activity.is_cycling_activity():
            return self._no_match("Activity is not a cycling activity")

        if not activity.is_within_time_window(
            ride.start_date_time, self.config.before_minutes, self.config.after_minutes
        ):
            return self._no_match("Activity outside time window")

        confidence = BASE_TIME_WINDOW_CONFIDENCE
        reasons = ["time window"]

        if ride.route is not None and ride.route.distance:
            planned_meters = ride.route.distance * 1000
            if not activity.is_within_distance_tolerance(
                planned_meters, self.config.distance_tolerance_percent
            ):
                return self._no_match("Activity distance outside tolerance")
            confidence += DISTANCE_MATCH_BOOST
            reasons.append("distance")

        if self._started_near_meeting_point(activity, ride):
            confidence += LOCATION_MATCH_BOOST
            reasons.append("location")

        return MatchResult(
            matched=True,
            match_type=MatchType.TIME_WINDOW,
            confidence=round(min(confidence, 1.0), 4),
            reason="Matched by " + " and ".join(reasons),
        )

    def match(self, activity: StravaActivity, ride: Ride, ride_code: Optional[str] = None) -> MatchResult:
        """Tag match first; fall back to the time window."""
        tag_match = self.match_by_tag(activity, ride, ride_code or generate_ride_code(ride.ride_id))
        if tag_match.matched:
            return tag_match

        result = self.match_by_time_window(activity, ride)
        logger.debug(
            "Activity %s vs ride %s: matched=%s confidence=%.2f (%s)",
            activity.strava_activity_id, ride.ride_id, result.matched, result.confidence, result.reason,
        )
        return result

    def _started_near_meeting_point(self, activity: StravaActivity, ride: Ride) -> bool:
        radius = self.config.location_tolerance_km
        meeting = ride.meeting_point.coordinates
        if radius is None or meeting is None or activity.start_lat_lng is None:
            return False

        start = Coordinates(latitude=activity.start_lat_lng[0], longitude=activity.start_lat_lng[1])
        return haversine_km(meeting, start) <= radius

    @staticmethod
    def _no_match(reason: str) -> MatchResult:
        return MatchResult(
            matched=False, match_type=MatchType.TIME_WINDOW, confidence=0.0, reason=reason
        )
