"""
Tests for activity-to-ride matching.

Test scenarios:
1. Time window: 3h after start matches at 0.8 with a fitting distance, 5h does not
2. Tag: the ride code in the title or description wins outright
3. Non-cycling activities and distances outside tolerance never match
4. Meeting-point proximity boosts confidence when a radius is configured
5. Ride codes and great-circle distance
"""

import re
from datetime import datetime, timedelta, timezone

import pytest

from clubrides import ride as ride_lifecycle
from clubrides.activity_schemas import MatchingConfig, StravaActivity
from clubrides.matching import ActivityMatcher, generate_ride_code, haversine_km
from clubrides.schemas import Coordinates, MatchType, MeetingPoint
from factories import CLUB_ID, make_create_request

RIDE_START = datetime(2026, 3, 7, 7, 0, tzinfo=timezone.utc)
CAFE = Coordinates(latitude=-33.8568, longitude=151.2153)


@pytest.fixture
def matcher():
    return ActivityMatcher(MatchingConfig())


@pytest.fixture
def ride(route_40km):
    """Published 40km ride starting at 07:00 UTC."""
    request = make_create_request(
        start_date_time=RIDE_START,
        route=route_40km,
        publish_immediately=True,
        meeting_point=MeetingPoint(name="Cafe", address="1 Harbour St", coordinates=CAFE),
    )
    return ride_lifecycle.create(request, "captain_cara", CLUB_ID)


def make_activity(hours_after=3, **overrides):
    data = dict(
        strava_activity_id="1001",
        user_id="ursula",
        name="Morning Ride",
        type="Ride",
        start_date_utc=RIDE_START + timedelta(hours=hours_after),
        distance_meters=42000.0,
        moving_time_seconds=5400,
    )
    data.update(overrides)
    return StravaActivity(**data)


# Test Cases

def test_time_window_with_distance(matcher, ride):
    """Three hours after start, 42km against a 40km plan."""
    result = matcher.match(make_activity(hours_after=3), ride)

    assert result.matched is True
    assert result.match_type == MatchType.TIME_WINDOW
    assert result.confidence == pytest.approx(0.8)


def test_outside_time_window(matcher, ride):
    result = matcher.match(make_activity(hours_after=5), ride)

    assert result.matched is False
    assert result.confidence == 0.0


def test_window_edges(matcher, ride):
    assert matcher.match(make_activity(hours_after=-1), ride).matched
    assert matcher.match(make_activity(hours_after=4), ride).matched
    assert not matcher.match(make_activity(hours_after=-1.5), ride).matched


def test_tag_match(matcher, ride):
    code = generate_ride_code(ride.ride_id)
    activity = make_activity(hours_after=30, description=f"Great day out {code.lower()}")

    result = matcher.match(activity, ride)

    assert result.matched is True
    assert result.match_type == MatchType.TAG
    assert result.confidence == 1.0


def test_tag_match_ignores_activity_type(matcher, ride):
    code = generate_ride_code(ride.ride_id)
    result = matcher.match(make_activity(name=f"Walk {code}", type="Walk"), ride, code)
    assert result.match_type == MatchType.TAG
    assert result.matched


def test_non_cycling_activity(matcher, ride):
    result = matcher.match(make_activity(type="Run"), ride)

    assert result.matched is False
    assert "cycling" in result.reason


def test_sport_type_recognised(matcher, ride):
    activity = make_activity(type="Workout", sport_type="GravelRide")
    assert activity.is_cycling_activity()
    assert matcher.match(activity, ride).matched


def test_distance_outside_tolerance(matcher, ride):
    result = matcher.match(make_activity(distance_meters=20000.0), ride)

    assert result.matched is False
    assert "distance" in result.reason


def test_no_route_matches_on_time_alone(matcher):
    request = make_create_request(start_date_time=RIDE_START, publish_immediately=True)
    no_route = ride_lifecycle.create(request, "captain_cara", CLUB_ID)

    result = matcher.match(make_activity(distance_meters=5000.0), no_route)

    assert result.matched is True
    assert result.confidence == pytest.approx(0.6)


def test_location_boost(ride):
    near_matcher = ActivityMatcher(MatchingConfig(location_tolerance_km=1.0))
    nearby = make_activity(start_lat_lng=(-33.8570, 151.2150))
    far_away = make_activity(start_lat_lng=(-34.4, 150.9))

    assert near_matcher.match(nearby, ride).confidence == pytest.approx(1.0)
    assert near_matcher.match(far_away, ride).confidence == pytest.approx(0.8)


def test_location_ignored_without_radius(matcher, ride):
    nearby = make_activity(start_lat_lng=(-33.8570, 151.2150))
    assert matcher.match(nearby, ride).confidence == pytest.approx(0.8)


def test_ride_code_format():
    assert generate_ride_code("a") == "RIDE-2P"
    assert generate_ride_code("ab") == "RIDE-2E9"

    code = generate_ride_code("ride_01HZX3")
    assert re.fullmatch(r"RIDE-[0-9A-Z]{1,6}", code)
    assert generate_ride_code("ride_01HZX3") == code
    assert generate_ride_code("ride_01HZX4") != code


def test_haversine_one_degree_of_latitude():
    a = Coordinates(latitude=0.0, longitude=0.0)
    b = Coordinates(latitude=1.0, longitude=0.0)

    assert haversine_km(a, b) == pytest.approx(111.19, rel=1e-3)
    assert haversine_km(a, a) == 0.0


def test_from_strava_response():
    payload = {
        "id": 987654321,
        "name": "Bay loop",
        "type": "Ride",
        "sport_type": "Ride",
        "start_date": "2026-03-07T10:00:00Z",
        "distance": 40123.4,
        "moving_time": 5012,
        "total_elevation_gain": 312.0,
        "start_latlng": [-33.857, 151.215],
        "end_latlng": [],
    }

    activity = StravaActivity.from_strava_response("ursula", payload)

    assert activity.strava_activity_id == "987654321"
    assert activity.start_date_utc == RIDE_START + timedelta(hours=3)
    assert activity.start_lat_lng == (-33.857, 151.215)
    assert activity.end_lat_lng is None
    assert activity.get_average_speed() == pytest.approx(40123.4 / 5012)
    assert activity.get_metrics_snapshot().elevation_gain_meters == 312.0
