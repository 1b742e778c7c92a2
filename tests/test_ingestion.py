"""
Tests for linking ingested activities to ride participations.

Test scenarios:
1. An activity matching a started ride becomes Strava evidence
2. Rides that have not started, and riders who are not confirmed, are skipped
3. Only the best match among several rides is linked
4. A participation with evidence is not matched again
"""

from datetime import timedelta

import pytest

from clubrides.activity_schemas import MatchingConfig, StravaActivity
from clubrides.errors import InvalidParticipationStatusError
from clubrides.ingestion import ActivityIngestionService
from clubrides.matching import ActivityMatcher, generate_ride_code
from clubrides.schemas import AttendanceStatus, EvidenceType, MatchType
from factories import CLUB_ID


@pytest.fixture
def ingestion(store, participation_service):
    return ActivityIngestionService(
        store.participations,
        store.rides,
        participation_service,
        ActivityMatcher(MatchingConfig()),
    )


@pytest.fixture
def started_ride(ride_service, participation_service, published_ride, join, route_40km):
    """Active 40km ride with ursula confirmed."""

    def _create(**overrides):
        overrides.setdefault("route", route_40km)
        ride = published_ride(**overrides)
        participation_service.join_ride(ride.ride_id, "ursula", join)
        return ride_service.start_ride(ride.ride_id, CLUB_ID, "captain_cara")

    return _create


def activity_for(ride, hours_after=2, activity_id="5001", **overrides):
    data = dict(
        strava_activity_id=activity_id,
        user_id="ursula",
        name="Saturday spin",
        type="Ride",
        start_date_utc=ride.start_date_time + timedelta(hours=hours_after),
        distance_meters=39000.0,
        moving_time_seconds=4800,
        elevation_gain_meters=250.0,
    )
    data.update(overrides)
    return StravaActivity(**data)


# Test Cases

def test_activity_linked_to_started_ride(ingestion, participation_service, started_ride):
    ride = started_ride()

    evaluated = ingestion.process_activity(activity_for(ride))

    assert [ride_id for ride_id, _ in evaluated] == [ride.ride_id]
    participation = participation_service.participations.find_by_ride_and_user(
        ride.ride_id, "ursula"
    )
    assert participation.evidence.type == EvidenceType.STRAVA
    assert participation.evidence.ref_id == "5001"
    assert participation.evidence.match_type == MatchType.TIME_WINDOW
    assert participation.evidence.confidence == pytest.approx(0.8)
    assert participation.evidence.metrics_snapshot.distance_meters == 39000.0
    assert participation.attendance_status == AttendanceStatus.ATTENDED


def test_unstarted_ride_skipped(ingestion, participation_service, published_ride, join):
    ride = published_ride()
    participation_service.join_ride(ride.ride_id, "ursula", join)

    assert ingestion.process_activity(activity_for(ride)) == []
    participation = participation_service.participations.find_by_ride_and_user(
        ride.ride_id, "ursula"
    )
    assert participation.evidence is None


def test_waitlisted_rider_skipped(ingestion, participation_service, ride_service, published_ride, join):
    ride = published_ride(max_participants=1)
    participation_service.join_ride(ride.ride_id, "victor", join)
    participation_service.join_ride(ride.ride_id, "ursula", join)
    ride_service.start_ride(ride.ride_id, CLUB_ID, "captain_cara")

    assert ingestion.process_activity(activity_for(ride)) == []


def test_no_match_links_nothing(ingestion, participation_service, started_ride):
    ride = started_ride()

    evaluated = ingestion.process_activity(activity_for(ride, hours_after=8))

    assert len(evaluated) == 1
    assert evaluated[0][1].matched is False
    participation = participation_service.participations.find_by_ride_and_user(
        ride.ride_id, "ursula"
    )
    assert participation.evidence is None


def test_best_match_wins(ingestion, participation_service, started_ride):
    """Both rides fit the time window; the tagged one is linked."""
    first = started_ride()
    second = started_ride()
    activity = activity_for(first, name=f"Bay loop {generate_ride_code(second.ride_id)}")

    evaluated = dict(ingestion.process_activity(activity))

    assert evaluated[first.ride_id].matched
    assert evaluated[second.ride_id].match_type == MatchType.TAG

    linked = participation_service.participations.find_by_ride_and_user(second.ride_id, "ursula")
    assert linked.evidence.match_type == MatchType.TAG
    unlinked = participation_service.participations.find_by_ride_and_user(first.ride_id, "ursula")
    assert unlinked.evidence is None


def test_evidence_not_replaced(ingestion, participation_service, started_ride):
    ride = started_ride()
    ingestion.process_activity(activity_for(ride, activity_id="1"))

    assert ingestion.process_activity(activity_for(ride, activity_id="2")) == []
    participation = participation_service.participations.find_by_ride_and_user(
        ride.ride_id, "ursula"
    )
    assert participation.evidence.ref_id == "1"


def test_manual_link_after_withdrawal_rejected(participation_service, published_ride, join):
    ride = published_ride()
    participation_service.join_ride(ride.ride_id, "ursula", join)
    participation_service.leave_ride(ride.ride_id, "ursula")

    with pytest.raises(InvalidParticipationStatusError):
        participation_service.link_strava_evidence(
            ride.ride_id, "ursula", "42", MatchType.MANUAL
        )
