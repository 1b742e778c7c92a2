"""
Tests for the ride orchestration service.

Test scenarios:
1. Create validates before anything is stored
2. Listing filters and paginates
3. Completion is only possible from active and produces a summary
4. Club ownership is checked on start, complete and summary
5. Ride updates never clobber participant counters written concurrently
"""

from datetime import timedelta

import pytest

from clubrides.database import SqlAlchemyStore, get_session_factory, init_database
from clubrides.errors import (
    InvalidRideStatusError,
    RideNotFoundError,
    RideValidationError,
)
from clubrides.participation_service import ParticipationService
from clubrides.ride_service import RideService, summarize_participations
from clubrides.schemas import (
    AttendanceStatus,
    CancelRideRequest,
    EvidenceMetrics,
    ListRidesQuery,
    MatchType,
    ParticipationStatus,
    PublishRideRequest,
    RideStatus,
    RideType,
    UpdateRideRequest,
)
from factories import CLUB_ID, future, make_create_request


# Test Cases

def test_create_and_get(ride_service):
    ride = ride_service.create_ride(make_create_request(), "alice", CLUB_ID)

    assert ride_service.get_ride(ride.ride_id) == ride
    assert ride.status == RideStatus.DRAFT


def test_invalid_create_stores_nothing(ride_service):
    with pytest.raises(RideValidationError):
        ride_service.create_ride(make_create_request(title=""), "alice", CLUB_ID)

    assert ride_service.list_club_rides(CLUB_ID, ListRidesQuery(include_drafts=True)).rides == []


def test_get_unknown_ride(ride_service):
    with pytest.raises(RideNotFoundError):
        ride_service.get_ride("ride_missing")


def test_publish_update_cancel(ride_service):
    ride = ride_service.create_ride(make_create_request(), "alice", CLUB_ID)

    published = ride_service.publish_ride(ride.ride_id, "bob", PublishRideRequest())
    assert published.status == RideStatus.PUBLISHED

    updated = ride_service.update_ride(ride.ride_id, UpdateRideRequest(title="Renamed"))
    assert updated.title == "Renamed"
    assert ride_service.get_ride(ride.ride_id).title == "Renamed"

    cancelled = ride_service.cancel_ride(ride.ride_id, CancelRideRequest(reason="Rain"))
    assert cancelled.status == RideStatus.CANCELLED
    assert cancelled.cancellation_reason == "Rain"


def test_update_validates_fields(ride_service):
    ride = ride_service.create_ride(make_create_request(), "alice", CLUB_ID)
    with pytest.raises(RideValidationError):
        ride_service.update_ride(ride.ride_id, UpdateRideRequest(estimated_duration=-5))


def test_list_filters_and_paginates(ride_service):
    for days in (3, 1, 2):
        ride_service.create_ride(
            make_create_request(start_date_time=future(days), publish_immediately=True),
            "alice",
            CLUB_ID,
        )
    ride_service.create_ride(
        make_create_request(ride_type=RideType.TRAINING, publish_immediately=True), "alice", CLUB_ID
    )
    ride_service.create_ride(make_create_request(), "alice", CLUB_ID)  # draft
    ride_service.create_ride(make_create_request(publish_immediately=True), "alice", "club_other")

    first = ride_service.list_club_rides(CLUB_ID, ListRidesQuery(limit=2))
    assert len(first.rides) == 2
    assert first.next_cursor is not None
    assert first.rides[0].start_date_time <= first.rides[1].start_date_time

    second = ride_service.list_club_rides(CLUB_ID, ListRidesQuery(limit=2, cursor=first.next_cursor))
    assert len(second.rides) == 2
    assert second.next_cursor is None
    assert {r.ride_id for r in first.rides}.isdisjoint({r.ride_id for r in second.rides})

    training = ride_service.list_club_rides(CLUB_ID, ListRidesQuery(ride_type=RideType.TRAINING))
    assert len(training.rides) == 1

    with_drafts = ride_service.list_club_rides(CLUB_ID, ListRidesQuery(include_drafts=True))
    assert len(with_drafts.rides) == 5

    in_range = ride_service.list_club_rides(
        CLUB_ID,
        ListRidesQuery(start_date=future(2).date(), end_date=future(2).date()),
    )
    assert len(in_range.rides) == 1


def test_invalid_cursor_rejected(ride_service):
    with pytest.raises(RideValidationError):
        ride_service.list_club_rides(CLUB_ID, ListRidesQuery(cursor="not-a-cursor"))


def test_complete_draft_fails(ride_service):
    """Completing a draft ride is an invalid transition."""
    ride = ride_service.create_ride(make_create_request(), "alice", CLUB_ID)

    with pytest.raises(InvalidRideStatusError):
        ride_service.complete_ride(ride.ride_id, CLUB_ID, "alice")

    assert ride_service.get_ride_summary(ride.ride_id, CLUB_ID) is None


def test_complete_active_ride_produces_summary(
    ride_service, participation_service, published_ride, join
):
    """Planned participants counts every participation that did not end."""
    ride = published_ride(max_participants=5)
    for user in ("ursula", "victor", "wendy"):
        participation_service.join_ride(ride.ride_id, user, join)
    participation_service.leave_ride(ride.ride_id, "wendy")

    ride_service.start_ride(ride.ride_id, CLUB_ID, "captain_cara")
    participation_service.update_attendance(
        ride.ride_id, "victor", AttendanceStatus.NO_SHOW, "captain_cara"
    )
    participation_service.link_strava_evidence(
        ride.ride_id,
        "ursula",
        "987",
        MatchType.TIME_WINDOW,
        EvidenceMetrics(distance_meters=40000, moving_time_seconds=5000, elevation_gain_meters=300),
        0.8,
    )
    participation_service.link_manual_evidence(
        ride.ride_id, "captain_cara", None, "Led the ride", "captain_cara"
    )

    completed = ride_service.complete_ride(ride.ride_id, CLUB_ID, "captain_cara", "Windy")
    assert completed.status == RideStatus.COMPLETED

    summary = ride_service.get_ride_summary(ride.ride_id, CLUB_ID)
    assert summary.participants_planned == 3
    assert summary.participants_attended == 2
    assert summary.participants_no_show == 1
    assert summary.participants_with_strava == 1
    assert summary.participants_with_manual_evidence == 1
    assert summary.aggregated_metrics.total_distance_meters == 40000
    assert summary.aggregated_metrics.total_elevation_gain_meters == 300
    assert summary.aggregated_metrics.average_speed_mps == pytest.approx(8.0)


def test_summary_without_metrics(ride_service, published_ride):
    ride = published_ride()
    ride_service.start_ride(ride.ride_id, CLUB_ID, "captain_cara")
    completed = ride_service.complete_ride(ride.ride_id, CLUB_ID, "captain_cara")

    summary = summarize_participations(completed, [])
    assert summary.participants_planned == 0
    assert summary.aggregated_metrics is None


def test_wrong_club_rejected(ride_service, published_ride):
    ride = published_ride()
    with pytest.raises(RideValidationError):
        ride_service.start_ride(ride.ride_id, "club_other", "captain_cara")
    with pytest.raises(RideValidationError):
        ride_service.get_ride_summary(ride.ride_id, "club_other")


def test_start_requires_published(ride_service):
    ride = ride_service.create_ride(make_create_request(), "alice", CLUB_ID)
    with pytest.raises(InvalidRideStatusError):
        ride_service.start_ride(ride.ride_id, CLUB_ID, "alice")


def test_rides_ordered_by_start(ride_service):
    later = ride_service.create_ride(
        make_create_request(start_date_time=future(10), publish_immediately=True), "a", CLUB_ID
    )
    sooner = ride_service.create_ride(
        make_create_request(start_date_time=future(10) - timedelta(hours=1), publish_immediately=True),
        "a",
        CLUB_ID,
    )
    listed = ride_service.list_club_rides(CLUB_ID, ListRidesQuery()).rides
    assert [r.ride_id for r in listed] == [sooner.ride_id, later.ride_id]


def test_create_rolls_back_when_captain_fails(ride_service):
    def failing_captain(ride):
        raise RuntimeError("disk full")

    with pytest.raises(RuntimeError):
        ride_service.create_ride(
            make_create_request(), "alice", CLUB_ID, on_created=failing_captain
        )

    assert ride_service.list_club_rides(CLUB_ID, ListRidesQuery(include_drafts=True)).rides == []


@pytest.fixture
def two_stores(tmp_path):
    """Two stores with their own sessions over one SQLite file."""
    engine = init_database(f"sqlite:///{tmp_path / 'rides.db'}")
    factory = get_session_factory(engine)
    stores = (SqlAlchemyStore(factory()), SqlAlchemyStore(factory()))
    yield stores
    for s in stores:
        s.session.close()
    engine.dispose()


def test_join_during_ride_update_keeps_counter(two_stores, join, monkeypatch):
    """A join committed between the update's read and write is not lost."""
    organiser_store, rider_store = two_stores
    organiser = RideService(organiser_store.rides, transactions=organiser_store)
    riders = ParticipationService(
        rider_store.participations, rider_store.rides, transactions=rider_store
    )
    ride = organiser.create_ride(
        make_create_request(publish_immediately=True, max_participants=5), "cara", CLUB_ID
    )

    write = organiser_store.rides.update

    def join_then_write(updated):
        riders.join_ride(ride.ride_id, "bob", join)
        write(updated)

    monkeypatch.setattr(organiser_store.rides, "update", join_then_write)
    organiser.update_ride(ride.ride_id, UpdateRideRequest(title="Renamed"))

    stored = organiser.get_ride(ride.ride_id)
    assert stored.title == "Renamed"
    assert stored.current_participants == 1
    bob = rider_store.participations.find_by_ride_and_user(ride.ride_id, "bob")
    assert bob.status == ParticipationStatus.CONFIRMED
