"""
Shared pytest fixtures.

Provides an in-memory SQLite store wired into the ride and participation
services; request and entity factories live in ``factories``.
"""

import pytest

from clubrides.database import SqlAlchemyStore, get_session_factory, init_database
from clubrides.participation_service import ParticipationService
from clubrides.ride_service import RideService
from clubrides.schemas import JoinRideRequest, Route
from factories import CLUB_ID, make_create_request


@pytest.fixture
def store():
    """Store over a fresh in-memory SQLite database."""
    engine = init_database("sqlite://")
    session = get_session_factory(engine)()
    yield SqlAlchemyStore(session)
    session.close()
    engine.dispose()


@pytest.fixture
def ride_service(store):
    return RideService(store.rides, transactions=store)


@pytest.fixture
def participation_service(store):
    return ParticipationService(store.participations, store.rides, transactions=store)


@pytest.fixture
def published_ride(ride_service, participation_service):
    """Published ride capped at 2 confirmed riders, with its captain."""

    def _create(**overrides):
        overrides.setdefault("max_participants", 2)
        overrides.setdefault("publish_immediately", True)
        return ride_service.create_ride(
            make_create_request(**overrides),
            "captain_cara",
            CLUB_ID,
            on_created=participation_service.create_captain,
        )

    return _create


@pytest.fixture
def join():
    return JoinRideRequest()


@pytest.fixture
def route_40km():
    return Route(name="Bay loop", distance=40.0)
