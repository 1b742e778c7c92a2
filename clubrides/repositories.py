"""
Repository contracts consumed by the orchestration services.

The core only calls these interfaces; ``clubrides.database`` provides the
SQLAlchemy implementation. I/O errors raised by an implementation are not
caught by the services.
"""

from contextlib import nullcontext
from typing import ContextManager, List, Optional, Protocol

from clubrides.authorization import MembershipLookup
from clubrides.schemas import (
    ListRidesQuery,
    ListUserRidesQuery,
    PaginatedRides,
    PaginatedUserRides,
    Ride,
    RideParticipation,
    RideSummary,
)


class RideRepository(Protocol):
    def create(self, ride: Ride) -> None:
        ...

    def find_by_id(self, ride_id: str) -> Optional[Ride]:
        ...

    def find_by_club_id(self, club_id: str, query: ListRidesQuery) -> PaginatedRides:
        ...

    def update(self, ride: Ride) -> None:
        """Persist ride-level changes without touching the participant counters."""
        ...

    def update_counters(self, ride: Ride) -> None:
        """Persist ``current_participants`` and ``waitlist_count`` only."""
        ...

    def delete(self, ride_id: str) -> None:
        ...

    def find_participations(self, ride_id: str) -> List[RideParticipation]:
        ...

    def save_ride_summary(self, summary: RideSummary) -> None:
        ...

    def find_ride_summary(self, ride_id: str) -> Optional[RideSummary]:
        ...


class ParticipationRepository(Protocol):
    def create(self, participation: RideParticipation) -> None:
        ...

    def find_by_id(self, participation_id: str) -> Optional[RideParticipation]:
        ...

    def find_by_ride_and_user(self, ride_id: str, user_id: str) -> Optional[RideParticipation]:
        """Most recent participation of ``user_id`` in ``ride_id``."""
        ...

    def find_by_ride_id(self, ride_id: str) -> List[RideParticipation]:
        ...

    def find_by_user_id(self, user_id: str, query: ListUserRidesQuery) -> PaginatedUserRides:
        ...

    def find_all_by_user_id(self, user_id: str) -> List[RideParticipation]:
        ...

    def update(self, participation: RideParticipation) -> None:
        ...

    def delete(self, participation_id: str) -> None:
        ...

    def get_waitlist_position(self, ride_id: str) -> int:
        """Number of currently waitlisted participations for ``ride_id``."""
        ...


class RideTransactions(Protocol):
    def ride_transaction(self, ride_id: str) -> ContextManager[None]:
        """
        Serialize a multi-step change to one ride and its participations.

        Everything written inside the block commits together, or not at all.
        """
        ...


class NullRideTransactions:
    """No-op transactions for stores that commit every write on their own."""

    def ride_transaction(self, ride_id: str) -> ContextManager[None]:
        return nullcontext()


__all__ = [
    "MembershipLookup",
    "NullRideTransactions",
    "ParticipationRepository",
    "RideRepository",
    "RideTransactions",
]
