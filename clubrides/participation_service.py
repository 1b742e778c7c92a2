"""
Participation orchestration service.

Owns the waitlist: joins land as confirmed or waitlisted depending on
capacity, leaving frees a slot that is handed to the lowest waitlist position,
and positions are kept contiguous from 1. Each join, leave and removal runs in
one ride-scoped transaction so the ride counters and the participation changes
commit together.
"""

import logging
from typing import List, Optional

from clubrides import participation as participation_lifecycle
from clubrides import ride as ride_lifecycle
from clubrides.errors import (
    AlreadyParticipatingError,
    CannotRemoveCaptainError,
    InvalidParticipationStatusError,
    InvalidRideStatusError,
    ParticipationNotFoundError,
    RideFullError,
    RideNotFoundError,
)
from clubrides.repositories import (
    NullRideTransactions,
    ParticipationRepository,
    RideRepository,
    RideTransactions,
)
from clubrides.schemas import (
    AttendanceStatus,
    EvidenceMetrics,
    JoinRideRequest,
    ListUserRidesQuery,
    MatchType,
    PaginatedUserRides,
    ParticipationStatus,
    Ride,
    RideParticipation,
    RideRole,
    RideStatus,
    UpdateParticipantRequest,
    generate_id,
)

logger = logging.getLogger(__name__)


class ParticipationService:
    """
    Joins, departures, roles, attendance and evidence for ride participants.

    Ride counters (``current_participants``, ``waitlist_count``) are only
    changed here, in the same transaction as the participation they count.
    """

    def __init__(
        self,
        participation_repository: ParticipationRepository,
        ride_repository: RideRepository,
        transactions: Optional[RideTransactions] = None,
    ):
        self.participations = participation_repository
        self.rides = ride_repository
        self.transactions = transactions or NullRideTransactions()

    # ------------------------------------------------------------------
    # Joining and leaving
    # ------------------------------------------------------------------

    def join_ride(self, ride_id: str, user_id: str, request: JoinRideRequest) -> RideParticipation:
        """
        Join a published ride, on the waitlist if it is full.

        Raises:
            RideNotFoundError: If the ride does not exist
            InvalidRideStatusError: If the ride is not published
            AlreadyParticipatingError: If the user is confirmed or waitlisted already
            RideFullError: If the ride is full and has no waitlist
        """
        with self.transactions.ride_transaction(ride_id):
            ride = self._load_ride(ride_id)
            if ride.status != RideStatus.PUBLISHED:
                raise InvalidRideStatusError(ride.status.value, "join")

            existing = self.participations.find_by_ride_and_user(ride_id, user_id)
            if existing is not None and participation_lifecycle.is_active(existing):
                raise AlreadyParticipatingError(user_id, ride_id)

            # Free slots go to the waitlist before any newcomer
            ride = self._fill_from_waitlist(ride)

            if ride_lifecycle.can_accept_participants(ride):
                joined = participation_lifecycle.create(
                    ride_id, ride.club_id, user_id, request, ParticipationStatus.CONFIRMED
                )
                ride = ride_lifecycle.increment_participants(ride)
            elif ride_lifecycle.is_waitlist_available(ride):
                position = self.participations.get_waitlist_position(ride_id) + 1
                joined = participation_lifecycle.create(
                    ride_id,
                    ride.club_id,
                    user_id,
                    request,
                    ParticipationStatus.WAITLISTED,
                    position,
                )
                ride = ride_lifecycle.increment_waitlist(ride)
            else:
                raise RideFullError(ride_id)

            self.rides.update_counters(ride)
            self.participations.create(joined)

        logger.info(
            "User %s joined ride %s as %s%s",
            user_id,
            ride_id,
            joined.status.value,
            f" (position {joined.waitlist_position})" if joined.waitlist_position else "",
        )
        return joined

    def create_captain(self, ride: Ride) -> RideParticipation:
        """Issue the captain participation for a newly created ride's creator."""
        captain = participation_lifecycle.create_captain(ride.ride_id, ride.club_id, ride.created_by)
        self.participations.create(captain)
        return captain

    def leave_ride(self, ride_id: str, user_id: str) -> RideParticipation:
        return self._end_participation(ride_id, user_id, participation_lifecycle.withdraw)

    def remove_participant(self, ride_id: str, user_id: str) -> RideParticipation:
        return self._end_participation(ride_id, user_id, participation_lifecycle.remove)

    def _end_participation(self, ride_id: str, user_id: str, transition) -> RideParticipation:
        with self.transactions.ride_transaction(ride_id):
            current = self._load_participation(ride_id, user_id)
            if current.role == RideRole.CAPTAIN:
                raise CannotRemoveCaptainError()

            ride = self._load_ride(ride_id)
            prior_status = current.status
            ended = transition(current)
            self.participations.update(ended)

            if prior_status == ParticipationStatus.CONFIRMED:
                ride = ride_lifecycle.decrement_participants(ride)
                ride = self._fill_from_waitlist(ride)
            elif prior_status == ParticipationStatus.WAITLISTED:
                ride = ride_lifecycle.decrement_waitlist(ride)
                self._reorder_waitlist(ride_id)

            self.rides.update_counters(ride)

        logger.info(
            "Participation %s in ride %s ended as %s (was %s)",
            ended.participation_id, ride_id, ended.status.value, prior_status.value,
        )
        return ended

    # ------------------------------------------------------------------
    # Waitlist maintenance
    # ------------------------------------------------------------------

    def _waitlisted(self, ride_id: str) -> List[RideParticipation]:
        waitlisted = [
            p for p in self.participations.find_by_ride_id(ride_id)
            if p.status == ParticipationStatus.WAITLISTED
        ]
        return sorted(waitlisted, key=lambda p: (p.waitlist_position or 0, p.joined_at))

    def promote_waitlisted(self, ride_id: str) -> Ride:
        """
        Move waitlisted riders into every free confirmed slot, lowest position first.

        Called after the ride's capacity was raised.

        Raises:
            RideNotFoundError: If the ride does not exist
        """
        with self.transactions.ride_transaction(ride_id):
            ride = self._fill_from_waitlist(self._load_ride(ride_id))
            self.rides.update_counters(ride)
        return ride

    def _fill_from_waitlist(self, ride: Ride) -> Ride:
        if not ride_lifecycle.can_accept_participants(ride):
            return ride

        waitlisted = self._waitlisted(ride.ride_id)
        promoted_any = False
        while waitlisted and ride_lifecycle.can_accept_participants(ride):
            promoted = participation_lifecycle.promote_from_waitlist(waitlisted.pop(0))
            self.participations.update(promoted)
            logger.info(
                "Promoted user %s from waitlist of ride %s", promoted.user_id, ride.ride_id
            )
            ride = ride_lifecycle.increment_participants(ride)
            ride = ride_lifecycle.decrement_waitlist(ride)
            promoted_any = True

        if promoted_any:
            self._reorder_waitlist(ride.ride_id)
        return ride

    def _reorder_waitlist(self, ride_id: str) -> None:
        # O(N) per call
        for position, waitlisted in enumerate(self._waitlisted(ride_id), start=1):
            if waitlisted.waitlist_position != position:
                self.participations.update(
                    participation_lifecycle.update_waitlist_position(waitlisted, position)
                )

    # ------------------------------------------------------------------
    # Roles and listings
    # ------------------------------------------------------------------

    def update_participant_role(
        self, ride_id: str, user_id: str, request: UpdateParticipantRequest
    ) -> RideParticipation:
        current = self._load_participation(ride_id, user_id)
        updated = participation_lifecycle.update_role(current, request.role)
        self.participations.update(updated)
        logger.info(
            "Changed role of %s in ride %s: %s -> %s (%s)",
            user_id, ride_id, current.role.value, updated.role.value, request.reason or "no reason",
        )
        return updated

    def get_ride_participants(self, ride_id: str) -> List[RideParticipation]:
        return self.participations.find_by_ride_id(ride_id)

    def get_user_rides(self, user_id: str, query: ListUserRidesQuery) -> PaginatedUserRides:
        return self.participations.find_by_user_id(user_id, query)

    # ------------------------------------------------------------------
    # Attendance and evidence
    # ------------------------------------------------------------------

    def update_attendance(
        self,
        ride_id: str,
        user_id: str,
        attendance_status: AttendanceStatus,
        confirmed_by: str,
    ) -> RideParticipation:
        current = self._load_confirmed(ride_id, user_id, "update attendance of")
        updated = participation_lifecycle.update_attendance(current, attendance_status, confirmed_by)
        self.participations.update(updated)
        return updated

    def link_manual_evidence(
        self,
        ride_id: str,
        user_id: str,
        evidence_id: Optional[str],
        description: str,
        confirmed_by: str,
    ) -> RideParticipation:
        current = self._load_confirmed(ride_id, user_id, "link evidence to")
        updated = participation_lifecycle.link_manual_evidence(
            current, evidence_id or generate_id("evid"), confirmed_by
        )
        self.participations.update(updated)
        logger.info(
            "Manual evidence %s linked to %s in ride %s by %s: %s",
            updated.evidence.ref_id, user_id, ride_id, confirmed_by, description,
        )
        return updated

    def link_strava_evidence(
        self,
        ride_id: str,
        user_id: str,
        strava_activity_id: str,
        match_type: MatchType,
        metrics: Optional[EvidenceMetrics] = None,
        confidence: Optional[float] = None,
    ) -> RideParticipation:
        current = self._load_confirmed(ride_id, user_id, "link evidence to")
        updated = participation_lifecycle.link_strava_evidence(
            current, strava_activity_id, match_type, metrics, confidence
        )
        self.participations.update(updated)
        logger.info(
            "Strava activity %s linked to %s in ride %s (%s)",
            strava_activity_id, user_id, ride_id, match_type.value,
        )
        return updated

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------

    def _load_ride(self, ride_id: str) -> Ride:
        ride = self.rides.find_by_id(ride_id)
        if ride is None:
            raise RideNotFoundError(ride_id)
        return ride

    def _load_participation(self, ride_id: str, user_id: str) -> RideParticipation:
        found = self.participations.find_by_ride_and_user(ride_id, user_id)
        if found is None:
            raise ParticipationNotFoundError(f"{ride_id}:{user_id}")
        return found

    def _load_confirmed(self, ride_id: str, user_id: str, operation: str) -> RideParticipation:
        found = self._load_participation(ride_id, user_id)
        if not participation_lifecycle.can_update_attendance(found):
            raise InvalidParticipationStatusError(found.status.value, operation)
        return found
