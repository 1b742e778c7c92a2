"""
Ride orchestration service.

Loads rides through the repository, validates requests, applies lifecycle
transitions and persists the result. Completing a ride also produces the ride
summary from the ride's participations.
"""

import logging
from typing import Callable, List, Optional

from clubrides import ride as ride_lifecycle
from clubrides.errors import RideNotFoundError, RideValidationError
from clubrides.repositories import NullRideTransactions, RideRepository, RideTransactions
from clubrides.schemas import (
    TERMINAL_PARTICIPATION_STATUSES,
    AggregatedMetrics,
    AttendanceStatus,
    CancelRideRequest,
    CreateRideRequest,
    EvidenceType,
    ListRidesQuery,
    PaginatedRides,
    PublishRideRequest,
    Ride,
    RideParticipation,
    RideStatus,
    RideSummary,
    UpdateRideRequest,
    utcnow,
)
from clubrides.validator import RideRequestValidator

logger = logging.getLogger(__name__)


def summarize_participations(ride: Ride, participations: List[RideParticipation]) -> RideSummary:
    """
    Aggregate attendance and Strava metrics for a completed ride.

    Planned participants are those who had not withdrawn or been removed.
    Metrics are only reported when at least one Strava evidence carries a
    metrics snapshot; average speed is total distance over total moving time.

    Args:
        ride: The completed ride
        participations: Every participation recorded for the ride

    Returns:
        RideSummary ready to persist
    """
    planned = [p for p in participations if p.status not in TERMINAL_PARTICIPATION_STATUSES]

    def with_evidence(evidence_type: EvidenceType) -> List[RideParticipation]:
        return [p for p in participations if p.evidence and p.evidence.type == evidence_type]

    strava = with_evidence(EvidenceType.STRAVA)
    manual = with_evidence(EvidenceType.MANUAL)

    aggregated = None
    snapshots = [p.evidence.metrics_snapshot for p in strava if p.evidence.metrics_snapshot]
    if snapshots:
        total_distance = sum(s.distance_meters or 0.0 for s in snapshots)
        total_elevation = sum(s.elevation_gain_meters or 0.0 for s in snapshots)
        total_time = sum(s.moving_time_seconds or 0 for s in snapshots)
        aggregated = AggregatedMetrics(
            total_distance_meters=total_distance,
            total_elevation_gain_meters=total_elevation,
            average_speed_mps=total_distance / total_time if total_time > 0 else 0.0,
        )

    return RideSummary(
        ride_id=ride.ride_id,
        club_id=ride.club_id,
        completed_at=ride.completed_at or utcnow(),
        participants_planned=len(planned),
        participants_attended=sum(
            1 for p in participations if p.attendance_status == AttendanceStatus.ATTENDED
        ),
        participants_no_show=sum(
            1 for p in participations if p.attendance_status == AttendanceStatus.NO_SHOW
        ),
        participants_with_strava=len(strava),
        participants_with_manual_evidence=len(manual),
        aggregated_metrics=aggregated,
        last_updated_at=utcnow(),
    )


class RideService:
    """
    Drives the ride lifecycle.

    Authorization is the caller's job and must happen before any method here
    is invoked.
    """

    def __init__(
        self,
        ride_repository: RideRepository,
        transactions: Optional[RideTransactions] = None,
        validator: Optional[RideRequestValidator] = None,
    ):
        self.rides = ride_repository
        self.transactions = transactions or NullRideTransactions()
        self.validator = validator or RideRequestValidator()

    def create_ride(
        self,
        request: CreateRideRequest,
        created_by: str,
        club_id: str,
        on_created: Optional[Callable[[Ride], object]] = None,
    ) -> Ride:
        """
        Validate and store a new ride.

        ``on_created`` runs in the same transaction as the insert, so whatever
        it writes (the captain participation) commits or rolls back with the
        ride.
        """
        self.validator.validate_create(request)

        ride = ride_lifecycle.create(request, created_by, club_id)
        with self.transactions.ride_transaction(ride.ride_id):
            self.rides.create(ride)
            if on_created is not None:
                on_created(ride)
        logger.info(
            "Created ride %s in club %s (status=%s) by %s",
            ride.ride_id, club_id, ride.status.value, created_by,
        )
        return ride

    def get_ride(self, ride_id: str) -> Ride:
        ride = self.rides.find_by_id(ride_id)
        if ride is None:
            raise RideNotFoundError(ride_id)
        return ride

    def list_club_rides(self, club_id: str, query: ListRidesQuery) -> PaginatedRides:
        return self.rides.find_by_club_id(club_id, query)

    def publish_ride(self, ride_id: str, published_by: str, request: PublishRideRequest) -> Ride:
        with self.transactions.ride_transaction(ride_id):
            ride = ride_lifecycle.publish(
                self.get_ride(ride_id), published_by, request.audience, request.is_public
            )
            self.rides.update(ride)
        logger.info("Published ride %s by %s", ride_id, published_by)
        return ride

    def update_ride(self, ride_id: str, request: UpdateRideRequest) -> Ride:
        """
        Apply a partial update.

        Raising ``max_participants`` does not promote anyone by itself; callers
        follow up with ``ParticipationService.promote_waitlisted`` in the same
        ride transaction.
        """
        with self.transactions.ride_transaction(ride_id):
            current = self.get_ride(ride_id)
            self.validator.validate_update(request)

            ride = ride_lifecycle.update(current, request)
            self.rides.update(ride)
        return ride

    def cancel_ride(self, ride_id: str, request: CancelRideRequest) -> Ride:
        with self.transactions.ride_transaction(ride_id):
            ride = ride_lifecycle.cancel(self.get_ride(ride_id), request.reason)
            self.rides.update(ride)
        logger.info("Cancelled ride %s (reason=%s)", ride_id, request.reason)
        return ride

    def start_ride(self, ride_id: str, club_id: str, started_by: str) -> Ride:
        with self.transactions.ride_transaction(ride_id):
            ride = ride_lifecycle.start(self._get_club_ride(ride_id, club_id), started_by)
            self.rides.update(ride)
        logger.info("Started ride %s by %s", ride_id, started_by)
        return ride

    def complete_ride(
        self,
        ride_id: str,
        club_id: str,
        completed_by: str,
        completion_notes: Optional[str] = None,
    ) -> Ride:
        """
        Complete an active ride and store its summary.

        Raises:
            RideNotFoundError: If the ride does not exist
            RideValidationError: If the ride belongs to another club
            InvalidRideStatusError: If the ride is not active
        """
        with self.transactions.ride_transaction(ride_id):
            current = self._get_club_ride(ride_id, club_id)
            ride = ride_lifecycle.complete(current, completed_by, completion_notes)
            self.rides.update(ride)

            summary = summarize_participations(ride, self.rides.find_participations(ride_id))
            self.rides.save_ride_summary(summary)

        logger.info(
            "Completed ride %s: planned=%d attended=%d no_show=%d",
            ride_id,
            summary.participants_planned,
            summary.participants_attended,
            summary.participants_no_show,
        )
        return ride

    def get_ride_summary(self, ride_id: str, club_id: str) -> Optional[RideSummary]:
        """Summary of a completed ride; ``None`` while the ride is not completed."""
        ride = self._get_club_ride(ride_id, club_id)
        if ride.status != RideStatus.COMPLETED:
            return None
        return self.rides.find_ride_summary(ride_id)

    def _get_club_ride(self, ride_id: str, club_id: str) -> Ride:
        ride = self.get_ride(ride_id)
        if ride.club_id != club_id:
            raise RideValidationError("Ride does not belong to the specified club")
        return ride
