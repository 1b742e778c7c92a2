"""
Attendance evidence from ingested activities.

When an athlete's activity arrives, it is compared with every ride the athlete
was confirmed on that has started, and the best match becomes Strava evidence
on that participation.
"""

import logging
from typing import List, Optional, Tuple

from clubrides.activity_schemas import MatchResult, StravaActivity
from clubrides.matching import ActivityMatcher, generate_ride_code
from clubrides.participation_service import ParticipationService
from clubrides.repositories import ParticipationRepository, RideRepository
from clubrides.schemas import ParticipationStatus, RideParticipation, RideStatus

logger = logging.getLogger(__name__)

MATCHABLE_RIDE_STATUSES = frozenset({RideStatus.ACTIVE, RideStatus.COMPLETED})


class ActivityIngestionService:
    """Runs the matcher for incoming activities and links the evidence."""

    def __init__(
        self,
        participation_repository: ParticipationRepository,
        ride_repository: RideRepository,
        participation_service: ParticipationService,
        matcher: Optional[ActivityMatcher] = None,
    ):
        self.participations = participation_repository
        self.rides = ride_repository
        self.participation_service = participation_service
        self.matcher = matcher or ActivityMatcher()

    def process_activity(self, activity: StravaActivity) -> List[Tuple[str, MatchResult]]:
        """
        Match one activity against the athlete's candidate rides.

        Candidates are confirmed participations without evidence whose ride is
        active or completed. Only the highest-confidence match is linked.

        Args:
            activity: Activity ingested for ``activity.user_id``

        Returns:
            ``(ride_id, result)`` for every ride that was evaluated
        """
        evaluated: List[Tuple[str, MatchResult]] = []
        best: Optional[Tuple[RideParticipation, MatchResult]] = None

        for participation in self._candidates(activity.user_id):
            ride = self.rides.find_by_id(participation.ride_id)
            if ride is None or ride.status not in MATCHABLE_RIDE_STATUSES:
                continue

            result = self.matcher.match(activity, ride, generate_ride_code(ride.ride_id))
            evaluated.append((ride.ride_id, result))

            if result.matched and (best is None or result.confidence > best[1].confidence):
                best = (participation, result)

        if best is None:
            logger.info(
                "Activity %s of user %s matched none of %d candidate rides",
                activity.strava_activity_id, activity.user_id, len(evaluated),
            )
            return evaluated

        participation, result = best
        self.participation_service.link_strava_evidence(
            participation.ride_id,
            participation.user_id,
            activity.strava_activity_id,
            result.match_type,
            activity.get_metrics_snapshot(),
            result.confidence,
        )
        logger.info(
            "Linked activity %s to ride %s (%s, confidence %.2f)",
            activity.strava_activity_id, participation.ride_id, result.match_type.value, result.confidence,
        )
        return evaluated

    def _candidates(self, user_id: str) -> List[RideParticipation]:
        return [
            p for p in self.participations.find_all_by_user_id(user_id)
            if p.status == ParticipationStatus.CONFIRMED and p.evidence is None
        ]
