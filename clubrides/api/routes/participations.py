"""
Participation API Routes

Endpoints for joining and leaving rides, managing participants and their
roles, recording attendance and linking evidence, and a user's own ride list.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from clubrides.api.dependencies import (
    get_auth_context,
    get_participation_service,
    get_ride_service,
)
from clubrides.api.models.responses import ParticipantsResponse
from clubrides.api.routes.rides import load_club_ride
from clubrides.authorization import AuthContext, RideCapability, require_ride_capability
from clubrides.participation_service import ParticipationService
from clubrides.ride_service import RideService
from clubrides.schemas import (
    JoinRideRequest,
    LinkManualEvidenceRequest,
    LinkStravaEvidenceRequest,
    ListUserRidesQuery,
    PaginatedUserRides,
    RideParticipation,
    RideRole,
    UpdateAttendanceRequest,
    UpdateParticipantRequest,
    UserRideFilter,
)

router = APIRouter()

PARTICIPANT_PATH = "/clubs/{club_id}/rides/{ride_id}/participants"


@router.post(
    PARTICIPANT_PATH, response_model=RideParticipation, status_code=status.HTTP_201_CREATED
)
def join_ride(
    club_id: str,
    ride_id: str,
    request: Optional[JoinRideRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    """
    Join a published ride.

    The caller is confirmed while seats remain, otherwise placed at the end of
    the waitlist.

    Raises:
        InsufficientPrivilegesError: If the caller may not join club rides
        AlreadyParticipatingError: If the caller is already confirmed or waitlisted
        RideFullError: If the ride is full and has no waitlist
    """
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.JOIN_RIDES, auth, club_id, ride_id)
    return participations.join_ride(ride_id, auth.user_id, request or JoinRideRequest())


@router.delete(PARTICIPANT_PATH + "/me", response_model=RideParticipation)
def leave_ride(
    club_id: str,
    ride_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.JOIN_RIDES, auth, club_id, ride_id)
    return participations.leave_ride(ride_id, auth.user_id)


@router.get(PARTICIPANT_PATH, response_model=ParticipantsResponse)
def list_participants(
    club_id: str,
    ride_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> ParticipantsResponse:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, club_id, ride_id)
    found = participations.get_ride_participants(ride_id)
    return ParticipantsResponse(participants=found, count=len(found))


@router.put(PARTICIPANT_PATH + "/{user_id}", response_model=RideParticipation)
def update_participant_role(
    club_id: str,
    ride_id: str,
    user_id: str,
    request: UpdateParticipantRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.ASSIGN_LEADERSHIP, auth, club_id, ride_id)
    return participations.update_participant_role(ride_id, user_id, request)


@router.delete(PARTICIPANT_PATH + "/{user_id}", response_model=RideParticipation)
def remove_participant(
    club_id: str,
    ride_id: str,
    user_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_PARTICIPANTS, auth, club_id, ride_id)
    return participations.remove_participant(ride_id, user_id)


@router.put(PARTICIPANT_PATH + "/{user_id}/attendance", response_model=RideParticipation)
def update_attendance(
    club_id: str,
    ride_id: str,
    user_id: str,
    request: UpdateAttendanceRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_PARTICIPANTS, auth, club_id, ride_id)
    return participations.update_attendance(
        ride_id, user_id, request.attendance_status, auth.user_id
    )


@router.post(PARTICIPANT_PATH + "/{user_id}/evidence/manual", response_model=RideParticipation)
def link_manual_evidence(
    club_id: str,
    ride_id: str,
    user_id: str,
    request: LinkManualEvidenceRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_PARTICIPANTS, auth, club_id, ride_id)
    return participations.link_manual_evidence(
        ride_id, user_id, request.evidence_id, request.description, auth.user_id
    )


@router.post(PARTICIPANT_PATH + "/{user_id}/evidence/strava", response_model=RideParticipation)
def link_strava_evidence(
    club_id: str,
    ride_id: str,
    user_id: str,
    request: LinkStravaEvidenceRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideParticipation:
    """Riders may link their own activity; linking for others needs manage_participants."""
    load_club_ride(rides, club_id, ride_id)
    capability = (
        RideCapability.JOIN_RIDES if user_id == auth.user_id else RideCapability.MANAGE_PARTICIPANTS
    )
    require_ride_capability(capability, auth, club_id, ride_id)
    return participations.link_strava_evidence(
        ride_id,
        user_id,
        request.strava_activity_id,
        request.match_type,
        request.metrics,
        request.confidence,
    )


@router.get("/users/me/rides", response_model=PaginatedUserRides)
def list_my_rides(
    ride_filter: Optional[UserRideFilter] = Query(None, alias="status"),
    role: Optional[RideRole] = None,
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context),
    participations: ParticipationService = Depends(get_participation_service),
) -> PaginatedUserRides:
    """Rides the caller has joined, most recent first."""
    return participations.get_user_rides(
        auth.user_id,
        ListUserRidesQuery(status=ride_filter, role=role, limit=limit, cursor=cursor),
    )
