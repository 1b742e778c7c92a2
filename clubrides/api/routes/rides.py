"""
Rides API Routes

Endpoints for the ride lifecycle: create, list, read, publish, update, cancel,
start, complete and summary. Every mutating endpoint checks the caller's ride
capability before calling the service.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from clubrides.api.dependencies import (
    get_auth_context,
    get_participation_service,
    get_ride_service,
)
from clubrides.api.models.responses import RideDetailResponse, RideListResponse
from clubrides.authorization import (
    AuthContext,
    RideCapability,
    can_view_ride,
    get_user_ride_capabilities,
    require_ride_capability,
)
from clubrides.errors import InsufficientPrivilegesError, RideNotFoundError
from clubrides.matching import generate_ride_code
from clubrides.participation_service import ParticipationService
from clubrides.ride_service import RideService
from clubrides.schemas import (
    CancelRideRequest,
    CompleteRideRequest,
    CreateRideRequest,
    ListRidesQuery,
    PublishRideRequest,
    Ride,
    RideDifficulty,
    RideStatus,
    RideSummary,
    RideType,
    UpdateRideRequest,
)

router = APIRouter()


def load_club_ride(rides: RideService, club_id: str, ride_id: str) -> Ride:
    """Fetch a ride, treating a ride of another club as not found."""
    ride = rides.get_ride(ride_id)
    if ride.club_id != club_id:
        raise RideNotFoundError(ride_id)
    return ride


def _visible(auth: AuthContext, ride: Ride) -> bool:
    return can_view_ride(
        auth, ride.club_id, ride.status, ride.scope, ride.created_by, ride.is_public
    )


@router.post("/clubs/{club_id}/rides", response_model=Ride, status_code=status.HTTP_201_CREATED)
def create_ride(
    club_id: str,
    request: CreateRideRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> Ride:
    """
    Create a ride in a club.

    Any member may propose a ride; publishing immediately additionally needs
    the publish capability. The creator becomes the ride's captain.

    Raises:
        InsufficientPrivilegesError: If the caller may not propose or publish
        RideValidationError: If the request breaks a business rule
    """
    require_ride_capability(RideCapability.CREATE_RIDE_PROPOSALS, auth, club_id)
    if request.publish_immediately:
        require_ride_capability(RideCapability.PUBLISH_OFFICIAL_RIDES, auth, club_id)

    return rides.create_ride(
        request, auth.user_id, club_id, on_created=participations.create_captain
    )


@router.get("/clubs/{club_id}/rides", response_model=RideListResponse)
def list_rides(
    club_id: str,
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    ride_status: Optional[RideStatus] = Query(None, alias="status"),
    ride_type: Optional[RideType] = Query(None, alias="rideType"),
    difficulty: Optional[RideDifficulty] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    include_drafts: bool = Query(False, alias="includeDrafts"),
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> RideListResponse:
    """
    List a club's rides the caller may see.

    Other members' drafts are excluded by the query itself, so a page only
    falls short of ``limit`` when it is the last one.
    """
    require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, club_id)
    sees_drafts = RideCapability.VIEW_DRAFT_RIDES in get_user_ride_capabilities(auth, club_id)
    if include_drafts and not sees_drafts:
        raise InsufficientPrivilegesError(
            RideCapability.VIEW_DRAFT_RIDES.value, auth.user_id, f"club:{club_id}"
        )

    page = rides.list_club_rides(
        club_id,
        ListRidesQuery(
            limit=limit,
            cursor=cursor,
            status=ride_status,
            ride_type=ride_type,
            difficulty=difficulty,
            start_date=start_date,
            end_date=end_date,
            include_drafts=include_drafts,
            drafts_created_by=None if sees_drafts else auth.user_id,
        ),
    )
    return RideListResponse(rides=page.rides, count=len(page.rides), next_cursor=page.next_cursor)


@router.get("/clubs/{club_id}/rides/{ride_id}", response_model=RideDetailResponse)
def get_ride(
    club_id: str,
    ride_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> RideDetailResponse:
    ride = load_club_ride(rides, club_id, ride_id)
    if not _visible(auth, ride):
        raise InsufficientPrivilegesError(
            RideCapability.VIEW_CLUB_RIDES.value, auth.user_id, f"ride:{ride_id}"
        )

    return RideDetailResponse(
        ride=ride,
        participants=participations.get_ride_participants(ride_id),
        ride_code=generate_ride_code(ride_id),
        capabilities=get_user_ride_capabilities(auth, club_id),
    )


@router.post("/clubs/{club_id}/rides/{ride_id}/publish", response_model=Ride)
def publish_ride(
    club_id: str,
    ride_id: str,
    request: Optional[PublishRideRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> Ride:
    load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.PUBLISH_OFFICIAL_RIDES, auth, club_id, ride_id)
    return rides.publish_ride(ride_id, auth.user_id, request or PublishRideRequest())


@router.put("/clubs/{club_id}/rides/{ride_id}", response_model=Ride)
def update_ride(
    club_id: str,
    ride_id: str,
    request: UpdateRideRequest,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
    participations: ParticipationService = Depends(get_participation_service),
) -> Ride:
    """Update a draft or published ride; extra capacity goes to the waitlist first."""
    ride = load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_RIDES, auth, club_id, ride_id, ride.created_by)
    with rides.transactions.ride_transaction(ride_id):
        rides.update_ride(ride_id, request)
        return participations.promote_waitlisted(ride_id)


@router.post("/clubs/{club_id}/rides/{ride_id}/cancel", response_model=Ride)
def cancel_ride(
    club_id: str,
    ride_id: str,
    request: Optional[CancelRideRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> Ride:
    ride = load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.CANCEL_RIDES, auth, club_id, ride_id, ride.created_by)
    return rides.cancel_ride(ride_id, request or CancelRideRequest())


@router.post("/clubs/{club_id}/rides/{ride_id}/start", response_model=Ride)
def start_ride(
    club_id: str,
    ride_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> Ride:
    ride = load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_RIDES, auth, club_id, ride_id, ride.created_by)
    return rides.start_ride(ride_id, club_id, auth.user_id)


@router.post("/clubs/{club_id}/rides/{ride_id}/complete", response_model=Ride)
def complete_ride(
    club_id: str,
    ride_id: str,
    request: Optional[CompleteRideRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> Ride:
    ride = load_club_ride(rides, club_id, ride_id)
    require_ride_capability(RideCapability.MANAGE_RIDES, auth, club_id, ride_id, ride.created_by)
    notes = request.completion_notes if request else None
    return rides.complete_ride(ride_id, club_id, auth.user_id, notes)


@router.get("/clubs/{club_id}/rides/{ride_id}/summary", response_model=Optional[RideSummary])
def get_ride_summary(
    club_id: str,
    ride_id: str,
    auth: AuthContext = Depends(get_auth_context),
    rides: RideService = Depends(get_ride_service),
) -> Optional[RideSummary]:
    """Summary of a completed ride; ``null`` until the ride completes."""
    require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, club_id, ride_id)
    load_club_ride(rides, club_id, ride_id)
    return rides.get_ride_summary(ride_id, club_id)
