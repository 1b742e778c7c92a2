"""
Ride lifecycle state machine.

Rides move draft -> published -> active -> completed, and can be cancelled
from draft, published or active. Every transition here is a pure function:
it checks the guard for the current status and returns a new ``Ride``.
Counter adjustments are only meant to be called by the participation service.
"""

from typing import Optional

from clubrides.errors import (
    InvalidRideStatusError,
    RideCapacityExceededError,
    RideValidationError,
)
from clubrides.schemas import (
    CreateRideRequest,
    Ride,
    RideAudience,
    RideScope,
    RideStatus,
    UpdateRideRequest,
    generate_id,
    utcnow,
)

UPDATABLE_STATUSES = frozenset({RideStatus.DRAFT, RideStatus.PUBLISHED})
CANCELLABLE_STATUSES = frozenset(
    {RideStatus.DRAFT, RideStatus.PUBLISHED, RideStatus.ACTIVE}
)


def _evolve(ride: Ride, **changes) -> Ride:
    """Build a new, re-validated ride with ``changes`` applied."""
    data = ride.model_dump()
    data.update(changes)
    return Ride.model_validate(data)


def _require(ride: Ride, allowed, operation: str) -> None:
    if ride.status not in allowed:
        raise InvalidRideStatusError(ride.status.value, operation)


def create(request: CreateRideRequest, created_by: str, club_id: str) -> Ride:
    """
    Build a new ride from a validated request.

    The ride starts as a draft visible by invitation only, or as a published
    members-only ride when immediate publication was requested (the caller is
    responsible for checking the publish capability first).
    """
    now = utcnow()
    publish_now = request.publish_immediately
    return Ride(
        ride_id=generate_id("ride"),
        club_id=club_id,
        title=request.title.strip(),
        description=request.description.strip(),
        ride_type=request.ride_type,
        difficulty=request.difficulty,
        status=RideStatus.PUBLISHED if publish_now else RideStatus.DRAFT,
        scope=RideScope.CLUB,
        audience=RideAudience.MEMBERS_ONLY if publish_now else RideAudience.INVITE_ONLY,
        start_date_time=request.start_date_time,
        estimated_duration=request.estimated_duration,
        max_participants=request.max_participants,
        current_participants=0,
        waitlist_count=0,
        allow_waitlist=True if request.allow_waitlist is None else request.allow_waitlist,
        is_public=request.is_public,
        created_by=created_by,
        created_at=now,
        updated_at=now,
        published_by=created_by if publish_now else None,
        published_at=now if publish_now else None,
        meeting_point=request.meeting_point,
        route=request.route,
        requirements=request.requirements,
    )


# ----------------------------------------------------------------------------
# Guards
# ----------------------------------------------------------------------------

def can_be_published(ride: Ride) -> bool:
    return ride.status == RideStatus.DRAFT


def can_be_updated(ride: Ride) -> bool:
    return ride.status in UPDATABLE_STATUSES


def can_be_cancelled(ride: Ride) -> bool:
    return ride.status in CANCELLABLE_STATUSES


def can_be_started(ride: Ride) -> bool:
    return ride.status == RideStatus.PUBLISHED


def can_be_completed(ride: Ride) -> bool:
    return ride.status == RideStatus.ACTIVE


def can_accept_participants(ride: Ride) -> bool:
    """True when the ride is published and has a free confirmed slot."""
    if ride.status != RideStatus.PUBLISHED:
        return False
    if ride.max_participants is None:
        return True
    return ride.current_participants < ride.max_participants


def is_waitlist_available(ride: Ride) -> bool:
    """True when the ride is at capacity and accepts a waitlist."""
    return (
        ride.allow_waitlist
        and ride.max_participants is not None
        and ride.current_participants >= ride.max_participants
    )


# ----------------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------------

def publish(
    ride: Ride,
    published_by: str,
    audience: Optional[RideAudience] = None,
    is_public: Optional[bool] = None,
) -> Ride:
    if not can_be_published(ride):
        raise InvalidRideStatusError(ride.status.value, "publish")

    now = utcnow()
    changes = dict(
        status=RideStatus.PUBLISHED,
        audience=audience or RideAudience.MEMBERS_ONLY,
        published_by=published_by,
        published_at=now,
        updated_at=now,
    )
    if is_public is not None:
        changes["is_public"] = is_public
    return _evolve(ride, **changes)


def update(ride: Ride, patch: UpdateRideRequest) -> Ride:
    """Apply the fields present in ``patch``; everything else is untouched."""
    _require(ride, UPDATABLE_STATUSES, "update")

    changes = patch.present_fields()
    new_max = changes.get("max_participants", ride.max_participants)
    if new_max is not None and new_max < ride.current_participants:
        raise RideValidationError(
            f"Maximum participants ({new_max}) cannot be lower than "
            f"current participants ({ride.current_participants})"
        )
    if changes.get("allow_waitlist") is False and ride.waitlist_count > 0:
        raise RideValidationError(
            "Waitlist cannot be disabled while participants are waitlisted"
        )

    changes["updated_at"] = utcnow()
    return _evolve(ride, **changes)


def cancel(ride: Ride, reason: Optional[str] = None) -> Ride:
    _require(ride, CANCELLABLE_STATUSES, "cancel")

    now = utcnow()
    return _evolve(
        ride,
        status=RideStatus.CANCELLED,
        cancelled_at=now,
        cancellation_reason=reason,
        updated_at=now,
    )


def start(ride: Ride, started_by: str) -> Ride:
    if not can_be_started(ride):
        raise InvalidRideStatusError(ride.status.value, "start")

    now = utcnow()
    return _evolve(
        ride,
        status=RideStatus.ACTIVE,
        started_by=started_by,
        started_at=now,
        updated_at=now,
    )


def complete(ride: Ride, completed_by: str, notes: Optional[str] = None) -> Ride:
    if not can_be_completed(ride):
        raise InvalidRideStatusError(ride.status.value, "complete")

    now = utcnow()
    return _evolve(
        ride,
        status=RideStatus.COMPLETED,
        completed_by=completed_by,
        completed_at=now,
        completion_notes=notes,
        updated_at=now,
    )


# ----------------------------------------------------------------------------
# Counters (participation service only)
# ----------------------------------------------------------------------------

def increment_participants(ride: Ride) -> Ride:
    if ride.max_participants is not None and ride.current_participants >= ride.max_participants:
        raise RideCapacityExceededError(ride.max_participants)
    return _evolve(
        ride, current_participants=ride.current_participants + 1, updated_at=utcnow()
    )


def decrement_participants(ride: Ride) -> Ride:
    if ride.current_participants == 0:
        return ride
    return _evolve(
        ride, current_participants=ride.current_participants - 1, updated_at=utcnow()
    )


def increment_waitlist(ride: Ride) -> Ride:
    return _evolve(ride, waitlist_count=ride.waitlist_count + 1, updated_at=utcnow())


def decrement_waitlist(ride: Ride) -> Ride:
    if ride.waitlist_count == 0:
        return ride
    return _evolve(ride, waitlist_count=ride.waitlist_count - 1, updated_at=utcnow())
