"""
Participation state machine.

A participation is confirmed or waitlisted while active, and ends as
withdrawn (the user left) or removed (a manager took them off). Functions in
this module check their guard and return a new ``RideParticipation``; a
rejected transition leaves the original value untouched.
"""

from typing import Dict, FrozenSet, Optional

from clubrides.errors import (
    CannotRemoveCaptainError,
    InvalidParticipationStatusError,
    InvalidRoleTransitionError,
)
from clubrides.schemas import (
    TERMINAL_PARTICIPATION_STATUSES,
    AttendanceStatus,
    Evidence,
    EvidenceMetrics,
    EvidenceType,
    JoinRideRequest,
    MatchType,
    ParticipationStatus,
    RideParticipation,
    RideRole,
    generate_id,
    utcnow,
)

# Captain can step down to leader but never straight to participant.
ALLOWED_ROLE_TRANSITIONS: Dict[RideRole, FrozenSet[RideRole]] = {
    RideRole.PARTICIPANT: frozenset({RideRole.LEADER, RideRole.CAPTAIN}),
    RideRole.LEADER: frozenset({RideRole.PARTICIPANT, RideRole.CAPTAIN}),
    RideRole.CAPTAIN: frozenset({RideRole.LEADER}),
}

ACTIVE_STATUSES = frozenset({ParticipationStatus.CONFIRMED, ParticipationStatus.WAITLISTED})


def _evolve(participation: RideParticipation, **changes) -> RideParticipation:
    data = participation.model_dump()
    data.update(changes)
    return RideParticipation.model_validate(data)


def create(
    ride_id: str,
    club_id: str,
    user_id: str,
    request: JoinRideRequest,
    status: ParticipationStatus = ParticipationStatus.CONFIRMED,
    waitlist_position: Optional[int] = None,
) -> RideParticipation:
    return RideParticipation(
        participation_id=generate_id("part"),
        ride_id=ride_id,
        club_id=club_id,
        user_id=user_id,
        role=RideRole.PARTICIPANT,
        status=status,
        joined_at=utcnow(),
        message=request.message,
        waitlist_position=waitlist_position,
    )


def create_captain(ride_id: str, club_id: str, user_id: str) -> RideParticipation:
    return RideParticipation(
        participation_id=generate_id("part"),
        ride_id=ride_id,
        club_id=club_id,
        user_id=user_id,
        role=RideRole.CAPTAIN,
        status=ParticipationStatus.CONFIRMED,
        joined_at=utcnow(),
    )


# ----------------------------------------------------------------------------
# Guards
# ----------------------------------------------------------------------------

def is_active(participation: RideParticipation) -> bool:
    return participation.status in ACTIVE_STATUSES


def can_leave(participation: RideParticipation) -> bool:
    return participation.status in ACTIVE_STATUSES


def can_update_role(participation: RideParticipation) -> bool:
    return participation.status == ParticipationStatus.CONFIRMED


def can_update_attendance(participation: RideParticipation) -> bool:
    return participation.status == ParticipationStatus.CONFIRMED


def has_evidence(participation: RideParticipation) -> bool:
    return participation.evidence is not None


def is_role_transition_allowed(from_role: RideRole, to_role: RideRole) -> bool:
    return to_role in ALLOWED_ROLE_TRANSITIONS.get(from_role, frozenset())


def validate_role_transition(from_role: RideRole, to_role: RideRole) -> None:
    if not is_role_transition_allowed(from_role, to_role):
        raise InvalidRoleTransitionError(from_role.value, to_role.value)


# ----------------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------------

def update_role(participation: RideParticipation, new_role: RideRole) -> RideParticipation:
    validate_role_transition(participation.role, new_role)
    if not can_update_role(participation):
        raise InvalidParticipationStatusError(participation.status.value, "update role of")
    return _evolve(participation, role=new_role)


def withdraw(participation: RideParticipation) -> RideParticipation:
    if participation.role == RideRole.CAPTAIN:
        raise CannotRemoveCaptainError()
    if not can_leave(participation):
        raise InvalidParticipationStatusError(participation.status.value, "withdraw")
    return _evolve(
        participation, status=ParticipationStatus.WITHDRAWN, waitlist_position=None
    )


def remove(participation: RideParticipation) -> RideParticipation:
    if participation.role == RideRole.CAPTAIN:
        raise CannotRemoveCaptainError()
    if participation.status in TERMINAL_PARTICIPATION_STATUSES:
        raise InvalidParticipationStatusError(participation.status.value, "remove")
    return _evolve(
        participation, status=ParticipationStatus.REMOVED, waitlist_position=None
    )


def promote_from_waitlist(participation: RideParticipation) -> RideParticipation:
    if participation.status != ParticipationStatus.WAITLISTED:
        raise InvalidParticipationStatusError(participation.status.value, "promote")
    return _evolve(
        participation, status=ParticipationStatus.CONFIRMED, waitlist_position=None
    )


def update_waitlist_position(
    participation: RideParticipation, position: int
) -> RideParticipation:
    if participation.status != ParticipationStatus.WAITLISTED:
        raise InvalidParticipationStatusError(
            participation.status.value, "reposition"
        )
    return _evolve(participation, waitlist_position=position)


# ----------------------------------------------------------------------------
# Attendance and evidence
# ----------------------------------------------------------------------------

def _require_confirmed(participation: RideParticipation, operation: str) -> None:
    if not can_update_attendance(participation):
        raise InvalidParticipationStatusError(participation.status.value, operation)


def update_attendance(
    participation: RideParticipation,
    status: AttendanceStatus,
    confirmed_by: Optional[str] = None,
) -> RideParticipation:
    _require_confirmed(participation, "update attendance of")
    changes = dict(attendance_status=status)
    if confirmed_by:
        changes["confirmed_by"] = confirmed_by
        changes["confirmed_at"] = utcnow()
    return _evolve(participation, **changes)


def link_strava_evidence(
    participation: RideParticipation,
    strava_activity_id: str,
    match_type: MatchType,
    metrics: Optional[EvidenceMetrics] = None,
    confidence: Optional[float] = None,
) -> RideParticipation:
    """Attach an external activity as proof of attendance."""
    _require_confirmed(participation, "link evidence to")
    evidence = Evidence(
        type=EvidenceType.STRAVA,
        ref_id=strava_activity_id,
        match_type=match_type,
        confidence=confidence,
        metrics_snapshot=metrics,
        linked_at=utcnow(),
    )
    return _evolve(
        participation, evidence=evidence, attendance_status=AttendanceStatus.ATTENDED
    )


def link_manual_evidence(
    participation: RideParticipation, evidence_id: str, confirmed_by: str
) -> RideParticipation:
    """Record a manager's confirmation that the participant attended."""
    _require_confirmed(participation, "link evidence to")
    now = utcnow()
    evidence = Evidence(
        type=EvidenceType.MANUAL,
        ref_id=evidence_id,
        match_type=MatchType.MANUAL,
        linked_at=now,
    )
    return _evolve(
        participation,
        evidence=evidence,
        attendance_status=AttendanceStatus.ATTENDED,
        confirmed_by=confirmed_by,
        confirmed_at=now,
    )
