"""
Request and entity factories shared by the test modules.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from clubrides.authorization import AuthContext, ClubMembership, ClubRole, SystemCapability
from clubrides.schemas import CreateRideRequest, MeetingPoint, RideDifficulty, RideType

CLUB_ID = "club_sydney"


def future(days: int = 7) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def make_create_request(**overrides) -> CreateRideRequest:
    data = dict(
        title="Saturday Bay Loop",
        description="Steady 40km loop around the bay",
        ride_type=RideType.SOCIAL,
        difficulty=RideDifficulty.INTERMEDIATE,
        start_date_time=future(),
        estimated_duration=120,
        meeting_point=MeetingPoint(name="Cafe", address="1 Harbour St"),
    )
    data.update(overrides)
    return CreateRideRequest(**data)


def make_auth(
    user_id: str, role: Optional[ClubRole] = None, club_id: str = CLUB_ID, system=()
) -> AuthContext:
    memberships = []
    if role is not None:
        memberships.append(
            ClubMembership(membership_id=f"mem_{user_id}", club_id=club_id, role=role)
        )
    return AuthContext(
        user_id=user_id,
        system_capabilities=list(system),
        club_memberships=memberships,
    )


def make_admin_override(user_id: str = "platform_admin") -> AuthContext:
    return make_auth(user_id, system=[SystemCapability.MANAGE_ALL_CLUBS])
