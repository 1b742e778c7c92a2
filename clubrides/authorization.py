"""
Capability-based authorization for ride operations.

Each club role maps to a fixed, ordered set of ride capabilities; every role
holds everything the role below it holds. Two overrides sit on top of the
table lookup:

- the system capability ``manage_all_clubs`` allows everything;
- the creator of a ride may manage and cancel it whatever their club role.

``require_ride_capability`` is the gate called before each mutating
operation. The ``can_*`` helpers and ``get_user_ride_capabilities`` are
read-only derivations for clients that want to hide unavailable actions.
"""

import logging
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from clubrides.errors import InsufficientPrivilegesError
from clubrides.schemas import RideScope, RideStatus

logger = logging.getLogger(__name__)


class RideCapability(str, Enum):
    VIEW_CLUB_RIDES = "view_club_rides"
    JOIN_RIDES = "join_rides"
    CREATE_RIDE_PROPOSALS = "create_ride_proposals"
    VIEW_DRAFT_RIDES = "view_draft_rides"
    PUBLISH_OFFICIAL_RIDES = "publish_official_rides"
    MANAGE_RIDES = "manage_rides"
    CANCEL_RIDES = "cancel_rides"
    MANAGE_PARTICIPANTS = "manage_participants"
    ASSIGN_LEADERSHIP = "assign_leadership"


class SystemCapability(str, Enum):
    MANAGE_ALL_CLUBS = "manage_all_clubs"


class ClubRole(str, Enum):
    MEMBER = "member"
    CAPTAIN = "captain"
    ADMIN = "admin"
    OWNER = "owner"


class MembershipStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    REMOVED = "removed"


class ClubMembership(BaseModel):
    membership_id: str
    club_id: str
    role: ClubRole
    status: MembershipStatus = MembershipStatus.ACTIVE
    joined_at: Optional[datetime] = None


class AuthContext(BaseModel):
    """Who is calling, with the memberships needed for capability checks."""

    user_id: str
    system_capabilities: List[SystemCapability] = Field(default_factory=list)
    club_memberships: List[ClubMembership] = Field(default_factory=list)


class MembershipLookup(Protocol):
    def get_user_memberships(self, user_id: str) -> List[ClubMembership]:
        ...


# ============================================================================
# Role -> capability table
# ============================================================================

_MEMBER: Tuple[RideCapability, ...] = (
    RideCapability.VIEW_CLUB_RIDES,
    RideCapability.JOIN_RIDES,
    RideCapability.CREATE_RIDE_PROPOSALS,
)
_CAPTAIN = _MEMBER + (
    RideCapability.VIEW_DRAFT_RIDES,
    RideCapability.PUBLISH_OFFICIAL_RIDES,
    RideCapability.MANAGE_PARTICIPANTS,
)
_ADMIN = _CAPTAIN + (
    RideCapability.MANAGE_RIDES,
    RideCapability.CANCEL_RIDES,
    RideCapability.ASSIGN_LEADERSHIP,
)
_OWNER = tuple(RideCapability)

ROLE_CAPABILITIES: Mapping[ClubRole, Tuple[RideCapability, ...]] = MappingProxyType(
    {
        ClubRole.MEMBER: _MEMBER,
        ClubRole.CAPTAIN: _CAPTAIN,
        ClubRole.ADMIN: _ADMIN,
        ClubRole.OWNER: _OWNER,
    }
)

CREATOR_OVERRIDE_CAPABILITIES = frozenset(
    {RideCapability.MANAGE_RIDES, RideCapability.CANCEL_RIDES}
)


# ============================================================================
# Predicates
# ============================================================================

def has_system_override(auth_context: AuthContext) -> bool:
    return SystemCapability.MANAGE_ALL_CLUBS in auth_context.system_capabilities


def find_active_membership(
    auth_context: AuthContext, club_id: str
) -> Optional[ClubMembership]:
    for membership in auth_context.club_memberships:
        if membership.club_id == club_id and membership.status == MembershipStatus.ACTIVE:
            return membership
    return None


def role_has_capability(role: ClubRole, capability: RideCapability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, ())


def is_creator_override(
    auth_context: AuthContext,
    capability: RideCapability,
    ride_created_by: Optional[str],
) -> bool:
    return (
        ride_created_by is not None
        and ride_created_by == auth_context.user_id
        and capability in CREATOR_OVERRIDE_CAPABILITIES
    )


# ============================================================================
# Gate and queries
# ============================================================================

def require_ride_capability(
    capability: RideCapability,
    auth_context: AuthContext,
    club_id: str,
    ride_id: Optional[str] = None,
    ride_created_by: Optional[str] = None,
) -> None:
    """
    Raise ``InsufficientPrivilegesError`` unless the caller holds ``capability``.

    Args:
        capability: Capability the operation requires
        auth_context: Caller identity and memberships
        club_id: Club that owns the resource
        ride_id: Ride being acted on, if any (used in the error's resource)
        ride_created_by: Creator of that ride, enabling the creator override

    Raises:
        InsufficientPrivilegesError: If none of the override rules nor the
            caller's club role grant the capability
    """
    if has_system_override(auth_context):
        return

    resource = f"ride:{ride_id}" if ride_id else f"club:{club_id}"

    membership = find_active_membership(auth_context, club_id)
    if membership is None:
        logger.info(
            "Denied %s to %s on %s: no active membership in club %s",
            capability.value, auth_context.user_id, resource, club_id,
        )
        raise InsufficientPrivilegesError(capability.value, auth_context.user_id, resource)

    if is_creator_override(auth_context, capability, ride_created_by):
        return

    if not role_has_capability(membership.role, capability):
        logger.info(
            "Denied %s to %s on %s: role %s lacks capability",
            capability.value, auth_context.user_id, resource, membership.role.value,
        )
        raise InsufficientPrivilegesError(capability.value, auth_context.user_id, resource)


def can_view_ride(
    auth_context: AuthContext,
    club_id: str,
    ride_status: RideStatus,
    ride_scope: RideScope,
    ride_created_by: str,
    is_public: bool,
) -> bool:
    if has_system_override(auth_context):
        return True

    # Published public rides are readable by anyone
    if is_public and ride_status == RideStatus.PUBLISHED:
        return True

    if ride_scope != RideScope.CLUB:
        return False

    membership = find_active_membership(auth_context, club_id)
    if membership is None:
        return False

    if ride_status == RideStatus.DRAFT:
        if ride_created_by == auth_context.user_id:
            return True
        return role_has_capability(membership.role, RideCapability.VIEW_DRAFT_RIDES)

    return True


def can_publish_ride(auth_context: AuthContext, club_id: str) -> bool:
    if has_system_override(auth_context):
        return True
    membership = find_active_membership(auth_context, club_id)
    if membership is None:
        return False
    return role_has_capability(membership.role, RideCapability.PUBLISH_OFFICIAL_RIDES)


def get_user_ride_capabilities(
    auth_context: AuthContext, club_id: str
) -> List[RideCapability]:
    if has_system_override(auth_context):
        return list(RideCapability)
    membership = find_active_membership(auth_context, club_id)
    if membership is None:
        return []
    return list(ROLE_CAPABILITIES.get(membership.role, ()))


def build_auth_context(
    user_id: str,
    membership_lookup: MembershipLookup,
    system_capabilities: Iterable[SystemCapability] = (),
) -> AuthContext:
    """Populate an ``AuthContext`` with the user's current memberships."""
    return AuthContext(
        user_id=user_id,
        system_capabilities=list(system_capabilities),
        club_memberships=membership_lookup.get_user_memberships(user_id),
    )
