"""
Tests for capability-based ride authorization.

Test scenarios:
1. Role table: each role holds its own capabilities plus those below it
2. Overrides: system capability and ride creator
3. Denials carry capability, user and resource
4. Visibility of drafts and public rides
"""

import pytest

from clubrides.authorization import (
    ROLE_CAPABILITIES,
    ClubMembership,
    ClubRole,
    MembershipStatus,
    RideCapability,
    build_auth_context,
    can_publish_ride,
    can_view_ride,
    get_user_ride_capabilities,
    require_ride_capability,
)
from clubrides.errors import InsufficientPrivilegesError
from clubrides.schemas import RideScope, RideStatus
from factories import CLUB_ID, make_admin_override, make_auth


class StaticMemberships:
    def __init__(self, memberships):
        self.memberships = memberships

    def get_user_memberships(self, user_id):
        return self.memberships.get(user_id, [])


# Test Cases

def test_role_table_is_cumulative():
    member = set(ROLE_CAPABILITIES[ClubRole.MEMBER])
    captain = set(ROLE_CAPABILITIES[ClubRole.CAPTAIN])
    admin = set(ROLE_CAPABILITIES[ClubRole.ADMIN])
    owner = set(ROLE_CAPABILITIES[ClubRole.OWNER])

    assert member < captain < admin <= owner
    assert owner == set(RideCapability)
    assert member == {
        RideCapability.VIEW_CLUB_RIDES,
        RideCapability.JOIN_RIDES,
        RideCapability.CREATE_RIDE_PROPOSALS,
    }


def test_role_table_is_immutable():
    with pytest.raises(TypeError):
        ROLE_CAPABILITIES[ClubRole.MEMBER] = tuple(RideCapability)


@pytest.mark.parametrize(
    "role,capability,allowed",
    [
        (ClubRole.MEMBER, RideCapability.JOIN_RIDES, True),
        (ClubRole.MEMBER, RideCapability.PUBLISH_OFFICIAL_RIDES, False),
        (ClubRole.CAPTAIN, RideCapability.PUBLISH_OFFICIAL_RIDES, True),
        (ClubRole.CAPTAIN, RideCapability.CANCEL_RIDES, False),
        (ClubRole.ADMIN, RideCapability.CANCEL_RIDES, True),
        (ClubRole.ADMIN, RideCapability.ASSIGN_LEADERSHIP, True),
        (ClubRole.OWNER, RideCapability.MANAGE_RIDES, True),
    ],
)
def test_require_by_role(role, capability, allowed):
    auth = make_auth("u1", role)
    if allowed:
        require_ride_capability(capability, auth, CLUB_ID)
    else:
        with pytest.raises(InsufficientPrivilegesError):
            require_ride_capability(capability, auth, CLUB_ID)


def test_non_member_denied_with_club_resource():
    auth = make_auth("stranger")

    with pytest.raises(InsufficientPrivilegesError) as exc_info:
        require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, CLUB_ID)

    error = exc_info.value
    assert error.capability == "view_club_rides"
    assert error.user_id == "stranger"
    assert error.resource == f"club:{CLUB_ID}"
    assert error.status_code == 403


def test_denial_names_ride_resource():
    auth = make_auth("m1", ClubRole.MEMBER)
    with pytest.raises(InsufficientPrivilegesError) as exc_info:
        require_ride_capability(RideCapability.CANCEL_RIDES, auth, CLUB_ID, ride_id="ride_9")
    assert exc_info.value.resource == "ride:ride_9"


def test_inactive_membership_denied():
    auth = make_auth("s1", ClubRole.ADMIN)
    auth.club_memberships[0].status = MembershipStatus.SUSPENDED

    with pytest.raises(InsufficientPrivilegesError):
        require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, CLUB_ID)


def test_membership_in_other_club_denied():
    auth = make_auth("m1", ClubRole.OWNER, club_id="club_other")
    with pytest.raises(InsufficientPrivilegesError):
        require_ride_capability(RideCapability.VIEW_CLUB_RIDES, auth, CLUB_ID)


def test_system_override_allows_everything():
    auth = make_admin_override()
    for capability in RideCapability:
        require_ride_capability(capability, auth, CLUB_ID)
    assert get_user_ride_capabilities(auth, CLUB_ID) == list(RideCapability)


def test_creator_override_for_manage_and_cancel():
    auth = make_auth("creator", ClubRole.MEMBER)

    require_ride_capability(RideCapability.MANAGE_RIDES, auth, CLUB_ID, "ride_1", "creator")
    require_ride_capability(RideCapability.CANCEL_RIDES, auth, CLUB_ID, "ride_1", "creator")

    # Creator status does not extend to other capabilities
    with pytest.raises(InsufficientPrivilegesError):
        require_ride_capability(
            RideCapability.PUBLISH_OFFICIAL_RIDES, auth, CLUB_ID, "ride_1", "creator"
        )


def test_creator_override_requires_membership():
    auth = make_auth("creator")
    with pytest.raises(InsufficientPrivilegesError):
        require_ride_capability(RideCapability.CANCEL_RIDES, auth, CLUB_ID, "ride_1", "creator")


def test_authorization_is_idempotent():
    auth = make_auth("c1", ClubRole.CAPTAIN)
    for _ in range(3):
        require_ride_capability(RideCapability.PUBLISH_OFFICIAL_RIDES, auth, CLUB_ID)
        with pytest.raises(InsufficientPrivilegesError):
            require_ride_capability(RideCapability.CANCEL_RIDES, auth, CLUB_ID)


def test_draft_visibility():
    member = make_auth("m1", ClubRole.MEMBER)
    captain = make_auth("c1", ClubRole.CAPTAIN)

    args = (CLUB_ID, RideStatus.DRAFT, RideScope.CLUB)
    assert not can_view_ride(member, *args, "someone_else", False)
    assert can_view_ride(member, *args, "m1", False)
    assert can_view_ride(captain, *args, "someone_else", False)


def test_public_published_ride_visible_to_anyone():
    stranger = make_auth("stranger")
    assert can_view_ride(stranger, CLUB_ID, RideStatus.PUBLISHED, RideScope.CLUB, "c1", True)
    assert not can_view_ride(stranger, CLUB_ID, RideStatus.PUBLISHED, RideScope.CLUB, "c1", False)


def test_can_publish_ride():
    assert not can_publish_ride(make_auth("m1", ClubRole.MEMBER), CLUB_ID)
    assert can_publish_ride(make_auth("c1", ClubRole.CAPTAIN), CLUB_ID)
    assert can_publish_ride(make_admin_override(), CLUB_ID)


def test_build_auth_context():
    lookup = StaticMemberships(
        {"u1": [ClubMembership(membership_id="m1", club_id=CLUB_ID, role=ClubRole.ADMIN)]}
    )

    auth = build_auth_context("u1", lookup)

    assert auth.user_id == "u1"
    assert get_user_ride_capabilities(auth, CLUB_ID) == list(ROLE_CAPABILITIES[ClubRole.ADMIN])
    assert build_auth_context("nobody", lookup).club_memberships == []
