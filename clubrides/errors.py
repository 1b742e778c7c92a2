"""
Domain error types for rides, participations and authorization.

Every error carries a stable ``error_type`` for programmatic handling and a
human-readable message for display. ``status_code`` is the HTTP status the API
layer answers with; the core itself never looks at it.
"""

from typing import Optional


class ClubRidesError(Exception):
    """Base class for all domain errors raised by the core."""

    status_code: int = 400
    error_type: str = "CLUB_RIDES_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.error_type, "message": self.message}


# ============================================================================
# Ride errors
# ============================================================================

class RideNotFoundError(ClubRidesError):
    status_code = 404
    error_type = "RIDE_NOT_FOUND"

    def __init__(self, ride_id: str):
        super().__init__(f"Ride not found: {ride_id}")
        self.ride_id = ride_id


class RideAlreadyExistsError(ClubRidesError):
    status_code = 409
    error_type = "RIDE_ALREADY_EXISTS"

    def __init__(self, ride_id: str):
        super().__init__(f"Ride already exists: {ride_id}")
        self.ride_id = ride_id


class InvalidRideStatusError(ClubRidesError):
    """Raised when a lifecycle operation is attempted outside its guard state."""

    status_code = 400
    error_type = "INVALID_RIDE_STATUS"

    def __init__(self, current_status: str, operation: str):
        super().__init__(f"Cannot {operation} ride in status: {current_status}")
        self.current_status = current_status
        self.operation = operation


class RideCapacityExceededError(ClubRidesError):
    status_code = 409
    error_type = "RIDE_CAPACITY_EXCEEDED"

    def __init__(self, max_participants: int):
        super().__init__(
            f"Ride capacity exceeded. Maximum participants: {max_participants}"
        )
        self.max_participants = max_participants


class InvalidRideScopeError(ClubRidesError):
    status_code = 400
    error_type = "INVALID_RIDE_SCOPE"

    def __init__(self, scope: str):
        super().__init__(
            f"Invalid ride scope: {scope}. Only 'club' rides with internal routes are supported."
        )
        self.scope = scope


class RideValidationError(ClubRidesError):
    status_code = 400
    error_type = "RIDE_VALIDATION_ERROR"

    def __init__(self, message: str):
        super().__init__(f"Ride validation failed: {message}")
        self.reason = message


# ============================================================================
# Participation errors
# ============================================================================

class ParticipationNotFoundError(ClubRidesError):
    status_code = 404
    error_type = "PARTICIPATION_NOT_FOUND"

    def __init__(self, participation_ref: str):
        super().__init__(f"Participation not found: {participation_ref}")
        self.participation_ref = participation_ref


class AlreadyParticipatingError(ClubRidesError):
    status_code = 409
    error_type = "ALREADY_PARTICIPATING"

    def __init__(self, user_id: str, ride_id: str):
        super().__init__(f"User {user_id} is already participating in ride {ride_id}")
        self.user_id = user_id
        self.ride_id = ride_id


class RideFullError(ClubRidesError):
    status_code = 409
    error_type = "RIDE_FULL"

    def __init__(self, ride_id: str):
        super().__init__(f"Ride {ride_id} is full")
        self.ride_id = ride_id


class InvalidParticipationStatusError(ClubRidesError):
    status_code = 400
    error_type = "INVALID_PARTICIPATION_STATUS"

    def __init__(self, current_status: str, operation: str):
        super().__init__(f"Cannot {operation} participation in status: {current_status}")
        self.current_status = current_status
        self.operation = operation


class InvalidRoleTransitionError(ClubRidesError):
    status_code = 400
    error_type = "INVALID_ROLE_TRANSITION"

    def __init__(self, from_role: str, to_role: str):
        super().__init__(f"Invalid role transition from {from_role} to {to_role}")
        self.from_role = from_role
        self.to_role = to_role


class CannotRemoveCaptainError(ClubRidesError):
    status_code = 400
    error_type = "CANNOT_REMOVE_CAPTAIN"

    def __init__(self):
        super().__init__("Cannot remove ride captain. Transfer captain role first.")


# ============================================================================
# Authorization errors
# ============================================================================

class InsufficientPrivilegesError(ClubRidesError):
    status_code = 403
    error_type = "INSUFFICIENT_PRIVILEGES"

    def __init__(
        self,
        capability: str,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
    ):
        super().__init__(
            f"Insufficient privileges: {capability} required "
            f"(user={user_id or 'anonymous'}, resource={resource or 'unknown'})"
        )
        self.capability = capability
        self.user_id = user_id
        self.resource = resource


__all__ = [
    "ClubRidesError",
    "RideNotFoundError",
    "RideAlreadyExistsError",
    "InvalidRideStatusError",
    "RideCapacityExceededError",
    "InvalidRideScopeError",
    "RideValidationError",
    "ParticipationNotFoundError",
    "AlreadyParticipatingError",
    "RideFullError",
    "InvalidParticipationStatusError",
    "InvalidRoleTransitionError",
    "CannotRemoveCaptainError",
    "InsufficientPrivilegesError",
]
