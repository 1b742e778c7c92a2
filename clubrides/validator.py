"""
Ride request validation.

Create and update requests are checked here before any ride is built or
changed. Validation fails fast: the first broken rule raises, and nothing has
been written at that point.
"""

from datetime import datetime
from typing import Callable, Optional

from clubrides.errors import InvalidRideScopeError, RideValidationError
from clubrides.schemas import CreateRideRequest, Route, UpdateRideRequest, utcnow

INTERNAL_ROUTE_PROVIDER = "internal"


class RideRequestValidator:
    """
    Validates ride create/update payloads against business rules.

    The clock is injectable so "start time must be in the future" can be
    tested deterministically.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        """
        Initialize validator.

        Args:
            clock: Returns the current aware UTC time
        """
        self.clock = clock

    def validate_create(self, request: CreateRideRequest) -> None:
        """
        Validate a create request.

        Raises:
            InvalidRideScopeError: If the route is hosted by an external provider
            RideValidationError: On the first violated business rule
        """
        self.validate_scope(request.route)

        if not request.title or not request.title.strip():
            raise RideValidationError("Title is required")

        if not request.description or not request.description.strip():
            raise RideValidationError("Description is required")

        self._validate_start(request.start_date_time)

        if request.estimated_duration <= 0:
            raise RideValidationError("Estimated duration must be positive")

        self._validate_max_participants(request.max_participants)

        meeting_point = request.meeting_point
        if not meeting_point.name or not meeting_point.name.strip():
            raise RideValidationError("Meeting point name is required")
        if not meeting_point.address or not meeting_point.address.strip():
            raise RideValidationError("Meeting point address is required")

    def validate_update(self, request: UpdateRideRequest) -> None:
        """Validate only the fields present in an update request."""
        fields = request.present_fields()

        if "route" in fields:
            self.validate_scope(fields["route"])

        if "title" in fields and not fields["title"].strip():
            raise RideValidationError("Title cannot be empty")

        if "description" in fields and not fields["description"].strip():
            raise RideValidationError("Description cannot be empty")

        if "start_date_time" in fields:
            self._validate_start(fields["start_date_time"])

        if "estimated_duration" in fields and fields["estimated_duration"] <= 0:
            raise RideValidationError("Estimated duration must be positive")

        if "max_participants" in fields:
            self._validate_max_participants(fields["max_participants"])

        if "meeting_point" in fields:
            meeting_point = fields["meeting_point"]
            if not meeting_point.name.strip():
                raise RideValidationError("Meeting point name cannot be empty")
            if not meeting_point.address.strip():
                raise RideValidationError("Meeting point address cannot be empty")

    def validate_scope(self, route: Optional[Route]) -> None:
        """Only internally hosted routes are supported."""
        if route is not None and route.provider and route.provider != INTERNAL_ROUTE_PROVIDER:
            raise InvalidRideScopeError(f"route provider '{route.provider}'")

    def _validate_start(self, start: Optional[datetime]) -> None:
        if start is None:
            raise RideValidationError("Start date and time is required")
        if start <= self.clock():
            raise RideValidationError("Start date must be in the future")

    def _validate_max_participants(self, max_participants: Optional[int]) -> None:
        if max_participants is not None and max_participants < 1:
            raise RideValidationError("Maximum participants must be at least 1")
