"""
API Request Models

Request bodies that exist only at the HTTP boundary. Ride and participation
bodies reuse the models in ``clubrides.schemas`` directly.
"""

from typing import Any, Dict

from pydantic import Field

from clubrides.schemas import CamelModel


class IngestActivityRequest(CamelModel):
    """Strava activity pushed for the calling athlete."""

    activity: Dict[str, Any] = Field(
        ..., description="Activity payload as returned by Strava's GET /activities/{id}"
    )
