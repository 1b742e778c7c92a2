"""
Strava Integration API Routes

Activity ingestion: an activity pushed for the calling athlete is matched
against the rides they were confirmed on, and the best match is linked as
attendance evidence.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from clubrides.activity_schemas import StravaActivity
from clubrides.api.dependencies import get_auth_context, get_ingestion_service
from clubrides.api.models.requests import IngestActivityRequest
from clubrides.api.models.responses import ActivityMatchOutcome, IngestActivityResponse
from clubrides.authorization import AuthContext
from clubrides.ingestion import ActivityIngestionService

router = APIRouter()


@router.post("/strava/activities", response_model=IngestActivityResponse)
def ingest_activity(
    request: IngestActivityRequest,
    auth: AuthContext = Depends(get_auth_context),
    ingestion: ActivityIngestionService = Depends(get_ingestion_service),
) -> IngestActivityResponse:
    """
    Ingest one Strava activity for the caller.

    Args:
        request: Raw Strava activity payload

    Returns:
        Every ride evaluated, and the ride that received evidence if any

    Raises:
        HTTPException: 422 if the payload lacks the fields matching needs

    Example:
        POST /api/strava/activities
        {"activity": {"id": 987, "name": "Morning Ride RIDE-1K3ZQ9", "type": "Ride",
                      "start_date": "2026-03-01T07:05:00Z", "distance": 41000,
                      "moving_time": 5400, "total_elevation_gain": 320}}
    """
    try:
        activity = StravaActivity.from_strava_response(auth.user_id, request.activity)
    except (KeyError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid Strava activity payload: {e}",
        )

    evaluated = ingestion.process_activity(activity)

    matched = [(ride_id, result) for ride_id, result in evaluated if result.matched]
    linked = max(matched, key=lambda pair: pair[1].confidence)[0] if matched else None

    return IngestActivityResponse(
        strava_activity_id=activity.strava_activity_id,
        evaluated=[ActivityMatchOutcome(ride_id=r, result=m) for r, m in evaluated],
        linked_ride_id=linked,
    )
