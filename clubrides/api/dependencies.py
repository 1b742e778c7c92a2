"""
FastAPI dependencies.

One ``SqlAlchemyStore`` is built per request; the services and the caller's
``AuthContext`` are derived from it. Tests swap the database by overriding
``session_factory``.
"""

from functools import lru_cache
from typing import Iterator, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from clubrides.authorization import AuthContext, SystemCapability, build_auth_context
from clubrides.config import get_settings
from clubrides.database import SqlAlchemyStore, get_db_session, get_session_factory, init_database
from clubrides.ingestion import ActivityIngestionService
from clubrides.participation_service import ParticipationService
from clubrides.ride_service import RideService


@lru_cache()
def _session_factory_for(database_url: str):
    return get_session_factory(init_database(database_url))


def session_factory():
    """Session factory for the configured ``DATABASE_URL``."""
    return _session_factory_for(get_settings().DATABASE_URL)


def get_db(factory=Depends(session_factory)) -> Iterator[Session]:
    yield from get_db_session(factory)


def get_store(db: Session = Depends(get_db)) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


def get_auth_context(
    x_user_id: Optional[str] = Header(None),
    x_system_capabilities: Optional[str] = Header(None),
    store: SqlAlchemyStore = Depends(get_store),
) -> AuthContext:
    """
    Build the caller's auth context.

    The user id is supplied by the authenticating gateway in ``X-User-Id``;
    ``X-System-Capabilities`` optionally carries comma-separated system
    capabilities.

    Raises:
        HTTPException: 401 when no user id is present, 400 for an unknown
            system capability
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )

    capabilities = []
    for raw in (x_system_capabilities or "").split(","):
        if not raw.strip():
            continue
        try:
            capabilities.append(SystemCapability(raw.strip()))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown system capability: {raw.strip()}",
            )

    return build_auth_context(x_user_id, store.memberships, capabilities)


def get_ride_service(store: SqlAlchemyStore = Depends(get_store)) -> RideService:
    return RideService(store.rides, transactions=store)


def get_participation_service(store: SqlAlchemyStore = Depends(get_store)) -> ParticipationService:
    return ParticipationService(store.participations, store.rides, transactions=store)


def get_ingestion_service(
    store: SqlAlchemyStore = Depends(get_store),
    participation_service: ParticipationService = Depends(get_participation_service),
) -> ActivityIngestionService:
    return ActivityIngestionService(store.participations, store.rides, participation_service)
