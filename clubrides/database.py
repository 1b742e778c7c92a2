"""
SQLAlchemy persistence for Club Rides.

Provides persistent storage for:
- Rides, with the fields used for listing and filtering as indexed columns
- Ride participations, including the full history of rejoins
- Ride summaries produced on completion
- Club memberships consulted for authorization

Each record keeps the complete pydantic value as a JSON ``data`` column; the
other columns exist for querying. ``SqlAlchemyStore`` binds the repositories to
one session and implements ride-scoped transactions.
"""

import base64
import binascii
import json
import logging
from contextlib import contextmanager
from datetime import datetime, time, timedelta, timezone
from typing import Iterator, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    create_engine,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from clubrides.authorization import ClubMembership
from clubrides.errors import (
    ParticipationNotFoundError,
    RideAlreadyExistsError,
    RideNotFoundError,
    RideValidationError,
)
from clubrides.schemas import (
    TERMINAL_RIDE_STATUSES,
    ListRidesQuery,
    ListUserRidesQuery,
    PaginatedRides,
    PaginatedUserRides,
    ParticipationStatus,
    Ride,
    RideParticipation,
    RideStatus,
    RideSummary,
    UserRideFilter,
    UserRideInfo,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


def _naive_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo, so indexed columns hold naive UTC everywhere
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RideRecord(Base):
    """
    Stored ride.

    Attributes:
        ride_id: Primary key, the ride's identifier
        club_id: Owning club
        status: Lifecycle status, for status filters
        ride_type: Ride type, for filtering
        difficulty: Difficulty, for filtering
        start_date_time: Naive UTC start, for date-range filters and ordering
        created_by: Creator's user id
        data: Full Ride as JSON
        updated_at: Last write timestamp (naive UTC)
    """

    __tablename__ = "rides"

    ride_id = Column(String, primary_key=True)
    club_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, index=True)
    ride_type = Column(String, nullable=False)
    difficulty = Column(String, nullable=False)
    start_date_time = Column(DateTime, nullable=False, index=True)
    created_by = Column(String, nullable=False)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    def apply(self, ride: Ride) -> None:
        self.club_id = ride.club_id
        self.status = ride.status.value
        self.ride_type = ride.ride_type.value
        self.difficulty = ride.difficulty.value
        self.start_date_time = _naive_utc(ride.start_date_time)
        self.created_by = ride.created_by
        self.data = ride.model_dump(mode="json")
        self.updated_at = _naive_utc(ride.updated_at)

    def to_ride(self) -> Ride:
        return Ride.model_validate(self.data)

    def __repr__(self):
        return f"<RideRecord(ride_id='{self.ride_id}', club='{self.club_id}', status='{self.status}')>"


class ParticipationRecord(Base):
    """
    Stored participation.

    ``id`` increases with every insert, so the highest id for a (ride, user)
    pair is that user's current participation in the ride.

    Attributes:
        id: Surrogate primary key
        participation_id: The participation's identifier
        ride_id: Ride joined
        club_id: Club owning the ride
        user_id: Participant
        role: Ride role
        status: Participation status
        waitlist_position: Position while waitlisted
        joined_at: Naive UTC join time
        data: Full RideParticipation as JSON
    """

    __tablename__ = "ride_participations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    participation_id = Column(String, unique=True, nullable=False, index=True)
    ride_id = Column(String, nullable=False, index=True)
    club_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    waitlist_position = Column(Integer, nullable=True)
    joined_at = Column(DateTime, nullable=False)
    data = Column(JSON, nullable=False)

    def apply(self, participation: RideParticipation) -> None:
        self.participation_id = participation.participation_id
        self.ride_id = participation.ride_id
        self.club_id = participation.club_id
        self.user_id = participation.user_id
        self.role = participation.role.value
        self.status = participation.status.value
        self.waitlist_position = participation.waitlist_position
        self.joined_at = _naive_utc(participation.joined_at)
        self.data = participation.model_dump(mode="json")

    def to_participation(self) -> RideParticipation:
        return RideParticipation.model_validate(self.data)

    def __repr__(self):
        return (
            f"<ParticipationRecord(ride_id='{self.ride_id}', user_id='{self.user_id}', "
            f"role='{self.role}', status='{self.status}')>"
        )


class RideSummaryRecord(Base):
    """Summary written when a ride completes; one per ride."""

    __tablename__ = "ride_summaries"

    ride_id = Column(String, primary_key=True)
    club_id = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False)

    def __repr__(self):
        return f"<RideSummaryRecord(ride_id='{self.ride_id}')>"


class MembershipRecord(Base):
    """
    A user's membership in a club.

    Attributes:
        id: Primary key
        membership_id: Membership identifier
        user_id: Member
        club_id: Club
        role: Club role (member, captain, admin, owner)
        status: Membership status (active, pending, suspended, removed)
        joined_at: When the membership started
    """

    __tablename__ = "club_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    membership_id = Column(String, unique=True, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    club_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    joined_at = Column(DateTime, nullable=True)

    def to_membership(self) -> ClubMembership:
        return ClubMembership(
            membership_id=self.membership_id,
            club_id=self.club_id,
            role=self.role,
            status=self.status,
            joined_at=self.joined_at,
        )

    def __repr__(self):
        return f"<MembershipRecord(user_id='{self.user_id}', club_id='{self.club_id}', role='{self.role}')>"


# ============================================================================
# Pagination cursors
# ============================================================================

def encode_cursor(offset: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"offset": offset}).encode()).decode()


def decode_cursor(cursor: Optional[str]) -> int:
    """Offset stored in an opaque cursor; 0 when no cursor is given."""
    if not cursor:
        return 0
    try:
        offset = json.loads(base64.urlsafe_b64decode(cursor.encode()))["offset"]
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise RideValidationError("Invalid pagination cursor") from exc
    if not isinstance(offset, int) or offset < 0:
        raise RideValidationError("Invalid pagination cursor")
    return offset


def _page(statement, session: Session, cursor: Optional[str], limit: int):
    """Run ``statement`` for one page; returns (rows, next_cursor)."""
    offset = decode_cursor(cursor)
    rows = session.scalars(statement.offset(offset).limit(limit + 1)).all()
    next_cursor = encode_cursor(offset + limit) if len(rows) > limit else None
    return rows[:limit], next_cursor


# ============================================================================
# Repositories
# ============================================================================

class SqlAlchemyRideRepository:
    """``RideRepository`` over a store's session."""

    def __init__(self, store: "SqlAlchemyStore"):
        self.store = store

    @property
    def session(self) -> Session:
        return self.store.session

    def create(self, ride: Ride) -> None:
        if self.session.get(RideRecord, ride.ride_id) is not None:
            raise RideAlreadyExistsError(ride.ride_id)
        record = RideRecord(ride_id=ride.ride_id)
        record.apply(ride)
        self.session.add(record)
        self.store.write()

    def _fresh_record(self, ride_id: str) -> Optional[RideRecord]:
        # Re-read the row so writes committed by other sessions are seen
        return self.session.get(RideRecord, ride_id, populate_existing=True)

    def find_by_id(self, ride_id: str) -> Optional[Ride]:
        record = self._fresh_record(ride_id)
        return record.to_ride() if record is not None else None

    def find_by_club_id(self, club_id: str, query: ListRidesQuery) -> PaginatedRides:
        statement = select(RideRecord).where(RideRecord.club_id == club_id)

        if query.status is not None:
            statement = statement.where(RideRecord.status == query.status.value)
        elif not query.include_drafts:
            statement = statement.where(RideRecord.status != RideStatus.DRAFT.value)
        if query.drafts_created_by is not None:
            statement = statement.where(
                or_(
                    RideRecord.status != RideStatus.DRAFT.value,
                    RideRecord.created_by == query.drafts_created_by,
                )
            )
        if query.ride_type is not None:
            statement = statement.where(RideRecord.ride_type == query.ride_type.value)
        if query.difficulty is not None:
            statement = statement.where(RideRecord.difficulty == query.difficulty.value)
        if query.start_date is not None:
            statement = statement.where(
                RideRecord.start_date_time >= datetime.combine(query.start_date, time.min)
            )
        if query.end_date is not None:
            # end_date is inclusive of the whole day
            statement = statement.where(
                RideRecord.start_date_time
                < datetime.combine(query.end_date + timedelta(days=1), time.min)
            )

        statement = statement.order_by(RideRecord.start_date_time, RideRecord.ride_id)
        records, next_cursor = _page(statement, self.session, query.cursor, query.limit)
        return PaginatedRides(rides=[r.to_ride() for r in records], next_cursor=next_cursor)

    def update(self, ride: Ride) -> None:
        """Write ride-level fields; the stored participant counters are kept."""
        record = self._fresh_record(ride.ride_id)
        if record is None:
            raise RideNotFoundError(ride.ride_id)
        stored = record.to_ride()
        record.apply(
            ride.model_copy(
                update=dict(
                    current_participants=stored.current_participants,
                    waitlist_count=stored.waitlist_count,
                )
            )
        )
        self.store.write()

    def update_counters(self, ride: Ride) -> None:
        """Write only ``current_participants`` and ``waitlist_count`` of ``ride``."""
        record = self._fresh_record(ride.ride_id)
        if record is None:
            raise RideNotFoundError(ride.ride_id)
        record.apply(
            record.to_ride().model_copy(
                update=dict(
                    current_participants=ride.current_participants,
                    waitlist_count=ride.waitlist_count,
                    updated_at=ride.updated_at,
                )
            )
        )
        self.store.write()

    def delete(self, ride_id: str) -> None:
        record = self.session.get(RideRecord, ride_id)
        if record is not None:
            self.session.delete(record)
            self.store.write()

    def find_participations(self, ride_id: str) -> List[RideParticipation]:
        return self.store.participations.find_by_ride_id(ride_id)

    def save_ride_summary(self, summary: RideSummary) -> None:
        record = self.session.get(RideSummaryRecord, summary.ride_id)
        if record is None:
            record = RideSummaryRecord(ride_id=summary.ride_id)
            self.session.add(record)
        record.club_id = summary.club_id
        record.data = summary.model_dump(mode="json")
        self.store.write()

    def find_ride_summary(self, ride_id: str) -> Optional[RideSummary]:
        record = self.session.get(RideSummaryRecord, ride_id)
        return RideSummary.model_validate(record.data) if record is not None else None


class SqlAlchemyParticipationRepository:
    """``ParticipationRepository`` over a store's session."""

    def __init__(self, store: "SqlAlchemyStore"):
        self.store = store

    @property
    def session(self) -> Session:
        return self.store.session

    def _record(self, participation_id: str) -> Optional[ParticipationRecord]:
        return self.session.scalars(
            select(ParticipationRecord).where(
                ParticipationRecord.participation_id == participation_id
            )
        ).first()

    def create(self, participation: RideParticipation) -> None:
        record = ParticipationRecord()
        record.apply(participation)
        self.session.add(record)
        self.store.write()

    def find_by_id(self, participation_id: str) -> Optional[RideParticipation]:
        record = self._record(participation_id)
        return record.to_participation() if record is not None else None

    def find_by_ride_and_user(self, ride_id: str, user_id: str) -> Optional[RideParticipation]:
        record = self.session.scalars(
            select(ParticipationRecord)
            .where(ParticipationRecord.ride_id == ride_id, ParticipationRecord.user_id == user_id)
            .order_by(ParticipationRecord.id.desc())
        ).first()
        return record.to_participation() if record is not None else None

    def find_by_ride_id(self, ride_id: str) -> List[RideParticipation]:
        records = self.session.scalars(
            select(ParticipationRecord)
            .where(ParticipationRecord.ride_id == ride_id)
            .order_by(ParticipationRecord.id)
        ).all()
        return [r.to_participation() for r in records]

    def find_by_user_id(self, user_id: str, query: ListUserRidesQuery) -> PaginatedUserRides:
        statement = (
            select(ParticipationRecord, RideRecord)
            .join(RideRecord, RideRecord.ride_id == ParticipationRecord.ride_id)
            .where(ParticipationRecord.user_id == user_id)
        )

        if query.role is not None:
            statement = statement.where(ParticipationRecord.role == query.role.value)
        if query.status == UserRideFilter.UPCOMING:
            statement = statement.where(
                RideRecord.status.not_in([s.value for s in TERMINAL_RIDE_STATUSES])
            )
        elif query.status == UserRideFilter.COMPLETED:
            statement = statement.where(RideRecord.status == RideStatus.COMPLETED.value)
        elif query.status == UserRideFilter.CANCELLED:
            statement = statement.where(RideRecord.status == RideStatus.CANCELLED.value)

        # Most recent first
        statement = statement.order_by(
            ParticipationRecord.joined_at.desc(), ParticipationRecord.id.desc()
        )

        offset = decode_cursor(query.cursor)
        rows = self.session.execute(statement.offset(offset).limit(query.limit + 1)).all()
        next_cursor = encode_cursor(offset + query.limit) if len(rows) > query.limit else None

        rides = []
        for participation_record, ride_record in rows[: query.limit]:
            participation = participation_record.to_participation()
            ride = ride_record.to_ride()
            rides.append(
                UserRideInfo(
                    participation_id=participation.participation_id,
                    ride_id=ride.ride_id,
                    club_id=ride.club_id,
                    title=ride.title,
                    ride_type=ride.ride_type,
                    difficulty=ride.difficulty,
                    start_date_time=ride.start_date_time,
                    ride_status=ride.status,
                    role=participation.role,
                    status=participation.status,
                    joined_at=participation.joined_at,
                )
            )
        return PaginatedUserRides(rides=rides, next_cursor=next_cursor)

    def find_all_by_user_id(self, user_id: str) -> List[RideParticipation]:
        records = self.session.scalars(
            select(ParticipationRecord)
            .where(ParticipationRecord.user_id == user_id)
            .order_by(ParticipationRecord.id)
        ).all()
        return [r.to_participation() for r in records]

    def update(self, participation: RideParticipation) -> None:
        record = self._record(participation.participation_id)
        if record is None:
            raise ParticipationNotFoundError(participation.participation_id)
        record.apply(participation)
        self.store.write()

    def delete(self, participation_id: str) -> None:
        record = self._record(participation_id)
        if record is not None:
            self.session.delete(record)
            self.store.write()

    def get_waitlist_position(self, ride_id: str) -> int:
        return len(
            self.session.scalars(
                select(ParticipationRecord.id).where(
                    ParticipationRecord.ride_id == ride_id,
                    ParticipationRecord.status == ParticipationStatus.WAITLISTED.value,
                )
            ).all()
        )


class SqlAlchemyMembershipLookup:
    """Club memberships for authorization, plus writes for seeding."""

    def __init__(self, store: "SqlAlchemyStore"):
        self.store = store

    def get_user_memberships(self, user_id: str) -> List[ClubMembership]:
        records = self.store.session.scalars(
            select(MembershipRecord).where(MembershipRecord.user_id == user_id)
        ).all()
        return [r.to_membership() for r in records]

    def add_membership(self, user_id: str, membership: ClubMembership) -> None:
        self.store.session.add(
            MembershipRecord(
                membership_id=membership.membership_id,
                user_id=user_id,
                club_id=membership.club_id,
                role=membership.role.value,
                status=membership.status.value,
                joined_at=_naive_utc(membership.joined_at) if membership.joined_at else None,
            )
        )
        self.store.write()


# ============================================================================
# Store and ride-scoped transactions
# ============================================================================

class SqlAlchemyStore:
    """
    Repositories sharing one session.

    Outside ``ride_transaction`` every repository write commits immediately.
    Inside it, writes are only flushed and the whole block commits once on
    exit, or rolls back if it raises.
    """

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0
        self.rides = SqlAlchemyRideRepository(self)
        self.participations = SqlAlchemyParticipationRepository(self)
        self.memberships = SqlAlchemyMembershipLookup(self)

    def write(self) -> None:
        if self._depth:
            self.session.flush()
        else:
            self.session.commit()

    @contextmanager
    def ride_transaction(self, ride_id: str) -> Iterator[None]:
        """
        Hold the ride row lock for a multi-step change.

        ``SELECT ... FOR UPDATE`` serializes concurrent joins and departures on
        databases that support it; SQLite serializes writers on its own.
        """
        self._depth += 1
        try:
            if self._depth == 1:
                self.session.scalars(
                    select(RideRecord)
                    .where(RideRecord.ride_id == ride_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).first()
            yield
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                self.session.rollback()
                logger.warning("Rolled back transaction on ride %s", ride_id)
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                self.session.commit()


# ============================================================================
# Database connection and session management
# ============================================================================

def get_engine(database_url: str = "sqlite:///clubrides.db"):
    """
    Create SQLAlchemy engine.

    In-memory SQLite uses a single shared connection so every session sees
    the same database.

    Args:
        database_url: Database connection string (default: SQLite file)

    Returns:
        SQLAlchemy Engine instance
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False)


def get_session_factory(engine):
    """
    Create session factory.

    Args:
        engine: SQLAlchemy Engine instance

    Returns:
        Session factory (sessionmaker)
    """
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_database(database_url: str = "sqlite:///clubrides.db"):
    """
    Create all tables.

    Args:
        database_url: Database connection string

    Returns:
        The engine the tables were created on
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    return engine


def get_db_session(session_factory) -> Iterator[Session]:
    """
    Yield a session from ``session_factory`` and close it afterwards.

    Yields:
        SQLAlchemy Session instance
    """
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
