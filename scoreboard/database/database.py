from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from scoreboard.config import Config
from scoreboard.database.models import (
    Base, Event, EventTeam, EventTeamMember, EventGameType, EventMatch,
    EventPlaceholderParticipant, HighScoreSession, DiscretionaryAward,
    PointEntry, PointEntryParticipant, PointCategory, PointOutcome,
    PointSourceKind, User
)
from scoreboard.utils.logger import setup_logger


@dataclass
class EnrichedPointEntryParticipant:
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    placeholder_participant_id: Optional[int] = None
    placeholder_display_name: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.user_name or self.placeholder_display_name


@dataclass
class EnrichedPointEntry:
    """Point entry joined with its team and the data needed to link back to its source"""
    id: int
    event_id: int
    category: PointCategory
    outcome: PointOutcome
    points: float
    event_team_id: int
    team_name: Optional[str]
    team_color: Optional[str]
    source_kind: PointSourceKind
    source_id: int
    occurred_at: Optional[datetime] = None
    high_score_game_type_id: Optional[int] = None
    participants: List[EnrichedPointEntryParticipant] = field(default_factory=list)


class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        if not database_url:
            Config.validate()
        self.database_url = database_url or Config.get_async_database_url()
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        self.engine = create_async_engine(
            self.database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                await award_ops.create_award(..., session=session)
                await session_ops.close_session(..., session=session)
                # All operations commit together here

        Important: The caller is responsible for passing the yielded session to
        all participating operations. Exceptions must be allowed to propagate
        out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def _session_scope(self, session: Optional[AsyncSession] = None):
        """Reuse the caller's session when given, otherwise open a short-lived one"""
        if session is not None:
            yield session
        else:
            async with self.get_session() as new_session:
                yield new_session

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Event lookups
    async def get_event_by_id(self, event_id: int, session: Optional[AsyncSession] = None) -> Optional[Event]:
        """Get an event by ID"""
        async with self._session_scope(session) as s:
            return await s.get(Event, event_id)

    async def get_game_type_by_id(self, game_type_id: int,
                                  session: Optional[AsyncSession] = None) -> Optional[EventGameType]:
        """Get an event game type by ID"""
        async with self._session_scope(session) as s:
            return await s.get(EventGameType, game_type_id)

    # Team lookups
    async def get_team_by_id(self, team_id: int, session: Optional[AsyncSession] = None) -> Optional[EventTeam]:
        """Get an event team by ID"""
        async with self._session_scope(session) as s:
            return await s.get(EventTeam, team_id)

    async def get_teams_for_event(self, event_id: int, session: Optional[AsyncSession] = None) -> List[EventTeam]:
        """Get all teams of an event ordered by name"""
        async with self._session_scope(session) as s:
            result = await s.execute(
                select(EventTeam)
                .where(EventTeam.event_id == event_id)
                .order_by(EventTeam.name)
            )
            return list(result.scalars().all())

    async def get_team_for_user(self, event_id: int, user_id: int,
                                session: Optional[AsyncSession] = None) -> Optional[EventTeam]:
        """Get the team a user belongs to within an event"""
        async with self._session_scope(session) as s:
            result = await s.execute(
                select(EventTeam)
                .join(EventTeamMember, EventTeamMember.event_team_id == EventTeam.id)
                .where(
                    EventTeam.event_id == event_id,
                    EventTeamMember.user_id == user_id
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_team_for_placeholder(self, event_id: int, placeholder_id: int,
                                       session: Optional[AsyncSession] = None) -> Optional[EventTeam]:
        """Get the team a placeholder participant belongs to within an event"""
        async with self._session_scope(session) as s:
            result = await s.execute(
                select(EventTeam)
                .join(EventTeamMember, EventTeamMember.event_team_id == EventTeam.id)
                .where(
                    EventTeam.event_id == event_id,
                    EventTeamMember.placeholder_participant_id == placeholder_id
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    # Leaderboard and ledger reads
    async def get_event_leaderboard(self, event_id: int, session: Optional[AsyncSession] = None) -> List[Dict]:
        """
        Get per-team point totals for an event.

        Every team of the event appears, teams without entries at 0.

        Returns:
            List of dicts with rank, team_id, team_name, team_color, total_points,
            ordered by total points descending
        """
        total_points = func.coalesce(func.sum(PointEntry.points), 0)

        async with self._session_scope(session) as s:
            result = await s.execute(
                select(EventTeam.id, EventTeam.name, EventTeam.color, total_points.label('total_points'))
                .outerjoin(
                    PointEntry,
                    and_(
                        PointEntry.event_team_id == EventTeam.id,
                        PointEntry.event_id == event_id
                    )
                )
                .where(EventTeam.event_id == event_id)
                .group_by(EventTeam.id, EventTeam.name, EventTeam.color)
                .order_by(total_points.desc(), EventTeam.id)
            )

            return [
                {
                    'rank': index + 1,
                    'team_id': row.id,
                    'team_name': row.name,
                    'team_color': row.color,
                    'total_points': float(row.total_points),
                }
                for index, row in enumerate(result.all())
            ]

    async def get_enriched_point_entries(self, event_id: int,
                                         session: Optional[AsyncSession] = None) -> List[EnrichedPointEntry]:
        """
        Get every point entry of an event in order of occurrence.

        Occurrence is the source's own timestamp (match played_at, session
        closed_at, award created_at), falling back to the entry's created_at.
        Editing an award's awarded_at does not move its entries.
        Ties keep insertion order.
        """
        occurred_at = func.coalesce(
            EventMatch.played_at,
            HighScoreSession.closed_at,
            DiscretionaryAward.created_at,
            PointEntry.created_at
        )

        async with self._session_scope(session) as s:
            result = await s.execute(
                select(
                    PointEntry,
                    EventTeam.name,
                    EventTeam.color,
                    HighScoreSession.event_game_type_id,
                    occurred_at.label('occurred_at')
                )
                .outerjoin(EventTeam, PointEntry.event_team_id == EventTeam.id)
                .outerjoin(
                    EventMatch,
                    and_(
                        PointEntry.source_kind == PointSourceKind.MATCH,
                        PointEntry.source_id == EventMatch.id
                    )
                )
                .outerjoin(
                    HighScoreSession,
                    and_(
                        PointEntry.source_kind == PointSourceKind.HIGH_SCORE_SESSION,
                        PointEntry.source_id == HighScoreSession.id
                    )
                )
                .outerjoin(
                    DiscretionaryAward,
                    and_(
                        PointEntry.source_kind == PointSourceKind.DISCRETIONARY_AWARD,
                        PointEntry.source_id == DiscretionaryAward.id
                    )
                )
                .where(PointEntry.event_id == event_id)
                .order_by(occurred_at, PointEntry.id)
            )
            rows = result.all()

            if not rows:
                return []

            entry_ids = [row[0].id for row in rows]
            participant_result = await s.execute(
                select(
                    PointEntryParticipant,
                    User.name,
                    EventPlaceholderParticipant.display_name
                )
                .outerjoin(User, PointEntryParticipant.user_id == User.id)
                .outerjoin(
                    EventPlaceholderParticipant,
                    PointEntryParticipant.placeholder_participant_id == EventPlaceholderParticipant.id
                )
                .where(PointEntryParticipant.point_entry_id.in_(entry_ids))
                .order_by(PointEntryParticipant.id)
            )

            participants_by_entry: Dict[int, List[EnrichedPointEntryParticipant]] = {}
            for participant, user_name, placeholder_name in participant_result.all():
                participants_by_entry.setdefault(participant.point_entry_id, []).append(
                    EnrichedPointEntryParticipant(
                        user_id=participant.user_id,
                        user_name=user_name,
                        placeholder_participant_id=participant.placeholder_participant_id,
                        placeholder_display_name=placeholder_name,
                    )
                )

            return [
                EnrichedPointEntry(
                    id=entry.id,
                    event_id=entry.event_id,
                    category=entry.category,
                    outcome=entry.outcome,
                    points=entry.points,
                    event_team_id=entry.event_team_id,
                    team_name=team_name,
                    team_color=team_color,
                    source_kind=entry.source_kind,
                    source_id=entry.source_id,
                    occurred_at=entry_occurred_at,
                    high_score_game_type_id=game_type_id,
                    participants=participants_by_entry.get(entry.id, []),
                )
                for entry, team_name, team_color, game_type_id, entry_occurred_at in rows
            ]
