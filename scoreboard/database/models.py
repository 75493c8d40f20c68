import json
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Float, Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp used for every DateTime column default"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"

class GameCategory(Enum):
    HEAD_TO_HEAD = "head_to_head"
    FREE_FOR_ALL = "free_for_all"
    HIGH_SCORE = "high_score"

class ParticipantType(Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"

class ScoreOrder(Enum):
    HIGHEST_WINS = "highest_wins"
    LOWEST_WINS = "lowest_wins"

class MatchResult(Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

class HighScoreSessionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"

class PointCategory(Enum):
    H2H_MATCH = "h2h_match"
    FFA_MATCH = "ffa_match"
    HIGH_SCORE = "high_score"
    TOURNAMENT = "tournament"
    DISCRETIONARY = "discretionary"

class PointOutcome(Enum):
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"
    PLACEMENT = "placement"
    SUBMISSION = "submission"
    AWARD = "award"

class PointSourceKind(Enum):
    MATCH = "match"
    HIGH_SCORE_SESSION = "high_score_session"
    TOURNAMENT = "tournament"
    DISCRETIONARY_AWARD = "discretionary_award"


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    username = Column(String(100), nullable=True, unique=True)

    created_at = Column(DateTime, default=utc_now)

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.name}')>"

class Event(Base):
    __tablename__ = 'events'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    status = Column(SQLEnum(EventStatus), nullable=False, default=EventStatus.DRAFT)

    created_at = Column(DateTime, default=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == EventStatus.ACTIVE

    def __repr__(self):
        return f"<Event(id={self.id}, name='{self.name}', status={self.status.value})>"

class EventTeam(Base):
    __tablename__ = 'event_teams'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=True)  # Hex color used by charts

    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (UniqueConstraint('event_id', 'name'),)

    def __repr__(self):
        return f"<EventTeam(id={self.id}, name='{self.name}', event_id={self.event_id})>"

class EventPlaceholderParticipant(Base):
    """Guest participant without a user account"""
    __tablename__ = 'event_placeholder_participants'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    display_name = Column(String(100), nullable=False)

    created_at = Column(DateTime, default=utc_now)

    def __repr__(self):
        return f"<EventPlaceholderParticipant(id={self.id}, display_name='{self.display_name}')>"

class EventTeamMember(Base):
    """Binds a user or a placeholder participant to one team"""
    __tablename__ = 'event_team_members'

    id = Column(Integer, primary_key=True)
    event_team_id = Column(Integer, ForeignKey('event_teams.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    placeholder_participant_id = Column(
        Integer, ForeignKey('event_placeholder_participants.id'), nullable=True, index=True
    )

    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        CheckConstraint(
            '(user_id IS NULL) != (placeholder_participant_id IS NULL)',
            name='team_member_exactly_one_owner'
        ),
    )

    def __repr__(self):
        return (f"<EventTeamMember(team={self.event_team_id}, user={self.user_id}, "
                f"placeholder={self.placeholder_participant_id})>")

class EventGameType(Base):
    __tablename__ = 'event_game_types'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    category = Column(SQLEnum(GameCategory), nullable=False)

    # Game configuration
    participant_type = Column(SQLEnum(ParticipantType), nullable=False, default=ParticipantType.INDIVIDUAL)
    score_order = Column(SQLEnum(ScoreOrder), nullable=False, default=ScoreOrder.HIGHEST_WINS)
    min_players_per_side = Column(Integer, default=1)
    max_players_per_side = Column(Integer, default=1)
    group_size = Column(Integer, default=1)  # Members per high-score entry in individual games
    is_archived = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utc_now)

    @property
    def is_team_game(self) -> bool:
        return self.participant_type == ParticipantType.TEAM

    @property
    def is_group_game(self) -> bool:
        """Individual high-score game scored by groups of members (pairs, trios)"""
        return not self.is_team_game and (self.group_size or 1) > 1

    def __repr__(self):
        return f"<EventGameType(id={self.id}, name='{self.name}', category={self.category.value})>"

class EventMatch(Base):
    """A recorded head-to-head or free-for-all match inside an event"""
    __tablename__ = 'event_matches'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    event_game_type_id = Column(Integer, ForeignKey('event_game_types.id'), nullable=False)
    played_at = Column(DateTime, nullable=False, default=utc_now)

    created_at = Column(DateTime, default=utc_now)

    participants = relationship("EventMatchParticipant", back_populates="match")

    def __repr__(self):
        return f"<EventMatch(id={self.id}, event_id={self.event_id}, played_at={self.played_at})>"

class EventMatchParticipant(Base):
    __tablename__ = 'event_match_participants'

    id = Column(Integer, primary_key=True)
    event_match_id = Column(Integer, ForeignKey('event_matches.id'), nullable=False, index=True)
    event_team_id = Column(Integer, ForeignKey('event_teams.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    placeholder_participant_id = Column(Integer, ForeignKey('event_placeholder_participants.id'), nullable=True)

    # Head-to-head fields (side 1 or 2); free-for-all rows leave side and result empty
    side = Column(Integer, nullable=True)
    score = Column(Float, nullable=True)
    rank = Column(Integer, nullable=True)
    result = Column(SQLEnum(MatchResult), nullable=True)

    match = relationship("EventMatch", back_populates="participants")

    def __repr__(self):
        return f"<EventMatchParticipant(match={self.event_match_id}, team={self.event_team_id}, side={self.side})>"

class HighScoreSession(Base):
    """
    A time-boxed window in which participants submit scores for one
    high-score game type.

    Closing the session ranks the submitted entries and, when a placement
    point configuration is present, writes point entries for the best
    placement of each team.
    """
    __tablename__ = 'high_score_sessions'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    event_game_type_id = Column(Integer, ForeignKey('event_game_types.id'), nullable=False)
    status = Column(SQLEnum(HighScoreSessionStatus), nullable=False, default=HighScoreSessionStatus.OPEN)

    name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    placement_point_config = Column(Text, nullable=True)  # JSON list of {"placement", "points"}

    opened_at = Column(DateTime, default=utc_now)
    closed_at = Column(DateTime, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status == HighScoreSessionStatus.OPEN

    @property
    def placement_points(self) -> List[Dict]:
        """Parsed placement point configuration (empty list when unset)"""
        if not self.placement_point_config:
            return []
        return json.loads(self.placement_point_config)

    def __repr__(self):
        return f"<HighScoreSession(id={self.id}, event_id={self.event_id}, status={self.status.value})>"

class HighScoreEntry(Base):
    __tablename__ = 'high_score_entries'

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey('high_score_sessions.id'), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False)

    # Owner: a user or a placeholder for individual games, a team for team and group games
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    placeholder_participant_id = Column(Integer, ForeignKey('event_placeholder_participants.id'), nullable=True)
    event_team_id = Column(Integer, ForeignKey('event_teams.id'), nullable=True)

    score = Column(Float, nullable=False)
    achieved_at = Column(DateTime, nullable=False, default=utc_now)

    created_at = Column(DateTime, default=utc_now)

    # Group entries carry their team in event_team_id and list every member here
    members = relationship("HighScoreEntryMember", back_populates="entry", passive_deletes=True,
                           order_by="HighScoreEntryMember.id")

    def __repr__(self):
        return f"<HighScoreEntry(id={self.id}, session_id={self.session_id}, score={self.score})>"

class HighScoreEntryMember(Base):
    __tablename__ = 'high_score_entry_members'

    id = Column(Integer, primary_key=True)
    entry_id = Column(Integer, ForeignKey('high_score_entries.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    placeholder_participant_id = Column(Integer, ForeignKey('event_placeholder_participants.id'), nullable=True)

    entry = relationship("HighScoreEntry", back_populates="members")

    __table_args__ = (
        CheckConstraint(
            '(user_id IS NULL) != (placeholder_participant_id IS NULL)',
            name='high_score_member_exactly_one_owner'
        ),
    )

    def __repr__(self):
        return (f"<HighScoreEntryMember(entry={self.entry_id}, user={self.user_id}, "
                f"placeholder={self.placeholder_participant_id})>")

class DiscretionaryAward(Base):
    __tablename__ = 'discretionary_awards'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    points = Column(Float, nullable=False)
    awarded_at = Column(DateTime, nullable=False, default=utc_now)

    created_at = Column(DateTime, default=utc_now)

    recipients = relationship(
        "DiscretionaryAwardRecipient", back_populates="award", cascade="all, delete-orphan"
    )

    @property
    def recipient_team_ids(self) -> List[int]:
        return [recipient.event_team_id for recipient in self.recipients]

    def __repr__(self):
        return f"<DiscretionaryAward(id={self.id}, name='{self.name}', points={self.points})>"

class DiscretionaryAwardRecipient(Base):
    __tablename__ = 'discretionary_award_recipients'

    id = Column(Integer, primary_key=True)
    award_id = Column(Integer, ForeignKey('discretionary_awards.id'), nullable=False, index=True)
    event_team_id = Column(Integer, ForeignKey('event_teams.id'), nullable=False)

    __table_args__ = (UniqueConstraint('award_id', 'event_team_id', name='unique_team_per_award'),)

    award = relationship("DiscretionaryAward", back_populates="recipients")

class PointEntry(Base):
    """
    Immutable ledger row attributing signed points to one team.

    The source is a tagged pair (source_kind, source_id) rather than one
    nullable foreign key per source table. Rows are never updated: when the
    source changes every row for it is deleted and regenerated.
    """
    __tablename__ = 'point_entries'

    id = Column(Integer, primary_key=True)
    event_id = Column(Integer, ForeignKey('events.id'), nullable=False, index=True)
    category = Column(SQLEnum(PointCategory), nullable=False)
    outcome = Column(SQLEnum(PointOutcome), nullable=False)
    points = Column(Float, nullable=False)
    event_team_id = Column(Integer, ForeignKey('event_teams.id'), nullable=False, index=True)

    source_kind = Column(SQLEnum(PointSourceKind), nullable=False)
    source_id = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        Index('ix_point_entries_source', 'source_kind', 'source_id'),
    )

    participants = relationship("PointEntryParticipant", back_populates="point_entry")

    def __repr__(self):
        return (f"<PointEntry(id={self.id}, team={self.event_team_id}, points={self.points}, "
                f"source={self.source_kind.value}:{self.source_id})>")

class PointEntryParticipant(Base):
    """Individual attributed to a point entry"""
    __tablename__ = 'point_entry_participants'

    id = Column(Integer, primary_key=True)
    point_entry_id = Column(Integer, ForeignKey('point_entries.id'), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    placeholder_participant_id = Column(Integer, ForeignKey('event_placeholder_participants.id'), nullable=True)

    point_entry = relationship("PointEntry", back_populates="participants")
