"""
Point Ledger

The authoritative store of event point entries. Every entry attributes a
signed number of points to one team for one source (a match, a closed
high-score session, a tournament or a discretionary award).

Entries are never edited in place. When a source changes, its whole entry
set is deleted and rebuilt from the current source state in the caller's
transaction, so the stored set is always either empty or exactly what a
fresh computation would produce.

The build_* functions are pure: they turn resolved source data into
validated PointEntryDraft objects. PointLedger persists drafts.
"""

from dataclasses import dataclass, field
from numbers import Real
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.constants import ALLOWED_OUTCOMES, CATEGORY_SOURCE_KINDS
from scoreboard.database.database import Database
from scoreboard.database.models import (
    PointEntry, PointEntryParticipant, PointCategory, PointOutcome, PointSourceKind
)
from scoreboard.utils.logger import setup_logger


class PointLedgerError(Exception):
    """Base exception for point ledger errors"""
    pass


class InvalidPointEntryError(PointLedgerError):
    """Raised when a draft entry breaks the category/outcome/source rules"""
    pass


class InvalidParticipantRefError(PointLedgerError):
    """Raised when a participant reference does not name exactly one owner"""
    pass


@dataclass(frozen=True)
class ParticipantRef:
    """Reference to a user, a placeholder participant or a whole team"""
    user_id: Optional[int] = None
    placeholder_id: Optional[int] = None
    team_id: Optional[int] = None

    def __post_init__(self):
        owners = [value for value in (self.user_id, self.placeholder_id, self.team_id) if value is not None]
        if len(owners) != 1:
            raise InvalidParticipantRefError(
                "Participant reference needs exactly one of user_id, placeholder_id or team_id"
            )

    @property
    def is_team(self) -> bool:
        return self.team_id is not None

    @property
    def is_individual(self) -> bool:
        return not self.is_team


@dataclass(frozen=True)
class ResolvedParticipant:
    """A participant reference paired with the team it scores for"""
    ref: ParticipantRef
    event_team_id: int


@dataclass(frozen=True)
class TeamPlacement:
    """Best placement a team achieved in a session and the individuals who achieved it"""
    placement: int
    achieved_by: Tuple[ParticipantRef, ...] = ()


@dataclass(frozen=True)
class MatchPointValues:
    win_points: Optional[float] = None
    loss_points: Optional[float] = None
    draw_points: Optional[float] = None

    @property
    def tracks_points(self) -> bool:
        """Points are tracked only when a win or loss value was supplied"""
        return self.win_points is not None or self.loss_points is not None

    def points_for(self, outcome: PointOutcome) -> float:
        if outcome == PointOutcome.WIN:
            return self.win_points or 0
        if outcome == PointOutcome.LOSS:
            return self.loss_points or 0
        return self.draw_points or 0


@dataclass(frozen=True)
class PointEntryDraft:
    """
    A point entry that has not been written yet.

    Construction validates the closed enums and the allowed
    category/outcome/source-kind pairings, so an invalid entry never
    reaches the database.
    """
    event_id: int
    category: PointCategory
    outcome: PointOutcome
    points: float
    event_team_id: int
    source_kind: PointSourceKind
    source_id: int
    participants: Tuple[ParticipantRef, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.category, PointCategory):
            raise InvalidPointEntryError(f"Unknown point category: {self.category!r}")
        if not isinstance(self.outcome, PointOutcome):
            raise InvalidPointEntryError(f"Unknown point outcome: {self.outcome!r}")
        if not isinstance(self.source_kind, PointSourceKind):
            raise InvalidPointEntryError(f"Unknown source kind: {self.source_kind!r}")

        if self.outcome not in ALLOWED_OUTCOMES[self.category]:
            raise InvalidPointEntryError(
                f"Outcome {self.outcome.value} is not allowed for category {self.category.value}"
            )
        if CATEGORY_SOURCE_KINDS[self.category] != self.source_kind:
            raise InvalidPointEntryError(
                f"Category {self.category.value} cannot come from source {self.source_kind.value}"
            )

        if isinstance(self.points, bool) or not isinstance(self.points, Real):
            raise InvalidPointEntryError(f"Points must be a number, got {self.points!r}")
        if self.event_team_id is None:
            raise InvalidPointEntryError("Point entry must belong to a team")
        if self.source_id is None:
            raise InvalidPointEntryError("Point entry must belong to a source")

        for participant in self.participants:
            if not participant.is_individual:
                raise InvalidPointEntryError("Only individuals can be attributed to a point entry")


def _group_by_team(side: Sequence[ResolvedParticipant]) -> Dict[int, List[ResolvedParticipant]]:
    """Group a side's participants by team, keeping first-seen team order"""
    groups: Dict[int, List[ResolvedParticipant]] = {}
    for participant in side:
        groups.setdefault(participant.event_team_id, []).append(participant)
    return groups


def build_match_entries(event_id: int, match_id: int,
                        sides: Sequence[Sequence[ResolvedParticipant]],
                        side_outcomes: Sequence[PointOutcome],
                        point_values: MatchPointValues,
                        is_team_game: bool = False) -> List[PointEntryDraft]:
    """
    Build head-to-head point entries: one per distinct team per side.

    A team represented on its side by a single individual gets that
    individual attributed to the entry. Nothing is built when neither win
    nor loss points were supplied.

    Args:
        event_id: Event the match belongs to
        match_id: Source match ID
        sides: Resolved participants of each side
        side_outcomes: WIN, LOSS or DRAW for each side
        point_values: Win/loss/draw point values
        is_team_game: Team-participant games never attribute individuals

    Returns:
        List of point entry drafts
    """
    if not point_values.tracks_points:
        return []

    drafts = []
    for side, outcome in zip(sides, side_outcomes):
        for team_id, group in _group_by_team(side).items():
            solo = group[0].ref if (not is_team_game and len(group) == 1
                                    and group[0].ref.is_individual) else None
            drafts.append(PointEntryDraft(
                event_id=event_id,
                category=PointCategory.H2H_MATCH,
                outcome=outcome,
                points=point_values.points_for(outcome),
                event_team_id=team_id,
                source_kind=PointSourceKind.MATCH,
                source_id=match_id,
                participants=(solo,) if solo else (),
            ))
    return drafts


def build_ffa_entries(event_id: int, match_id: int,
                      participants: Sequence[Tuple[ResolvedParticipant, Optional[float]]],
                      is_team_game: bool = False) -> List[PointEntryDraft]:
    """
    Build free-for-all point entries, one per participant.

    Built only when at least one participant carries points; the others
    then score 0.
    """
    if all(points is None for _, points in participants):
        return []

    return [
        PointEntryDraft(
            event_id=event_id,
            category=PointCategory.FFA_MATCH,
            outcome=PointOutcome.PLACEMENT,
            points=points if points is not None else 0,
            event_team_id=resolved.event_team_id,
            source_kind=PointSourceKind.MATCH,
            source_id=match_id,
            participants=(resolved.ref,) if (not is_team_game and resolved.ref.is_individual) else (),
        )
        for resolved, points in participants
    ]


def build_placement_entries(event_id: int, session_id: int,
                            team_best_placement: Dict[int, TeamPlacement],
                            config_map: Dict[int, float]) -> List[PointEntryDraft]:
    """
    Build high-score placement entries, one per team whose best placement
    has a configured point value. Teams placing outside the configuration
    are left out. Every individual who achieved the placement (a single
    player or all members of a group entry) is attributed.
    """
    drafts = []
    for team_id, best in team_best_placement.items():
        points = config_map.get(best.placement)
        if points is None:
            continue
        drafts.append(PointEntryDraft(
            event_id=event_id,
            category=PointCategory.HIGH_SCORE,
            outcome=PointOutcome.PLACEMENT,
            points=points,
            event_team_id=team_id,
            source_kind=PointSourceKind.HIGH_SCORE_SESSION,
            source_id=session_id,
            participants=tuple(ref for ref in best.achieved_by if ref.is_individual),
        ))
    return drafts


def build_award_entries(event_id: int, award_id: int, points: float,
                        recipient_team_ids: Sequence[int]) -> List[PointEntryDraft]:
    """Build one discretionary award entry per distinct recipient team"""
    return [
        PointEntryDraft(
            event_id=event_id,
            category=PointCategory.DISCRETIONARY,
            outcome=PointOutcome.AWARD,
            points=points,
            event_team_id=team_id,
            source_kind=PointSourceKind.DISCRETIONARY_AWARD,
            source_id=award_id,
        )
        for team_id in dict.fromkeys(recipient_team_ids)
    ]


class PointLedger:
    """
    Persists point entry drafts.

    Every write method takes the caller's session and never commits: the
    caller's transaction covers the source mutation and the ledger write
    together.
    """

    def __init__(self, db: Database):
        self.db = db
        self.logger = setup_logger(f"{__name__}.PointLedger")

    async def create_entries(self, drafts: Sequence[PointEntryDraft],
                             session: AsyncSession) -> List[PointEntry]:
        """
        Insert drafts (and their attributed participants) as point entries.

        Args:
            drafts: Validated point entry drafts
            session: Caller's transactional session

        Returns:
            The inserted PointEntry rows, in draft order
        """
        if not drafts:
            return []

        entries = [
            PointEntry(
                event_id=draft.event_id,
                category=draft.category,
                outcome=draft.outcome,
                points=draft.points,
                event_team_id=draft.event_team_id,
                source_kind=draft.source_kind,
                source_id=draft.source_id,
                participants=[
                    PointEntryParticipant(
                        user_id=participant.user_id,
                        placeholder_participant_id=participant.placeholder_id,
                    )
                    for participant in draft.participants
                ],
            )
            for draft in drafts
        ]
        session.add_all(entries)
        await session.flush()

        self.logger.debug(
            f"Created {len(entries)} point entries for "
            f"{drafts[0].source_kind.value}:{drafts[0].source_id}"
        )
        return entries

    async def create_entries_for_match(self, event_id: int, match_id: int,
                                       sides: Sequence[Sequence[ResolvedParticipant]],
                                       side_outcomes: Sequence[PointOutcome],
                                       point_values: MatchPointValues,
                                       session: AsyncSession,
                                       is_team_game: bool = False) -> List[PointEntry]:
        """Create head-to-head entries for a recorded match (skipped when no points are tracked)"""
        drafts = build_match_entries(
            event_id, match_id, sides, side_outcomes, point_values, is_team_game
        )
        if not drafts:
            self.logger.debug(f"Match {match_id} tracks no points, no entries created")
        return await self.create_entries(drafts, session)

    async def create_entries_for_placements(self, event_id: int, session_id: int,
                                            team_best_placement: Dict[int, TeamPlacement],
                                            config_map: Dict[int, float],
                                            session: AsyncSession) -> List[PointEntry]:
        """Create high-score placement entries for a closing session"""
        drafts = build_placement_entries(event_id, session_id, team_best_placement, config_map)
        return await self.create_entries(drafts, session)

    async def delete_for_source(self, source_kind: PointSourceKind, source_id: int,
                                session: AsyncSession) -> int:
        """
        Delete every point entry (and attributed participant) of one source.

        Returns:
            Number of point entries deleted
        """
        entry_ids = (
            select(PointEntry.id)
            .where(
                PointEntry.source_kind == source_kind,
                PointEntry.source_id == source_id
            )
            .scalar_subquery()
        )

        await session.execute(
            delete(PointEntryParticipant)
            .where(PointEntryParticipant.point_entry_id.in_(entry_ids))
            .execution_options(synchronize_session='fetch')
        )
        result = await session.execute(
            delete(PointEntry)
            .where(
                PointEntry.source_kind == source_kind,
                PointEntry.source_id == source_id
            )
            .execution_options(synchronize_session='fetch')
        )

        deleted = result.rowcount or 0
        self.logger.debug(f"Deleted {deleted} point entries for {source_kind.value}:{source_id}")
        return deleted

    async def recreate_for_source(self, source_kind: PointSourceKind, source_id: int,
                                  drafts: Sequence[PointEntryDraft],
                                  session: AsyncSession) -> List[PointEntry]:
        """
        Replace a source's entry set: delete everything it produced, then
        insert the new drafts. Running it twice with the same drafts leaves
        the same entry set.

        Raises:
            InvalidPointEntryError: If a draft belongs to a different source
        """
        for draft in drafts:
            if draft.source_kind != source_kind or draft.source_id != source_id:
                raise InvalidPointEntryError(
                    f"Draft for {draft.source_kind.value}:{draft.source_id} passed to "
                    f"recreate of {source_kind.value}:{source_id}"
                )

        await self.delete_for_source(source_kind, source_id, session)
        return await self.create_entries(drafts, session)

    async def list_for_source(self, source_kind: PointSourceKind, source_id: int,
                              session: Optional[AsyncSession] = None) -> List[PointEntry]:
        """Get a source's point entries in insertion order"""
        async def _list(session: AsyncSession) -> List[PointEntry]:
            result = await session.execute(
                select(PointEntry)
                .where(
                    PointEntry.source_kind == source_kind,
                    PointEntry.source_id == source_id
                )
                .order_by(PointEntry.id)
            )
            return list(result.scalars().all())

        if session:
            return await _list(session)
        else:
            async with self.db.get_session() as db_session:
                return await _list(db_session)
