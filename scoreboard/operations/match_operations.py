"""
Event Match Operations

Records head-to-head and free-for-all matches inside an event and writes
their point entries through the ledger in the same transaction. Deleting a
match removes its point entries first.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, delete
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.database.models import (
    Event, EventGameType, EventMatch, EventMatchParticipant, GameCategory,
    MatchResult, PointOutcome, PointSourceKind, ScoreOrder, utc_now
)
from scoreboard.operations.base import BaseOperations
from scoreboard.operations.point_ledger import (
    ParticipantRef, ResolvedParticipant, MatchPointValues, build_ffa_entries
)
from scoreboard.utils.results import OperationResult


WINNING_SIDES = ("side1", "side2", "draw")

RESULT_OUTCOMES = {
    MatchResult.WIN: PointOutcome.WIN,
    MatchResult.LOSS: PointOutcome.LOSS,
    MatchResult.DRAW: PointOutcome.DRAW,
}


@dataclass(frozen=True)
class FFAMatchParticipant:
    """One finisher of a free-for-all match as submitted by the recorder"""
    ref: ParticipantRef
    rank: Optional[int] = None
    score: Optional[float] = None
    points: Optional[float] = None


def resolve_h2h_results(winning_side: Optional[str], side1_score: Optional[float],
                        side2_score: Optional[float],
                        score_order: ScoreOrder) -> Optional[Tuple[MatchResult, MatchResult]]:
    """
    Work out each side's result.

    An explicit winning_side wins over scores. Scores are compared under the
    game type's score order, equal scores being a draw.

    Returns:
        (side1_result, side2_result), or None when neither a winning side
        nor both scores were given
    """
    if winning_side == "side1":
        return MatchResult.WIN, MatchResult.LOSS
    if winning_side == "side2":
        return MatchResult.LOSS, MatchResult.WIN
    if winning_side == "draw":
        return MatchResult.DRAW, MatchResult.DRAW

    if side1_score is None or side2_score is None:
        return None

    if score_order == ScoreOrder.LOWEST_WINS:
        side1_better = side1_score < side2_score
        side2_better = side2_score < side1_score
    else:
        side1_better = side1_score > side2_score
        side2_better = side2_score > side1_score

    if side1_better:
        return MatchResult.WIN, MatchResult.LOSS
    if side2_better:
        return MatchResult.LOSS, MatchResult.WIN
    return MatchResult.DRAW, MatchResult.DRAW


class EventMatchOperations(BaseOperations):
    """Service class for recording and deleting event matches."""

    async def _check_recordable(self, event_id: int, game_type_id: int, category: GameCategory,
                                session: AsyncSession) -> Tuple[Optional[EventGameType], Optional[OperationResult]]:
        """
        Shared gating for match recording.

        Returns:
            (game_type, None) when recording may proceed, (None, failed result) otherwise
        """
        event: Optional[Event] = await self.db.get_event_by_id(event_id, session=session)
        if not event:
            return None, OperationResult.not_found("Event not found")
        if not event.is_active:
            return None, OperationResult.state_conflict("Matches can only be recorded for active events")

        game_type = await self.db.get_game_type_by_id(game_type_id, session=session)
        if not game_type or game_type.event_id != event_id:
            return None, OperationResult.not_found("Game type not found in this event")
        if game_type.is_archived:
            return None, OperationResult.state_conflict("Cannot record matches for an archived game type")
        if game_type.category != category:
            return None, OperationResult.shape_conflict(
                f"This game type is not configured for {category.value} matches"
            )

        return game_type, None

    async def _resolve(self, event_id: int, ref: ParticipantRef, session: AsyncSession
                       ) -> Tuple[Optional[ResolvedParticipant], Optional[OperationResult]]:
        """
        Resolve a participant to the event team it scores for.

        Returns:
            (resolved, None) on success, (None, failed result) otherwise
        """
        if ref.is_team:
            team = await self.db.get_team_by_id(ref.team_id, session=session)
            if not team or team.event_id != event_id:
                return None, OperationResult.not_found("Team not found in this event")
        elif ref.user_id is not None:
            team = await self.db.get_team_for_user(event_id, ref.user_id, session=session)
        else:
            team = await self.db.get_team_for_placeholder(event_id, ref.placeholder_id, session=session)

        if not team:
            return None, OperationResult.shape_conflict("Participant is not on a team")
        return ResolvedParticipant(ref=ref, event_team_id=team.id), None

    async def record_h2h_match(
        self,
        event_id: int,
        game_type_id: int,
        side1: Sequence[ParticipantRef],
        side2: Sequence[ParticipantRef],
        winning_side: Optional[str] = None,
        side1_score: Optional[float] = None,
        side2_score: Optional[float] = None,
        win_points: Optional[float] = None,
        loss_points: Optional[float] = None,
        draw_points: Optional[float] = None,
        played_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Record a head-to-head match.

        Args:
            event_id: Event the match belongs to (must be ACTIVE)
            game_type_id: HEAD_TO_HEAD game type within the event
            side1: Participants of side 1
            side2: Participants of side 2
            winning_side: "side1", "side2" or "draw"; scores are used when omitted
            side1_score: Optional side 1 score
            side2_score: Optional side 2 score
            win_points: Points for each winning team
            loss_points: Points for each losing team
            draw_points: Points for each team on a draw
            played_at: When the match was played (now if omitted)
            session: Optional existing database session

        Returns:
            OperationResult with the created EventMatch
        """
        async def _record(session: AsyncSession) -> OperationResult:
            game_type, refused = await self._check_recordable(
                event_id, game_type_id, GameCategory.HEAD_TO_HEAD, session
            )
            if refused:
                return self._refuse(refused)

            min_size = game_type.min_players_per_side or 1
            max_size = game_type.max_players_per_side or min_size
            for side in (side1, side2):
                if not min_size <= len(side) <= max_size:
                    return self._refuse(OperationResult.shape_conflict(
                        f"Each side needs between {min_size} and {max_size} participants"
                    ))

            if game_type.is_team_game and any(not ref.is_team for ref in [*side1, *side2]):
                return self._refuse(OperationResult.shape_conflict(
                    "All participants must be teams for this game type"
                ))

            if winning_side is not None and winning_side not in WINNING_SIDES:
                return self._refuse(OperationResult.shape_conflict(
                    f"winning_side must be one of {', '.join(WINNING_SIDES)}"
                ))

            results = resolve_h2h_results(winning_side, side1_score, side2_score, game_type.score_order)
            if results is None:
                return self._refuse(OperationResult.shape_conflict(
                    "Must specify either winning_side or both scores"
                ))
            side1_result, side2_result = results

            point_values = MatchPointValues(win_points, loss_points, draw_points)
            if side1_result == MatchResult.DRAW and point_values.tracks_points and draw_points is None:
                return self._refuse(OperationResult.shape_conflict(
                    "Draw points must be specified when the result is a draw and points are being tracked"
                ))

            resolved_sides: List[List[ResolvedParticipant]] = []
            for side in (side1, side2):
                resolved_side = []
                for ref in side:
                    resolved, refused = await self._resolve(event_id, ref, session)
                    if refused:
                        return self._refuse(refused)
                    resolved_side.append(resolved)
                resolved_sides.append(resolved_side)

            side_details = (
                (1, side1_score, side1_result),
                (2, side2_score, side2_result),
            )
            match = EventMatch(
                event_id=event_id,
                event_game_type_id=game_type_id,
                played_at=played_at or utc_now(),
                created_at=utc_now(),
                participants=[
                    EventMatchParticipant(
                        event_team_id=resolved.event_team_id,
                        user_id=None if game_type.is_team_game else resolved.ref.user_id,
                        placeholder_participant_id=None if game_type.is_team_game else resolved.ref.placeholder_id,
                        side=side_number,
                        score=score,
                        result=result,
                    )
                    for (side_number, score, result), resolved_side in zip(side_details, resolved_sides)
                    for resolved in resolved_side
                ],
            )
            session.add(match)
            await session.flush()

            await self.ledger.create_entries_for_match(
                event_id,
                match.id,
                resolved_sides,
                [RESULT_OUTCOMES[side1_result], RESULT_OUTCOMES[side2_result]],
                point_values,
                session,
                is_team_game=game_type.is_team_game,
            )

            self.logger.info(
                f"Recorded H2H match {match.id} in event {event_id}: "
                f"side1 {side1_result.value}, side2 {side2_result.value}"
            )
            return OperationResult.ok(match)

        if session:
            return await _record(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _record(txn_session)

    async def record_ffa_match(
        self,
        event_id: int,
        game_type_id: int,
        participants: Sequence[FFAMatchParticipant],
        played_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Record a free-for-all match.

        When any participant carries points, every participant gets one
        FFA_MATCH / PLACEMENT entry (missing points count as 0).

        Returns:
            OperationResult with the created EventMatch
        """
        async def _record(session: AsyncSession) -> OperationResult:
            game_type, refused = await self._check_recordable(
                event_id, game_type_id, GameCategory.FREE_FOR_ALL, session
            )
            if refused:
                return self._refuse(refused)

            if len(participants) < 2:
                return self._refuse(OperationResult.shape_conflict(
                    "A free-for-all match needs at least two participants"
                ))

            if game_type.is_team_game and any(not p.ref.is_team for p in participants):
                return self._refuse(OperationResult.shape_conflict(
                    "All participants must be teams for this game type"
                ))

            resolved_participants = []
            for participant in participants:
                resolved, refused = await self._resolve(event_id, participant.ref, session)
                if refused:
                    return self._refuse(refused)
                resolved_participants.append((resolved, participant))

            match = EventMatch(
                event_id=event_id,
                event_game_type_id=game_type_id,
                played_at=played_at or utc_now(),
                created_at=utc_now(),
                participants=[
                    EventMatchParticipant(
                        event_team_id=resolved.event_team_id,
                        user_id=None if game_type.is_team_game else resolved.ref.user_id,
                        placeholder_participant_id=None if game_type.is_team_game else resolved.ref.placeholder_id,
                        score=participant.score,
                        rank=participant.rank,
                    )
                    for resolved, participant in resolved_participants
                ],
            )
            session.add(match)
            await session.flush()

            drafts = build_ffa_entries(
                event_id,
                match.id,
                [(resolved, participant.points) for resolved, participant in resolved_participants],
                is_team_game=game_type.is_team_game,
            )
            await self.ledger.create_entries(drafts, session)

            self.logger.info(
                f"Recorded FFA match {match.id} in event {event_id} with {len(participants)} participants"
            )
            return OperationResult.ok(match)

        if session:
            return await _record(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _record(txn_session)

    async def delete_match(self, match_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """Delete a match, its participants and its point entries"""
        async def _delete(session: AsyncSession) -> OperationResult:
            match = await session.get(EventMatch, match_id)
            if not match:
                return self._refuse(OperationResult.not_found("Match not found"))

            deleted_points = await self.ledger.delete_for_source(PointSourceKind.MATCH, match_id, session)
            await session.execute(
                delete(EventMatchParticipant)
                .where(EventMatchParticipant.event_match_id == match_id)
                .execution_options(synchronize_session='fetch')
            )
            await session.execute(
                delete(EventMatch)
                .where(EventMatch.id == match_id)
                .execution_options(synchronize_session='fetch')
            )

            self.logger.info(f"Deleted match {match_id} ({deleted_points} point entries removed)")
            return OperationResult.ok(match_id)

        if session:
            return await _delete(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _delete(txn_session)

    async def get_match(self, match_id: int, session: Optional[AsyncSession] = None) -> Optional[EventMatch]:
        """Get a match with its participants loaded"""
        async def _get(session: AsyncSession) -> Optional[EventMatch]:
            result = await session.execute(
                select(EventMatch)
                .options(selectinload(EventMatch.participants))
                .where(EventMatch.id == match_id)
            )
            return result.scalar_one_or_none()

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)
