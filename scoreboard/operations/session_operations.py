"""
High-Score Session Operations

Lifecycle of high-score sessions: OPEN -> CLOSED -> OPEN (reopen) -> CLOSED,
and deletion from either state. Closing a session ranks its score entries
and writes placement points for each team's best placement; reopening
removes those points again.
"""

import json
from datetime import datetime
from numbers import Real
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.database.models import (
    HighScoreSession, HighScoreSessionStatus, HighScoreEntry, HighScoreEntryMember, EventGameType,
    GameCategory, ScoreOrder, PointSourceKind, utc_now
)
from scoreboard.operations.base import BaseOperations
from scoreboard.operations.point_ledger import (
    ParticipantRef, TeamPlacement, InvalidParticipantRefError
)
from scoreboard.utils.results import OperationResult


class PlacementConfigError(ValueError):
    """Raised when a placement point configuration is malformed"""
    pass


def parse_placement_config(config: Optional[Sequence[Dict]]) -> List[Dict]:
    """
    Validate and normalize a placement point configuration.

    Args:
        config: Sequence of {"placement": int, "points": number} items

    Returns:
        Normalized list sorted by placement (empty when config is empty or None)

    Raises:
        PlacementConfigError: If a placement is not a positive integer, points
            are not a number, or a placement appears twice
    """
    if not config:
        return []

    normalized = []
    seen = set()
    for item in config:
        try:
            placement = item['placement']
            points = item['points']
        except (KeyError, TypeError):
            raise PlacementConfigError("Each placement config item needs 'placement' and 'points'")

        if isinstance(placement, bool) or not isinstance(placement, int) or placement < 1:
            raise PlacementConfigError(f"Placement must be a positive integer, got {placement!r}")
        if isinstance(points, bool) or not isinstance(points, Real):
            raise PlacementConfigError(f"Points must be a number, got {points!r}")
        if placement in seen:
            raise PlacementConfigError(f"Placement {placement} is configured twice")

        seen.add(placement)
        normalized.append({'placement': placement, 'points': points})

    return sorted(normalized, key=lambda item: item['placement'])


def rank_entries(entries: Sequence[HighScoreEntry], score_order: ScoreOrder) -> List[HighScoreEntry]:
    """Sort entries best first; entries with equal scores keep their submission order"""
    return sorted(
        entries,
        key=lambda entry: entry.score,
        reverse=score_order == ScoreOrder.HIGHEST_WINS
    )


class HighScoreSessionOperations(BaseOperations):
    """
    Service class for high-score session workflows.

    Every mutating method accepts an optional session so it can join a
    caller's transaction; without one it runs in its own transaction.
    """

    async def _load_session(self, session_id: int, session: AsyncSession) -> Optional[HighScoreSession]:
        return await session.get(HighScoreSession, session_id)

    async def open_session(
        self,
        event_id: int,
        game_type_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        placement_config: Optional[Sequence[Dict]] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Open a new high-score session for a game type.

        Args:
            event_id: Event the session belongs to (must be ACTIVE)
            game_type_id: HIGH_SCORE game type within the event
            name: Optional session name
            description: Optional session description
            placement_config: Optional [{"placement", "points"}] list
            session: Optional existing database session

        Returns:
            OperationResult with the created HighScoreSession
        """
        async def _open(session: AsyncSession) -> OperationResult:
            event = await self.db.get_event_by_id(event_id, session=session)
            if not event:
                return self._refuse(OperationResult.not_found("Event not found"))
            if not event.is_active:
                return self._refuse(OperationResult.state_conflict(
                    "Sessions can only be opened for active events"
                ))

            game_type = await self.db.get_game_type_by_id(game_type_id, session=session)
            if not game_type or game_type.event_id != event_id:
                return self._refuse(OperationResult.not_found("Game type not found in this event"))
            if game_type.is_archived:
                return self._refuse(OperationResult.state_conflict(
                    "Cannot open sessions for an archived game type"
                ))
            if game_type.category != GameCategory.HIGH_SCORE:
                return self._refuse(OperationResult.shape_conflict(
                    "Game type is not a high score game"
                ))

            try:
                config = parse_placement_config(placement_config)
            except PlacementConfigError as e:
                return self._refuse(OperationResult.shape_conflict(str(e)))

            hs_session = HighScoreSession(
                event_id=event_id,
                event_game_type_id=game_type_id,
                status=HighScoreSessionStatus.OPEN,
                name=name or None,
                description=description or None,
                placement_point_config=json.dumps(config) if config else None,
                opened_at=utc_now(),
            )
            session.add(hs_session)
            await session.flush()

            self.logger.info(f"Opened high score session {hs_session.id} for game type {game_type_id}")
            return OperationResult.ok(hs_session)

        if session:
            return await _open(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _open(txn_session)

    async def update_session(
        self,
        session_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        placement_config: Optional[Sequence[Dict]] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Edit an OPEN session. Arguments left as None are unchanged; an empty
        string clears name or description and an empty list clears the
        placement configuration.
        """
        async def _update(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if not hs_session.is_open:
                return self._refuse(OperationResult.state_conflict("Can only edit open sessions"))

            if placement_config is not None:
                try:
                    config = parse_placement_config(placement_config)
                except PlacementConfigError as e:
                    return self._refuse(OperationResult.shape_conflict(str(e)))
                hs_session.placement_point_config = json.dumps(config) if config else None

            if name is not None:
                hs_session.name = name or None
            if description is not None:
                hs_session.description = description or None

            await session.flush()
            self.logger.info(f"Updated high score session {session_id}")
            return OperationResult.ok(hs_session)

        if session:
            return await _update(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _update(txn_session)

    async def submit_score(
        self,
        session_id: int,
        score: float,
        user_id: Optional[int] = None,
        placeholder_id: Optional[int] = None,
        team_id: Optional[int] = None,
        achieved_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Submit a score to an OPEN session.

        Individual games take exactly one of user_id / placeholder_id and the
        participant must be on a team in the event. Team games take team_id.

        Returns:
            OperationResult with the created HighScoreEntry
        """
        async def _submit(session: AsyncSession) -> OperationResult:
            try:
                owner = ParticipantRef(user_id=user_id, placeholder_id=placeholder_id, team_id=team_id)
            except InvalidParticipantRefError as e:
                return self._refuse(OperationResult.shape_conflict(str(e)))

            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if not hs_session.is_open:
                return self._refuse(OperationResult.state_conflict("Session is not open for submissions"))

            game_type = await self.db.get_game_type_by_id(hs_session.event_game_type_id, session=session)
            if not game_type:
                return self._refuse(OperationResult.not_found("Game type not found"))

            if game_type.is_group_game:
                return self._refuse(OperationResult.shape_conflict(
                    f"This game type takes group entries of {game_type.group_size} members"
                ))
            if game_type.is_team_game and not owner.is_team:
                return self._refuse(OperationResult.shape_conflict(
                    "Team ID is required for team high score games"
                ))
            if not game_type.is_team_game and owner.is_team:
                return self._refuse(OperationResult.shape_conflict(
                    "Team ID is not allowed for individual high score games"
                ))

            if owner.is_team:
                team = await self.db.get_team_by_id(owner.team_id, session=session)
                if not team or team.event_id != hs_session.event_id:
                    return self._refuse(OperationResult.not_found("Team not found in this event"))
            else:
                team = await self._resolve_individual_team(hs_session.event_id, owner, session)
                if not team:
                    return self._refuse(OperationResult.shape_conflict("Participant is not on a team"))

            entry = HighScoreEntry(
                session_id=session_id,
                event_id=hs_session.event_id,
                user_id=owner.user_id,
                placeholder_participant_id=owner.placeholder_id,
                event_team_id=owner.team_id,
                score=score,
                achieved_at=achieved_at or utc_now(),
                created_at=utc_now(),
                members=[],
            )
            session.add(entry)
            await session.flush()

            self.logger.debug(f"Score {score} submitted to session {session_id} (entry {entry.id})")
            return OperationResult.ok(entry)

        if session:
            return await _submit(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _submit(txn_session)

    async def submit_group_score(
        self,
        session_id: int,
        score: float,
        members: Sequence[ParticipantRef],
        achieved_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Submit one score for a group of individuals (a pair, a trio) to an
        OPEN session of a group game.

        The group must have exactly the game type's group_size distinct
        members, all on the same team in the event. The entry is stored
        against that team and lists every member.

        Args:
            session_id: Session to submit to
            score: Score the group achieved
            members: User or placeholder references of every member
            achieved_at: When the score was achieved (now if omitted)
            session: Optional existing database session

        Returns:
            OperationResult with the created HighScoreEntry
        """
        async def _submit(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if not hs_session.is_open:
                return self._refuse(OperationResult.state_conflict("Session is not open for submissions"))

            game_type = await self.db.get_game_type_by_id(hs_session.event_game_type_id, session=session)
            if not game_type:
                return self._refuse(OperationResult.not_found("Game type not found"))
            if not game_type.is_group_game:
                return self._refuse(OperationResult.shape_conflict(
                    "This game type does not take group entries"
                ))

            if len(members) != game_type.group_size:
                return self._refuse(OperationResult.shape_conflict(
                    f"This game type requires exactly {game_type.group_size} members per entry"
                ))
            if any(member.is_team for member in members):
                return self._refuse(OperationResult.shape_conflict(
                    "Group members must be users or placeholder participants"
                ))
            if len(set(members)) != len(members):
                return self._refuse(OperationResult.shape_conflict(
                    "Duplicate members are not allowed in a group entry"
                ))

            team_ids = set()
            for member in members:
                team = await self._resolve_individual_team(hs_session.event_id, member, session)
                if not team:
                    return self._refuse(OperationResult.shape_conflict(
                        "All members must be on a team to submit a group entry"
                    ))
                team_ids.add(team.id)
            if len(team_ids) > 1:
                return self._refuse(OperationResult.shape_conflict("All members must be on the same team"))

            entry = HighScoreEntry(
                session_id=session_id,
                event_id=hs_session.event_id,
                event_team_id=team_ids.pop(),
                score=score,
                achieved_at=achieved_at or utc_now(),
                created_at=utc_now(),
                members=[
                    HighScoreEntryMember(
                        user_id=member.user_id,
                        placeholder_participant_id=member.placeholder_id,
                    )
                    for member in members
                ],
            )
            session.add(entry)
            await session.flush()

            self.logger.debug(
                f"Group score {score} submitted to session {session_id} "
                f"(entry {entry.id}, {len(members)} members)"
            )
            return OperationResult.ok(entry)

        if session:
            return await _submit(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _submit(txn_session)

    async def delete_entry(self, entry_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """Delete a score entry from an OPEN session"""
        async def _delete(session: AsyncSession) -> OperationResult:
            entry = await session.get(HighScoreEntry, entry_id)
            if not entry:
                return self._refuse(OperationResult.not_found("Score entry not found"))

            hs_session = await self._load_session(entry.session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if not hs_session.is_open:
                return self._refuse(OperationResult.state_conflict(
                    "Cannot delete scores from a closed session"
                ))

            await session.execute(
                delete(HighScoreEntryMember)
                .where(HighScoreEntryMember.entry_id == entry_id)
                .execution_options(synchronize_session='fetch')
            )
            await session.delete(entry)
            await session.flush()

            self.logger.info(f"Deleted score entry {entry_id} from session {hs_session.id}")
            return OperationResult.ok(entry_id)

        if session:
            return await _delete(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _delete(txn_session)

    async def close_session(self, session_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """
        Close an OPEN session and award placement points.

        With a placement configuration, entries are ranked by the game type's
        score order (stable), given 1-based placements by position and reduced
        to the best placement per team. Teams whose best placement has a
        configured value get one HIGH_SCORE / PLACEMENT entry. Without a
        configuration only the status changes.

        Returns:
            OperationResult with the closed HighScoreSession
        """
        async def _close(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if not hs_session.is_open:
                return self._refuse(OperationResult.state_conflict("Session is already closed"))

            placement_points = hs_session.placement_points
            if placement_points:
                game_type = await self.db.get_game_type_by_id(hs_session.event_game_type_id, session=session)
                if not game_type:
                    return self._refuse(OperationResult.not_found("Game type not found"))

                entries = await self._get_entries(session_id, session)
                team_best_placement = await self._team_best_placements(
                    hs_session.event_id, rank_entries(entries, game_type.score_order), session
                )
                config_map = {item['placement']: item['points'] for item in placement_points}

                created = await self.ledger.create_entries_for_placements(
                    hs_session.event_id, session_id, team_best_placement, config_map, session
                )
                self.logger.debug(f"Session {session_id} produced {len(created)} placement point entries")

            hs_session.status = HighScoreSessionStatus.CLOSED
            hs_session.closed_at = utc_now()
            await session.flush()

            self.logger.info(f"Closed high score session {session_id}")
            return OperationResult.ok(hs_session)

        if session:
            return await _close(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _close(txn_session)

    async def reopen_session(self, session_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """Reopen a CLOSED session, removing the point entries it produced"""
        async def _reopen(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))
            if hs_session.status != HighScoreSessionStatus.CLOSED:
                return self._refuse(OperationResult.state_conflict("Session is not closed"))

            await self.ledger.recreate_for_source(
                PointSourceKind.HIGH_SCORE_SESSION, session_id, [], session
            )
            hs_session.status = HighScoreSessionStatus.OPEN
            hs_session.closed_at = None
            await session.flush()

            self.logger.info(f"Reopened high score session {session_id}")
            return OperationResult.ok(hs_session)

        if session:
            return await _reopen(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _reopen(txn_session)

    async def delete_session(self, session_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """Delete a session in either state along with its score and point entries"""
        async def _delete(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return self._refuse(OperationResult.not_found("Session not found"))

            deleted_points = await self.ledger.delete_for_source(
                PointSourceKind.HIGH_SCORE_SESSION, session_id, session
            )
            session_entry_ids = (
                select(HighScoreEntry.id)
                .where(HighScoreEntry.session_id == session_id)
                .scalar_subquery()
            )
            await session.execute(
                delete(HighScoreEntryMember)
                .where(HighScoreEntryMember.entry_id.in_(session_entry_ids))
                .execution_options(synchronize_session='fetch')
            )
            await session.execute(
                delete(HighScoreEntry)
                .where(HighScoreEntry.session_id == session_id)
                .execution_options(synchronize_session='fetch')
            )
            await session.delete(hs_session)
            await session.flush()

            self.logger.info(
                f"Deleted high score session {session_id} ({deleted_points} point entries removed)"
            )
            return OperationResult.ok(session_id)

        if session:
            return await _delete(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _delete(txn_session)

    async def list_sessions(
        self,
        event_id: int,
        status: Optional[HighScoreSessionStatus] = None,
        session: Optional[AsyncSession] = None
    ) -> List[HighScoreSession]:
        """Get an event's sessions, most recently opened first, optionally filtered by status"""
        async def _list(session: AsyncSession) -> List[HighScoreSession]:
            query = select(HighScoreSession).where(HighScoreSession.event_id == event_id)
            if status is not None:
                query = query.where(HighScoreSession.status == status)
            query = query.order_by(HighScoreSession.opened_at.desc(), HighScoreSession.id.desc())

            result = await session.execute(query)
            return list(result.scalars().all())

        if session:
            return await _list(session)
        else:
            async with self.db.get_session() as db_session:
                return await _list(db_session)

    async def get_session_entries(self, session_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """
        Get a session's score entries ranked best first.

        Returns:
            OperationResult with the ranked list of HighScoreEntry
        """
        async def _get(session: AsyncSession) -> OperationResult:
            hs_session = await self._load_session(session_id, session)
            if not hs_session:
                return OperationResult.not_found("Session not found")

            game_type = await session.get(EventGameType, hs_session.event_game_type_id)
            entries = await self._get_entries(session_id, session)
            score_order = game_type.score_order if game_type else ScoreOrder.HIGHEST_WINS
            return OperationResult.ok(rank_entries(entries, score_order))

        if session:
            return await _get(session)
        else:
            async with self.db.get_session() as db_session:
                return await _get(db_session)

    async def _get_entries(self, session_id: int, session: AsyncSession) -> List[HighScoreEntry]:
        """Score entries in submission order"""
        result = await session.execute(
            select(HighScoreEntry)
            .options(selectinload(HighScoreEntry.members))
            .where(HighScoreEntry.session_id == session_id)
            .order_by(HighScoreEntry.id)
        )
        return list(result.scalars().all())

    async def _resolve_individual_team(self, event_id: int, owner: ParticipantRef, session: AsyncSession):
        if owner.user_id is not None:
            return await self.db.get_team_for_user(event_id, owner.user_id, session=session)
        return await self.db.get_team_for_placeholder(event_id, owner.placeholder_id, session=session)

    async def _team_best_placements(self, event_id: int, ranked_entries: Sequence[HighScoreEntry],
                                    session: AsyncSession) -> Dict[int, TeamPlacement]:
        """
        Collapse ranked entries to each team's best (lowest) placement.

        Entries whose owner is no longer on a team are skipped.
        """
        team_best_placement: Dict[int, TeamPlacement] = {}
        for index, entry in enumerate(ranked_entries):
            placement = index + 1

            if entry.event_team_id is not None:
                # Team entries have no members, group entries list each of them
                team_id = entry.event_team_id
                achieved_by = tuple(
                    ParticipantRef(user_id=member.user_id, placeholder_id=member.placeholder_participant_id)
                    for member in entry.members
                )
            else:
                owner = ParticipantRef(user_id=entry.user_id, placeholder_id=entry.placeholder_participant_id)
                achieved_by = (owner,)
                team = await self._resolve_individual_team(event_id, owner, session)
                if not team:
                    continue
                team_id = team.id

            current_best = team_best_placement.get(team_id)
            if current_best is None or placement < current_best.placement:
                team_best_placement[team_id] = TeamPlacement(placement=placement, achieved_by=achieved_by)

        return team_best_placement
