"""
Discretionary Award Operations

Organizer-granted points for one or more teams. Each award owns one point
entry per distinct recipient team; the set is regenerated whenever the
award's points or recipients change.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard.database.models import DiscretionaryAward, DiscretionaryAwardRecipient, PointSourceKind, utc_now
from scoreboard.operations.base import BaseOperations
from scoreboard.operations.point_ledger import build_award_entries
from scoreboard.utils.results import OperationResult


class DiscretionaryAwardOperations(BaseOperations):
    """Service class for discretionary award workflows."""

    async def _load_award(self, award_id: int, session: AsyncSession) -> Optional[DiscretionaryAward]:
        result = await session.execute(
            select(DiscretionaryAward)
            .options(selectinload(DiscretionaryAward.recipients))
            .where(DiscretionaryAward.id == award_id)
        )
        return result.scalar_one_or_none()

    async def _check_event_active(self, event_id: int, session: AsyncSession) -> Optional[OperationResult]:
        event = await self.db.get_event_by_id(event_id, session=session)
        if not event:
            return OperationResult.not_found("Event not found")
        if not event.is_active:
            return OperationResult.state_conflict("Awards can only be given in active events")
        return None

    async def _check_recipients(self, event_id: int, team_ids: Sequence[int],
                                session: AsyncSession) -> Optional[OperationResult]:
        if not team_ids:
            return OperationResult.shape_conflict("At least one recipient team is required")
        for team_id in team_ids:
            team = await self.db.get_team_by_id(team_id, session=session)
            if not team or team.event_id != event_id:
                return OperationResult.not_found(f"Team {team_id} not found in this event")
        return None

    async def create_award(
        self,
        event_id: int,
        name: str,
        points: float,
        recipients: Sequence[int],
        description: Optional[str] = None,
        awarded_at: Optional[datetime] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Create an award and one DISCRETIONARY / AWARD entry per recipient team.

        Args:
            event_id: Event the award belongs to (must be ACTIVE)
            name: Award name
            points: Signed points given to each recipient team
            recipients: Recipient team IDs (duplicates are ignored)
            description: Optional description
            awarded_at: When the award was given (now if omitted)
            session: Optional existing database session

        Returns:
            OperationResult with the created DiscretionaryAward
        """
        async def _create(session: AsyncSession) -> OperationResult:
            refused = await self._check_event_active(event_id, session)
            if refused:
                return self._refuse(refused)

            team_ids = list(dict.fromkeys(recipients))
            refused = await self._check_recipients(event_id, team_ids, session)
            if refused:
                return self._refuse(refused)

            award = DiscretionaryAward(
                event_id=event_id,
                name=name,
                description=description or None,
                points=points,
                awarded_at=awarded_at or utc_now(),
                created_at=utc_now(),
                recipients=[DiscretionaryAwardRecipient(event_team_id=team_id) for team_id in team_ids],
            )
            session.add(award)
            await session.flush()

            await self.ledger.create_entries(
                build_award_entries(event_id, award.id, points, team_ids), session
            )

            self.logger.info(f"Created award {award.id} '{name}' ({points} points to {len(team_ids)} teams)")
            return OperationResult.ok(award)

        if session:
            return await _create(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _create(txn_session)

    async def update_award(
        self,
        award_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        points: Optional[float] = None,
        awarded_at: Optional[datetime] = None,
        recipients: Optional[Sequence[int]] = None,
        session: Optional[AsyncSession] = None
    ) -> OperationResult:
        """
        Edit an award. Arguments left as None are unchanged.

        When points or recipients change, the award's point entries are
        regenerated; a points-only change reuses the current recipients.

        Returns:
            OperationResult with the updated DiscretionaryAward
        """
        async def _update(session: AsyncSession) -> OperationResult:
            award = await self._load_award(award_id, session)
            if not award:
                return self._refuse(OperationResult.not_found("Award not found"))

            refused = await self._check_event_active(award.event_id, session)
            if refused:
                return self._refuse(refused)

            current_team_ids = award.recipient_team_ids
            new_team_ids = current_team_ids
            if recipients is not None:
                new_team_ids = list(dict.fromkeys(recipients))
                refused = await self._check_recipients(award.event_id, new_team_ids, session)
                if refused:
                    return self._refuse(refused)

            points_changed = points is not None and points != award.points
            recipients_changed = set(new_team_ids) != set(current_team_ids)

            if name is not None:
                award.name = name
            if description is not None:
                award.description = description or None
            if awarded_at is not None:
                award.awarded_at = awarded_at
            if points is not None:
                award.points = points

            if recipients_changed:
                # Keep rows for teams that stay so the (award, team) constraint holds during flush
                existing = {recipient.event_team_id: recipient for recipient in award.recipients}
                award.recipients = [
                    existing.get(team_id) or DiscretionaryAwardRecipient(event_team_id=team_id)
                    for team_id in new_team_ids
                ]

            await session.flush()

            if points_changed or recipients_changed:
                await self.ledger.recreate_for_source(
                    PointSourceKind.DISCRETIONARY_AWARD,
                    award.id,
                    build_award_entries(award.event_id, award.id, award.points, new_team_ids),
                    session
                )
                self.logger.info(f"Regenerated point entries for award {award_id}")

            self.logger.info(f"Updated award {award_id}")
            return OperationResult.ok(award)

        if session:
            return await _update(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _update(txn_session)

    async def delete_award(self, award_id: int, session: Optional[AsyncSession] = None) -> OperationResult:
        """Delete an award together with its recipients and point entries"""
        async def _delete(session: AsyncSession) -> OperationResult:
            award = await self._load_award(award_id, session)
            if not award:
                return self._refuse(OperationResult.not_found("Award not found"))

            deleted_points = await self.ledger.delete_for_source(
                PointSourceKind.DISCRETIONARY_AWARD, award_id, session
            )
            await session.delete(award)
            await session.flush()

            self.logger.info(f"Deleted award {award_id} ({deleted_points} point entries removed)")
            return OperationResult.ok(award_id)

        if session:
            return await _delete(session)
        else:
            async with self.db.transaction() as txn_session:
                return await _delete(txn_session)

    async def list_awards(self, event_id: int, session: Optional[AsyncSession] = None) -> List[DiscretionaryAward]:
        """Get an event's awards with recipients, most recent first"""
        async def _list(session: AsyncSession) -> List[DiscretionaryAward]:
            result = await session.execute(
                select(DiscretionaryAward)
                .options(selectinload(DiscretionaryAward.recipients))
                .where(DiscretionaryAward.event_id == event_id)
                .order_by(DiscretionaryAward.awarded_at.desc(), DiscretionaryAward.id.desc())
            )
            return list(result.scalars().all())

        if session:
            return await _list(session)
        else:
            async with self.db.get_session() as db_session:
                return await _list(db_session)
