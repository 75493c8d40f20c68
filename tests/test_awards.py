from datetime import datetime

import pytest

from scoreboard.database.models import EventStatus, PointCategory, PointOutcome, PointSourceKind
from scoreboard.operations.award_operations import DiscretionaryAwardOperations
from scoreboard.utils.results import ErrorKind


@pytest.fixture
def award_ops(db, ledger):
    return DiscretionaryAwardOperations(db, ledger)


async def award_entries(ledger, award_id):
    return await ledger.list_for_source(PointSourceKind.DISCRETIONARY_AWARD, award_id)


class TestCreateAward:

    @pytest.mark.asyncio
    async def test_one_entry_per_distinct_recipient(self, award_ops, ledger, world):
        result = await award_ops.create_award(
            world.event.id, "Best Costume", 5, [world.red.id, world.blue.id, world.red.id],
            description="Judged by the hosts"
        )

        assert result.success
        assert sorted(result.data.recipient_team_ids) == sorted([world.red.id, world.blue.id])

        entries = await award_entries(ledger, result.data.id)
        assert sorted(e.event_team_id for e in entries) == sorted([world.red.id, world.blue.id])
        assert all(e.points == 5 for e in entries)
        assert all(e.category == PointCategory.DISCRETIONARY for e in entries)
        assert all(e.outcome == PointOutcome.AWARD for e in entries)

    @pytest.mark.asyncio
    async def test_negative_points_allowed(self, award_ops, ledger, world):
        result = await award_ops.create_award(world.event.id, "Penalty", -3, [world.blue.id])
        entries = await award_entries(ledger, result.data.id)
        assert [e.points for e in entries] == [-3]

    @pytest.mark.asyncio
    async def test_requires_active_event(self, award_ops, seed):
        event = await seed.event("Planning", status=EventStatus.DRAFT)
        team = await seed.team(event, "Green")

        result = await award_ops.create_award(event.id, "Early Bird", 2, [team.id])
        assert result.error_kind == ErrorKind.STATE_CONFLICT

    @pytest.mark.asyncio
    async def test_requires_recipients(self, award_ops, world):
        result = await award_ops.create_award(world.event.id, "Nobody", 2, [])
        assert result.error_kind == ErrorKind.SHAPE_CONFLICT

    @pytest.mark.asyncio
    async def test_recipient_must_be_in_event(self, award_ops, seed, world):
        other_event = await seed.event("Winter Games")
        outsider = await seed.team(other_event, "Yellow")

        result = await award_ops.create_award(world.event.id, "Spirit", 2, [world.red.id, outsider.id])
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestUpdateAward:

    @pytest.mark.asyncio
    async def test_points_change_regenerates_entries(self, award_ops, ledger, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id, world.blue.id])

        result = await award_ops.update_award(created.data.id, points=10)

        assert result.success
        entries = await award_entries(ledger, created.data.id)
        assert len(entries) == 2
        assert all(e.points == 10 for e in entries)
        assert sorted(e.event_team_id for e in entries) == sorted([world.red.id, world.blue.id])

    @pytest.mark.asyncio
    async def test_recipient_change_regenerates_entries(self, award_ops, ledger, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id])

        result = await award_ops.update_award(created.data.id, recipients=[world.blue.id, world.red.id])

        assert sorted(result.data.recipient_team_ids) == sorted([world.red.id, world.blue.id])
        entries = await award_entries(ledger, created.data.id)
        assert sorted(e.event_team_id for e in entries) == sorted([world.red.id, world.blue.id])

    @pytest.mark.asyncio
    async def test_recipient_removal(self, award_ops, ledger, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id, world.blue.id])

        await award_ops.update_award(created.data.id, recipients=[world.blue.id])

        entries = await award_entries(ledger, created.data.id)
        assert [e.event_team_id for e in entries] == [world.blue.id]
        listed = await award_ops.list_awards(world.event.id)
        assert listed[0].recipient_team_ids == [world.blue.id]

    @pytest.mark.asyncio
    async def test_name_change_keeps_entries(self, award_ops, ledger, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id])
        before = [e.id for e in await award_entries(ledger, created.data.id)]

        result = await award_ops.update_award(created.data.id, name="Team Spirit", points=5)

        assert result.data.name == "Team Spirit"
        after = [e.id for e in await award_entries(ledger, created.data.id)]
        assert before == after

    @pytest.mark.asyncio
    async def test_awarded_at_update(self, award_ops, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id])
        when = datetime(2024, 7, 4, 12, 0)

        result = await award_ops.update_award(created.data.id, awarded_at=when)
        assert result.data.awarded_at == when

    @pytest.mark.asyncio
    async def test_unknown_award(self, award_ops, world):
        result = await award_ops.update_award(404, points=1)
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestDeleteAward:

    @pytest.mark.asyncio
    async def test_delete_removes_entries(self, award_ops, ledger, world):
        created = await award_ops.create_award(world.event.id, "Spirit", 5, [world.red.id, world.blue.id])

        result = await award_ops.delete_award(created.data.id)

        assert result.success
        assert await award_entries(ledger, created.data.id) == []
        assert await award_ops.list_awards(world.event.id) == []

    @pytest.mark.asyncio
    async def test_list_awards_most_recent_first(self, award_ops, world):
        await award_ops.create_award(world.event.id, "First", 1, [world.red.id],
                                     awarded_at=datetime(2024, 1, 1))
        await award_ops.create_award(world.event.id, "Second", 2, [world.blue.id],
                                     awarded_at=datetime(2024, 2, 1))

        awards = await award_ops.list_awards(world.event.id)
        assert [a.name for a in awards] == ["Second", "First"]
