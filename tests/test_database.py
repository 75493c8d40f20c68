import logging

import pytest

from scoreboard.config import Config
from scoreboard.database.database import Database
from scoreboard.operations.award_operations import DiscretionaryAwardOperations
from scoreboard.utils.logger import setup_logger


class TestConfig:

    def test_sqlite_url_uses_async_driver(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', 'sqlite:///events.db')
        assert Config.get_async_database_url() == 'sqlite+aiosqlite:///events.db'

    def test_async_url_left_alone(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', 'postgresql+asyncpg://localhost/events')
        assert Config.get_async_database_url() == 'postgresql+asyncpg://localhost/events'

    def test_empty_database_url_rejected(self, monkeypatch):
        monkeypatch.setattr(Config, 'DATABASE_URL', '')
        with pytest.raises(ValueError):
            Database()


class TestLookups:

    @pytest.mark.asyncio
    async def test_teams_for_event_ordered_by_name(self, db, world):
        teams = await db.get_teams_for_event(world.event.id)
        assert [team.name for team in teams] == ["Blue", "Red"]

    @pytest.mark.asyncio
    async def test_team_membership(self, db, world):
        assert (await db.get_team_for_user(world.event.id, world.alice.id)).id == world.red.id
        assert (await db.get_team_for_placeholder(world.event.id, world.guest.id)).id == world.blue.id
        assert await db.get_team_for_user(world.event.id, world.dave.id) is None

    @pytest.mark.asyncio
    async def test_membership_is_event_scoped(self, db, seed, world):
        other_event = await seed.event("Winter Games")
        assert await db.get_team_for_user(other_event.id, world.alice.id) is None

    @pytest.mark.asyncio
    async def test_missing_rows(self, db, world):
        assert await db.get_event_by_id(404) is None
        assert await db.get_game_type_by_id(404) is None
        assert await db.get_team_by_id(404) is None


class TestRefusals:

    @pytest.mark.asyncio
    async def test_refused_operation_logs_warning(self, db, world, caplog):
        with caplog.at_level(logging.WARNING):
            result = await DiscretionaryAwardOperations(db).create_award(world.event.id, "Nobody", 1, [])

        assert not result.success
        assert any(record.levelno == logging.WARNING for record in caplog.records)


class TestLogger:

    def test_loggers_share_package_handlers(self):
        ledger_logger = setup_logger('scoreboard.operations.point_ledger')
        script_logger = setup_logger('import_script')

        assert script_logger.name == 'scoreboard.import_script'
        assert ledger_logger.name == 'scoreboard.operations.point_ledger'
        assert logging.getLogger('scoreboard').handlers
