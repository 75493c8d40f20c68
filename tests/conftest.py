"""
Shared fixtures: a fresh file-backed SQLite database per test plus a small
seeded event (two teams, a few members, one game type per category).
"""

import os

# Keep test runs from writing log files
os.environ['LOG_DIR'] = ''

from types import SimpleNamespace

import pytest
import pytest_asyncio

from scoreboard.database.database import Database
from scoreboard.database.models import (
    Event, EventStatus, EventTeam, EventTeamMember, EventPlaceholderParticipant,
    EventGameType, GameCategory, ParticipantType, ScoreOrder, User
)
from scoreboard.operations.point_ledger import PointLedger


class Seeder:
    """Creates committed rows for tests"""

    def __init__(self, db: Database):
        self.db = db

    async def _add(self, obj):
        async with self.db.transaction() as session:
            session.add(obj)
            await session.flush()
        return obj

    async def event(self, name: str = "Summer Games", status: EventStatus = EventStatus.ACTIVE) -> Event:
        return await self._add(Event(name=name, status=status))

    async def team(self, event: Event, name: str, color: str = None) -> EventTeam:
        return await self._add(EventTeam(event_id=event.id, name=name, color=color))

    async def user(self, name: str) -> User:
        return await self._add(User(name=name, username=name.lower().replace(' ', '_')))

    async def placeholder(self, event: Event, display_name: str) -> EventPlaceholderParticipant:
        return await self._add(EventPlaceholderParticipant(event_id=event.id, display_name=display_name))

    async def member(self, team: EventTeam, user: User = None,
                     placeholder: EventPlaceholderParticipant = None) -> EventTeamMember:
        return await self._add(EventTeamMember(
            event_team_id=team.id,
            user_id=user.id if user else None,
            placeholder_participant_id=placeholder.id if placeholder else None,
        ))

    async def game_type(self, event: Event, name: str, category: GameCategory,
                        participant_type: ParticipantType = ParticipantType.INDIVIDUAL,
                        score_order: ScoreOrder = ScoreOrder.HIGHEST_WINS,
                        min_players_per_side: int = 1, max_players_per_side: int = 1,
                        group_size: int = 1, is_archived: bool = False) -> EventGameType:
        return await self._add(EventGameType(
            event_id=event.id,
            name=name,
            category=category,
            participant_type=participant_type,
            score_order=score_order,
            min_players_per_side=min_players_per_side,
            max_players_per_side=max_players_per_side,
            group_size=group_size,
            is_archived=is_archived,
        ))


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'scoreboard_test.db'}")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def seed(db):
    return Seeder(db)


@pytest.fixture
def ledger(db):
    return PointLedger(db)


@pytest_asyncio.fixture
async def world(seed):
    """
    Active event with teams Red and Blue.

    Red: alice, carol. Blue: bob, guest (placeholder). dave is on no team.
    Pairs Bowling takes group entries of two members.
    """
    event = await seed.event()
    red = await seed.team(event, "Red", "#ff0000")
    blue = await seed.team(event, "Blue", "#0000ff")

    alice = await seed.user("Alice")
    bob = await seed.user("Bob")
    carol = await seed.user("Carol")
    dave = await seed.user("Dave")
    guest = await seed.placeholder(event, "Guest Gina")

    await seed.member(red, user=alice)
    await seed.member(red, user=carol)
    await seed.member(blue, user=bob)
    await seed.member(blue, placeholder=guest)

    return SimpleNamespace(
        event=event,
        red=red,
        blue=blue,
        alice=alice,
        bob=bob,
        carol=carol,
        dave=dave,
        guest=guest,
        high_score=await seed.game_type(event, "Pinball", GameCategory.HIGH_SCORE),
        team_high_score=await seed.game_type(
            event, "Relay", GameCategory.HIGH_SCORE, participant_type=ParticipantType.TEAM
        ),
        speedrun=await seed.game_type(
            event, "Speedrun", GameCategory.HIGH_SCORE, score_order=ScoreOrder.LOWEST_WINS
        ),
        h2h=await seed.game_type(event, "Chess", GameCategory.HEAD_TO_HEAD),
        doubles=await seed.game_type(
            event, "Doubles Pong", GameCategory.HEAD_TO_HEAD,
            min_players_per_side=2, max_players_per_side=2
        ),
        golf=await seed.game_type(
            event, "Mini Golf", GameCategory.HEAD_TO_HEAD, score_order=ScoreOrder.LOWEST_WINS
        ),
        tug_of_war=await seed.game_type(
            event, "Tug of War", GameCategory.HEAD_TO_HEAD, participant_type=ParticipantType.TEAM
        ),
        ffa=await seed.game_type(event, "Kart Race", GameCategory.FREE_FOR_ALL),
        pairs=await seed.game_type(event, "Pairs Bowling", GameCategory.HIGH_SCORE, group_size=2),
    )
