from datetime import datetime

import pytest

from scoreboard.database.database import EnrichedPointEntry, EnrichedPointEntryParticipant
from scoreboard.database.models import PointCategory, PointOutcome, PointSourceKind
from scoreboard.operations.award_operations import DiscretionaryAwardOperations
from scoreboard.operations.match_operations import EventMatchOperations
from scoreboard.operations.point_ledger import ParticipantRef
from scoreboard.services.metrics import (
    EventMetricsService, build_category_breakdowns, build_cumulative_timeline,
    build_individual_contributions, build_team_contributions, get_entry_href
)

RED, BLUE, GREEN = 1, 2, 3
TEAM_NAMES = {RED: "Red", BLUE: "Blue", GREEN: "Green"}


def make_entry(entry_id, team_id, points, category=PointCategory.DISCRETIONARY,
               source_kind=PointSourceKind.DISCRETIONARY_AWARD, source_id=1,
               participants=None, game_type_id=None):
    outcome = {
        PointCategory.DISCRETIONARY: PointOutcome.AWARD,
        PointCategory.H2H_MATCH: PointOutcome.WIN,
        PointCategory.HIGH_SCORE: PointOutcome.PLACEMENT,
        PointCategory.TOURNAMENT: PointOutcome.PLACEMENT,
    }[category]
    return EnrichedPointEntry(
        id=entry_id,
        event_id=9,
        category=category,
        outcome=outcome,
        points=points,
        event_team_id=team_id,
        team_name=TEAM_NAMES[team_id],
        team_color=None,
        source_kind=source_kind,
        source_id=source_id,
        high_score_game_type_id=game_type_id,
        participants=participants or [],
    )


def named(name, user_id=None, placeholder_id=None):
    if placeholder_id:
        return EnrichedPointEntryParticipant(placeholder_participant_id=placeholder_id,
                                             placeholder_display_name=name)
    return EnrichedPointEntryParticipant(user_id=user_id, user_name=name)


LEADERBOARD = [
    {'rank': 1, 'team_id': RED, 'team_name': "Red", 'team_color': None, 'total_points': 4},
    {'rank': 2, 'team_id': BLUE, 'team_name': "Blue", 'team_color': None, 'total_points': 2},
]


class TestCumulativeTimeline:

    def test_running_totals(self):
        entries = [make_entry(1, RED, 3), make_entry(2, BLUE, 2), make_entry(3, RED, 1)]

        timeline = build_cumulative_timeline(entries, LEADERBOARD, 9)

        assert [point.totals for point in timeline] == [
            {RED: 3, BLUE: 0},
            {RED: 3, BLUE: 2},
            {RED: 4, BLUE: 2},
        ]
        assert [point.label for point in timeline] == ["#1", "#2", "#3"]
        assert [point.index for point in timeline] == [1, 2, 3]

    def test_leaderboard_teams_start_at_zero(self):
        leaderboard = LEADERBOARD + [
            {'rank': 3, 'team_id': GREEN, 'team_name': "Green", 'team_color': None, 'total_points': 0}
        ]
        timeline = build_cumulative_timeline([make_entry(1, BLUE, 5)], leaderboard, 9)
        assert timeline[0].totals == {RED: 0, BLUE: 5, GREEN: 0}

    def test_detail_labels(self):
        entry = make_entry(1, RED, 3, category=PointCategory.H2H_MATCH,
                           source_kind=PointSourceKind.MATCH, source_id=42)

        detail = build_cumulative_timeline([entry], LEADERBOARD, 9)[0].detail

        assert detail.team_name == "Red"
        assert detail.category == "H2H Match"
        assert detail.outcome == "Win"
        assert detail.points == 3
        assert detail.href == "/events/9/matches/42"

    def test_empty(self):
        assert build_cumulative_timeline([], LEADERBOARD, 9) == []


class TestEntryHref:

    def test_high_score_links_to_game_type_leaderboard(self):
        entry = make_entry(1, RED, 10, category=PointCategory.HIGH_SCORE,
                           source_kind=PointSourceKind.HIGH_SCORE_SESSION, source_id=4, game_type_id=6)
        assert get_entry_href(entry, 9) == "/events/9/high-scores/leaderboard/6"

    def test_tournament_and_discretionary(self):
        tournament = make_entry(1, RED, 10, category=PointCategory.TOURNAMENT,
                                source_kind=PointSourceKind.TOURNAMENT, source_id=3)
        award = make_entry(2, RED, 10)
        assert get_entry_href(tournament, 9) == "/events/9/tournaments/3"
        assert get_entry_href(award, 9) == "/events/9/discretionary"


class TestContributions:

    def test_team_contributions(self):
        entries = [make_entry(1, BLUE, 2), make_entry(2, RED, 3), make_entry(3, BLUE, -1)]

        contributions = build_team_contributions(entries)

        assert [(c.team_id, c.total_points) for c in contributions] == [(BLUE, 1), (RED, 3)]

    def test_individual_contributions(self):
        entries = [
            make_entry(1, RED, 3, participants=[named("Alice", user_id=1)]),
            make_entry(2, RED, 5, participants=[named("Carol", user_id=3)]),
            make_entry(3, RED, 4, participants=[named("Alice", user_id=1)]),
            make_entry(4, BLUE, 2, participants=[named("Guest Gina", placeholder_id=7)]),
            make_entry(5, BLUE, 9),
        ]

        contributions = build_individual_contributions(entries)

        by_team = {c.team_id: [(p.name, p.points) for p in c.contributors] for c in contributions}
        assert by_team == {
            RED: [("Alice", 7), ("Carol", 5)],
            BLUE: [("Guest Gina", 2)],
        }

    def test_group_entry_credits_each_member_in_full(self):
        pair = [named("Alice", user_id=1), named("Carol", user_id=3)]
        entries = [
            make_entry(1, RED, 10, category=PointCategory.HIGH_SCORE,
                       source_kind=PointSourceKind.HIGH_SCORE_SESSION, participants=pair),
            make_entry(2, RED, 2, participants=[named("Carol", user_id=3)]),
        ]

        contributions = build_individual_contributions(entries)

        assert [(p.name, p.points) for p in contributions[0].contributors] == [("Carol", 12), ("Alice", 10)]

    def test_unattributed_team_is_left_out(self):
        contributions = build_individual_contributions([make_entry(1, RED, 3)])
        assert contributions == []

    def test_category_breakdowns(self):
        entries = [
            make_entry(1, RED, 2),
            make_entry(2, RED, 6, category=PointCategory.H2H_MATCH, source_kind=PointSourceKind.MATCH),
            make_entry(3, RED, 1),
        ]

        breakdowns = build_category_breakdowns(entries)

        assert len(breakdowns) == 1
        assert [(c.category_label, c.points) for c in breakdowns[0].categories] == [
            ("H2H Match", 6), ("Discretionary", 3)
        ]


class TestEventMetricsService:

    @pytest.mark.asyncio
    async def test_leaderboard_includes_idle_teams(self, db, seed, world):
        idle = await seed.team(world.event, "Green")
        await DiscretionaryAwardOperations(db).create_award(world.event.id, "Spirit", 4, [world.blue.id])

        leaderboard = await db.get_event_leaderboard(world.event.id)

        assert [(row['rank'], row['team_id'], row['total_points']) for row in leaderboard][0] == (1, world.blue.id, 4)
        assert {row['team_id'] for row in leaderboard} == {world.red.id, world.blue.id, idle.id}

    @pytest.mark.asyncio
    async def test_metrics_follow_source_timestamps(self, db, world):
        award_ops = DiscretionaryAwardOperations(db)
        match_ops = EventMatchOperations(db)

        # The match is recorded after the award but played before it
        await award_ops.create_award(world.event.id, "Late Award", 2, [world.blue.id])
        await match_ops.record_h2h_match(
            world.event.id, world.h2h.id,
            [ParticipantRef(user_id=world.alice.id)], [ParticipantRef(user_id=world.bob.id)],
            winning_side="side1", win_points=3, loss_points=0, played_at=datetime(2024, 5, 1)
        )

        metrics = await EventMetricsService(db).get_event_metrics(world.event.id)

        # The zero-point loss is excluded
        assert [point.totals for point in metrics.cumulative_timeline] == [
            {world.red.id: 3, world.blue.id: 0},
            {world.red.id: 3, world.blue.id: 2},
        ]
        assert [entry.points for entry in metrics.log] == [2, 3]
        assert {c.team_id: c.total_points for c in metrics.team_contributions} == {
            world.red.id: 3, world.blue.id: 2
        }
        assert metrics.individual_contributions[0].contributors[0].name == "Alice"
        assert metrics.leaderboard[0]['team_id'] == world.red.id

    @pytest.mark.asyncio
    async def test_empty_event(self, db, world):
        metrics = await EventMetricsService(db).get_event_metrics(world.event.id)

        assert metrics.log == []
        assert metrics.cumulative_timeline == []
        assert len(metrics.leaderboard) == 2

    @pytest.mark.asyncio
    async def test_editing_awarded_at_keeps_timeline_order(self, db, world):
        award_ops = DiscretionaryAwardOperations(db)
        first = await award_ops.create_award(world.event.id, "First", 1, [world.red.id])
        await award_ops.create_award(world.event.id, "Second", 2, [world.blue.id])

        await award_ops.update_award(first.data.id, awarded_at=datetime(2030, 1, 1))

        metrics = await EventMetricsService(db).get_event_metrics(world.event.id)
        assert [entry.points for entry in metrics.log] == [2, 1]
