"""
Event metrics

Read-only projection of an event's point ledger into presentation data:
a running cumulative timeline, per-team totals, per-individual
contributions, per-category breakdowns and a most-recent-first log.

Only entries with non-zero points take part.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from scoreboard.constants import CATEGORY_LABELS, OUTCOME_LABELS, MetricsHrefs
from scoreboard.database.database import Database, EnrichedPointEntry
from scoreboard.database.models import PointCategory, PointSourceKind
from scoreboard.utils.logger import setup_logger


@dataclass
class TimelineEntryDetail:
    team_name: Optional[str]
    category: str
    outcome: str
    points: float
    href: Optional[str]


@dataclass
class CumulativeTimelinePoint:
    """Running total of every team after one ledger entry"""
    index: int
    label: str
    detail: TimelineEntryDetail
    totals: Dict[int, float] = field(default_factory=dict)


@dataclass
class TeamContribution:
    team_id: int
    team_name: str
    team_color: Optional[str]
    total_points: float


@dataclass
class Contributor:
    name: str
    points: float


@dataclass
class IndividualContribution:
    team_id: int
    team_name: str
    team_color: Optional[str]
    contributors: List[Contributor] = field(default_factory=list)


@dataclass
class CategoryPoints:
    category: PointCategory
    category_label: str
    points: float


@dataclass
class CategoryBreakdown:
    team_id: int
    team_name: str
    team_color: Optional[str]
    categories: List[CategoryPoints] = field(default_factory=list)


@dataclass
class EventMetrics:
    log: List[EnrichedPointEntry]
    cumulative_timeline: List[CumulativeTimelinePoint]
    team_contributions: List[TeamContribution]
    individual_contributions: List[IndividualContribution]
    category_breakdowns: List[CategoryBreakdown]
    leaderboard: List[Dict]


def get_entry_href(entry: EnrichedPointEntry, event_id: int) -> Optional[str]:
    """Deep link to the source that produced an entry"""
    if entry.source_kind == PointSourceKind.MATCH:
        return MetricsHrefs.MATCH.format(event_id=event_id, source_id=entry.source_id)
    if entry.source_kind == PointSourceKind.HIGH_SCORE_SESSION:
        if entry.high_score_game_type_id is None:
            return None
        return MetricsHrefs.HIGH_SCORE_LEADERBOARD.format(
            event_id=event_id, game_type_id=entry.high_score_game_type_id
        )
    if entry.source_kind == PointSourceKind.TOURNAMENT:
        return MetricsHrefs.TOURNAMENT.format(event_id=event_id, source_id=entry.source_id)
    if entry.source_kind == PointSourceKind.DISCRETIONARY_AWARD:
        return MetricsHrefs.DISCRETIONARY.format(event_id=event_id)
    return None


def build_cumulative_timeline(entries: Sequence[EnrichedPointEntry], leaderboard: Sequence[Dict],
                              event_id: int) -> List[CumulativeTimelinePoint]:
    """
    Build one timeline point per entry holding every team's running total.

    Leaderboard teams start at 0 so each point carries all of them.

    Args:
        entries: Non-zero entries in order of occurrence
        leaderboard: Rows from Database.get_event_leaderboard
        event_id: Event used to build deep links

    Returns:
        List of CumulativeTimelinePoint, indexed from 1
    """
    if not entries:
        return []

    running_totals: Dict[int, float] = {row['team_id']: 0 for row in leaderboard}

    timeline = []
    for i, entry in enumerate(entries):
        running_totals[entry.event_team_id] = running_totals.get(entry.event_team_id, 0) + entry.points

        timeline.append(CumulativeTimelinePoint(
            index=i + 1,
            label=f"#{i + 1}",
            detail=TimelineEntryDetail(
                team_name=entry.team_name,
                category=CATEGORY_LABELS.get(entry.category, str(entry.category)),
                outcome=OUTCOME_LABELS.get(entry.outcome, str(entry.outcome)),
                points=entry.points,
                href=get_entry_href(entry, event_id),
            ),
            totals=dict(running_totals),
        ))

    return timeline


def build_team_contributions(entries: Sequence[EnrichedPointEntry]) -> List[TeamContribution]:
    """Sum points per team, teams in order of first appearance"""
    teams: Dict[int, TeamContribution] = {}
    for entry in entries:
        team = teams.get(entry.event_team_id)
        if team:
            team.total_points += entry.points
        else:
            teams[entry.event_team_id] = TeamContribution(
                team_id=entry.event_team_id,
                team_name=entry.team_name or "Unknown",
                team_color=entry.team_color,
                total_points=entry.points,
            )
    return list(teams.values())


def build_individual_contributions(entries: Sequence[EnrichedPointEntry]) -> List[IndividualContribution]:
    """
    Sum points per named individual within each team.

    Entries without attributed participants are skipped. Contributors are
    keyed by display name and sorted by points, highest first.
    """
    teams: Dict[int, IndividualContribution] = {}
    contributor_points: Dict[int, Dict[str, float]] = {}

    for entry in entries:
        for participant in entry.participants:
            name = participant.display_name
            if not name:
                continue

            if entry.event_team_id not in teams:
                teams[entry.event_team_id] = IndividualContribution(
                    team_id=entry.event_team_id,
                    team_name=entry.team_name or "Unknown",
                    team_color=entry.team_color,
                )
                contributor_points[entry.event_team_id] = {}

            points_by_name = contributor_points[entry.event_team_id]
            points_by_name[name] = points_by_name.get(name, 0) + entry.points

    for team_id, team in teams.items():
        team.contributors = sorted(
            (Contributor(name=name, points=points) for name, points in contributor_points[team_id].items()),
            key=lambda contributor: contributor.points,
            reverse=True
        )

    return list(teams.values())


def build_category_breakdowns(entries: Sequence[EnrichedPointEntry]) -> List[CategoryBreakdown]:
    """Sum points per team per category, categories sorted by points, highest first"""
    teams: Dict[int, CategoryBreakdown] = {}
    category_points: Dict[int, Dict[PointCategory, float]] = {}

    for entry in entries:
        if entry.event_team_id not in teams:
            teams[entry.event_team_id] = CategoryBreakdown(
                team_id=entry.event_team_id,
                team_name=entry.team_name or "Unknown",
                team_color=entry.team_color,
            )
            category_points[entry.event_team_id] = {}

        points_by_category = category_points[entry.event_team_id]
        points_by_category[entry.category] = points_by_category.get(entry.category, 0) + entry.points

    for team_id, team in teams.items():
        team.categories = sorted(
            (
                CategoryPoints(
                    category=category,
                    category_label=CATEGORY_LABELS.get(category, str(category)),
                    points=points,
                )
                for category, points in category_points[team_id].items()
            ),
            key=lambda item: item.points,
            reverse=True
        )

    return list(teams.values())


class EventMetricsService:
    """Builds presentation metrics for an event from its point ledger."""

    def __init__(self, db: Database):
        self.db = db
        self.logger = setup_logger(f"{__name__}.EventMetricsService")

    async def get_event_metrics(self, event_id: int) -> EventMetrics:
        async with self.db.get_session() as session:
            entries = await self.db.get_enriched_point_entries(event_id, session=session)
            leaderboard = await self.db.get_event_leaderboard(event_id, session=session)

        non_zero_entries = [entry for entry in entries if entry.points != 0]
        self.logger.debug(
            f"Building metrics for event {event_id} from {len(non_zero_entries)} non-zero entries"
        )

        return EventMetrics(
            log=list(reversed(non_zero_entries)),
            cumulative_timeline=build_cumulative_timeline(non_zero_entries, leaderboard, event_id),
            team_contributions=build_team_contributions(non_zero_entries),
            individual_contributions=build_individual_contributions(non_zero_entries),
            category_breakdowns=build_category_breakdowns(non_zero_entries),
            leaderboard=leaderboard,
        )
