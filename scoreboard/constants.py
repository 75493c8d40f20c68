"""
Scoring ledger constants

Display labels and the closed table of category / outcome / source-kind
pairings a point entry is allowed to carry.
"""

from scoreboard.database.models import PointCategory, PointOutcome, PointSourceKind


CATEGORY_LABELS = {
    PointCategory.H2H_MATCH: "H2H Match",
    PointCategory.FFA_MATCH: "FFA Match",
    PointCategory.HIGH_SCORE: "High Score",
    PointCategory.TOURNAMENT: "Tournament",
    PointCategory.DISCRETIONARY: "Discretionary",
}

OUTCOME_LABELS = {
    PointOutcome.WIN: "Win",
    PointOutcome.LOSS: "Loss",
    PointOutcome.DRAW: "Draw",
    PointOutcome.PLACEMENT: "Placement",
    PointOutcome.SUBMISSION: "Submission",
    PointOutcome.AWARD: "Award",
}

# Which outcomes each category may record
ALLOWED_OUTCOMES = {
    PointCategory.H2H_MATCH: frozenset({PointOutcome.WIN, PointOutcome.LOSS, PointOutcome.DRAW}),
    PointCategory.FFA_MATCH: frozenset({PointOutcome.PLACEMENT}),
    PointCategory.HIGH_SCORE: frozenset({PointOutcome.PLACEMENT, PointOutcome.SUBMISSION}),
    PointCategory.TOURNAMENT: frozenset({
        PointOutcome.WIN, PointOutcome.LOSS, PointOutcome.DRAW, PointOutcome.PLACEMENT
    }),
    PointCategory.DISCRETIONARY: frozenset({PointOutcome.AWARD}),
}

# The only source kind that may produce each category
CATEGORY_SOURCE_KINDS = {
    PointCategory.H2H_MATCH: PointSourceKind.MATCH,
    PointCategory.FFA_MATCH: PointSourceKind.MATCH,
    PointCategory.HIGH_SCORE: PointSourceKind.HIGH_SCORE_SESSION,
    PointCategory.TOURNAMENT: PointSourceKind.TOURNAMENT,
    PointCategory.DISCRETIONARY: PointSourceKind.DISCRETIONARY_AWARD,
}


class MetricsHrefs:
    """Deep links rendered next to timeline entries"""
    MATCH = "/events/{event_id}/matches/{source_id}"
    HIGH_SCORE_LEADERBOARD = "/events/{event_id}/high-scores/leaderboard/{game_type_id}"
    TOURNAMENT = "/events/{event_id}/tournaments/{source_id}"
    DISCRETIONARY = "/events/{event_id}/discretionary"
