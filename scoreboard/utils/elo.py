import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from scoreboard.config import Config


@dataclass(frozen=True)
class H2HEloChangeResult:
    """Rating delta for one side of a head-to-head match"""
    rating_change: float
    expected_score: float
    actual_score: float
    opponent_rating: float
    k_factor: int


@dataclass(frozen=True)
class FFAParticipant:
    """One finisher in a free-for-all match (rank 1 = winner)"""
    rating: float
    matches_played: int
    rank: int
    participant_id: Optional[int] = None


@dataclass(frozen=True)
class FFAEloChangeResult:
    """Rating delta for one free-for-all participant, averaged over all opponents"""
    rating_change: float
    expected_score: float
    actual_score: float
    opponent_rating_avg: float
    k_factor: int
    participant_id: Optional[int] = None


class EloCalculator:
    """Handles Elo rating calculations for league matches.

    Every method is a pure function: callers supply current ratings and
    match counts and persist whatever they do with the returned deltas.
    """

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for player A against player B

        Args:
            rating_a: Player A's current Elo rating
            rating_b: Player B's current Elo rating

        Returns:
            Expected score (0.0 to 1.0) for player A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / Config.ELO_SCALE))

    @staticmethod
    def get_k_factor(matches_played: int) -> int:
        """
        Get the K-factor based on number of matches played

        Args:
            matches_played: Number of matches the player has played

        Returns:
            K-factor to use in Elo calculation
        """
        if matches_played < Config.PROVISIONAL_MATCH_COUNT:
            return Config.K_FACTOR_PROVISIONAL
        return Config.K_FACTOR_STANDARD

    @staticmethod
    def calculate_h2h_elo_change(player_rating: float, player_matches_played: int,
                                 opponent_rating: float, actual_score: float) -> H2HEloChangeResult:
        """
        Calculate the Elo rating change for one player of a head-to-head match

        Args:
            player_rating: Player's current Elo rating
            player_matches_played: Number of matches the player has played
            opponent_rating: Opponent's current Elo rating
            actual_score: Actual score (1.0 for win, 0.5 for draw, 0.0 for loss)

        Returns:
            H2HEloChangeResult with the unrounded rating change
        """
        k_factor = EloCalculator.get_k_factor(player_matches_played)
        expected_score = EloCalculator.calculate_expected_score(player_rating, opponent_rating)

        return H2HEloChangeResult(
            rating_change=k_factor * (actual_score - expected_score),
            expected_score=expected_score,
            actual_score=actual_score,
            opponent_rating=opponent_rating,
            k_factor=k_factor,
        )

    @staticmethod
    def calculate_ffa_elo_changes(participants: Sequence[FFAParticipant]) -> List[FFAEloChangeResult]:
        """
        Calculate Elo changes for a free-for-all match.

        Each participant is compared against every other participant: the
        pairwise expected score, actual score and K-weighted change are
        accumulated and then averaged over the N-1 opponents. The K-factor
        only depends on the participant's own match count.

        Args:
            participants: Finishers with rating, matches played and rank

        Returns:
            One result per participant, ordered like a stable rank-sorted
            copy of the input (equal ranks keep their input order)
        """
        sorted_participants = sorted(participants, key=lambda p: p.rank)

        results = []
        for i, participant in enumerate(sorted_participants):
            k_factor = EloCalculator.get_k_factor(participant.matches_played)
            total_change = 0.0
            total_expected = 0.0
            total_actual = 0.0
            opponent_rating_sum = 0.0
            opponent_count = 0

            for j, opponent in enumerate(sorted_participants):
                if i == j:
                    continue

                opponent_rating_sum += opponent.rating
                opponent_count += 1

                expected_score = EloCalculator.calculate_expected_score(
                    participant.rating, opponent.rating
                )

                # Actual score: 1.0 if placed better, 0.5 for a shared rank, 0.0 if worse
                if participant.rank < opponent.rank:
                    actual_score = 1.0
                elif participant.rank > opponent.rank:
                    actual_score = 0.0
                else:
                    actual_score = 0.5

                total_change += k_factor * (actual_score - expected_score)
                total_expected += expected_score
                total_actual += actual_score

            if opponent_count:
                results.append(FFAEloChangeResult(
                    rating_change=total_change / opponent_count,
                    expected_score=total_expected / opponent_count,
                    actual_score=total_actual / opponent_count,
                    opponent_rating_avg=opponent_rating_sum / opponent_count,
                    k_factor=k_factor,
                    participant_id=participant.participant_id,
                ))
            else:
                results.append(FFAEloChangeResult(
                    rating_change=0.0,
                    expected_score=0.0,
                    actual_score=0.0,
                    opponent_rating_avg=0.0,
                    k_factor=k_factor,
                    participant_id=participant.participant_id,
                ))

        return results

