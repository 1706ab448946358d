import math
from typing import Tuple
from gitrank.config import Config
from gitrank.utils.scoring import round_half_up

# Transfers are whole multiples of 2**-20, so rating sums and differences
# stay exact in binary floating point.
TRANSFER_RESOLUTION = 2 ** 20

class EloCalculator:
    """Handles Elo rating calculations for head-to-head battles"""

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
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / 400))

    @staticmethod
    def calculate_transfer(winner_rating: float, loser_rating: float, k_factor: int = None) -> float:
        """
        Calculate the rating points moved from the loser to the winner

        Args:
            winner_rating: Winner's rating before the vote
            loser_rating: Loser's rating before the vote
            k_factor: Maximum points a single vote can move

        Returns:
            Non-negative transfer, unrounded apart from the fixed binary resolution
        """
        if k_factor is None:
            k_factor = Config.ELO_K_FACTOR
        expected = EloCalculator.calculate_expected_score(winner_rating, loser_rating)
        transfer = k_factor * (1 - expected)
        return math.floor(transfer * TRANSFER_RESOLUTION + 0.5) / TRANSFER_RESOLUTION

    @staticmethod
    def calculate_vote_ratings(winner_rating: float, loser_rating: float,
                               k_factor: int = None) -> Tuple[float, float]:
        """
        Calculate both ratings after a vote

        The same amount is added to the winner and taken from the
        loser, so the pair's total rating is unchanged.

        Returns:
            Tuple of (winner_new_rating, loser_new_rating)
        """
        transfer = EloCalculator.calculate_transfer(winner_rating, loser_rating, k_factor)
        return winner_rating + transfer, loser_rating - transfer

    @staticmethod
    def calculate_win_probability(rating_a: float, rating_b: float) -> float:
        """
        Calculate win probability for player A against player B

        Returns:
            Win probability as percentage (0.0 to 100.0)
        """
        expected_score = EloCalculator.calculate_expected_score(rating_a, rating_b)
        return expected_score * 100

    @staticmethod
    def format_elo_change(elo_change: float) -> str:
        """Format Elo change for display, rounded to whole points"""
        points = round_half_up(elo_change)
        if points > 0:
            return f"+{points}"
        elif points < 0:
            return str(points)
        else:
            return "±0"
