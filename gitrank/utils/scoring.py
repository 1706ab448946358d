"""
Rank score formula shared by the sync pipeline and the leaderboard.

The windowed score is stars x 10 + merged PRs x 5 + commits x 1. Stars are
always all-time; PRs and commits come from the window being scored.
Endorsements and the battle rating are added separately at display time
because they are not time-windowed.
"""

import math
from typing import Dict

from gitrank.config import Config
from gitrank.constants import ScoringConstants, TimeWindow


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return int(math.floor(value + 0.5))


def calculate_score(stars: int, merged_prs: int, commits: int) -> int:
    """
    Calculate the rank score for one time window.

    Args:
        stars: All-time stars across owned, non-fork repositories
        merged_prs: Merged pull requests within the window
        commits: Commit contributions within the window

    Returns:
        Integer rank score
    """
    return (
        stars * ScoringConstants.STAR_WEIGHT
        + merged_prs * ScoringConstants.PR_WEIGHT
        + commits * ScoringConstants.COMMIT_WEIGHT
    )


def elo_bonus(rating: float, baseline: int = None) -> int:
    """Points contributed by the battle rating's deviation from the baseline."""
    if baseline is None:
        baseline = Config.ELO_BASELINE
    return round_half_up((rating - baseline) * ScoringConstants.ELO_WEIGHT)


def endorsement_bonus(endorsement_count: int) -> int:
    return endorsement_count * ScoringConstants.ENDORSEMENT_WEIGHT


def display_score(window_score: int, endorsement_count: int, rating: float, baseline: int = None) -> int:
    """
    Compose the score shown on the leaderboard.

    The underlying window score and rating are left untouched; only the
    composed total is floored at zero.
    """
    raw = window_score + endorsement_bonus(endorsement_count) + elo_bonus(rating, baseline)
    return max(0, raw)


def window_stats(row, window: str) -> Dict[str, int]:
    """
    Get the counts and composed score of a ranking row for one window.

    Args:
        row: Any object exposing the leaderboard row columns
             (commits_<w>, prs_<w>, score_<w>, endorsement_count, elo_rating)
        window: One of TimeWindow.CHOICES

    Returns:
        Dict with commits, prs, endorsements, elo_bonus and score
    """
    if not TimeWindow.validate(window):
        raise ValueError(f"Invalid time window: {window}")

    endorsements = row.endorsement_count or 0
    rating = row.elo_rating if row.elo_rating is not None else Config.ELO_BASELINE
    suffix = window
    window_score = getattr(row, f"score_{suffix}") or 0

    return {
        'commits': getattr(row, f"commits_{suffix}") or 0,
        'prs': getattr(row, f"prs_{suffix}") or 0,
        'endorsements': endorsements,
        'elo_bonus': elo_bonus(rating),
        'score': display_score(window_score, endorsements, rating),
    }
