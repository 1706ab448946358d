"""
Leaderboard data models.

Provides immutable data transfer objects for leaderboard pages.
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row for one time window."""
    rank: int
    user_id: int
    username: str
    github_username: Optional[str]
    program: Optional[str]
    stars: int
    commits: int
    prs: int
    window_score: int
    endorsements: int
    elo_rating: float
    elo_bonus: int
    score: int


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    entries: List[LeaderboardEntry]
    current_page: int
    total_pages: int
    total_users: int
    window: str
