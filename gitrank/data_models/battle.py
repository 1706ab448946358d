"""
Battle data models for matchups, votes and derived statistics.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from gitrank.data_models.metrics import TopRepo


@dataclass(frozen=True)
class MatchupUser:
    """One side of a head-to-head matchup."""
    user_id: int
    username: str
    github_username: Optional[str]
    rating: float
    top_repos: Tuple[TopRepo, ...] = ()


@dataclass(frozen=True)
class Matchup:
    """A random pairing plus the token that binds a vote to it."""
    users: Tuple[MatchupUser, MatchupUser]
    battle_token: str


@dataclass(frozen=True)
class RatingDelta:
    """Before/after ratings for both participants of a vote."""
    match_id: int
    winner_id: int
    loser_id: int
    winner_before: float
    winner_after: float
    loser_before: float
    loser_after: float

    @property
    def winner_change(self) -> float:
        return self.winner_after - self.winner_before

    @property
    def loser_change(self) -> float:
        return self.loser_after - self.loser_before


@dataclass(frozen=True)
class EndorsementResult:
    """State of an endorsement edge after a toggle."""
    target_id: int
    endorsed: bool
    endorsement_count: int


@dataclass(frozen=True)
class BattleLogEntry:
    """A single battle from one user's perspective."""
    match_id: int
    opponent_id: int
    opponent_username: str
    won: bool
    rating_before: float
    rating_after: float
    created_at: datetime

    @property
    def rating_change(self) -> float:
        return self.rating_after - self.rating_before


@dataclass
class BattleStats:
    """Derived statistics over a user's full match history."""
    user_id: int
    total_battles: int = 0
    wins: int = 0
    losses: int = 0
    total_elo_gained: float = 0
    total_elo_lost: float = 0
    max_elo_gain: float = 0
    max_elo_loss: float = 0
    matches: List[BattleLogEntry] = field(default_factory=list)
    has_more: bool = False

    @property
    def win_rate(self) -> float:
        if self.total_battles == 0:
            return 0.0
        return (self.wins / self.total_battles) * 100
