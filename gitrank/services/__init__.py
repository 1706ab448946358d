"""
Services package for GitRank.

Session-scoped services over the shared database: metrics sync, the
leaderboard view and battle statistics, plus the GitHub client they feed on.
"""

from .base import BaseService
from .battle_stats_service import BattleStatsService
from .github_client import GitHubClient
from .leaderboard import LeaderboardService
from .sync_service import MetricsSyncService

__all__ = [
    'BaseService', 'BattleStatsService', 'GitHubClient',
    'LeaderboardService', 'MetricsSyncService',
]
