"""
Operator command line for GitRank.

Usage:
    python -m gitrank sync --secret S          # batch sync every verified user
    python -m gitrank sync-user 42 octocat     # sync one user now
    python -m gitrank verify 42 octocat        # verify a user, then sync them
    python -m gitrank refresh                  # rebuild the leaderboard view
    python -m gitrank leaderboard --window 30d --page 2
    python -m gitrank battle-stats alice
    python -m gitrank matchup 7                # random pairing for voter 7
    python -m gitrank vote 7 1 2 --token T     # voter 7 picks user 1 over user 2
    python -m gitrank endorse 7 alice          # toggle voter 7's endorsement of alice
"""

import argparse
import asyncio
import hmac
import sys
from typing import List, Optional

from gitrank.config import Config
from gitrank.constants import Faculty, PaginationConstants, TimeWindow
from gitrank.database.database import Database
from gitrank.operations.endorsement_operations import EndorsementOperations
from gitrank.operations.rating_operations import RatingOperations
from gitrank.services.battle_stats_service import BattleStatsService
from gitrank.services.github_client import GitHubClient
from gitrank.services.leaderboard import LeaderboardService
from gitrank.services.sync_service import MetricsSyncService
from gitrank.utils.elo import EloCalculator
from gitrank.utils.exceptions import GitRankException, UnauthorizedError
from gitrank.utils.logger import setup_logger

logger = setup_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNAUTHORIZED = 2


def verify_cron_secret(provided: Optional[str]) -> bool:
    """Check a batch-sync caller against CRON_SECRET (open when unset)."""
    expected = Config.CRON_SECRET
    if not expected:
        logger.warning("CRON_SECRET is not set; batch sync is unauthenticated")
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


class GitRank:
    """Wires the database, GitHub client and services for one CLI run."""

    def __init__(self, database_url: Optional[str] = None):
        self.db = Database(database_url)
        self.github: Optional[GitHubClient] = None
        self.leaderboard: Optional[LeaderboardService] = None
        self.logger = logger

    async def setup(self, with_github: bool = False):
        await self.db.initialize()
        self.leaderboard = LeaderboardService(self.db.session_factory)
        if with_github:
            self.github = GitHubClient()

    def sync_service(self) -> MetricsSyncService:
        return MetricsSyncService(self.db, self.github, self.leaderboard)

    def rating_operations(self) -> RatingOperations:
        return RatingOperations(self.db, self.leaderboard, fetcher=self.github)

    def endorsement_operations(self) -> EndorsementOperations:
        return EndorsementOperations(self.db, self.leaderboard)

    async def close(self):
        if self.github is not None:
            await self.github.aclose()
        await self.db.close()


async def cmd_sync(app: GitRank, args: argparse.Namespace) -> int:
    if not verify_cron_secret(args.secret):
        print("Unauthorized: invalid sync secret", file=sys.stderr)
        return EXIT_UNAUTHORIZED

    summary = await app.sync_service().sync_all_users()
    print(f"Synced {summary.synced}/{summary.total} users")
    for outcome in summary.failed:
        print(f"  FAILED {outcome.username} (user {outcome.user_id}): {outcome.error_kind} - {outcome.status}")
    if not summary.refreshed and summary.total:
        print("Warning: leaderboard refresh failed; rankings may be stale", file=sys.stderr)
    return EXIT_OK


async def cmd_sync_user(app: GitRank, args: argparse.Namespace) -> int:
    row = await app.sync_service().sync_user(args.user_id, args.handle)
    print(f"Synced {args.handle}: score {row['score_all']} "
          f"({row['stars']} stars, {row['prs_all']} merged PRs, {row['commits_all']} commits)")
    return EXIT_OK


async def cmd_verify(app: GitRank, args: argparse.Namespace) -> int:
    user = await app.db.mark_verified(args.user_id, args.handle)
    if user is None:
        print(f"Error: user {args.user_id} not found", file=sys.stderr)
        return EXIT_FAILURE
    print(f"Verified {user.username} as {user.github_username}")
    if not await app.sync_service().sync_after_verification(user.id, user.github_username):
        print("Initial sync failed; the next batch sync will pick this user up")
    return EXIT_OK


async def cmd_refresh(app: GitRank, args: argparse.Namespace) -> int:
    count = await app.leaderboard.refresh_view()
    print(f"Leaderboard refreshed: {count} rows")
    return EXIT_OK


async def cmd_leaderboard(app: GitRank, args: argparse.Namespace) -> int:
    page = await app.leaderboard.get_page(
        window=args.window, page=args.page, page_size=args.page_size,
        program=args.program, faculty=args.faculty
    )
    print(f"Leaderboard ({TimeWindow.LABELS[page.window]}) - "
          f"page {page.current_page}/{page.total_pages}, {page.total_users} users")
    if not page.entries:
        print("  No ranked users yet")
    for entry in page.entries:
        print(f"  #{entry.rank:<4} {entry.username:<24} {entry.score:>8}  "
              f"({entry.stars} stars, {entry.prs} PRs, {entry.commits} commits, "
              f"{entry.endorsements} endorsements, elo {entry.elo_rating:.0f})")
    return EXIT_OK


async def cmd_matchup(app: GitRank, args: argparse.Namespace) -> int:
    voter = await app.db.get_user(args.voter_id)
    if voter is None or not voter.is_verified:
        raise UnauthorizedError(args.voter_id)

    matchup = await app.rating_operations().get_random_matchup(voter.id)
    for user in matchup.users:
        print(f"  {user.user_id:>6}  {user.username:<24} elo {user.rating:.0f}")
    print(f"Token: {matchup.battle_token}")
    return EXIT_OK


async def cmd_vote(app: GitRank, args: argparse.Namespace) -> int:
    delta = await app.rating_operations().submit_vote(
        args.voter_id, args.winner_id, args.loser_id, matchup_token=args.token
    )
    print(f"Winner {delta.winner_id}: {delta.winner_before:.0f} -> {delta.winner_after:.0f} "
          f"({EloCalculator.format_elo_change(delta.winner_change)})")
    print(f"Loser  {delta.loser_id}: {delta.loser_before:.0f} -> {delta.loser_after:.0f} "
          f"({EloCalculator.format_elo_change(delta.loser_change)})")
    return EXIT_OK


async def cmd_endorse(app: GitRank, args: argparse.Namespace) -> int:
    result = await app.endorsement_operations().toggle_endorsement(args.voter_id, args.username)
    state = "Endorsed" if result.endorsed else "Removed endorsement of"
    print(f"{state} {args.username} ({result.endorsement_count} endorsements)")
    return EXIT_OK


async def cmd_battle_stats(app: GitRank, args: argparse.Namespace) -> int:
    service = BattleStatsService(app.db.session_factory)
    stats = await service.get_battle_stats(args.username, limit=args.limit)
    print(f"{args.username}: {stats.total_battles} battles, {stats.wins}W/{stats.losses}L "
          f"({stats.win_rate:.1f}% win rate)")
    print(f"  Gained {stats.total_elo_gained:.0f}, lost {stats.total_elo_lost:.0f}; "
          f"best +{stats.max_elo_gain:.0f}, worst -{stats.max_elo_loss:.0f}")
    for match in stats.matches:
        result = "W" if match.won else "L"
        print(f"  {match.created_at:%Y-%m-%d %H:%M} {result} vs {match.opponent_username:<24} "
              f"{EloCalculator.format_elo_change(match.rating_change)} -> {match.rating_after:.0f}")
    if stats.has_more:
        print(f"  ... more battles beyond the latest {args.limit}")
    return EXIT_OK


COMMANDS = {
    'sync': (cmd_sync, True),
    'sync-user': (cmd_sync_user, True),
    'verify': (cmd_verify, True),
    'refresh': (cmd_refresh, False),
    'leaderboard': (cmd_leaderboard, False),
    'battle-stats': (cmd_battle_stats, False),
    'matchup': (cmd_matchup, False),
    'vote': (cmd_vote, False),
    'endorse': (cmd_endorse, False),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='gitrank',
        description='GitHub contribution sync and ranking engine',
    )
    parser.add_argument('--database-url', default=None,
                        help='Override DATABASE_URL')
    sub = parser.add_subparsers(dest='command', required=True)

    p_sync = sub.add_parser('sync', help='Batch sync every verified user')
    p_sync.add_argument('--secret', default=None, help='Shared CRON_SECRET')

    p_user = sub.add_parser('sync-user', help='Sync one user immediately')
    p_user.add_argument('user_id', type=int)
    p_user.add_argument('handle')

    p_verify = sub.add_parser('verify', help='Mark a user verified and sync them')
    p_verify.add_argument('user_id', type=int)
    p_verify.add_argument('handle')

    sub.add_parser('refresh', help='Rebuild the leaderboard view')

    p_board = sub.add_parser('leaderboard', help='Print a leaderboard page')
    p_board.add_argument('--window', choices=TimeWindow.CHOICES, default=TimeWindow.ALL)
    p_board.add_argument('--page', type=int, default=1)
    p_board.add_argument('--page-size', type=int, default=PaginationConstants.DEFAULT_PAGE_SIZE)
    p_board.add_argument('--program', default=None, help='Only rank users in this program')
    p_board.add_argument('--faculty', choices=Faculty.CHOICES, default=None,
                         help='Only rank users whose program belongs to this faculty')

    p_stats = sub.add_parser('battle-stats', help='Print battle statistics for a user')
    p_stats.add_argument('username')
    p_stats.add_argument('--limit', type=int, default=PaginationConstants.DEFAULT_BATTLE_LOG_LIMIT)

    p_matchup = sub.add_parser('matchup', help='Draw a random head-to-head pairing')
    p_matchup.add_argument('voter_id', type=int)

    p_vote = sub.add_parser('vote', help='Cast a head-to-head vote')
    p_vote.add_argument('voter_id', type=int)
    p_vote.add_argument('winner_id', type=int)
    p_vote.add_argument('loser_id', type=int)
    p_vote.add_argument('--token', default=None, help='Token from the matchup command')

    p_endorse = sub.add_parser('endorse', help='Toggle an endorsement')
    p_endorse.add_argument('voter_id', type=int)
    p_endorse.add_argument('username')

    return parser


async def run(args: argparse.Namespace) -> int:
    handler, needs_github = COMMANDS[args.command]
    try:
        Config.validate(require_github=needs_github)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    app = GitRank(args.database_url)
    try:
        await app.setup(with_github=needs_github)
        return await handler(app, args)
    except GitRankException as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e.user_message}", file=sys.stderr)
        return EXIT_FAILURE
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        await app.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
