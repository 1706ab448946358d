"""
Tests for the operator command line.
"""

import asyncio

import pytest

import gitrank.main
from gitrank.config import Config
from gitrank.database.database import Database
from gitrank.main import EXIT_FAILURE, EXIT_OK, EXIT_UNAUTHORIZED, main, verify_cron_secret
from gitrank.utils.exceptions import FetchError

from factories import FakeFetcher, add_synced_user


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


def seed(database_url, *users):
    async def _seed():
        db = Database(database_url)
        await db.initialize()
        try:
            for name, commits in users:
                await add_synced_user(db, name, commits=commits)
        finally:
            await db.close()
    asyncio.run(_seed())


def seed_unverified(database_url, username):
    async def _seed():
        db = Database(database_url)
        await db.initialize()
        try:
            await db.create_user(username)
        finally:
            await db.close()
    asyncio.run(_seed())


class TestCronSecret:

    def test_open_when_unset(self, monkeypatch):
        monkeypatch.setattr(Config, "CRON_SECRET", None)
        assert verify_cron_secret(None) is True

    def test_requires_match_when_set(self, monkeypatch):
        monkeypatch.setattr(Config, "CRON_SECRET", "s3cret")
        assert verify_cron_secret("s3cret") is True
        assert verify_cron_secret("guess") is False
        assert verify_cron_secret(None) is False


class TestCommands:

    def test_refresh_and_leaderboard(self, database_url, capsys):
        seed(database_url, ("alice", 12), ("bob", 3))

        assert main(["--database-url", database_url, "refresh"]) == EXIT_OK
        assert main(["--database-url", database_url, "leaderboard", "--window", "7d"]) == EXIT_OK

        out = capsys.readouterr().out
        assert "Leaderboard refreshed: 2 rows" in out
        assert "7 days" in out
        assert out.index("alice") < out.index("bob")

    def test_empty_leaderboard(self, database_url, capsys):
        assert main(["--database-url", database_url, "leaderboard"]) == EXIT_OK
        assert "No ranked users yet" in capsys.readouterr().out

    def test_sync_rejects_wrong_secret(self, database_url, monkeypatch, capsys):
        monkeypatch.setattr(Config, "GITHUB_TOKEN", "token")
        monkeypatch.setattr(Config, "CRON_SECRET", "s3cret")

        assert main(["--database-url", database_url, "sync", "--secret", "guess"]) == EXIT_UNAUTHORIZED
        assert "Unauthorized" in capsys.readouterr().err

    def test_sync_requires_github_token(self, database_url, monkeypatch, capsys):
        monkeypatch.setattr(Config, "GITHUB_TOKEN", None)

        assert main(["--database-url", database_url, "sync-user", "1", "octocat"]) == EXIT_FAILURE
        assert "GITHUB_TOKEN" in capsys.readouterr().err

    def test_battle_stats_unknown_user(self, database_url, capsys):
        assert main(["--database-url", database_url, "battle-stats", "nobody"]) == EXIT_FAILURE
        assert "not found" in capsys.readouterr().err

    def test_battle_stats(self, database_url, capsys):
        seed(database_url, ("alice", 1))

        assert main(["--database-url", database_url, "battle-stats", "alice"]) == EXIT_OK
        assert "0 battles" in capsys.readouterr().out

    def test_verify_syncs_new_user(self, database_url, monkeypatch, capsys):
        monkeypatch.setattr(Config, "GITHUB_TOKEN", "token")
        monkeypatch.setattr(gitrank.main, "GitHubClient", FakeFetcher)
        seed_unverified(database_url, "newbie")

        assert main(["--database-url", database_url, "verify", "1", "octo-newbie"]) == EXIT_OK
        assert main(["--database-url", database_url, "leaderboard"]) == EXIT_OK

        out = capsys.readouterr().out
        assert "Verified newbie as octo-newbie" in out
        assert "Initial sync failed" not in out
        assert "newbie" in out.split("users")[-1]

    def test_verify_survives_failed_sync(self, database_url, monkeypatch, capsys):
        class DownFetcher(FakeFetcher):
            async def fetch_contribution_metrics(self, handle):
                raise FetchError(FetchError.TRANSIENT, handle, "timeout")

        monkeypatch.setattr(Config, "GITHUB_TOKEN", "token")
        monkeypatch.setattr(gitrank.main, "GitHubClient", DownFetcher)
        seed_unverified(database_url, "newbie")

        assert main(["--database-url", database_url, "verify", "1", "octo-newbie"]) == EXIT_OK
        assert "next batch sync" in capsys.readouterr().out

    def test_verify_unknown_user(self, database_url, monkeypatch, capsys):
        monkeypatch.setattr(Config, "GITHUB_TOKEN", "token")
        monkeypatch.setattr(gitrank.main, "GitHubClient", FakeFetcher)

        assert main(["--database-url", database_url, "verify", "7", "ghost"]) == EXIT_FAILURE
        assert "user 7 not found" in capsys.readouterr().err


class TestBattleCommands:

    def test_matchup_then_vote_with_token(self, database_url, capsys):
        seed(database_url, ("alice", 12), ("bob", 3), ("voter", 1))

        assert main(["--database-url", database_url, "matchup", "3"]) == EXIT_OK
        lines = capsys.readouterr().out.splitlines()
        first, second = [int(line.split()[0]) for line in lines if line.startswith("  ")]
        token = next(line.split(": ", 1)[1] for line in lines if line.startswith("Token: "))

        vote = ["--database-url", database_url, "vote", "3", str(first), str(second), "--token", token]
        assert main(vote) == EXIT_OK
        out = capsys.readouterr().out
        assert "1200 -> 1216 (+16)" in out
        assert "1200 -> 1184 (-16)" in out

        assert main(vote) == EXIT_FAILURE
        assert "no longer valid" in capsys.readouterr().err

    def test_matchup_requires_verified_voter(self, database_url, capsys):
        seed_unverified(database_url, "lurker")

        assert main(["--database-url", database_url, "matchup", "1"]) == EXIT_FAILURE
        assert "verify your account" in capsys.readouterr().err

    def test_matchup_needs_two_participants(self, database_url, capsys):
        seed(database_url, ("solo", 4))

        assert main(["--database-url", database_url, "matchup", "1"]) == EXIT_FAILURE
        assert "Not enough participants" in capsys.readouterr().err

    def test_endorse_toggles(self, database_url, capsys):
        seed(database_url, ("alice", 2), ("bob", 2))
        endorse = ["--database-url", database_url, "endorse", "1", "bob"]

        assert main(endorse) == EXIT_OK
        assert main(endorse) == EXIT_OK

        out = capsys.readouterr().out
        assert "Endorsed bob (1 endorsements)" in out
        assert "Removed endorsement of bob (0 endorsements)" in out

    def test_endorse_self(self, database_url, capsys):
        seed(database_url, ("alice", 2))

        assert main(["--database-url", database_url, "endorse", "1", "alice"]) == EXIT_FAILURE
        assert "cannot endorse yourself" in capsys.readouterr().err
