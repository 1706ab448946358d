"""
Tests for battle statistics and rating history.
"""

import pytest
import pytest_asyncio

from gitrank.operations.rating_operations import RatingOperations
from gitrank.services.battle_stats_service import BattleStatsService
from gitrank.utils.exceptions import UserNotFoundError

from factories import add_synced_user


@pytest.fixture
def stats_service(db):
    return BattleStatsService(db.session_factory)


@pytest_asyncio.fixture
async def rivalry(db):
    """alice beats bob twice, then bob wins once."""
    voter = await add_synced_user(db, "voter", commits=1)
    alice = await add_synced_user(db, "alice", commits=5)
    bob = await add_synced_user(db, "bob", commits=5)
    ops = RatingOperations(db)
    deltas = []
    for winner, loser in [(alice, bob), (alice, bob), (bob, alice)]:
        deltas.append(await ops.submit_vote(voter.id, winner.id, loser.id))
    return alice, bob, deltas


class TestBattleStats:

    async def test_totals(self, stats_service, rivalry):
        alice, bob, deltas = rivalry

        stats = await stats_service.get_battle_stats("alice")

        assert stats.user_id == alice.id
        assert (stats.total_battles, stats.wins, stats.losses) == (3, 2, 1)
        assert stats.total_elo_gained == deltas[0].winner_change + deltas[1].winner_change
        assert stats.total_elo_lost == -deltas[2].loser_change
        assert stats.max_elo_gain == max(deltas[0].winner_change, deltas[1].winner_change) == 16
        assert stats.max_elo_loss == -deltas[2].loser_change
        assert round(stats.win_rate, 1) == 66.7

    async def test_opponent_view(self, stats_service, rivalry):
        alice, bob, deltas = rivalry

        stats = await stats_service.get_battle_stats("bob")

        assert (stats.wins, stats.losses) == (1, 2)
        assert stats.total_elo_gained == deltas[2].winner_change
        assert stats.max_elo_loss == 16

    async def test_log_is_newest_first(self, stats_service, rivalry):
        alice, bob, deltas = rivalry

        stats = await stats_service.get_battle_stats("alice")

        assert [m.match_id for m in stats.matches] == [d.match_id for d in reversed(deltas)]
        latest = stats.matches[0]
        assert latest.won is False
        assert latest.opponent_username == "bob"
        assert latest.rating_before == deltas[2].loser_before
        assert latest.rating_after == deltas[2].loser_after
        assert latest.rating_change < 0
        assert stats.has_more is False

    async def test_log_paging(self, stats_service, rivalry):
        first = await stats_service.get_battle_stats("alice", limit=2)
        rest = await stats_service.get_battle_stats("alice", limit=2, offset=2)

        assert (len(first.matches), first.has_more) == (2, True)
        assert (len(rest.matches), rest.has_more) == (1, False)
        assert rest.total_battles == 3

    async def test_no_battles(self, db, stats_service):
        await add_synced_user(db, "newbie", commits=1)

        stats = await stats_service.get_battle_stats("newbie")

        assert (stats.total_battles, stats.total_elo_gained, stats.max_elo_loss) == (0, 0, 0)
        assert stats.matches == []
        assert stats.win_rate == 0.0

    async def test_unknown_user(self, stats_service):
        with pytest.raises(UserNotFoundError):
            await stats_service.get_battle_stats("nobody")

    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (10, -1)])
    async def test_invalid_paging(self, stats_service, limit, offset):
        with pytest.raises(ValueError):
            await stats_service.get_battle_stats("anyone", limit=limit, offset=offset)


class TestRatingTimeline:

    async def test_newest_first(self, db, stats_service, rivalry):
        alice, bob, deltas = rivalry

        timeline = await stats_service.get_rating_timeline("alice")

        assert [(match_id, rating) for match_id, rating, _ in timeline] == [
            (deltas[2].match_id, deltas[2].loser_after),
            (deltas[1].match_id, deltas[1].winner_after),
            (deltas[0].match_id, deltas[0].winner_after),
        ]
        assert timeline[0][1] == await db.get_rating(alice.id)

    async def test_unknown_user(self, stats_service):
        with pytest.raises(UserNotFoundError):
            await stats_service.get_rating_timeline("nobody")
