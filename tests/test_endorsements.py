"""
Tests for endorsement toggles.
"""

import asyncio

import pytest

from gitrank.operations.endorsement_operations import EndorsementOperations
from gitrank.services.sync_service import MetricsSyncService
from gitrank.utils.exceptions import SelfEndorsementError, UnauthorizedError, UserNotFoundError

from factories import FakeFetcher, add_synced_user


class TestToggleEndorsement:

    async def test_toggle_on_and_off(self, db):
        voter = await add_synced_user(db, "voter", commits=1)
        target = await add_synced_user(db, "target", commits=1)
        ops = EndorsementOperations(db)

        first = await ops.toggle_endorsement(voter.id, "target")
        assert (first.target_id, first.endorsed, first.endorsement_count) == (target.id, True, 1)
        assert (await db.get_metrics(target.id)).endorsement_count == 1

        second = await ops.toggle_endorsement(voter.id, "target")
        assert (second.endorsed, second.endorsement_count) == (False, 0)
        assert (await db.get_metrics(target.id)).endorsement_count == 0

    async def test_count_spans_voters(self, db):
        target = await add_synced_user(db, "target", commits=1)
        ops = EndorsementOperations(db)
        for name in ("v1", "v2", "v3"):
            voter = await db.create_user(name, is_verified=True)
            result = await ops.toggle_endorsement(voter.id, "target")

        assert result.endorsement_count == 3
        assert (await db.get_metrics(target.id)).endorsement_count == 3

    async def test_target_without_metrics(self, db):
        voter = await db.create_user("voter", is_verified=True)
        target = await db.create_user("fresh", github_username="gh-fresh", is_verified=True)

        result = await EndorsementOperations(db).toggle_endorsement(voter.id, "fresh")

        assert result.endorsement_count == 1
        assert await db.get_metrics(target.id) is None

    async def test_first_sync_counts_earlier_endorsements(self, db):
        voter = await db.create_user("voter", is_verified=True)
        target = await db.create_user("fresh", github_username="gh-fresh", is_verified=True)
        await EndorsementOperations(db).toggle_endorsement(voter.id, "fresh")
        sync = MetricsSyncService(db, FakeFetcher())

        await sync.sync_user(target.id, "gh-fresh")
        assert (await db.get_metrics(target.id)).endorsement_count == 1

        await sync.sync_user(target.id, "gh-fresh")
        assert (await db.get_metrics(target.id)).endorsement_count == 1

    async def test_self_endorsement(self, db):
        voter = await db.create_user("narcissus", is_verified=True)
        with pytest.raises(SelfEndorsementError):
            await EndorsementOperations(db).toggle_endorsement(voter.id, "narcissus")

    async def test_unknown_target(self, db):
        voter = await db.create_user("voter", is_verified=True)
        with pytest.raises(UserNotFoundError):
            await EndorsementOperations(db).toggle_endorsement(voter.id, "nobody")

    async def test_unverified_voter(self, db):
        voter = await db.create_user("voter")
        await db.create_user("target", is_verified=True)
        with pytest.raises(UnauthorizedError):
            await EndorsementOperations(db).toggle_endorsement(voter.id, "target")

    async def test_concurrent_toggles_on_one_pair(self, db):
        voter = await db.create_user("voter", is_verified=True)
        target = await add_synced_user(db, "target", commits=1)
        ops = EndorsementOperations(db)

        results = await asyncio.gather(*(ops.toggle_endorsement(voter.id, "target") for _ in range(4)))

        assert sorted(r.endorsed for r in results) == [False, False, True, True]
        assert (await db.get_metrics(target.id)).endorsement_count == 0
        assert await ops.list_endorsed_usernames(voter.id) == []

    async def test_refreshes_leaderboard(self, db, leaderboard):
        voter = await db.create_user("voter", is_verified=True)
        await add_synced_user(db, "target", commits=10)
        await leaderboard.refresh_view()

        await EndorsementOperations(db, leaderboard_service=leaderboard).toggle_endorsement(voter.id, "target")

        entry = await leaderboard.get_user_entry("target")
        assert entry.endorsements == 1
        assert entry.score == 13


class TestListEndorsed:

    async def test_lists_targets_alphabetically(self, db):
        voter = await db.create_user("voter", is_verified=True)
        for name in ("zed", "amy", "kim"):
            await db.create_user(name, is_verified=True)
        ops = EndorsementOperations(db)
        for name in ("zed", "amy"):
            await ops.toggle_endorsement(voter.id, name)

        assert await ops.list_endorsed_usernames(voter.id) == ["amy", "zed"]
