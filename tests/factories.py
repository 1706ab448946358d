"""Builders and fakes shared by the test modules."""

import asyncio
from datetime import datetime, timezone

from gitrank.constants import TimeWindow
from gitrank.data_models.metrics import ContributionSnapshot, WindowCounts
from gitrank.services.sync_service import build_metrics_row

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_snapshot(handle, stars=0, commits_all=0, merged_prs_all=0, windows=None):
    """Snapshot with the all-time counts in every window unless given."""
    if windows is None:
        windows = {w: WindowCounts(commits_all, merged_prs_all) for w in TimeWindow.DURATIONS}
    return ContributionSnapshot(
        handle=handle,
        stars=stars,
        commits_all=commits_all,
        merged_prs_all=merged_prs_all,
        windows=windows,
        fetched_at=FIXED_NOW,
    )


async def add_synced_user(db, username, stars=0, commits=0, prs=0, verified=True, program=None):
    """Create a user with a handle and a metrics row, as if already synced."""
    user = await db.create_user(username, github_username=f"gh-{username}",
                                is_verified=verified, program=program)
    snapshot = make_snapshot(user.github_username, stars, commits, prs)
    await db.upsert_metrics(user.id, build_metrics_row(snapshot), synced_at=FIXED_NOW)
    return user


class FakeFetcher:
    """Stands in for GitHubClient; serves canned snapshots per handle."""

    def __init__(self, snapshots=None, failures=None, delay=0.0):
        self.snapshots = snapshots or {}
        # handle -> exception, or list of exceptions raised on successive calls
        self.failures = failures or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_contribution_metrics(self, handle):
        self.calls.append(handle)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            failure = self.failures.get(handle)
            if isinstance(failure, list):
                failure = failure.pop(0) if failure else None
            if failure is not None:
                raise failure
            if handle in self.snapshots:
                return self.snapshots[handle]
            return make_snapshot(handle, stars=1, commits_all=10, merged_prs_all=2)
        finally:
            self.in_flight -= 1

    async def fetch_top_repositories(self, handle, limit=3):
        return []

    async def aclose(self):
        pass
