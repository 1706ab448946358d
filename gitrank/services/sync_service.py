"""
Metrics Synchronization Service

Pulls contribution metrics from GitHub for verified users, scores every
time window and persists the result as a full replacement of the user's
metrics row. Batch runs are chunked: members of a chunk are fetched
concurrently, chunks run one after another, and each member's outcome is
collected on its own so one bad handle never blocks the population.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gitrank.config import Config
from gitrank.constants import TimeWindow
from gitrank.data_models.metrics import ContributionSnapshot, SyncOutcome, SyncSummary
from gitrank.database.database import Database
from gitrank.services.base import BaseService
from gitrank.utils.exceptions import FetchError, GitRankException, PersistenceError
from gitrank.utils.locks import KeyedLock
from gitrank.utils.logger import setup_logger
from gitrank.utils.scoring import calculate_score

logger = setup_logger(__name__)


def build_metrics_row(snapshot: ContributionSnapshot) -> Dict[str, int]:
    """
    Score a snapshot across all windows.

    Stars are all-time in every window; PRs and commits come from the
    window being scored.

    Returns:
        Dict keyed by the synced metrics column names
    """
    row = {
        'stars': snapshot.stars,
        'commits_all': snapshot.commits_all,
        'prs_all': snapshot.merged_prs_all,
        'score_all': calculate_score(snapshot.stars, snapshot.merged_prs_all, snapshot.commits_all),
    }
    for window in TimeWindow.DURATIONS:
        counts = snapshot.window(window)
        row[f'commits_{window}'] = counts.commits
        row[f'prs_{window}'] = counts.merged_prs
        row[f'score_{window}'] = calculate_score(snapshot.stars, counts.merged_prs, counts.commits)
    return row


def chunked(items: Sequence, size: int) -> List[Sequence]:
    if size < 1:
        raise ValueError("chunk size must be a positive integer")
    return [items[i:i + size] for i in range(0, len(items), size)]


class MetricsSyncService(BaseService):
    """Service for synchronizing GitHub metrics into the metrics table."""

    def __init__(
        self,
        database: Database,
        fetcher,
        leaderboard_service=None,
        chunk_size: Optional[int] = None,
        fetch_retries: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            database: Initialized Database
            fetcher: Object with `async fetch_contribution_metrics(handle)`
            leaderboard_service: Refreshed after syncs (optional)
            chunk_size: Users fetched concurrently per chunk
            fetch_retries: Extra attempts for transient fetch failures
            clock: Source of `last_synced` timestamps
        """
        super().__init__(database.session_factory)
        self.db = database
        self.fetcher = fetcher
        self.leaderboard_service = leaderboard_service
        self.chunk_size = chunk_size or Config.SYNC_CHUNK_SIZE
        self.fetch_retries = fetch_retries
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._user_locks = KeyedLock()

    async def _fetch(self, handle: str) -> ContributionSnapshot:
        async def attempt():
            return await self.fetcher.fetch_contribution_metrics(handle)
        attempt.__name__ = f"fetch_contribution_metrics({handle})"

        return await self.execute_with_retry(
            attempt,
            max_retries=1 + self.fetch_retries,
            retry_if=lambda e: isinstance(e, FetchError) and e.is_transient,
        )

    async def _sync_member(self, user_id: int, handle: str) -> Dict[str, int]:
        """Fetch, score and persist one user. Raises on any failure."""
        snapshot = await self._fetch(handle)
        row = build_metrics_row(snapshot)
        # Single writer per user across batch and single-user syncs
        async with self._user_locks.hold(user_id):
            await self.db.upsert_metrics(user_id, row, synced_at=self.clock())
        return row

    async def sync_user(self, user_id: int, github_username: str, refresh: bool = True) -> Dict[str, int]:
        """
        Sync one user immediately, e.g. right after verification.

        Returns:
            The persisted metric columns

        Raises:
            FetchError: If GitHub data could not be fetched
            PersistenceError: If the metrics row could not be written
        """
        logger.info(f"Syncing user {user_id} ({github_username})")
        row = await self._sync_member(user_id, github_username)
        if refresh and self.leaderboard_service is not None:
            await self.leaderboard_service.refresh_quietly()
        return row

    async def sync_after_verification(self, user_id: int, github_username: str) -> bool:
        """
        Sync for the verification flow, where failure must not be fatal.

        Returns:
            True if the user was synced, False if they will be picked up by
            the next batch run
        """
        try:
            await self.sync_user(user_id, github_username)
            return True
        except GitRankException as e:
            logger.warning(
                f"Immediate sync failed for user {user_id} ({github_username}); "
                f"deferring to next batch: {e}"
            )
            return False

    async def sync_all_users(self) -> SyncSummary:
        """
        Sync every verified user with a GitHub handle.

        Returns:
            SyncSummary with synced count, total and per-user outcomes
        """
        users = await self.db.get_sync_candidates()
        if not users:
            logger.info("No verified users to sync")
            return SyncSummary(synced=0, total=0, results=[])

        chunks = chunked(users, self.chunk_size)
        logger.info(f"Starting batch sync for {len(users)} users in {len(chunks)} chunks of {self.chunk_size}")

        results: List[SyncOutcome] = []
        for index, chunk in enumerate(chunks, start=1):
            results.extend(await self._sync_chunk(chunk))
            synced_so_far = sum(1 for r in results if r.ok)
            logger.info(f"Chunk {index}/{len(chunks)} settled; {synced_so_far}/{len(results)} synced so far")

        synced = sum(1 for r in results if r.ok)
        summary = SyncSummary(synced=synced, total=len(users), results=results)

        if self.leaderboard_service is not None:
            summary.refreshed = await self.leaderboard_service.refresh_quietly()

        logger.info(f"Batch sync complete: {synced}/{len(users)} users synced")
        return summary

    async def _sync_chunk(self, chunk: Sequence[Tuple[int, str]]) -> List[SyncOutcome]:
        """Sync one chunk concurrently, settling every member before returning."""
        settled = await asyncio.gather(
            *(self._sync_member(user_id, handle) for user_id, handle in chunk),
            return_exceptions=True
        )

        outcomes = []
        for (user_id, handle), result in zip(chunk, settled):
            if isinstance(result, FetchError):
                logger.warning(f"Sync failed for {handle}: {result}")
                outcomes.append(SyncOutcome(user_id, handle, result.details or str(result), result.kind))
            elif isinstance(result, PersistenceError):
                logger.error(f"Could not persist metrics for {handle}: {result}")
                outcomes.append(SyncOutcome(user_id, handle, f"db error: {result}", "persistence"))
            elif isinstance(result, Exception):
                logger.error(f"Unexpected sync failure for {handle}: {result!r}")
                outcomes.append(SyncOutcome(user_id, handle, str(result) or repr(result), "unknown"))
            elif isinstance(result, BaseException):
                # Cancellation and interpreter exits are not per-user failures
                raise result
            else:
                outcomes.append(SyncOutcome(user_id, handle, "ok"))
        return outcomes
