"""
Leaderboard service.

Owns the cached ranking projection (`leaderboard_rows`): rebuilds it from
metrics, endorsement edges and ratings on request, and serves paged,
window-specific rankings from it.
"""

from typing import Optional, List
import asyncio
import time
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from gitrank.config import Config
from gitrank.constants import CacheConstants, Faculty, PaginationConstants, TimeWindow
from gitrank.data_models.leaderboard import LeaderboardEntry, LeaderboardPage
from gitrank.database.models import User, GithubMetrics, Endorsement, EloRating, LeaderboardRow
from gitrank.services.base import BaseService
from gitrank.utils.exceptions import PersistenceError
from gitrank.utils.scoring import window_stats

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for the aggregate ranking view and paged reads with caching."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        # TTL cache for leaderboard pages
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = CacheConstants.LEADERBOARD_CACHE_TTL
        self._cache_max_size = CacheConstants.LEADERBOARD_CACHE_MAX_SIZE
        self._cache_lock = asyncio.Lock()
        # Rebuilds replace the whole table; one at a time per process
        self._refresh_lock = asyncio.Lock()

    async def refresh_view(self) -> int:
        """
        Rebuild the ranking projection from the source tables.

        Returns:
            Number of rows written

        Raises:
            PersistenceError: If the rebuild fails
        """
        endorsement_counts = (
            select(Endorsement.target_id, func.count(Endorsement.id).label('endorsement_count'))
            .group_by(Endorsement.target_id)
            .subquery()
        )
        query = (
            select(
                User.id,
                User.username,
                User.github_username,
                User.program,
                User.is_verified,
                GithubMetrics,
                func.coalesce(endorsement_counts.c.endorsement_count, 0).label('endorsement_count'),
                func.coalesce(EloRating.rating, Config.ELO_BASELINE).label('elo_rating'),
            )
            .join(GithubMetrics, GithubMetrics.user_id == User.id)
            .outerjoin(endorsement_counts, endorsement_counts.c.target_id == User.id)
            .outerjoin(EloRating, EloRating.user_id == User.id)
            .where(User.is_verified == True)
        )

        async with self._refresh_lock:
            try:
                async with self.get_session() as session:
                    result = await session.execute(query)
                    rows = []
                    for row in result:
                        metrics = row.GithubMetrics
                        rows.append(LeaderboardRow(
                            user_id=row.id,
                            username=row.username,
                            github_username=row.github_username,
                            program=row.program,
                            is_verified=row.is_verified,
                            endorsement_count=row.endorsement_count,
                            elo_rating=row.elo_rating,
                            **metrics.snapshot(),
                        ))

                    await session.execute(delete(LeaderboardRow))
                    session.add_all(rows)
            except SQLAlchemyError as e:
                logger.error(f"Leaderboard refresh failed: {e}")
                raise PersistenceError("leaderboard refresh", str(e)) from e

        await self.clear_cache()
        logger.info(f"Leaderboard view refreshed with {len(rows)} rows")
        return len(rows)

    async def refresh_quietly(self) -> bool:
        """Refresh for opportunistic callers; failures are logged, not raised."""
        try:
            await self.refresh_view()
            return True
        except PersistenceError as e:
            logger.warning(f"Opportunistic leaderboard refresh failed: {e}")
            return False

    async def _is_cache_valid(self, key: str) -> bool:
        """Check if cached leaderboard data is still valid."""
        async with self._cache_lock:
            if key not in self._cache_timestamps:
                return False
            return time.time() - self._cache_timestamps[key] < self._cache_ttl

    async def _cleanup_cache(self):
        """Remove expired entries and enforce size limits."""
        async with self._cache_lock:
            current_time = time.time()
            expired_keys = [
                key for key, timestamp in self._cache_timestamps.items()
                if current_time - timestamp >= self._cache_ttl
            ]
            for key in expired_keys:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)

            if len(self._cache) > self._cache_max_size:
                sorted_keys = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for key, _ in sorted_keys[:len(self._cache) - self._cache_max_size]:
                    self._cache.pop(key, None)
                    self._cache_timestamps.pop(key, None)

    async def clear_cache(self):
        """Clears the entire leaderboard cache."""
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()

    async def _ranked_entries(self, window: str, program: Optional[str] = None,
                              faculty: Optional[str] = None) -> List[LeaderboardEntry]:
        """All cached rows for a window, ranked by display score within the filter."""
        async with self.get_session() as session:
            query = select(LeaderboardRow)
            if program:
                query = query.where(LeaderboardRow.program == program)
            result = await session.execute(query)
            rows = result.scalars().all()
        if faculty:
            rows = [row for row in rows if Faculty.of(row.program) == faculty]

        scored = []
        for row in rows:
            stats = window_stats(row, window)
            scored.append((row, stats))
        scored.sort(key=lambda item: (-item[1]['score'], item[0].username.lower()))

        entries = []
        previous_score = None
        rank = 0
        for position, (row, stats) in enumerate(scored, start=1):
            # Competition ranking: equal scores share a rank
            if stats['score'] != previous_score:
                rank = position
                previous_score = stats['score']
            entries.append(LeaderboardEntry(
                rank=rank,
                user_id=row.user_id,
                username=row.username,
                github_username=row.github_username,
                program=row.program,
                stars=row.stars,
                commits=stats['commits'],
                prs=stats['prs'],
                window_score=getattr(row, f"score_{window}"),
                endorsements=stats['endorsements'],
                elo_rating=row.elo_rating,
                elo_bonus=stats['elo_bonus'],
                score=stats['score'],
            ))
        return entries

    async def get_page(
        self,
        window: str = TimeWindow.ALL,
        page: int = 1,
        page_size: int = PaginationConstants.DEFAULT_PAGE_SIZE,
        program: Optional[str] = None,
        faculty: Optional[str] = None
    ) -> LeaderboardPage:
        """
        Get a paginated leaderboard for one time window.

        `program` matches one exact program; `faculty` matches every program
        grouped under that faculty. Ranks are recomputed within the filter.
        """
        if not isinstance(page, int) or page < 1:
            raise ValueError("page must be a positive integer")
        if not isinstance(page_size, int) or page_size < 1 or page_size > PaginationConstants.MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {PaginationConstants.MAX_PAGE_SIZE}")
        if not TimeWindow.validate(window):
            raise ValueError(f"window must be one of {', '.join(TimeWindow.CHOICES)}")
        if faculty is not None and faculty not in Faculty.CHOICES:
            raise ValueError(f"faculty must be one of {', '.join(Faculty.CHOICES)}")

        cache_key = f"leaderboard:{window}:{page}:{page_size}:{program}:{faculty}"
        if await self._is_cache_valid(cache_key):
            async with self._cache_lock:
                return self._cache[cache_key]

        await self._cleanup_cache()

        entries = await self._ranked_entries(window, program, faculty)
        total = len(entries)
        offset = (page - 1) * page_size

        leaderboard_page = LeaderboardPage(
            entries=entries[offset:offset + page_size],
            current_page=page,
            total_pages=(total + page_size - 1) // page_size if total > 0 else 1,
            total_users=total,
            window=window,
        )

        async with self._cache_lock:
            self._cache[cache_key] = leaderboard_page
            self._cache_timestamps[cache_key] = time.time()

        return leaderboard_page

    async def get_user_entry(self, username: str, window: str = TimeWindow.ALL) -> Optional[LeaderboardEntry]:
        """Get one user's ranked entry, or None if they are not on the board."""
        if not TimeWindow.validate(window):
            raise ValueError(f"window must be one of {', '.join(TimeWindow.CHOICES)}")
        for entry in await self._ranked_entries(window):
            if entry.username == username:
                return entry
        return None
