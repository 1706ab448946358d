"""
Battle statistics service.

Derives win/loss and rating-movement figures from the append-only match
log, and serves a user's battle log newest first with offset paging.
"""

from datetime import datetime
from typing import List, Tuple
import logging

from sqlalchemy import select, or_, func, case, desc
from sqlalchemy.orm import aliased

from gitrank.constants import PaginationConstants
from gitrank.data_models.battle import BattleLogEntry, BattleStats
from gitrank.database.models import User, EloMatch
from gitrank.services.base import BaseService
from gitrank.utils.exceptions import UserNotFoundError

logger = logging.getLogger(__name__)


class BattleStatsService(BaseService):
    """Service for per-user battle statistics and rating history"""

    async def _resolve_user_id(self, session, username: str) -> int:
        user_id = await session.scalar(select(User.id).where(User.username == username))
        if user_id is None:
            raise UserNotFoundError(username)
        return user_id

    async def get_battle_stats(
        self,
        username: str,
        limit: int = PaginationConstants.DEFAULT_BATTLE_LOG_LIMIT,
        offset: int = 0
    ) -> BattleStats:
        """
        Aggregate battle statistics plus one page of the battle log.

        Totals cover the full history; `limit`/`offset` only page the log.

        Raises:
            UserNotFoundError: If no user has `username`
            ValueError: If the paging arguments are out of range
        """
        if limit < 1 or limit > PaginationConstants.MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {PaginationConstants.MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValueError("offset must not be negative")

        gain = EloMatch.winner_elo_after - EloMatch.winner_elo_before
        loss = EloMatch.loser_elo_before - EloMatch.loser_elo_after

        async with self.get_session() as session:
            user_id = await self._resolve_user_id(session, username)

            won = (await session.execute(
                select(
                    func.count(EloMatch.id),
                    func.coalesce(func.sum(gain), 0),
                    func.coalesce(func.max(gain), 0),
                ).where(EloMatch.winner_id == user_id)
            )).one()
            lost = (await session.execute(
                select(
                    func.count(EloMatch.id),
                    func.coalesce(func.sum(loss), 0),
                    func.coalesce(func.max(loss), 0),
                ).where(EloMatch.loser_id == user_id)
            )).one()

            winner = aliased(User)
            loser = aliased(User)
            # Fetch one extra row to detect a following page
            result = await session.execute(
                select(EloMatch, winner.username, loser.username)
                .join(winner, winner.id == EloMatch.winner_id)
                .join(loser, loser.id == EloMatch.loser_id)
                .where(or_(EloMatch.winner_id == user_id, EloMatch.loser_id == user_id))
                .order_by(desc(EloMatch.created_at), desc(EloMatch.id))
                .offset(offset)
                .limit(limit + 1)
            )
            rows = result.all()

        matches = []
        for match, winner_name, loser_name in rows[:limit]:
            if match.winner_id == user_id:
                entry = BattleLogEntry(
                    match_id=match.id,
                    opponent_id=match.loser_id,
                    opponent_username=loser_name,
                    won=True,
                    rating_before=match.winner_elo_before,
                    rating_after=match.winner_elo_after,
                    created_at=match.created_at,
                )
            else:
                entry = BattleLogEntry(
                    match_id=match.id,
                    opponent_id=match.winner_id,
                    opponent_username=winner_name,
                    won=False,
                    rating_before=match.loser_elo_before,
                    rating_after=match.loser_elo_after,
                    created_at=match.created_at,
                )
            matches.append(entry)

        return BattleStats(
            user_id=user_id,
            total_battles=won[0] + lost[0],
            wins=won[0],
            losses=lost[0],
            total_elo_gained=won[1],
            total_elo_lost=lost[1],
            max_elo_gain=won[2],
            max_elo_loss=lost[2],
            matches=matches,
            has_more=len(rows) > limit,
        )

    async def get_rating_timeline(self, username: str) -> List[Tuple[int, float, datetime]]:
        """(match id, rating after the match, timestamp) for every battle, newest first."""
        async with self.get_session() as session:
            user_id = await self._resolve_user_id(session, username)
            result = await session.execute(
                select(
                    EloMatch.id,
                    case(
                        (EloMatch.winner_id == user_id, EloMatch.winner_elo_after),
                        else_=EloMatch.loser_elo_after
                    ),
                    EloMatch.created_at,
                )
                .where(or_(EloMatch.winner_id == user_id, EloMatch.loser_id == user_id))
                .order_by(desc(EloMatch.created_at), desc(EloMatch.id))
            )
            return [tuple(row) for row in result]
