"""
Endorsement Operations Module

Verified users endorse other users; each endorsement is worth a fixed
bonus on the target's display score. Endorsing is a toggle: a second call
for the same (voter, target) removes the edge again.
"""

from typing import List

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from gitrank.data_models.battle import EndorsementResult
from gitrank.database.models import User, Endorsement, GithubMetrics
from gitrank.utils.exceptions import (
    PersistenceError, SelfEndorsementError, UnauthorizedError, UserNotFoundError
)
from gitrank.utils.locks import KeyedLock
from gitrank.utils.logger import setup_logger

logger = setup_logger(__name__)


class EndorsementOperations:
    """Business logic operations for endorsement edges."""

    def __init__(self, database, leaderboard_service=None):
        self.db = database
        self.leaderboard_service = leaderboard_service
        self._pair_locks = KeyedLock()
        self.logger = logger

    async def toggle_endorsement(self, voter_id: int, target_username: str) -> EndorsementResult:
        """
        Add the (voter, target) endorsement if absent, remove it if present.

        Returns:
            EndorsementResult with the new edge state and the target's count

        Raises:
            UnauthorizedError: If the voter is not verified
            UserNotFoundError: If no user has `target_username`
            SelfEndorsementError: If the voter targets themselves
            PersistenceError: If the write fails
        """
        voter = await self.db.get_user(voter_id)
        if voter is None or not voter.is_verified:
            raise UnauthorizedError(voter_id)

        target = await self.db.get_user_by_username(target_username)
        if target is None:
            raise UserNotFoundError(target_username)
        if target.id == voter_id:
            raise SelfEndorsementError(voter_id)

        async with self._pair_locks.hold((voter_id, target.id)):
            try:
                async with self.db.transaction() as session:
                    result = await session.execute(
                        select(Endorsement)
                        .where(Endorsement.voter_id == voter_id)
                        .where(Endorsement.target_id == target.id)
                    )
                    existing = result.scalar_one_or_none()

                    if existing is not None:
                        await session.delete(existing)
                        endorsed = False
                    else:
                        session.add(Endorsement(voter_id=voter_id, target_id=target.id))
                        endorsed = True
                    await session.flush()

                    count = await session.scalar(
                        select(func.count(Endorsement.id)).where(Endorsement.target_id == target.id)
                    )

                    metrics = await session.get(GithubMetrics, target.id, with_for_update=True)
                    if metrics is not None:
                        metrics.endorsement_count = count
            except SQLAlchemyError as e:
                raise PersistenceError("endorsement toggle", str(e)) from e

        action = "endorsed" if endorsed else "withdrew endorsement of"
        self.logger.info(f"User {voter_id} {action} {target.username} (now {count})")

        if self.leaderboard_service is not None:
            await self.leaderboard_service.refresh_quietly()

        return EndorsementResult(target_id=target.id, endorsed=endorsed, endorsement_count=count)

    async def list_endorsed_usernames(self, voter_id: int) -> List[str]:
        """Usernames the voter currently endorses, alphabetically."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(User.username)
                .join(Endorsement, Endorsement.target_id == User.id)
                .where(Endorsement.voter_id == voter_id)
                .order_by(User.username)
            )
            return [row[0] for row in result]
