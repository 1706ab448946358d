from datetime import datetime
from typing import Optional, List, Tuple, Dict
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from contextlib import asynccontextmanager

from gitrank.config import Config
from gitrank.database.models import (
    Base, User, GithubMetrics, EloRating, Endorsement
)
from gitrank.utils.exceptions import PersistenceError
from gitrank.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: str = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url or Config.get_async_database_url()
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context will be committed together on success,
        or rolled back together on failure.

        Usage:
            async with db.transaction() as session:
                winner.rating = new_winner_rating
                loser.rating = new_loser_rating
                session.add(EloMatch(...))
                # All operations commit together here

        Exceptions must be allowed to propagate out of the context for
        rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # User directory
    async def create_user(self, username: str, github_username: str = None,
                          is_verified: bool = False, program: str = None) -> User:
        """Create a user directory row (used by the identity layer and seeding)"""
        async with self.transaction() as session:
            user = User(
                username=username,
                github_username=github_username,
                is_verified=is_verified,
                program=program
            )
            session.add(user)
            await session.flush()
            await session.refresh(user)
            return user

    async def mark_verified(self, user_id: int, github_username: str = None) -> Optional[User]:
        """Flag a user as verified, optionally recording their GitHub handle"""
        async with self.transaction() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            user.is_verified = True
            if github_username:
                user.github_username = github_username
            return user

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self.get_session() as session:
            return await session.get(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with self.get_session() as session:
            result = await session.execute(
                select(User).where(User.username == username)
            )
            return result.scalar_one_or_none()

    async def get_sync_candidates(self) -> List[Tuple[int, str]]:
        """Get (id, github_username) for every verified user with a handle"""
        async with self.get_session() as session:
            result = await session.execute(
                select(User.id, User.github_username)
                .where(User.is_verified == True)
                .where(User.github_username.isnot(None))
                .where(User.github_username != '')
                .order_by(User.id)
            )
            return [(row.id, row.github_username) for row in result]

    # Metrics
    async def get_metrics(self, user_id: int) -> Optional[GithubMetrics]:
        async with self.get_session() as session:
            return await session.get(GithubMetrics, user_id)

    async def upsert_metrics(self, user_id: int, values: Dict[str, int],
                             synced_at: datetime) -> GithubMetrics:
        """
        Replace a user's synced metric columns.

        Every synced column is overwritten from `values`. The denormalized
        endorsement count is counted from the edges when the row is created
        and left to the endorsement toggle afterwards.

        Raises:
            PersistenceError: If the write fails
        """
        missing = [c for c in GithubMetrics.SYNCED_COLUMNS if c not in values]
        if missing:
            raise ValueError(f"Metrics upsert missing columns: {', '.join(missing)}")

        try:
            async with self.transaction() as session:
                metrics = await session.get(GithubMetrics, user_id, with_for_update=True)
                if metrics is None:
                    endorsements = await session.scalar(
                        select(func.count(Endorsement.id)).where(Endorsement.target_id == user_id)
                    )
                    metrics = GithubMetrics(user_id=user_id, endorsement_count=endorsements)
                    session.add(metrics)
                for column in GithubMetrics.SYNCED_COLUMNS:
                    setattr(metrics, column, values[column])
                metrics.last_synced = synced_at
                return metrics
        except SQLAlchemyError as e:
            raise PersistenceError(f"metrics upsert for user {user_id}", str(e)) from e

    # Ratings
    async def get_rating(self, user_id: int) -> float:
        """Get a user's rating, the baseline if they have never battled"""
        async with self.get_session() as session:
            record = await session.get(EloRating, user_id)
            return record.rating if record else Config.ELO_BASELINE

    async def get_or_create_rating(self, session: AsyncSession, user_id: int) -> EloRating:
        """Get or create a user's rating row, locked for update (session-aware)"""
        # NOTE: On SQLite, with_for_update() relies on the database-level write lock,
        # not true row-level locking.
        result = await session.execute(
            select(EloRating).where(EloRating.user_id == user_id).with_for_update()
        )
        record = result.scalar_one_or_none()

        if record is None:
            record = EloRating(user_id=user_id, rating=Config.ELO_BASELINE)
            session.add(record)
            await session.flush()

        return record
