from sqlalchemy import (
    Column, Integer, Float, String, DateTime, Boolean,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from gitrank.config import Config

Base = declarative_base()


class User(Base):
    """User directory row; owned by the identity layer, read by the engine."""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    github_username = Column(String(100), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    program = Column(String(100), nullable=True)

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    metrics = relationship("GithubMetrics", back_populates="user", uselist=False, cascade="all, delete-orphan")
    rating = relationship("EloRating", back_populates="user", uselist=False, cascade="all, delete-orphan")

    @property
    def can_sync(self) -> bool:
        return bool(self.is_verified and self.github_username)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', github='{self.github_username}')>"


class GithubMetrics(Base):
    """Per-user contribution snapshot, replaced wholesale on every sync."""
    __tablename__ = 'github_metrics'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)

    # All-time totals (stars are never windowed)
    stars = Column(Integer, nullable=False, default=0)
    commits_all = Column(Integer, nullable=False, default=0)
    prs_all = Column(Integer, nullable=False, default=0)
    score_all = Column(Integer, nullable=False, default=0)

    # Trailing windows
    commits_7d = Column(Integer, nullable=False, default=0)
    prs_7d = Column(Integer, nullable=False, default=0)
    score_7d = Column(Integer, nullable=False, default=0)
    commits_30d = Column(Integer, nullable=False, default=0)
    prs_30d = Column(Integer, nullable=False, default=0)
    score_30d = Column(Integer, nullable=False, default=0)
    commits_1y = Column(Integer, nullable=False, default=0)
    prs_1y = Column(Integer, nullable=False, default=0)
    score_1y = Column(Integer, nullable=False, default=0)

    # Denormalized from endorsements; recomputed on every toggle
    endorsement_count = Column(Integer, nullable=False, default=0)

    last_synced = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="metrics")

    # Columns written by a sync; everything else is owned elsewhere
    SYNCED_COLUMNS = (
        'stars', 'commits_all', 'prs_all', 'score_all',
        'commits_7d', 'prs_7d', 'score_7d',
        'commits_30d', 'prs_30d', 'score_30d',
        'commits_1y', 'prs_1y', 'score_1y',
    )

    __table_args__ = (
        CheckConstraint('stars >= 0', name='ck_metrics_stars_non_negative'),
        CheckConstraint('endorsement_count >= 0', name='ck_metrics_endorsements_non_negative'),
    )

    def snapshot(self) -> dict:
        """Synced metric columns as a plain dict."""
        return {column: getattr(self, column) for column in self.SYNCED_COLUMNS}

    @property
    def has_contributions(self) -> bool:
        return (self.commits_all or 0) + (self.prs_all or 0) > 0

    def __repr__(self):
        return f"<GithubMetrics(user_id={self.user_id}, score_all={self.score_all}, stars={self.stars})>"


class Endorsement(Base):
    """Directed endorsement edge from voter to target."""
    __tablename__ = 'endorsements'

    id = Column(Integer, primary_key=True)
    voter_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    target_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        UniqueConstraint('voter_id', 'target_id', name='uq_endorsement_pair'),
        CheckConstraint('voter_id != target_id', name='ck_no_self_endorsement'),
    )

    def __repr__(self):
        return f"<Endorsement(voter_id={self.voter_id}, target_id={self.target_id})>"


class EloRating(Base):
    """Battle rating, one scalar per user."""
    __tablename__ = 'elo_ratings'

    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    rating = Column(Float, nullable=False, default=Config.ELO_BASELINE)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="rating")

    def __repr__(self):
        return f"<EloRating(user_id={self.user_id}, rating={self.rating})>"


class EloMatch(Base):
    """Append-only log of battle votes."""
    __tablename__ = 'elo_matches'

    id = Column(Integer, primary_key=True)
    winner_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    loser_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    voter_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    # Token id of the matchup this vote consumed; one vote per issued matchup
    matchup_id = Column(String(36), nullable=True, unique=True)

    winner_elo_before = Column(Float, nullable=False)
    winner_elo_after = Column(Float, nullable=False)
    loser_elo_before = Column(Float, nullable=False)
    loser_elo_after = Column(Float, nullable=False)

    created_at = Column(DateTime, default=func.now(), nullable=False)

    winner = relationship("User", foreign_keys=[winner_id])
    loser = relationship("User", foreign_keys=[loser_id])

    __table_args__ = (
        CheckConstraint('winner_id != loser_id', name='ck_match_distinct_players'),
        Index('ix_elo_matches_winner_created', 'winner_id', 'created_at'),
        Index('ix_elo_matches_loser_created', 'loser_id', 'created_at'),
    )

    @property
    def winner_change(self) -> float:
        return self.winner_elo_after - self.winner_elo_before

    @property
    def loser_change(self) -> float:
        return self.loser_elo_after - self.loser_elo_before

    def __repr__(self):
        return f"<EloMatch(id={self.id}, winner={self.winner_id}, loser={self.loser_id}, change={self.winner_change})>"


class LeaderboardRow(Base):
    """Cached ranking projection; fully rebuilt by the leaderboard refresh."""
    __tablename__ = 'leaderboard_rows'

    user_id = Column(Integer, primary_key=True)
    username = Column(String(100), nullable=False)
    github_username = Column(String(100), nullable=True)
    program = Column(String(100), nullable=True)
    is_verified = Column(Boolean, default=True)

    stars = Column(Integer, nullable=False, default=0)
    commits_all = Column(Integer, nullable=False, default=0)
    prs_all = Column(Integer, nullable=False, default=0)
    score_all = Column(Integer, nullable=False, default=0)
    commits_7d = Column(Integer, nullable=False, default=0)
    prs_7d = Column(Integer, nullable=False, default=0)
    score_7d = Column(Integer, nullable=False, default=0)
    commits_30d = Column(Integer, nullable=False, default=0)
    prs_30d = Column(Integer, nullable=False, default=0)
    score_30d = Column(Integer, nullable=False, default=0)
    commits_1y = Column(Integer, nullable=False, default=0)
    prs_1y = Column(Integer, nullable=False, default=0)
    score_1y = Column(Integer, nullable=False, default=0)

    endorsement_count = Column(Integer, nullable=False, default=0)
    elo_rating = Column(Float, nullable=False, default=Config.ELO_BASELINE)

    refreshed_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<LeaderboardRow(user_id={self.user_id}, username='{self.username}')>"
