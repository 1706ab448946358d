"""
Rating Operations Module

Business logic for head-to-head battles: random matchup selection, signed
matchup tokens, and the atomic pairwise rating transfer applied when a
vote is cast.

Key functionality:
- get_random_matchup(): Pick two distinct eligible users uniformly at random
- submit_vote(): Validate a vote, move rating points from loser to winner
  and log the match, all in one transaction

Concurrency:
- Votes touching the same user serialize their read-modify-write through
  per-user locks taken in id order, backed by row locks on the rating rows
- Votes on disjoint pairs run fully in parallel
"""

import asyncio
import random
import time
import uuid
from typing import List, Optional, Tuple

import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gitrank.config import Config
from gitrank.data_models.battle import Matchup, MatchupUser, RatingDelta
from gitrank.database.models import User, GithubMetrics, EloRating, EloMatch
from gitrank.utils.elo import EloCalculator
from gitrank.utils.exceptions import (
    FetchError, InvalidPairError, NotEnoughParticipantsError,
    PersistenceError, UnauthorizedError
)
from gitrank.utils.locks import KeyedLock
from gitrank.utils.logger import setup_logger

logger = setup_logger(__name__)

TOKEN_ISSUER = "gitrank"
TOKEN_AUDIENCE = "gitrank-battle"


class RatingOperations:
    """
    Business logic operations for battles and the rating transfer.
    """

    def __init__(
        self,
        database,
        leaderboard_service=None,
        fetcher=None,
        rng: Optional[random.Random] = None,
        k_factor: Optional[int] = None,
        token_secret: Optional[str] = None,
        token_ttl: Optional[int] = None,
    ):
        """
        Args:
            database: Initialized Database
            leaderboard_service: Refreshed after each vote (optional)
            fetcher: GitHub client used to attach top repositories (optional)
            rng: Random source for matchup selection
            k_factor: Maximum rating points moved by one vote
            token_secret: HMAC secret for matchup tokens
            token_ttl: Matchup token lifetime in seconds
        """
        self.db = database
        self.leaderboard_service = leaderboard_service
        self.fetcher = fetcher
        self.rng = rng or random.SystemRandom()
        self.k_factor = k_factor or Config.ELO_K_FACTOR
        self.token_secret = token_secret or Config.MATCHUP_TOKEN_SECRET
        self.token_ttl = token_ttl or Config.MATCHUP_TOKEN_TTL
        self._rating_locks = KeyedLock()
        self.logger = logger

    # Matchups

    async def get_eligible_user_ids(self) -> List[int]:
        """Verified users with a handle and a non-empty contribution history."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(User.id)
                .join(GithubMetrics, GithubMetrics.user_id == User.id)
                .where(User.is_verified == True)
                .where(User.github_username.isnot(None))
                .where(User.github_username != '')
                .where(GithubMetrics.commits_all + GithubMetrics.prs_all > 0)
                .order_by(User.id)
            )
            return [row[0] for row in result]

    async def get_random_matchup(self, requester_id: Optional[int] = None,
                                 include_repos: bool = False) -> Matchup:
        """
        Pick two distinct eligible users for a head-to-head vote.

        Args:
            requester_id: The (already verified) user asking for a matchup;
                          bound into the token so only they can vote on it
            include_repos: Attach each user's top repositories

        Raises:
            NotEnoughParticipantsError: If fewer than two users are eligible
        """
        eligible = await self.get_eligible_user_ids()
        if len(eligible) < 2:
            raise NotEnoughParticipantsError(len(eligible))

        first_id, second_id = self.rng.sample(eligible, 2)

        async with self.db.get_session() as session:
            users = []
            for user_id in (first_id, second_id):
                user = await session.get(User, user_id)
                record = await session.get(EloRating, user_id)
                users.append(MatchupUser(
                    user_id=user.id,
                    username=user.username,
                    github_username=user.github_username,
                    rating=record.rating if record else Config.ELO_BASELINE,
                ))

        if include_repos and self.fetcher is not None:
            users = await self._attach_top_repos(users)

        token = self.issue_matchup_token(requester_id, first_id, second_id)
        return Matchup(users=(users[0], users[1]), battle_token=token)

    async def _attach_top_repos(self, users: List[MatchupUser]) -> List[MatchupUser]:
        async def top_repos(user: MatchupUser):
            try:
                return tuple(await self.fetcher.fetch_top_repositories(user.github_username))
            except FetchError as e:
                self.logger.warning(f"Failed to fetch top repos for {user.github_username}: {e}")
                return ()

        repos = await asyncio.gather(*(top_repos(user) for user in users))
        return [
            MatchupUser(u.user_id, u.username, u.github_username, u.rating, r)
            for u, r in zip(users, repos)
        ]

    def issue_matchup_token(self, voter_id: Optional[int], user_a: int, user_b: int) -> str:
        """Sign a token binding this exact pairing (and voter) for a later vote."""
        now = int(time.time())
        payload = {
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
            "iat": now,
            "exp": now + self.token_ttl,
            "jti": str(uuid.uuid4()),
            "pair": sorted([user_a, user_b]),
            "voter": voter_id,
        }
        return jwt.encode(payload, self.token_secret, algorithm="HS256")

    def verify_matchup_token(self, token: str, voter_id: int, winner_id: int, loser_id: int) -> str:
        """
        Check a matchup token against a vote.

        Returns:
            The token id

        Raises:
            InvalidPairError: If the token is invalid, expired, issued to a
                different voter or bound to a different pairing
        """
        try:
            payload = jwt.decode(
                token,
                self.token_secret,
                algorithms=["HS256"],
                audience=TOKEN_AUDIENCE,
                issuer=TOKEN_ISSUER,
                options={"require": ["exp", "iat", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidPairError("matchup token expired")
        except jwt.InvalidTokenError as e:
            raise InvalidPairError(f"matchup token invalid: {e}")

        if payload.get("voter") is not None and payload["voter"] != voter_id:
            raise InvalidPairError("matchup token was issued to a different voter")
        if payload.get("pair") != sorted([winner_id, loser_id]):
            raise InvalidPairError("vote does not match the issued pairing")
        return payload["jti"]

    # Votes

    async def submit_vote(self, voter_id: int, winner_id: int, loser_id: int,
                          matchup_token: Optional[str] = None) -> RatingDelta:
        """
        Record a vote and transfer rating points from loser to winner.

        Validation order: voter verified, winner != loser, both participants
        exist, then the matchup token (when given).

        Returns:
            RatingDelta with before/after ratings of both participants

        Raises:
            UnauthorizedError: If the voter is not verified
            InvalidPairError: If the pairing is invalid or stale
            PersistenceError: If the transaction fails
        """
        voter = await self.db.get_user(voter_id)
        if voter is None or not voter.is_verified:
            raise UnauthorizedError(voter_id)
        if winner_id == loser_id:
            raise InvalidPairError("winner and loser are the same user")

        for participant_id in (winner_id, loser_id):
            if await self.db.get_user(participant_id) is None:
                raise InvalidPairError(f"user {participant_id} does not exist")

        matchup_id = None
        if matchup_token is not None:
            matchup_id = self.verify_matchup_token(matchup_token, voter_id, winner_id, loser_id)

        async with self._rating_locks.hold_many((winner_id, loser_id)):
            try:
                async with self.db.transaction() as session:
                    delta = await self._apply_vote(session, voter_id, winner_id, loser_id, matchup_id)
            except IntegrityError as e:
                if matchup_id is not None:
                    raise InvalidPairError("matchup has already been voted on") from e
                raise PersistenceError("vote", str(e)) from e
            except SQLAlchemyError as e:
                raise PersistenceError("vote", str(e)) from e

        self.logger.info(
            f"Vote by {voter_id}: {winner_id} beat {loser_id} "
            f"({delta.winner_before:.2f}->{delta.winner_after:.2f}, {delta.loser_before:.2f}->{delta.loser_after:.2f})"
        )

        if self.leaderboard_service is not None:
            await self.leaderboard_service.refresh_quietly()

        return delta

    async def _apply_vote(self, session: AsyncSession, voter_id: int, winner_id: int,
                          loser_id: int, matchup_id: Optional[str] = None) -> RatingDelta:
        """Read both ratings, compute the transfer and write both plus the log entry."""
        winner_record = await self.db.get_or_create_rating(session, winner_id)
        loser_record = await self.db.get_or_create_rating(session, loser_id)

        winner_before, loser_before = winner_record.rating, loser_record.rating
        winner_after, loser_after = EloCalculator.calculate_vote_ratings(
            winner_before, loser_before, self.k_factor
        )

        winner_record.rating = winner_after
        loser_record.rating = loser_after

        match = await self._record_match(
            session, voter_id, winner_id, loser_id,
            (winner_before, winner_after), (loser_before, loser_after), matchup_id
        )

        return RatingDelta(
            match_id=match.id,
            winner_id=winner_id,
            loser_id=loser_id,
            winner_before=winner_before,
            winner_after=winner_after,
            loser_before=loser_before,
            loser_after=loser_after,
        )

    async def _record_match(self, session: AsyncSession, voter_id: int, winner_id: int, loser_id: int,
                            winner_change: Tuple[float, float], loser_change: Tuple[float, float],
                            matchup_id: Optional[str] = None) -> EloMatch:
        match = EloMatch(
            winner_id=winner_id,
            loser_id=loser_id,
            voter_id=voter_id,
            matchup_id=matchup_id,
            winner_elo_before=winner_change[0],
            winner_elo_after=winner_change[1],
            loser_elo_before=loser_change[0],
            loser_elo_after=loser_change[1],
        )
        session.add(match)
        await session.flush()
        return match
