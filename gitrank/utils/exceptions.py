"""
Custom exceptions for the ranking engine with user-friendly error messages.
"""

class GitRankException(Exception):
    """Base exception for ranking engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class FetchError(GitRankException):
    """Raised when contribution data cannot be fetched from GitHub."""

    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    PROTOCOL = "protocol"

    def __init__(self, kind: str, handle: str, details: str = None):
        self.kind = kind
        self.handle = handle
        self.details = details
        super().__init__(
            f"GitHub fetch failed for '{handle}' ({kind}): {details}",
            f"Could not load GitHub data for '{handle}'."
        )

    @property
    def is_transient(self) -> bool:
        return self.kind == self.TRANSIENT


class PersistenceError(GitRankException):
    """Raised when database operations fail."""
    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        super().__init__(
            f"Database error during {operation}: {details}",
            "Database error occurred. Please try again later."
        )


class ValidationError(GitRankException):
    """Raised on caller misuse or business-rule violations."""
    kind = "validation"


class UnauthorizedError(ValidationError):
    """Raised when the acting user is not a verified user."""
    kind = "unauthorized"

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(
            f"User {user_id} is not verified",
            "You must verify your account first."
        )


class InvalidPairError(ValidationError):
    """Raised when a vote names an invalid or stale pairing."""
    kind = "invalid_pair"

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid matchup pair: {reason}",
            "This matchup is no longer valid. Please load a new one."
        )


class NotEnoughParticipantsError(ValidationError):
    """Raised when fewer than two users are eligible for a matchup."""
    kind = "not_enough_participants"

    def __init__(self, eligible: int):
        self.eligible = eligible
        super().__init__(
            f"Only {eligible} eligible participant(s), need at least 2",
            "Not enough participants for a battle yet."
        )


class UserNotFoundError(ValidationError):
    """Raised when a referenced user does not exist."""
    kind = "user_not_found"

    def __init__(self, identifier):
        super().__init__(
            f"User '{identifier}' not found",
            f"User '{identifier}' not found."
        )


class SelfEndorsementError(ValidationError):
    """Raised when a user tries to endorse themselves."""
    kind = "self_endorsement"

    def __init__(self, user_id: int):
        super().__init__(
            f"User {user_id} attempted to endorse themselves",
            "You cannot endorse yourself."
        )
