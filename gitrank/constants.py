"""
Project-wide constants for GitRank.

This module contains the scoring weights and window definitions used throughout
the codebase to keep the ranking formula in one place.
"""

from datetime import timedelta
from typing import Optional


class ScoringConstants:
    """Weights of the rank score formula."""

    STAR_WEIGHT = 10
    PR_WEIGHT = 5
    COMMIT_WEIGHT = 1

    # Community signals, added at display time and never windowed
    ENDORSEMENT_WEIGHT = 3
    ELO_WEIGHT = 0.5


class TimeWindow:
    """Trailing windows a score can be computed over."""

    WEEK = "7d"
    MONTH = "30d"
    YEAR = "1y"
    ALL = "all"

    # Windows backed by a trailing time period (ALL is unbounded)
    DURATIONS = {
        WEEK: timedelta(days=7),
        MONTH: timedelta(days=30),
        YEAR: timedelta(days=365),
    }

    CHOICES = (WEEK, MONTH, YEAR, ALL)

    LABELS = {
        WEEK: "7 days",
        MONTH: "30 days",
        YEAR: "1 year",
        ALL: "All time",
    }

    @classmethod
    def validate(cls, window: str) -> bool:
        return window in cls.CHOICES


class Faculty:
    """Faculties that programs are grouped into for leaderboard filtering."""

    ENGINEERING = "Engineering"
    MATH = "Math"
    OTHER = "Other"

    CHOICES = (ENGINEERING, MATH, OTHER)

    PROGRAMS = {
        "Software Engineering": ENGINEERING,
        "Computer Engineering": ENGINEERING,
        "Electrical Engineering": ENGINEERING,
        "Mechatronics Engineering": ENGINEERING,
        "Systems Design Engineering": ENGINEERING,
        "Management Engineering": ENGINEERING,
        "Biomedical Engineering": ENGINEERING,
        "Chemical Engineering": ENGINEERING,
        "Civil Engineering": ENGINEERING,
        "Environmental Engineering": ENGINEERING,
        "Geological Engineering": ENGINEERING,
        "Mechanical Engineering": ENGINEERING,
        "Nanotechnology Engineering": ENGINEERING,
        "Architectural Engineering": ENGINEERING,
        "Computer Science": MATH,
        "Mathematics": MATH,
        "Computing and Financial Management": MATH,
        "Other": OTHER,
    }

    @classmethod
    def of(cls, program: Optional[str]) -> Optional[str]:
        """Faculty of a program; unlisted engineering programs still count as Engineering."""
        if not program:
            return None
        if program in cls.PROGRAMS:
            return cls.PROGRAMS[program]
        if "engineering" in program.lower():
            return cls.ENGINEERING
        return cls.OTHER


class PaginationConstants:
    """Constants for paginated displays."""

    DEFAULT_PAGE_SIZE = 25
    MAX_PAGE_SIZE = 100

    # Battle log
    DEFAULT_BATTLE_LOG_LIMIT = 100


class CacheConstants:
    """Constants for caching behavior."""

    # TTL for cached leaderboard pages (seconds)
    LEADERBOARD_CACHE_TTL = 180

    # Maximum cache size (number of entries)
    LEADERBOARD_CACHE_MAX_SIZE = 500
