"""
Contribution data models for the GitHub fetch and sync pipeline.

Provides immutable data transfer objects for what the fetcher returns and
what a sync reports back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from gitrank.constants import TimeWindow


@dataclass(frozen=True)
class WindowCounts:
    """Contribution counts for one trailing window."""
    commits: int
    merged_prs: int


@dataclass(frozen=True)
class ContributionSnapshot:
    """Everything the fetcher learned about one GitHub user."""
    handle: str
    stars: int
    commits_all: int
    merged_prs_all: int
    windows: Dict[str, WindowCounts]
    fetched_at: datetime

    def window(self, window: str) -> WindowCounts:
        if window == TimeWindow.ALL:
            return WindowCounts(commits=self.commits_all, merged_prs=self.merged_prs_all)
        return self.windows[window]


@dataclass(frozen=True)
class TopRepo:
    """One of a user's most-starred repositories."""
    name: str
    description: Optional[str]
    url: str
    stargazer_count: int
    primary_language: Optional[str] = None
    language_color: Optional[str] = None


@dataclass(frozen=True)
class SyncOutcome:
    """Result of syncing one user."""
    user_id: int
    username: str
    status: str  # "ok" or the failure reason
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class SyncSummary:
    """Batch sync report."""
    synced: int
    total: int
    results: List[SyncOutcome] = field(default_factory=list)
    refreshed: bool = False

    @property
    def failed(self) -> List[SyncOutcome]:
        return [r for r in self.results if not r.ok]
