"""
GitHub contribution fetcher.

Queries the GitHub GraphQL API for one user's all-time totals and trailing
window counts. Responses are parsed into typed snapshots here and nowhere
else: absent or null counts become 0 at this boundary, and every failure
surfaces as a FetchError classified as transient, not_found or protocol.

No retries happen here; retry policy belongs to the sync orchestrator.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from gitrank.config import Config
from gitrank.constants import TimeWindow
from gitrank.data_models.metrics import ContributionSnapshot, TopRepo, WindowCounts
from gitrank.utils.exceptions import FetchError
from gitrank.utils.logger import setup_logger

logger = setup_logger(__name__)

TOTALS_QUERY = """
query($login: String!) {
  user(login: $login) {
    repositories(first: 100, ownerAffiliations: OWNER, isFork: false) {
      nodes { stargazerCount }
      pageInfo { hasNextPage endCursor }
    }
    pullRequests(states: MERGED) { totalCount }
    contributionsCollection { contributionYears }
  }
}
"""

REPOSITORY_PAGE_QUERY = """
query($login: String!, $cursor: String) {
  user(login: $login) {
    repositories(first: 100, after: $cursor, ownerAffiliations: OWNER, isFork: false) {
      nodes { stargazerCount }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

WINDOW_QUERY = """
query($login: String!, $from: DateTime!, $to: DateTime!) {
  user(login: $login) {
    contributionsCollection(from: $from, to: $to) { totalCommitContributions }
  }
}
"""

MERGED_PR_PAGE_QUERY = """
query($login: String!, $cursor: String) {
  user(login: $login) {
    pullRequests(states: MERGED, first: 100, after: $cursor, orderBy: {field: UPDATED_AT, direction: DESC}) {
      nodes { mergedAt }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

TOP_REPOS_QUERY = """
query($login: String!, $limit: Int!) {
  user(login: $login) {
    repositories(first: $limit, ownerAffiliations: OWNER, isFork: false, orderBy: {field: STARGAZERS, direction: DESC}) {
      nodes {
        name
        description
        url
        stargazerCount
        primaryLanguage { name color }
      }
    }
  }
}
"""


def _count(node: Optional[Dict[str, Any]], key: str) -> int:
    """Read a non-negative count, treating an absent or null value as 0."""
    if node is None:
        return 0
    value = node.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"field '{key}' is not a non-negative integer: {value!r}")
    return value


def _connection(node: Optional[Dict[str, Any]], key: str) -> Tuple[List[Dict[str, Any]], bool, Optional[str]]:
    """Read (nodes, has_next_page, end_cursor) from a GraphQL connection."""
    connection = (node or {}).get(key) or {}
    nodes = [n for n in (connection.get('nodes') or []) if n is not None]
    page_info = connection.get('pageInfo') or {}
    return nodes, bool(page_info.get('hasNextPage')), page_info.get('endCursor')


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class GitHubClient:
    """
    Async GitHub GraphQL client for contribution metrics.

    Usage:
        async with GitHubClient() as client:
            snapshot = await client.fetch_contribution_metrics("octocat")
    """

    def __init__(
        self,
        token: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
        graphql_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_merged_pr_pages: Optional[int] = None,
        max_repository_pages: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.token = token if token is not None else Config.GITHUB_TOKEN
        self.graphql_url = graphql_url or Config.GITHUB_GRAPHQL_URL
        self.timeout = timeout if timeout is not None else Config.GITHUB_TIMEOUT
        self.max_merged_pr_pages = max_merged_pr_pages or Config.MAX_MERGED_PR_PAGES
        self.max_repository_pages = max_repository_pages or Config.MAX_REPOSITORY_PAGES
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=self.timeout)

    async def __aenter__(self) -> 'GitHubClient':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        if self._owns_http:
            await self.http.aclose()

    async def graphql(self, handle: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one GraphQL query and return the `user` object.

        Raises:
            FetchError: transient on network/timeout/429/5xx, not_found when
                the user does not exist, protocol for anything malformed
        """
        if not self.token:
            raise FetchError(FetchError.PROTOCOL, handle, "missing GITHUB_TOKEN")

        try:
            response = await self.http.post(
                self.graphql_url,
                json={'query': query, 'variables': variables},
                headers={
                    'Authorization': f'Bearer {self.token}',
                    'Content-Type': 'application/json',
                    'User-Agent': 'gitrank-sync',
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise FetchError(FetchError.TRANSIENT, handle, f"timeout: {e!r}") from e
        except httpx.TransportError as e:
            raise FetchError(FetchError.TRANSIENT, handle, f"network error: {e!r}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise FetchError(FetchError.TRANSIENT, handle, f"GitHub API error: {status}")
        if status == 403 and (
            response.headers.get('x-ratelimit-remaining') == '0'
            or 'rate limit' in response.text.lower()
        ):
            raise FetchError(FetchError.TRANSIENT, handle, "GitHub API rate limit exceeded")
        if status != 200:
            raise FetchError(FetchError.PROTOCOL, handle, f"GitHub API error: {status} {response.reason_phrase}")

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(FetchError.PROTOCOL, handle, "response body is not JSON") from e
        if not isinstance(payload, dict):
            raise FetchError(FetchError.PROTOCOL, handle, "response body is not a JSON object")

        errors = payload.get('errors')
        if errors:
            error_types = {e.get('type') for e in errors if isinstance(e, dict)}
            messages = ", ".join(str(e.get('message', e)) if isinstance(e, dict) else str(e) for e in errors)
            if 'NOT_FOUND' in error_types:
                raise FetchError(FetchError.NOT_FOUND, handle, messages)
            if 'RATE_LIMITED' in error_types:
                raise FetchError(FetchError.TRANSIENT, handle, messages)
            raise FetchError(FetchError.PROTOCOL, handle, f"GitHub GraphQL error: {messages}")

        data = payload.get('data')
        if not isinstance(data, dict):
            raise FetchError(FetchError.PROTOCOL, handle, "response has no data object")
        user = data.get('user')
        if user is None:
            raise FetchError(FetchError.NOT_FOUND, handle, f'GitHub user "{handle}" not found')
        if not isinstance(user, dict):
            raise FetchError(FetchError.PROTOCOL, handle, "user field is not an object")
        return user

    async def fetch_contribution_metrics(self, handle: str) -> ContributionSnapshot:
        """
        Fetch all-time totals and trailing window counts for one user.

        Args:
            handle: GitHub login

        Returns:
            ContributionSnapshot with stars, all-time commits and merges,
            and per-window commit and merge counts

        Raises:
            FetchError: See graphql()
        """
        if not handle:
            raise FetchError(FetchError.NOT_FOUND, handle, "empty GitHub handle")

        now = self.clock()
        stars, merged_prs_all, years = await self._fetch_totals(handle)
        commits_all = await self._fetch_all_time_commits(handle, years)

        window_starts = {
            window: now - duration for window, duration in TimeWindow.DURATIONS.items()
        }
        window_commits = {}
        for window, start in window_starts.items():
            window_commits[window] = await self._fetch_window_commits(handle, start, now)

        merged_dates = await self._fetch_merged_pr_dates(handle)

        windows = {
            window: WindowCounts(
                commits=window_commits[window],
                merged_prs=sum(1 for merged_at in merged_dates if merged_at >= start),
            )
            for window, start in window_starts.items()
        }

        logger.debug(
            f"Fetched metrics for {handle}: stars={stars}, commits={commits_all}, "
            f"merged_prs={merged_prs_all}"
        )
        return ContributionSnapshot(
            handle=handle,
            stars=stars,
            commits_all=commits_all,
            merged_prs_all=merged_prs_all,
            windows=windows,
            fetched_at=now,
        )

    async def fetch_top_repositories(self, handle: str, limit: int = 3) -> List[TopRepo]:
        """Get the user's most-starred owned, non-fork repositories."""
        user = await self.graphql(handle, TOP_REPOS_QUERY, {'login': handle, 'limit': limit})
        try:
            nodes, _, _ = _connection(user, 'repositories')
            repos = []
            for node in nodes:
                language = node.get('primaryLanguage') or {}
                repos.append(TopRepo(
                    name=node['name'],
                    description=node.get('description'),
                    url=node['url'],
                    stargazer_count=_count(node, 'stargazerCount'),
                    primary_language=language.get('name'),
                    language_color=language.get('color'),
                ))
            return repos
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(FetchError.PROTOCOL, handle, f"malformed repositories response: {e}") from e

    async def _fetch_totals(self, handle: str) -> Tuple[int, int, List[int]]:
        """Stars over owned non-forks, all-time merged PRs and contribution years."""
        user = await self.graphql(handle, TOTALS_QUERY, {'login': handle})
        try:
            nodes, has_next, cursor = _connection(user, 'repositories')
            stars = sum(_count(node, 'stargazerCount') for node in nodes)
            merged_prs_all = _count(user.get('pullRequests'), 'totalCount')
            collection = user.get('contributionsCollection') or {}
            years = sorted({int(year) for year in (collection.get('contributionYears') or [])})
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(FetchError.PROTOCOL, handle, f"malformed totals response: {e}") from e

        pages = 1
        while has_next and pages < self.max_repository_pages:
            page = await self.graphql(handle, REPOSITORY_PAGE_QUERY, {'login': handle, 'cursor': cursor})
            try:
                nodes, has_next, cursor = _connection(page, 'repositories')
                stars += sum(_count(node, 'stargazerCount') for node in nodes)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise FetchError(FetchError.PROTOCOL, handle, f"malformed repositories page: {e}") from e
            pages += 1

        if has_next:
            logger.warning(f"Stopped counting stars for {handle} after {pages} repository pages")

        return stars, merged_prs_all, years

    async def _fetch_all_time_commits(self, handle: str, years: List[int]) -> int:
        """Sum commit contributions over every contribution year in one query."""
        if not years:
            return 0

        # A contributions collection spans at most one year, so alias one per year
        fields = "\n".join(
            f'    y{year}: contributionsCollection(from: "{year}-01-01T00:00:00Z", '
            f'to: "{year}-12-31T23:59:59Z") {{ totalCommitContributions }}'
            for year in years
        )
        query = f"query($login: String!) {{\n  user(login: $login) {{\n{fields}\n  }}\n}}"

        user = await self.graphql(handle, query, {'login': handle})
        try:
            return sum(_count(user.get(f'y{year}'), 'totalCommitContributions') for year in years)
        except (TypeError, ValueError, AttributeError) as e:
            raise FetchError(FetchError.PROTOCOL, handle, f"malformed yearly contributions: {e}") from e

    async def _fetch_window_commits(self, handle: str, start: datetime, end: datetime) -> int:
        user = await self.graphql(handle, WINDOW_QUERY, {
            'login': handle,
            'from': _isoformat(start),
            'to': _isoformat(end),
        })
        try:
            return _count(user.get('contributionsCollection'), 'totalCommitContributions')
        except (TypeError, ValueError, AttributeError) as e:
            raise FetchError(FetchError.PROTOCOL, handle, f"malformed window contributions: {e}") from e

    async def _fetch_merged_pr_dates(self, handle: str) -> List[datetime]:
        """Merge timestamps of the most recently updated merged PRs (bounded)."""
        merged_dates: List[datetime] = []
        cursor = None
        for _ in range(self.max_merged_pr_pages):
            user = await self.graphql(handle, MERGED_PR_PAGE_QUERY, {'login': handle, 'cursor': cursor})
            try:
                nodes, has_next, cursor = _connection(user, 'pullRequests')
                for node in nodes:
                    merged_at = node.get('mergedAt')
                    if merged_at:
                        merged_dates.append(_parse_timestamp(merged_at))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise FetchError(FetchError.PROTOCOL, handle, f"malformed pull request page: {e}") from e
            if not has_next:
                break
        return merged_dates
