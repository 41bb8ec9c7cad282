"""
Jira activity feed.

Supplies the caller's active issues plus worklogs, comments and field changes
inside a UTC date window, read through the Atlassian API gateway with the
caller's stored OAuth token.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from scrum_update.core.config import settings
from scrum_update.core.exceptions import JiraError, JiraNotConnectedError
from scrum_update.core.logging import get_logger
from scrum_update.database.models import JiraOAuthTokenDB
from scrum_update.domain.scrum_update import as_utc, utc_now

logger = get_logger(__name__)

SCRUM_CONTEXT_FIELDS = "summary,status,updated,project,worklog,comment"


# =============================================================================
# Models
# =============================================================================


class ActivityWindow(BaseModel):
    """Half-open UTC window ``[yesterday 00:00, today + 1 00:00)``."""

    generated_at: datetime
    yesterday: date
    today: date

    @classmethod
    def for_today(cls, now: Optional[datetime] = None) -> "ActivityWindow":
        now = as_utc(now or utc_now())
        today = now.date()
        return cls(generated_at=now, yesterday=today - timedelta(days=1), today=today)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.yesterday, time.min, tzinfo=timezone.utc)

    @property
    def end(self) -> datetime:
        return datetime.combine(self.today + timedelta(days=1), time.min, tzinfo=timezone.utc)

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) < self.end


class JiraScrumIssue(BaseModel):
    key: str
    summary: str = ""
    status: str = ""
    updated: datetime
    project_name: str = ""


class JiraWorklogActivity(BaseModel):
    issue_key: str
    issue_summary: str = ""
    author_id: Optional[str] = None
    started: datetime
    time_spent_seconds: int = 0
    comment: str = ""


class JiraCommentActivity(BaseModel):
    issue_key: str
    issue_summary: str = ""
    author_id: Optional[str] = None
    created: datetime
    comment: str = ""


class JiraChangeActivity(BaseModel):
    issue_key: str
    issue_summary: str = ""
    author_id: Optional[str] = None
    changed: datetime
    field: str = ""
    from_value: str = ""
    to_value: str = ""


class JiraScrumContext(BaseModel):
    """Everything the Jira draft needs for one window, newest first."""

    window: ActivityWindow
    active_issues: list[JiraScrumIssue] = Field(default_factory=list)
    worklogs: list[JiraWorklogActivity] = Field(default_factory=list)
    comments: list[JiraCommentActivity] = Field(default_factory=list)
    activities: list[JiraChangeActivity] = Field(default_factory=list)


class ActivityFeed(Protocol):
    """Source of a user's work activity."""

    async def fetch_context(self, user_id: str, window: ActivityWindow) -> JiraScrumContext:
        """Fetch activity for ``user_id``; raises JiraNotConnectedError when unlinked."""
        ...


# =============================================================================
# Parsing helpers
# =============================================================================


def extract_document_text(node: Any) -> str:
    """Flatten Atlassian document format (or a plain string) to text."""
    if isinstance(node, str):
        return node.strip()

    parts: list[str] = []

    def walk(value: Any) -> None:
        if isinstance(value, dict):
            text = value.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
            walk(value.get("content"))
        elif isinstance(value, list):
            for child in value:
                walk(child)

    walk(node)
    return " ".join(parts).strip()


def parse_jira_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse Jira timestamps such as ``2026-10-17T09:15:00.000+0000``."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Jira omits the colon in the UTC offset
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        logger.debug("Unparseable Jira timestamp", value=value)
        return None


def _name(container: Any, key: str) -> str:
    value = container.get(key) if isinstance(container, dict) else None
    if isinstance(value, dict):
        return str(value.get("name") or "")
    return ""


def _account_id(entry: dict[str, Any]) -> Optional[str]:
    author = entry.get("author")
    return author.get("accountId") if isinstance(author, dict) else None


def build_scrum_context(issues: list[dict[str, Any]], window: ActivityWindow) -> JiraScrumContext:
    """Turn raw search results into a scrum context restricted to ``window``."""
    context = JiraScrumContext(window=window)

    for issue in issues:
        fields = issue.get("fields")
        if not isinstance(fields, dict):
            continue

        key = str(issue.get("key") or "")
        summary = str(fields.get("summary") or "")
        context.active_issues.append(
            JiraScrumIssue(
                key=key,
                summary=summary,
                status=_name(fields, "status"),
                updated=parse_jira_datetime(fields.get("updated")) or window.start,
                project_name=_name(fields, "project"),
            )
        )

        for worklog in (fields.get("worklog") or {}).get("worklogs") or []:
            started = parse_jira_datetime(worklog.get("started"))
            if started is None or not window.contains(started):
                continue
            context.worklogs.append(
                JiraWorklogActivity(
                    issue_key=key,
                    issue_summary=summary,
                    author_id=_account_id(worklog),
                    started=started,
                    time_spent_seconds=int(worklog.get("timeSpentSeconds") or 0),
                    comment=extract_document_text(worklog.get("comment")),
                )
            )

        for comment in (fields.get("comment") or {}).get("comments") or []:
            created = parse_jira_datetime(comment.get("created"))
            if created is None or not window.contains(created):
                continue
            context.comments.append(
                JiraCommentActivity(
                    issue_key=key,
                    issue_summary=summary,
                    author_id=_account_id(comment),
                    created=created,
                    comment=extract_document_text(comment.get("body")),
                )
            )

        for history in (issue.get("changelog") or {}).get("histories") or []:
            changed = parse_jira_datetime(history.get("created"))
            if changed is None or not window.contains(changed):
                continue
            for item in history.get("items") or []:
                context.activities.append(
                    JiraChangeActivity(
                        issue_key=key,
                        issue_summary=summary,
                        author_id=_account_id(history),
                        changed=changed,
                        field=str(item.get("field") or ""),
                        from_value=str(item.get("fromString") or ""),
                        to_value=str(item.get("toString") or ""),
                    )
                )

    context.active_issues.sort(key=lambda x: x.updated, reverse=True)
    context.worklogs.sort(key=lambda x: x.started, reverse=True)
    context.comments.sort(key=lambda x: x.created, reverse=True)
    context.activities.sort(key=lambda x: x.changed, reverse=True)
    return context


# =============================================================================
# Client
# =============================================================================


class JiraActivityFeed:
    """
    Activity feed backed by the Jira Cloud REST API.

    The caller's token record is looked up by Atlassian account id; token
    refresh is not performed, an expired token counts as not connected.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        api_base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_results: Optional[int] = None,
        jql: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the feed.

        Args:
            session_factory: Async SQLAlchemy session factory for token lookup
            api_base_url: Atlassian API gateway URL
            timeout: Request timeout in seconds
            max_results: Max issues per search (clamped to 1..100)
            jql: JQL selecting the caller's active issues
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.session_factory = session_factory
        self.api_base_url = (api_base_url or settings.atlassian.api_base_url).rstrip("/")
        self.timeout = timeout or settings.atlassian.timeout
        self.max_results = max(1, min(max_results or settings.atlassian.max_results, 100))
        self.jql = jql or settings.atlassian.active_issues_jql
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.api_base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_connected_token(self, user_id: str) -> JiraOAuthTokenDB:
        async with self.session_factory() as db:
            result = await db.execute(
                select(JiraOAuthTokenDB)
                .where(JiraOAuthTokenDB.authenticated_user_id == user_id)
                .order_by(JiraOAuthTokenDB.updated_at.desc())
                .limit(1)
            )
            token = result.scalar_one_or_none()

        if token is None:
            raise JiraNotConnectedError()
        if not token.authenticated_user_id or not token.authenticated_user_id.strip():
            raise JiraNotConnectedError(
                "Connected Jira account is missing authenticated user identity. "
                "Reconnect your Jira account."
            )
        if not token.cloud_id:
            raise JiraNotConnectedError("No Jira Cloud site is accessible with this token.")
        if as_utc(token.access_token_expires_at) <= utc_now():
            raise JiraNotConnectedError("Jira access token has expired. Reconnect your Jira account.")
        return token

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _search_issues(
        self,
        cloud_id: str,
        access_token: str,
        fields: str,
        expand: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Run a JQL search.

        Raises:
            JiraError: On a non-success response
        """
        client = await self._get_client()
        params = {"jql": self.jql, "maxResults": str(self.max_results), "fields": fields}
        if expand:
            params["expand"] = expand

        endpoint = f"/ex/jira/{cloud_id}/rest/api/3/search/jql"
        response = await client.get(
            endpoint,
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Failed to search Jira issues",
                status_code=e.response.status_code,
                response_text=e.response.text,
            )
            raise JiraError(
                "Failed to fetch Jira issues.",
                details={"status_code": e.response.status_code},
            ) from e

        issues = response.json().get("issues")
        return issues if isinstance(issues, list) else []

    async def fetch_context(self, user_id: str, window: ActivityWindow) -> JiraScrumContext:
        token = await self._get_connected_token(user_id)

        try:
            issues = await self._search_issues(
                token.cloud_id,
                token.access_token,
                SCRUM_CONTEXT_FIELDS,
                expand="changelog",
            )
        except httpx.TransportError as e:
            logger.warning("Jira request error", error=str(e))
            raise JiraError(f"Request failed: {e}") from e

        context = build_scrum_context(issues, window)
        logger.info(
            "Jira scrum context fetched",
            user_id=user_id,
            issues=len(context.active_issues),
            worklogs=len(context.worklogs),
            comments=len(context.comments),
            activities=len(context.activities),
        )
        return context

    async def __aenter__(self) -> "JiraActivityFeed":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
