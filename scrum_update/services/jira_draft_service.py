"""
Scrum drafts built from the caller's Jira activity.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime
from typing import TYPE_CHECKING, Callable, Optional

from scrum_update.clients.activity_feed import ActivityFeed, ActivityWindow, JiraScrumContext
from scrum_update.core.config import settings
from scrum_update.core.constants import (
    ACTIVITY_TEXT_LIMIT,
    CONTINUE_ACTIVE_WORK,
    JIRA_DRAFT_UNAVAILABLE,
    MAX_SCRUM_ITEMS,
    NO_BLOCKER,
    NO_YESTERDAY_UPDATES,
)
from scrum_update.core.exceptions import ExternalServiceError, JiraNotConnectedError
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, utc_now
from scrum_update.services.formatter import format_scrum_update
from scrum_update.services.identity import CurrentUserContext
from scrum_update.services.scrum_generator import is_scrum_command

if TYPE_CHECKING:
    from scrum_update.services.chat_orchestrator import Conversation

logger = get_logger(__name__)


def format_duration(seconds: int) -> str:
    """Render seconds as ``1h 30m``, ``1h`` or ``30m``."""
    if seconds <= 0:
        return "0m"
    hours, remainder = divmod(seconds, 3600)
    minutes = remainder // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def trim_text(text: Optional[str], limit: int = ACTIVITY_TEXT_LIMIT) -> str:
    """Collapse line breaks and cut to ``limit`` characters."""
    if not text or not text.strip():
        return ""
    flattened = text.strip().replace("\r", " ").replace("\n", " ")
    return flattened[:limit]


def _is_on(moment: datetime, day: date) -> bool:
    return moment.date() == day


class JiraScrumUpdateDraftService:
    """
    Builds today's draft from Jira worklogs, comments and field changes.

    Any failure to reach Jira (not connected, upstream error, deadline
    exceeded) results in no draft.
    """

    def __init__(
        self,
        activity_feed: ActivityFeed,
        user_context: CurrentUserContext,
        timeout: Optional[float] = None,
        max_items: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.activity_feed = activity_feed
        self.user_context = user_context
        self.timeout = settings.scrum.activity_feed_timeout if timeout is None else timeout
        self.max_items = max_items or MAX_SCRUM_ITEMS
        self.clock = clock

    async def generate_draft(self) -> Optional[GeneratedScrumUpdate]:
        """Fetch the caller's activity and build a draft, or None."""
        user_id = await self.user_context.get_required_user_id()
        window = ActivityWindow.for_today(self.clock())

        try:
            context = await asyncio.wait_for(
                self.activity_feed.fetch_context(user_id, window),
                timeout=self.timeout,
            )
        except JiraNotConnectedError as e:
            logger.info("Jira draft skipped, not connected", user_id=user_id, reason=e.message)
            return None
        except ExternalServiceError as e:
            logger.warning("Jira draft skipped, feed failed", user_id=user_id, error=e.message)
            return None
        except asyncio.TimeoutError:
            logger.warning("Jira draft skipped, feed timed out", user_id=user_id, timeout=self.timeout)
            return None

        return self.build_draft(user_id, context)

    async def try_generate(self, conversation: "Conversation") -> Optional[GeneratedScrumUpdate]:
        if not is_scrum_command(conversation.last_user_text()):
            return None
        return await self.generate_draft()

    def build_draft(self, user_id: str, context: JiraScrumContext) -> GeneratedScrumUpdate:
        yesterday = self._yesterday_items(user_id, context)
        today = self._today_items(user_id, context)

        return GeneratedScrumUpdate(
            scrum_date=context.window.today,
            generated_time=context.window.generated_at,
            what_i_did_yesterday="; ".join(yesterday) if yesterday else NO_YESTERDAY_UPDATES,
            what_i_plan_to_do_today="; ".join(today) if today else CONTINUE_ACTIVE_WORK,
            blocker=NO_BLOCKER,
        )

    def _yesterday_items(self, user_id: str, context: JiraScrumContext) -> list[str]:
        day = context.window.yesterday
        items: list[str] = []

        for worklog in context.worklogs:
            if worklog.author_id != user_id or not _is_on(worklog.started, day):
                continue
            entry = f"{worklog.issue_key}: logged {format_duration(worklog.time_spent_seconds)}"
            comment = trim_text(worklog.comment)
            if comment:
                entry += f" ({comment})"
            items.append(entry)

        for comment in context.comments:
            if comment.author_id != user_id or not _is_on(comment.created, day):
                continue
            items.append(f"{comment.issue_key}: commented '{trim_text(comment.comment)}'")

        for change in context.activities:
            if change.author_id != user_id or not _is_on(change.changed, day):
                continue
            items.append(
                f"{change.issue_key}: updated {trim_text(change.field)} "
                f"from '{trim_text(change.from_value)}' to '{trim_text(change.to_value)}'"
            )

        return items[: self.max_items]

    def _today_items(self, user_id: str, context: JiraScrumContext) -> list[str]:
        day = context.window.today
        items = [
            f"{issue.key}: continue {issue.summary} ({issue.status})"
            for issue in context.active_issues
        ]
        items.extend(
            f"{change.issue_key}: follow up on {trim_text(change.field)} changes"
            for change in context.activities
            if change.author_id == user_id and _is_on(change.changed, day)
        )
        return items[: self.max_items]


class ScrumUpdateTools:
    """Tool surface exposed to chat models."""

    def __init__(self, draft_service: JiraScrumUpdateDraftService) -> None:
        self.draft_service = draft_service

    async def generate_scrum_update_draft(self) -> str:
        """
        Generate the user's scrum update draft from Jira activity.

        Use this when the user asks for a scrum update or asks to regenerate one.
        """
        draft = await self.draft_service.generate_draft()
        if draft is None:
            return JIRA_DRAFT_UNAVAILABLE
        return format_scrum_update(draft)
