"""
Chat session domain models.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from scrum_update.core.constants import MessageRole
from scrum_update.domain.scrum_update import MessageMetadata


class ChatMessage(BaseModel):
    """A persisted message in a chat session."""

    id: int
    role: MessageRole
    content: str
    timestamp: datetime
    metadata: Optional[MessageMetadata] = None


class DayWiseScrumUpdate(BaseModel):
    """The scrum update recorded for a session's date."""

    generated_time: datetime
    what_i_did_yesterday: str
    what_i_plan_to_do_today: str
    blocker: str


class ChatSession(BaseModel):
    """Chat session domain model."""

    id: int
    user_id: str
    title: str
    scrum_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    messages: list[ChatMessage] = Field(
        default_factory=list, description="Only populated by detail reads"
    )
    scrum_update: Optional[DayWiseScrumUpdate] = None

    @property
    def message_count(self) -> int:
        """Get number of loaded messages."""
        return len(self.messages)


class MessageInput(BaseModel):
    """A message to write into a session (role is normalised on write)."""

    role: str
    content: str
    metadata: Optional[MessageMetadata] = None
