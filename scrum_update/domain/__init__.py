"""
Domain models.
"""

from scrum_update.domain.scrum_update import (
    GeneratedScrumUpdate,
    MessageMetadata,
    ScrumGenerationMetadata,
)
from scrum_update.domain.session import ChatMessage, ChatSession, DayWiseScrumUpdate, MessageInput

__all__ = [
    "GeneratedScrumUpdate",
    "MessageMetadata",
    "ScrumGenerationMetadata",
    "ChatMessage",
    "ChatSession",
    "DayWiseScrumUpdate",
    "MessageInput",
]
