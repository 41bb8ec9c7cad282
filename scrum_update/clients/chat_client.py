"""
Chat capability consumed by the orchestrator.

Only plain assistant text matters here; any vendor can sit behind the
protocol. The dummy client is the default and is used in tests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Sequence

from scrum_update.core.config import settings
from scrum_update.core.constants import DUMMY_GENERIC_RESPONSE, MessageRole
from scrum_update.core.exceptions import ConfigurationError
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import MessageMetadata
from scrum_update.services.formatter import format_scrum_update
from scrum_update.services.scrum_generator import ScrumGenerator

logger = get_logger(__name__)


@dataclass
class ConversationMessage:
    """A role/content pair as exchanged with a chat model."""

    role: MessageRole
    content: str
    metadata: Optional[MessageMetadata] = None


class ChatClient(Protocol):
    async def respond(self, messages: Sequence[ConversationMessage]) -> str:
        """Return the complete assistant reply."""
        ...

    def stream(self, messages: Sequence[ConversationMessage]) -> AsyncIterator[str]:
        """Yield the assistant reply in chunks."""
        ...


def last_user_text(messages: Sequence[ConversationMessage]) -> str:
    """Content of the most recent user message, or an empty string."""
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message.content
    return ""


class DummyChatClient:
    """
    Offline chat client.

    Answers scrum commands with a formatted draft from its own generator and
    everything else with a fixed sentence.
    """

    def __init__(
        self,
        generator: Optional[ScrumGenerator] = None,
        delay_ms: Optional[int] = None,
    ) -> None:
        self.generator = generator or ScrumGenerator()
        self.delay_ms = settings.chat.stream_delay_ms if delay_ms is None else delay_ms

    def _build_response(self, messages: Sequence[ConversationMessage]) -> str:
        draft = self.generator.try_generate_for_message(last_user_text(messages))
        return DUMMY_GENERIC_RESPONSE if draft is None else format_scrum_update(draft)

    async def respond(self, messages: Sequence[ConversationMessage]) -> str:
        return self._build_response(messages)

    async def stream(self, messages: Sequence[ConversationMessage]) -> AsyncIterator[str]:
        response = self._build_response(messages)
        for character in response:
            if self.delay_ms > 0:
                await asyncio.sleep(self.delay_ms / 1000)
            yield character


def create_chat_client(provider: Optional[str] = None) -> ChatClient:
    """Build the configured chat client."""
    provider = (provider or settings.chat.provider).strip().lower()
    if provider == "dummy":
        return DummyChatClient()

    logger.error("Unknown chat provider", provider=provider)
    raise ConfigurationError(
        f"Unsupported chat provider '{provider}'",
        details={"provider": provider},
    )
