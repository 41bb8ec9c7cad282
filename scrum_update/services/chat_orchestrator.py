"""
Chat turn orchestration.

A turn appends the user's text, asks the generator for a draft and falls
back to the chat client. Drafts are persisted into the day's scrum session,
which the conversation then adopts; later turns in an adopted conversation
re-sync its transcript. Non-scrum turns in a fresh conversation persist
nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from scrum_update.clients.chat_client import ChatClient, ConversationMessage, last_user_text
from scrum_update.core.constants import MessageRole
from scrum_update.core.exceptions import ChatClientError, ExternalServiceError, ScrumUpdateError
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, ScrumGenerationMetadata
from scrum_update.domain.session import MessageInput
from scrum_update.services.formatter import format_scrum_update, parse_scrum_update
from scrum_update.services.scrum_generator import ScrumUpdateGenerator
from scrum_update.services.session_store import SessionStore

logger = get_logger(__name__)

PERSISTED_ROLES = (MessageRole.USER, MessageRole.ASSISTANT)


@dataclass
class Conversation:
    """In-memory transcript plus the session it is bound to, if any."""

    messages: list[ConversationMessage] = field(default_factory=list)
    session_id: Optional[int] = None

    def last_user_text(self) -> str:
        return last_user_text(self.messages)

    def transcript(self) -> list[MessageInput]:
        return [
            MessageInput(role=m.role.value, content=m.content, metadata=m.metadata)
            for m in self.messages
            if m.role in PERSISTED_ROLES
        ]


@dataclass
class ChatTurn:
    """Outcome of one turn."""

    reply: str
    session_id: Optional[int] = None
    draft: Optional[GeneratedScrumUpdate] = None


class ChatOrchestrator:
    """Runs chat turns against a generator, a chat client and the session store."""

    def __init__(
        self,
        store: SessionStore,
        chat_client: ChatClient,
        generator: ScrumUpdateGenerator,
    ) -> None:
        self.store = store
        self.chat_client = chat_client
        self.generator = generator

    async def open_conversation(self, session_id: Optional[int] = None) -> Optional[Conversation]:
        """
        Start a conversation, optionally resuming a stored session.

        Returns None when the session does not exist for the caller.
        """
        if session_id is None:
            return Conversation()

        session = await self.store.get_session(session_id)
        if session is None:
            return None

        return Conversation(
            messages=[
                ConversationMessage(role=m.role, content=m.content, metadata=m.metadata)
                for m in session.messages
            ],
            session_id=session.id,
        )

    async def _try_generate(self, conversation: Conversation) -> Optional[GeneratedScrumUpdate]:
        try:
            return await self.generator.try_generate(conversation)
        except ExternalServiceError as e:
            logger.warning("Draft generation failed", error=e.message)
            return None

    async def _respond(self, conversation: Conversation) -> str:
        try:
            return await self.chat_client.respond(conversation.messages)
        except ScrumUpdateError:
            raise
        except Exception as e:
            logger.error("Chat client failed", error=str(e))
            raise ChatClientError(str(e)) from e

    async def send(self, conversation: Conversation, text: str) -> ChatTurn:
        """Run one turn and return the assistant reply."""
        conversation.messages.append(ConversationMessage(role=MessageRole.USER, content=text))

        draft = await self._try_generate(conversation)
        if draft is not None:
            reply = format_scrum_update(draft)
        else:
            reply = await self._respond(conversation)
            draft = parse_scrum_update(reply)

        return await self._complete_turn(conversation, reply, draft)

    async def stream(self, conversation: Conversation, text: str) -> AsyncIterator[str]:
        """
        Run one turn, yielding the reply in chunks.

        The turn is persisted only after the last chunk. A chat client
        failure raises ChatClientError at the point it happens, and a
        consumer that stops iterating early (client disconnect) leaves the
        turn unsaved.
        """
        conversation.messages.append(ConversationMessage(role=MessageRole.USER, content=text))

        draft = await self._try_generate(conversation)
        if draft is not None:
            reply = format_scrum_update(draft)
            yield reply
        else:
            chunks: list[str] = []
            try:
                async for chunk in self.chat_client.stream(conversation.messages):
                    chunks.append(chunk)
                    yield chunk
            except ScrumUpdateError:
                raise
            except Exception as e:
                logger.error("Chat client stream failed", error=str(e))
                raise ChatClientError(str(e)) from e
            reply = "".join(chunks)
            draft = parse_scrum_update(reply)

        await self._complete_turn(conversation, reply, draft)

    async def _complete_turn(
        self,
        conversation: Conversation,
        reply: str,
        draft: Optional[GeneratedScrumUpdate],
    ) -> ChatTurn:
        metadata = ScrumGenerationMetadata(scrum_update=draft) if draft is not None else None
        conversation.messages.append(
            ConversationMessage(role=MessageRole.ASSISTANT, content=reply, metadata=metadata)
        )

        if draft is not None:
            session = await self.store.get_or_create_session_for_scrum_update(draft)
            conversation.session_id = session.id
            await self.store.replace_messages(session.id, conversation.transcript())
            logger.info(
                "Scrum draft stored",
                session_id=session.id,
                scrum_date=draft.scrum_date.isoformat(),
            )
        elif conversation.session_id is not None:
            await self.store.replace_messages(conversation.session_id, conversation.transcript())

        return ChatTurn(reply=reply, session_id=conversation.session_id, draft=draft)
