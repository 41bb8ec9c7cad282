"""
Tests for chat turn orchestration against a real (SQLite) store.
"""

from typing import AsyncIterator, Sequence

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.clients.chat_client import ConversationMessage, DummyChatClient
from scrum_update.core.constants import DUMMY_GENERIC_RESPONSE, MessageRole
from scrum_update.core.exceptions import ChatClientError
from scrum_update.database.models import ChatSessionDB
from scrum_update.services.chat_orchestrator import ChatOrchestrator, Conversation
from scrum_update.services.formatter import format_scrum_update
from scrum_update.services.scrum_generator import ScrumGenerator
from scrum_update.services.session_store import SessionStore


class NeverGenerates:
    async def try_generate(self, conversation: Conversation) -> None:
        return None


class LegacyChatClient:
    """Replies with a formatted draft but provides no structured metadata."""

    def __init__(self) -> None:
        self.generator = ScrumGenerator()

    async def respond(self, messages: Sequence[ConversationMessage]) -> str:
        draft = self.generator.try_generate_for_message(messages[-1].content)
        return format_scrum_update(draft) if draft else DUMMY_GENERIC_RESPONSE

    async def stream(self, messages: Sequence[ConversationMessage]) -> AsyncIterator[str]:
        yield await self.respond(messages)


class BrokenChatClient:
    async def respond(self, messages: Sequence[ConversationMessage]) -> str:
        raise ConnectionError("upstream down")

    async def stream(self, messages: Sequence[ConversationMessage]) -> AsyncIterator[str]:
        raise ConnectionError("upstream down")
        yield ""


@pytest.fixture
def orchestrator(store: SessionStore) -> ChatOrchestrator:
    return ChatOrchestrator(store, DummyChatClient(delay_ms=0), ScrumGenerator())


async def session_count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(ChatSessionDB))


@pytest.mark.asyncio
async def test_non_scrum_message_creates_no_session(
    orchestrator: ChatOrchestrator,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    conversation = Conversation()

    turn = await orchestrator.send(conversation, "hi")

    assert turn.reply == DUMMY_GENERIC_RESPONSE
    assert turn.draft is None
    assert conversation.session_id is None
    assert await session_count(session_factory) == 0


@pytest.mark.asyncio
async def test_scrum_then_regenerate_keeps_latest_data(
    orchestrator: ChatOrchestrator,
    store: SessionStore,
) -> None:
    conversation = Conversation()

    await orchestrator.send(conversation, "scrum update")
    session_id = conversation.session_id
    assert session_id is not None

    await orchestrator.send(conversation, "regenerate")
    loaded = await store.get_session(session_id)

    assert loaded is not None
    assert len(loaded.messages) == 4
    assert loaded.messages[1].content.startswith("Scrum update for ")
    assert loaded.messages[3].content.startswith("Scrum update for ")
    assert loaded.messages[3].content != loaded.messages[1].content

    assert loaded.scrum_update is not None
    assert loaded.scrum_update.what_i_did_yesterday in loaded.messages[3].content
    assert loaded.scrum_update.what_i_plan_to_do_today in loaded.messages[3].content
    assert loaded.scrum_update.blocker in loaded.messages[3].content

    metadata = loaded.messages[3].metadata
    assert metadata is not None
    assert metadata.type == "scrum-generation"
    assert metadata.scrum_update.blocker == loaded.scrum_update.blocker


@pytest.mark.asyncio
async def test_follow_up_turn_resyncs_adopted_session(
    orchestrator: ChatOrchestrator,
    store: SessionStore,
) -> None:
    conversation = Conversation()
    await orchestrator.send(conversation, "scrum update")

    turn = await orchestrator.send(conversation, "thanks")

    assert turn.session_id == conversation.session_id
    loaded = await store.get_session(conversation.session_id)
    assert loaded is not None
    assert [m.content for m in loaded.messages][-2:] == ["thanks", DUMMY_GENERIC_RESPONSE]
    assert loaded.messages[-1].metadata is None


@pytest.mark.asyncio
async def test_open_conversation_resumes_session(
    orchestrator: ChatOrchestrator,
    store: SessionStore,
) -> None:
    first = Conversation()
    await orchestrator.send(first, "scrum update")

    resumed = await orchestrator.open_conversation(first.session_id)

    assert resumed is not None
    assert resumed.session_id == first.session_id
    assert [m.role for m in resumed.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    assert await orchestrator.open_conversation(12345) is None


@pytest.mark.asyncio
async def test_legacy_reply_is_parsed_into_draft(
    store: SessionStore,
) -> None:
    orchestrator = ChatOrchestrator(store, LegacyChatClient(), NeverGenerates())
    conversation = Conversation()

    turn = await orchestrator.send(conversation, "scrum update")

    assert turn.draft is not None
    assert conversation.session_id is not None
    loaded = await store.get_session(conversation.session_id)
    assert loaded is not None
    assert loaded.scrum_update is not None
    assert loaded.scrum_update.what_i_did_yesterday == turn.draft.what_i_did_yesterday


@pytest.mark.asyncio
async def test_stream_persists_after_completion(
    orchestrator: ChatOrchestrator,
    store: SessionStore,
) -> None:
    conversation = Conversation()

    chunks = [chunk async for chunk in orchestrator.stream(conversation, "scrum update")]

    assert "".join(chunks).startswith("Scrum update for ")
    assert conversation.session_id is not None
    loaded = await store.get_session(conversation.session_id)
    assert loaded is not None
    assert len(loaded.messages) == 2


@pytest.mark.asyncio
async def test_stream_generic_reply_in_chunks(
    orchestrator: ChatOrchestrator,
) -> None:
    conversation = Conversation()

    chunks = [chunk async for chunk in orchestrator.stream(conversation, "hello")]

    assert "".join(chunks) == DUMMY_GENERIC_RESPONSE
    assert len(chunks) == len(DUMMY_GENERIC_RESPONSE)
    assert conversation.session_id is None


@pytest.mark.asyncio
async def test_chat_client_failure_surfaces_as_external_error(store: SessionStore) -> None:
    orchestrator = ChatOrchestrator(store, BrokenChatClient(), NeverGenerates())

    with pytest.raises(ChatClientError) as exc_info:
        await orchestrator.send(Conversation(), "hello")

    assert exc_info.value.status_code == 502


class FailsMidStreamClient:
    async def respond(self, messages: Sequence[ConversationMessage]) -> str:
        return DUMMY_GENERIC_RESPONSE

    async def stream(self, messages: Sequence[ConversationMessage]) -> AsyncIterator[str]:
        yield "Partial"
        raise ConnectionError("upstream reset")


@pytest.mark.asyncio
async def test_stream_failure_after_first_chunk_saves_nothing(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session = await store.create_freeform_session()
    orchestrator = ChatOrchestrator(store, FailsMidStreamClient(), NeverGenerates())
    conversation = await orchestrator.open_conversation(session.id)
    assert conversation is not None
    chunks: list[str] = []

    with pytest.raises(ChatClientError):
        async for chunk in orchestrator.stream(conversation, "hello"):
            chunks.append(chunk)

    assert chunks == ["Partial"]
    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.messages == []


def test_conversation_last_user_text_skips_assistant_turns() -> None:
    conversation = Conversation(
        messages=[
            ConversationMessage(role=MessageRole.USER, content="scrum update"),
            ConversationMessage(role=MessageRole.ASSISTANT, content="Scrum update for 2026-10-18"),
        ]
    )

    assert conversation.last_user_text() == "scrum update"
    assert Conversation().last_user_text() == ""
