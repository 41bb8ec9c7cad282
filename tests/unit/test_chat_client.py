"""
Tests for the dummy chat client.
"""

import pytest

from scrum_update.clients.chat_client import ConversationMessage, DummyChatClient, create_chat_client
from scrum_update.core.constants import DUMMY_GENERIC_RESPONSE, MessageRole
from scrum_update.core.exceptions import ConfigurationError


def user(text: str) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.USER, content=text)


@pytest.fixture
def client() -> DummyChatClient:
    return DummyChatClient(delay_ms=0)


@pytest.mark.asyncio
async def test_generic_reply(client: DummyChatClient) -> None:
    assert await client.respond([user("hello")]) == DUMMY_GENERIC_RESPONSE


@pytest.mark.asyncio
async def test_scrum_command_reply_is_formatted_draft(client: DummyChatClient) -> None:
    reply = await client.respond([user("scrum update")])

    assert reply.startswith("Scrum update for ")
    assert "Yesterday: Finished initial multi-session persistence. (v1)" in reply


@pytest.mark.asyncio
async def test_only_latest_user_message_counts(client: DummyChatClient) -> None:
    messages = [
        user("scrum update"),
        ConversationMessage(role=MessageRole.ASSISTANT, content="Scrum update for ..."),
        user("thanks"),
    ]

    assert await client.respond(messages) == DUMMY_GENERIC_RESPONSE


@pytest.mark.asyncio
async def test_stream_yields_one_character_at_a_time(client: DummyChatClient) -> None:
    chunks = [chunk async for chunk in client.stream([user("hi")])]

    assert all(len(chunk) == 1 for chunk in chunks)
    assert "".join(chunks) == DUMMY_GENERIC_RESPONSE


def test_create_chat_client() -> None:
    assert isinstance(create_chat_client("dummy"), DummyChatClient)

    with pytest.raises(ConfigurationError):
        create_chat_client("unknown-vendor")
