"""
Chat endpoints: one turn per request, optionally streamed.
"""

from datetime import datetime
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from scrum_update.api.deps import get_orchestrator
from scrum_update.core.exceptions import ScrumUpdateError, SessionNotFoundError
from scrum_update.core.logging import get_logger
from scrum_update.core.security import generate_request_id
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, utc_now
from scrum_update.services.chat_orchestrator import ChatOrchestrator, Conversation

logger = get_logger(__name__)

router = APIRouter()

STREAM_ERROR_MARKER = "\n\n[error] "


# Request/Response models
class ChatMessageRequest(BaseModel):
    """Request model for chat messages."""

    session_id: Optional[int] = Field(
        default=None, description="Session to continue (starts a fresh conversation if omitted)"
    )
    message: str = Field(..., description="User message", min_length=1)


class ChatMessageResponse(BaseModel):
    """Response model for chat messages."""

    message_id: str
    session_id: Optional[int] = Field(
        default=None, description="Session the turn was stored in, if any"
    )
    reply: str
    scrum_update: Optional[GeneratedScrumUpdate] = None
    timestamp: datetime


async def _open_conversation(
    orchestrator: ChatOrchestrator,
    session_id: Optional[int],
) -> Conversation:
    conversation = await orchestrator.open_conversation(session_id)
    if conversation is None:
        raise SessionNotFoundError(session_id)
    return conversation


@router.post("/chat/message", response_model=ChatMessageResponse)
async def send_message(
    request: ChatMessageRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatMessageResponse:
    """
    Run one chat turn.

    Scrum commands produce a draft that is stored in the day's scrum session;
    other messages are answered by the chat client.
    """
    request_id = generate_request_id()

    logger.info(
        "Processing chat message",
        request_id=request_id,
        session_id=request.session_id,
        message_length=len(request.message),
    )

    conversation = await _open_conversation(orchestrator, request.session_id)
    turn = await orchestrator.send(conversation, request.message)

    return ChatMessageResponse(
        message_id=request_id,
        session_id=turn.session_id,
        reply=turn.reply,
        scrum_update=turn.draft,
        timestamp=utc_now(),
    )


async def _relay(first: Optional[str], chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    if first is None:
        return
    yield first
    try:
        async for chunk in chunks:
            yield chunk
    except ScrumUpdateError as e:
        # Headers are already sent, so the failure is reported in the body.
        logger.warning("Chat stream aborted", error_code=e.code, error=e.message)
        yield f"{STREAM_ERROR_MARKER}{e.message}"


@router.post("/chat/stream")
async def stream_message(
    request: ChatMessageRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse:
    """
    Run one chat turn, streaming the reply as plain text.

    The first chunk is produced before the response starts, so failures up
    to that point get a regular JSON error response. Later failures end the
    body with an error line.
    """
    conversation = await _open_conversation(orchestrator, request.session_id)

    logger.info(
        "Streaming chat message",
        session_id=request.session_id,
        message_length=len(request.message),
    )

    chunks = orchestrator.stream(conversation, request.message)
    try:
        first: Optional[str] = await chunks.__anext__()
    except StopAsyncIteration:
        first = None

    return StreamingResponse(
        _relay(first, chunks),
        media_type="text/plain; charset=utf-8",
    )
