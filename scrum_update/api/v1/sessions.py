"""
Chat session endpoints.

Sessions that do not exist and sessions owned by another user look the same:
reads answer 404, writes succeed without effect.
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from scrum_update.api.deps import get_session_store
from scrum_update.core.exceptions import SessionNotFoundError
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import MessageMetadata
from scrum_update.domain.session import ChatSession, MessageInput
from scrum_update.services.session_store import SessionStore

logger = get_logger(__name__)

router = APIRouter()


# Request/Response models
class SessionSummaryResponse(BaseModel):
    """Session as shown in the session list."""

    id: int
    title: str
    scrum_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionSummaryResponse":
        return cls(
            id=session.id,
            title=session.title,
            scrum_date=session.scrum_date,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class RenameSessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class AppendMessageRequest(BaseModel):
    role: str = Field(..., description="user, assistant or system")
    content: str
    metadata: Optional[MessageMetadata] = None


class ReplaceMessagesRequest(BaseModel):
    messages: list[MessageInput] = Field(default_factory=list)


@router.get("/sessions", response_model=list[SessionSummaryResponse])
async def list_sessions(
    store: SessionStore = Depends(get_session_store),
) -> list[SessionSummaryResponse]:
    """List the caller's sessions, most recently updated first."""
    sessions = await store.list_sessions()
    return [SessionSummaryResponse.from_session(s) for s in sessions]


@router.post(
    "/sessions",
    response_model=SessionSummaryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(
    store: SessionStore = Depends(get_session_store),
) -> SessionSummaryResponse:
    """Create a free-form chat session."""
    session = await store.create_freeform_session()
    return SessionSummaryResponse.from_session(session)


@router.get("/sessions/{session_id}", response_model=ChatSession)
async def get_session(
    session_id: int,
    store: SessionStore = Depends(get_session_store),
) -> ChatSession:
    """Get a session with its messages and scrum update."""
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


@router.patch("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def rename_session(
    session_id: int,
    request: RenameSessionRequest,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    await store.rename_session(session_id, request.title)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: int,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    await store.delete_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/messages", status_code=status.HTTP_204_NO_CONTENT)
async def append_message(
    session_id: int,
    request: AppendMessageRequest,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    await store.append_message(session_id, request.role, request.content, request.metadata)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/sessions/{session_id}/messages", status_code=status.HTTP_204_NO_CONTENT)
async def replace_messages(
    session_id: int,
    request: ReplaceMessagesRequest,
    store: SessionStore = Depends(get_session_store),
) -> Response:
    """Replace the session transcript; blank messages are dropped."""
    await store.replace_messages(session_id, request.messages)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
