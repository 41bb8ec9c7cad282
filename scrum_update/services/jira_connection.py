"""
Jira connection status and disconnect for a browser identity.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.core.logging import get_logger
from scrum_update.database.config import unit_of_work
from scrum_update.database.models import JiraOAuthTokenDB
from scrum_update.domain.scrum_update import as_utc

logger = get_logger(__name__)


class JiraConnectionStatus(BaseModel):
    is_connected: bool
    access_token_expires_at: Optional[datetime] = None
    cloud_id: Optional[str] = None


class JiraConnectionService:
    """Reads and removes the token record linking a browser id to Atlassian."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def get_status(self, local_user_id: str) -> JiraConnectionStatus:
        async with self.session_factory() as db:
            result = await db.execute(
                select(JiraOAuthTokenDB).where(JiraOAuthTokenDB.local_user_id == local_user_id)
            )
            token = result.scalar_one_or_none()

        if token is None:
            return JiraConnectionStatus(is_connected=False)

        return JiraConnectionStatus(
            is_connected=bool(token.authenticated_user_id and token.authenticated_user_id.strip()),
            access_token_expires_at=as_utc(token.access_token_expires_at),
            cloud_id=token.cloud_id,
        )

    async def disconnect(self, local_user_id: str) -> bool:
        """Delete the token record. Returns whether one existed."""
        async with unit_of_work(self.session_factory) as db:
            result = await db.execute(
                delete(JiraOAuthTokenDB).where(JiraOAuthTokenDB.local_user_id == local_user_id)
            )
            removed = (result.rowcount or 0) > 0

        if removed:
            logger.info("Jira disconnected", local_user_id=local_user_id)
        return removed
