"""
Caller identity resolution.

Every store operation is scoped to the user id produced here; the store
trusts it completely and performs no authentication of its own.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional, Protocol

from fastapi import Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.core.exceptions import AuthenticationError, InvalidRequestError
from scrum_update.core.logging import get_logger
from scrum_update.core.security import generate_local_user_id
from scrum_update.database.models import JiraOAuthTokenDB

logger = get_logger(__name__)


class CurrentUserContext(Protocol):
    """Resolves the tenant id for the current call scope."""

    async def get_required_user_id(self) -> str:
        """Return the caller's user id or raise AuthenticationError."""
        ...


class StaticUserContext:
    """Fixed identity, used by tests and local development."""

    def __init__(self, user_id: str) -> None:
        if not user_id or not user_id.strip():
            raise InvalidRequestError("Static user id must not be empty", field="user_id")
        self.user_id = user_id

    async def get_required_user_id(self) -> str:
        return self.user_id


class HttpCurrentUserContext:
    """
    Resolves the caller through the durable Jira linkage.

    The anonymous browser id is mapped to the Atlassian account id stored on
    the caller's token record. One instance lives for one request, so the
    resolved id is cached on the instance.
    """

    def __init__(
        self,
        local_user_id: Optional[str],
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.local_user_id = local_user_id
        self.session_factory = session_factory
        self._user_id: Optional[str] = None

    async def get_required_user_id(self) -> str:
        if self._user_id:
            return self._user_id

        if not self.local_user_id or not self.local_user_id.strip():
            raise AuthenticationError(
                "Unable to resolve the current user because no browser identity is available."
            )

        async with self.session_factory() as db:
            result = await db.execute(
                select(JiraOAuthTokenDB.authenticated_user_id).where(
                    JiraOAuthTokenDB.local_user_id == self.local_user_id
                )
            )
            authenticated_user_id = result.scalar_one_or_none()

        if not authenticated_user_id or not authenticated_user_id.strip():
            logger.info("Caller has no Jira linkage", local_user_id=self.local_user_id)
            raise AuthenticationError(
                "Jira/Atlassian authentication is required before using Scrum Update."
            )

        self._user_id = authenticated_user_id
        return self._user_id


class LocalUserContext:
    """Reads or mints the anonymous browser id cookie."""

    def __init__(
        self,
        cookie_name: str = "scrumupdate_user",
        max_age_days: int = 90,
        secure: bool = False,
    ) -> None:
        self.cookie_name = cookie_name
        self.max_age = int(timedelta(days=max_age_days).total_seconds())
        self.secure = secure

    def get_local_user_id(self, request: Request) -> Optional[str]:
        """Return the browser id if the cookie is present."""
        value = request.cookies.get(self.cookie_name)
        return value if value and value.strip() else None

    def get_or_create_local_user_id(self, request: Request, response: Response) -> str:
        """Return the browser id, setting a new cookie when absent."""
        existing = self.get_local_user_id(request)
        if existing:
            return existing

        new_user_id = generate_local_user_id()
        response.set_cookie(
            self.cookie_name,
            new_user_id,
            max_age=self.max_age,
            httponly=True,
            secure=self.secure or request.url.scheme == "https",
            samesite="lax",
        )
        return new_user_id
