"""
API dependencies for dependency injection.

Process-wide collaborators live in the ServiceContainer; per-request ones
(identity, store, orchestrator) are built from FastAPI dependencies so tests
can override any layer.
"""

from typing import AsyncIterator, Optional

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.clients.activity_feed import JiraActivityFeed
from scrum_update.clients.chat_client import ChatClient, create_chat_client
from scrum_update.core.config import settings
from scrum_update.database import config as database_config
from scrum_update.services.chat_orchestrator import ChatOrchestrator
from scrum_update.services.identity import (
    CurrentUserContext,
    HttpCurrentUserContext,
    LocalUserContext,
    StaticUserContext,
)
from scrum_update.services.jira_connection import JiraConnectionService
from scrum_update.services.jira_draft_service import JiraScrumUpdateDraftService
from scrum_update.services.scrum_generator import ScrumGenerator, ScrumUpdateGenerator
from scrum_update.services.session_store import SessionStore


class ServiceContainer:
    """
    Container for process-wide services.
    Provides singleton instances of services.
    """

    _instance: Optional["ServiceContainer"] = None

    def __init__(self) -> None:
        self._initialized = False

    @classmethod
    def get_instance(cls) -> "ServiceContainer":
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def initialize(self) -> None:
        """Initialize all services."""
        if self._initialized:
            return

        self._chat_client = create_chat_client()

        # One generator per process so the variant rotation spans requests
        self._command_generator = ScrumGenerator()

        self._local_user_context = LocalUserContext(
            cookie_name=settings.identity.cookie_name,
            max_age_days=settings.identity.cookie_max_age_days,
            secure=settings.security.secure_cookies,
        )

        self._initialized = True

    @property
    def chat_client(self) -> ChatClient:
        """Get the chat client."""
        self.initialize()
        return self._chat_client

    @property
    def command_generator(self) -> ScrumGenerator:
        """Get the command-driven scrum generator."""
        self.initialize()
        return self._command_generator

    @property
    def local_user_context(self) -> LocalUserContext:
        """Get the browser identity cookie handler."""
        self.initialize()
        return self._local_user_context


# Singleton container instance
container = ServiceContainer.get_instance()


# Dependency functions for FastAPI
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the database session factory."""
    return database_config.get_session_factory()


def get_chat_client() -> ChatClient:
    """Get the chat client instance."""
    return container.chat_client


def get_local_user_context() -> LocalUserContext:
    """Get the browser identity cookie handler."""
    return container.local_user_context


def get_local_user_id(
    request: Request,
    response: Response,
    local_user_context: LocalUserContext = Depends(get_local_user_context),
) -> str:
    """Get (or mint) the anonymous browser id."""
    return local_user_context.get_or_create_local_user_id(request, response)


def get_user_context(
    local_user_id: str = Depends(get_local_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CurrentUserContext:
    """Get the identity resolver for this request."""
    if settings.identity.static_user_id:
        return StaticUserContext(settings.identity.static_user_id)
    return HttpCurrentUserContext(local_user_id, session_factory)


def get_session_store(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    user_context: CurrentUserContext = Depends(get_user_context),
) -> SessionStore:
    """Get a session store scoped to the caller."""
    return SessionStore(session_factory, user_context)


async def get_activity_feed(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncIterator[JiraActivityFeed]:
    """Get a Jira activity feed, closed after the request."""
    feed = JiraActivityFeed(session_factory)
    try:
        yield feed
    finally:
        await feed.close()


def get_draft_service(
    activity_feed: JiraActivityFeed = Depends(get_activity_feed),
    user_context: CurrentUserContext = Depends(get_user_context),
) -> JiraScrumUpdateDraftService:
    """Get the Jira draft service for the caller."""
    return JiraScrumUpdateDraftService(activity_feed, user_context)


def get_scrum_generator(
    draft_service: JiraScrumUpdateDraftService = Depends(get_draft_service),
) -> ScrumUpdateGenerator:
    """Get the configured scrum draft generator."""
    if settings.scrum.generator == "jira":
        return draft_service
    return container.command_generator


def get_orchestrator(
    store: SessionStore = Depends(get_session_store),
    chat_client: ChatClient = Depends(get_chat_client),
    generator: ScrumUpdateGenerator = Depends(get_scrum_generator),
) -> ChatOrchestrator:
    """Get the chat orchestrator for the caller."""
    return ChatOrchestrator(store, chat_client, generator)


def get_jira_connection_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> JiraConnectionService:
    """Get the Jira connection service."""
    return JiraConnectionService(session_factory)
