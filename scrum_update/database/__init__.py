"""Database layer for the scrum update assistant."""

from .config import (
    create_engine_for_url,
    create_session_factory,
    get_async_engine,
    get_database_url,
    get_session_factory,
    init_db,
    unit_of_work,
)
from .models import AppUserDB, Base, ChatMessageDB, ChatSessionDB, DayWiseScrumUpdateDB, JiraOAuthTokenDB

__all__ = [
    "create_engine_for_url",
    "create_session_factory",
    "get_async_engine",
    "get_database_url",
    "get_session_factory",
    "init_db",
    "unit_of_work",
    "Base",
    "AppUserDB",
    "ChatSessionDB",
    "ChatMessageDB",
    "DayWiseScrumUpdateDB",
    "JiraOAuthTokenDB",
]
