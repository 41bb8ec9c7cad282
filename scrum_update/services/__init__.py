"""
Service layer implementations.
"""

from scrum_update.services.formatter import format_scrum_update, parse_scrum_update
from scrum_update.services.identity import (
    CurrentUserContext,
    HttpCurrentUserContext,
    LocalUserContext,
    StaticUserContext,
)
from scrum_update.services.scrum_generator import GenerationCounter, ScrumGenerator, is_scrum_command
from scrum_update.services.session_store import KeyedLocks, SessionStore

__all__ = [
    "CurrentUserContext",
    "GenerationCounter",
    "HttpCurrentUserContext",
    "KeyedLocks",
    "LocalUserContext",
    "ScrumGenerator",
    "SessionStore",
    "StaticUserContext",
    "format_scrum_update",
    "is_scrum_command",
    "parse_scrum_update",
]
