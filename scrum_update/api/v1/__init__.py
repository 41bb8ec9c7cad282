"""
API v1 routers.
"""

from scrum_update.api.v1 import chat, health, jira, sessions

__all__ = ["chat", "health", "jira", "sessions"]
