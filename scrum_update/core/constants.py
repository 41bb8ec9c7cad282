"""
System-wide constants for the scrum update assistant.
"""

from enum import Enum


# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, Enum):
    """Message roles in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class MetadataType(str, Enum):
    """Discriminator values for message metadata payloads."""

    SCRUM_GENERATION = "scrum-generation"


# =============================================================================
# API
# =============================================================================

API_PREFIX = "/api/v1"


# =============================================================================
# Session titles
# =============================================================================

FREEFORM_SESSION_TITLE = "Chat {number}"
SCRUM_SESSION_TITLE = "Scrum Update {date}"


# =============================================================================
# Scrum drafts
# =============================================================================

SCRUM_COMMAND_KEYWORDS = ("scrum update", "regenerate")

# Canned (yesterday, today, blocker) rotation used by the command generator
SCRUM_VARIANTS: tuple[tuple[str, str, str], ...] = (
    (
        "Finished initial multi-session persistence.",
        "Wire scrum-session generation by date.",
        "No blocker.",
    ),
    (
        "Completed scrum session tagging and validation fixes.",
        "Polish regenerate flow and add tests.",
        "Waiting on one PR review.",
    ),
    (
        "Refined chat persistence for repeated updates.",
        "Clean up prompts and session UX.",
        "Need product confirmation on wording.",
    ),
)

SCRUM_HEADER_PREFIX = "Scrum update for "
GENERATED_AT_LABEL = "Generated at:"
YESTERDAY_LABEL = "Yesterday:"
TODAY_LABEL = "Today:"
BLOCKER_LABEL = "Blocker:"

NO_YESTERDAY_UPDATES = "No Jira updates found yesterday."
CONTINUE_ACTIVE_WORK = "Continue work on active Jira issues."
NO_BLOCKER = "No blocker."
ACTIVITY_TEXT_LIMIT = 80
MAX_SCRUM_ITEMS = 8

JIRA_DRAFT_UNAVAILABLE = (
    "Unable to generate scrum update from Jira. Ask the user to connect Jira first."
)
DUMMY_GENERIC_RESPONSE = "I am dummy AI and can generate scrum updates on request."
