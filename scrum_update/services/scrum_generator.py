"""
Command-driven scrum draft generator.

A user message containing "scrum update" or "regenerate" yields a draft for
today built from a rotation of canned texts; anything else yields nothing.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from scrum_update.core.constants import SCRUM_COMMAND_KEYWORDS, SCRUM_VARIANTS
from scrum_update.core.logging import get_logger
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, utc_now

if TYPE_CHECKING:
    from scrum_update.services.chat_orchestrator import Conversation

logger = get_logger(__name__)


class ScrumUpdateGenerator(Protocol):
    """Produces a draft for the latest turn of a conversation, or None."""

    async def try_generate(self, conversation: "Conversation") -> Optional[GeneratedScrumUpdate]:
        ...


class GenerationCounter:
    """Thread-safe monotonically increasing sequence."""

    def __init__(self, start: int = 0) -> None:
        self._value = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def reset(self, value: int = 0) -> None:
        with self._lock:
            self._value = value

    @property
    def value(self) -> int:
        return self._value


def is_scrum_command(text: Optional[str]) -> bool:
    """Whether a user message asks for a (re)generated scrum update."""
    normalized = (text or "").strip().lower()
    return any(keyword in normalized for keyword in SCRUM_COMMAND_KEYWORDS)


class ScrumGenerator:
    """
    Generates canned drafts for scrum commands.

    The n-th draft uses variant ``(n - 1) % 3`` and suffixes each field with
    `` (vN)``, so consecutive drafts always differ.
    """

    def __init__(
        self,
        counter: Optional[GenerationCounter] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.counter = counter or GenerationCounter()
        self.clock = clock

    def try_generate_for_message(self, text: Optional[str]) -> Optional[GeneratedScrumUpdate]:
        """Return a draft if ``text`` is a scrum command."""
        if not is_scrum_command(text):
            return None

        sequence = self.counter.next()
        generated_at = self.clock()
        yesterday, today, blocker = SCRUM_VARIANTS[(sequence - 1) % len(SCRUM_VARIANTS)]
        suffix = f" (v{sequence})"

        logger.debug("Scrum draft generated", sequence=sequence)
        return GeneratedScrumUpdate(
            scrum_date=generated_at.date(),
            generated_time=generated_at,
            what_i_did_yesterday=yesterday + suffix,
            what_i_plan_to_do_today=today + suffix,
            blocker=blocker + suffix,
        )

    async def try_generate(self, conversation: "Conversation") -> Optional[GeneratedScrumUpdate]:
        return self.try_generate_for_message(conversation.last_user_text())
