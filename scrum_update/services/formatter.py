"""
Canonical text block for scrum update drafts.

    Scrum update for 2026-10-18
    Generated at: 2026-10-18T09:30:00.123456Z

    Yesterday: ...
    Today: ...
    Blocker: ...

The parser is the legacy path: it recovers a draft from an assistant reply
when no structured metadata came with it.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import ValidationError

from scrum_update.core.constants import (
    BLOCKER_LABEL,
    GENERATED_AT_LABEL,
    SCRUM_HEADER_PREFIX,
    TODAY_LABEL,
    YESTERDAY_LABEL,
)
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, as_utc

MIN_BLOCK_LINES = 5


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with microseconds and a ``Z`` suffix."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    value = text.strip()
    if value[-1:] in ("Z", "z"):
        value = value[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def format_scrum_update(draft: GeneratedScrumUpdate) -> str:
    """Render a draft as the canonical block."""
    return "\n".join(
        [
            f"{SCRUM_HEADER_PREFIX}{draft.scrum_date.isoformat()}",
            f"{GENERATED_AT_LABEL} {format_timestamp(draft.generated_time)}",
            "",
            f"{YESTERDAY_LABEL} {draft.what_i_did_yesterday}",
            f"{TODAY_LABEL} {draft.what_i_plan_to_do_today}",
            f"{BLOCKER_LABEL} {draft.blocker}",
        ]
    )


def _starts_with(line: str, prefix: str) -> bool:
    return line[: len(prefix)].lower() == prefix.lower()


def _extract_in_order(lines: list[str], labels: tuple[str, ...]) -> Optional[list[str]]:
    values: list[str] = []
    position = 1
    for label in labels:
        for index in range(position, len(lines)):
            if _starts_with(lines[index], label):
                value = lines[index][len(label):].strip()
                if not value:
                    return None
                values.append(value)
                position = index + 1
                break
        else:
            return None
    return values


def parse_scrum_update(text: Optional[str]) -> Optional[GeneratedScrumUpdate]:
    """
    Recover a draft from the canonical block.

    Leading/trailing blank lines and per-line whitespace are tolerated;
    renamed or reordered labels are not. Returns None for anything else.
    """
    if not text or not text.strip():
        return None

    lines = [line.strip() for line in text.split("\n") if line.strip()]
    if len(lines) < MIN_BLOCK_LINES or not _starts_with(lines[0], SCRUM_HEADER_PREFIX):
        return None

    try:
        scrum_date = date.fromisoformat(lines[0][len(SCRUM_HEADER_PREFIX):].strip())
    except ValueError:
        return None

    values = _extract_in_order(
        lines, (GENERATED_AT_LABEL, YESTERDAY_LABEL, TODAY_LABEL, BLOCKER_LABEL)
    )
    if values is None:
        return None

    generated_text, yesterday, today, blocker = values
    generated_time = parse_timestamp(generated_text)
    if generated_time is None:
        return None

    try:
        return GeneratedScrumUpdate(
            scrum_date=scrum_date,
            generated_time=generated_time,
            what_i_did_yesterday=yesterday,
            what_i_plan_to_do_today=today,
            blocker=blocker,
        )
    except ValidationError:
        return None
