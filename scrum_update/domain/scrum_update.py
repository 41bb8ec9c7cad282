"""
Scrum update draft and message metadata domain models.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from scrum_update.core.constants import MetadataType
from scrum_update.core.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GeneratedScrumUpdate(BaseModel):
    """A generated scrum update candidate, not necessarily persisted."""

    scrum_date: date = Field(..., description="Calendar day the update is for")
    generated_time: datetime = Field(..., description="UTC time the draft was generated")
    what_i_did_yesterday: str = Field(..., min_length=1)
    what_i_plan_to_do_today: str = Field(..., min_length=1)
    blocker: str = Field(..., min_length=1)

    @field_validator("generated_time")
    @classmethod
    def normalize_generated_time(cls, v: datetime) -> datetime:
        return as_utc(v)


class ScrumGenerationMetadata(BaseModel):
    """Metadata captured on an assistant message that produced a draft."""

    type: Literal["scrum-generation"] = MetadataType.SCRUM_GENERATION.value
    scrum_update: GeneratedScrumUpdate
    captured_at: datetime = Field(default_factory=utc_now)

    @field_validator("captured_at")
    @classmethod
    def normalize_captured_at(cls, v: datetime) -> datetime:
        return as_utc(v)

# Every metadata kind is a model with a literal ``type`` tag; new kinds join this union.
MessageMetadata = Annotated[
    Union[ScrumGenerationMetadata],
    Field(discriminator="type"),
]

_metadata_adapter: TypeAdapter[MessageMetadata] = TypeAdapter(MessageMetadata)

_UNKNOWN_TAG_ERRORS = frozenset({"union_tag_invalid", "union_tag_not_found"})


def dump_message_metadata(metadata: Optional[MessageMetadata]) -> Optional[str]:
    """Serialize a metadata payload (with its tag) for storage."""
    if metadata is None:
        return None
    return _metadata_adapter.dump_json(metadata).decode()


def load_message_metadata(raw: Optional[str]) -> Optional[MessageMetadata]:
    """
    Deserialize a stored metadata payload by its ``type`` tag.

    Unknown tags and malformed payloads read back as no metadata.
    """
    if not raw or not raw.strip():
        return None

    try:
        return _metadata_adapter.validate_json(raw)
    except ValidationError as e:
        if any(error["type"] in _UNKNOWN_TAG_ERRORS for error in e.errors()):
            logger.warning("Unknown message metadata type", error=str(e))
        else:
            logger.warning("Invalid message metadata", error=str(e))
        return None
