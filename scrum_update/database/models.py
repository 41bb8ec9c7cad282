"""SQLAlchemy database models for chat sessions, scrum updates and Jira linkage."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from scrum_update.domain.scrum_update import utc_now


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class AppUserDB(Base):
    """A tenant. Rows are created lazily on first write."""
    __tablename__ = "app_users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    def __repr__(self) -> str:
        return f"<AppUserDB(id='{self.id}')>"


class ChatSessionDB(Base):
    """Chat session database model.

    At most one session exists per (user_id, scrum_date) when scrum_date is set.
    """
    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "scrum_date", name="uq_chat_sessions_user_scrum_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    scrum_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    messages: Mapped[list["ChatMessageDB"]] = relationship(
        back_populates="chat_session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: (ChatMessageDB.timestamp, ChatMessageDB.id),
    )
    scrum_update: Mapped[Optional["DayWiseScrumUpdateDB"]] = relationship(
        back_populates="chat_session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<ChatSessionDB(id={self.id}, user_id='{self.user_id}', title='{self.title}')>"


class ChatMessageDB(Base):
    """Chat message database model.

    Read order is (timestamp, id); id breaks ties between rows written in the same instant.
    """
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_user_session_timestamp", "user_id", "chat_session_id", "timestamp"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    chat_session: Mapped[ChatSessionDB] = relationship(back_populates="messages")


class DayWiseScrumUpdateDB(Base):
    """Scrum update recorded for a session. Exactly 0 or 1 per session."""
    __tablename__ = "day_wise_scrum_updates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    generated_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    what_i_did_yesterday: Mapped[str] = mapped_column(Text, nullable=False)
    what_i_plan_to_do_today: Mapped[str] = mapped_column(Text, nullable=False)
    blocker: Mapped[str] = mapped_column(Text, nullable=False)

    chat_session: Mapped[ChatSessionDB] = relationship(back_populates="scrum_update")


class JiraOAuthTokenDB(Base):
    """Durable link between an anonymous browser id and an Atlassian account."""
    __tablename__ = "jira_oauth_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    local_user_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    authenticated_user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    access_token_expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    scope: Mapped[str] = mapped_column(Text, nullable=False, default="")
    cloud_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
