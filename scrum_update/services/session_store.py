"""
Session store: chat sessions, their messages and the day-wise scrum update.

Every operation is scoped to the user id resolved by the injected
CurrentUserContext. A session owned by another user is indistinguishable
from a missing one: reads return None and writes are silent no-ops.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Awaitable, Callable, Hashable, Iterable, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from scrum_update.core.constants import FREEFORM_SESSION_TITLE, SCRUM_SESSION_TITLE, MessageRole
from scrum_update.core.exceptions import InvalidRequestError
from scrum_update.core.logging import bind_context, get_logger
from scrum_update.database.config import unit_of_work
from scrum_update.database.models import (
    AppUserDB,
    ChatMessageDB,
    ChatSessionDB,
    DayWiseScrumUpdateDB,
)
from scrum_update.domain.scrum_update import (
    GeneratedScrumUpdate,
    MessageMetadata,
    as_utc,
    dump_message_metadata,
    load_message_metadata,
    utc_now,
)
from scrum_update.domain.session import ChatMessage, ChatSession, DayWiseScrumUpdate, MessageInput
from scrum_update.services.identity import CurrentUserContext

logger = get_logger(__name__)

T = TypeVar("T")

MessageLike = MessageInput | tuple[str, str] | tuple[str, str, Optional[MessageMetadata]]


class KeyedLocks:
    """
    Per-key asyncio locks, created on demand and dropped once unused.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every store in the process; stores are built per request.
scrum_date_locks = KeyedLocks()


def normalize_role(role: str) -> str:
    """Lower-case and validate a message role."""
    value = (role or "").strip().lower()
    try:
        return MessageRole(value).value
    except ValueError:
        raise InvalidRequestError(f"Unsupported message role '{role}'", field="role") from None


def _coerce_message(message: MessageLike) -> MessageInput:
    if isinstance(message, MessageInput):
        return message
    role, content, *rest = message
    return MessageInput(role=role, content=content, metadata=rest[0] if rest else None)


def _to_domain_message(row: ChatMessageDB) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        role=MessageRole(row.role),
        content=row.content,
        timestamp=as_utc(row.timestamp),
        metadata=load_message_metadata(row.metadata_json),
    )


def _to_domain_scrum_update(row: DayWiseScrumUpdateDB) -> DayWiseScrumUpdate:
    return DayWiseScrumUpdate(
        generated_time=as_utc(row.generated_time),
        what_i_did_yesterday=row.what_i_did_yesterday,
        what_i_plan_to_do_today=row.what_i_plan_to_do_today,
        blocker=row.blocker,
    )


def _to_domain_session(
    row: ChatSessionDB,
    messages: Optional[list[ChatMessageDB]] = None,
    scrum_update: Optional[DayWiseScrumUpdateDB] = None,
) -> ChatSession:
    # Relationship attributes are never touched here; callers pass what they loaded.
    return ChatSession(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        scrum_date=row.scrum_date,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        messages=[_to_domain_message(m) for m in messages or []],
        scrum_update=_to_domain_scrum_update(scrum_update) if scrum_update else None,
    )


def _apply_draft(record: DayWiseScrumUpdateDB, draft: GeneratedScrumUpdate) -> None:
    record.generated_time = draft.generated_time
    record.what_i_did_yesterday = draft.what_i_did_yesterday
    record.what_i_plan_to_do_today = draft.what_i_plan_to_do_today
    record.blocker = draft.blocker


class SessionStore:
    """
    Owns chat sessions, messages and day-wise scrum updates for one caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_context: CurrentUserContext,
        locks: Optional[KeyedLocks] = None,
        max_write_attempts: int = 3,
    ) -> None:
        """
        Initialize the store.

        Args:
            session_factory: Async SQLAlchemy session factory
            user_context: Resolver for the caller's user id
            locks: Per-(user, date) lock registry (process-wide by default)
            max_write_attempts: Attempts for writes that may hit a uniqueness conflict
        """
        self.session_factory = session_factory
        self.user_context = user_context
        self.locks = locks if locks is not None else scrum_date_locks
        self.max_write_attempts = max_write_attempts

    async def _user_id(self) -> str:
        user_id = await self.user_context.get_required_user_id()
        bind_context(user_id=user_id)
        return user_id

    async def _retry_on_conflict(
        self,
        operation: str,
        attempt: Callable[[], Awaitable[T]],
    ) -> T:
        """Run a unit of work again when a concurrent writer won a unique index."""
        for number in range(1, self.max_write_attempts + 1):
            try:
                return await attempt()
            except IntegrityError as e:
                if number == self.max_write_attempts:
                    raise
                logger.info(
                    "Write conflict, retrying",
                    operation=operation,
                    attempt=number,
                    error=str(e.orig),
                )
        raise AssertionError("unreachable")

    @staticmethod
    async def _ensure_user(db: AsyncSession, user_id: str) -> None:
        if await db.get(AppUserDB, user_id) is None:
            db.add(AppUserDB(id=user_id, created_at=utc_now()))
            await db.flush()

    @staticmethod
    async def _get_owned(
        db: AsyncSession,
        user_id: str,
        session_id: int,
        *options: Any,
    ) -> Optional[ChatSessionDB]:
        result = await db.execute(
            select(ChatSessionDB)
            .options(*options)
            .where(ChatSessionDB.id == session_id, ChatSessionDB.user_id == user_id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_freeform_session(self) -> ChatSession:
        """
        Create a chat session without a scrum date.

        The title is "Chat {n}" where n is one more than the caller's current
        session count (a count, not max+1, so titles can repeat after deletes).
        """
        user_id = await self._user_id()

        async def attempt() -> ChatSession:
            async with unit_of_work(self.session_factory) as db:
                await self._ensure_user(db, user_id)
                count = await db.scalar(
                    select(func.count())
                    .select_from(ChatSessionDB)
                    .where(ChatSessionDB.user_id == user_id)
                )
                now = utc_now()
                row = ChatSessionDB(
                    user_id=user_id,
                    title=FREEFORM_SESSION_TITLE.format(number=(count or 0) + 1),
                    scrum_date=None,
                    created_at=now,
                    updated_at=now,
                )
                db.add(row)
                await db.flush()
                return _to_domain_session(row)

        session = await self._retry_on_conflict("create_freeform_session", attempt)
        logger.info("Session created", user_id=user_id, session_id=session.id, title=session.title)
        return session

    async def get_or_create_session_for_scrum_update(
        self,
        draft: GeneratedScrumUpdate,
    ) -> ChatSession:
        """
        Return the caller's session for ``draft.scrum_date``, creating it if needed.

        The session's scrum update is overwritten with the draft's fields.
        Calls for the same (user, date) are serialised by a keyed lock; the
        (user_id, scrum_date) unique index turns any cross-process race into
        a retry that takes the update path.
        """
        user_id = await self._user_id()

        async with self.locks.hold((user_id, draft.scrum_date)):
            return await self._retry_on_conflict(
                "get_or_create_session_for_scrum_update",
                lambda: self._upsert_scrum_session(user_id, draft),
            )

    async def _upsert_scrum_session(self, user_id: str, draft: GeneratedScrumUpdate) -> ChatSession:
        async with unit_of_work(self.session_factory) as db:
            result = await db.execute(
                select(ChatSessionDB)
                .options(selectinload(ChatSessionDB.scrum_update))
                .where(
                    ChatSessionDB.user_id == user_id,
                    ChatSessionDB.scrum_date == draft.scrum_date,
                )
            )
            row = result.scalar_one_or_none()
            now = utc_now()

            if row is None:
                await self._ensure_user(db, user_id)
                row = ChatSessionDB(
                    user_id=user_id,
                    title=SCRUM_SESSION_TITLE.format(date=draft.scrum_date.isoformat()),
                    scrum_date=draft.scrum_date,
                    created_at=now,
                    updated_at=now,
                )
                record = DayWiseScrumUpdateDB(user_id=user_id)
                _apply_draft(record, draft)
                row.scrum_update = record
                db.add(row)
                created = True
            else:
                record = row.scrum_update
                if record is None:
                    record = DayWiseScrumUpdateDB(user_id=user_id)
                    row.scrum_update = record
                _apply_draft(record, draft)
                row.updated_at = now
                created = False

            await db.flush()
            session = _to_domain_session(row, scrum_update=record)

        logger.info(
            "Scrum session created" if created else "Scrum session updated",
            user_id=user_id,
            session_id=session.id,
            scrum_date=draft.scrum_date.isoformat(),
        )
        return session

    async def list_sessions(self) -> list[ChatSession]:
        """List the caller's sessions, most recently updated first."""
        user_id = await self._user_id()

        async with self.session_factory() as db:
            result = await db.execute(
                select(ChatSessionDB)
                .where(ChatSessionDB.user_id == user_id)
                .order_by(ChatSessionDB.updated_at.desc(), ChatSessionDB.id.desc())
            )
            return [_to_domain_session(row) for row in result.scalars().all()]

    async def get_session(self, session_id: int) -> Optional[ChatSession]:
        """Get a session with its ordered messages and scrum update, or None."""
        user_id = await self._user_id()

        async with self.session_factory() as db:
            row = await self._get_owned(
                db, user_id, session_id, selectinload(ChatSessionDB.scrum_update)
            )
            if row is None:
                return None

            messages = await db.execute(
                select(ChatMessageDB)
                .where(ChatMessageDB.chat_session_id == row.id)
                .order_by(ChatMessageDB.timestamp.asc(), ChatMessageDB.id.asc())
            )
            return _to_domain_session(
                row,
                messages=list(messages.scalars().all()),
                scrum_update=row.scrum_update,
            )

    async def find_session_for_date(self, scrum_date: date) -> Optional[ChatSession]:
        """Get the caller's session for a scrum date without creating it."""
        user_id = await self._user_id()

        async with self.session_factory() as db:
            result = await db.execute(
                select(ChatSessionDB.id).where(
                    ChatSessionDB.user_id == user_id,
                    ChatSessionDB.scrum_date == scrum_date,
                )
            )
            session_id = result.scalar_one_or_none()

        return await self.get_session(session_id) if session_id is not None else None

    async def delete_session(self, session_id: int) -> None:
        """Delete a session with its messages and scrum update."""
        user_id = await self._user_id()

        async with unit_of_work(self.session_factory) as db:
            row = await self._get_owned(db, user_id, session_id)
            if row is None:
                return

            await db.execute(delete(ChatMessageDB).where(ChatMessageDB.chat_session_id == row.id))
            await db.execute(
                delete(DayWiseScrumUpdateDB).where(DayWiseScrumUpdateDB.chat_session_id == row.id)
            )
            await db.execute(delete(ChatSessionDB).where(ChatSessionDB.id == row.id))

        logger.info("Session deleted", user_id=user_id, session_id=session_id)

    async def rename_session(self, session_id: int, title: str) -> None:
        """Rename a session."""
        if not title or not title.strip():
            raise InvalidRequestError("Session title must not be empty", field="title")

        user_id = await self._user_id()

        async with unit_of_work(self.session_factory) as db:
            row = await self._get_owned(db, user_id, session_id)
            if row is None:
                return
            row.title = title.strip()
            row.updated_at = utc_now()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(
        self,
        session_id: int,
        role: str,
        content: str,
        metadata: Optional[MessageMetadata] = None,
    ) -> None:
        """Append one message to a session."""
        normalized_role = normalize_role(role)
        user_id = await self._user_id()

        async with unit_of_work(self.session_factory) as db:
            row = await self._get_owned(db, user_id, session_id)
            if row is None:
                logger.debug("Append ignored, session not found", session_id=session_id)
                return

            now = utc_now()
            db.add(
                ChatMessageDB(
                    chat_session_id=row.id,
                    user_id=user_id,
                    role=normalized_role,
                    content=content,
                    timestamp=now,
                    metadata_json=dump_message_metadata(metadata),
                )
            )
            row.updated_at = now

    async def replace_messages(self, session_id: int, messages: Iterable[MessageLike]) -> None:
        """
        Replace a session's transcript.

        Entries with empty or whitespace-only content are skipped. Inserted
        rows share one fresh timestamp; insertion order is kept by id.
        """
        entries = [_coerce_message(m) for m in messages]
        roles = [normalize_role(m.role) for m in entries]
        user_id = await self._user_id()

        async with unit_of_work(self.session_factory) as db:
            row = await self._get_owned(db, user_id, session_id)
            if row is None:
                logger.debug("Replace ignored, session not found", session_id=session_id)
                return

            await db.execute(delete(ChatMessageDB).where(ChatMessageDB.chat_session_id == row.id))

            now = utc_now()
            inserted = 0
            for entry, role in zip(entries, roles):
                if not entry.content or not entry.content.strip():
                    continue
                db.add(
                    ChatMessageDB(
                        chat_session_id=row.id,
                        user_id=user_id,
                        role=role,
                        content=entry.content,
                        timestamp=now,
                        metadata_json=dump_message_metadata(entry.metadata),
                    )
                )
                # Flush per row so ids follow list order
                await db.flush()
                inserted += 1

            row.updated_at = now

        logger.debug("Messages replaced", session_id=session_id, count=inserted)
