"""
Unit tests for the session store.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrum_update.core.constants import MessageRole
from scrum_update.core.exceptions import InvalidRequestError
from scrum_update.database.models import AppUserDB, ChatMessageDB, ChatSessionDB, DayWiseScrumUpdateDB
from scrum_update.domain.scrum_update import GeneratedScrumUpdate, ScrumGenerationMetadata
from scrum_update.domain.session import ChatSession, MessageInput
from scrum_update.services.identity import StaticUserContext
from scrum_update.services.session_store import KeyedLocks, SessionStore


def make_draft(
    scrum_date: date = date(2026, 10, 18),
    yesterday: str = "Did things",
    today: str = "Do things",
    blocker: str = "No blocker.",
) -> GeneratedScrumUpdate:
    return GeneratedScrumUpdate(
        scrum_date=scrum_date,
        generated_time=datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc),
        what_i_did_yesterday=yesterday,
        what_i_plan_to_do_today=today,
        blocker=blocker,
    )


async def count_rows(session_factory: async_sessionmaker[AsyncSession], model: type) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_freeform_titles_follow_call_order(store: SessionStore) -> None:
    titles = [(await store.create_freeform_session()).title for _ in range(4)]

    assert titles == ["Chat 1", "Chat 2", "Chat 3", "Chat 4"]


@pytest.mark.asyncio
async def test_freeform_numbering_uses_count_after_delete(store: SessionStore) -> None:
    first = await store.create_freeform_session()
    await store.create_freeform_session()
    await store.delete_session(first.id)

    third = await store.create_freeform_session()

    assert third.title == "Chat 2"


@pytest.mark.asyncio
async def test_user_row_created_lazily(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    assert await count_rows(session_factory, AppUserDB) == 0

    await store.create_freeform_session()
    await store.create_freeform_session()

    async with session_factory() as db:
        user = await db.get(AppUserDB, "user-1")
    assert user is not None
    assert await count_rows(session_factory, AppUserDB) == 1


@pytest.mark.asyncio
async def test_get_or_create_reuses_session_for_same_date(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    first = await store.get_or_create_session_for_scrum_update(make_draft(yesterday="first"))
    second = await store.get_or_create_session_for_scrum_update(
        make_draft(yesterday="second", today="later", blocker="Waiting")
    )

    assert first.id == second.id
    assert first.title == "Scrum Update 2026-10-18"
    assert await count_rows(session_factory, ChatSessionDB) == 1
    assert await count_rows(session_factory, DayWiseScrumUpdateDB) == 1

    loaded = await store.get_session(first.id)
    assert loaded is not None
    assert loaded.scrum_date == date(2026, 10, 18)
    assert loaded.scrum_update is not None
    assert loaded.scrum_update.what_i_did_yesterday == "second"
    assert loaded.scrum_update.what_i_plan_to_do_today == "later"
    assert loaded.scrum_update.blocker == "Waiting"


@pytest.mark.asyncio
async def test_get_or_create_separates_dates(store: SessionStore) -> None:
    first = await store.get_or_create_session_for_scrum_update(make_draft(date(2026, 10, 17)))
    second = await store.get_or_create_session_for_scrum_update(make_draft(date(2026, 10, 18)))

    assert first.id != second.id
    assert second.title == "Scrum Update 2026-10-18"


@pytest.mark.asyncio
async def test_concurrent_get_or_create_yields_one_session(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    drafts = [make_draft(yesterday=f"attempt {i}") for i in range(5)]

    sessions = await asyncio.gather(
        *(store.get_or_create_session_for_scrum_update(d) for d in drafts)
    )

    assert len({s.id for s in sessions}) == 1
    assert await count_rows(session_factory, ChatSessionDB) == 1
    assert await count_rows(session_factory, DayWiseScrumUpdateDB) == 1
    assert len(store.locks) == 0


@pytest.mark.asyncio
async def test_get_or_create_without_shared_lock_relies_on_unique_index(
    session_factory: async_sessionmaker[AsyncSession],
    user_context: StaticUserContext,
) -> None:
    # Separate lock registries stand in for separate processes
    stores = [SessionStore(session_factory, user_context, locks=KeyedLocks()) for _ in range(4)]

    sessions = await asyncio.gather(
        *(
            s.get_or_create_session_for_scrum_update(make_draft(yesterday=f"writer {i}"))
            for i, s in enumerate(stores)
        )
    )

    assert len({s.id for s in sessions}) == 1
    assert await count_rows(session_factory, ChatSessionDB) == 1
    assert await count_rows(session_factory, DayWiseScrumUpdateDB) == 1


@pytest.mark.asyncio
async def test_integrity_conflict_is_retried_as_update(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    existing = await store.get_or_create_session_for_scrum_update(make_draft(yesterday="first"))
    original_upsert = store._upsert_scrum_session
    calls = 0

    async def conflicting_upsert(user_id: str, draft: GeneratedScrumUpdate) -> ChatSession:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise IntegrityError("INSERT INTO chat_sessions", {}, Exception("UNIQUE constraint failed"))
        return await original_upsert(user_id, draft)

    store._upsert_scrum_session = conflicting_upsert  # type: ignore[method-assign]

    session = await store.get_or_create_session_for_scrum_update(make_draft(yesterday="second"))

    assert calls == 2
    assert session.id == existing.id
    assert await count_rows(session_factory, ChatSessionDB) == 1
    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.scrum_update is not None
    assert loaded.scrum_update.what_i_did_yesterday == "second"


@pytest.mark.asyncio
async def test_integrity_conflict_gives_up_after_max_attempts(
    session_factory: async_sessionmaker[AsyncSession],
    user_context: StaticUserContext,
) -> None:
    store = SessionStore(session_factory, user_context, locks=KeyedLocks(), max_write_attempts=2)

    async def always_conflicting(user_id: str, draft: GeneratedScrumUpdate) -> ChatSession:
        raise IntegrityError("INSERT INTO chat_sessions", {}, Exception("UNIQUE constraint failed"))

    store._upsert_scrum_session = always_conflicting  # type: ignore[method-assign]

    with pytest.raises(IntegrityError):
        await store.get_or_create_session_for_scrum_update(make_draft())


@pytest.mark.asyncio
async def test_different_users_same_date_get_separate_sessions(
    store: SessionStore,
    other_store: SessionStore,
) -> None:
    mine = await store.get_or_create_session_for_scrum_update(make_draft())
    theirs = await other_store.get_or_create_session_for_scrum_update(make_draft())

    assert mine.id != theirs.id
    assert [s.id for s in await store.list_sessions()] == [mine.id]
    assert [s.id for s in await other_store.list_sessions()] == [theirs.id]


@pytest.mark.asyncio
async def test_list_sessions_most_recent_first(store: SessionStore) -> None:
    first = await store.create_freeform_session()
    second = await store.create_freeform_session()
    await store.append_message(first.id, "user", "bump")

    sessions = await store.list_sessions()

    assert [s.id for s in sessions] == [first.id, second.id]


@pytest.mark.asyncio
async def test_replace_messages_overwrites_transcript(store: SessionStore) -> None:
    session = await store.create_freeform_session()

    await store.replace_messages(session.id, [("user", "First")])
    await store.replace_messages(session.id, [("User", "Second"), ("ASSISTANT", "Reply")])

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert [(m.role, m.content) for m in loaded.messages] == [
        (MessageRole.USER, "Second"),
        (MessageRole.ASSISTANT, "Reply"),
    ]


@pytest.mark.asyncio
async def test_replace_messages_skips_blank_content(store: SessionStore) -> None:
    session = await store.create_freeform_session()

    await store.replace_messages(
        session.id,
        [
            MessageInput(role="user", content="hello"),
            MessageInput(role="assistant", content="   "),
            MessageInput(role="assistant", content=""),
        ],
    )

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert [m.content for m in loaded.messages] == ["hello"]


@pytest.mark.asyncio
async def test_replace_messages_keeps_metadata(store: SessionStore) -> None:
    session = await store.create_freeform_session()
    metadata = ScrumGenerationMetadata(scrum_update=make_draft())

    await store.replace_messages(
        session.id,
        [("user", "scrum update"), ("assistant", "Scrum update for 2026-10-18", metadata)],
    )

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.messages[0].metadata is None
    assert loaded.messages[1].metadata is not None
    assert loaded.messages[1].metadata.scrum_update.what_i_did_yesterday == "Did things"


@pytest.mark.asyncio
async def test_identical_timestamps_read_back_in_insertion_order(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session = await store.create_freeform_session()
    moment = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    async with session_factory() as db:
        for content in ["one", "two", "three", "four"]:
            db.add(
                ChatMessageDB(
                    chat_session_id=session.id,
                    user_id="user-1",
                    role="user",
                    content=content,
                    timestamp=moment,
                )
            )
            await db.flush()
        await db.commit()

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert [m.content for m in loaded.messages] == ["one", "two", "three", "four"]


@pytest.mark.asyncio
async def test_append_message_normalizes_role_and_bumps_updated_at(store: SessionStore) -> None:
    session = await store.create_freeform_session()

    await store.append_message(session.id, "  Assistant ", "hi there")

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.messages[0].role == MessageRole.ASSISTANT
    assert loaded.updated_at >= session.updated_at


@pytest.mark.asyncio
async def test_unknown_role_rejected(store: SessionStore) -> None:
    session = await store.create_freeform_session()

    with pytest.raises(InvalidRequestError):
        await store.append_message(session.id, "robot", "beep")

    with pytest.raises(InvalidRequestError):
        await store.replace_messages(session.id, [("user", "ok"), ("tool", "nope")])


@pytest.mark.asyncio
async def test_foreign_session_is_invisible(
    store: SessionStore,
    other_store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session = await store.create_freeform_session()
    await store.append_message(session.id, "user", "mine")

    assert await other_store.get_session(session.id) is None

    await other_store.append_message(session.id, "user", "intruder")
    await other_store.replace_messages(session.id, [("user", "overwritten")])
    await other_store.rename_session(session.id, "Stolen")
    await other_store.delete_session(session.id)

    assert await count_rows(session_factory, ChatMessageDB) == 1
    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.title == "Chat 1"
    assert [m.content for m in loaded.messages] == ["mine"]


@pytest.mark.asyncio
async def test_missing_session_operations_are_noops(store: SessionStore) -> None:
    assert await store.get_session(999) is None

    await store.append_message(999, "user", "hello")
    await store.replace_messages(999, [("user", "hello")])
    await store.rename_session(999, "Nothing")
    await store.delete_session(999)


@pytest.mark.asyncio
async def test_delete_session_removes_children(
    store: SessionStore,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    session = await store.get_or_create_session_for_scrum_update(make_draft())
    await store.replace_messages(session.id, [("user", "scrum update"), ("assistant", "draft")])

    await store.delete_session(session.id)

    assert await store.get_session(session.id) is None
    assert await count_rows(session_factory, ChatSessionDB) == 0
    assert await count_rows(session_factory, ChatMessageDB) == 0
    assert await count_rows(session_factory, DayWiseScrumUpdateDB) == 0


@pytest.mark.asyncio
async def test_rename_session(store: SessionStore) -> None:
    session = await store.create_freeform_session()

    await store.rename_session(session.id, "  Planning  ")

    loaded = await store.get_session(session.id)
    assert loaded is not None
    assert loaded.title == "Planning"

    with pytest.raises(InvalidRequestError):
        await store.rename_session(session.id, "   ")


@pytest.mark.asyncio
async def test_find_session_for_date(store: SessionStore) -> None:
    assert await store.find_session_for_date(date(2026, 10, 18)) is None

    created = await store.get_or_create_session_for_scrum_update(make_draft())
    found = await store.find_session_for_date(date(2026, 10, 18))

    assert found is not None
    assert found.id == created.id


@pytest.mark.asyncio
async def test_keyed_locks_drop_unused_keys() -> None:
    locks = KeyedLocks()

    async with locks.hold(("user-1", date(2026, 10, 18))):
        assert len(locks) == 1

    assert len(locks) == 0
