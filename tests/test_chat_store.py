import pytest
from datetime import datetime, timedelta

from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from models.chat import MessageModel
from services import chat_store

pytestmark = pytest.mark.asyncio


# ── Helpers ───────────────────────────────────────────────────────────────────

async def _group(db, creator, *others, name="Design Crew"):
    return await chat_store.create_group_chat(db, creator["id"], name, [u["id"] for u in others])


async def _seed_messages(db, chat_id, sender_id, count, start=None):
    """Insert messages one second apart so created_at alone orders them."""
    start = start or datetime(2026, 1, 1, 9, 0, 0)
    messages = []
    for i in range(count):
        message = MessageModel(chat_id=chat_id, sender_id=sender_id, content=f"m{i}", read_by=[sender_id], created_at=start + timedelta(seconds=i))
        await db.messages.insert_one(message.model_dump())
        messages.append(message)
    return messages


# ── CHAT CREATION ─────────────────────────────────────────────────────────────

async def test_project_chat_is_created_once(db):
    first, created = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    second, created_again = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    assert created is True
    assert created_again is False
    assert first["id"] == second["id"]
    assert await db.chats.count_documents({"kind": "project"}) == 1


async def test_task_chat_is_created_once(db):
    first, _ = await chat_store.get_or_create_chat_for_task(db, "task_1")
    second, _ = await chat_store.get_or_create_chat_for_task(db, "task_1")
    assert first["id"] == second["id"]
    assert await chat_store.find_chat_for_task(db, "task_1") is not None
    assert await chat_store.find_chat_for_task(db, "task_2") is None


async def test_personal_chat_is_shared_by_the_pair(db, test_user, jane):
    chat, created = await chat_store.get_or_create_personal_chat(db, test_user["id"], jane["id"])
    same, created_again = await chat_store.get_or_create_personal_chat(db, jane["id"], test_user["id"])
    assert created and not created_again
    assert chat["id"] == same["id"]
    assert sorted(await chat_store.member_ids(db, chat["id"])) == sorted([test_user["id"], jane["id"]])


async def test_personal_chat_with_self_rejected(db, test_user):
    with pytest.raises(ValidationError):
        await chat_store.get_or_create_personal_chat(db, test_user["id"], test_user["id"])


async def test_personal_chat_display_name_is_the_other_user(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_personal_chat(db, test_user["id"], jane["id"])
    assert await chat_store.resolve_display_name(db, chat, test_user["id"]) == "Jane Doe"
    assert await chat_store.resolve_display_name(db, chat, jane["id"]) == "Test Owner"


async def test_group_chat_requires_known_users(db, test_user):
    with pytest.raises(NotFoundError):
        await chat_store.create_group_chat(db, test_user["id"], "Ghosts", ["nobody"])


# ── MEMBERSHIP ────────────────────────────────────────────────────────────────

async def test_require_member_rejects_outsiders(db, test_user, jane, bob):
    chat = await _group(db, test_user, jane)
    assert (await chat_store.require_member(db, chat["id"], jane["id"]))["id"] == chat["id"]
    with pytest.raises(ForbiddenError):
        await chat_store.require_member(db, chat["id"], bob["id"])


async def test_require_member_unknown_chat(db, test_user):
    with pytest.raises(NotFoundError):
        await chat_store.require_member(db, "missing_chat", test_user["id"])


async def test_add_member_twice_conflicts(db, test_user, jane):
    chat = await _group(db, test_user)
    await chat_store.add_member(db, chat["id"], jane["id"])
    with pytest.raises(ConflictError):
        await chat_store.add_member(db, chat["id"], jane["id"])
    assert await db.chat_members.count_documents({"chat_id": chat["id"], "user_id": jane["id"]}) == 1


# ── MESSAGES ──────────────────────────────────────────────────────────────────

async def test_append_message_marks_sender_as_reader(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    message = await chat_store.append_message(db, chat["id"], test_user["id"], "hello")
    assert message["read_by"] == [test_user["id"]]
    assert message["sender"]["name"] == "Test Owner"
    assert "_id" not in message


@pytest.mark.parametrize("content", ["", "   ", None])
async def test_append_message_rejects_empty_content(db, test_user, content):
    chat = await _group(db, test_user)
    with pytest.raises(ValidationError):
        await chat_store.append_message(db, chat["id"], test_user["id"], content)
    assert await db.messages.count_documents({}) == 0


async def test_append_message_rejects_oversized_content(db, test_user, monkeypatch):
    from config import config
    monkeypatch.setattr(config, "CHAT_MESSAGE_MAX_LENGTH", 10)
    chat = await _group(db, test_user)
    with pytest.raises(ValidationError):
        await chat_store.append_message(db, chat["id"], test_user["id"], "x" * 11)


async def test_list_messages_returns_latest_page_oldest_first(db, test_user):
    chat = await _group(db, test_user)
    await _seed_messages(db, chat["id"], test_user["id"], 5)

    page = await chat_store.list_messages(db, chat["id"], limit=3)
    assert [m["content"] for m in page] == ["m2", "m3", "m4"]


async def test_list_messages_before_cursor_pages_backwards(db, test_user):
    chat = await _group(db, test_user)
    await _seed_messages(db, chat["id"], test_user["id"], 5)

    latest = await chat_store.list_messages(db, chat["id"], limit=3)
    older = await chat_store.list_messages(db, chat["id"], limit=3, before=latest[0]["created_at"])
    assert [m["content"] for m in older] == ["m0", "m1"]


async def test_list_messages_same_timestamp_breaks_ties_by_insertion(db, test_user):
    chat = await _group(db, test_user)
    stamp = datetime(2026, 1, 1, 12, 0, 0)
    for content in ("a", "b", "c"):
        await db.messages.insert_one(MessageModel(chat_id=chat["id"], sender_id=test_user["id"], content=content, created_at=stamp).model_dump())

    page = await chat_store.list_messages(db, chat["id"], limit=2)
    assert [m["content"] for m in page] == ["b", "c"]


async def test_list_messages_before_id_pages_through_same_timestamp(db, test_user):
    chat = await _group(db, test_user)
    stamp = datetime(2026, 1, 1, 12, 0, 0)
    await _seed_messages(db, chat["id"], test_user["id"], 1, start=stamp - timedelta(seconds=1))
    for content in ("a", "b", "c"):
        await db.messages.insert_one(MessageModel(chat_id=chat["id"], sender_id=test_user["id"], content=content, created_at=stamp).model_dump())

    latest = await chat_store.list_messages(db, chat["id"], limit=2)
    older = await chat_store.list_messages(db, chat["id"], limit=2, before_id=latest[0]["id"])
    oldest = await chat_store.list_messages(db, chat["id"], limit=2, before_id=older[0]["id"])

    assert [m["content"] for m in latest] == ["b", "c"]
    assert [m["content"] for m in older] == ["m0", "a"]
    assert oldest == []


async def test_list_messages_unknown_before_id(db, test_user):
    chat = await _group(db, test_user)
    with pytest.raises(NotFoundError):
        await chat_store.list_messages(db, chat["id"], before_id="missing")


async def test_appended_message_timestamp_matches_stored_precision(db, test_user):
    chat = await _group(db, test_user)
    message = await chat_store.append_message(db, chat["id"], test_user["id"], "hello")
    # The store keeps milliseconds; a returned timestamp must be usable as a cursor as-is
    assert message["created_at"].microsecond % 1000 == 0

    page = await chat_store.list_messages(db, chat["id"], before=message["created_at"])
    assert page == []


async def test_mark_read_is_idempotent(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    messages = await _seed_messages(db, chat["id"], test_user["id"], 2)
    ids = [m.id for m in messages]

    assert await chat_store.mark_read(db, chat["id"], jane["id"], ids) == 2
    assert await chat_store.mark_read(db, chat["id"], jane["id"], ids) == 0

    stored = await db.messages.find_one({"id": ids[0]})
    assert stored["read_by"].count(jane["id"]) == 1


async def test_mark_read_ignores_messages_from_other_chats(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    other = await _group(db, test_user, jane, name="Elsewhere")
    [message] = await _seed_messages(db, other["id"], test_user["id"], 1)
    assert await chat_store.mark_read(db, chat["id"], jane["id"], [message.id]) == 0


async def test_mark_read_requires_a_list(db, test_user):
    chat = await _group(db, test_user)
    with pytest.raises(ValidationError):
        await chat_store.mark_read(db, chat["id"], test_user["id"], "not-a-list")


async def test_only_sender_can_delete_message(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    message = await chat_store.append_message(db, chat["id"], test_user["id"], "mine")

    with pytest.raises(ForbiddenError):
        await chat_store.delete_message(db, message["id"], jane["id"])
    assert await db.messages.count_documents({"id": message["id"]}) == 1

    await chat_store.delete_message(db, message["id"], test_user["id"])
    assert await db.messages.count_documents({"id": message["id"]}) == 0


async def test_list_chats_reports_unread_counts(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    await chat_store.append_message(db, chat["id"], test_user["id"], "one")
    await chat_store.append_message(db, chat["id"], test_user["id"], "two")

    [listed] = await chat_store.list_chats_for_user(db, jane["id"])
    assert listed["id"] == chat["id"]
    assert listed["unread_count"] == 2
    assert listed["display_name"] == "Design Crew"


async def test_delete_chat_cascades(db, test_user, jane):
    chat = await _group(db, test_user, jane)
    await chat_store.append_message(db, chat["id"], test_user["id"], "bye")
    await chat_store.delete_chat(db, chat["id"])
    assert await db.chats.count_documents({"id": chat["id"]}) == 0
    assert await db.chat_members.count_documents({"chat_id": chat["id"]}) == 0
    assert await db.messages.count_documents({"chat_id": chat["id"]}) == 0
