import pytest

from config import config
from models.project import ProjectMemberModel
from services import chat_store, membership_sync

pytestmark = pytest.mark.asyncio


async def _add_project_member(db, project_id, user_id, role="member"):
    await db.project_members.insert_one(ProjectMemberModel(project_id=project_id, user_id=user_id, role=role).model_dump())


async def _chat_member_ids(db, chat_id):
    return sorted(await chat_store.member_ids(db, chat_id))


async def test_sync_without_chat_is_a_no_op(db):
    assert await membership_sync.sync_project_chat(db, "proj_1") is None
    assert await db.chats.count_documents({}) == 0


async def test_sync_with_create_builds_the_chat(db, test_user):
    await _add_project_member(db, "proj_1", test_user["id"], "owner")
    result = await membership_sync.sync_project_chat(db, "proj_1", create=True)
    assert result.added == [test_user["id"]]
    assert await chat_store.find_chat_for_project(db, "proj_1") is not None


async def test_sync_converges_to_project_membership(db, test_user, jane, bob):
    chat, _ = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    for user in (test_user, jane, bob):
        await _add_project_member(db, "proj_1", user["id"])

    result = await membership_sync.sync_project_chat(db, "proj_1")
    assert sorted(result.added) == sorted([test_user["id"], jane["id"], bob["id"]])
    assert await _chat_member_ids(db, chat["id"]) == sorted([test_user["id"], jane["id"], bob["id"]])


async def test_sync_is_idempotent(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    await _add_project_member(db, "proj_1", test_user["id"])
    await _add_project_member(db, "proj_1", jane["id"])

    await membership_sync.sync_project_chat(db, "proj_1")
    again = await membership_sync.sync_project_chat(db, "proj_1")
    assert again.added == []
    assert again.failed == []
    assert await db.chat_members.count_documents({"chat_id": chat["id"]}) == 2


async def test_sync_tolerates_existing_rows(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    await chat_store.add_member(db, chat["id"], test_user["id"])
    await _add_project_member(db, "proj_1", test_user["id"])
    await _add_project_member(db, "proj_1", jane["id"])

    result = await membership_sync.sync_project_chat(db, "proj_1")
    assert result.added == [jane["id"]]
    assert result.failed == []


async def test_removed_member_keeps_access_by_default(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    await _add_project_member(db, "proj_1", test_user["id"])
    await _add_project_member(db, "proj_1", jane["id"])
    await membership_sync.sync_project_chat(db, "proj_1")

    await db.project_members.delete_one({"project_id": "proj_1", "user_id": jane["id"]})
    result = await membership_sync.sync_project_chat(db, "proj_1")

    assert result.removed == []
    assert jane["id"] in await _chat_member_ids(db, chat["id"])


async def test_removed_member_is_pruned_when_revocation_enabled(db, test_user, jane, monkeypatch):
    monkeypatch.setattr(config, "CHAT_REVOKE_REMOVED_MEMBERS", True)
    chat, _ = await chat_store.get_or_create_chat_for_project(db, "proj_1")
    await _add_project_member(db, "proj_1", test_user["id"])
    await _add_project_member(db, "proj_1", jane["id"])
    await membership_sync.sync_project_chat(db, "proj_1")

    await db.project_members.delete_one({"project_id": "proj_1", "user_id": jane["id"]})
    result = await membership_sync.sync_project_chat(db, "proj_1")

    assert result.removed == [jane["id"]]
    assert await _chat_member_ids(db, chat["id"]) == [test_user["id"]]


async def test_task_chat_mirrors_task_members(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_chat_for_task(db, "task_1")
    await db.task_members.insert_one({"task_id": "task_1", "user_id": jane["id"], "role": "responsible", "assigned_by": test_user["id"]})

    result = await membership_sync.sync_task_chat(db, "task_1")
    assert result.added == [jane["id"]]
    assert await _chat_member_ids(db, chat["id"]) == [jane["id"]]


async def test_sync_chat_with_owner_explicit_prune(db, test_user, jane):
    chat, _ = await chat_store.get_or_create_chat_for_task(db, "task_1")
    await membership_sync.sync_chat_with_owner(db, chat["id"], [test_user["id"], jane["id"]])
    result = await membership_sync.sync_chat_with_owner(db, chat["id"], [jane["id"]], prune=True)
    assert result.removed == [test_user["id"]]
    assert await _chat_member_ids(db, chat["id"]) == [jane["id"]]
