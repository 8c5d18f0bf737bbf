"""
Chat persistence: chats, chat membership, owner links and ordered messages.

Messages are totally ordered inside a chat by (created_at, _id). Listing reads
newest-first with an optional `before` cursor on created_at and hands the page
back in chronological order, so concurrent inserts never shift a page the way
offset pagination would.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from config import config
from constants import ChatKinds
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, store_call
from logging_config import get_logger
from models import utc_now
from models.chat import ChatMemberModel, ChatModel, MessageModel, PersonalChatLink, ProjectChatLink, TaskChatLink

logger = get_logger("chat_store")

NO_ID = {"_id": 0}


# --- HELPERS ---

async def _user_identities(db, user_ids: Iterable[str]) -> Dict[str, dict]:
    ids = list({uid for uid in user_ids if uid})
    if not ids:
        return {}
    users = await db.users.find(
        {"id": {"$in": ids}},
        {"_id": 0, "id": 1, "name": 1, "email": 1, "avatar": 1}
    ).to_list(len(ids))
    return {u["id"]: u for u in users}


def _pair_key(user_a: str, user_b: str) -> str:
    low, high = sorted([user_a, user_b])
    return f"{low}:{high}"


def _normalize_cursor(before: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps are naive UTC
    if before is not None and before.tzinfo is not None:
        return before.astimezone(timezone.utc).replace(tzinfo=None)
    return before


# --- CHATS ---

@store_call
async def get_chat(db, chat_id: str) -> dict:
    chat = await db.chats.find_one({"id": chat_id}, NO_ID)
    if not chat:
        raise NotFoundError("Chat not found")
    return chat


@store_call
async def is_member(db, chat_id: str, user_id: str) -> bool:
    return await db.chat_members.find_one({"chat_id": chat_id, "user_id": user_id}) is not None


async def require_member(db, chat_id: str, user_id: str) -> dict:
    """Return the chat if `user_id` belongs to it. Checked before any mutation."""
    chat = await get_chat(db, chat_id)
    if not await is_member(db, chat_id, user_id):
        raise ForbiddenError("Not a member of this chat")
    return chat


async def _get_or_create_owned_chat(db, link_collection: str, owner_field: str, owner_id: str, kind: str, link_model) -> Tuple[dict, bool]:
    links = db[link_collection]
    link = await links.find_one({owner_field: owner_id})
    if link:
        chat = await db.chats.find_one({"id": link["chat_id"]}, NO_ID)
        if chat:
            return chat, False
        # Link outlived its chat; drop it and rebuild below
        logger.warning(f"Orphan {link_collection} link removed", extra={"data": {owner_field: owner_id, "chat_id": link["chat_id"]}})
        await links.delete_one({owner_field: owner_id})

    chat = ChatModel(kind=kind)
    chat_data = chat.model_dump()
    await db.chats.insert_one(chat_data)
    try:
        await links.insert_one(link_model(chat_id=chat.id, **{owner_field: owner_id}).model_dump())
    except DuplicateKeyError:
        # A concurrent request linked its chat first; keep theirs
        await db.chats.delete_one({"id": chat.id})
        link = await links.find_one({owner_field: owner_id})
        return await get_chat(db, link["chat_id"]), False

    logger.info(f"{kind.capitalize()} chat created", extra={"data": {owner_field: owner_id, "chat_id": chat.id}})
    chat_data.pop("_id", None)
    return chat_data, True


@store_call
async def get_or_create_chat_for_project(db, project_id: str) -> Tuple[dict, bool]:
    """Idempotent. Returns (chat, created)."""
    return await _get_or_create_owned_chat(db, "project_chats", "project_id", project_id, ChatKinds.PROJECT, ProjectChatLink)


@store_call
async def get_or_create_chat_for_task(db, task_id: str) -> Tuple[dict, bool]:
    """Idempotent. Returns (chat, created)."""
    return await _get_or_create_owned_chat(db, "task_chats", "task_id", task_id, ChatKinds.TASK, TaskChatLink)


@store_call
async def find_chat_for_project(db, project_id: str) -> Optional[dict]:
    link = await db.project_chats.find_one({"project_id": project_id})
    return await db.chats.find_one({"id": link["chat_id"]}, NO_ID) if link else None


@store_call
async def find_chat_for_task(db, task_id: str) -> Optional[dict]:
    link = await db.task_chats.find_one({"task_id": task_id})
    return await db.chats.find_one({"id": link["chat_id"]}, NO_ID) if link else None


@store_call
async def get_or_create_personal_chat(db, user_id: str, other_user_id: str) -> Tuple[dict, bool]:
    """One personal chat per unordered pair of users."""
    if user_id == other_user_id:
        raise ValidationError("Cannot open a personal chat with yourself")
    if not await db.users.find_one({"id": other_user_id}):
        raise NotFoundError("User not found")

    key = _pair_key(user_id, other_user_id)
    link = await db.personal_chats.find_one({"pair_key": key})
    if link:
        chat = await db.chats.find_one({"id": link["chat_id"]}, NO_ID)
        if chat:
            return chat, False
        await db.personal_chats.delete_one({"pair_key": key})

    chat = ChatModel(kind=ChatKinds.PERSONAL, created_by=user_id)
    chat_data = chat.model_dump()
    await db.chats.insert_one(chat_data)
    try:
        await db.personal_chats.insert_one(
            PersonalChatLink(chat_id=chat.id, pair_key=key, user_ids=sorted([user_id, other_user_id])).model_dump()
        )
    except DuplicateKeyError:
        await db.chats.delete_one({"id": chat.id})
        link = await db.personal_chats.find_one({"pair_key": key})
        return await get_chat(db, link["chat_id"]), False

    await db.chat_members.insert_many([
        ChatMemberModel(chat_id=chat.id, user_id=uid).model_dump() for uid in (user_id, other_user_id)
    ])
    chat_data.pop("_id", None)
    return chat_data, True


@store_call
async def create_group_chat(db, creator_id: str, name: Optional[str], member_ids: List[str]) -> dict:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Group chats need a name")

    wanted = [uid for uid in dict.fromkeys(member_ids) if uid != creator_id]
    known = await _user_identities(db, wanted)
    missing = [uid for uid in wanted if uid not in known]
    if missing:
        raise NotFoundError(f"Unknown users: {', '.join(missing)}")

    chat = ChatModel(kind=ChatKinds.GROUP, name=name, created_by=creator_id)
    chat_data = chat.model_dump()
    await db.chats.insert_one(chat_data)
    await db.chat_members.insert_many([
        ChatMemberModel(chat_id=chat.id, user_id=uid).model_dump() for uid in [creator_id] + wanted
    ])
    logger.info("Group chat created", extra={"data": {"chat_id": chat.id, "members": len(wanted) + 1}})
    chat_data.pop("_id", None)
    return chat_data


async def resolve_display_name(db, chat: dict, viewer_id: Optional[str] = None) -> Optional[str]:
    """Project/task chats are named after the live entity; personal chats after the other participant."""
    kind = chat.get("kind")
    if kind == ChatKinds.PROJECT:
        link = await db.project_chats.find_one({"chat_id": chat["id"]})
        project = await db.projects.find_one({"id": link["project_id"]}) if link else None
        return project.get("name") if project else chat.get("name")
    if kind == ChatKinds.TASK:
        link = await db.task_chats.find_one({"chat_id": chat["id"]})
        task = await db.tasks.find_one({"id": link["task_id"]}) if link else None
        return task.get("title") if task else chat.get("name")
    if kind == ChatKinds.PERSONAL and viewer_id:
        link = await db.personal_chats.find_one({"chat_id": chat["id"]})
        if link:
            other = next((uid for uid in link["user_ids"] if uid != viewer_id), None)
            user = await db.users.find_one({"id": other}) if other else None
            if user:
                return user.get("name")
    return chat.get("name")


@store_call
async def list_chats_for_user(db, user_id: str) -> List[dict]:
    """Chats the user belongs to, most recently active first."""
    memberships = await db.chat_members.find({"user_id": user_id}, {"chat_id": 1}).to_list(None)
    chat_ids = [m["chat_id"] for m in memberships]
    if not chat_ids:
        return []

    chats = await db.chats.find({"id": {"$in": chat_ids}}, NO_ID).sort("updated_at", DESCENDING).to_list(None)
    for chat in chats:
        chat["display_name"] = await resolve_display_name(db, chat, user_id)
        chat["unread_count"] = await db.messages.count_documents({"chat_id": chat["id"], "read_by": {"$ne": user_id}})
    return chats


@store_call
async def rename_chat(db, chat_id: str, name: str) -> dict:
    chat = await get_chat(db, chat_id)
    if chat["kind"] != ChatKinds.GROUP:
        raise ValidationError("Only group chats can be renamed")
    name = name.strip()
    if not name:
        raise ValidationError("Name is required")
    now = utc_now()
    await db.chats.update_one({"id": chat_id}, {"$set": {"name": name, "updated_at": now}})
    chat.update(name=name, updated_at=now)
    return chat


@store_call
async def delete_chat(db, chat_id: str) -> None:
    """Remove a chat with its members, messages and owner link."""
    await db.chats.delete_one({"id": chat_id})
    await db.chat_members.delete_many({"chat_id": chat_id})
    await db.messages.delete_many({"chat_id": chat_id})
    await db.project_chats.delete_many({"chat_id": chat_id})
    await db.task_chats.delete_many({"chat_id": chat_id})
    await db.personal_chats.delete_many({"chat_id": chat_id})
    logger.info("Chat deleted", extra={"data": {"chat_id": chat_id}})


# --- MEMBERS ---

@store_call
async def list_members(db, chat_id: str) -> List[dict]:
    members = await db.chat_members.find({"chat_id": chat_id}, NO_ID).sort("joined_at", 1).to_list(None)
    users = await _user_identities(db, [m["user_id"] for m in members])
    for member in members:
        member["user"] = users.get(member["user_id"])
    return members


@store_call
async def member_ids(db, chat_id: str) -> List[str]:
    members = await db.chat_members.find({"chat_id": chat_id}, {"user_id": 1}).to_list(None)
    return [m["user_id"] for m in members]


@store_call
async def add_member(db, chat_id: str, user_id: str) -> dict:
    """Explicit add: an existing membership is a user mistake and raises ConflictError."""
    if not await db.users.find_one({"id": user_id}):
        raise NotFoundError("User not found")
    member = ChatMemberModel(chat_id=chat_id, user_id=user_id)
    member_data = member.model_dump()
    if await is_member(db, chat_id, user_id):
        raise ConflictError("User is already a member of this chat")
    try:
        await db.chat_members.insert_one(member_data)
    except DuplicateKeyError:
        raise ConflictError("User is already a member of this chat")
    member_data.pop("_id", None)
    return member_data


@store_call
async def remove_member(db, chat_id: str, user_id: str) -> None:
    result = await db.chat_members.delete_one({"chat_id": chat_id, "user_id": user_id})
    if result.deleted_count == 0:
        raise NotFoundError("Chat member not found")


# --- MESSAGES ---

def _validate_content(content) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Message content cannot be empty")
    if len(content) > config.CHAT_MESSAGE_MAX_LENGTH:
        raise ValidationError(f"Message content exceeds {config.CHAT_MESSAGE_MAX_LENGTH} characters")
    return content


@store_call
async def append_message(db, chat_id: str, sender_id: str, content) -> dict:
    """Store a message (sender has read it) and touch the chat. Returns it with `sender` populated."""
    content = _validate_content(content)
    message = MessageModel(chat_id=chat_id, sender_id=sender_id, content=content, read_by=[sender_id])
    message_data = message.model_dump()
    await db.messages.insert_one(message_data)
    await db.chats.update_one({"id": chat_id}, {"$set": {"updated_at": message.created_at}})

    message_data.pop("_id", None)
    users = await _user_identities(db, [sender_id])
    message_data["sender"] = users.get(sender_id)
    return message_data


@store_call
async def list_messages(db, chat_id: str, limit: Optional[int] = None, before: Optional[datetime] = None,
                        before_id: Optional[str] = None) -> List[dict]:
    """
    Up to `limit` messages older than the cursor, oldest first.

    `before_id` (the id of the oldest message already shown) is the exact cursor:
    messages sharing its timestamp are ordered by `_id`, so pages never skip or
    repeat them. `before` alone filters on created_at only and is ignored when
    `before_id` is given.
    """
    limit = limit or config.CHAT_MESSAGE_PAGE_LIMIT
    limit = max(1, min(limit, config.CHAT_MESSAGE_PAGE_MAX))

    query = {"chat_id": chat_id}
    before = _normalize_cursor(before)
    if before_id is not None:
        anchor = await db.messages.find_one({"id": before_id, "chat_id": chat_id}, {"created_at": 1})
        if anchor is None:
            raise NotFoundError("Cursor message not found")
        query["$or"] = [
            {"created_at": {"$lt": anchor["created_at"]}},
            {"created_at": anchor["created_at"], "_id": {"$lt": anchor["_id"]}},
        ]
    elif before is not None:
        query["created_at"] = {"$lt": before}

    page = await db.messages.find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit).to_list(limit)
    page.reverse()

    users = await _user_identities(db, [m["sender_id"] for m in page])
    for message in page:
        message.pop("_id", None)
        message["sender"] = users.get(message["sender_id"])
    return page


@store_call
async def mark_read(db, chat_id: str, user_id: str, message_ids) -> int:
    """Add `user_id` to read_by of the given messages in this chat. Idempotent; returns how many changed."""
    if not isinstance(message_ids, list) or not all(isinstance(mid, str) for mid in message_ids):
        raise ValidationError("Message IDs array is required")
    if not message_ids:
        return 0
    result = await db.messages.update_many(
        {"id": {"$in": message_ids}, "chat_id": chat_id, "read_by": {"$ne": user_id}},
        {"$addToSet": {"read_by": user_id}}
    )
    return result.modified_count


@store_call
async def delete_message(db, message_id: str, requesting_user_id: str, chat_id: Optional[str] = None) -> dict:
    query = {"id": message_id}
    if chat_id:
        query["chat_id"] = chat_id
    message = await db.messages.find_one(query, NO_ID)
    if not message:
        raise NotFoundError("Message not found")
    if message["sender_id"] != requesting_user_id:
        raise ForbiddenError("Not authorized to delete this message")
    await db.messages.delete_one({"id": message_id})
    return message
