from fastapi import APIRouter, Body, Depends, HTTPException, Query
from datetime import datetime
from typing import Optional
from models.chat import ChatCreate, ChatUpdate, ChatMemberCreate, MessageCreate, MarkReadRequest
from models.user import UserModel
from routes.deps import get_current_user, get_db, get_gateway
from realtime.rooms import ChatRoom
from services import chat_store
from constants import ChatKinds
from config import config
from logging_config import get_logger

router = APIRouter(prefix="/api/chats", tags=["Chats"])
logger = get_logger("chats")


@router.get("")
async def list_chats(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    """Chats the current user belongs to, most recently active first."""
    return await chat_store.list_chats_for_user(db, current_user.id)


@router.post("", status_code=201)
async def create_chat(
    body: ChatCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """Create a group chat, or open (get-or-create) the personal chat with another user."""
    if body.kind == ChatKinds.PERSONAL:
        if not body.user_id:
            raise HTTPException(status_code=400, detail="user_id is required for personal chats")
        chat, created = await chat_store.get_or_create_personal_chat(db, current_user.id, body.user_id)
        member_ids = [current_user.id, body.user_id]
    else:
        chat = await chat_store.create_group_chat(db, current_user.id, body.name, body.member_ids)
        created = True
        member_ids = await chat_store.member_ids(db, chat["id"])

    if created:
        for user_id in member_ids:
            gateway.join_user(user_id, ChatRoom(chat["id"]))
    chat["display_name"] = await chat_store.resolve_display_name(db, chat, current_user.id)
    return chat


@router.get("/{chat_id}")
async def get_chat(chat_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    chat = await chat_store.require_member(db, chat_id, current_user.id)
    chat["display_name"] = await chat_store.resolve_display_name(db, chat, current_user.id)
    return chat


@router.patch("/{chat_id}")
async def update_chat(
    chat_id: str,
    body: ChatUpdate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    """Rename a group chat."""
    await chat_store.require_member(db, chat_id, current_user.id)
    chat = await chat_store.rename_chat(db, chat_id, body.name)
    logger.info(f"Chat renamed", extra={"data": {"chat_id": chat_id}})
    return chat


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """Delete a group or personal chat. Project/task chats live and die with their owner."""
    chat = await chat_store.require_member(db, chat_id, current_user.id)
    if chat["kind"] in ChatKinds.OWNED:
        raise HTTPException(status_code=400, detail=f"{chat['kind'].capitalize()} chats are deleted with their {chat['kind']}")
    await chat_store.delete_chat(db, chat_id)
    gateway.close_room(ChatRoom(chat_id))
    return {"message": "Chat deleted successfully"}


# --- MEMBERS ---

@router.get("/{chat_id}/members")
async def list_chat_members(chat_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    await chat_store.require_member(db, chat_id, current_user.id)
    return await chat_store.list_members(db, chat_id)


@router.post("/{chat_id}/members", status_code=201)
async def add_chat_member(
    chat_id: str,
    body: ChatMemberCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    chat = await chat_store.require_member(db, chat_id, current_user.id)
    if chat["kind"] != ChatKinds.GROUP:
        raise HTTPException(status_code=400, detail="Members can only be managed on group chats")

    member = await chat_store.add_member(db, chat_id, body.user_id)
    gateway.join_user(body.user_id, ChatRoom(chat_id))
    user = await db.users.find_one({"id": body.user_id}, {"_id": 0, "id": 1, "name": 1, "email": 1, "avatar": 1})
    await gateway.emit_to_room(ChatRoom(chat_id), "member_joined", {"chatId": chat_id, "userId": body.user_id, "memberInfo": user})
    logger.info(f"Chat member added", extra={"data": {"chat_id": chat_id, "user_id": body.user_id}})
    return member


@router.delete("/{chat_id}/members/{user_id}")
async def remove_chat_member(
    chat_id: str,
    user_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    chat = await chat_store.require_member(db, chat_id, current_user.id)
    if chat["kind"] != ChatKinds.GROUP:
        raise HTTPException(status_code=400, detail="Members can only be managed on group chats")
    await chat_store.remove_member(db, chat_id, user_id)
    gateway.leave_user(user_id, ChatRoom(chat_id))
    return {"message": "Chat member removed successfully"}


# --- MESSAGES ---

@router.get("/{chat_id}/messages")
async def list_messages(
    chat_id: str,
    limit: int = Query(config.CHAT_MESSAGE_PAGE_LIMIT, ge=1, le=config.CHAT_MESSAGE_PAGE_MAX),
    before: Optional[datetime] = None,
    before_id: Optional[str] = None,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    """A page of messages in chronological order. Pass the oldest message's `id` as `before_id` for the previous page."""
    await chat_store.require_member(db, chat_id, current_user.id)
    return await chat_store.list_messages(db, chat_id, limit=limit, before=before, before_id=before_id)


@router.post("/{chat_id}/messages", status_code=201)
async def send_message(
    chat_id: str,
    body: MessageCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    await chat_store.require_member(db, chat_id, current_user.id)
    return await gateway.post_message(chat_id, current_user, body.content)


@router.delete("/{chat_id}/messages/{message_id}")
async def delete_message(
    chat_id: str,
    message_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    await chat_store.require_member(db, chat_id, current_user.id)
    await chat_store.delete_message(db, message_id, current_user.id, chat_id=chat_id)
    await gateway.emit_to_room(ChatRoom(chat_id), "message_deleted", {"chatId": chat_id, "messageId": message_id})
    return {"message": "Message deleted successfully"}


@router.post("/{chat_id}/read")
async def mark_messages_read(
    chat_id: str,
    body: MarkReadRequest = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    await chat_store.require_member(db, chat_id, current_user.id)
    updated = await chat_store.mark_read(db, chat_id, current_user.id, body.message_ids)
    await gateway.emit_to_room(
        ChatRoom(chat_id), "messages_read",
        {"userId": current_user.id, "messageIds": body.message_ids},
        exclude=gateway.presence.lookup(current_user.id)
    )
    return {"message": "Messages marked as read", "updated": updated}
