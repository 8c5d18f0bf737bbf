"""
Keeps chat membership converging to the owning project's/task's membership.

Sync is best-effort: an individual upsert failure is logged and skipped, and
the project/task helpers never raise into the membership change that
triggered them. By default the sync only ever adds rows, so people removed
from a project keep read access to its chat history; set
CHAT_REVOKE_REMOVED_MEMBERS to prune them instead.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from config import config
from logging_config import get_logger
from models import utc_now
from services import chat_store

logger = get_logger("membership_sync")


@dataclass
class SyncResult:
    chat_id: str
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


async def sync_chat_with_owner(db, chat_id: str, owner_user_ids: Iterable[str], prune: Optional[bool] = None) -> SyncResult:
    """Upsert a chat membership row for every owner member; optionally drop rows for everyone else."""
    if prune is None:
        prune = config.CHAT_REVOKE_REMOVED_MEMBERS

    owner_ids = list(dict.fromkeys(owner_user_ids))
    result = SyncResult(chat_id=chat_id)

    for user_id in owner_ids:
        try:
            outcome = await db.chat_members.update_one(
                {"chat_id": chat_id, "user_id": user_id},
                {"$setOnInsert": {"chat_id": chat_id, "user_id": user_id, "joined_at": utc_now()}},
                upsert=True
            )
            if outcome.upserted_id is not None:
                result.added.append(user_id)
        except DuplicateKeyError:
            # Lost an upsert race; the row exists, which is all we wanted
            continue
        except Exception as e:
            result.failed.append(user_id)
            logger.error(f"Chat membership upsert failed: {e}", extra={"data": {"chat_id": chat_id, "user_id": user_id}})

    if prune:
        try:
            stale = await db.chat_members.find(
                {"chat_id": chat_id, "user_id": {"$nin": owner_ids}}, {"user_id": 1}
            ).to_list(None)
            if stale:
                result.removed = [row["user_id"] for row in stale]
                await db.chat_members.delete_many({"chat_id": chat_id, "user_id": {"$in": result.removed}})
        except Exception as e:
            logger.error(f"Chat membership prune failed: {e}", extra={"data": {"chat_id": chat_id}})
            result.removed = []

    if result.added or result.removed:
        logger.info(
            "Chat membership synced",
            extra={"data": {"chat_id": chat_id, "added": len(result.added), "removed": len(result.removed)}}
        )
    return result


async def project_member_ids(db, project_id: str) -> List[str]:
    rows = await db.project_members.find({"project_id": project_id}, {"user_id": 1}).to_list(None)
    return [row["user_id"] for row in rows]


async def task_member_ids(db, task_id: str) -> List[str]:
    rows = await db.task_members.find({"task_id": task_id}, {"user_id": 1}).to_list(None)
    return [row["user_id"] for row in rows]


async def sync_project_chat(db, project_id: str, create: bool = False) -> Optional[SyncResult]:
    """Mirror project membership into the project chat. No-op (None) when the chat does not exist yet and `create` is False."""
    try:
        if create:
            chat, _ = await chat_store.get_or_create_chat_for_project(db, project_id)
        else:
            chat = await chat_store.find_chat_for_project(db, project_id)
        if not chat:
            return None
        return await sync_chat_with_owner(db, chat["id"], await project_member_ids(db, project_id))
    except Exception as e:
        logger.error(f"Project chat sync failed: {e}", exc_info=True, extra={"data": {"project_id": project_id}})
        return None


async def sync_task_chat(db, task_id: str, create: bool = False) -> Optional[SyncResult]:
    """Mirror task membership into the task chat. Same contract as sync_project_chat."""
    try:
        if create:
            chat, _ = await chat_store.get_or_create_chat_for_task(db, task_id)
        else:
            chat = await chat_store.find_chat_for_task(db, task_id)
        if not chat:
            return None
        return await sync_chat_with_owner(db, chat["id"], await task_member_ids(db, task_id))
    except Exception as e:
        logger.error(f"Task chat sync failed: {e}", exc_info=True, extra={"data": {"task_id": task_id}})
        return None
