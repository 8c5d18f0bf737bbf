import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from constants import InvitationStatus, NotificationTypes
from logging_config import get_logger
from models import utc_now

logger = get_logger("reminders")

DEADLINE_WINDOW = timedelta(days=7)
DEADLINE_REPEAT = timedelta(hours=23)
DONE = "done"


async def _task_member_ids(db, task_id: str) -> list:
    rows = await db.task_members.find({"task_id": task_id}, {"user_id": 1}).to_list(None)
    return [r["user_id"] for r in rows]


async def _already_sent(db, user_id: str, task_id: str, window: dict) -> bool:
    query = {"user_id": user_id, "type": NotificationTypes.DEADLINE_APPROACHING, "related_id": task_id}
    query.update({f"metadata.{key}": value for key, value in window.items()})
    return await db.notifications.find_one(query) is not None


async def notify_approaching_deadlines(db, dispatcher, now: Optional[datetime] = None) -> int:
    """
    One deadline_approaching per task member for open tasks due in the next 7 days.
    A member is not reminded again about the same task within 23 hours.
    Returns how many notifications were created.
    """
    now = now or utc_now()
    tasks = await db.tasks.find({
        "status": {"$ne": DONE},
        "due_date": {"$gt": now, "$lte": now + DEADLINE_WINDOW},
    }, {"_id": 0}).to_list(None)

    sent = 0
    for task in tasks:
        days_left = max((task["due_date"] - now).days, 0)
        for user_id in await _task_member_ids(db, task["id"]):
            if await _already_sent(db, user_id, task["id"], {"kind": "approaching", "reminded_at": {"$gt": now - DEADLINE_REPEAT}}):
                continue
            try:
                await dispatcher.create_notification(
                    user_id,
                    NotificationTypes.DEADLINE_APPROACHING,
                    "Deadline Approaching",
                    f"Task '{task['title']}' is due in {days_left} day(s)" if days_left else f"Task '{task['title']}' is due today",
                    related_id=task["id"],
                    metadata={"kind": "approaching", "reminded_at": now, "task_id": task["id"], "project_id": task.get("project_id"), "due_date": task["due_date"]},
                )
                sent += 1
            except Exception as e:
                logger.error(f"Deadline reminder failed: {e}", extra={"data": {"task_id": task["id"], "user_id": user_id}})

    logger.info(f"Deadline sweep finished", extra={"data": {"tasks": len(tasks), "sent": sent}})
    return sent


async def notify_overdue_tasks(db, dispatcher, now: Optional[datetime] = None) -> int:
    """Tell every member of an open, overdue task about it, at most once per calendar day."""
    now = now or utc_now()
    day = now.date().isoformat()
    tasks = await db.tasks.find({"status": {"$ne": DONE}, "due_date": {"$lte": now}}, {"_id": 0}).to_list(None)

    sent = 0
    for task in tasks:
        for user_id in await _task_member_ids(db, task["id"]):
            if await _already_sent(db, user_id, task["id"], {"kind": "overdue", "day": day}):
                continue
            try:
                await dispatcher.create_notification(
                    user_id,
                    NotificationTypes.DEADLINE_APPROACHING,
                    "Task Overdue",
                    f"Task '{task['title']}' is past its due date",
                    related_id=task["id"],
                    metadata={"kind": "overdue", "day": day, "task_id": task["id"], "project_id": task.get("project_id"), "due_date": task["due_date"]},
                )
                sent += 1
            except Exception as e:
                logger.error(f"Overdue reminder failed: {e}", extra={"data": {"task_id": task["id"], "user_id": user_id}})

    logger.info(f"Overdue sweep finished", extra={"data": {"tasks": len(tasks), "sent": sent}})
    return sent


async def cleanup_expired_invitations(db, now: Optional[datetime] = None) -> int:
    now = now or utc_now()
    result = await db.project_invitations.delete_many({
        "status": InvitationStatus.PENDING,
        "expires_at": {"$lte": now},
    })
    if result.deleted_count:
        logger.info(f"Expired invitations removed", extra={"data": {"count": result.deleted_count}})
    return result.deleted_count


async def sweep_read_notifications(db, older_than_days: int = 30, now: Optional[datetime] = None) -> int:
    """Delete read notifications older than `older_than_days`. Unread ones are kept regardless of age."""
    now = now or utc_now()
    result = await db.notifications.delete_many({
        "read": True,
        "created_at": {"$lt": now - timedelta(days=older_than_days)},
    })
    if result.deleted_count:
        logger.info(f"Old read notifications removed", extra={"data": {"count": result.deleted_count}})
    return result.deleted_count


async def run_periodically(interval_seconds: float, job: Callable[[], Awaitable], name: Optional[str] = None) -> None:
    """Run `job` every `interval_seconds` until cancelled. A failing run is logged and the loop continues."""
    name = name or getattr(job, "__name__", "job")
    while True:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled job {name} failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
