from fastapi import APIRouter, Depends, Query
from typing import Optional
from errors import NotFoundError
from models.user import UserModel
from routes.deps import get_current_user, get_db
from logging_config import get_logger

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])
logger = get_logger("notifications")

NO_ID = {"_id": 0}


def inbox(user: UserModel, **filters) -> dict:
    """Query scoped to the caller's own notifications. Other users' rows read as missing."""
    return {"user_id": user.id, **filters}


@router.get("")
async def list_notifications(
    read: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    """Newest first, with `has_more` for the bell dropdown's infinite scroll."""
    query = inbox(current_user) if read is None else inbox(current_user, read=read)
    page = await db.notifications.find(query, NO_ID).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)
    total = await db.notifications.count_documents(query)
    return {"notifications": page, "total": total, "has_more": skip + len(page) < total}


@router.get("/unread-count")
async def unread_count(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    return {"count": await db.notifications.count_documents(inbox(current_user, read=False))}


@router.post("/mark-all-read")
async def mark_all_read(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    result = await db.notifications.update_many(inbox(current_user, read=False), {"$set": {"read": True}})
    return {"message": "All notifications marked as read", "updated": result.modified_count}


@router.delete("/read")
async def clear_read(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    result = await db.notifications.delete_many(inbox(current_user, read=True))
    logger.info("Cleared read notifications", extra={"data": {"count": result.deleted_count}})
    return {"message": "Read notifications deleted", "deleted": result.deleted_count}


@router.get("/{notification_id}")
async def get_notification(notification_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    notification = await db.notifications.find_one(inbox(current_user, id=notification_id), NO_ID)
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    result = await db.notifications.update_one(inbox(current_user, id=notification_id), {"$set": {"read": True}})
    if not result.matched_count:
        raise NotFoundError("Notification not found")
    return {"message": "Marked as read"}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    result = await db.notifications.delete_one(inbox(current_user, id=notification_id))
    if not result.deleted_count:
        raise NotFoundError("Notification not found")
    return {"message": "Notification deleted"}
