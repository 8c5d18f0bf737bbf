from typing import Optional

from errors import store_call
from logging_config import get_logger
from models.notification import NotificationModel

logger = get_logger("notification_dispatcher")

NEW_NOTIFICATION_EVENT = "new_notification"


class NotificationDispatcher:
    """
    Persists notifications and pushes them to recipients who are online.

    The stored row is the durable copy (retrievable through the REST list),
    the push is best-effort and happens at most once. No deduplication here:
    callers with threshold/window semantics check before calling.
    """

    def __init__(self, db, gateway):
        self.db = db
        self.gateway = gateway

    @store_call
    async def _persist(self, notification: NotificationModel) -> dict:
        data = notification.model_dump()
        await self.db.notifications.insert_one(data)
        data.pop("_id", None)
        return data

    async def create_notification(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> dict:
        notification = NotificationModel(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            metadata=metadata or {},
        )
        # Persistence failures propagate; nothing is pushed for a row that does not exist
        data = await self._persist(notification)

        if self.gateway.is_online(user_id):
            try:
                await self.gateway.emit_to_user(user_id, NEW_NOTIFICATION_EVENT, data)
            except Exception as e:
                logger.warning(f"Realtime push failed, notification left for pull: {e}", extra={"data": {"notification_id": notification.id}})
        logger.info(f"Notification created", extra={"data": {"notification_id": notification.id, "type": type, "user_id": user_id}})
        return data
