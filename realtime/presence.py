from typing import TYPE_CHECKING, Dict, List, Optional

from logging_config import get_logger

if TYPE_CHECKING:
    from realtime.gateway import Connection

logger = get_logger("presence")


class PresenceRegistry:
    """
    Maps an authenticated user id to their active realtime connection.

    One connection per user: the latest connect wins. The map is local to this
    process; running several gateway processes needs a shared pub/sub channel
    keyed by user id in front of it.
    """

    def __init__(self):
        self._connections: Dict[str, "Connection"] = {}

    def register(self, user_id: str, connection: "Connection") -> Optional["Connection"]:
        """Store `connection` for `user_id`, returning the handle it replaced (if any)."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection
        if previous is not None and previous is not connection:
            logger.info("Presence handle replaced by newer connection", extra={"data": {"user_id": user_id, "previous": previous.id}})
        return previous

    def unregister(self, user_id: str, connection: "Connection") -> bool:
        # A stale disconnect must not evict a newer connection
        if self._connections.get(user_id) is not connection:
            return False
        del self._connections[user_id]
        return True

    def lookup(self, user_id: str) -> Optional["Connection"]:
        return self._connections.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def online_user_ids(self) -> List[str]:
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)
