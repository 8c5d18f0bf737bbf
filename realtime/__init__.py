from realtime.gateway import RealtimeGateway, Connection
from realtime.presence import PresenceRegistry
from realtime.rooms import ChatRoom, ProjectRoom, UserRoom, RoomRegistry

__all__ = [
    "RealtimeGateway",
    "Connection",
    "PresenceRegistry",
    "ChatRoom",
    "ProjectRoom",
    "UserRoom",
    "RoomRegistry",
]
