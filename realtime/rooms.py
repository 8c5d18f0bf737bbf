"""
Broadcast rooms for the realtime gateway.

Rooms are typed so a chat id can never be mistaken for a project id; `key`
gives the wire-compatible name (`chat_<id>`, `project_<id>`, `user_<id>`).
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Set, Union

if TYPE_CHECKING:
    from realtime.gateway import Connection


@dataclass(frozen=True)
class ChatRoom:
    chat_id: str

    @property
    def key(self) -> str:
        return f"chat_{self.chat_id}"


@dataclass(frozen=True)
class ProjectRoom:
    project_id: str

    @property
    def key(self) -> str:
        return f"project_{self.project_id}"


@dataclass(frozen=True)
class UserRoom:
    user_id: str

    @property
    def key(self) -> str:
        return f"user_{self.user_id}"


Room = Union[ChatRoom, ProjectRoom, UserRoom]


class RoomRegistry:
    """Process-local room membership. Rebuilt from the store as connections come back after a restart."""

    def __init__(self):
        self._members: Dict[Room, Set["Connection"]] = {}

    def join(self, connection: "Connection", room: Room) -> None:
        self._members.setdefault(room, set()).add(connection)
        connection.rooms.add(room)

    def leave(self, connection: "Connection", room: Room) -> None:
        members = self._members.get(room)
        if members is not None:
            members.discard(connection)
            if not members:
                self._members.pop(room, None)
        connection.rooms.discard(room)

    def leave_all(self, connection: "Connection") -> None:
        for room in list(connection.rooms):
            self.leave(connection, room)

    def connections(self, room: Room) -> List["Connection"]:
        return list(self._members.get(room, ()))

    def __contains__(self, room: Room) -> bool:
        return room in self._members
