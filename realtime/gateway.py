"""
Realtime gateway: authenticates websocket connections, keeps them in the rooms
matching their chats/projects and relays chat and notification events.

Per-connection lifecycle:
    CONNECTING -> AUTHENTICATING -> JOINED -> ACTIVE -> DISCONNECTED
A connection whose token does not verify goes straight to DISCONNECTED,
without joining any room or appearing in presence.

Frames in both directions are JSON objects `{"event": <name>, "data": <payload>}`.
"""

import asyncio
import json
import uuid
from enum import Enum
from typing import Callable, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from errors import CollabError, ForbiddenError, ValidationError
from logging_config import connection_id_var, get_logger, user_id_var
from models.user import UserModel
from realtime.presence import PresenceRegistry
from realtime.rooms import ChatRoom, ProjectRoom, Room, RoomRegistry, UserRoom
from services import chat_store
from services.events import DomainEventQueue, MessagePosted

logger = get_logger("gateway")

AUTH_FAILED_CLOSE_CODE = 4401


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    JOINED = "joined"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class Connection:
    """One websocket plus the user it authenticated as and the rooms it sits in."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex[:8]
        self.user: Optional[UserModel] = None
        self.state = ConnectionState.CONNECTING
        self.rooms: Set[Room] = set()

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    async def send(self, event: str, payload) -> None:
        await self.websocket.send_json({"event": event, "data": payload})

    async def emit(self, event: str, data) -> None:
        await self.send(event, jsonable_encoder(data))

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} state={self.state.value}>"


def _id_from(data, key: str) -> str:
    """Room events carry a bare id; tolerate `{key: id}` objects too."""
    if isinstance(data, dict):
        data = data.get(key)
    if not isinstance(data, str) or not data:
        raise ValidationError(f"{key} is required")
    return data


# Error reply per event, sent only to the acting connection
ERROR_REPLIES = {
    "join_chat": lambda data, error: ("joined_chat", {"chatId": data if isinstance(data, str) else (data or {}).get("chatId"), "success": False, "error": error}),
    "join_project": lambda data, error: ("joined_project", {"projectId": data if isinstance(data, str) else (data or {}).get("projectId"), "success": False, "error": error}),
    "send_message": lambda data, error: ("message_error", {"error": error}),
    "mark_messages_read": lambda data, error: ("read_error", {"error": error}),
}


class RealtimeGateway:
    def __init__(
        self,
        db,
        presence: PresenceRegistry,
        rooms: RoomRegistry,
        events: DomainEventQueue,
        verify_token: Callable[[str], Optional[str]],
    ):
        self.db = db
        self.presence = presence
        self.rooms = rooms
        self.events = events
        self.verify_token = verify_token
        self.handlers = {
            "join_chat": self.on_join_chat,
            "leave_chat": self.on_leave_chat,
            "send_message": self.on_send_message,
            "mark_messages_read": self.on_mark_messages_read,
            "typing_start": self.on_typing_start,
            "typing_stop": self.on_typing_stop,
            "join_project": self.on_join_project,
            "leave_project": self.on_leave_project,
        }

    # --- LIFECYCLE ---

    async def serve(self, websocket: WebSocket, token: Optional[str]) -> None:
        """Run one connection from handshake to disconnect."""
        connection = await self.open(websocket, token)
        if connection is None:
            return
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("text") is None:
                    # Binary frames are not part of the protocol
                    await connection.emit("error", {"error": "Malformed frame"})
                    continue
                await self.handle_frame(connection, message["text"])
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(connection)

    async def open(self, websocket: WebSocket, token: Optional[str]) -> Optional[Connection]:
        connection = Connection(websocket)
        connection_id_var.set(connection.id)

        connection.state = ConnectionState.AUTHENTICATING
        user = await self.authenticate(token)
        if user is None:
            connection.state = ConnectionState.DISCONNECTED
            logger.warning("Realtime connection rejected: authentication failed")
            # Accept first: a close before accept reaches the client as a bare HTTP 403
            await websocket.accept()
            await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
            return None

        connection.user = user
        user_id_var.set(user.id)
        await websocket.accept()
        await self.on_joined(connection)
        return connection

    async def authenticate(self, token: Optional[str]) -> Optional[UserModel]:
        if not token:
            return None
        user_id = self.verify_token(token)
        if not user_id:
            return None
        try:
            user = await self.db.users.find_one({"id": user_id})
        except Exception as e:
            logger.error(f"User lookup failed during realtime auth: {e}")
            return None
        return UserModel(**user) if user else None

    async def on_joined(self, connection: Connection) -> None:
        user_id = connection.user_id
        connection.state = ConnectionState.JOINED
        self.presence.register(user_id, connection)
        self.rooms.join(connection, UserRoom(user_id))

        chat_count = project_count = 0
        try:
            for row in await self.db.chat_members.find({"user_id": user_id}, {"chat_id": 1}).to_list(None):
                self.rooms.join(connection, ChatRoom(row["chat_id"]))
                chat_count += 1
            for row in await self.db.project_members.find({"user_id": user_id}, {"project_id": 1}).to_list(None):
                self.rooms.join(connection, ProjectRoom(row["project_id"]))
                project_count += 1
        except Exception as e:
            logger.error(f"Error joining rooms at connect: {e}", exc_info=True)

        connection.state = ConnectionState.ACTIVE
        logger.info(
            f"User {connection.user.name} connected",
            extra={"data": {"chats": chat_count, "projects": project_count, "online": len(self.presence)}}
        )

    def disconnect(self, connection: Connection) -> None:
        connection.state = ConnectionState.DISCONNECTED
        if connection.user_id:
            self.presence.unregister(connection.user_id, connection)
        self.rooms.leave_all(connection)
        logger.info("Realtime connection closed", extra={"data": {"online": len(self.presence)}})

    # --- INBOUND ---

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            await connection.emit("error", {"error": "Malformed frame"})
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await connection.emit("error", {"error": "Malformed frame"})
            return
        await self.dispatch(connection, frame["event"], frame.get("data"))

    async def dispatch(self, connection: Connection, event: str, data) -> None:
        handler = self.handlers.get(event)
        if handler is None:
            await connection.emit("error", {"error": "Unknown event", "event": event})
            return
        try:
            await handler(connection, data)
        except CollabError as e:
            await self._reply_error(connection, event, data, e.message)
        except Exception as e:
            logger.error(f"Realtime handler '{event}' failed: {e}", exc_info=True)
            await self._reply_error(connection, event, data, "Internal error")

    async def _reply_error(self, connection: Connection, event: str, data, error: str) -> None:
        build = ERROR_REPLIES.get(event)
        reply_event, payload = build(data, error) if build else ("error", {"error": error, "event": event})
        await connection.emit(reply_event, payload)

    async def on_join_chat(self, connection: Connection, data) -> None:
        chat_id = _id_from(data, "chatId")
        # Bulk join at connect can be stale; check again
        if not await chat_store.is_member(self.db, chat_id, connection.user_id):
            raise ForbiddenError("Not a member")
        self.rooms.join(connection, ChatRoom(chat_id))
        await connection.emit("joined_chat", {"chatId": chat_id, "success": True})

    async def on_leave_chat(self, connection: Connection, data) -> None:
        chat_id = _id_from(data, "chatId")
        self.rooms.leave(connection, ChatRoom(chat_id))
        await connection.emit("left_chat", {"chatId": chat_id})

    async def on_send_message(self, connection: Connection, data) -> None:
        if not isinstance(data, dict):
            raise ValidationError("chatId and content are required")
        chat_id = _id_from(data, "chatId")
        if not await chat_store.is_member(self.db, chat_id, connection.user_id):
            raise ForbiddenError("Not authorized to send message")
        await self.post_message(chat_id, connection.user, data.get("content"))

    async def on_mark_messages_read(self, connection: Connection, data) -> None:
        if not isinstance(data, dict):
            raise ValidationError("chatId and messageIds are required")
        chat_id = _id_from(data, "chatId")
        message_ids = data.get("messageIds")
        if not await chat_store.is_member(self.db, chat_id, connection.user_id):
            raise ForbiddenError("Not a member of this chat")
        await chat_store.mark_read(self.db, chat_id, connection.user_id, message_ids)
        await self.emit_to_room(
            ChatRoom(chat_id), "messages_read",
            {"userId": connection.user_id, "messageIds": message_ids},
            exclude=connection
        )

    async def on_typing_start(self, connection: Connection, data) -> None:
        chat_id = _id_from(data, "chatId")
        if ChatRoom(chat_id) not in connection.rooms:
            return
        await self.emit_to_room(
            ChatRoom(chat_id), "user_typing",
            {"userId": connection.user_id, "userName": connection.user.name, "chatId": chat_id},
            exclude=connection
        )

    async def on_typing_stop(self, connection: Connection, data) -> None:
        chat_id = _id_from(data, "chatId")
        if ChatRoom(chat_id) not in connection.rooms:
            return
        await self.emit_to_room(
            ChatRoom(chat_id), "user_stopped_typing",
            {"userId": connection.user_id, "chatId": chat_id},
            exclude=connection
        )

    async def on_join_project(self, connection: Connection, data) -> None:
        project_id = _id_from(data, "projectId")
        if not await self.db.project_members.find_one({"project_id": project_id, "user_id": connection.user_id}):
            raise ForbiddenError("Not a member")
        self.rooms.join(connection, ProjectRoom(project_id))
        await connection.emit("joined_project", {"projectId": project_id, "success": True})

    async def on_leave_project(self, connection: Connection, data) -> None:
        project_id = _id_from(data, "projectId")
        self.rooms.leave(connection, ProjectRoom(project_id))
        await connection.emit("left_project", {"projectId": project_id})

    # --- OUTBOUND / FAN-OUT ---

    async def post_message(self, chat_id: str, sender: UserModel, content) -> dict:
        """Store a message, queue its mention fan-out and broadcast it to the chat room.

        Shared by the websocket `send_message` event and the REST endpoint; the
        caller has already checked membership.
        """
        message = await chat_store.append_message(self.db, chat_id, sender.id, content)
        self.events.publish(MessagePosted(
            chat_id=chat_id,
            message_id=message["id"],
            sender_id=sender.id,
            sender_name=sender.name,
            content=message["content"],
        ))
        await self.emit_to_room(ChatRoom(chat_id), "new_message", message)
        return message

    async def emit_to_room(self, room: Room, event: str, data, exclude: Optional[Connection] = None) -> int:
        targets = [c for c in self.rooms.connections(room) if c is not exclude]
        if not targets:
            return 0
        payload = jsonable_encoder(data)
        results = await asyncio.gather(*(c.send(event, payload) for c in targets), return_exceptions=True)
        failed = [c for c, r in zip(targets, results) if isinstance(r, Exception)]
        for connection in failed:
            logger.warning(f"Emit '{event}' to {room.key} failed for connection {connection.id}")
        return len(targets) - len(failed)

    def is_online(self, user_id: str) -> bool:
        return self.presence.is_online(user_id)

    async def emit_to_user(self, user_id: str, event: str, data) -> bool:
        """Send to the user's current connection. False when they are offline."""
        connection = self.presence.lookup(user_id)
        if connection is None:
            return False
        await connection.emit(event, data)
        return True

    def join_user(self, user_id: str, room: Room) -> bool:
        connection = self.presence.lookup(user_id)
        if connection is None:
            return False
        self.rooms.join(connection, room)
        return True

    def leave_user(self, user_id: str, room: Room) -> bool:
        connection = self.presence.lookup(user_id)
        if connection is None:
            return False
        self.rooms.leave(connection, room)
        return True

    def close_room(self, room: Room) -> None:
        for connection in self.rooms.connections(room):
            self.rooms.leave(connection, room)

    def apply_sync(self, result) -> None:
        """Move live connections in/out of a chat room after a membership sync."""
        if result is None:
            return
        for user_id in result.added:
            self.join_user(user_id, ChatRoom(result.chat_id))
        for user_id in result.removed:
            self.leave_user(user_id, ChatRoom(result.chat_id))
