from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal, List
from datetime import datetime
import uuid

from models import utc_now

ChatKind = Literal['project', 'task', 'personal', 'group']


class ChatModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: ChatKind
    # Null for project/task chats: the display name is derived from the linked entity on read
    name: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(populate_by_name=True)


class ChatMemberModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    user_id: str
    joined_at: datetime = Field(default_factory=utc_now)


class ProjectChatLink(BaseModel):
    chat_id: str
    project_id: str


class TaskChatLink(BaseModel):
    chat_id: str
    task_id: str


class PersonalChatLink(BaseModel):
    chat_id: str
    pair_key: str  # "<lower_id>:<higher_id>"
    user_ids: List[str]


class MessageModel(BaseModel):
    """Immutable except for read_by growth; deleted only by its sender."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    chat_id: str
    sender_id: str
    content: str
    read_by: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    def is_read_by(self, user_id: str) -> bool:
        return user_id in self.read_by


# --- Request bodies ---

class ChatCreate(BaseModel):
    kind: Literal['group', 'personal']
    name: Optional[str] = Field(default=None, max_length=120)
    member_ids: List[str] = Field(default_factory=list)  # group chats
    user_id: Optional[str] = None  # personal chats: the other participant


class ChatUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=120)


class ChatMemberCreate(BaseModel):
    user_id: str


class MessageCreate(BaseModel):
    content: str


class MarkReadRequest(BaseModel):
    message_ids: List[str]
