from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal
from datetime import datetime
import uuid

from models import utc_now

NotificationType = Literal[
    'task_assigned',
    'task_updated',
    'comment_added',
    'deadline_approaching',
    'project_invitation',
    'project_member_added',
    'document_shared',
    'budget_threshold',
    'chat_ping',
]


class NotificationModel(BaseModel):
    """In-app notification. Persisted first, then pushed to the recipient if they are online."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str  # Who receives the notification
    type: NotificationType

    # Content
    title: str
    message: str

    # Reference
    related_id: Optional[str] = None  # ID of the chat/task/project

    # Context
    metadata: dict = Field(default_factory=dict)  # Extra data (chat_id, sender_name, etc.)

    # State
    read: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(populate_by_name=True)
