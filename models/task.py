from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal
from datetime import datetime
import uuid

from models import utc_now


class TaskModel(BaseModel):
    # Core Fields
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str = Field(min_length=1, max_length=300)
    description: Optional[str] = None

    # Relations
    project_id: Optional[str] = None  # Set from the URL

    # State
    status: Literal['todo', 'in_progress', 'review', 'done'] = 'todo'
    created_by: Optional[str] = None # user_id (Set by backend)

    # Timing
    due_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True
    )


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[Literal['todo', 'in_progress', 'review', 'done']] = None
    due_date: Optional[datetime] = None


class TaskMemberModel(BaseModel):
    """Authoritative task membership. Task chats mirror this relation."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    task_id: str
    user_id: str
    role: Literal['responsible', 'accountable', 'consulted', 'informed'] = 'responsible'
    assigned_by: str
    joined_at: datetime = Field(default_factory=utc_now)


class TaskMemberCreate(BaseModel):
    user_id: str
    role: Literal['responsible', 'accountable', 'consulted', 'informed'] = 'responsible'
