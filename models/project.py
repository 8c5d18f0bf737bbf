from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal
from datetime import datetime
import uuid

from models import utc_now


class ProjectModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    created_by: Optional[str] = None  # Set by backend
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(populate_by_name=True)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


class ProjectMemberModel(BaseModel):
    """Authoritative project membership. Project chats mirror this relation."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str
    user_id: str
    role: Literal['owner', 'admin', 'member', 'viewer'] = 'member'
    joined_at: datetime = Field(default_factory=utc_now)


class ProjectMemberCreate(BaseModel):
    user_id: str
    role: Literal['admin', 'member', 'viewer'] = 'member'


class ProjectMemberUpdate(BaseModel):
    role: Literal['admin', 'member', 'viewer']
