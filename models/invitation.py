from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime, timedelta
import uuid

from config import config
from models import utc_now


def _default_expiry() -> datetime:
    return utc_now() + timedelta(days=config.INVITATION_EXPIRY_DAYS)


class ProjectInvitationModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str
    inviter_id: str
    invitee_id: str
    role: Literal['admin', 'member', 'viewer'] = 'member'
    status: Literal['pending', 'accepted', 'rejected', 'cancelled'] = 'pending'
    message: Optional[str] = None
    expires_at: datetime = Field(default_factory=_default_expiry)
    created_at: datetime = Field(default_factory=utc_now)
    responded_at: Optional[datetime] = None


class InvitationCreate(BaseModel):
    invitee_id: str
    role: Literal['admin', 'member', 'viewer'] = 'member'
    message: Optional[str] = Field(default=None, max_length=1000)
