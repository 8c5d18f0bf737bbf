from pydantic import BaseModel, Field, EmailStr, ConfigDict
from typing import Optional, Literal
from datetime import datetime
import uuid

from models import utc_now


class UserModel(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: EmailStr
    name: str  # Display name, also the target of @"Full Name" mentions
    avatar: Optional[str] = None
    role: Literal['admin', 'member'] = "member"
    created_at: datetime = Field(default_factory=utc_now)
    last_login: Optional[datetime] = None

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="ignore"
    )

    def public(self) -> dict:
        """Sender/member identity embedded in messages and member lists."""
        return {"id": self.id, "name": self.name, "email": self.email, "avatar": self.avatar}
