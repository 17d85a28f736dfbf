import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from guardian.models.enums import UserRole


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    roles: list[UserRole]
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class RoleChangeRequest(BaseModel):
    role: UserRole


class RoleChangeResponse(BaseModel):
    target_user_id: uuid.UUID
    changed_by_user_id: uuid.UUID
    previous_roles: str
    new_role: str
    changed_at: datetime
    model_config = ConfigDict(from_attributes=True)
