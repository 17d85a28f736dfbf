import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from guardian.schemas.child import PIN_PATTERN


class GameSessionCreate(BaseModel):
    child_id: uuid.UUID
    pin: str = Field(pattern=PIN_PATTERN)


class GameSessionResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    authenticated_by_id: uuid.UUID
    expires_at: datetime
    is_active: bool
    last_used_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class GameSessionIssued(GameSessionResponse):
    """Returned once at issuance; the token is never listed again."""

    session_token: str


class GameSessionInfo(BaseModel):
    """What the game client learns from its own token."""

    session_id: uuid.UUID
    child_id: uuid.UUID
    child_name: str
    expires_at: datetime
