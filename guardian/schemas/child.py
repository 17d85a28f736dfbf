import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from guardian.models.enums import ChildPermission

PIN_PATTERN = r"^\d{4,6}$"


class ChildCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    birth_date: date | None = None
    gender: Literal["MALE", "FEMALE", "OTHER"] | None = None
    diagnosis_date: date | None = None
    pin: str | None = Field(default=None, pattern=PIN_PATTERN)


class ChildUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=50)
    birth_date: date | None = None
    gender: Literal["MALE", "FEMALE", "OTHER"] | None = None
    diagnosis_date: date | None = None


class ChildResponse(BaseModel):
    id: uuid.UUID
    name: str
    birth_date: date | None = None
    gender: str | None = None
    diagnosis_date: date | None = None
    pin_enabled: bool
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class ChildAccessResponse(ChildResponse):
    """A child as seen by one caregiver."""

    is_primary: bool
    permissions: list[ChildPermission]


class PinUpdateRequest(BaseModel):
    new_pin: str = Field(pattern=PIN_PATTERN)
    current_pin: str | None = None


class PinRequest(BaseModel):
    pin: str | None = None


class PinVerifyResponse(BaseModel):
    valid: bool


class PinEnabledRequest(BaseModel):
    enabled: bool


class GrantCreate(BaseModel):
    user_id: uuid.UUID
    permissions: list[ChildPermission] = Field(default_factory=list)


class GrantUpdate(BaseModel):
    permissions: list[ChildPermission]


class GrantResponse(BaseModel):
    id: uuid.UUID
    child_id: uuid.UUID
    user_id: uuid.UUID
    user_name: str | None = None
    user_email: str | None = None
    permissions: list[ChildPermission]
    is_primary: bool
    is_active: bool
    authorized_by_id: uuid.UUID | None = None
    authorized_at: datetime


class TransferPrimaryRequest(BaseModel):
    new_user_id: uuid.UUID
    pin: str | None = None
