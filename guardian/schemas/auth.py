import uuid

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=2, max_length=50)
    role: str | None = None  # PARENT | THERAPIST | TEACHER, anything else -> PENDING


class TokenResponse(BaseModel):
    """Access credential; the refresh secret travels only in the cookie."""

    access_token: str
    token_type: str = "bearer"
    user_id: uuid.UUID


class EmailAvailability(BaseModel):
    email: str
    available: bool


class ProfileUpdate(BaseModel):
    name: str | None = None
    email: EmailStr | None = None


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)
