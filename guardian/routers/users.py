"""Users router.

Own profile and password; role administration for admins.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.dependencies import get_current_user, require_role
from guardian.database import get_db
from guardian.models.enums import UserRole
from guardian.models.user import User
from guardian.routers.auth import user_view
from guardian.schemas.auth import PasswordChangeRequest, ProfileUpdate
from guardian.schemas.user import RoleChangeRequest, RoleChangeResponse, UserResponse
from guardian.services import user_service

router = APIRouter(prefix="/users", tags=["Users"])

require_admin = require_role(UserRole.ADMIN)


@router.patch("/me", response_model=UserResponse)
async def update_me(
    body: ProfileUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    user = await user_service.update_profile(db, current_user, name=body.name, email=body.email)
    return user_view(user)


@router.post("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_my_password(
    body: PasswordChangeRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    await user_service.change_password(db, current_user, body.current_password, body.new_password)


@router.get("/", response_model=list[UserResponse])
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    return [user_view(user) for user in await user_service.list_users(db, admin)]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    return user_view(await user_service.get_user(db, user_id))


@router.put("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: uuid.UUID,
    body: RoleChangeRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    user = await user_service.change_role(db, admin, user_id, body.role)
    return user_view(user)


@router.get("/{user_id}/role-history", response_model=list[RoleChangeResponse])
async def role_history(
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_admin)],
):
    return await user_service.list_role_history(db, admin, user_id)
