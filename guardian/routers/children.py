"""Children router.

Child profiles and PIN management. Every route resolves the caller's grant
on the child; the primary guardian and MANAGE holders may edit.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.dependencies import get_current_user, require_role
from guardian.core.rate_limit import CREDENTIAL_LIMIT, limiter
from guardian.database import get_db
from guardian.models.child import Child, ChildAuthorizedUser
from guardian.models.enums import UserRole
from guardian.models.user import User
from guardian.schemas.child import (
    ChildAccessResponse,
    ChildCreate,
    ChildResponse,
    ChildUpdate,
    PinEnabledRequest,
    PinRequest,
    PinUpdateRequest,
    PinVerifyResponse,
)
from guardian.services import child_service

router = APIRouter(prefix="/children", tags=["Children"])


def access_view(child: Child, grant: ChildAuthorizedUser) -> ChildAccessResponse:
    return ChildAccessResponse(
        **ChildResponse.model_validate(child).model_dump(),
        is_primary=grant.is_primary,
        permissions=sorted(grant.effective_permissions(), key=lambda p: p.value),
    )


@router.post("/", response_model=ChildAccessResponse, status_code=status.HTTP_201_CREATED)
async def create_child(
    body: ChildCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Register a child; the caller becomes its primary guardian."""
    auth = await child_service.create_child(
        db,
        current_user,
        name=body.name,
        birth_date=body.birth_date,
        gender=body.gender,
        diagnosis_date=body.diagnosis_date,
        pin=body.pin,
    )
    return access_view(auth.child, auth.grant_for(current_user.id))


@router.get("/", response_model=list[ChildAccessResponse])
async def list_children(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """All children the caller holds an active grant on."""
    pairs = await child_service.list_accessible_children(db, current_user.id)
    return [access_view(child, grant) for child, grant in pairs]


@router.get("/mine", response_model=list[ChildResponse])
async def list_my_children(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return await child_service.list_my_children(db, current_user.id)


@router.get("/playable", response_model=list[ChildResponse])
async def list_playable_children(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return await child_service.list_playable_children(db, current_user.id)


@router.get("/{child_id}", response_model=ChildAccessResponse)
async def get_child(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    auth = await child_service.get_child_detail(db, child_id, current_user.id)
    return access_view(auth.child, auth.grant_for(current_user.id))


@router.patch("/{child_id}", response_model=ChildResponse)
async def update_child(
    child_id: uuid.UUID,
    body: ChildUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Update the fields present in the body. Requires MANAGE."""
    changes = body.model_dump(exclude_unset=True)
    return await child_service.update_child(db, child_id, current_user.id, **changes)


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_child(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    await child_service.delete_child(db, child_id, current_user.id)


@router.post("/{child_id}/restore", response_model=ChildResponse)
async def restore_child(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: Annotated[User, Depends(require_role(UserRole.ADMIN))],
):
    return await child_service.restore_child(db, child_id, admin)


# ── PIN ──────────────────────────────────────────────────────────────────────


@router.put("/{child_id}/pin", status_code=status.HTTP_204_NO_CONTENT)
async def update_pin(
    child_id: uuid.UUID,
    body: PinUpdateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    await child_service.update_pin(
        db, child_id, current_user.id, body.new_pin, current_pin=body.current_pin,
    )


@router.post("/{child_id}/pin/verify", response_model=PinVerifyResponse)
@limiter.limit(CREDENTIAL_LIMIT)
async def verify_pin(
    request: Request,
    child_id: uuid.UUID,
    body: PinRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    valid = await child_service.verify_pin(db, child_id, current_user.id, body.pin)
    return PinVerifyResponse(valid=valid)


@router.post("/{child_id}/pin/remove", status_code=status.HTTP_204_NO_CONTENT)
async def remove_pin(
    child_id: uuid.UUID,
    body: PinRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    await child_service.remove_pin(db, child_id, current_user.id, body.pin)


@router.put("/{child_id}/pin/enabled", response_model=ChildResponse)
async def set_pin_enabled(
    child_id: uuid.UUID,
    body: PinEnabledRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    return await child_service.set_pin_enabled(db, child_id, current_user.id, body.enabled)
