"""Authorizations router.

Grant, change and revoke caregiver access to a child, and hand primary
guardianship to another parent.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.dependencies import get_current_user
from guardian.database import get_db
from guardian.models.child import ChildAuthorizedUser
from guardian.models.user import User
from guardian.schemas.child import (
    GrantCreate,
    GrantResponse,
    GrantUpdate,
    TransferPrimaryRequest,
)
from guardian.services import authorization_service

router = APIRouter(prefix="/children/{child_id}", tags=["Authorizations"])


def grant_view(grant: ChildAuthorizedUser) -> GrantResponse:
    return GrantResponse(
        id=grant.id,
        child_id=grant.child_id,
        user_id=grant.user_id,
        user_name=grant.user.name if grant.user is not None else None,
        user_email=grant.user.email if grant.user is not None else None,
        permissions=sorted(grant.effective_permissions(), key=lambda p: p.value),
        is_primary=grant.is_primary,
        is_active=grant.is_active,
        authorized_by_id=grant.authorized_by_id,
        authorized_at=grant.authorized_at,
    )


@router.get("/authorizations", response_model=list[GrantResponse])
async def list_authorizations(
    child_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    grants = await authorization_service.list_authorized_users(db, child_id, current_user.id)
    return [grant_view(grant) for grant in grants]


@router.post(
    "/authorizations",
    response_model=GrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_authorization(
    child_id: uuid.UUID,
    body: GrantCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Authorize another user on the child. Primary guardian only."""
    grant = await authorization_service.grant_authorization(
        db, child_id, current_user.id, body.user_id, body.permissions,
    )
    return grant_view(grant)


@router.put("/authorizations/{user_id}", response_model=GrantResponse)
async def update_authorization(
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    body: GrantUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    grant = await authorization_service.update_authorization(
        db, child_id, current_user.id, user_id, body.permissions,
    )
    return grant_view(grant)


@router.delete("/authorizations/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_authorization(
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    await authorization_service.revoke_authorization(db, child_id, current_user.id, user_id)


@router.post("/transfer-primary", response_model=GrantResponse)
async def transfer_primary(
    child_id: uuid.UUID,
    body: TransferPrimaryRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Make another authorized parent the primary guardian.

    The child's PIN is required when one is enabled.
    """
    grant = await authorization_service.transfer_primary_parent(
        db, child_id, current_user.id, body.new_user_id, pin=body.pin,
    )
    return grant_view(grant)
