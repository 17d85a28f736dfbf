"""Child Service.

Child profiles, their PIN and the creation of the primary grant.
"""

import logging
import uuid
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.config import settings
from guardian.core.exceptions import (
    Forbidden,
    InvalidInput,
    InvariantViolation,
    NotFound,
    RoleMismatch,
    Unauthorized,
)
from guardian.core.security import password_hasher
from guardian.domain import pin_gate
from guardian.domain.authorization import ChildAuthorization
from guardian.domain.pin_gate import Hasher
from guardian.models.child import Child, ChildAuthorizedUser
from guardian.models.enums import ALL_PERMISSIONS, ChildPermission, UserRole
from guardian.models.user import User, validate_name
from guardian.services import authorization_service, game_session_service
from guardian.services.event_bus import GRANT_ADDED, DomainEvent, event_bus

logger = logging.getLogger(__name__)

_UNSET = object()


async def count_primary_children(db: AsyncSession, user_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(ChildAuthorizedUser.id))
        .join(Child, Child.id == ChildAuthorizedUser.child_id)
        .where(
            ChildAuthorizedUser.user_id == user_id,
            ChildAuthorizedUser.is_primary.is_(True),
            ChildAuthorizedUser.is_active.is_(True),
            Child.is_deleted.is_(False),
        )
    )
    return result.scalar_one()


async def create_child(
    db: AsyncSession,
    parent: User,
    name: str,
    birth_date: date | None = None,
    gender: str | None = None,
    diagnosis_date: date | None = None,
    pin: str | None = None,
    hasher: Hasher = password_hasher,
) -> ChildAuthorization:
    """Create a child with ``parent`` as its primary guardian."""
    if not parent.has_role(UserRole.PARENT):
        raise RoleMismatch("Only parents can register a child", user_id=str(parent.id))

    if await count_primary_children(db, parent.id) >= settings.MAX_CHILDREN_PER_USER:
        raise InvariantViolation(
            f"A parent can register at most {settings.MAX_CHILDREN_PER_USER} children",
            user_id=str(parent.id),
        )

    child = Child(id=uuid.uuid4(), name=validate_name(name))
    child.change_birth_date(birth_date)
    child.change_gender(gender)
    child.change_diagnosis_date(diagnosis_date)
    if pin:
        pin_gate.set_pin(child, pin, hasher)
    db.add(child)
    await db.flush()

    auth = ChildAuthorization(child)
    grant = auth.add_grant(ChildAuthorizedUser(
        id=uuid.uuid4(),
        user=parent,
        permissions=ALL_PERMISSIONS,
        is_primary=True,
        authorized_by_id=parent.id,
    ))
    db.add(grant)
    await db.flush()

    logger.info("Child %s created by %s", child.id, parent.id)
    event_bus.publish(DomainEvent(
        GRANT_ADDED, child.id, parent.id, {"user_id": str(parent.id), "primary": True},
    ))
    return auth


async def _children_with_grants(
    db: AsyncSession, user_id: uuid.UUID,
) -> list[tuple[Child, ChildAuthorizedUser]]:
    result = await db.execute(
        select(Child, ChildAuthorizedUser)
        .join(ChildAuthorizedUser, ChildAuthorizedUser.child_id == Child.id)
        .where(
            ChildAuthorizedUser.user_id == user_id,
            ChildAuthorizedUser.is_active.is_(True),
            Child.is_deleted.is_(False),
        )
        .order_by(Child.created_at, Child.name)
    )
    return [(child, grant) for child, grant in result.all()]


async def list_my_children(db: AsyncSession, user_id: uuid.UUID) -> list[Child]:
    """Children for which the user is primary guardian."""
    return [child for child, grant in await _children_with_grants(db, user_id) if grant.is_primary]


async def list_accessible_children(
    db: AsyncSession, user_id: uuid.UUID,
) -> list[tuple[Child, ChildAuthorizedUser]]:
    return [
        (child, grant)
        for child, grant in await _children_with_grants(db, user_id)
        if grant.effective_permissions()
    ]


async def list_playable_children(db: AsyncSession, user_id: uuid.UUID) -> list[Child]:
    return [
        child
        for child, grant in await _children_with_grants(db, user_id)
        if grant.has_permission(ChildPermission.PLAY_GAME)
    ]


async def get_child_detail(
    db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
) -> ChildAuthorization:
    return await authorization_service.require_access(db, child_id, user_id)


async def update_child(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    name: str | None = None,
    birth_date=_UNSET,
    gender=_UNSET,
    diagnosis_date=_UNSET,
) -> Child:
    """Apply the given fields; omitted ones are left unchanged."""
    auth = await authorization_service.require_permission(
        db, child_id, user_id, ChildPermission.MANAGE,
    )
    child = auth.child
    if name is not None:
        child.change_name(name)
    if birth_date is not _UNSET:
        child.change_birth_date(birth_date)
    if gender is not _UNSET:
        child.change_gender(gender)
    if diagnosis_date is not _UNSET:
        child.change_diagnosis_date(diagnosis_date)
    await db.flush()
    return child


def _require_primary(auth: ChildAuthorization, user_id: uuid.UUID) -> None:
    if not auth.is_primary_parent(user_id):
        raise Forbidden("Only the primary guardian can do this", child_id=str(auth.child.id))


async def delete_child(db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Soft delete; grants stop authorizing and game sessions end."""
    auth = await authorization_service.load_child_authorization(db, child_id, for_update=True)
    _require_primary(auth, user_id)
    auth.child.soft_delete()
    terminated = await game_session_service.terminate_sessions_for_child(db, child_id)
    await db.flush()
    logger.info("Child %s deleted by %s (%d game sessions ended)", child_id, user_id, terminated)


async def restore_child(db: AsyncSession, child_id: uuid.UUID, admin: User) -> Child:
    if not admin.is_admin():
        raise Forbidden("Admin role required", user_id=str(admin.id))
    child = await db.get(Child, child_id)
    if child is None:
        raise NotFound("Child not found", child_id=str(child_id))
    child.restore()
    await db.flush()
    logger.info("Child %s restored by %s", child_id, admin.id)
    return child


# ── PIN management ───────────────────────────────────────────────────────────


async def update_pin(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    new_pin: str,
    current_pin: str | None = None,
    hasher: Hasher = password_hasher,
) -> None:
    auth = await authorization_service.load_child_authorization(db, child_id, for_update=True)
    _require_primary(auth, user_id)
    child = auth.child
    if child.pin_enabled:
        if not current_pin:
            raise InvalidInput("Current PIN is required", child_id=str(child_id))
        if not pin_gate.verify_pin(child, current_pin, hasher):
            raise Unauthorized("PIN verification failed", child_id=str(child_id))
    pin_gate.set_pin(child, new_pin, hasher)
    await db.flush()
    logger.info("PIN updated for child %s", child_id)


async def verify_pin(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    pin: str | None,
    hasher: Hasher = password_hasher,
) -> bool:
    auth = await authorization_service.require_access(db, child_id, user_id)
    return pin_gate.verify_pin(auth.child, pin, hasher)


async def remove_pin(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    current_pin: str | None,
    hasher: Hasher = password_hasher,
) -> None:
    auth = await authorization_service.load_child_authorization(db, child_id, for_update=True)
    _require_primary(auth, user_id)
    if auth.child.pin_enabled and not pin_gate.verify_pin(auth.child, current_pin, hasher):
        raise Unauthorized("PIN verification failed", child_id=str(child_id))
    pin_gate.remove_pin(auth.child)
    await db.flush()
    logger.info("PIN removed for child %s", child_id)


async def set_pin_enabled(
    db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID, enabled: bool,
) -> Child:
    auth = await authorization_service.load_child_authorization(db, child_id, for_update=True)
    _require_primary(auth, user_id)
    if enabled:
        pin_gate.enable_pin(auth.child)
    else:
        pin_gate.disable_pin(auth.child)
    await db.flush()
    return auth.child
