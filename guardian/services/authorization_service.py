"""Grant management for a child's authorization set.

Every mutation loads the child with ``SELECT ... FOR UPDATE`` on the
``children`` row and then its grants, and runs inside the per-child
``asyncio.Lock`` of this process. The row lock holds until the request
transaction commits; the asyncio lock also covers SQLite, which ignores
``FOR UPDATE``.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.exceptions import Forbidden, InvariantViolation, NotFound, Unauthorized
from guardian.core.security import password_hasher
from guardian.domain.authorization import ChildAuthorization
from guardian.domain.pin_gate import Hasher, verify_pin
from guardian.models.child import Child, ChildAuthorizedUser
from guardian.models.enums import ChildPermission
from guardian.models.user import User
from guardian.services.event_bus import (
    GRANT_ADDED,
    GRANT_REVOKED,
    GRANT_UPDATED,
    PRIMARY_TRANSFERRED,
    DomainEvent,
    event_bus,
)

logger = logging.getLogger(__name__)

_child_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def child_lock(child_id: uuid.UUID) -> asyncio.Lock:
    """Process-local lock for one child's grant set."""
    lock = _child_locks.get(child_id)
    if lock is None:
        lock = asyncio.Lock()
        _child_locks[child_id] = lock
    return lock


async def load_child_authorization(
    db: AsyncSession,
    child_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> ChildAuthorization:
    stmt = select(Child).where(Child.id == child_id, Child.is_deleted.is_(False))
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    child = result.scalar_one_or_none()
    if child is None:
        raise NotFound("Child not found", child_id=str(child_id))

    grants = await db.execute(
        select(ChildAuthorizedUser)
        .where(ChildAuthorizedUser.child_id == child_id)
        .order_by(ChildAuthorizedUser.authorized_at)
        .execution_options(populate_existing=True)
    )
    return ChildAuthorization(child, grants.scalars().all())


async def require_access(
    db: AsyncSession, child_id: uuid.UUID, user_id: uuid.UUID,
) -> ChildAuthorization:
    auth = await load_child_authorization(db, child_id)
    if not auth.can_access(user_id):
        logger.warning("Access to child %s refused for user %s", child_id, user_id)
        raise Forbidden("No access to this child", child_id=str(child_id))
    return auth


async def require_permission(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    permission: ChildPermission,
) -> ChildAuthorization:
    auth = await load_child_authorization(db, child_id)
    if not auth.has_permission(user_id, permission):
        logger.warning(
            "Permission %s on child %s refused for user %s", permission.value, child_id, user_id,
        )
        raise Forbidden(
            f"Missing permission {permission.value}",
            child_id=str(child_id), permission=permission.value,
        )
    return auth


def _require_primary(auth: ChildAuthorization, user_id: uuid.UUID) -> None:
    if not auth.is_primary_parent(user_id):
        logger.warning("Grant change on child %s refused for non-primary %s", auth.child.id, user_id)
        raise Forbidden(
            "Only the primary guardian can manage authorizations",
            child_id=str(auth.child.id), user_id=str(user_id),
        )


async def has_permission(
    db: AsyncSession,
    child_id: uuid.UUID,
    user_id: uuid.UUID,
    permission: ChildPermission,
) -> bool:
    try:
        auth = await load_child_authorization(db, child_id)
    except NotFound:
        return False
    return auth.has_permission(user_id, permission)


async def grant_authorization(
    db: AsyncSession,
    child_id: uuid.UUID,
    grantor_id: uuid.UUID,
    user_id: uuid.UUID,
    permissions: Iterable[ChildPermission],
    is_primary: bool = False,
) -> ChildAuthorizedUser:
    """Authorize ``user_id`` on the child; a revoked grant is reactivated."""
    permissions = set(permissions)
    async with child_lock(child_id):
        auth = await load_child_authorization(db, child_id, for_update=True)
        _require_primary(auth, grantor_id)

        target = await db.get(User, user_id)
        if target is None:
            raise NotFound("User not found", user_id=str(user_id))

        existing = auth.find_grant(user_id)
        if existing is not None and existing.is_active:
            raise InvariantViolation(
                "User is already authorized for this child",
                child_id=str(child_id), user_id=str(user_id),
            )
        if existing is not None:
            if is_primary:
                raise InvariantViolation(
                    "Child already has a primary guardian",
                    child_id=str(child_id), user_id=str(user_id),
                )
            existing.replace_permissions(permissions)
            existing.authorized_by_id = grantor_id
            existing.activate()
            grant = existing
            logger.info("Grant reactivated: child=%s user=%s", child_id, user_id)
        else:
            grant = auth.add_grant(ChildAuthorizedUser(
                id=uuid.uuid4(),
                user=target,
                permissions=permissions,
                is_primary=is_primary,
                authorized_by_id=grantor_id,
            ))
            db.add(grant)
        await db.flush()

    event_bus.publish(DomainEvent(
        GRANT_ADDED, child_id, grantor_id,
        {"user_id": str(user_id), "permissions": sorted(p.value for p in permissions)},
    ))
    return grant


async def update_authorization(
    db: AsyncSession,
    child_id: uuid.UUID,
    grantor_id: uuid.UUID,
    user_id: uuid.UUID,
    permissions: Iterable[ChildPermission],
) -> ChildAuthorizedUser:
    permissions = set(permissions)
    async with child_lock(child_id):
        auth = await load_child_authorization(db, child_id, for_update=True)
        _require_primary(auth, grantor_id)
        grant = auth.grant_for(user_id)
        if grant is None:
            raise NotFound("Authorization not found", child_id=str(child_id), user_id=str(user_id))
        grant.replace_permissions(permissions)
        await db.flush()

    logger.info("Grant updated: child=%s user=%s", child_id, user_id)
    event_bus.publish(DomainEvent(
        GRANT_UPDATED, child_id, grantor_id,
        {"user_id": str(user_id), "permissions": sorted(p.value for p in permissions)},
    ))
    return grant


async def revoke_authorization(
    db: AsyncSession,
    child_id: uuid.UUID,
    grantor_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    """Deactivate a non-primary grant; the row is kept for reactivation."""
    async with child_lock(child_id):
        auth = await load_child_authorization(db, child_id, for_update=True)
        _require_primary(auth, grantor_id)
        grant = auth.grant_for(user_id)
        if grant is None:
            raise NotFound("Authorization not found", child_id=str(child_id), user_id=str(user_id))
        auth.remove_grant(grant)
        grant.deactivate()
        await db.flush()

    event_bus.publish(DomainEvent(GRANT_REVOKED, child_id, grantor_id, {"user_id": str(user_id)}))


async def list_authorized_users(
    db: AsyncSession, child_id: uuid.UUID, requester_id: uuid.UUID,
) -> list[ChildAuthorizedUser]:
    auth = await require_access(db, child_id, requester_id)
    return auth.active_grants()


async def primary_children_ids(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
    result = await db.execute(
        select(ChildAuthorizedUser.child_id)
        .join(Child, Child.id == ChildAuthorizedUser.child_id)
        .where(
            ChildAuthorizedUser.user_id == user_id,
            ChildAuthorizedUser.is_primary.is_(True),
            ChildAuthorizedUser.is_active.is_(True),
            Child.is_deleted.is_(False),
        )
    )
    return list(result.scalars().all())


async def transfer_primary_parent(
    db: AsyncSession,
    child_id: uuid.UUID,
    current_user_id: uuid.UUID,
    new_user_id: uuid.UUID,
    pin: str | None = None,
    hasher: Hasher = password_hasher,
) -> ChildAuthorizedUser:
    async with child_lock(child_id):
        auth = await load_child_authorization(db, child_id, for_update=True)
        _require_primary(auth, current_user_id)
        if auth.child.pin_enabled and not verify_pin(auth.child, pin, hasher):
            logger.warning("Primary transfer on child %s refused: PIN mismatch", child_id)
            raise Unauthorized("PIN verification failed", child_id=str(child_id))
        grant = auth.transfer_primary(new_user_id)
        await db.flush()

    event_bus.publish(DomainEvent(
        PRIMARY_TRANSFERRED, child_id, current_user_id, {"user_id": str(new_user_id)},
    ))
    return grant
