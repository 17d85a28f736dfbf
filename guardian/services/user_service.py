import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.exceptions import Forbidden, InvariantViolation, NotFound, Unauthorized
from guardian.core.security import get_password_hash, verify_password
from guardian.models.enums import UserRole
from guardian.models.user import RoleChangeHistory, User, normalize_email
from guardian.services import authorization_service

logger = logging.getLogger(__name__)


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found", user_id=str(user_id))
    return user


async def list_users(db: AsyncSession, requester: User) -> list[User]:
    if not requester.is_admin():
        raise Forbidden("Admin role required", user_id=str(requester.id))
    result = await db.execute(select(User).order_by(User.created_at, User.email))
    return list(result.scalars().all())


async def update_profile(
    db: AsyncSession,
    user: User,
    name: str | None = None,
    email: str | None = None,
) -> User:
    if email is not None and email.strip():
        normalized = normalize_email(email)
        if normalized != user.email:
            result = await db.execute(select(User.id).where(User.email == normalized))
            if result.scalar_one_or_none() is not None:
                raise InvariantViolation("Email already registered", email=normalized)
    user.update_profile(name=name, email=email)
    await db.flush()
    return user


async def change_password(
    db: AsyncSession,
    user: User,
    current_password: str,
    new_password: str,
) -> None:
    if not verify_password(current_password, user.password_hash):
        raise Unauthorized("Current password is incorrect")
    user.change_password(get_password_hash(new_password))
    await db.flush()
    logger.info("Password changed for user %s", user.id)


async def change_role(
    db: AsyncSession,
    admin: User,
    target_user_id: uuid.UUID,
    new_role: UserRole,
) -> User:
    """Replace the target's roles with ``new_role`` and record the change."""
    if not admin.is_admin():
        raise Forbidden("Admin role required", user_id=str(admin.id))

    target = await get_user(db, target_user_id)
    if new_role is not UserRole.PARENT:
        primary_of = await authorization_service.primary_children_ids(db, target.id)
        if primary_of:
            raise InvariantViolation(
                "Transfer primary guardianship before removing the PARENT role",
                user_id=str(target.id),
                child_ids=[str(child_id) for child_id in primary_of],
            )
    previous = ",".join(sorted(role.value for role in target.roles))
    target.roles = {new_role}

    db.add(RoleChangeHistory(
        id=uuid.uuid4(),
        target_user_id=target.id,
        changed_by_user_id=admin.id,
        previous_roles=previous,
        new_role=new_role.value,
    ))
    await db.flush()
    logger.info("Role of user %s changed %s -> %s by %s", target.id, previous, new_role.value, admin.id)
    return target


async def list_role_history(
    db: AsyncSession, admin: User, target_user_id: uuid.UUID,
) -> list[RoleChangeHistory]:
    if not admin.is_admin():
        raise Forbidden("Admin role required", user_id=str(admin.id))
    result = await db.execute(
        select(RoleChangeHistory)
        .where(RoleChangeHistory.target_user_id == target_user_id)
        .order_by(RoleChangeHistory.changed_at.desc())
    )
    return list(result.scalars().all())
