"""Child authorization aggregate.

One ``ChildAuthorization`` wraps a single child and the grant rows loaded
for it. Every grant mutation for a child goes through this object while the
caller holds the child's write lock (see
``guardian.services.authorization_service.load_child_authorization``), so
the check-then-act sequences below never interleave for the same child.

Invariants:
  - at most one active grant per child has ``is_primary = True``;
  - a primary grant belongs to a user holding the PARENT role;
  - a primary grant is never removed or deactivated, only transferred.
"""

import logging
import uuid
from collections.abc import Iterable

from guardian.core.exceptions import (
    InvalidGrant,
    InvariantViolation,
    NotFound,
    RoleMismatch,
)
from guardian.models.child import Child, ChildAuthorizedUser
from guardian.models.enums import ChildPermission, UserRole

logger = logging.getLogger(__name__)


class ChildAuthorization:
    def __init__(self, child: Child, grants: Iterable[ChildAuthorizedUser] = ()) -> None:
        self.child = child
        self._grants: list[ChildAuthorizedUser] = list(grants)

    def __repr__(self) -> str:
        return f"<ChildAuthorization(child_id={self.child.id}, grants={len(self._grants)})>"

    # -- queries -------------------------------------------------------------

    @property
    def grants(self) -> tuple[ChildAuthorizedUser, ...]:
        return tuple(self._grants)

    def active_grants(self) -> list[ChildAuthorizedUser]:
        if self.child.is_deleted:
            return []
        return [g for g in self._grants if g.is_active]

    def grant_for(self, user_id: uuid.UUID) -> ChildAuthorizedUser | None:
        """The active grant held by ``user_id``, if any."""
        for grant in self.active_grants():
            if grant.user_id == user_id:
                return grant
        return None

    def find_grant(self, user_id: uuid.UUID) -> ChildAuthorizedUser | None:
        """Any grant held by ``user_id``, active or not."""
        for grant in self._grants:
            if grant.user_id == user_id:
                return grant
        return None

    def _active_primaries(self) -> list[ChildAuthorizedUser]:
        return [g for g in self.active_grants() if g.is_primary]

    def primary_grant(self) -> ChildAuthorizedUser | None:
        primaries = self._active_primaries()
        return primaries[0] if primaries else None

    def primary_parent_id(self) -> uuid.UUID | None:
        primary = self.primary_grant()
        return primary.user_id if primary is not None else None

    def has_permission(self, user_id: uuid.UUID, permission: ChildPermission) -> bool:
        grant = self.grant_for(user_id)
        return grant is not None and grant.has_permission(permission)

    def can_access(self, user_id: uuid.UUID) -> bool:
        grant = self.grant_for(user_id)
        return grant is not None and bool(grant.effective_permissions())

    def is_primary_parent(self, user_id: uuid.UUID) -> bool:
        grant = self.grant_for(user_id)
        return grant is not None and grant.is_primary

    # -- mutations -----------------------------------------------------------

    def add_grant(self, grant: ChildAuthorizedUser | None) -> ChildAuthorizedUser:
        if grant is None:
            raise InvalidGrant("Grant is required", child_id=str(self.child.id))

        if self.find_grant(grant.user_id) is not None:
            raise InvariantViolation(
                "User is already authorized for this child",
                child_id=str(self.child.id), user_id=str(grant.user_id),
            )

        if grant.is_primary:
            if self._active_primaries():
                raise InvariantViolation(
                    "Child already has a primary guardian",
                    child_id=str(self.child.id), user_id=str(grant.user_id),
                )
            if grant.user is None or not grant.user.has_role(UserRole.PARENT):
                raise RoleMismatch(
                    "Primary guardian must hold the PARENT role",
                    child_id=str(self.child.id), user_id=str(grant.user_id),
                )

        grant.child_id = self.child.id
        self._grants.append(grant)
        logger.info(
            "Grant added: child=%s user=%s primary=%s",
            self.child.id, grant.user_id, grant.is_primary,
        )
        return grant

    def remove_grant(self, grant: ChildAuthorizedUser | None) -> None:
        if grant is None:
            return
        if grant.is_primary:
            raise InvariantViolation(
                "Primary guardian cannot be removed; transfer guardianship first",
                child_id=str(self.child.id), user_id=str(grant.user_id),
            )
        if grant in self._grants:
            self._grants.remove(grant)
            logger.info("Grant removed: child=%s user=%s", self.child.id, grant.user_id)

    def transfer_primary(self, new_user_id: uuid.UUID) -> ChildAuthorizedUser:
        """Move primary guardianship to ``new_user_id``.

        The target grant is promoted and its stored permissions are widened
        to the full set; every other primary grant is demoted.
        """
        target = self.grant_for(new_user_id)
        if target is None:
            raise NotFound(
                "New primary guardian has no active grant for this child",
                child_id=str(self.child.id), user_id=str(new_user_id),
            )
        if target.user is None or not target.user.has_role(UserRole.PARENT):
            raise RoleMismatch(
                "Primary guardian must hold the PARENT role",
                child_id=str(self.child.id), user_id=str(new_user_id),
            )

        for grant in self._grants:
            if grant.is_primary:
                grant.is_primary = False

        target.is_primary = True
        target.set_all_permissions()
        logger.info("Primary guardian transferred: child=%s user=%s", self.child.id, new_user_id)
        return target
