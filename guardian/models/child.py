import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from guardian.core.clock import utcnow
from guardian.core.exceptions import InvalidInput, InvariantViolation
from guardian.database import Base
from guardian.models.enums import ALL_PERMISSIONS, ChildPermission
from guardian.models.user import User, validate_name
from guardian.types import EnumSet

GENDERS = ("MALE", "FEMALE", "OTHER")


class Child(Base):
    """Aggregate root for a child's profile, PIN and grant set.

    Grants are not mapped as a collection here; they are loaded by query
    into ``guardian.domain.authorization.ChildAuthorization``.
    """

    __tablename__ = "children"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_children_created", "created_at"),
        Index("ix_children_deleted", "is_deleted"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(String(10), nullable=True)
    diagnosis_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    pin_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pin_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("pin_enabled", False)
        kwargs.setdefault("is_deleted", False)
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Child(id={self.id}, name={self.name!r})>"

    def change_name(self, name: str) -> None:
        self.name = validate_name(name)

    def change_birth_date(self, birth_date: date | None) -> None:
        if birth_date is not None and birth_date > date.today():
            raise InvalidInput("Birth date cannot be in the future")
        self.birth_date = birth_date

    def change_gender(self, gender: str | None) -> None:
        if gender is not None and gender not in GENDERS:
            raise InvalidInput("Gender must be one of MALE, FEMALE, OTHER")
        self.gender = gender

    def change_diagnosis_date(self, diagnosis_date: date | None) -> None:
        if diagnosis_date is not None and diagnosis_date > date.today():
            raise InvalidInput("Diagnosis date cannot be in the future")
        self.diagnosis_date = diagnosis_date

    def soft_delete(self, now: datetime | None = None) -> None:
        self.is_deleted = True
        self.deleted_at = now or utcnow()

    def restore(self) -> None:
        self.is_deleted = False
        self.deleted_at = None


class ChildAuthorizedUser(Base):
    """A grant: one user's permissions on one child.

    ``is_primary`` dominates ``permissions`` in every check.
    """

    __tablename__ = "children_authorized_users"
    __table_args__ = (
        UniqueConstraint("child_id", "user_id", name="uq_authorized_child_user"),
        Index("ix_authorized_child_primary", "child_id", "is_primary"),
        Index("ix_authorized_active", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True,
    )
    permissions: Mapped[set[ChildPermission]] = mapped_column(
        EnumSet(ChildPermission), nullable=False,
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    authorized_by_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    authorized_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )

    # Relationships
    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="selectin")

    def __init__(self, **kwargs):
        kwargs["permissions"] = set(kwargs.get("permissions") or ())
        kwargs.setdefault("is_primary", False)
        kwargs.setdefault("is_active", True)
        if kwargs.get("user") is not None and kwargs.get("user_id") is None:
            kwargs["user_id"] = kwargs["user"].id
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return (
            f"<ChildAuthorizedUser(child_id={self.child_id}, user_id={self.user_id}, "
            f"primary={self.is_primary})>"
        )

    def effective_permissions(self) -> frozenset[ChildPermission]:
        if self.is_primary:
            return ALL_PERMISSIONS
        return frozenset(self.permissions)

    def has_permission(self, permission: ChildPermission) -> bool:
        if self.is_primary:
            return True
        return permission in self.permissions

    def add_permission(self, permission: ChildPermission) -> None:
        if permission is None:
            raise InvalidInput("Permission is required")
        self.permissions = self.permissions | {permission}

    def remove_permission(self, permission: ChildPermission) -> None:
        if self.is_primary:
            raise InvariantViolation(
                "Permissions of the primary guardian cannot be removed",
                child_id=str(self.child_id), user_id=str(self.user_id),
            )
        self.permissions = self.permissions - {permission}

    def replace_permissions(self, permissions) -> None:
        if self.is_primary:
            raise InvariantViolation(
                "Permissions of the primary guardian cannot be changed",
                child_id=str(self.child_id), user_id=str(self.user_id),
            )
        self.permissions = set(permissions)

    def set_all_permissions(self) -> None:
        self.permissions = set(ALL_PERMISSIONS)

    def clear_permissions(self) -> None:
        if self.is_primary:
            raise InvariantViolation(
                "Permissions of the primary guardian cannot be removed",
                child_id=str(self.child_id), user_id=str(self.user_id),
            )
        self.permissions = set()

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        if self.is_primary:
            raise InvariantViolation(
                "The primary guardian grant cannot be deactivated",
                child_id=str(self.child_id), user_id=str(self.user_id),
            )
        self.is_active = False
