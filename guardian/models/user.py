import hashlib
import hmac
import re
import uuid
from datetime import datetime, timedelta

from sqlalchemy import DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from guardian.core.clock import as_utc, utcnow
from guardian.core.exceptions import InvalidInput, InvariantViolation
from guardian.database import Base
from guardian.models.enums import UserRole
from guardian.types import EnumSet

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@(.+)$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_name(name: str | None) -> str:
    """Trimmed display name of 2-50 characters."""
    if name is None or not name.strip():
        raise InvalidInput("Name is required")
    name = name.strip()
    if not 2 <= len(name) <= 50:
        raise InvalidInput("Name must be between 2 and 50 characters")
    return name


class User(Base):
    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    roles: Mapped[set[UserRole]] = mapped_column(EnumSet(UserRole), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __init__(self, **kwargs):
        kwargs["roles"] = set(kwargs.get("roles") or {UserRole.PENDING})
        if kwargs.get("email") is not None:
            kwargs["email"] = normalize_email(kwargs["email"])
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, roles={sorted(r.value for r in self.roles)})>"

    # -- profile -------------------------------------------------------------

    def change_name(self, name: str) -> None:
        self.name = validate_name(name)

    def change_email(self, email: str) -> None:
        if email is None or not email.strip():
            raise InvalidInput("Email is required")
        if not EMAIL_PATTERN.match(email.strip()):
            raise InvalidInput("Invalid email format")
        self.email = normalize_email(email)

    def change_password(self, password_hash: str) -> None:
        if not password_hash:
            raise InvalidInput("Password hash is required")
        self.password_hash = password_hash

    def update_profile(self, name: str | None = None, email: str | None = None) -> None:
        """Apply the non-blank fields; blank values leave the field unchanged."""
        if name is not None and name.strip():
            self.change_name(name)
        if email is not None and email.strip():
            self.change_email(email)

    # -- roles ---------------------------------------------------------------

    def has_role(self, role: UserRole) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return self.has_role(UserRole.ADMIN)

    def add_role(self, role: UserRole) -> None:
        if role is None:
            raise InvalidInput("Role is required")
        self.roles = self.roles | {role}

    def remove_role(self, role: UserRole) -> None:
        if self.roles == {role}:
            raise InvariantViolation(
                "A user must keep at least one role", user_id=str(self.id),
            )
        self.roles = self.roles - {role}

    def reset_roles(self) -> None:
        self.roles = {UserRole.PENDING}


class RefreshToken(Base):
    """The single rotating refresh credential of one user.

    Keyed by ``user_id``; rotation overwrites the row instead of adding one.
    Only the SHA-256 digest of the secret is stored.
    """

    __tablename__ = "refresh_tokens"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<RefreshToken(user_id={self.user_id}, expires_at={self.expires_at})>"

    @staticmethod
    def hash_secret(secret: str) -> str:
        """Return the SHA-256 hex digest of a raw refresh secret."""
        return hashlib.sha256(secret.encode()).hexdigest()

    @classmethod
    def issue(
        cls,
        user_id: uuid.UUID,
        secret: str,
        ttl_minutes: int,
        now: datetime | None = None,
    ) -> "RefreshToken":
        now = now or utcnow()
        return cls(
            user_id=user_id,
            token_hash=cls.hash_secret(secret),
            expires_at=now + timedelta(minutes=ttl_minutes),
            created_at=now,
            updated_at=now,
        )

    def rotate(self, new_secret: str, ttl_minutes: int, now: datetime | None = None) -> None:
        """Overwrite the stored secret and restart the expiry window."""
        now = now or utcnow()
        self.token_hash = self.hash_secret(new_secret)
        self.expires_at = now + timedelta(minutes=ttl_minutes)
        self.updated_at = now

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > as_utc(self.expires_at)

    def matches(self, candidate: str | None) -> bool:
        if not candidate:
            return False
        return hmac.compare_digest(self.hash_secret(candidate), self.token_hash)


class RoleChangeHistory(Base):
    __tablename__ = "role_change_history"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True,
    )
    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False,
    )
    previous_roles: Mapped[str] = mapped_column(String(200), nullable=False)
    new_role: Mapped[str] = mapped_column(String(30), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow,
    )

    def __repr__(self) -> str:
        return f"<RoleChangeHistory(target={self.target_user_id}, new_role={self.new_role!r})>"
