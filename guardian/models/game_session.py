import secrets
import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from guardian.config import settings
from guardian.core.clock import as_utc, utcnow
from guardian.core.exceptions import SessionInactive, SessionInvalid
from guardian.database import Base


def generate_session_token() -> str:
    """Random opaque token; carries no claims, all state lives in the row."""
    return secrets.token_urlsafe(32)


class GameSession(Base):
    """Child-scoped credential used by the companion game.

    Expiry is a pure time transition: an expired session keeps
    ``is_active = True`` until it is terminated or swept.
    """

    __tablename__ = "game_sessions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4,
    )
    session_token: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True,
    )
    child_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("children.id"), nullable=False, index=True,
    )
    authenticated_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<GameSession(id={self.id}, child_id={self.child_id}, active={self.is_active})>"

    @staticmethod
    def lifetime() -> timedelta:
        return timedelta(hours=settings.GAME_SESSION_HOURS)

    @classmethod
    def issue(
        cls,
        child_id: uuid.UUID,
        authenticated_by_id: uuid.UUID,
        now: datetime | None = None,
    ) -> "GameSession":
        """Mint a fresh session; the caller has already verified the PIN."""
        now = now or utcnow()
        return cls(
            id=uuid.uuid4(),
            session_token=generate_session_token(),
            child_id=child_id,
            authenticated_by_id=authenticated_by_id,
            expires_at=now + cls.lifetime(),
            is_active=True,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > as_utc(self.expires_at)

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.is_active and not self.is_expired(now)

    def refresh(self, now: datetime | None = None) -> None:
        """Record activity on a valid session."""
        now = now or utcnow()
        if not self.is_valid(now):
            raise SessionInvalid(
                "Session is expired or inactive", session_id=str(self.id),
            )
        self.last_used_at = now

    def extend(self, now: datetime | None = None) -> None:
        """Reset expiry to a full lifetime from ``now`` (absolute, not additive)."""
        if not self.is_active:
            raise SessionInactive(
                "Inactive session cannot be extended", session_id=str(self.id),
            )
        self.expires_at = (now or utcnow()) + self.lifetime()

    def terminate(self) -> None:
        self.is_active = False
