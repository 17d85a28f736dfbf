"""SQLAlchemy ORM models.

All models are imported here so that Alembic can discover them
via ``Base.metadata`` when generating migrations.
"""

from guardian.models.child import Child, ChildAuthorizedUser  # noqa: F401
from guardian.models.enums import ChildPermission, UserRole  # noqa: F401
from guardian.models.game_session import GameSession  # noqa: F401
from guardian.models.user import RefreshToken, RoleChangeHistory, User  # noqa: F401

__all__ = [
    "Child",
    "ChildAuthorizedUser",
    "ChildPermission",
    "GameSession",
    "RefreshToken",
    "RoleChangeHistory",
    "User",
    "UserRole",
]
