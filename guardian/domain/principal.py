"""Transport identity for bearer credentials.

``Principal`` is the only shape that crosses into token claims; the ORM
``User`` never does.
"""

import uuid
from dataclasses import dataclass
from typing import Any

from guardian.core.exceptions import InvalidClaim
from guardian.models.enums import UserRole
from guardian.models.user import User


@dataclass(frozen=True)
class Principal:
    user_id: uuid.UUID
    email: str
    name: str
    roles: frozenset[str]

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            user_id=user.id,
            email=user.email,
            name=user.name,
            roles=frozenset(role.value for role in user.roles),
        )

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Principal":
        try:
            user_id = uuid.UUID(claims["userId"])
        except (KeyError, ValueError, TypeError) as exc:
            raise InvalidClaim("Claim 'userId' is not a valid id", claim="userId") from exc
        return cls(
            user_id=user_id,
            email=claims["email"],
            name=claims["name"],
            roles=frozenset(claims["roles"]),
        )

    def to_claims(self) -> dict[str, Any]:
        return {
            "userId": str(self.user_id),
            "email": self.email,
            "name": self.name,
            "roles": sorted(self.roles),
        }

    def has_role(self, role: UserRole) -> bool:
        return role.value in self.roles
