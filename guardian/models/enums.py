import enum


class UserRole(str, enum.Enum):
    PENDING = "PENDING"
    PARENT = "PARENT"
    THERAPIST = "THERAPIST"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"

    @classmethod
    def of(cls, name: str) -> "UserRole":
        """Case-insensitive lookup; raises ``ValueError`` on unknown names."""
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"Unsupported role: {name}") from None


class ChildPermission(str, enum.Enum):
    PLAY_GAME = "PLAY_GAME"  # companion game (session credential)
    VIEW_REPORT = "VIEW_REPORT"
    WRITE_NOTE = "WRITE_NOTE"
    ASSIGN_MISSION = "ASSIGN_MISSION"  # home-training missions
    MANAGE = "MANAGE"  # edit child profile


ALL_PERMISSIONS: frozenset[ChildPermission] = frozenset(ChildPermission)
