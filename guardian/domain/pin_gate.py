"""Child PIN gate.

A wrong PIN is an ordinary outcome (``verify_pin`` returns False), not an
error. Hashing is delegated to any object exposing ``hash(raw)`` and
``matches(raw, hashed)``, normally ``guardian.core.security.password_hasher``.
"""

from typing import Protocol

from guardian.core.exceptions import InvalidInput, PinNotConfigured
from guardian.models.child import Child


class Hasher(Protocol):
    def hash(self, raw: str) -> str: ...

    def matches(self, raw: str, hashed: str) -> bool: ...


def set_pin(child: Child, raw_pin: str, hasher: Hasher) -> None:
    if not raw_pin:
        raise InvalidInput("PIN is required", child_id=str(child.id))
    child.pin_hash = hasher.hash(raw_pin)
    child.pin_enabled = True


def verify_pin(child: Child, raw_pin: str | None, hasher: Hasher) -> bool:
    if not child.pin_enabled or child.pin_hash is None or raw_pin is None:
        return False
    return hasher.matches(raw_pin, child.pin_hash)


def enable_pin(child: Child) -> None:
    if child.pin_hash is None:
        raise PinNotConfigured("No PIN has been set", child_id=str(child.id))
    child.pin_enabled = True


def disable_pin(child: Child) -> None:
    child.pin_enabled = False


def remove_pin(child: Child) -> None:
    child.pin_hash = None
    child.pin_enabled = False
