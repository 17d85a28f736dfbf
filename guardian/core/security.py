"""Credential signing and password hashing.

Bearer credentials are HS256 JWTs signed with ``settings.SECRET_KEY``. The
signer is built once per process and never re-keyed while running.
Passwords and child PINs share the bcrypt hasher.
"""

import logging
import secrets
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from guardian.config import settings
from guardian.core.clock import utcnow
from guardian.core.exceptions import Expired, InvalidClaim, Malformed, SignatureError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

# Claim name -> expected Python type after JSON decoding
ACCESS_CLAIMS: dict[str, type] = {
    "userId": str,
    "email": str,
    "name": str,
    "roles": list,
    "type": str,
}
REFRESH_CLAIMS: dict[str, type] = {
    "userId": str,
    "type": str,
}

# every token carries its own issue time and absolute expiry
TIMING_CLAIMS: dict[str, type] = {"iat": int, "exp": int}


# ── Password / PIN hashing ───────────────────────────────────────────────────


class BcryptHasher:
    """The ``hash`` / ``matches`` capability used for passwords and PINs."""

    def hash(self, raw: str) -> str:
        return bcrypt.hashpw(raw.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    def matches(self, raw: str, hashed: str) -> bool:
        try:
            return bcrypt.checkpw(raw.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Stored value is not a bcrypt hash
            return False


password_hasher = BcryptHasher()


def get_password_hash(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return password_hasher.matches(plain_password, hashed_password)


# ── Bearer credential signing ────────────────────────────────────────────────


class CredentialSigner:
    """Issue and verify self-contained signed credentials."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        required_claims: dict[str, type] | None = None,
    ) -> None:
        self._secret_key = secret_key
        self.algorithm = algorithm
        self.required_claims = required_claims or {}

    def issue(
        self,
        claims: dict[str, Any],
        ttl_minutes: int,
        now: datetime | None = None,
    ) -> str:
        """Sign ``claims`` together with ``iat`` and an absolute ``exp``.

        The caller's dict is copied, never mutated.
        """
        issued_at = now or utcnow()
        to_encode = dict(claims)
        to_encode["iat"] = issued_at
        to_encode["exp"] = issued_at + timedelta(minutes=ttl_minutes)
        return jwt.encode(
            to_encode,
            self._secret_key,
            algorithm=self.algorithm,
            headers={"typ": "JWT"},
        )

    def verify(
        self,
        token: str,
        required_claims: dict[str, type] | None = None,
    ) -> dict[str, Any]:
        """Return the claim map of a valid token.

        Raises:
            Malformed: the token cannot be split or its header decoded.
            Expired: the embedded ``exp`` lies in the past.
            InvalidClaim: a required claim, ``iat`` or ``exp`` is missing or
                has the wrong type.
            SignatureError: any other verification failure.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise Malformed("Malformed credential") from exc
        if header.get("alg") != self.algorithm:
            raise SignatureError("Unexpected signing algorithm", alg=header.get("alg"))

        # jose checks the signature before it looks at any claim
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise Expired("Credential expired") from exc
        except JWTClaimsError as exc:
            raise InvalidClaim(str(exc)) from exc
        except JWTError as exc:
            raise SignatureError("Credential verification failed") from exc

        required = self.required_claims if required_claims is None else required_claims
        for name, expected in {**TIMING_CLAIMS, **required}.items():
            value = claims.get(name)
            if not isinstance(value, expected):
                raise InvalidClaim(f"Claim {name!r} missing or invalid", claim=name)
        return claims


@lru_cache
def get_signer() -> CredentialSigner:
    """Process-wide signer keyed from settings."""
    return CredentialSigner(settings.SECRET_KEY, settings.ALGORITHM)


def create_access_token(claims: dict[str, Any], ttl_minutes: int | None = None) -> str:
    """Sign an access credential for the given principal claims."""
    data = {**claims, "type": ACCESS_TOKEN_TYPE}
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if ttl_minutes is None else ttl_minutes
    return get_signer().issue(data, minutes)


def create_refresh_token(user_id: str) -> str:
    """Sign a refresh credential; ``jti`` makes every rotation distinct."""
    data = {
        "userId": user_id,
        "type": REFRESH_TOKEN_TYPE,
        "jti": secrets.token_urlsafe(16),
    }
    return get_signer().issue(data, settings.REFRESH_TOKEN_EXPIRE_MINUTES)


def decode_access_token(token: str) -> dict[str, Any]:
    claims = get_signer().verify(token, ACCESS_CLAIMS)
    if claims["type"] != ACCESS_TOKEN_TYPE:
        raise InvalidClaim("Not an access credential", claim="type")
    if not all(isinstance(role, str) for role in claims["roles"]):
        raise InvalidClaim("Claim 'roles' must be a list of strings", claim="roles")
    return claims


def decode_refresh_token(token: str) -> dict[str, Any]:
    claims = get_signer().verify(token, REFRESH_CLAIMS)
    if claims["type"] != REFRESH_TOKEN_TYPE:
        raise InvalidClaim("Not a refresh credential", claim="type")
    return claims
