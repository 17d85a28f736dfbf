"""Domain error taxonomy.

Services and domain objects raise these; ``guardian.main`` maps each kind to
an HTTP response. Every error carries a stable ``code`` and a ``context``
dict with the ids involved so the boundary can render a precise message.
"""

from typing import Any


class GuardianError(Exception):
    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(code={self.code!r}, message={self.message!r})>"


class InvalidInput(GuardianError):
    status_code = 400
    code = "invalid_input"


class InvalidGrant(InvalidInput):
    code = "invalid_grant"


class InvariantViolation(GuardianError):
    status_code = 409
    code = "invariant_violation"


class RoleMismatch(GuardianError):
    status_code = 409
    code = "role_mismatch"


class NotFound(GuardianError):
    status_code = 404
    code = "not_found"


class Unauthorized(GuardianError):
    status_code = 401
    code = "unauthorized"


class Forbidden(GuardianError):
    status_code = 403
    code = "forbidden"


class SessionInvalid(GuardianError):
    status_code = 409
    code = "session_invalid"


class SessionInactive(GuardianError):
    status_code = 409
    code = "session_inactive"


class PinNotConfigured(GuardianError):
    status_code = 409
    code = "pin_not_configured"


# -- Credential verification failures ----------------------------------------


class CredentialError(Unauthorized):
    code = "invalid_credential"


class Malformed(CredentialError):
    code = "malformed"


class Expired(CredentialError):
    code = "expired"


class InvalidClaim(CredentialError):
    code = "invalid_claim"


class SignatureError(CredentialError):
    code = "signature_error"
