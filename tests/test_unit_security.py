"""Unit tests for core/security.py (no database required)."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

# Ensure settings can be loaded without .env
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-unit-tests")

from guardian.core.exceptions import (  # noqa: E402
    Expired,
    InvalidClaim,
    Malformed,
    SignatureError,
)
from guardian.core.security import (  # noqa: E402
    ACCESS_CLAIMS,
    CredentialSigner,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    get_password_hash,
    password_hasher,
    verify_password,
)

CLAIMS = {
    "userId": "0b7c8e9a-2f51-4a5e-9a51-5d3c2b1a0f11",
    "email": "anna@test.de",
    "name": "Anna",
    "roles": ["PARENT"],
}


# ── Password hashing ────────────────────────────────────────────────────────


class TestPasswordHashing:
    def test_hash_and_verify(self):
        password = "sichere-passwort-123"
        hashed = get_password_hash(password)
        assert hashed != password
        assert verify_password(password, hashed)

    def test_wrong_password_rejected(self):
        hashed = get_password_hash("correct-password")
        assert not verify_password("wrong-password", hashed)

    def test_different_hashes_for_same_password(self):
        h1 = get_password_hash("same-password")
        h2 = get_password_hash("same-password")
        assert h1 != h2  # random salt

    def test_non_bcrypt_hash_does_not_match(self):
        assert not password_hasher.matches("1234", "plain-text-not-a-hash")


# ── Signer ───────────────────────────────────────────────────────────────────


class TestCredentialSigner:
    def setup_method(self):
        self.signer = CredentialSigner("unit-test-secret", required_claims=ACCESS_CLAIMS)

    def test_issue_verify_returns_claims_plus_timing(self):
        token = self.signer.issue({**CLAIMS, "type": "access"}, ttl_minutes=5)
        claims = self.signer.verify(token)
        for key, value in CLAIMS.items():
            assert claims[key] == value
        assert claims["exp"] - claims["iat"] == 5 * 60

    def test_issue_does_not_mutate_input(self):
        data = dict(CLAIMS)
        self.signer.issue(data, ttl_minutes=5)
        assert data == CLAIMS

    def test_expired_after_ttl(self):
        past = datetime.now(timezone.utc) - timedelta(minutes=10)
        token = self.signer.issue({**CLAIMS, "type": "access"}, ttl_minutes=5, now=past)
        with pytest.raises(Expired):
            self.signer.verify(token)

    def test_garbage_is_malformed(self):
        with pytest.raises(Malformed):
            self.signer.verify("not-a-token")

    def test_foreign_key_is_signature_error(self):
        other = CredentialSigner("another-secret")
        token = other.issue({**CLAIMS, "type": "access"}, ttl_minutes=5)
        with pytest.raises(SignatureError):
            self.signer.verify(token)

    def test_unexpected_algorithm_is_signature_error(self):
        other = CredentialSigner("unit-test-secret", algorithm="HS512")
        token = other.issue({**CLAIMS, "type": "access"}, ttl_minutes=5)
        with pytest.raises(SignatureError):
            self.signer.verify(token)

    def test_missing_claim_is_invalid_claim(self):
        token = self.signer.issue({"userId": "x", "type": "access"}, ttl_minutes=5)
        with pytest.raises(InvalidClaim):
            self.signer.verify(token)

    def test_wrong_claim_type_is_invalid_claim(self):
        token = self.signer.issue({**CLAIMS, "roles": "PARENT", "type": "access"}, ttl_minutes=5)
        with pytest.raises(InvalidClaim):
            self.signer.verify(token)

    def test_missing_expiry_is_invalid_claim(self):
        token = jwt.encode({**CLAIMS, "type": "access", "iat": 1700000000}, "unit-test-secret", algorithm="HS256")
        with pytest.raises(InvalidClaim):
            self.signer.verify(token)

    def test_missing_issue_time_is_invalid_claim(self):
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode({**CLAIMS, "type": "access", "exp": exp}, "unit-test-secret", algorithm="HS256")
        with pytest.raises(InvalidClaim):
            self.signer.verify(token)


# ── Access / refresh helpers ─────────────────────────────────────────────────


class TestTokenHelpers:
    def test_access_token_roundtrip(self):
        claims = decode_access_token(create_access_token(CLAIMS))
        assert claims["userId"] == CLAIMS["userId"]
        assert claims["type"] == "access"

    def test_refresh_token_is_not_an_access_token(self):
        token = create_refresh_token(CLAIMS["userId"])
        with pytest.raises(InvalidClaim):
            decode_access_token(token)

    def test_access_token_is_not_a_refresh_token(self):
        token = create_access_token(CLAIMS)
        with pytest.raises(InvalidClaim):
            decode_refresh_token(token)

    def test_refresh_tokens_are_distinct(self):
        assert create_refresh_token("u") != create_refresh_token("u")

    def test_non_string_role_rejected(self):
        token = create_access_token({**CLAIMS, "roles": [1]})
        with pytest.raises(InvalidClaim):
            decode_access_token(token)
