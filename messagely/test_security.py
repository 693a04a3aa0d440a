"""
Tests for password hashing and token issuing/verification.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from messagely.errors import InvalidTokenError, UnauthorizedError
from messagely.security import TokenIssuer


class TestPasswordHasher:
    """bcrypt hashing and verification."""

    @pytest.mark.asyncio
    async def test_hash_is_salted(self, hasher):
        first = await hasher.hash("pw1")
        second = await hasher.hash("pw1")

        assert first != second
        assert first.startswith("$2")
        assert "pw1" not in first

    @pytest.mark.asyncio
    async def test_verify_matching_password(self, hasher):
        hashed = await hasher.hash("pw1")

        assert await hasher.verify("pw1", hashed) is True

    @pytest.mark.asyncio
    async def test_verify_wrong_password_returns_false(self, hasher):
        hashed = await hasher.hash("pw1")

        assert await hasher.verify("pw2", hashed) is False

    @pytest.mark.asyncio
    async def test_verify_over_72_bytes_returns_false(self, hasher):
        hashed = await hasher.hash("x" * 72)

        assert await hasher.verify("y" * 100, hashed) is False
        # bcrypt ignores bytes past 72, so a longer password must not match either
        assert await hasher.verify("x" * 100, hashed) is False

    @pytest.mark.asyncio
    async def test_malformed_hash_raises(self, hasher):
        with pytest.raises(ValueError):
            await hasher.verify("pw1", "not-a-bcrypt-hash")

    @pytest.mark.asyncio
    async def test_burn_always_fails(self, hasher):
        assert await hasher.burn("messagely-dummy-password") is False

    @pytest.mark.asyncio
    async def test_burn_with_long_password(self, hasher):
        assert await hasher.burn("x" * 100) is False

    def test_work_factor_is_used(self, hasher):
        hashed = hasher.hash_sync("pw1")

        # $2b$04$... for work factor 4
        assert hashed.split("$")[2] == "04"


class TestTokenIssuer:
    """JWT issue and verify."""

    def test_issue_and_verify(self, token_issuer):
        token = token_issuer.issue({"username": "alice"})

        claims = token_issuer.verify(token)

        assert claims["username"] == "alice"
        assert "iat" in claims

    def test_no_expiry_by_default(self, token_issuer):
        token = token_issuer.issue({"username": "alice"})

        assert "exp" not in token_issuer.verify(token)

    def test_expiry_when_configured(self):
        issuer = TokenIssuer(secret_key="expiring-secret-key-0123456789abcdef", expire_minutes=5)

        claims = issuer.verify(issuer.issue({"username": "alice"}))

        assert claims["exp"] - claims["iat"] == 300

    def test_issue_requires_username(self, token_issuer):
        with pytest.raises(ValueError):
            token_issuer.issue({"role": "admin"})

    def test_wrong_secret_rejected(self, token_issuer):
        other = TokenIssuer(secret_key="another-secret-key-0123456789abcdef")
        token = other.issue({"username": "alice"})

        with pytest.raises(InvalidTokenError):
            token_issuer.verify(token)

    def test_expired_token_rejected(self, token_issuer):
        token = jwt.encode(
            {"username": "alice", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
            token_issuer.secret_key,
            algorithm="HS256",
        )

        with pytest.raises(InvalidTokenError) as exc_info:
            token_issuer.verify(token)

        assert exc_info.value.message == "Token expired"

    def test_token_without_username_rejected(self, token_issuer):
        token = jwt.encode({"sub": "alice"}, token_issuer.secret_key, algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            token_issuer.verify(token)

    def test_unsigned_token_rejected(self, token_issuer):
        token = jwt.encode({"username": "alice"}, None, algorithm="none")

        with pytest.raises(InvalidTokenError):
            token_issuer.verify(token)

    def test_garbage_rejected(self, token_issuer):
        with pytest.raises(InvalidTokenError):
            token_issuer.verify("not.a.token")

    def test_invalid_token_is_unauthorized(self):
        assert issubclass(InvalidTokenError, UnauthorizedError)
        assert InvalidTokenError().status_code == 401

    def test_error_message_defaults(self):
        assert InvalidTokenError().message == "Invalid token"
        assert InvalidTokenError(None).message == "Invalid token"
        assert InvalidTokenError("Token expired").message == "Token expired"
