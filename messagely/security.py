"""
Credential hashing and session tokens.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from starlette.concurrency import run_in_threadpool

from messagely.errors import InvalidTokenError

logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """
    bcrypt hashing with a configurable work factor.

    Hashing is CPU-bound on purpose, so the async methods run it in the
    threadpool to keep the event loop free for other requests.
    """

    def __init__(self, work_factor: int = 12):
        self.work_factor = work_factor
        # Compared against when the user does not exist, so unknown
        # usernames cost as much as wrong passwords.
        self._dummy_hash = self.hash_sync("messagely-dummy-password")

    def hash_sync(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.work_factor)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify_sync(self, password: str, password_hash: str) -> bool:
        # No hash was made from a longer password, and bcrypt>=5 refuses one
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        # A malformed stored hash raises ValueError from bcrypt
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    async def hash(self, password: str) -> str:
        """Hash a plaintext password with a fresh salt."""
        return await run_in_threadpool(self.hash_sync, password)

    async def verify(self, password: str, password_hash: str) -> bool:
        """Return True if the password matches the stored hash."""
        return await run_in_threadpool(self.verify_sync, password, password_hash)

    async def burn(self, password: str) -> bool:
        """Run a verify against the dummy hash and report failure."""
        await self.verify(password, self._dummy_hash)
        return False


class TokenIssuer:
    """
    Issues and verifies signed JWTs carrying the ``username`` claim.

    Tokens never expire unless ``expire_minutes`` is set.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_minutes: Optional[int] = None,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def issue(self, claims: Dict[str, Any]) -> str:
        """
        Create a signed token.

        Args:
            claims: Token claims; must include ``username``

        Returns:
            Encoded JWT string
        """
        if not claims.get("username"):
            raise ValueError("token claims must include a username")

        now = datetime.now(timezone.utc)
        payload = dict(claims)
        payload["iat"] = now
        if self.expire_minutes:
            payload["exp"] = now + timedelta(minutes=self.expire_minutes)

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Issued token for {claims['username']}")
        return token

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode a token and check its signature (and expiry, if present).

        Raises:
            InvalidTokenError: signature, format or expiry check failed, or
                the token carries no username
        """
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
            raise InvalidTokenError("Token expired")
        except jwt.PyJWTError as e:
            logger.info(f"Rejected invalid token: {type(e).__name__}")
            raise InvalidTokenError()

        if not isinstance(claims.get("username"), str) or not claims["username"]:
            logger.info("Rejected token without username claim")
            raise InvalidTokenError()

        return claims
