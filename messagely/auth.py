"""
Request guards for protected routes.

``ensure_logged_in`` checks the Bearer token and yields its claims;
``ensure_correct_user`` additionally requires the token's username to match
the ``{username}`` path parameter. Both are plain FastAPI dependencies.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from messagely.errors import ForbiddenError, UnauthorizedError
from messagely.security import PasswordHasher, TokenIssuer

logger = logging.getLogger(__name__)

# auto_error=False so a missing header goes through our own 401 handler
_bearer_scheme = HTTPBearer(auto_error=False)


def get_token_issuer(request: Request) -> TokenIssuer:
    return request.app.state.token_issuer


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.password_hasher


async def ensure_logged_in(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
) -> Dict[str, Any]:
    """Return the verified token claims, or fail with 401."""
    if credentials is None:
        logger.info("Rejected request without bearer token")
        raise UnauthorizedError()

    return token_issuer.verify(credentials.credentials)


async def ensure_correct_user(
    username: str,
    claims: Dict[str, Any] = Depends(ensure_logged_in),
) -> Dict[str, Any]:
    """Require the authenticated user to be the one named in the path."""
    if claims["username"] != username:
        logger.info(f"User {claims['username']} denied access to {username}")
        raise ForbiddenError()

    return claims
