"""JWT authentication middleware.

CI runners and webhook relays present a Bearer token signed with the
shared secret; the ``sub`` claim is recorded as the submitter of every
audit record. Only submitter roles may create decisions, any valid
token may read them back.
"""

from __future__ import annotations

import time

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from netgate_api.config import settings

SUBMITTER_ROLES = frozenset({"ci", "admin"})

_bearer_scheme = HTTPBearer(auto_error=False)


class TokenClaims(BaseModel):
    sub: str
    role: str = "ci"


def create_token(sub: str, role: str = "ci", expires_in: int | None = None) -> str:
    """Issue a signed token, optionally expiring ``expires_in`` seconds from now."""
    payload: dict[str, object] = {"sub": sub, "role": role}
    if expires_in is not None:
        payload["exp"] = int(time.time()) + expires_in
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _decode_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return TokenClaims(sub=payload["sub"], role=payload.get("role", "ci"))
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        ) from e
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> TokenClaims:
    """FastAPI dependency that validates the Bearer token and returns claims."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return _decode_token(credentials.credentials)


async def require_submitter(user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
    """Like ``get_current_user``, but only for roles allowed to submit changesets."""
    if user.role not in SUBMITTER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{user.role}' may not submit changesets",
        )
    return user
