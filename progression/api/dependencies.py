from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from progression.db import engine as db_engine
from progression.db.stores import build_engine
from progression.models.principal import Principal
from progression.services import token_service
from progression.services.engine import ProgressionEngine
from progression.services.errors import (
    LessonLockedError,
    NotEnrolledError,
    NotFoundError,
    OrphanLessonError,
    ProgressionError,
)

logger = logging.getLogger(__name__)

# tokens are issued by the auth service; tokenUrl only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    Used as a FastAPI dependency on any protected endpoint.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s",
        principal.user_id,
        principal.roles,
        extra={"user_id": principal.user_id},
    )
    return principal


def require_role(role: str):
    """Dependency factory: demand a specific role.

    Usage: Depends(require_role("admin"))
    Returns the Principal if the role is present, else 403.
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "Access denied: user=%s missing role=%s",
                principal.user_id,
                role,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return principal

    return _guard


async def get_engine() -> AsyncGenerator[ProgressionEngine, None]:
    """One engine per request.

    With a database, the engine's repositories share one session and the
    whole request commits or rolls back as a unit.
    """
    if db_engine.async_session_factory is None:
        yield build_engine()
        return
    async with db_engine.session_scope() as session:
        yield build_engine(session)


def http_error(exc: ProgressionError) -> HTTPException:
    """Map a domain error to the HTTP status the API promises for it."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, OrphanLessonError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, (NotEnrolledError, LessonLockedError)):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=code, detail=str(exc))
