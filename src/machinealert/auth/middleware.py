"""
Authentication dependency: turns a bearer token into a role claim.

Tokens are issued by the upstream auth service; this module only verifies
the signature and reads ``sub`` and ``roles``.
"""

from typing import Annotated, Any

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from machinealert.config import Settings, get_settings
from machinealert.shared.logging import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Identity claim attached to a request."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Subject identifier")
    roles: list[str] = Field(default_factory=list, description="Role claims")


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_claims(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a bearer token and return its payload.

    Raises:
        jwt.InvalidTokenError: If the signature, expiry or format is invalid.
    """
    return jwt.decode(
        token,
        settings.jwt_secret_key,
        algorithms=[settings.jwt_algorithm],
    )


def _roles_from_payload(payload: dict[str, Any]) -> list[str]:
    roles = payload.get("roles")
    if roles is None:
        role = payload.get("role")
        return [role] if isinstance(role, str) else []
    if isinstance(roles, str):
        return [roles]
    return [str(r) for r in roles]


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """Extract the current user from the Authorization header.

    Raises:
        HTTPException: 401 when the token is missing or invalid.
    """
    if credentials is None:
        logger.warning(
            "Missing authentication credentials",
            extra={
                "endpoint": str(request.url.path),
                "method": request.method,
            },
        )
        raise _unauthorized("MISSING_TOKEN", "Not authorized, no token")

    try:
        payload = decode_claims(credentials.credentials, settings)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("TOKEN_EXPIRED", "Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(
            "Invalid bearer token",
            extra={"endpoint": str(request.url.path), "error": str(e)},
        )
        raise _unauthorized("INVALID_TOKEN", "Invalid token")

    subject = payload.get("sub") or payload.get("user_id")
    if not subject:
        raise _unauthorized("INVALID_TOKEN", "Token has no subject")

    return CurrentUser(id=str(subject), roles=_roles_from_payload(payload))
