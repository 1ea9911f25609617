"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
import structlog
from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from timeslice.auth.jwt import verify_token

logger = structlog.get_logger()

_bearer = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> CurrentUser:
    """Verify the bearer token and return the caller's identity. Raises 401 on failure."""
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    return CurrentUser(id=str(payload["sub"]), role=str(payload.get("role", "user")))


def require_self_or_admin(
    user: CurrentUser,
    target_user_id: str,
    request: Request,
    message: str = "Access denied. You can only view your own analytics.",
) -> None:
    """Reject access to another user's data unless the caller is an admin."""
    if user.id == target_user_id or user.is_admin:
        return
    logger.warning(
        "unauthorized_analytics_access",
        requesting_user=user.id,
        target_user=target_user_id,
        ip=request.client.host if request.client else None,
        path=request.url.path,
    )
    raise HTTPException(status_code=403, detail=message)


def require_admin(user: CurrentUser, request: Request, event: str = "unauthorized_admin_access") -> None:
    if user.is_admin:
        return
    logger.warning(event, requesting_user=user.id, path=request.url.path)
    raise HTTPException(status_code=403, detail="Access denied. Admin privileges required.")
