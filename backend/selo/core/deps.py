"""
FastAPI dependencies for authentication and database.
"""
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from selo.core.exceptions import UnauthorizedError
from selo.core.security import decode_token, verify_cron_secret
from selo.database import get_db  # noqa: F401

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Authenticated principal. Users and organizations live in an external service."""

    user_id: UUID
    organization_id: UUID | None = None


def _parse_uuid(value) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def caller_from_token(token: str) -> Caller | None:
    payload = decode_token(token)
    if payload is None:
        return None

    user_id = _parse_uuid(payload.get("sub"))
    if user_id is None:
        return None

    return Caller(user_id=user_id, organization_id=_parse_uuid(payload.get("org")))


async def get_current_caller(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Caller:
    """Get the current caller from the JWT's sub and org claims."""
    caller = caller_from_token(credentials.credentials)
    if caller is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller


async def get_caller_or_cron(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> Caller | None:
    """Accept either a user token or the scheduler's X-Cron-Secret header.

    Returns None when the scheduler is calling.
    """
    if verify_cron_secret(x_cron_secret):
        return None

    if credentials is not None:
        caller = caller_from_token(credentials.credentials)
        if caller is not None:
            return caller

    raise UnauthorizedError("Unauthorized")


async def require_cron_bearer(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(optional_security)],
) -> None:
    """Scheduled jobs authenticate with `Authorization: Bearer <CRON_SECRET>`."""
    if credentials is None or not verify_cron_secret(credentials.credentials):
        raise UnauthorizedError("Unauthorized")


# Common dependencies
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
CallerOrCron = Annotated[Caller | None, Depends(get_caller_or_cron)]
CronAuth = Depends(require_cron_bearer)
