"""FastAPI dependencies for actor resolution and the authorization gate."""

import logging
import uuid
from typing import Annotated

from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.database import get_session
from tenantgate.core.errors import ForbiddenError, UnauthenticatedError
from tenantgate.core.security import decode_jwt
from tenantgate.models.user import User
from tenantgate.services import api_keys
from tenantgate.services.gate import Actor, Gate
from tenantgate.services.rate_limit import RateLimiter, build_rate_limiter

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def client_ip(request: Request) -> str | None:
    """Left-most X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45] or None
    return request.client.host if request.client else None


async def _resolve_api_key(
    raw: str,
    request: Request,
    background_tasks: BackgroundTasks,
    session: AsyncSession,
) -> Actor:
    """Validate ``key_id:secret`` and schedule the usage stamp."""
    key = await api_keys.validate(session, raw)
    if key is None:
        raise UnauthenticatedError("Invalid, revoked or expired API key")

    ip = client_ip(request)
    # After the response; a failure here never affects the decision
    background_tasks.add_task(api_keys.record_usage, session, key.id, ip)
    return Actor.for_api_key(key, ip, request.headers.get("user-agent"))


async def _resolve_jwt(raw: str, request: Request, session: AsyncSession) -> Actor:
    try:
        payload = decode_jwt(raw)
    except JWTError as exc:
        raise UnauthenticatedError("Invalid or expired session token") from exc

    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError, TypeError) as exc:
        raise UnauthenticatedError("Malformed session token") from exc

    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthenticatedError("User is disabled or no longer exists")
    return Actor.for_user(user.id, client_ip(request), request.headers.get("user-agent"))


async def get_actor(
    request: Request,
    background_tasks: BackgroundTasks,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> Actor:
    """Resolve the bearer credential to an Actor.

    Two credential types:
    - API keys: ``<key_id>:<secret>``
    - session JWTs (header.payload.signature)
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Missing bearer credentials")

    raw = credentials.credentials
    if ":" in raw:
        return await _resolve_api_key(raw, request, background_tasks, session)
    return await _resolve_jwt(raw, request, session)


async def get_current_user(
    actor: Annotated[Actor, Depends(get_actor)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> User:
    """The signed-in user; API keys are refused."""
    if actor.is_api_key:
        raise ForbiddenError("This endpoint requires a user session, not an API key")
    user = await session.get(User, actor.user_id)
    if user is None:
        raise UnauthenticatedError("User is disabled or no longer exists")
    return user


def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter()


def get_gate(
    session: Annotated[AsyncSession, Depends(get_session)],
    actor: Annotated[Actor, Depends(get_actor)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> Gate:
    return Gate(session, limiter, actor)


# Typed shorthand for use in route signatures
Session = Annotated[AsyncSession, Depends(get_session)]
ActorDep = Annotated[Actor, Depends(get_actor)]
CurrentUser = Annotated[User, Depends(get_current_user)]
GateDep = Annotated[Gate, Depends(get_gate)]
Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
