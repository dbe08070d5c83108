"""Authentication endpoints: register, login, current user."""

import logging

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import func
from sqlmodel import select

from tenantgate.api.deps import CurrentUser, Limiter, Session, client_ip
from tenantgate.core.errors import ConflictError, RateLimitedError, UnauthenticatedError
from tenantgate.core.security import (
    create_jwt,
    dummy_verify_password,
    hash_password,
    verify_password,
)
from tenantgate.models.account import AccountRead
from tenantgate.models.user import User, UserCreate, UserRead
from tenantgate.services.accounts import list_accounts_for_user
from tenantgate.services.rate_limit import login_rule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Schemas ──────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class MeResponse(BaseModel):
    user: UserRead
    accounts: list[AccountRead]


# ── Routes ───────────────────────────────────────────────────

@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def register(body: UserCreate, session: Session) -> UserRead:
    """Create a global user identity. Accounts are created separately."""
    email = body.email.strip().lower()
    existing = await session.execute(select(User).where(func.lower(User.email) == email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("A user with this email already exists", code="email_taken")

    user = User(
        email=email,
        password_hash=hash_password(body.password),
        display_name=body.display_name,
    )
    session.add(user)
    await session.commit()
    return UserRead.model_validate(user)


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    session: Session,
    limiter: Limiter,
) -> LoginResponse:
    """Authenticate with email + password, receive a JWT.

    Attempts are counted per source IP before the credentials are checked.
    """
    rule = login_rule()
    ip = client_ip(request) or "unknown"
    if not await limiter.check(rule.action, ip, rule.limit, rule.window_seconds):
        logger.warning("Login rate limit exceeded for %s", ip)
        raise RateLimitedError("Too many attempts. Please try again later.")

    stmt = select(User).where(func.lower(User.email) == body.email.lower())
    user = (await session.execute(stmt)).scalar_one_or_none()
    if user is None:
        dummy_verify_password()
        raise UnauthenticatedError("Invalid email or password")
    if not verify_password(body.password, user.password_hash):
        raise UnauthenticatedError("Invalid email or password")
    if not user.is_active:
        raise UnauthenticatedError("User is disabled")

    return LoginResponse(
        access_token=create_jwt(subject=str(user.id)),
        user=UserRead.model_validate(user),
    )


@router.get("/me", response_model=MeResponse)
async def get_me(user: CurrentUser, session: Session) -> MeResponse:
    """The current user and every account they belong to."""
    rows = await list_accounts_for_user(session, user.id)
    return MeResponse(
        user=UserRead.model_validate(user),
        accounts=[
            AccountRead.from_account(account, None if member.is_pending else member.role)
            for account, member in rows
        ],
    )
