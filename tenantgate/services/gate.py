"""Authorization façade: the single entry point for every protected operation.

Per call::

    resolve actor -> check role / scope / tier -> [denied: audit + 403]
                  -> check rate limit            -> [denied: audit + 429]
                  -> execute -> audit success    -> commit

Denials are committed before the error propagates, so a refused call is
never silent. A successful operation and its audit entry commit together;
if either fails, neither lands.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.catalog import feature_tier
from tenantgate.core.errors import (
    ForbiddenError,
    InsufficientScopeError,
    NotFoundError,
    RateLimitedError,
)
from tenantgate.models.account import Account
from tenantgate.models.api_key import ApiKey
from tenantgate.models.audit_log import AuditAction
from tenantgate.models.member import AccountMember, AccountRole
from tenantgate.services import audit
from tenantgate.services.api_keys import has_scope
from tenantgate.services.rate_limit import RateLimiter, RateRule
from tenantgate.services.roles import (
    available_features,
    get_membership,
    resolve_permission,
    role_satisfies,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActorKind(StrEnum):
    USER = "user"
    API_KEY = "api_key"


@dataclass
class Actor:
    """The resolved caller of a request.

    Identifiers are copied out of the ORM rows up front so the audit trail
    can still be written after the session has been rolled back.
    """

    kind: ActorKind
    user_id: uuid.UUID | None = None
    api_key: ApiKey | None = None
    api_key_id: uuid.UUID | None = None
    key_account_id: uuid.UUID | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def for_user(cls, user_id: uuid.UUID, ip_address: str | None = None,
                 user_agent: str | None = None) -> "Actor":
        return cls(ActorKind.USER, user_id=user_id, ip_address=ip_address, user_agent=user_agent)

    @classmethod
    def for_api_key(cls, key: ApiKey, ip_address: str | None = None,
                    user_agent: str | None = None) -> "Actor":
        return cls(
            ActorKind.API_KEY,
            api_key=key,
            api_key_id=key.id,
            key_account_id=key.account_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    @property
    def is_api_key(self) -> bool:
        return self.kind == ActorKind.API_KEY

    @property
    def identity(self) -> str:
        return f"key:{self.api_key_id}" if self.is_api_key else f"user:{self.user_id}"

    def audit_fields(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "api_key_id": self.api_key_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


@dataclass
class Access:
    """What a passed check grants the operation."""

    account: Account
    actor: Actor
    member: AccountMember | None = None
    role: AccountRole | None = None


class Gate:
    def __init__(self, session: AsyncSession, limiter: RateLimiter, actor: Actor) -> None:
        self.session = session
        self.limiter = limiter
        self.actor = actor

    # ── Audit ────────────────────────────────────────────────

    async def record(
        self,
        account_id: uuid.UUID,
        action: str,
        resource_type: str,
        resource_id: str | uuid.UUID | None = None,
        details: dict | None = None,
    ) -> uuid.UUID:
        """Append an entry attributed to the current actor (flush only)."""
        return await audit.log(
            self.session,
            account_id,
            action,
            resource_type,
            resource_id,
            details,
            **self.actor.audit_fields(),
        )

    async def _refuse(
        self,
        account_id: uuid.UUID,
        audit_action: AuditAction,
        attempted: str,
        resource_type: str,
        resource_id: str | uuid.UUID | None,
        reason: str,
        error: Exception,
        **extra: Any,
    ):
        await self.record(
            account_id,
            audit_action,
            resource_type,
            resource_id,
            {"attempted": attempted, "reason": reason, **extra},
        )
        await self.session.commit()
        logger.info(
            "Denied %s on %s for %s in account %s: %s",
            attempted, resource_type, self.actor.identity, account_id, reason,
        )
        raise error

    # ── Checks ───────────────────────────────────────────────

    async def check(
        self,
        account_id: uuid.UUID,
        *,
        action: str,
        resource_type: str,
        resource_id: str | uuid.UUID | None = None,
        minimum_role: AccountRole | None = None,
        feature: str | None = None,
        scope: str | None = None,
        allow_pending: bool = False,
    ) -> Access:
        """Resolve the actor's standing in the account or refuse (audited)."""
        account = await self.session.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account not found")

        def deny(reason: str, error: Exception, **extra: Any):
            return self._refuse(
                account.id, AuditAction.ACCESS_DENIED, action, resource_type,
                resource_id, reason, error, **extra,
            )

        if self.actor.is_api_key:
            if self.actor.key_account_id != account.id:
                # Recorded against the key's own account; this one stays invisible
                await self._refuse(
                    self.actor.key_account_id, AuditAction.ACCESS_DENIED, action,
                    resource_type, resource_id, "foreign_account",
                    NotFoundError("Account not found"),
                )
            if not account.is_active:
                await deny("account_inactive", ForbiddenError("This account is not active"))
            if scope is None:
                await deny(
                    "api_key_not_permitted",
                    ForbiddenError("This action requires a user session; API keys cannot perform it"),
                )
            if not has_scope(self.actor.api_key, scope):
                await deny("insufficient_scope", InsufficientScopeError(scope), scope=scope)
            if feature is not None and not _tier_allows(account.tier, feature):
                await deny("feature_unavailable", _feature_error(feature), feature=feature)
            return Access(account=account, actor=self.actor)

        member = await get_membership(self.session, account.id, self.actor.user_id)
        if member is None or (member.is_pending and not allow_pending):
            await deny("not_member", NotFoundError("Account not found"))
        if not account.is_active:
            await deny("account_inactive", ForbiddenError("This account is not active"))

        role = None if member.is_pending else AccountRole(member.role)
        if minimum_role is not None and not role_satisfies(role, minimum_role):
            await deny(
                "insufficient_role",
                ForbiddenError(f"This action requires the {minimum_role} role"),
                required_role=minimum_role,
            )
        if feature is not None and not resolve_permission(
            account.tier, role, member.get_overrides(), feature
        ):
            if _tier_allows(account.tier, feature):
                await deny(
                    "feature_denied",
                    ForbiddenError(f"You do not have access to the '{feature}' feature"),
                    feature=feature,
                )
            await deny("feature_unavailable", _feature_error(feature), feature=feature)
        return Access(account=account, actor=self.actor, member=member, role=role)

    async def throttle(
        self,
        account_id: uuid.UUID,
        rule: RateRule,
        identifier: str,
        *,
        action: str,
        resource_type: str,
        resource_id: str | uuid.UUID | None = None,
    ) -> None:
        """Count an attempt against ``rule``; refuse (audited) past the limit."""
        if await self.limiter.check(rule.action, identifier, rule.limit, rule.window_seconds):
            return
        # The response never reveals the count or the time left in the window
        await self._refuse(
            account_id, AuditAction.RATE_LIMITED, action, resource_type, resource_id,
            "rate_limit_exceeded", RateLimitedError("Too many attempts. Please try again later."),
            limit=rule.action,
        )

    # ── Entry point ──────────────────────────────────────────

    async def perform(
        self,
        account_id: uuid.UUID,
        operation: Callable[[Access], Awaitable[T]],
        *,
        action: str,
        resource_type: str,
        resource_id: str | uuid.UUID | None = None,
        details: dict | None = None,
        describe: Callable[[T], dict] | None = None,
        resource_id_of: Callable[[T], Any] | None = None,
        minimum_role: AccountRole | None = None,
        feature: str | None = None,
        scope: str | None = None,
        rate_limit: RateRule | None = None,
        allow_pending: bool = False,
    ) -> T:
        access = await self.check(
            account_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            minimum_role=minimum_role,
            feature=feature,
            scope=scope,
            allow_pending=allow_pending,
        )
        if rate_limit is not None:
            await self.throttle(
                account_id,
                rate_limit,
                f"{account_id}:{self.actor.identity}",
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
            )

        try:
            result = await operation(access)
        except ForbiddenError as exc:
            # Refusals decided inside the operation are audited like any other
            await self.session.rollback()
            await self._refuse(
                account_id, AuditAction.ACCESS_DENIED, action, resource_type,
                resource_id, exc.code, exc,
            )
        except Exception:
            await self.session.rollback()
            raise

        entry = dict(details or {})
        if describe is not None:
            entry.update(describe(result))
        if resource_id_of is not None:
            resource_id = resource_id_of(result)
        await self.record(account_id, action, resource_type, resource_id, entry or None)
        await self.session.commit()
        return result


def _tier_allows(tier: str, feature: str) -> bool:
    entry = available_features(tier).get(feature)
    return entry is not None and entry.available


def _feature_error(feature: str) -> ForbiddenError:
    required = feature_tier(feature)
    if required is None:
        return ForbiddenError(f"Unknown feature '{feature}'")
    return ForbiddenError(f"The '{feature}' feature requires the {required} tier")
