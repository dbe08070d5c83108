"""Error taxonomy shared by services and the HTTP layer.

Services raise these; ``tenantgate.main`` renders them as
``{"code": ..., "detail": ...}`` with the matching status code.
"""

from fastapi import status


class TenantGateError(Exception):
    code: str = "error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UnauthenticatedError(TenantGateError):
    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(TenantGateError):
    """Resource absent, or not visible to the caller's tenant."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(TenantGateError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class InsufficientScopeError(ForbiddenError):
    code = "insufficient_scope"

    def __init__(self, scope: str) -> None:
        super().__init__(f"API key is missing the required scope '{scope}'")
        self.scope = scope


class RateLimitedError(TenantGateError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class ValidationError(TenantGateError):
    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(TenantGateError):
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT
