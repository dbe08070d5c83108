"""System health endpoint: checks connectivity to the database and Redis."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from tenantgate.api.deps import Session
from tenantgate.core.config import get_settings

router = APIRouter(prefix="/system", tags=["system"])

settings = get_settings()


class ServiceHealth(BaseModel):
    status: str  # "ok", "error" or "unused"
    detail: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    redis: ServiceHealth
    rate_limit_backend: str


@router.get("/health", response_model=HealthResponse)
async def system_health(session: Session) -> HealthResponse:
    """Check connectivity to the database and, when it backs the limiter, Redis."""
    db = await _check_database(session)
    rd = await _check_redis() if settings.rate_limit_backend == "redis" else ServiceHealth(status="unused")

    overall = "ok" if all(s.status in ("ok", "unused") for s in (db, rd)) else "degraded"
    return HealthResponse(
        status=overall,
        database=db,
        redis=rd,
        rate_limit_backend=settings.rate_limit_backend,
    )


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis() -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(settings.redis_url, decode_responses=True)
        pong = await redis.ping()
        latency = int((time.monotonic() - t0) * 1000)
        await redis.aclose()
        return ServiceHealth(status="ok" if pong else "error", latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])
