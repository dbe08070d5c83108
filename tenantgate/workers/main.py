"""ARQ worker entrypoint."""

from arq import cron
from arq.connections import RedisSettings

from tenantgate.core.config import get_settings
from tenantgate.workers.retention import purge_audit_logs, purge_rate_limit_counters


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    settings = get_settings()
    # redis://host:port/db
    url = settings.redis_url
    # Strip scheme
    rest = url.split("://", 1)[1] if "://" in url else url
    host_port, _, db = rest.partition("/")
    host, _, port = host_port.partition(":")
    return RedisSettings(
        host=host or "localhost",
        port=int(port) if port else 6379,
        database=int(db) if db else 0,
    )


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from tenantgate.core.database import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [purge_audit_logs, purge_rate_limit_counters]
    cron_jobs = [
        # Daily at 03:15 UTC
        cron(purge_audit_logs, hour={3}, minute={15}, run_at_startup=False),
        # Every 10 minutes
        cron(purge_rate_limit_counters, minute=set(range(0, 60, 10)), run_at_startup=False),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    job_timeout = 600


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
