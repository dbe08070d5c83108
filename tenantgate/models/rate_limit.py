"""Rate limit counters for the database-backed limiter store."""

from datetime import datetime

from sqlmodel import Field, SQLModel


class RateLimitCounter(SQLModel, table=True):
    __tablename__ = "rate_limit_counters"

    # "<action>:<identifier>"
    key: str = Field(primary_key=True, max_length=255)
    count: int = Field(default=0, nullable=False)
    window_expires_at: datetime = Field(nullable=False)

    # Bumped on every write; updates are conditional on the version read
    version: int = Field(default=1, nullable=False)
