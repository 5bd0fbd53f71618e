"""Database models for the scraper."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, JSON, Text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""

    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from SQLite."""

    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class FetchCacheRecord(SQLModel, table=True):
    """A previously fetched response body keyed by normalized URL."""

    __tablename__ = "fetch_cache"

    url: str = Field(primary_key=True)
    body: str = Field(sa_column=Column(Text, nullable=False))
    status_code: int = Field(default=200)
    fetched_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


class ScrapeRunRecord(SQLModel, table=True):
    """Lifecycle and counters for one scrape batch."""

    __tablename__ = "scrape_runs"

    id: str = Field(primary_key=True, index=True)
    status: str = Field(default="queued", index=True)
    progress: float = Field(default=0.0)
    total: int = Field(default=0)
    scraped: int = Field(default=0)
    failed: int = Field(default=0)
    skipped: int = Field(default=0)
    options: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    started_at: datetime | None = Field(default=None, index=True)
    finished_at: datetime | None = Field(default=None, index=True)
    error_message: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
