"""Database-backed store for scrape run lifecycle and counters."""
from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Iterable
from uuid import uuid4

from sqlmodel import Session, select

from ..models import ScrapeRunRecord, as_utc, utcnow
from ..schemas import ScrapeRunModel


class ScrapeRunStore:
    """Thread-safe CRUD interface for scrape runs."""

    def __init__(self, engine) -> None:
        self._engine = engine
        self._lock = Lock()

    def create(self, total: int, options: dict[str, Any] | None = None) -> ScrapeRunModel:
        """Create a queued run entry and return its model representation."""

        record = ScrapeRunRecord(
            id=uuid4().hex,
            status="queued",
            progress=0.0,
            total=total,
            options=options,
        )
        with self._lock, Session(self._engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return _to_model(record)

    def list(self, *, limit: int = 20, statuses: list[str] | None = None) -> list[ScrapeRunModel]:
        """Return the most recent runs, optionally filtered by status."""

        statement = select(ScrapeRunRecord)
        if statuses:
            normalized_statuses = sorted({status.lower() for status in statuses if status})
            if normalized_statuses:
                statement = statement.where(ScrapeRunRecord.status.in_(normalized_statuses))

        statement = statement.order_by(ScrapeRunRecord.created_at.desc()).limit(limit)
        with Session(self._engine) as session:
            records: Iterable[ScrapeRunRecord] = session.exec(statement)
            return [_to_model(record) for record in records]

    def get(self, run_id: str) -> ScrapeRunModel | None:
        with Session(self._engine) as session:
            record = session.get(ScrapeRunRecord, run_id)
            return _to_model(record) if record else None

    def mark_running(self, run_id: str) -> ScrapeRunModel:
        return self._update_run(run_id, status="running", progress=0.0, started_at=utcnow())

    def update_progress(self, run_id: str, progress: float) -> ScrapeRunModel:
        return self._update_run(run_id, progress=min(max(progress, 0.0), 1.0))

    def mark_finished(
        self,
        run_id: str,
        *,
        cancelled: bool,
        scraped: int,
        failed: int,
        skipped: int,
    ) -> ScrapeRunModel:
        """Record final counters and move the run to completed or cancelled."""

        return self._update_run(
            run_id,
            status="cancelled" if cancelled else "completed",
            progress=None if cancelled else 1.0,
            finished_at=utcnow(),
            counts={"scraped": scraped, "failed": failed, "skipped": skipped},
        )

    def mark_failed(self, run_id: str, *, error_message: str) -> ScrapeRunModel:
        return self._update_run(
            run_id,
            status="failed",
            finished_at=utcnow(),
            error_message=error_message,
        )

    def _update_run(
        self,
        run_id: str,
        *,
        status: str | None = None,
        progress: float | None = None,
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
        error_message: str | None = None,
        counts: dict[str, int] | None = None,
    ) -> ScrapeRunModel:
        with self._lock, Session(self._engine) as session:
            record = session.get(ScrapeRunRecord, run_id)
            if record is None:
                raise RuntimeError(f"Run {run_id} not found")

            if status is not None:
                record.status = status
            if progress is not None:
                record.progress = progress
            if started_at is not None and record.started_at is None:
                record.started_at = started_at
            if finished_at is not None:
                record.finished_at = finished_at
            if error_message is not None:
                record.error_message = error_message
            for key, value in (counts or {}).items():
                setattr(record, key, value)
            record.updated_at = utcnow()

            session.add(record)
            session.commit()
            session.refresh(record)
            return _to_model(record)


def _to_model(record: ScrapeRunRecord) -> ScrapeRunModel:
    """Convert a ScrapeRunRecord into the public model."""

    duration_seconds: float | None = None
    if record.started_at and record.finished_at:
        duration_seconds = (as_utc(record.finished_at) - as_utc(record.started_at)).total_seconds()

    return ScrapeRunModel(
        id=record.id,
        status=record.status,
        progress=record.progress,
        total=record.total,
        scraped=record.scraped,
        failed=record.failed,
        skipped=record.skipped,
        options=record.options,
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
        started_at=as_utc(record.started_at),
        finished_at=as_utc(record.finished_at),
        error_message=record.error_message,
        duration_seconds=duration_seconds,
    )
