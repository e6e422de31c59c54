"""Persistent job store for prompt queue work items."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from llm_visibility.queue.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    CleanupResult,
    JobStatus,
    JobView,
    QueueStatusCounts,
    RunResultView,
    RunResultWrite,
    normalize_run_id,
)
from llm_visibility.storage.alembic_runner import upgrade_head
from llm_visibility.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from llm_visibility.storage.sqlmodel_models import QueueJob, RunResult

logger = logging.getLogger(__name__)


class QueueRepository:
    """Job store facade backed by SQLModel + SQLite.

    Every state change is a single-row conditional update keyed on the current
    status, so independent dispatcher processes can share one database file.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        priority: int = 0,
    ) -> int | None:
        """Persist one pending job and return its id, or None when the write fails."""

        owner_id = str(payload.get("owner_id") or "")
        is_batch = bool(payload.get("is_batch", False))
        now = to_db_datetime(utc_now())
        try:
            with Session(self.engine) as session:
                run_id = self._resolve_run_id(
                    session=session,
                    owner_id=owner_id,
                    payload=payload,
                    now=now,
                )
                stored_payload = dict(payload)
                stored_payload["run_id"] = run_id
                stored_payload["is_batch"] = is_batch
                row = QueueJob(
                    owner_id=owner_id,
                    job_type=job_type,
                    payload_json=json.dumps(stored_payload, ensure_ascii=False),
                    run_id=run_id,
                    is_batch=is_batch,
                    status=JobStatus.PENDING.value,
                    priority=priority,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                job_id = row.job_id
        except SQLAlchemyError:
            logger.exception("Failed to enqueue %s job for owner %s", job_type, owner_id)
            return None
        logger.info("Enqueued job %s (%s) for %s in run %s", job_id, job_type, owner_id, run_id)
        return job_id

    def _resolve_run_id(
        self,
        *,
        session: Session,
        owner_id: str,
        payload: Mapping[str, Any],
        now: datetime,
    ) -> str:
        if payload.get("is_batch", False):
            in_flight = session.exec(
                select(QueueJob.run_id)
                .where(
                    QueueJob.owner_id == owner_id,
                    QueueJob.is_batch == True,  # noqa: E712
                    col(QueueJob.status).in_([status.value for status in ACTIVE_STATUSES]),
                )
                .order_by(col(QueueJob.created_at).asc(), col(QueueJob.job_id).asc())
                .limit(1),
            ).first()
            if in_flight:
                return in_flight
            return f"{owner_id}_batch_{now:%Y%m%d%H%M%S}"

        supplied = normalize_run_id(payload.get("run_id"))
        if supplied:
            return supplied
        return f"{owner_id}_{payload.get('prompt_id') or ''}"

    def count_processing(self) -> int:
        """Number of jobs currently claimed by an executor."""

        return self.count_jobs(statuses=(JobStatus.PROCESSING,))

    def count_jobs(
        self,
        *,
        statuses: Iterable[JobStatus],
        owner_id: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            statement = select(func.count()).select_from(QueueJob).where(
                col(QueueJob.status).in_([status.value for status in statuses]),
            )
            if owner_id is not None:
                statement = statement.where(QueueJob.owner_id == owner_id)
            return int(session.exec(statement).one())

    def list_pending(self, *, limit: int) -> list[JobView]:
        """Pending jobs in dispatch order: priority desc, then oldest first."""

        if limit <= 0:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueJob)
                .where(QueueJob.status == JobStatus.PENDING.value)
                .order_by(
                    col(QueueJob.priority).desc(),
                    col(QueueJob.created_at).asc(),
                    col(QueueJob.job_id).asc(),
                )
                .limit(limit),
            ).all()
        return [_to_job_view(row) for row in rows]

    def claim_job(self, *, job_id: int) -> JobView | None:
        """Move one job from pending to processing.

        Returns None when another invocation won the job or the store could not
        be written; the job then stays pending for a later cycle.
        """

        now = to_db_datetime(utc_now())
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(QueueJob)
                    .where(
                        col(QueueJob.job_id) == job_id,
                        col(QueueJob.status) == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        started_at=now,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Job %s already claimed by another dispatcher", job_id)
                    return None
                claimed = session.exec(select(QueueJob).where(QueueJob.job_id == job_id)).one()
                session.commit()
                return _to_job_view(claimed)
        except SQLAlchemyError:
            logger.exception("Failed to claim job %s", job_id)
            return None

    def complete_job(self, *, job_id: int) -> bool:
        """Mark a processing job as completed."""

        return self._finish_job(job_id=job_id, status=JobStatus.COMPLETED, error_message=None)

    def fail_job(self, *, job_id: int, error_message: str) -> bool:
        """Mark a processing job as failed; failed jobs are never retried."""

        return self._finish_job(
            job_id=job_id,
            status=JobStatus.FAILED,
            error_message=error_message,
        )

    def _finish_job(
        self,
        *,
        job_id: int,
        status: JobStatus,
        error_message: str | None,
    ) -> bool:
        now = to_db_datetime(utc_now())
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(QueueJob)
                    .where(
                        col(QueueJob.job_id) == job_id,
                        col(QueueJob.status) == JobStatus.PROCESSING.value,
                    )
                    .values(
                        status=status.value,
                        completed_at=now,
                        updated_at=now,
                        error_message=error_message,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to mark job %s as %s", job_id, status.value)
            return False
        return True

    def update_job_payload(self, *, job_id: int, payload: Mapping[str, Any]) -> bool:
        """Rewrite the payload of a processing job (e.g. to record call duration)."""

        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(QueueJob)
                    .where(
                        col(QueueJob.job_id) == job_id,
                        col(QueueJob.status) == JobStatus.PROCESSING.value,
                    )
                    .values(
                        payload_json=json.dumps(dict(payload), ensure_ascii=False),
                        updated_at=to_db_datetime(utc_now()),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    return False
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to update payload of job %s", job_id)
            return False
        return True

    def get_job(self, *, job_id: int) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(select(QueueJob).where(QueueJob.job_id == job_id)).one_or_none()
        return _to_job_view(row) if row is not None else None

    def list_owners(self, *, statuses: Iterable[JobStatus]) -> list[str]:
        """Distinct owners having at least one job in any of the given statuses."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueJob.owner_id)
                .where(col(QueueJob.status).in_([status.value for status in statuses]))
                .distinct()
                .order_by(col(QueueJob.owner_id).asc()),
            ).all()
        return list(rows)

    def latest_completed_job(self, *, owner_id: str) -> JobView | None:
        """Most recently completed job of the owner."""

        with Session(self.engine) as session:
            row = session.exec(
                select(QueueJob)
                .where(
                    QueueJob.owner_id == owner_id,
                    QueueJob.status == JobStatus.COMPLETED.value,
                )
                .order_by(col(QueueJob.completed_at).desc(), col(QueueJob.job_id).desc())
                .limit(1),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def earliest_job_created_at(self, *, run_id: str) -> datetime | None:
        """Creation time of the first job of a run."""

        with Session(self.engine) as session:
            value = session.exec(
                select(func.min(QueueJob.created_at)).where(
                    QueueJob.run_id == normalize_run_id(run_id),
                ),
            ).one()
        return optional_utc(value)

    def add_run_result(self, payload: RunResultWrite) -> bool:
        """Persist one scratch row used by completion detection."""

        try:
            with Session(self.engine) as session:
                session.add(
                    RunResult(
                        owner_id=payload.owner_id,
                        run_id=normalize_run_id(payload.run_id),
                        result_id=payload.result_id,
                        prompt=payload.prompt,
                        model=payload.model,
                        answer=payload.answer,
                        created_at=to_db_datetime(utc_now()),
                    ),
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to store run result %s for run %s",
                payload.result_id,
                payload.run_id,
            )
            return False
        return True

    def list_run_results(self, *, run_id: str) -> list[RunResultView]:
        """Scratch rows of a run in creation order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(RunResult)
                .where(RunResult.run_id == normalize_run_id(run_id))
                .order_by(col(RunResult.created_at).asc(), col(RunResult.id).asc()),
            ).all()
        return [
            RunResultView(
                result_id=row.result_id,
                prompt=row.prompt,
                model=row.model,
                answer=row.answer,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    def delete_run_results(self, *, run_id: str) -> int:
        try:
            with Session(self.engine) as session:
                result = session.exec(
                    sa_delete(RunResult).where(
                        col(RunResult.run_id) == normalize_run_id(run_id),
                    ),
                )
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError:
            logger.exception("Failed to delete run results of run %s", run_id)
            return 0

    def get_queue_status(self) -> QueueStatusCounts:
        """Job counts for every lifecycle state, zeros included."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueJob.status, func.count()).group_by(QueueJob.status),
            ).all()
        counts = QueueStatusCounts()
        for status, count in rows:
            setattr(counts, JobStatus(status).value, int(count))
        return counts

    def list_jobs(
        self,
        *,
        owner_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, newest first."""

        with Session(self.engine) as session:
            statement = (
                select(QueueJob)
                .order_by(col(QueueJob.created_at).desc(), col(QueueJob.job_id).desc())
                .limit(limit)
            )
            if owner_id is not None:
                statement = statement.where(QueueJob.owner_id == owner_id)
            if status is not None:
                statement = statement.where(QueueJob.status == status.value)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def cleanup_old_jobs(self, *, retention_days: int) -> CleanupResult:
        """Delete terminal jobs and orphaned scratch rows older than the retention window."""

        cutoff = utc_now() - timedelta(days=retention_days)
        db_cutoff = to_db_datetime(cutoff)
        try:
            with Session(self.engine) as session:
                jobs = session.exec(
                    sa_delete(QueueJob).where(
                        col(QueueJob.status).in_([status.value for status in TERMINAL_STATUSES]),
                        col(QueueJob.completed_at) < db_cutoff,
                    ),
                )
                scratch = session.exec(
                    sa_delete(RunResult).where(col(RunResult.created_at) < db_cutoff),
                )
                session.commit()
        except SQLAlchemyError:
            logger.exception("Queue cleanup failed")
            return CleanupResult(cutoff=cutoff, jobs_deleted=0, run_results_deleted=0)
        outcome = CleanupResult(
            cutoff=cutoff,
            jobs_deleted=int(jobs.rowcount or 0),
            run_results_deleted=int(scratch.rowcount or 0),
        )
        logger.info(
            "Queue cleanup removed %s jobs and %s stale run results",
            outcome.jobs_deleted,
            outcome.run_results_deleted,
        )
        return outcome

    def clear_queue(self) -> int:
        """Delete every job regardless of status."""

        try:
            with Session(self.engine) as session:
                result = session.exec(sa_delete(QueueJob))
                session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to clear queue")
            return 0
        deleted = int(result.rowcount or 0)
        logger.info("Cleared %s jobs from queue", deleted)
        return deleted


def _decode_payload(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _to_job_view(row: QueueJob) -> JobView:
    return JobView(
        job_id=row.job_id or 0,
        owner_id=row.owner_id,
        job_type=row.job_type,
        payload=_decode_payload(row.payload_json),
        run_id=normalize_run_id(row.run_id),
        is_batch=bool(row.is_batch),
        status=JobStatus(row.status),
        priority=row.priority,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        error_message=row.error_message,
    )
