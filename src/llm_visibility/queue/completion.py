"""Completion detection: notice owners whose queued work has drained."""

from __future__ import annotations

import logging

from llm_visibility.queue.models import (
    ACTIVE_STATUSES,
    JobStatus,
    RunNotification,
    normalize_run_id,
)
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.reporting import RunReporter

logger = logging.getLogger(__name__)


class CompletionDetector:
    """Hand finished runs to the reporter and clear their scratch rows.

    Detection is owner-scoped: an owner is done when none of their jobs is
    pending or processing. The run reported is the one of the most recently
    completed job, so scratch rows are consumed at most once.
    """

    def __init__(self, *, repository: QueueRepository, reporter: RunReporter) -> None:
        self.repository = repository
        self.reporter = reporter

    def check_completed_owners(self) -> list[RunNotification]:
        notifications: list[RunNotification] = []
        owners = self.repository.list_owners(
            statuses=(JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED),
        )
        for owner_id in owners:
            notification = self._check_owner(owner_id)
            if notification is not None:
                notifications.append(notification)
        return notifications

    def _check_owner(self, owner_id: str) -> RunNotification | None:
        outstanding = self.repository.count_jobs(statuses=ACTIVE_STATUSES, owner_id=owner_id)
        if outstanding:
            return None
        latest = self.repository.latest_completed_job(owner_id=owner_id)
        if latest is None:
            return None
        run_id = normalize_run_id(latest.run_id or latest.payload.get("run_id"))
        if not run_id:
            return None

        results = self.repository.list_run_results(run_id=run_id)
        if not results:
            return None
        self.reporter.notify(owner_id, results, run_id=run_id)
        deleted = self.repository.delete_run_results(run_id=run_id)
        logger.info(
            "Run %s for owner %s reported %s results (%s scratch rows cleared)",
            run_id,
            owner_id,
            len(results),
            deleted,
        )
        return RunNotification(owner_id=owner_id, run_id=run_id, results_count=len(results))
