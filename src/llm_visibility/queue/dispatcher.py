"""Stateless dispatcher: claim a bounded number of pending jobs and run them."""

from __future__ import annotations

import logging

from llm_visibility.config import clamp_concurrency
from llm_visibility.queue.completion import CompletionDetector
from llm_visibility.queue.executor import JobExecutor
from llm_visibility.queue.models import DispatchSummary, JobStatus
from llm_visibility.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


class QueueDispatcher:
    """One dispatch cycle per `dispatch()` call; safe to run from many processes at once."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        executor: JobExecutor,
        completion: CompletionDetector | None = None,
        max_concurrent: int = 1,
    ) -> None:
        self.repository = repository
        self.executor = executor
        self.completion = completion
        self.max_concurrent = clamp_concurrency(max_concurrent)

    def dispatch(self) -> DispatchSummary:
        summary = DispatchSummary()
        summary.processing_before = self.repository.count_processing()
        if summary.processing_before >= self.max_concurrent:
            logger.debug(
                "Dispatch skipped: %s jobs processing (limit %s)",
                summary.processing_before,
                self.max_concurrent,
            )
            return summary

        summary.capacity = self.max_concurrent - summary.processing_before
        for candidate in self.repository.list_pending(limit=summary.capacity):
            job = self.repository.claim_job(job_id=candidate.job_id)
            if job is None:
                summary.skipped += 1
                continue
            summary.claimed += 1
            if self.executor.run(job) is JobStatus.COMPLETED:
                summary.completed += 1
            else:
                summary.failed += 1

        if self.completion is not None:
            summary.notifications = self.completion.check_completed_owners()
        if summary.claimed:
            logger.info(
                "Dispatch processed %s jobs (%s completed, %s failed)",
                summary.claimed,
                summary.completed,
                summary.failed,
            )
        return summary
