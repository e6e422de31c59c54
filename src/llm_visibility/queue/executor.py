"""Job execution strategies keyed by job type."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from llm_visibility.comparison.engine import ComparisonEngine
from llm_visibility.comparison.scoring import ComparisonFailed
from llm_visibility.provider.base import ProviderClient
from llm_visibility.queue.models import (
    JobStatus,
    JobType,
    JobView,
    ProviderRequestPayload,
    ResultWriteError,
    RunResultWrite,
    UnknownJobTypeError,
)
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.results.models import ResultWrite
from llm_visibility.results.repository import ResultRepository

logger = logging.getLogger(__name__)


class JobHandler(Protocol):
    """One job variant: owns its payload schema and execution."""

    job_type: JobType

    def parse_payload(self, raw: Mapping[str, Any]) -> Any:
        """Decode the stored payload, raising `JobPayloadError` when it is unusable."""

    def execute(self, job: JobView, payload: Any) -> None:
        """Do the work; any exception fails the job."""

    def on_completed(self, job: JobView, payload: Any) -> None:
        """Follow-up that runs after the job is marked completed."""


class ProviderRequestHandler:
    """Send one prompt to one model, score it, and persist the result."""

    job_type = JobType.PROVIDER_REQUEST

    def __init__(
        self,
        *,
        queue: QueueRepository,
        results: ResultRepository,
        provider: ProviderClient,
        comparison: ComparisonEngine | None = None,
    ) -> None:
        self.queue = queue
        self.results = results
        self.provider = provider
        self.comparison = comparison

    def parse_payload(self, raw: Mapping[str, Any]) -> ProviderRequestPayload:
        return ProviderRequestPayload.from_dict(raw)

    def execute(self, job: JobView, payload: ProviderRequestPayload) -> None:
        started = time.monotonic()
        response = self.provider.call(payload.api_key, payload.prompt, payload.model)
        api_call_ms = round((time.monotonic() - started) * 1000)
        response_time_ms = (
            round(response.response_time * 1000) if response.response_time else api_call_ms
        )

        score: int | None = None
        comparison_failed = False
        if payload.expected_answer and response.answer and self.comparison is not None:
            outcome = self.comparison.compare(
                response.answer,
                payload.expected_answer,
                payload.prompt,
                credential=payload.api_key,
            )
            if isinstance(outcome, ComparisonFailed):
                comparison_failed = True
                logger.warning("Comparison failed for job %s: %s", job.job_id, outcome.reason)
            else:
                score = outcome

        owner_id = payload.owner_id or job.owner_id
        run_id = payload.run_id or job.run_id
        result_id = self.results.insert_result(
            ResultWrite(
                owner_id=owner_id,
                prompt=payload.prompt,
                model=response.model or payload.model,
                answer=response.answer,
                expected_answer=payload.expected_answer or None,
                comparison_score=score,
                comparison_failed=comparison_failed,
                run_id=run_id,
                response_time_ms=response_time_ms,
            ),
        )
        if result_id is None:
            raise ResultWriteError("Failed to store result in database")

        self.queue.add_run_result(
            RunResultWrite(
                owner_id=owner_id,
                run_id=run_id,
                result_id=result_id,
                prompt=payload.prompt,
                model=response.model or payload.model,
                answer=response.answer,
            ),
        )
        stored_payload = payload.to_dict()
        stored_payload["response_time_ms"] = response_time_ms
        stored_payload["api_call_time_ms"] = api_call_ms
        self.queue.update_job_payload(job_id=job.job_id, payload=stored_payload)

        if response.status_code >= 400 or response.error:
            logger.warning(
                "Provider error for job %s (model %s): status=%s error=%s",
                job.job_id,
                payload.model,
                response.status_code,
                response.error,
            )
        logger.info(
            "Job %s stored result %s for model %s in %s ms",
            job.job_id,
            result_id,
            response.model or payload.model,
            response_time_ms,
        )

    def on_completed(self, job: JobView, payload: ProviderRequestPayload) -> None:
        if self.comparison is None:
            return
        self.comparison.check_prompt_completion(
            prompt_id=payload.prompt_id,
            expected_answer=payload.expected_answer,
            owner_id=payload.owner_id or job.owner_id,
            run_id=payload.run_id or job.run_id,
            credential=payload.api_key,
        )


class JobExecutor:
    """Run claimed jobs through the handler registered for their type."""

    def __init__(self, *, repository: QueueRepository, handlers: Iterable[JobHandler]) -> None:
        self.repository = repository
        self.handlers: dict[str, JobHandler] = {
            JobType(handler.job_type).value: handler for handler in handlers
        }

    def run(self, job: JobView) -> JobStatus:
        """Execute one processing job and record its terminal status."""

        handler = self.handlers.get(job.job_type)
        try:
            if handler is None:
                raise UnknownJobTypeError(f"Unknown job type: {job.job_type}")
            payload = handler.parse_payload(job.payload)
            handler.execute(job, payload)
        except Exception as error:  # noqa: BLE001
            self.repository.fail_job(job_id=job.job_id, error_message=str(error))
            logger.warning("Job %s failed: %s", job.job_id, error)
            return JobStatus.FAILED

        self.repository.complete_job(job_id=job.job_id)
        logger.info("Job %s completed", job.job_id)
        try:
            handler.on_completed(job, payload)
        except Exception:
            logger.exception("Post-completion step failed for job %s", job.job_id)
        return JobStatus.COMPLETED
