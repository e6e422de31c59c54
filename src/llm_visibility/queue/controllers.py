"""Controllers for queue CLI commands."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from llm_visibility.comparison.engine import ComparisonEngine
from llm_visibility.config import Settings
from llm_visibility.prompts import PromptCatalog, load_prompt_catalog
from llm_visibility.provider import build_provider_client
from llm_visibility.provider.base import ProviderClient
from llm_visibility.queue.completion import CompletionDetector
from llm_visibility.queue.dispatcher import QueueDispatcher
from llm_visibility.queue.executor import JobExecutor, ProviderRequestHandler
from llm_visibility.queue.models import DispatchSummary, JobStatus
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.queue.services import (
    EnqueueProviderRequest,
    ExecutePromptsCommand,
    QueueService,
)
from llm_visibility.reporting import RunReporter, build_run_reporter
from llm_visibility.results.repository import ResultRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueEnqueueCommand:
    """CLI input for one ad-hoc provider request."""

    db_path: Path | None
    owner_id: str
    prompt: str
    model: str | None
    prompt_id: str
    expected_answer: str
    run_id: str | None
    is_batch: bool
    priority: int
    dispatch: bool = False


@dataclass(slots=True)
class QueueRunPromptsCommand:
    """CLI input for sending catalog prompts as one run."""

    db_path: Path | None
    owner_id: str
    prompt_ids: tuple[str, ...]
    priority: int
    dispatch: bool = False


@dataclass(slots=True)
class QueueDispatchCommand:
    """CLI input for one dispatch cycle or the fixed-interval loop."""

    db_path: Path | None
    loop: bool = False
    max_cycles: int | None = None
    interval_seconds: float | None = None


@dataclass(slots=True)
class QueueDbCommand:
    """CLI input for commands that only need the database."""

    db_path: Path | None


@dataclass(slots=True)
class QueueListJobsCommand:
    db_path: Path | None
    owner_id: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class QueueCleanupCommand:
    db_path: Path | None
    retention_days: int | None = None


@dataclass(slots=True)
class ResultsListCommand:
    db_path: Path | None
    owner_id: str | None
    run_id: str | None
    limit: int


@dataclass(slots=True)
class ResultsDeleteCommand:
    db_path: Path | None
    result_ids: tuple[int, ...]


@dataclass(slots=True)
class SummariesListCommand:
    db_path: Path | None
    owner_id: str | None
    prompt_id: str | None
    limit: int


class QueueCliController:
    """Coordinates enqueue, dispatch, and inspection CLI operations."""

    def __init__(
        self,
        *,
        provider: ProviderClient | None = None,
        reporter: RunReporter | None = None,
        catalog: PromptCatalog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._reporter = reporter
        self._catalog = catalog
        self._sleep = sleep

    def enqueue(self, command: QueueEnqueueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            service = QueueService(
                repository=repository,
                catalog=self._prompt_catalog(settings),
                default_model=settings.provider.default_model,
            )
            job_id = service.enqueue_request(
                EnqueueProviderRequest(
                    owner_id=command.owner_id,
                    prompt=command.prompt,
                    model=command.model or settings.provider.default_model,
                    api_key=settings.credential,
                    prompt_id=command.prompt_id,
                    expected_answer=command.expected_answer,
                    run_id=command.run_id,
                    is_batch=command.is_batch,
                    priority=command.priority,
                ),
            )
            if job_id is None:
                return ["Job was not enqueued; see log for the storage error."]
            job = repository.get_job(job_id=job_id)
            lines = [
                f"Job enqueued: job_id={job_id} run_id={job.run_id if job else '-'} "
                f"status={JobStatus.PENDING.value}",
            ]
            if command.dispatch:
                lines.extend(self._dispatch_once(settings, repository))
        return lines

    def run_prompts(self, command: QueueRunPromptsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            service = QueueService(
                repository=repository,
                catalog=self._prompt_catalog(settings),
                default_model=settings.provider.default_model,
            )
            run = service.execute_prompts(
                ExecutePromptsCommand(
                    owner_id=command.owner_id,
                    api_key=settings.credential,
                    prompt_ids=command.prompt_ids,
                    priority=command.priority,
                ),
            )
            lines = [
                f"Run queued: run_id={run.run_id or '-'} jobs={len(run.job_ids)} "
                f"failed={run.failed}",
            ]
            if command.dispatch:
                lines.extend(self._dispatch_once(settings, repository))
        return lines

    def dispatch(self, command: QueueDispatchCommand) -> list[str]:
        settings = _settings(command.db_path)
        interval = command.interval_seconds or settings.queue.dispatch_interval_seconds
        lines: list[str] = []
        with _repository(settings) as repository:
            if not command.loop:
                return self._dispatch_once(settings, repository)
            cycles = 0
            try:
                while command.max_cycles is None or cycles < command.max_cycles:
                    if cycles:
                        self._sleep(interval)
                    cycle_lines = self._dispatch_once(settings, repository)
                    logger.info("Dispatch cycle %s: %s", cycles + 1, cycle_lines[0])
                    lines.extend(cycle_lines)
                    cycles += 1
            except KeyboardInterrupt:
                logger.info("Dispatch loop interrupted after %s cycles", cycles)
        lines.append(f"Dispatch cycles: {cycles}")
        return lines

    def status(self, command: QueueDbCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            counts = repository.get_queue_status()
        return [
            "Queue status: "
            f"pending={counts.pending} processing={counts.processing} "
            f"completed={counts.completed} failed={counts.failed} total={counts.total}",
        ]

    def list_jobs(self, command: QueueListJobsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                owner_id=command.owner_id,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} owner={job.owner_id} type={job.job_type} "
                f"status={job.status.value} priority={job.priority} run_id={job.run_id} "
                f"model={job.payload.get('model', '-')} created_at={job.created_at.isoformat()}"
                + (f" error={job.error_message}" if job.error_message else ""),
            )
        return lines

    def cleanup(self, command: QueueCleanupCommand) -> list[str]:
        settings = _settings(command.db_path)
        retention_days = command.retention_days or settings.queue.retention_days
        if retention_days <= 0:
            raise ValueError("Retention days must be > 0.")
        with _repository(settings) as repository:
            outcome = repository.cleanup_old_jobs(retention_days=retention_days)
        return [
            f"Cleanup: jobs_deleted={outcome.jobs_deleted} "
            f"run_results_deleted={outcome.run_results_deleted} "
            f"cutoff={outcome.cutoff.isoformat()}",
        ]

    def clear(self, command: QueueDbCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            deleted = repository.clear_queue()
        return [f"Queue cleared: jobs_deleted={deleted}"]

    def list_results(self, command: ResultsListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _result_repository(settings) as results:
            rows = results.list_results(
                owner_id=command.owner_id,
                run_id=command.run_id,
                limit=command.limit,
            )

        lines = [f"Results: {len(rows)}"]
        for row in rows:
            score = "-" if row.comparison_score is None else str(row.comparison_score)
            if row.comparison_failed:
                score = "failed"
            lines.append(
                f"  {row.id} owner={row.owner_id} model={row.model} score={score} "
                f"run_id={row.run_id or '-'} created_at={row.created_at.isoformat()} "
                f"answer={row.answer[:60]!r}",
            )
        return lines

    def delete_results(self, command: ResultsDeleteCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _result_repository(settings) as results:
            deleted = results.delete_results(result_ids=command.result_ids)
        return [f"Results deleted: {deleted}"]

    def list_summaries(self, command: SummariesListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _result_repository(settings) as results:
            summaries = results.list_summaries(
                owner_id=command.owner_id,
                prompt_id=command.prompt_id,
                limit=command.limit,
            )

        lines = [f"Summaries: {len(summaries)}"]
        for summary in summaries:
            average = "-" if summary.average_score is None else f"{summary.average_score:g}"
            lines.append(
                f"  {summary.id} prompt_id={summary.prompt_id} owner={summary.owner_id} "
                f"models={summary.total_models} average={average} "
                f"range={summary.min_score if summary.min_score is not None else '-'}-"
                f"{summary.max_score if summary.max_score is not None else '-'} "
                f"completed_at={summary.completed_at.isoformat()}",
            )
            if summary.summary:
                lines.append(f"    {summary.summary}")
        return lines

    def _dispatch_once(self, settings: Settings, repository: QueueRepository) -> list[str]:
        with _result_repository(settings, migrate=False) as results:
            dispatcher = self._build_dispatcher(settings, repository, results)
            summary = dispatcher.dispatch()
        return _render_dispatch_summary(summary)

    def _build_dispatcher(
        self,
        settings: Settings,
        repository: QueueRepository,
        results: ResultRepository,
    ) -> QueueDispatcher:
        provider = self._provider or build_provider_client(settings)
        comparison = ComparisonEngine(
            provider=provider,
            results=results,
            queue=repository,
            catalog=self._prompt_catalog(settings),
            comparison_model=settings.comparison.model,
        )
        executor = JobExecutor(
            repository=repository,
            handlers=[
                ProviderRequestHandler(
                    queue=repository,
                    results=results,
                    provider=provider,
                    comparison=comparison,
                ),
            ],
        )
        return QueueDispatcher(
            repository=repository,
            executor=executor,
            completion=CompletionDetector(
                repository=repository,
                reporter=self._reporter or build_run_reporter(settings.reports_dir),
            ),
            max_concurrent=settings.queue.effective_concurrency,
        )

    def _prompt_catalog(self, settings: Settings) -> PromptCatalog:
        if self._catalog is not None:
            return self._catalog
        return load_prompt_catalog(settings.prompts_path)


def _render_dispatch_summary(summary: DispatchSummary) -> list[str]:
    lines = [
        "Dispatch summary: "
        f"processing_before={summary.processing_before} capacity={summary.capacity} "
        f"claimed={summary.claimed} skipped={summary.skipped} "
        f"completed={summary.completed} failed={summary.failed}",
    ]
    for notification in summary.notifications:
        lines.append(
            f"  run completed: owner={notification.owner_id} run_id={notification.run_id} "
            f"results={notification.results_count}",
        )
    return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[QueueRepository]:
    repository = QueueRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _result_repository(settings: Settings, *, migrate: bool = True) -> Iterator[ResultRepository]:
    repository = ResultRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    if migrate:
        repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
