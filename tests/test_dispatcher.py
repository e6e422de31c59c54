from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import allure
import pytest

from conftest import RecordingReporter, ScriptedProvider, provider_payload
from llm_visibility.comparison.engine import ComparisonEngine
from llm_visibility.prompts import InMemoryPromptCatalog
from llm_visibility.queue.completion import CompletionDetector
from llm_visibility.queue.dispatcher import QueueDispatcher
from llm_visibility.queue.executor import JobExecutor, ProviderRequestHandler
from llm_visibility.queue.models import JobStatus, JobType
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.results.repository import ResultRepository

pytestmark = [
    allure.epic("Prompt Queue"),
    allure.feature("Dispatch & Execution"),
]

JOB_TYPE = JobType.PROVIDER_REQUEST.value


def _dispatcher(  # noqa: PLR0913
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    provider: ScriptedProvider,
    reporter: RecordingReporter,
    *,
    max_concurrent: int = 1,
    with_comparison: bool = False,
) -> QueueDispatcher:
    comparison = None
    if with_comparison:
        comparison = ComparisonEngine(
            provider=provider,
            results=result_repository,
            queue=queue_repository,
            catalog=InMemoryPromptCatalog(),
        )
    executor = JobExecutor(
        repository=queue_repository,
        handlers=[
            ProviderRequestHandler(
                queue=queue_repository,
                results=result_repository,
                provider=provider,
                comparison=comparison,
            ),
        ],
    )
    return QueueDispatcher(
        repository=queue_repository,
        executor=executor,
        completion=CompletionDetector(repository=queue_repository, reporter=reporter),
        max_concurrent=max_concurrent,
    )


def test_batch_run_end_to_end_with_ceiling_of_one(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    provider = ScriptedProvider()
    models = ["openai/gpt-4o", "anthropic/claude-3.5-sonnet", "google/gemini-pro"]
    for model in models:
        queue_repository.enqueue(JOB_TYPE, provider_payload(model=model, is_batch=True))
    dispatcher = _dispatcher(queue_repository, result_repository, provider, reporter)

    summaries = [dispatcher.dispatch() for _ in range(3)]

    assert [summary.claimed for summary in summaries] == [1, 1, 1]
    assert [summary.completed for summary in summaries] == [1, 1, 1]
    assert [len(summary.notifications) for summary in summaries] == [0, 0, 1]
    assert len(result_repository.list_results()) == 3
    assert len(reporter.notifications) == 1
    owner_id, results, run_id = reporter.notifications[0]
    assert owner_id == "alice"
    assert run_id.startswith("alice_batch_")
    assert [result.model for result in results] == models
    assert queue_repository.list_run_results(run_id=run_id) == []
    assert {row.run_id for row in result_repository.list_results()} == {run_id}

    idle = dispatcher.dispatch()
    assert idle.claimed == 0
    assert idle.notifications == []
    assert len(reporter.notifications) == 1


def test_dispatch_respects_concurrency_ceiling(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    in_flight = queue_repository.enqueue(JOB_TYPE, provider_payload(model="a"))
    queue_repository.enqueue(JOB_TYPE, provider_payload(model="b"))
    queue_repository.claim_job(job_id=in_flight)
    provider = ScriptedProvider()

    blocked = _dispatcher(queue_repository, result_repository, provider, reporter).dispatch()

    assert blocked.processing_before == 1
    assert blocked.claimed == 0
    assert provider.calls == []

    wider = _dispatcher(
        queue_repository,
        result_repository,
        provider,
        reporter,
        max_concurrent=3,
    ).dispatch()
    assert wider.capacity == 2
    assert wider.claimed == 1


@pytest.mark.parametrize("requested, effective", [(0, 1), (-3, 1), (9, 5), (4, 4)])
def test_dispatcher_clamps_concurrency(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
    requested: int,
    effective: int,
) -> None:
    dispatcher = _dispatcher(
        queue_repository,
        result_repository,
        ScriptedProvider(),
        reporter,
        max_concurrent=requested,
    )
    assert dispatcher.max_concurrent == effective


def test_concurrent_dispatchers_execute_a_job_once(
    db_path: Path,
    queue_repository: QueueRepository,
    reporter: RecordingReporter,
) -> None:
    queue_repository.enqueue(JOB_TYPE, provider_payload(model="openai/gpt-4o"))
    provider = ScriptedProvider()
    start_event = threading.Event()

    def _run() -> None:
        queue_repo = QueueRepository(db_path)
        result_repo = ResultRepository(db_path)
        try:
            start_event.wait(timeout=5)
            _dispatcher(queue_repo, result_repo, provider, reporter).dispatch()
        finally:
            result_repo.close()
            queue_repo.close()

    threads = [threading.Thread(target=_run, daemon=True) for _ in range(4)]
    for thread in threads:
        thread.start()
    start_event.set()
    for thread in threads:
        thread.join(timeout=10)
        assert thread.is_alive() is False

    assert len(provider.calls_for("openai/gpt-4o")) == 1
    assert queue_repository.get_queue_status().completed == 1


def test_missing_credential_fails_job_without_calling_provider(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload(api_key=""))
    assert job_id is not None
    provider = ScriptedProvider()

    summary = _dispatcher(queue_repository, result_repository, provider, reporter).dispatch()

    assert summary.failed == 1
    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert "api_key" in (job.error_message or "")
    assert provider.calls == []
    assert result_repository.list_results() == []


def test_unknown_job_type_is_a_terminal_failure(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue("mystery", provider_payload())
    assert job_id is not None

    _dispatcher(queue_repository, result_repository, ScriptedProvider(), reporter).dispatch()

    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Unknown job type: mystery"


def test_provider_error_status_still_completes_job(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload(model="openai/gpt-4o"))
    assert job_id is not None
    provider = ScriptedProvider(statuses={"openai/gpt-4o": 500})

    summary = _dispatcher(queue_repository, result_repository, provider, reporter).dispatch()

    assert summary.completed == 1
    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.COMPLETED
    assert "response_time_ms" in job.payload
    [result] = result_repository.list_results()
    assert result.answer == ""
    assert len(reporter.notifications) == 1


def test_result_write_failure_fails_job(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload())
    assert job_id is not None
    monkeypatch.setattr(result_repository, "insert_result", lambda payload: None)

    _dispatcher(queue_repository, result_repository, ScriptedProvider(), reporter).dispatch()

    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.error_message == "Failed to store result in database"


def test_expected_answer_is_scored_during_execution(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    queue_repository.enqueue(JOB_TYPE, provider_payload(expected_answer="Acme Corp"))
    provider = ScriptedProvider(score="Score: 9")

    _dispatcher(
        queue_repository,
        result_repository,
        provider,
        reporter,
        with_comparison=True,
    ).dispatch()

    [result] = result_repository.list_results()
    assert result.comparison_score == 9
    assert result.comparison_failed is False
    assert result.expected_answer == "Acme Corp"


def test_unparseable_score_marks_comparison_failed_not_zero(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload(expected_answer="Acme Corp"))
    assert job_id is not None
    provider = ScriptedProvider(score="I cannot determine")

    _dispatcher(
        queue_repository,
        result_repository,
        provider,
        reporter,
        with_comparison=True,
    ).dispatch()

    [result] = result_repository.list_results()
    assert result.comparison_score is None
    assert result.comparison_failed is True
    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.COMPLETED


def test_claim_blocked_by_write_lock_is_skipped_not_raised(
    db_path: Path,
    queue_repository: QueueRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload())
    assert job_id is not None
    provider = ScriptedProvider()
    queue_repo = QueueRepository(db_path, busy_timeout_ms=1)
    result_repo = ResultRepository(db_path, busy_timeout_ms=1)
    blocker = sqlite3.connect(str(db_path), isolation_level=None)
    blocker.execute("BEGIN IMMEDIATE")
    try:
        summary = _dispatcher(queue_repo, result_repo, provider, reporter).dispatch()
    finally:
        blocker.execute("ROLLBACK")
        blocker.close()
        result_repo.close()
        queue_repo.close()

    assert (summary.claimed, summary.skipped) == (0, 1)
    assert provider.calls == []
    job = queue_repository.get_job(job_id=job_id)
    assert job is not None
    assert job.status is JobStatus.PENDING
