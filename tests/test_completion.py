from __future__ import annotations

import allure
from sqlalchemy import update as sa_update
from sqlmodel import Session, col

from conftest import RecordingReporter, provider_payload
from llm_visibility.queue.completion import CompletionDetector
from llm_visibility.queue.models import JobType, RunResultWrite
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.results.models import ResultWrite
from llm_visibility.results.repository import ResultRepository
from llm_visibility.storage.sqlmodel_models import QueueJob

pytestmark = [
    allure.epic("Prompt Queue"),
    allure.feature("Completion Detection"),
]

JOB_TYPE = JobType.PROVIDER_REQUEST.value


def _finish_with_result(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    job_id: int,
) -> None:
    job = queue_repository.claim_job(job_id=job_id)
    assert job is not None
    result_id = result_repository.insert_result(
        ResultWrite(
            owner_id=job.owner_id,
            prompt=str(job.payload["prompt"]),
            model=str(job.payload["model"]),
            answer="answer",
            run_id=job.run_id,
        ),
    )
    assert result_id is not None
    queue_repository.add_run_result(
        RunResultWrite(
            owner_id=job.owner_id,
            run_id=job.run_id,
            result_id=result_id,
            prompt=str(job.payload["prompt"]),
            model=str(job.payload["model"]),
            answer="answer",
        ),
    )
    queue_repository.complete_job(job_id=job_id)


def test_owner_with_outstanding_jobs_is_not_notified(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    first = queue_repository.enqueue(JOB_TYPE, provider_payload(model="a", is_batch=True))
    queue_repository.enqueue(JOB_TYPE, provider_payload(model="b", is_batch=True))
    assert first is not None
    _finish_with_result(queue_repository, result_repository, first)
    detector = CompletionDetector(repository=queue_repository, reporter=reporter)

    assert detector.check_completed_owners() == []
    assert reporter.notifications == []


def test_completion_fires_once_and_repeat_check_is_noop(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_ids = [
        queue_repository.enqueue(JOB_TYPE, provider_payload(model=model, is_batch=True))
        for model in ("a", "b")
    ]
    for job_id in job_ids:
        assert job_id is not None
        _finish_with_result(queue_repository, result_repository, job_id)
    detector = CompletionDetector(repository=queue_repository, reporter=reporter)

    [notification] = detector.check_completed_owners()

    assert notification.owner_id == "alice"
    assert notification.results_count == 2
    assert [r.model for r in reporter.notifications[0][1]] == ["a", "b"]
    assert detector.check_completed_owners() == []
    assert len(reporter.notifications) == 1


def test_owners_are_detected_independently(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    alice = queue_repository.enqueue(JOB_TYPE, provider_payload(owner_id="alice", is_batch=True))
    bob_done = queue_repository.enqueue(JOB_TYPE, provider_payload(owner_id="bob", is_batch=True))
    queue_repository.enqueue(JOB_TYPE, provider_payload(owner_id="bob", model="x", is_batch=True))
    assert alice is not None and bob_done is not None
    _finish_with_result(queue_repository, result_repository, alice)
    _finish_with_result(queue_repository, result_repository, bob_done)
    detector = CompletionDetector(repository=queue_repository, reporter=reporter)

    notifications = detector.check_completed_owners()

    assert [n.owner_id for n in notifications] == ["alice"]


def test_run_id_of_latest_completed_job_is_used_and_quotes_stripped(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload(run_id="run-7"))
    assert job_id is not None
    _finish_with_result(queue_repository, result_repository, job_id)
    with Session(queue_repository.engine) as session:
        session.exec(
            sa_update(QueueJob).where(col(QueueJob.job_id) == job_id).values(run_id='"run-7"'),
        )
        session.commit()
    detector = CompletionDetector(repository=queue_repository, reporter=reporter)

    [notification] = detector.check_completed_owners()

    assert notification.run_id == "run-7"
    assert queue_repository.list_run_results(run_id="run-7") == []


def test_owner_with_only_failed_jobs_is_ignored(
    queue_repository: QueueRepository,
    reporter: RecordingReporter,
) -> None:
    job_id = queue_repository.enqueue(JOB_TYPE, provider_payload())
    assert job_id is not None
    queue_repository.claim_job(job_id=job_id)
    queue_repository.fail_job(job_id=job_id, error_message="boom")
    detector = CompletionDetector(repository=queue_repository, reporter=reporter)

    assert detector.check_completed_owners() == []
    assert reporter.notifications == []
