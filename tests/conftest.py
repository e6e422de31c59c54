"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from pathlib import Path

import pytest

from llm_visibility.provider.base import ProviderResponse
from llm_visibility.queue.models import RunResultView
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.results.repository import ResultRepository

COMPARISON_MODEL = "openai/gpt-4o-mini"


class ScriptedProvider:
    """Provider double: per-model canned answers, every call recorded."""

    def __init__(
        self,
        *,
        answers: dict[str, str] | None = None,
        statuses: dict[str, int] | None = None,
        score: str = "8",
        summary: str = "Most models mention the expected answer.",
    ) -> None:
        self.answers = answers or {}
        self.statuses = statuses or {}
        self.score = score
        self.summary = summary
        self.calls: list[tuple[str, str, str]] = []

    def call(self, credential: str, prompt: str, model: str) -> ProviderResponse:
        self.calls.append((credential, prompt, model))
        status = self.statuses.get(model, 200)
        if status >= 400:
            return ProviderResponse(
                model=model,
                answer="",
                status_code=status,
                error=f"HTTP {status}",
                response_time=0.01,
            )
        if model == COMPARISON_MODEL:
            answer = self.score if prompt.startswith("Rate how well") else self.summary
        else:
            answer = self.answers.get(model, f"{model} recommends Acme Corp.")
        return ProviderResponse(model=model, answer=answer, status_code=200, response_time=0.01)

    def calls_for(self, model: str) -> list[tuple[str, str, str]]:
        return [call for call in self.calls if call[2] == model]


class RecordingReporter:
    def __init__(self) -> None:
        self.notifications: list[tuple[str, list[RunResultView], str]] = []

    def notify(
        self,
        owner_id: str,
        results: Sequence[RunResultView],
        *,
        run_id: str = "",
    ) -> None:
        if not results:
            return
        self.notifications.append((owner_id, list(results), run_id))


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


@pytest.fixture()
def queue_repository(db_path: Path) -> Iterator[QueueRepository]:
    repository = QueueRepository(db_path)
    repository.init_schema()
    yield repository
    repository.close()


@pytest.fixture()
def result_repository(
    db_path: Path,
    queue_repository: QueueRepository,
) -> Iterator[ResultRepository]:
    repository = ResultRepository(db_path)
    yield repository
    repository.close()


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


def provider_payload(  # noqa: PLR0913
    *,
    owner_id: str = "alice",
    prompt: str = "Which CRM should a startup use?",
    model: str = "openai/gpt-4o",
    api_key: str = "sk-test",
    prompt_id: str = "p1",
    expected_answer: str = "",
    run_id: str | None = None,
    is_batch: bool = False,
) -> dict[str, object]:
    return {
        "owner_id": owner_id,
        "prompt": prompt,
        "model": model,
        "api_key": api_key,
        "prompt_id": prompt_id,
        "expected_answer": expected_answer,
        "run_id": run_id,
        "is_batch": is_batch,
    }
