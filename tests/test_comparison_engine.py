from __future__ import annotations

import allure

from conftest import COMPARISON_MODEL, RecordingReporter, ScriptedProvider, provider_payload
from llm_visibility.comparison.engine import ComparisonEngine
from llm_visibility.comparison.scoring import ComparisonFailed
from llm_visibility.prompts import InMemoryPromptCatalog, PromptDefinition
from llm_visibility.queue.completion import CompletionDetector
from llm_visibility.queue.dispatcher import QueueDispatcher
from llm_visibility.queue.executor import JobExecutor, ProviderRequestHandler
from llm_visibility.queue.models import JobType
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.queue.services import ExecutePromptsCommand, QueueService
from llm_visibility.results.models import ResultWrite
from llm_visibility.results.repository import ResultRepository

pytestmark = [
    allure.epic("Comparison"),
    allure.feature("Prompt Summaries"),
]

PROMPT = PromptDefinition(
    prompt_id="p1",
    text="Which CRM should a startup use?",
    models=["openai/gpt-4o", "google/gemini-pro"],
    expected_answer="Acme Corp",
    owner_id="alice",
)


def _engine(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    provider: ScriptedProvider,
) -> ComparisonEngine:
    return ComparisonEngine(
        provider=provider,
        results=result_repository,
        queue=queue_repository,
        catalog=InMemoryPromptCatalog([PROMPT]),
    )


def _store(  # noqa: PLR0913
    result_repository: ResultRepository,
    *,
    model: str,
    answer: str = "Acme Corp is great",
    score: int | None = 8,
    failed: bool = False,
    run_id: str | None = "alice_p1",
) -> int:
    result_id = result_repository.insert_result(
        ResultWrite(
            owner_id="alice",
            prompt=PROMPT.text,
            model=model,
            answer=answer,
            expected_answer=PROMPT.expected_answer,
            comparison_score=score,
            comparison_failed=failed,
            run_id=run_id,
        ),
    )
    assert result_id is not None
    return result_id


def _check(engine: ComparisonEngine, run_id: str | None = "alice_p1") -> int | None:
    return engine.check_prompt_completion(
        prompt_id="p1",
        expected_answer=PROMPT.expected_answer,
        owner_id="alice",
        run_id=run_id,
        credential="sk-test",
    )


def test_compare_returns_score_from_scoring_model(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    provider = ScriptedProvider(score="7")
    engine = _engine(queue_repository, result_repository, provider)

    assert engine.compare("Acme", "Acme Corp", PROMPT.text, credential="sk-test") == 7
    [(credential, prompt, model)] = provider.calls
    assert credential == "sk-test"
    assert model == COMPARISON_MODEL
    assert "Expected: Acme Corp" in prompt


def test_compare_provider_error_is_comparison_failed(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    provider = ScriptedProvider(statuses={COMPARISON_MODEL: 429})
    engine = _engine(queue_repository, result_repository, provider)

    outcome = engine.compare("Acme", "Acme Corp", PROMPT.text, credential="sk-test")

    assert isinstance(outcome, ComparisonFailed)


def test_all_models_complete_uses_model_prefix_match(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    engine = _engine(queue_repository, result_repository, ScriptedProvider())
    _store(result_repository, model="openai/gpt-4o:online")

    assert engine.are_all_models_complete("p1", PROMPT.models) is False

    _store(result_repository, model="google/gemini-pro")

    assert engine.are_all_models_complete("p1", PROMPT.models) is True
    assert engine.are_all_models_complete("unknown", PROMPT.models) is False


def test_summary_waits_for_every_expected_model(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    engine = _engine(queue_repository, result_repository, ScriptedProvider())
    _store(result_repository, model="openai/gpt-4o")

    assert _check(engine) is None
    assert result_repository.list_summaries() == []


def test_summary_stats_skip_failed_comparisons(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    provider = ScriptedProvider(summary="Both models mention Acme Corp.")
    engine = _engine(queue_repository, result_repository, provider)
    _store(result_repository, model="openai/gpt-4o", score=9)
    _store(result_repository, model="google/gemini-pro", answer="No answer received", score=0)
    _store(result_repository, model="google/gemini-pro", score=None, failed=True)

    summary_id = _check(engine)

    assert summary_id is not None
    [summary] = result_repository.list_summaries(owner_id="alice")
    assert summary.summary == "Both models mention Acme Corp."
    assert summary.average_score == 9.0
    assert (summary.min_score, summary.max_score) == (9, 9)
    assert summary.total_models == 2


def test_summary_is_idempotent_until_newer_results_arrive(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    provider = ScriptedProvider()
    engine = _engine(queue_repository, result_repository, provider)
    _store(result_repository, model="openai/gpt-4o", score=6)
    _store(result_repository, model="google/gemini-pro", score=8)

    first_id = _check(engine)
    assert first_id is not None
    narrative_calls = len(provider.calls)

    assert _check(engine) is None
    assert len(provider.calls) == narrative_calls
    assert [s.id for s in result_repository.list_summaries()] == [first_id]

    _store(result_repository, model="openai/gpt-4o", score=10)
    second_id = _check(engine)

    assert second_id is not None
    [summary] = result_repository.list_summaries()
    assert summary.id == second_id
    assert summary.average_score == 9.0
    assert summary.total_models == 2


def test_summary_narrative_failure_still_stores_statistics(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    provider = ScriptedProvider(statuses={COMPARISON_MODEL: 500})
    engine = _engine(queue_repository, result_repository, provider)
    _store(result_repository, model="openai/gpt-4o", score=4)
    _store(result_repository, model="google/gemini-pro", score=6)

    assert _check(engine) is not None

    [summary] = result_repository.list_summaries()
    assert summary.summary is None
    assert summary.average_score == 5.0


def test_prompt_results_join_on_run_id(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    engine = _engine(queue_repository, result_repository, ScriptedProvider())
    _store(result_repository, model="openai/gpt-4o", run_id="run-old")
    current = _store(result_repository, model="openai/gpt-4o", run_id="run-new")

    results = engine.get_prompt_results("p1", PROMPT.models, PROMPT.expected_answer, "run-new")

    assert [result.id for result in results] == [current]


def test_prompt_results_fall_back_to_run_window_for_rows_without_run_id(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
) -> None:
    queue_repository.enqueue(
        JobType.PROVIDER_REQUEST.value,
        provider_payload(run_id="legacy-run"),
    )
    legacy = _store(result_repository, model="openai/gpt-4o", run_id=None)
    engine = _engine(queue_repository, result_repository, ScriptedProvider())

    results = engine.get_prompt_results(
        "p1",
        PROMPT.models,
        PROMPT.expected_answer,
        "legacy-run",
    )

    assert [result.id for result in results] == [legacy]


def test_repeated_single_prompt_runs_summarize_only_the_latest_answers(
    queue_repository: QueueRepository,
    result_repository: ResultRepository,
    reporter: RecordingReporter,
) -> None:
    provider = ScriptedProvider(score="7")
    catalog = InMemoryPromptCatalog([PROMPT])
    engine = ComparisonEngine(
        provider=provider,
        results=result_repository,
        queue=queue_repository,
        catalog=catalog,
    )
    service = QueueService(repository=queue_repository, catalog=catalog, default_model="stub")
    dispatcher = QueueDispatcher(
        repository=queue_repository,
        executor=JobExecutor(
            repository=queue_repository,
            handlers=[
                ProviderRequestHandler(
                    queue=queue_repository,
                    results=result_repository,
                    provider=provider,
                    comparison=engine,
                ),
            ],
        ),
        completion=CompletionDetector(repository=queue_repository, reporter=reporter),
        max_concurrent=2,
    )

    for _ in range(3):
        run = service.execute_prompts(
            ExecutePromptsCommand(owner_id="alice", api_key="sk-test", prompt_ids=("p1",)),
        )
        assert run.run_id == "alice_p1"
        assert dispatcher.dispatch().completed == 2

    assert len(result_repository.list_results(run_id="alice_p1")) == 6
    [summary] = result_repository.list_summaries(prompt_id="p1")
    assert summary.total_models == 2
    assert summary.average_score == 7.0
    assert len(reporter.notifications) == 3
