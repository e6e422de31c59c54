"""Comparison engine: per-answer scoring and cross-model prompt summaries."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta

from llm_visibility.comparison.scoring import (
    ComparisonFailed,
    build_comparison_prompt,
    build_summary_prompt,
    extract_score,
    score_stats,
)
from llm_visibility.prompts import PromptCatalog
from llm_visibility.provider.base import ProviderClient
from llm_visibility.queue.repository import QueueRepository
from llm_visibility.results.models import PromptSummaryWrite, ResultView, is_valid_answer
from llm_visibility.results.repository import ResultRepository

logger = logging.getLogger(__name__)

DEFAULT_COMPARISON_MODEL = "openai/gpt-4o-mini"
LEGACY_RUN_WINDOW = timedelta(minutes=5)


class ComparisonEngine:
    """Score answers against expected answers and summarize finished prompts."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        provider: ProviderClient,
        results: ResultRepository,
        queue: QueueRepository,
        catalog: PromptCatalog,
        comparison_model: str = DEFAULT_COMPARISON_MODEL,
    ) -> None:
        self.provider = provider
        self.results = results
        self.queue = queue
        self.catalog = catalog
        self.comparison_model = comparison_model

    def compare(
        self,
        answer: str,
        expected_answer: str,
        original_prompt: str,
        *,
        credential: str,
    ) -> int | ComparisonFailed:
        """Score one answer 0-10 with the scoring model, or return `ComparisonFailed`."""

        if not self.comparison_model:
            return ComparisonFailed(reason="No comparison model configured")
        if not expected_answer.strip():
            return ComparisonFailed(reason="No expected answer provided")

        text = self._ask(credential, build_comparison_prompt(answer, expected_answer))
        if text is None:
            return ComparisonFailed(reason="Comparison model call failed")
        score = extract_score(text)
        if isinstance(score, ComparisonFailed):
            logger.warning(
                "Could not extract score from %s output %r (prompt: %.50s)",
                self.comparison_model,
                text,
                original_prompt,
            )
        return score

    def are_all_models_complete(self, prompt_id: str, expected_models: Sequence[str]) -> bool:
        """True when every expected model has at least one stored result for the prompt."""

        prompt = self.catalog.get(prompt_id)
        if prompt is None or not prompt.text.strip() or not expected_models:
            return False
        stored = self.results.completed_models(
            prompt_text=prompt.text,
            model_prefixes=expected_models,
        )
        return all(
            any(model.startswith(expected) for model in stored) for expected in expected_models
        )

    def get_prompt_results(
        self,
        prompt_id: str,
        expected_models: Sequence[str],
        expected_answer: str = "",
        run_id: str | None = None,
    ) -> list[ResultView]:
        """Newest result per expected model, limited to one run when a run id is given.

        Single-prompt run ids repeat across executions, so only the latest answer
        of each model describes the current comparison.
        """

        prompt = self.catalog.get(prompt_id)
        if prompt is None or not prompt.text.strip():
            return []
        if not run_id:
            rows = self.results.find_prompt_results(
                prompt_text=prompt.text,
                model_prefixes=expected_models,
                expected_answer=expected_answer,
            )
            return _latest_per_model(rows, expected_models)

        exact = self.results.find_prompt_results(
            prompt_text=prompt.text,
            model_prefixes=expected_models,
            expected_answer=expected_answer,
            run_id=run_id,
        )
        if exact:
            return _latest_per_model(exact, expected_models)

        # Rows written before results carried a run id are matched by creation window.
        started_at = self.queue.earliest_job_created_at(run_id=run_id)
        rows = self.results.find_prompt_results(
            prompt_text=prompt.text,
            model_prefixes=expected_models,
            expected_answer=expected_answer,
            window=(started_at, started_at + LEGACY_RUN_WINDOW) if started_at else None,
        )
        return _latest_per_model(rows, expected_models)

    def generate_prompt_summary(
        self,
        *,
        prompt_id: str,
        prompt_text: str,
        expected_answer: str,
        owner_id: str,
        results: Sequence[ResultView],
        credential: str,
    ) -> PromptSummaryWrite | None:
        """Aggregate scores and ask the scoring model for a short narrative."""

        valid = [result for result in results if is_valid_answer(result.answer)]
        if not valid or not expected_answer:
            return None
        scores = [
            result.comparison_score
            for result in valid
            if result.comparison_score is not None and not result.comparison_failed
        ]
        stats = score_stats(scores)
        narrative = self._ask(
            credential,
            build_summary_prompt(
                prompt_text=prompt_text,
                expected_answer=expected_answer,
                answers=[(result.model, result.answer) for result in valid],
                stats=stats,
            ),
        )
        if narrative is None:
            logger.warning("Summary narrative generation failed for prompt %s", prompt_id)
        return PromptSummaryWrite(
            prompt_id=prompt_id,
            prompt_text=prompt_text,
            expected_answer=expected_answer,
            owner_id=owner_id,
            summary=narrative,
            average_score=stats.average if stats else None,
            min_score=stats.minimum if stats else None,
            max_score=stats.maximum if stats else None,
            total_models=len(valid),
        )

    def check_prompt_completion(  # noqa: PLR0911
        self,
        *,
        prompt_id: str,
        expected_answer: str,
        owner_id: str,
        run_id: str | None,
        credential: str,
    ) -> int | None:
        """Store a summary once all expected models answered; returns the summary id."""

        if not prompt_id or not expected_answer or not owner_id:
            return None
        prompt = self.catalog.get(prompt_id)
        if prompt is None:
            logger.info("Prompt %s not in catalog, skipping summary", prompt_id)
            return None
        if not prompt.models:
            logger.info("Prompt %s has no expected models, skipping summary", prompt_id)
            return None
        if not self.are_all_models_complete(prompt_id, prompt.models):
            logger.debug("Prompt %s still waiting for models %s", prompt_id, prompt.models)
            return None

        summarized_at = self.results.latest_summary_completed_at(
            prompt_id=prompt_id,
            prompt_text=prompt.text,
            expected_answer=expected_answer,
        )
        if summarized_at is not None:
            if not self.results.has_results_newer_than(
                prompt_text=prompt.text,
                expected_answer=expected_answer,
                since=summarized_at,
            ):
                logger.debug("Summary for prompt %s is up to date", prompt_id)
                return None
            logger.info("Newer results for prompt %s, regenerating summary", prompt_id)

        results = self.get_prompt_results(prompt_id, prompt.models, expected_answer, run_id)
        summary = self.generate_prompt_summary(
            prompt_id=prompt_id,
            prompt_text=prompt.text,
            expected_answer=expected_answer,
            owner_id=owner_id,
            results=results,
            credential=credential,
        )
        if summary is None:
            logger.info("No valid answers for prompt %s, skipping summary", prompt_id)
            return None

        if summarized_at is not None:
            self.results.delete_prompt_summaries(
                prompt_id=prompt_id,
                prompt_text=prompt.text,
                expected_answer=expected_answer,
            )
        summary_id = self.results.insert_prompt_summary(summary)
        if summary_id is not None:
            logger.info(
                "Stored summary %s for prompt %s (average %s)",
                summary_id,
                prompt_id,
                summary.average_score,
            )
        return summary_id

    def _ask(self, credential: str, prompt: str) -> str | None:
        response = self.provider.call(credential, prompt, self.comparison_model)
        answer = response.answer.strip()
        if response.status_code >= 400 or response.error or not answer:
            logger.warning(
                "Comparison model %s call failed: status=%s error=%s",
                self.comparison_model,
                response.status_code,
                response.error,
            )
            return None
        return answer


def _latest_per_model(
    rows: Sequence[ResultView],
    expected_models: Sequence[str],
) -> list[ResultView]:
    # rows arrive newest first
    picked: dict[int, ResultView] = {}
    for expected in expected_models:
        for row in rows:
            if row.model.startswith(expected):
                picked.setdefault(row.id, row)
                break
    return list(picked.values())
