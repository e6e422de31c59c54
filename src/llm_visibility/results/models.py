"""Domain models for stored provider results and prompt summaries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

NO_ANSWER = "No answer received"


@dataclass(slots=True)
class ResultWrite:
    """One provider answer to persist."""

    owner_id: str
    prompt: str
    model: str
    answer: str
    expected_answer: str | None = None
    comparison_score: int | None = None
    comparison_failed: bool = False
    run_id: str | None = None
    response_time_ms: int | None = None


@dataclass(slots=True)
class ResultView:
    """Stored provider answer."""

    id: int
    created_at: datetime
    owner_id: str
    prompt: str
    model: str
    answer: str
    expected_answer: str | None
    comparison_score: int | None
    comparison_failed: bool
    run_id: str | None
    response_time_ms: int | None

    @property
    def has_valid_answer(self) -> bool:
        return is_valid_answer(self.answer)


@dataclass(slots=True)
class PromptSummaryWrite:
    prompt_id: str
    prompt_text: str
    expected_answer: str
    owner_id: str
    summary: str | None
    average_score: float | None
    min_score: int | None
    max_score: int | None
    total_models: int


@dataclass(slots=True)
class PromptSummaryView:
    """Cross-model narrative summary for one prompt and expected answer."""

    id: int
    prompt_id: str
    prompt_text: str
    expected_answer: str
    owner_id: str
    summary: str | None
    average_score: float | None
    min_score: int | None
    max_score: int | None
    total_models: int
    completed_at: datetime


def is_valid_answer(answer: str | None) -> bool:
    """Answer counts for summaries when non-empty and not the placeholder for no answer."""

    text = (answer or "").strip()
    return bool(text) and text != NO_ANSWER
