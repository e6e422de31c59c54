"""Score extraction and prompt builders for answer comparison."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

MIN_SCORE = 0
MAX_SCORE = 10

_STANDALONE_SCORE_RE = re.compile(r"\b(10|[0-9])\b")
_STANDALONE_NUMBER_RE = re.compile(r"\b(\d+)\b")
_LEADING_DIGITS_RE = re.compile(r"^(\d+)")
_TRAILING_DIGITS_RE = re.compile(r"(\d+)$")

COMPARISON_PROMPT_TEMPLATE = (
    "Rate how well this response matches the expected answer. "
    "Respond with ONLY a number from 0-10, nothing else.\n\n"
    "Response: {response}\n"
    "Expected: {expected}\n\n"
    "0=not mentioned, 10=perfectly mentioned\n\n"
    "Score:"
)


@dataclass(slots=True, frozen=True)
class ComparisonFailed:
    """Marker for a score that could not be measured; distinct from a score of 0."""

    reason: str


@dataclass(slots=True)
class ScoreStats:
    average: float
    minimum: int
    maximum: int


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def extract_score(text: str) -> int | ComparisonFailed:
    """Pull a 0-10 score out of free-form scoring model output."""

    cleaned = text.strip()
    match = _STANDALONE_SCORE_RE.search(cleaned)
    if match:
        return int(match.group(1))
    for pattern in (_STANDALONE_NUMBER_RE, _LEADING_DIGITS_RE, _TRAILING_DIGITS_RE):
        match = pattern.search(cleaned)
        if match:
            return clamp_score(int(match.group(1)))
    return ComparisonFailed(reason="Could not extract valid score from comparison model response")


def build_comparison_prompt(answer: str, expected_answer: str) -> str:
    return COMPARISON_PROMPT_TEMPLATE.format(response=answer, expected=expected_answer)


def score_stats(scores: Sequence[int]) -> ScoreStats | None:
    if not scores:
        return None
    return ScoreStats(
        average=round(sum(scores) / len(scores), 1),
        minimum=min(scores),
        maximum=max(scores),
    )


def build_summary_prompt(
    *,
    prompt_text: str,
    expected_answer: str,
    answers: Sequence[tuple[str, str]],
    stats: ScoreStats | None,
) -> str:
    """Narrative prompt over `(model, answer)` pairs."""

    lines = [
        "Please provide a brief comparison summary of how well the following AI model "
        "responses match the expected answer.",
        "",
        f"**Original Prompt:** {prompt_text}",
        "",
        f"**Expected Answer:** {expected_answer}",
        "",
    ]
    if stats is not None:
        lines.extend(
            [
                f"**Score Statistics:** Average: {stats.average:g}/10, "
                f"Range: {stats.minimum}-{stats.maximum}/10",
                "",
            ],
        )
    lines.append("**Model Responses:**")
    for index, (model, answer) in enumerate(answers, start=1):
        lines.extend([f"{index}. **{model or 'Unknown Model'}:** {answer}", ""])
    lines.extend(
        [
            "Please provide a concise 2-3 sentence summary focusing on:",
            "- How many responses successfully mention the expected answer "
            "(celebrate any mentions as positive results)",
            "- Overall assessment with a balanced, constructive tone",
            "- If most responses mention the expected answer, highlight this as a strong "
            "performance",
            "- If some responses don't mention it, note this neutrally without calling them "
            "'poor' or 'bad'",
            "",
            "Use an encouraging, professional tone that focuses on what worked well. "
            "Any mention of the expected answer should be considered a positive result.",
            "",
            "Keep the summary professional and informative for reports. "
            "**Important: Respond in the same language as the original prompt.**",
        ],
    )
    return "\n".join(lines)
