"""Answer scoring and prompt summaries."""

from llm_visibility.comparison.engine import ComparisonEngine
from llm_visibility.comparison.scoring import ComparisonFailed, extract_score

__all__ = ["ComparisonEngine", "ComparisonFailed", "extract_score"]
