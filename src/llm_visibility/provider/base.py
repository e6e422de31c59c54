"""Provider interface for LLM chat completion calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class ProviderResponse:
    """Outcome of one provider call; non-success statuses are returned, not raised."""

    model: str
    answer: str
    status_code: int
    error: str | None = None
    response_time: float = 0.0

    @property
    def is_success(self) -> bool:
        return self.error is None and 0 < self.status_code < 400


class ProviderClient(Protocol):
    """Protocol implemented by provider clients."""

    def call(self, credential: str, prompt: str, model: str) -> ProviderResponse:
        """Send one prompt to one model and return the answer."""
