"""Deterministic local provider used for the stub model and tests."""

from __future__ import annotations

import re
import time

from llm_visibility.provider.base import ProviderResponse

_TAG_RE = re.compile(r"<[^>]+>")


class EchoProvider:
    """Answers every prompt with a repeatable stub response, without network access."""

    def call(self, credential: str, prompt: str, model: str) -> ProviderResponse:
        started = time.monotonic()
        answer = f'Stub response for prompt: "{_TAG_RE.sub("", prompt).strip()}"'
        return ProviderResponse(
            model=model,
            answer=answer,
            status_code=200,
            response_time=time.monotonic() - started,
        )
