"""OpenRouter chat-completions client."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from llm_visibility.provider.base import ProviderResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_USER_AGENT = "llm-visibility-monitor/1.0"


class OpenRouterClient:
    """Synchronous OpenRouter client; every failure is folded into a `ProviderResponse`."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            transport=transport or httpx.HTTPTransport(),
        )

    def call(self, credential: str, prompt: str, model: str) -> ProviderResponse:
        """POST one user message to `/chat/completions`."""

        started = time.monotonic()
        try:
            response = self._client.post(
                "/chat/completions",
                headers={"Authorization": f"Bearer {credential}"},
                json={"model": model, "messages": [{"role": "user", "content": prompt}]},
            )
        except httpx.TimeoutException:
            logger.warning("Timeout calling model %s", model)
            return ProviderResponse(
                model=model,
                answer="",
                status_code=0,
                error="timeout",
                response_time=time.monotonic() - started,
            )
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling model %s: %s", model, exc)
            return ProviderResponse(
                model=model,
                answer="",
                status_code=0,
                error=str(exc),
                response_time=time.monotonic() - started,
            )
        elapsed = time.monotonic() - started

        body = _json_body(response)
        if not response.is_success:
            return ProviderResponse(
                model=model,
                answer="",
                status_code=response.status_code,
                error=_error_message(body) or f"HTTP {response.status_code}",
                response_time=elapsed,
            )
        return ProviderResponse(
            model=str(body.get("model") or model),
            answer=_first_choice_text(body),
            status_code=response.status_code,
            response_time=elapsed,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> OpenRouterClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _error_message(body: dict[str, Any]) -> str | None:
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else None
    if isinstance(error, str) and error:
        return error
    return None


def _first_choice_text(body: dict[str, Any]) -> str:
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if isinstance(message, dict):
        return str(message.get("content") or "").strip()
    return str(first.get("text") or "").strip()
