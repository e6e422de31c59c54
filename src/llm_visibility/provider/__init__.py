"""LLM provider clients."""

from __future__ import annotations

from llm_visibility.config import STUB_MODEL, Settings
from llm_visibility.provider.base import ProviderClient, ProviderResponse
from llm_visibility.provider.echo import EchoProvider
from llm_visibility.provider.openrouter import OpenRouterClient


class RoutingProvider:
    """Send the stub model to the local echo provider and everything else upstream."""

    def __init__(self, *, upstream: ProviderClient, local: ProviderClient | None = None) -> None:
        self._upstream = upstream
        self._local = local or EchoProvider()

    def call(self, credential: str, prompt: str, model: str) -> ProviderResponse:
        if model == STUB_MODEL:
            return self._local.call(credential, prompt, model)
        return self._upstream.call(credential, prompt, model)


def build_provider_client(settings: Settings) -> ProviderClient:
    """Provider client wired from settings."""

    return RoutingProvider(
        upstream=OpenRouterClient(
            base_url=settings.provider.base_url,
            timeout_seconds=settings.provider.request_timeout_seconds,
        ),
    )


__all__ = [
    "EchoProvider",
    "OpenRouterClient",
    "ProviderClient",
    "ProviderResponse",
    "RoutingProvider",
    "build_provider_client",
]
