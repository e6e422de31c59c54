"""Runtime configuration for the prompt queue, provider and comparison engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

STUB_MODEL = "openrouter/stub-model-v1"
# Jobs require a credential; the stub model accepts any non-empty value.
STUB_CREDENTIAL = "stub"
MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 5


@dataclass(slots=True)
class QueueSettings:
    """Dispatcher and retention settings."""

    max_concurrent: int = 1
    retention_days: int = 7
    dispatch_interval_seconds: float = 60.0

    @property
    def effective_concurrency(self) -> int:
        return clamp_concurrency(self.max_concurrent)


@dataclass(slots=True)
class ProviderSettings:
    """External LLM provider settings."""

    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = STUB_MODEL
    request_timeout_seconds: float = 120.0


@dataclass(slots=True)
class ComparisonSettings:
    """Secondary scoring / summary model settings."""

    model: str = "openai/gpt-4o-mini"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".llm_visibility.db")
    sqlite_busy_timeout_ms: int = 5000
    prompts_path: Path | None = None
    reports_dir: Path | None = None
    queue: QueueSettings = field(default_factory=QueueSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    comparison: ComparisonSettings = field(default_factory=ComparisonSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("LLMVM_DB_PATH", ".llm_visibility.db")),
            sqlite_busy_timeout_ms=int(os.getenv("LLMVM_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            prompts_path=_env_path("LLMVM_PROMPTS_PATH"),
            reports_dir=_env_path("LLMVM_REPORTS_DIR"),
            queue=QueueSettings(
                max_concurrent=int(os.getenv("LLMVM_QUEUE_CONCURRENCY", "1")),
                retention_days=int(os.getenv("LLMVM_QUEUE_RETENTION_DAYS", "7")),
                dispatch_interval_seconds=float(
                    os.getenv("LLMVM_QUEUE_DISPATCH_INTERVAL_SECONDS", "60"),
                ),
            ),
            provider=ProviderSettings(
                api_key=os.getenv("LLMVM_OPENROUTER_API_KEY", "").strip(),
                base_url=os.getenv("LLMVM_OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"),
                default_model=os.getenv("LLMVM_DEFAULT_MODEL", STUB_MODEL).strip() or STUB_MODEL,
                request_timeout_seconds=float(
                    os.getenv("LLMVM_PROVIDER_TIMEOUT_SECONDS", "120"),
                ),
            ),
            comparison=ComparisonSettings(
                model=os.getenv("LLMVM_COMPARISON_MODEL", "openai/gpt-4o-mini").strip(),
            ),
        )

    @property
    def credential(self) -> str:
        return self.provider.api_key or STUB_CREDENTIAL

    def validate(self) -> None:
        """Raise configuration error for values the queue cannot run with."""

        if self.queue.retention_days <= 0:
            raise ValueError("LLMVM_QUEUE_RETENTION_DAYS must be > 0.")
        if self.queue.dispatch_interval_seconds <= 0:
            raise ValueError("LLMVM_QUEUE_DISPATCH_INTERVAL_SECONDS must be > 0.")
        if self.provider.request_timeout_seconds <= 0:
            raise ValueError("LLMVM_PROVIDER_TIMEOUT_SECONDS must be > 0.")
        if self.provider.default_model != STUB_MODEL and not self.provider.api_key:
            raise ValueError(
                "LLMVM_OPENROUTER_API_KEY is required for real model "
                f"{self.provider.default_model!r}.",
            )


def clamp_concurrency(value: int) -> int:
    """Bound the dispatcher concurrency ceiling to the supported 1-5 range."""

    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, value))


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None
