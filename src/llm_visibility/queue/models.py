"""Domain models for the prompt job queue."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states.

    Transitions only move forward: pending -> processing -> completed | failed.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES: tuple[JobStatus, ...] = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES: tuple[JobStatus, ...] = (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, Enum):
    """Known job variants; each one has a handler in the executor strategy table."""

    PROVIDER_REQUEST = "llm_request"


class JobPayloadError(ValueError):
    """Job payload is missing required data; the job fails without retry."""


class UnknownJobTypeError(RuntimeError):
    """No handler is registered for the job type."""


class ResultWriteError(RuntimeError):
    """Result row could not be persisted."""


def normalize_run_id(value: object) -> str:
    """Strip whitespace and stray wrapping quotes left by serialization round-trips."""

    if value is None:
        return ""
    text = str(value).strip()
    if len(text) > 2 and text[0] == '"' and text[-1] == '"':
        text = text.strip('"')
    return text


@dataclass(slots=True)
class ProviderRequestPayload:
    """Payload schema for one (prompt, model) provider request."""

    owner_id: str
    prompt: str
    model: str
    api_key: str = ""
    prompt_id: str = ""
    expected_answer: str = ""
    run_id: str | None = None
    is_batch: bool = False
    response_time_ms: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProviderRequestPayload:
        """Decode a stored payload, raising `JobPayloadError` on missing required fields."""

        api_key = str(data.get("api_key") or "")
        prompt = str(data.get("prompt") or "")
        model = str(data.get("model") or "")
        if not api_key.strip() or not prompt.strip() or not model.strip():
            missing = [
                name
                for name, value in (("api_key", api_key), ("prompt", prompt), ("model", model))
                if not value.strip()
            ]
            raise JobPayloadError(f"Missing required job data: {', '.join(missing)}")
        run_id = normalize_run_id(data.get("run_id"))
        response_time_ms = data.get("response_time_ms")
        return cls(
            owner_id=str(data.get("owner_id") or ""),
            prompt=prompt,
            model=model,
            api_key=api_key,
            prompt_id=str(data.get("prompt_id") or ""),
            expected_answer=str(data.get("expected_answer") or ""),
            run_id=run_id or None,
            is_batch=bool(data.get("is_batch", False)),
            response_time_ms=int(response_time_ms) if response_time_ms is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "owner_id": self.owner_id,
            "prompt": self.prompt,
            "model": self.model,
            "api_key": self.api_key,
            "prompt_id": self.prompt_id,
            "expected_answer": self.expected_answer,
            "run_id": self.run_id,
            "is_batch": self.is_batch,
        }
        if self.response_time_ms is not None:
            data["response_time_ms"] = self.response_time_ms
        return data


@dataclass(slots=True)
class JobView:
    """Readable job view for dispatcher, executor and CLI."""

    job_id: int
    owner_id: str
    job_type: str
    payload: dict[str, Any]
    run_id: str
    is_batch: bool
    status: JobStatus
    priority: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    error_message: str | None


@dataclass(slots=True)
class RunResultWrite:
    """Scratch row written by the executor for completion detection."""

    owner_id: str
    run_id: str
    result_id: int
    prompt: str
    model: str
    answer: str


@dataclass(slots=True)
class RunResultView:
    """One result handed to the reporting collaborator."""

    result_id: int
    prompt: str
    model: str
    answer: str
    created_at: datetime


@dataclass(slots=True)
class QueueStatusCounts:
    """Number of jobs per lifecycle state."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


@dataclass(slots=True)
class CleanupResult:
    """Outcome of one retention sweep."""

    cutoff: datetime
    jobs_deleted: int
    run_results_deleted: int


@dataclass(slots=True)
class RunNotification:
    """Record of one completed run passed to the reporting collaborator."""

    owner_id: str
    run_id: str
    results_count: int


@dataclass(slots=True)
class DispatchSummary:
    """Aggregate dispatcher counters for CLI reporting."""

    processing_before: int = 0
    capacity: int = 0
    claimed: int = 0
    skipped: int = 0
    completed: int = 0
    failed: int = 0
    notifications: list[RunNotification] = field(default_factory=list)
