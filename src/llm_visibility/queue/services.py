"""Use-case services for the prompt queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from llm_visibility.prompts import PromptCatalog, PromptDefinition
from llm_visibility.queue.models import JobType, ProviderRequestPayload
from llm_visibility.queue.repository import QueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EnqueueProviderRequest:
    """High-level command to enqueue one ad-hoc (prompt, model) request."""

    owner_id: str
    prompt: str
    model: str
    api_key: str
    prompt_id: str = ""
    expected_answer: str = ""
    run_id: str | None = None
    is_batch: bool = False
    priority: int = 0


@dataclass(slots=True)
class ExecutePromptsCommand:
    """Send catalog prompts to all of their models as one run.

    Several prompts (or none, meaning every prompt of the owner) form a batch
    run; a single prompt forms a run keyed by its prompt id.
    """

    owner_id: str
    api_key: str
    prompt_ids: tuple[str, ...] = ()
    priority: int = 0


@dataclass(slots=True)
class EnqueuedRun:
    run_id: str | None
    job_ids: list[int] = field(default_factory=list)
    failed: int = 0


class QueueService:
    """Expands prompts into provider-request jobs sharing one run id."""

    def __init__(
        self,
        *,
        repository: QueueRepository,
        catalog: PromptCatalog,
        default_model: str,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.default_model = default_model

    def enqueue_request(self, command: EnqueueProviderRequest) -> int | None:
        payload = ProviderRequestPayload(
            owner_id=command.owner_id,
            prompt=command.prompt,
            model=command.model or self.default_model,
            api_key=command.api_key,
            prompt_id=command.prompt_id,
            expected_answer=command.expected_answer,
            run_id=command.run_id,
            is_batch=command.is_batch,
        )
        return self.repository.enqueue(
            JobType.PROVIDER_REQUEST.value,
            payload.to_dict(),
            command.priority,
        )

    def execute_prompts(self, command: ExecutePromptsCommand) -> EnqueuedRun:
        prompts = self._select_prompts(command)
        is_batch = len(command.prompt_ids) != 1
        run = EnqueuedRun(run_id=None)
        for prompt in prompts:
            for model in prompt.models or [self.default_model]:
                job_id = self.enqueue_request(
                    EnqueueProviderRequest(
                        owner_id=command.owner_id,
                        prompt=prompt.text,
                        model=model,
                        api_key=command.api_key,
                        prompt_id=prompt.prompt_id,
                        expected_answer=prompt.expected_answer,
                        is_batch=is_batch,
                        priority=command.priority,
                    ),
                )
                if job_id is None:
                    run.failed += 1
                    continue
                run.job_ids.append(job_id)
                if run.run_id is None:
                    job = self.repository.get_job(job_id=job_id)
                    run.run_id = job.run_id if job is not None else None

        logger.info(
            "Queued %s jobs for owner %s in run %s (%s failed)",
            len(run.job_ids),
            command.owner_id,
            run.run_id,
            run.failed,
        )
        return run

    def _select_prompts(self, command: ExecutePromptsCommand) -> list[PromptDefinition]:
        if not command.prompt_ids:
            prompts = self.catalog.list_prompts(owner_id=command.owner_id)
        else:
            prompts = []
            for prompt_id in command.prompt_ids:
                prompt = self.catalog.get(prompt_id)
                if prompt is None:
                    raise ValueError(f"Unknown prompt id: {prompt_id}")
                prompts.append(prompt)
        return [prompt for prompt in prompts if prompt.text.strip()]
