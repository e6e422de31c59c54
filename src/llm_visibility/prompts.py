"""Prompt catalog: the read-only set of prompt definitions the queue submits."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol


@dataclass(slots=True)
class PromptDefinition:
    """One monitored prompt and the models it is sent to."""

    prompt_id: str
    text: str
    models: list[str] = field(default_factory=list)
    expected_answer: str = ""
    owner_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PromptDefinition:
        models_raw = data.get("models")
        if isinstance(models_raw, list):
            models = [str(model).strip() for model in models_raw if str(model).strip()]
        elif data.get("model"):
            models = [str(data["model"]).strip()]
        else:
            models = []
        return cls(
            prompt_id=str(data.get("id") or data.get("prompt_id") or ""),
            text=str(data.get("text") or ""),
            models=models,
            expected_answer=str(data.get("expected_answer") or "").strip(),
            owner_id=str(data.get("owner_id") or data.get("user_id") or ""),
        )


class PromptCatalog(Protocol):
    """Read-only lookup of prompt definitions."""

    def get(self, prompt_id: str) -> PromptDefinition | None:
        """Return one prompt by id."""

    def list_prompts(self, *, owner_id: str | None = None) -> list[PromptDefinition]:
        """Return prompts, optionally restricted to one owner."""


class InMemoryPromptCatalog:
    """Prompt catalog backed by a list of definitions."""

    def __init__(self, prompts: Iterable[PromptDefinition] = ()) -> None:
        self._prompts = list(prompts)

    def get(self, prompt_id: str) -> PromptDefinition | None:
        for prompt in self._prompts:
            if prompt.prompt_id == prompt_id:
                return prompt
        return None

    def list_prompts(self, *, owner_id: str | None = None) -> list[PromptDefinition]:
        if owner_id is None:
            return list(self._prompts)
        # Prompts without an owner are shared by everyone.
        return [p for p in self._prompts if p.owner_id in {"", owner_id}]


def load_prompt_catalog(path: Path | None) -> InMemoryPromptCatalog:
    """Load prompt definitions from a JSON list (or `{"prompts": [...]}`) file."""

    if path is None or not path.exists():
        return InMemoryPromptCatalog()
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("prompts", [])
    if not isinstance(payload, list):
        raise ValueError(f"Prompt catalog must be a JSON list: {path}")
    prompts = [
        PromptDefinition.from_dict(item)
        for item in payload
        if isinstance(item, dict)
    ]
    return InMemoryPromptCatalog(p for p in prompts if p.prompt_id and p.text.strip())
