"""Reporting collaborators notified when a run has no outstanding work."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from llm_visibility.queue.models import RunResultView
from llm_visibility.storage.common import utc_now

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class RunReporter(Protocol):
    """Receives the ordered results of one completed run."""

    def notify(
        self,
        owner_id: str,
        results: Sequence[RunResultView],
        *,
        run_id: str = "",
    ) -> None:
        """Deliver results; an empty list is a no-op."""


class LoggingRunReporter:
    """Log each completed run and a short line per result."""

    def notify(
        self,
        owner_id: str,
        results: Sequence[RunResultView],
        *,
        run_id: str = "",
    ) -> None:
        if not results:
            return
        logger.info("Run %s for owner %s finished: %s results", run_id, owner_id, len(results))
        for result in results:
            logger.info("  [%s] %s: %.80s", result.result_id, result.model, result.answer)


class JsonFileRunReporter:
    """Write one JSON report per notification into a directory.

    File names combine the run id with the generation time, so repeated runs
    sharing a run id never overwrite earlier reports.
    """

    def __init__(self, reports_dir: Path) -> None:
        self.reports_dir = reports_dir

    def notify(
        self,
        owner_id: str,
        results: Sequence[RunResultView],
        *,
        run_id: str = "",
    ) -> None:
        if not results:
            return
        generated_at = utc_now()
        stem = _UNSAFE_FILENAME_RE.sub("_", f"{run_id or owner_id}_{generated_at:%Y%m%dT%H%M%S%f}")
        path = _unused_path(self.reports_dir, stem)
        payload: dict[str, Any] = {
            "owner_id": owner_id,
            "run_id": run_id,
            "generated_at": generated_at.isoformat(),
            "results": [
                {
                    "id": result.result_id,
                    "prompt": result.prompt,
                    "model": result.model,
                    "answer": result.answer,
                    "created_at": result.created_at.isoformat(),
                }
                for result in results
            ],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")
        logger.info("Wrote run report %s", path)


class FanOutRunReporter:
    """Forward each notification to several reporters in order."""

    def __init__(self, reporters: Sequence[RunReporter]) -> None:
        self.reporters = list(reporters)

    def notify(
        self,
        owner_id: str,
        results: Sequence[RunResultView],
        *,
        run_id: str = "",
    ) -> None:
        for reporter in self.reporters:
            reporter.notify(owner_id, results, run_id=run_id)


def build_run_reporter(reports_dir: Path | None) -> RunReporter:
    reporters: list[RunReporter] = [LoggingRunReporter()]
    if reports_dir is not None:
        reporters.append(JsonFileRunReporter(reports_dir))
    return FanOutRunReporter(reporters)


def _unused_path(directory: Path, stem: str) -> Path:
    path = directory / f"{stem}.json"
    suffix = 1
    while path.exists():
        path = directory / f"{stem}_{suffix}.json"
        suffix += 1
    return path
