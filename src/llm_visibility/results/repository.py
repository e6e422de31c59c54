"""Persistent store for provider results and prompt summaries."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from llm_visibility.results.models import (
    PromptSummaryView,
    PromptSummaryWrite,
    ResultView,
    ResultWrite,
)
from llm_visibility.storage.alembic_runner import upgrade_head
from llm_visibility.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from llm_visibility.storage.sqlmodel_models import LlmResult, PromptSummary

logger = logging.getLogger(__name__)


class ResultRepository:
    """Result and summary persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def insert_result(self, payload: ResultWrite) -> int | None:
        """Persist one result row; None when the write fails."""

        try:
            with Session(self.engine) as session:
                row = LlmResult(
                    created_at=to_db_datetime(utc_now()),
                    prompt=payload.prompt,
                    model=payload.model,
                    answer=payload.answer,
                    owner_id=payload.owner_id,
                    expected_answer=payload.expected_answer or None,
                    comparison_score=payload.comparison_score,
                    comparison_failed=payload.comparison_failed,
                    run_id=payload.run_id,
                    response_time_ms=payload.response_time_ms,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return row.id
        except SQLAlchemyError:
            logger.exception("Failed to store result for model %s", payload.model)
            return None

    def get_result(self, *, result_id: int) -> ResultView | None:
        with Session(self.engine) as session:
            row = session.exec(select(LlmResult).where(LlmResult.id == result_id)).one_or_none()
        return _to_result_view(row) if row is not None else None

    def list_results(
        self,
        *,
        owner_id: str | None = None,
        run_id: str | None = None,
        limit: int = 50,
    ) -> list[ResultView]:
        """List recent results, newest first."""

        with Session(self.engine) as session:
            statement = (
                select(LlmResult)
                .order_by(col(LlmResult.created_at).desc(), col(LlmResult.id).desc())
                .limit(limit)
            )
            if owner_id is not None:
                statement = statement.where(LlmResult.owner_id == owner_id)
            if run_id is not None:
                statement = statement.where(LlmResult.run_id == run_id)
            rows = session.exec(statement).all()
        return [_to_result_view(row) for row in rows]

    def delete_results(self, *, result_ids: Sequence[int]) -> int:
        """Administrative delete; scratch rows referencing the results cascade."""

        ids = [int(result_id) for result_id in result_ids if int(result_id) > 0]
        if not ids:
            return 0
        with Session(self.engine) as session:
            result = session.exec(sa_delete(LlmResult).where(col(LlmResult.id).in_(ids)))
            session.commit()
            return int(result.rowcount or 0)

    def completed_models(self, *, prompt_text: str, model_prefixes: Sequence[str]) -> list[str]:
        """Distinct stored model ids for the prompt matching any expected model prefix."""

        if not model_prefixes:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(LlmResult.model)
                .where(
                    LlmResult.prompt == prompt_text,
                    _model_prefix_clause(model_prefixes),
                )
                .distinct(),
            ).all()
        return list(rows)

    def find_prompt_results(  # noqa: PLR0913
        self,
        *,
        prompt_text: str,
        model_prefixes: Sequence[str],
        expected_answer: str = "",
        run_id: str | None = None,
        window: tuple[datetime, datetime] | None = None,
    ) -> list[ResultView]:
        """Results for a prompt, newest first, narrowed by run id or creation window."""

        if not model_prefixes:
            return []
        with Session(self.engine) as session:
            statement = (
                select(LlmResult)
                .where(
                    LlmResult.prompt == prompt_text,
                    _model_prefix_clause(model_prefixes),
                )
                .order_by(col(LlmResult.created_at).desc(), col(LlmResult.id).desc())
            )
            if expected_answer:
                statement = statement.where(LlmResult.expected_answer == expected_answer)
            if run_id:
                statement = statement.where(LlmResult.run_id == run_id)
            if window is not None:
                start, end = window
                statement = statement.where(
                    col(LlmResult.created_at) >= to_db_datetime(start),
                    col(LlmResult.created_at) <= to_db_datetime(end),
                )
            rows = session.exec(statement).all()
        return [_to_result_view(row) for row in rows]

    def latest_summary_completed_at(
        self,
        *,
        prompt_id: str,
        prompt_text: str,
        expected_answer: str,
    ) -> datetime | None:
        """Completion time of the newest summary for the exact prompt triple."""

        with Session(self.engine) as session:
            value = session.exec(
                select(func.max(PromptSummary.completed_at)).where(
                    PromptSummary.prompt_id == prompt_id,
                    PromptSummary.prompt_text == prompt_text,
                    PromptSummary.expected_answer == expected_answer,
                ),
            ).one()
        return optional_utc(value)

    def has_results_newer_than(
        self,
        *,
        prompt_text: str,
        expected_answer: str,
        since: datetime,
    ) -> bool:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count())
                .select_from(LlmResult)
                .where(
                    LlmResult.prompt == prompt_text,
                    LlmResult.expected_answer == expected_answer,
                    col(LlmResult.created_at) > to_db_datetime(since),
                ),
            ).one()
        return int(count) > 0

    def delete_prompt_summaries(
        self,
        *,
        prompt_id: str,
        prompt_text: str,
        expected_answer: str,
    ) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(PromptSummary).where(
                    col(PromptSummary.prompt_id) == prompt_id,
                    col(PromptSummary.prompt_text) == prompt_text,
                    col(PromptSummary.expected_answer) == expected_answer,
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def insert_prompt_summary(self, payload: PromptSummaryWrite) -> int | None:
        try:
            with Session(self.engine) as session:
                row = PromptSummary(
                    prompt_id=payload.prompt_id,
                    prompt_text=payload.prompt_text,
                    expected_answer=payload.expected_answer,
                    owner_id=payload.owner_id,
                    summary=payload.summary,
                    average_score=payload.average_score,
                    min_score=payload.min_score,
                    max_score=payload.max_score,
                    total_models=payload.total_models,
                    completed_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return row.id
        except SQLAlchemyError:
            logger.exception("Failed to store summary for prompt %s", payload.prompt_id)
            return None

    def list_summaries(
        self,
        *,
        owner_id: str | None = None,
        prompt_id: str | None = None,
        limit: int = 50,
    ) -> list[PromptSummaryView]:
        """List recent prompt summaries, newest first."""

        with Session(self.engine) as session:
            statement = (
                select(PromptSummary)
                .order_by(col(PromptSummary.completed_at).desc(), col(PromptSummary.id).desc())
                .limit(limit)
            )
            if owner_id is not None:
                statement = statement.where(PromptSummary.owner_id == owner_id)
            if prompt_id is not None:
                statement = statement.where(PromptSummary.prompt_id == prompt_id)
            rows = session.exec(statement).all()
        return [_to_summary_view(row) for row in rows]


def _model_prefix_clause(model_prefixes: Sequence[str]):  # noqa: ANN202
    # Stored model ids may carry provider suffixes such as ":online".
    return or_(
        *(col(LlmResult.model).startswith(prefix, autoescape=True) for prefix in model_prefixes),
    )


def _to_result_view(row: LlmResult) -> ResultView:
    return ResultView(
        id=row.id or 0,
        created_at=to_utc_aware_datetime(row.created_at),
        owner_id=row.owner_id,
        prompt=row.prompt,
        model=row.model,
        answer=row.answer,
        expected_answer=row.expected_answer,
        comparison_score=row.comparison_score,
        comparison_failed=bool(row.comparison_failed),
        run_id=row.run_id,
        response_time_ms=row.response_time_ms,
    )


def _to_summary_view(row: PromptSummary) -> PromptSummaryView:
    return PromptSummaryView(
        id=row.id or 0,
        prompt_id=row.prompt_id,
        prompt_text=row.prompt_text,
        expected_answer=row.expected_answer,
        owner_id=row.owner_id,
        summary=row.summary,
        average_score=row.average_score,
        min_score=row.min_score,
        max_score=row.max_score,
        total_models=row.total_models,
        completed_at=to_utc_aware_datetime(row.completed_at),
    )
