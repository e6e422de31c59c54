"""SQLModel ORM tables for the prompt queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text
from sqlmodel import Field, SQLModel


class QueueJob(SQLModel, table=True):
    __tablename__ = "queue_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_jobs_dispatch", "status", "priority", "created_at"),
        Index("idx_queue_jobs_owner_status", "owner_id", "status", "is_batch"),
    )

    job_id: int | None = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    job_type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    run_id: str = Field(index=True)
    is_batch: bool = Field(default=False)
    status: str = Field(default="pending", index=True)
    priority: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_message: str | None = Field(default=None, sa_column=Column(Text))


class LlmResult(SQLModel, table=True):
    __tablename__ = "results"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    model: str = Field(index=True)
    answer: str = Field(sa_column=Column(Text, nullable=False))
    owner_id: str = Field(index=True)
    expected_answer: str | None = Field(default=None, sa_column=Column(Text))
    comparison_score: int | None = None
    comparison_failed: bool = Field(default=False)
    run_id: str | None = Field(default=None, index=True)
    response_time_ms: int | None = None


class RunResult(SQLModel, table=True):
    """Denormalized per-run scratch row consumed by completion detection."""

    __tablename__ = "run_results"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    run_id: str = Field(index=True)
    result_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("results.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    model: str
    answer: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class PromptSummary(SQLModel, table=True):
    __tablename__ = "prompt_summaries"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    prompt_id: str = Field(index=True)
    prompt_text: str = Field(sa_column=Column(Text, nullable=False))
    expected_answer: str = Field(sa_column=Column(Text, nullable=False))
    owner_id: str = Field(index=True)
    summary: str | None = Field(default=None, sa_column=Column(Text))
    average_score: float | None = None
    min_score: int | None = None
    max_score: int | None = None
    total_models: int = 0
    completed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
