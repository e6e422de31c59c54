"""Initial prompt queue, results, run results and prompt summaries tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "queue_jobs",
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("is_batch", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_queue_jobs_owner_id", "queue_jobs", ["owner_id"], unique=False)
    op.create_index("ix_queue_jobs_job_type", "queue_jobs", ["job_type"], unique=False)
    op.create_index("ix_queue_jobs_run_id", "queue_jobs", ["run_id"], unique=False)
    op.create_index("ix_queue_jobs_status", "queue_jobs", ["status"], unique=False)
    op.create_index(
        "idx_queue_jobs_dispatch",
        "queue_jobs",
        ["status", "priority", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_queue_jobs_owner_status",
        "queue_jobs",
        ["owner_id", "status", "is_batch"],
        unique=False,
    )

    op.create_table(
        "results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("expected_answer", sa.Text(), nullable=True),
        sa.Column("comparison_score", sa.Integer(), nullable=True),
        sa.Column(
            "comparison_failed",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("response_time_ms", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_results_created_at", "results", ["created_at"], unique=False)
    op.create_index("ix_results_model", "results", ["model"], unique=False)
    op.create_index("ix_results_owner_id", "results", ["owner_id"], unique=False)
    op.create_index("ix_results_run_id", "results", ["run_id"], unique=False)

    op.create_table(
        "run_results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("result_id", sa.Integer(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["result_id"], ["results.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_run_results_owner_id", "run_results", ["owner_id"], unique=False)
    op.create_index("ix_run_results_run_id", "run_results", ["run_id"], unique=False)
    op.create_index("ix_run_results_created_at", "run_results", ["created_at"], unique=False)

    op.create_table(
        "prompt_summaries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prompt_id", sa.String(), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("expected_answer", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("average_score", sa.Float(), nullable=True),
        sa.Column("min_score", sa.Integer(), nullable=True),
        sa.Column("max_score", sa.Integer(), nullable=True),
        sa.Column("total_models", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_prompt_summaries_prompt_id",
        "prompt_summaries",
        ["prompt_id"],
        unique=False,
    )
    op.create_index(
        "ix_prompt_summaries_owner_id",
        "prompt_summaries",
        ["owner_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_prompt_summaries_owner_id", table_name="prompt_summaries")
    op.drop_index("ix_prompt_summaries_prompt_id", table_name="prompt_summaries")
    op.drop_table("prompt_summaries")
    op.drop_index("ix_run_results_created_at", table_name="run_results")
    op.drop_index("ix_run_results_run_id", table_name="run_results")
    op.drop_index("ix_run_results_owner_id", table_name="run_results")
    op.drop_table("run_results")
    op.drop_index("ix_results_run_id", table_name="results")
    op.drop_index("ix_results_owner_id", table_name="results")
    op.drop_index("ix_results_model", table_name="results")
    op.drop_index("ix_results_created_at", table_name="results")
    op.drop_table("results")
    op.drop_index("idx_queue_jobs_owner_status", table_name="queue_jobs")
    op.drop_index("idx_queue_jobs_dispatch", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_status", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_run_id", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_job_type", table_name="queue_jobs")
    op.drop_index("ix_queue_jobs_owner_id", table_name="queue_jobs")
    op.drop_table("queue_jobs")
