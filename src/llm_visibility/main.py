"""CLI entrypoint for llm-visibility."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from llm_visibility import __version__
from llm_visibility.queue.controllers import (
    QueueCleanupCommand,
    QueueCliController,
    QueueDbCommand,
    QueueDispatchCommand,
    QueueEnqueueCommand,
    QueueListJobsCommand,
    QueueRunPromptsCommand,
    ResultsDeleteCommand,
    ResultsListCommand,
    SummariesListCommand,
)

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

CommandT = TypeVar("CommandT")

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="llm-visibility")
def llm_visibility() -> None:
    """LLM visibility monitor CLI."""


@llm_visibility.group()
def queue() -> None:
    """Prompt job queue commands."""


@queue.command("enqueue")
@DB_PATH_OPTION
@click.option("--owner", "owner_id", required=True, help="Owner id of the job.")
@click.option("--prompt", required=True, help="Prompt text.")
@click.option("--model", default=None, help="Model id. Defaults to LLMVM_DEFAULT_MODEL.")
@click.option("--prompt-id", default="", help="Prompt catalog id.")
@click.option("--expected-answer", default="", help="Expected answer used for scoring.")
@click.option("--run-id", default=None, help="Explicit run id for single submissions.")
@click.option("--batch", "is_batch", is_flag=True, default=False, help="Join the owner batch run.")
@click.option("--priority", type=int, default=0, show_default=True, help="Higher runs first.")
@click.option("--dispatch", is_flag=True, default=False, help="Run one dispatch cycle after.")
def queue_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    owner_id: str,
    prompt: str,
    model: str | None,
    prompt_id: str,
    expected_answer: str,
    run_id: str | None,
    is_batch: bool,
    priority: int,
    dispatch: bool,
) -> None:
    """Enqueue one provider request."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.enqueue,
            QueueEnqueueCommand(
                db_path=db_path,
                owner_id=owner_id,
                prompt=prompt,
                model=model,
                prompt_id=prompt_id,
                expected_answer=expected_answer,
                run_id=run_id,
                is_batch=is_batch,
                priority=priority,
                dispatch=dispatch,
            ),
        ),
    )


@queue.command("run-prompts")
@DB_PATH_OPTION
@click.option("--owner", "owner_id", required=True, help="Owner id of the run.")
@click.option(
    "--prompt-id",
    "prompt_ids",
    multiple=True,
    help="Catalog prompt id. Can be repeated; omit to run every prompt of the owner.",
)
@click.option("--priority", type=int, default=0, show_default=True, help="Higher runs first.")
@click.option("--dispatch", is_flag=True, default=False, help="Run one dispatch cycle after.")
def queue_run_prompts(
    db_path: Path | None,
    owner_id: str,
    prompt_ids: tuple[str, ...],
    priority: int,
    dispatch: bool,
) -> None:
    """Send catalog prompts to all of their models as one run."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.run_prompts,
            QueueRunPromptsCommand(
                db_path=db_path,
                owner_id=owner_id,
                prompt_ids=prompt_ids,
                priority=priority,
                dispatch=dispatch,
            ),
        ),
    )


@queue.command("dispatch")
@DB_PATH_OPTION
@click.option("--loop", is_flag=True, default=False, help="Dispatch on a fixed interval.")
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many cycles.",
)
@click.option(
    "--interval",
    "interval_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Loop interval in seconds. Defaults to LLMVM_QUEUE_DISPATCH_INTERVAL_SECONDS.",
)
def queue_dispatch(
    db_path: Path | None,
    loop: bool,
    max_cycles: int | None,
    interval_seconds: float | None,
) -> None:
    """Claim and run pending jobs up to the concurrency ceiling."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.dispatch,
            QueueDispatchCommand(
                db_path=db_path,
                loop=loop,
                max_cycles=max_cycles,
                interval_seconds=interval_seconds,
            ),
        ),
    )


@queue.command("status")
@DB_PATH_OPTION
def queue_status(db_path: Path | None) -> None:
    """Show job counts per status."""

    _emit_lines(_invoke(QUEUE_CONTROLLER.status, QueueDbCommand(db_path=db_path)))


@queue.command("list")
@DB_PATH_OPTION
@click.option("--owner", "owner_id", default=None, help="Optional owner filter.")
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def queue_list(
    db_path: Path | None,
    owner_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List recent jobs."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.list_jobs,
            QueueListJobsCommand(
                db_path=db_path,
                owner_id=owner_id,
                status=status,
                limit=limit,
            ),
        ),
    )


@queue.command("cleanup")
@DB_PATH_OPTION
@click.option(
    "--retention-days",
    type=click.IntRange(min=1),
    default=None,
    help="Override LLMVM_QUEUE_RETENTION_DAYS.",
)
def queue_cleanup(db_path: Path | None, retention_days: int | None) -> None:
    """Delete finished jobs older than the retention window."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.cleanup,
            QueueCleanupCommand(db_path=db_path, retention_days=retention_days),
        ),
    )


@queue.command("clear")
@DB_PATH_OPTION
@click.confirmation_option(prompt="Delete every job in the queue?")
def queue_clear(db_path: Path | None) -> None:
    """Delete all jobs regardless of status."""

    _emit_lines(_invoke(QUEUE_CONTROLLER.clear, QueueDbCommand(db_path=db_path)))


@llm_visibility.group()
def results() -> None:
    """Stored result commands."""


@results.command("list")
@DB_PATH_OPTION
@click.option("--owner", "owner_id", default=None, help="Optional owner filter.")
@click.option("--run-id", default=None, help="Optional run filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max results to print.",
)
def results_list(
    db_path: Path | None,
    owner_id: str | None,
    run_id: str | None,
    limit: int,
) -> None:
    """List recent results."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.list_results,
            ResultsListCommand(db_path=db_path, owner_id=owner_id, run_id=run_id, limit=limit),
        ),
    )


@results.command("delete")
@DB_PATH_OPTION
@click.option("--id", "result_ids", type=int, multiple=True, required=True, help="Result id.")
def results_delete(db_path: Path | None, result_ids: tuple[int, ...]) -> None:
    """Delete results by id."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.delete_results,
            ResultsDeleteCommand(db_path=db_path, result_ids=result_ids),
        ),
    )


@llm_visibility.command("summaries")
@DB_PATH_OPTION
@click.option("--owner", "owner_id", default=None, help="Optional owner filter.")
@click.option("--prompt-id", default=None, help="Optional prompt filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max summaries to print.",
)
def summaries(
    db_path: Path | None,
    owner_id: str | None,
    prompt_id: str | None,
    limit: int,
) -> None:
    """List cross-model prompt summaries."""

    _emit_lines(
        _invoke(
            QUEUE_CONTROLLER.list_summaries,
            SummariesListCommand(
                db_path=db_path,
                owner_id=owner_id,
                prompt_id=prompt_id,
                limit=limit,
            ),
        ),
    )


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> list[str]:
    try:
        return handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    llm_visibility()
