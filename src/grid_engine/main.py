"""CLI entrypoint for grid."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from grid_engine import __version__
from grid_engine.config import Settings
from grid_engine.controllers import (
    ArtifactCreateCommand,
    ArtifactListCommand,
    ArtifactReviewCommand,
    CompleteTaskCommand,
    EventLogCommand,
    GridCliController,
    ModelConfigCommand,
    NextBatchCommand,
    ProjectCreateCommand,
    ProjectRefCommand,
    StartBatchCommand,
    TaskParseCommand,
    TaskRangeCommand,
    TaskRefCommand,
    TaskReviewCommand,
    TaskUpdateCommand,
    WorktreeCreateCommand,
    WorktreeMarkCommand,
)
from grid_engine.errors import (
    GridError,
    ProjectNotFoundError,
    TaskNotFoundError,
    WorktreeNotFoundError,
)
from grid_engine.models import ArtifactType, Phase, ReviewKind, TaskStatus, WorktreeStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = GridCliController()

T = TypeVar("T")

_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path. Defaults to $GRID_DB or ~/.grid/grid.db.",
)


class NotFoundException(click.ClickException):
    """Missing project or task; exits with status 2."""

    exit_code = 2


@click.group()
@click.version_option(version=__version__, prog_name="grid")
def grid() -> None:
    """Project task-orchestration engine."""

    logging.basicConfig(
        level=Settings.from_env().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# --- Projects ---


@grid.group()
def project() -> None:
    """Project commands."""


@project.command("create")
@_db_path_option
@click.option("--name", required=True, help="Project name.")
@click.option("--repo", "repo_path", required=True, help="Repository path.")
def project_create(db_path: Path | None, name: str, repo_path: str) -> None:
    """Create a project in the brainstorm phase."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.create_project(
                ProjectCreateCommand(db_path=db_path, name=name, repo_path=repo_path),
            ),
        ),
    )


@project.command("list")
@_db_path_option
def project_list(db_path: Path | None) -> None:
    """List projects, newest first."""

    _emit_lines(_guarded(lambda: CONTROLLER.list_projects(db_path)))


@project.command("phase")
@_db_path_option
@click.argument("project_id")
def project_phase(db_path: Path | None, project_id: str) -> None:
    """Show the current phase of a project."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.project_phase(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


@project.command("set-model")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--phase",
    type=click.Choice([phase.value for phase in Phase]),
    required=True,
    help="Phase to configure.",
)
@click.option("--model", required=True, help="Model alias.")
def project_set_model(db_path: Path | None, project_id: str, phase: str, model: str) -> None:
    """Override the model used for one phase."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.set_model(
                ModelConfigCommand(
                    db_path=db_path,
                    project_id=project_id,
                    phase=phase,
                    model=model,
                ),
            ),
        ),
    )


@project.command("model")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--phase",
    type=click.Choice([phase.value for phase in Phase]),
    required=True,
    help="Phase to query.",
)
def project_model(db_path: Path | None, project_id: str, phase: str) -> None:
    """Show the effective model for one phase."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.model_for_phase(
                ModelConfigCommand(db_path=db_path, project_id=project_id, phase=phase),
            ),
        ),
    )


# --- Artifacts ---


@grid.group()
def artifact() -> None:
    """Design and plan artifact commands."""


@artifact.command("create")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--type",
    "artifact_type",
    type=click.Choice([kind.value for kind in ArtifactType]),
    required=True,
    help="Artifact type.",
)
@click.option("--content", default=None, help="Markdown content.")
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read content from file.",
)
def artifact_create(
    db_path: Path | None,
    project_id: str,
    artifact_type: str,
    content: str | None,
    file_path: Path | None,
) -> None:
    """Create a draft artifact."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.create_artifact(
                ArtifactCreateCommand(
                    db_path=db_path,
                    project_id=project_id,
                    artifact_type=artifact_type,
                    content=content,
                    file_path=file_path,
                ),
            ),
        ),
    )


@artifact.command("approve")
@_db_path_option
@click.argument("project_id")
@click.argument("artifact_id")
def artifact_approve(db_path: Path | None, project_id: str, artifact_id: str) -> None:
    """Approve an artifact."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.review_artifact(
                ArtifactReviewCommand(
                    db_path=db_path,
                    project_id=project_id,
                    artifact_id=artifact_id,
                    approved=True,
                ),
            ),
        ),
    )


@artifact.command("reject")
@_db_path_option
@click.argument("project_id")
@click.argument("artifact_id")
@click.option("--feedback", default=None, help="Rejection reason.")
def artifact_reject(
    db_path: Path | None,
    project_id: str,
    artifact_id: str,
    feedback: str | None,
) -> None:
    """Reject an artifact with optional feedback."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.review_artifact(
                ArtifactReviewCommand(
                    db_path=db_path,
                    project_id=project_id,
                    artifact_id=artifact_id,
                    approved=False,
                    feedback=feedback,
                ),
            ),
        ),
    )


@artifact.command("status")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--type",
    "artifact_type",
    type=click.Choice([kind.value for kind in ArtifactType]),
    default=None,
    help="Filter by type.",
)
def artifact_status(db_path: Path | None, project_id: str, artifact_type: str | None) -> None:
    """List artifacts of a project."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.list_artifacts(
                ArtifactListCommand(
                    db_path=db_path,
                    project_id=project_id,
                    artifact_type=artifact_type,
                ),
            ),
        ),
    )


# --- Worktrees ---


@grid.group()
def worktree() -> None:
    """Git worktree commands."""


@worktree.command("create")
@_db_path_option
@click.argument("project_id")
@click.option("--branch", required=True, help="Branch name.")
def worktree_create(db_path: Path | None, project_id: str, branch: str) -> None:
    """Create a git worktree next to the project repository and register it."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.create_worktree(
                WorktreeCreateCommand(db_path=db_path, project_id=project_id, branch=branch),
            ),
        ),
    )


@worktree.command("list")
@_db_path_option
@click.argument("project_id")
def worktree_list(db_path: Path | None, project_id: str) -> None:
    """List registered worktrees."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.list_worktrees(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


@worktree.command("mark")
@_db_path_option
@click.argument("project_id")
@click.argument("worktree_id")
@click.option(
    "--status",
    type=click.Choice(
        [status.value for status in WorktreeStatus if status is not WorktreeStatus.ACTIVE],
    ),
    required=True,
    help="New worktree status.",
)
def worktree_mark(db_path: Path | None, project_id: str, worktree_id: str, status: str) -> None:
    """Mark a worktree merged or discarded so cleanup removes its checkout."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.mark_worktree(
                WorktreeMarkCommand(
                    db_path=db_path,
                    project_id=project_id,
                    worktree_id=worktree_id,
                    status=status,
                ),
            ),
        ),
    )


@worktree.command("cleanup")
@_db_path_option
@click.argument("project_id")
def worktree_cleanup(db_path: Path | None, project_id: str) -> None:
    """Remove checkouts of merged or discarded worktrees."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.cleanup_worktrees(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


# --- Tasks ---


@grid.group()
def task() -> None:
    """Task commands."""


@task.command("list")
@_db_path_option
@click.argument("project_id")
def task_list(db_path: Path | None, project_id: str) -> None:
    """List tasks in execution order."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.list_tasks(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


@task.command("start")
@_db_path_option
@click.argument("project_id")
@click.argument("task_number", type=int)
def task_start(db_path: Path | None, project_id: str, task_number: int) -> None:
    """Mark a pending task in-progress."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.start_task(
                TaskRefCommand(db_path=db_path, project_id=project_id, task_number=task_number),
            ),
        ),
    )


@task.command("update")
@_db_path_option
@click.argument("project_id")
@click.argument("task_number", type=int)
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    required=True,
    help="New status.",
)
def task_update(db_path: Path | None, project_id: str, task_number: int, status: str) -> None:
    """Set a task status directly (board move), bypassing review gating."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.update_task(
                TaskUpdateCommand(
                    db_path=db_path,
                    project_id=project_id,
                    task_number=task_number,
                    status=status,
                ),
            ),
        ),
    )


@task.command("review")
@_db_path_option
@click.argument("project_id")
@click.argument("task_number", type=int)
@click.option(
    "--type",
    "kind",
    type=click.Choice([kind.value for kind in ReviewKind]),
    required=True,
    help="Review kind.",
)
@click.option(
    "--result",
    type=click.Choice(["pass", "fail"]),
    required=True,
    help="Review verdict.",
)
@click.option("--feedback", default=None, help="Review feedback.")
def task_review(  # noqa: PLR0913
    db_path: Path | None,
    project_id: str,
    task_number: int,
    kind: str,
    result: str,
    feedback: str | None,
) -> None:
    """Record a spec or quality review; both passing approves the task."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.review_task(
                TaskReviewCommand(
                    db_path=db_path,
                    project_id=project_id,
                    task_number=task_number,
                    kind=kind,
                    passed=result == "pass",
                    feedback=feedback,
                ),
            ),
        ),
    )


@task.command("parse")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--file",
    "plan_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Plan markdown file.",
)
@click.option("--artifact", "artifact_id", default=None, help="Link tasks to artifact.")
@click.option("--worktree", "worktree_id", default=None, help="Link tasks to worktree.")
def task_parse(
    db_path: Path | None,
    project_id: str,
    plan_path: Path,
    artifact_id: str | None,
    worktree_id: str | None,
) -> None:
    """Create tasks from `### Task N: Title` sections of a plan."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.parse_tasks(
                TaskParseCommand(
                    db_path=db_path,
                    project_id=project_id,
                    plan_path=plan_path,
                    artifact_id=artifact_id,
                    worktree_id=worktree_id,
                ),
            ),
        ),
    )


@task.command("batch")
@_db_path_option
@click.argument("project_id")
@click.option("--from", "start", type=int, required=True, help="Start task number.")
@click.option("--to", "end", type=int, required=True, help="End task number.")
def task_batch(db_path: Path | None, project_id: str, start: int, end: int) -> None:
    """Show tasks in an inclusive task-number range."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.task_batch(
                TaskRangeCommand(db_path=db_path, project_id=project_id, start=start, end=end),
            ),
        ),
    )


# --- Phases and audit log ---


@grid.command("advance")
@_db_path_option
@click.argument("project_id")
def advance(db_path: Path | None, project_id: str) -> None:
    """Advance the project to its next phase when the gate passes."""

    lines, success = _guarded(
        lambda: CONTROLLER.advance(ProjectRefCommand(db_path=db_path, project_id=project_id)),
    )
    _emit_lines(lines)
    if not success:
        sys.exit(1)


@grid.command("log")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=20,
    show_default=True,
    help="Limit results.",
)
def log(db_path: Path | None, project_id: str, limit: int) -> None:
    """Show the audit trail, newest first."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.event_log(
                EventLogCommand(db_path=db_path, project_id=project_id, limit=limit),
            ),
        ),
    )


# --- Orchestrator ---


@grid.group()
def orch() -> None:
    """Execute-phase orchestration commands."""


@orch.command("status")
@_db_path_option
@click.argument("project_id")
def orch_status(db_path: Path | None, project_id: str) -> None:
    """Recommend the next action (spawn_batch, waiting, all_done, checkpoint)."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.orchestrator_status(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


@orch.command("progress")
@_db_path_option
@click.argument("project_id")
def orch_progress(db_path: Path | None, project_id: str) -> None:
    """Print the chat progress summary."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.orchestrator_progress(
                ProjectRefCommand(db_path=db_path, project_id=project_id),
            ),
        ),
    )


@orch.command("complete")
@_db_path_option
@click.argument("project_id")
@click.argument("task_number", type=int)
@click.option(
    "--result",
    type=click.Choice(["pass", "fail"]),
    default="pass",
    show_default=True,
    help="Agent outcome.",
)
@click.option("--feedback", default=None, help="Completion feedback.")
def orch_complete(
    db_path: Path | None,
    project_id: str,
    task_number: int,
    result: str,
    feedback: str | None,
) -> None:
    """Complete an in-progress task and record its reviews."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.complete_task(
                CompleteTaskCommand(
                    db_path=db_path,
                    project_id=project_id,
                    task_number=task_number,
                    result=result,
                    feedback=feedback,
                ),
            ),
        ),
    )


@orch.command("start-batch")
@_db_path_option
@click.argument("project_id")
@click.option("--tasks", "task_numbers", required=True, help="Comma-separated task numbers.")
def orch_start_batch(db_path: Path | None, project_id: str, task_numbers: str) -> None:
    """Mark the listed pending tasks in-progress."""

    try:
        numbers = tuple(int(part) for part in task_numbers.split(",") if part.strip())
    except ValueError as error:
        raise click.BadParameter(f"Invalid task list: {task_numbers!r}") from error
    _emit_lines(
        _guarded(
            lambda: CONTROLLER.start_batch(
                StartBatchCommand(db_path=db_path, project_id=project_id, task_numbers=numbers),
            ),
        ),
    )


@orch.command("next")
@_db_path_option
@click.argument("project_id")
@click.option(
    "--size",
    type=click.IntRange(min=1),
    default=None,
    help="Batch size. Defaults to $GRID_BATCH_SIZE or 3.",
)
def orch_next(db_path: Path | None, project_id: str, size: int | None) -> None:
    """Show the next batch of pending tasks."""

    _emit_lines(
        _guarded(
            lambda: CONTROLLER.next_batch(
                NextBatchCommand(db_path=db_path, project_id=project_id, size=size),
            ),
        ),
    )


def _guarded(action: Callable[[], T]) -> T:
    try:
        return action()
    except (ProjectNotFoundError, TaskNotFoundError, WorktreeNotFoundError) as error:
        raise NotFoundException(str(error)) from error
    except (GridError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    grid()
