"""Controllers for grid CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from grid_engine.config import Settings
from grid_engine.errors import (
    GitCommandError,
    ProjectNotFoundError,
    TaskNotFoundError,
    WorktreeNotFoundError,
)
from grid_engine.models import (
    ArtifactStatus,
    ArtifactType,
    EventType,
    Phase,
    ProjectView,
    ReviewKind,
    TaskStatus,
    TaskView,
    WorktreeStatus,
)
from grid_engine.orchestrator import CompletionResult, Orchestrator
from grid_engine.phases import PhaseStateMachine
from grid_engine.plan_parser import parse_plan
from grid_engine.repository import GridRepository
from grid_engine.worktree import WorktreeManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProjectCreateCommand:
    db_path: Path | None
    name: str
    repo_path: str


@dataclass(slots=True)
class ProjectRefCommand:
    """CLI input for commands addressing one project."""

    db_path: Path | None
    project_id: str


@dataclass(slots=True)
class ModelConfigCommand:
    """CLI input for per-phase model override read/write."""

    db_path: Path | None
    project_id: str
    phase: str
    model: str | None = None


@dataclass(slots=True)
class ArtifactCreateCommand:
    db_path: Path | None
    project_id: str
    artifact_type: str
    content: str | None
    file_path: Path | None


@dataclass(slots=True)
class ArtifactReviewCommand:
    """CLI input for artifact approve/reject."""

    db_path: Path | None
    project_id: str
    artifact_id: str
    approved: bool
    feedback: str | None = None


@dataclass(slots=True)
class ArtifactListCommand:
    db_path: Path | None
    project_id: str
    artifact_type: str | None


@dataclass(slots=True)
class WorktreeCreateCommand:
    db_path: Path | None
    project_id: str
    branch: str


@dataclass(slots=True)
class WorktreeMarkCommand:
    db_path: Path | None
    project_id: str
    worktree_id: str
    status: str


@dataclass(slots=True)
class TaskRefCommand:
    """CLI input for commands addressing one task by number."""

    db_path: Path | None
    project_id: str
    task_number: int


@dataclass(slots=True)
class TaskUpdateCommand:
    db_path: Path | None
    project_id: str
    task_number: int
    status: str


@dataclass(slots=True)
class TaskReviewCommand:
    """CLI input for recording one spec or quality review."""

    db_path: Path | None
    project_id: str
    task_number: int
    kind: str
    passed: bool
    feedback: str | None


@dataclass(slots=True)
class TaskParseCommand:
    """CLI input for creating tasks from a markdown plan."""

    db_path: Path | None
    project_id: str
    plan_path: Path
    artifact_id: str | None
    worktree_id: str | None


@dataclass(slots=True)
class TaskRangeCommand:
    db_path: Path | None
    project_id: str
    start: int
    end: int


@dataclass(slots=True)
class EventLogCommand:
    db_path: Path | None
    project_id: str
    limit: int


@dataclass(slots=True)
class CompleteTaskCommand:
    """CLI input for reporting an agent outcome."""

    db_path: Path | None
    project_id: str
    task_number: int
    result: str
    feedback: str | None


@dataclass(slots=True)
class StartBatchCommand:
    db_path: Path | None
    project_id: str
    task_numbers: tuple[int, ...]


@dataclass(slots=True)
class NextBatchCommand:
    db_path: Path | None
    project_id: str
    size: int | None


class GridCliController:
    """Coordinates store, phase and orchestrator CLI operations."""

    # --- Projects ---

    def create_project(self, command: ProjectCreateCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            project = repository.create_project(name=command.name, repo_path=command.repo_path)
            repository.create_event(
                project_id=project.id,
                event_type=EventType.PHASE_CHANGE,
                details={"to": project.phase.value},
            )
        return _json_lines(project)

    def list_projects(self, db_path: Path | None) -> list[str]:
        with _repository(_settings(db_path)) as repository:
            return _json_lines(repository.list_projects())

    def project_phase(self, command: ProjectRefCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            project = _require_project(repository, command.project_id)
        return _json_lines({"id": project.id, "name": project.name, "phase": project.phase})

    def set_model(self, command: ModelConfigCommand) -> list[str]:
        phase = Phase(command.phase)
        with _repository(_settings(command.db_path)) as repository:
            project = _require_project(repository, command.project_id)
            config = dict(project.model_config or {})
            config[phase.value] = command.model or ""
            repository.set_model_config(project_id=project.id, config=config)
        return _json_lines({"id": project.id, "model_config": config})

    def model_for_phase(self, command: ModelConfigCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            model = repository.get_model_for_phase(
                project_id=command.project_id,
                phase=command.phase,
            )
        return _json_lines({"id": command.project_id, "phase": command.phase, "model": model})

    # --- Artifacts ---

    def create_artifact(self, command: ArtifactCreateCommand) -> list[str]:
        content = (
            command.file_path.read_text("utf-8")
            if command.file_path is not None
            else command.content or ""
        )
        with _repository(_settings(command.db_path)) as repository:
            artifact = repository.create_artifact(
                project_id=command.project_id,
                type=ArtifactType(command.artifact_type),
                content=content,
                file_path=str(command.file_path) if command.file_path is not None else None,
            )
        return _json_lines(artifact)

    def review_artifact(self, command: ArtifactReviewCommand) -> list[str]:
        status = ArtifactStatus.APPROVED if command.approved else ArtifactStatus.REJECTED
        with _repository(_settings(command.db_path)) as repository:
            repository.update_artifact_status(
                artifact_id=command.artifact_id,
                status=status,
                feedback=command.feedback,
            )
            details: dict[str, object] = {
                "artifact_id": command.artifact_id,
                "status": status.value,
            }
            if command.feedback is not None:
                details["feedback"] = command.feedback
            repository.create_event(
                project_id=command.project_id,
                event_type=EventType.APPROVAL,
                details=details,
            )
            artifact = repository.get_artifact(artifact_id=command.artifact_id)
        return _json_lines(artifact)

    def list_artifacts(self, command: ArtifactListCommand) -> list[str]:
        artifact_type = ArtifactType(command.artifact_type) if command.artifact_type else None
        with _repository(_settings(command.db_path)) as repository:
            artifacts = repository.list_artifacts(project_id=command.project_id, type=artifact_type)
        return _json_lines(artifacts)

    # --- Worktrees ---

    def create_worktree(self, command: WorktreeCreateCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            project = _require_project(repository, command.project_id)
            path = WorktreeManager(Path(project.repo_path)).create(command.branch)
            worktree = repository.create_worktree(
                project_id=project.id,
                branch=command.branch,
                path=str(path),
            )
        return _json_lines(worktree)

    def list_worktrees(self, command: ProjectRefCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            return _json_lines(repository.list_worktrees(project_id=command.project_id))

    def mark_worktree(self, command: WorktreeMarkCommand) -> list[str]:
        status = WorktreeStatus(command.status)
        with _repository(_settings(command.db_path)) as repository:
            worktree = repository.get_worktree(worktree_id=command.worktree_id)
            if worktree is None or worktree.project_id != command.project_id:
                raise WorktreeNotFoundError(f"Worktree not found: {command.worktree_id}")
            repository.update_worktree_status(worktree_id=worktree.id, status=status)
            return _json_lines(repository.get_worktree(worktree_id=worktree.id))

    def cleanup_worktrees(self, command: ProjectRefCommand) -> list[str]:
        """Remove checkouts of merged/discarded worktrees; git failures are logged and reported."""

        removed: list[str] = []
        failed: list[str] = []
        with _repository(_settings(command.db_path)) as repository:
            project = _require_project(repository, command.project_id)
            manager = WorktreeManager(Path(project.repo_path))
            for worktree in repository.list_worktrees(project_id=project.id):
                if worktree.status is WorktreeStatus.ACTIVE:
                    continue
                try:
                    manager.remove(worktree.path)
                except GitCommandError as error:
                    logger.warning("Could not remove worktree %s: %s", worktree.path, error)
                    failed.append(worktree.id)
                    continue
                removed.append(worktree.id)
        return _json_lines({"removed": removed, "failed": failed})

    # --- Tasks ---

    def list_tasks(self, command: ProjectRefCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            return _json_lines(repository.list_tasks(project_id=command.project_id))

    def start_task(self, command: TaskRefCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            task = _require_task(repository, command.project_id, command.task_number)
            if repository.start_task(task_id=task.id):
                repository.create_event(
                    project_id=command.project_id,
                    event_type=EventType.TASK_UPDATE,
                    details={"task": command.task_number, "status": TaskStatus.IN_PROGRESS.value},
                )
            return _json_lines(repository.get_task(task_id=task.id))

    def update_task(self, command: TaskUpdateCommand) -> list[str]:
        """Direct status write; bypasses the orchestrator's review gate."""

        status = TaskStatus(command.status)
        with _repository(_settings(command.db_path)) as repository:
            task = _require_task(repository, command.project_id, command.task_number)
            repository.update_task_status(task_id=task.id, status=status)
            repository.create_event(
                project_id=command.project_id,
                event_type=EventType.TASK_UPDATE,
                details={"task": command.task_number, "status": status.value},
            )
            return _json_lines(repository.get_task(task_id=task.id))

    def review_task(self, command: TaskReviewCommand) -> list[str]:
        """Record one review; approve the task once both reviews passed."""

        kind = ReviewKind(command.kind)
        verdict = "PASS" if command.passed else "FAIL"
        text = f"{verdict}: {command.feedback}" if command.feedback else verdict
        with _repository(_settings(command.db_path)) as repository:
            task = _require_task(repository, command.project_id, command.task_number)
            repository.set_task_review(task_id=task.id, kind=kind, result=text)
            updated = repository.get_task(task_id=task.id)
            if updated is not None and _both_reviews_passed(updated):
                repository.approve_task(task_id=task.id)
            repository.create_event(
                project_id=command.project_id,
                event_type=EventType.REVIEW,
                details={
                    "task": command.task_number,
                    "type": kind.value,
                    "result": "pass" if command.passed else "fail",
                },
            )
            return _json_lines(repository.get_task(task_id=task.id))

    def parse_tasks(self, command: TaskParseCommand) -> list[str]:
        parsed = parse_plan(
            command.plan_path.read_text("utf-8"),
            artifact_id=command.artifact_id,
            worktree_id=command.worktree_id,
        )
        with _repository(_settings(command.db_path)) as repository:
            tasks = repository.create_task_batch(project_id=command.project_id, tasks=parsed)
        return _json_lines(
            {
                "tasks_created": len(tasks),
                "tasks": [{"number": task.task_number, "title": task.title} for task in tasks],
            },
        )

    def task_batch(self, command: TaskRangeCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            tasks = repository.get_task_batch(
                project_id=command.project_id,
                start=command.start,
                end=command.end,
            )
        return _json_lines(tasks)

    # --- Phases and audit log ---

    def advance(self, command: ProjectRefCommand) -> tuple[list[str], bool]:
        with _repository(_settings(command.db_path)) as repository:
            result = PhaseStateMachine(repository).advance(command.project_id)
        return _json_lines(result), result.success

    def event_log(self, command: EventLogCommand) -> list[str]:
        with _repository(_settings(command.db_path)) as repository:
            events = repository.list_events(project_id=command.project_id, limit=command.limit)
        return _json_lines(events)

    # --- Orchestrator ---

    def orchestrator_status(self, command: ProjectRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            result = _orchestrator(repository, settings).status(command.project_id)
        return _json_lines(result)

    def orchestrator_progress(self, command: ProjectRefCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            message = _orchestrator(repository, settings).progress_message(command.project_id)
        return message.splitlines()

    def complete_task(self, command: CompleteTaskCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            task = _orchestrator(repository, settings).complete_task(
                command.project_id,
                command.task_number,
                CompletionResult(command.result),
                command.feedback,
            )
        return _json_lines(task)

    def start_batch(self, command: StartBatchCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            started = _orchestrator(repository, settings).start_batch(
                command.project_id,
                list(command.task_numbers),
            )
        return _json_lines({"requested": list(command.task_numbers), "started": started})

    def next_batch(self, command: NextBatchCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            batch = _orchestrator(repository, settings).get_next_batch(
                command.project_id,
                command.size,
            )
        if batch is None:
            return _json_lines(
                {"message": "No tasks ready to spawn (either all done or tasks in progress)"},
            )
        return _json_lines(batch)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _orchestrator(repository: GridRepository, settings: Settings) -> Orchestrator:
    return Orchestrator(repository, batch_size=settings.orchestrator.batch_size)


def _require_project(repository: GridRepository, project_id: str) -> ProjectView:
    project = repository.get_project(project_id=project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project not found: {project_id}")
    return project


def _require_task(repository: GridRepository, project_id: str, task_number: int) -> TaskView:
    task = repository.get_task_by_number(project_id=project_id, task_number=task_number)
    if task is None:
        raise TaskNotFoundError(f"Task {task_number} not found")
    return task


def _both_reviews_passed(task: TaskView) -> bool:
    return bool(
        task.spec_review
        and task.spec_review.startswith("PASS")
        and task.quality_review
        and task.quality_review.startswith("PASS"),
    )


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _jsonable(value: object) -> object:
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if hasattr(value, "__dataclass_fields__"):
        return asdict(value)  # type: ignore[arg-type]
    return value


def _json_lines(value: object) -> list[str]:
    return json.dumps(
        _jsonable(value),
        ensure_ascii=False,
        indent=2,
        default=_json_default,
    ).splitlines()


@contextmanager
def _repository(settings: Settings) -> Iterator[GridRepository]:
    repository = GridRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
