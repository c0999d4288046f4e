"""Execute-phase orchestration: batch scheduling, review gating and chat messaging.

The orchestrator holds no state of its own. Each call reads the project's
tasks through the repository, decides, and writes status changes back
together with ``task_update`` audit events. A new batch is only offered once
no task is in progress, so a task that never completes stalls scheduling
for its project.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from grid_engine.errors import ProjectNotFoundError, TaskNotFoundError, TaskStateConflictError
from grid_engine.models import (
    COMPLETED_STATUSES,
    EventType,
    ProjectView,
    TaskStatus,
    TaskView,
)
from grid_engine.notifications import ButtonRows, advance_buttons, launch_batch_buttons
from grid_engine.repository import GridRepository

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3


class OrchestrateAction(str, Enum):
    """Instruction returned to the driver."""

    SPAWN_BATCH = "spawn_batch"
    WAITING = "waiting"
    ALL_DONE = "all_done"
    CHECKPOINT = "checkpoint"


class CompletionResult(str, Enum):
    PASS = "pass"  # noqa: S105
    FAIL = "fail"


@dataclass(slots=True)
class Progress:
    done: int
    total: int
    pending: int
    in_progress: int


@dataclass(slots=True)
class BatchPlan:
    """Contiguous run of pending tasks to dispatch together."""

    batch_number: int
    tasks: list[TaskView]
    parallel: bool

    @property
    def task_numbers(self) -> list[int]:
        return [task.task_number for task in self.tasks]


@dataclass(slots=True)
class OrchestrateResult:
    """Decision plus the chat message and buttons describing it."""

    action: OrchestrateAction
    total_progress: Progress
    message: str
    batch: BatchPlan | None = None
    buttons: ButtonRows = field(default_factory=list)


class Orchestrator:
    """Computes scheduling and review-gating decisions for one project at a time."""

    def __init__(self, repository: GridRepository, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.repository = repository
        self.batch_size = _checked_batch_size(batch_size)

    def get_progress(self, project_id: str) -> Progress:
        return _progress(self.repository.list_tasks(project_id=project_id))

    def start_batch(self, project_id: str, task_numbers: list[int]) -> list[int]:
        """Mark pending tasks in-progress; others are skipped. Returns the numbers started."""

        by_number = {
            task.task_number: task for task in self.repository.list_tasks(project_id=project_id)
        }
        started: list[int] = []
        for number in task_numbers:
            task = by_number.get(number)
            if task is None or task.status is not TaskStatus.PENDING:
                continue
            if not self.repository.start_task(task_id=task.id):
                continue
            self.repository.create_event(
                project_id=project_id,
                event_type=EventType.TASK_UPDATE,
                details={"task": number, "status": TaskStatus.IN_PROGRESS.value},
            )
            started.append(number)
        logger.info("Project %s: started tasks %s", project_id, started)
        return started

    def complete_task(
        self,
        project_id: str,
        task_number: int,
        result: CompletionResult | str,
        feedback: str | None = None,
    ) -> TaskView:
        """Record an agent outcome: done, then reviews, then approved or failed."""

        outcome = CompletionResult(result)
        task = self.repository.get_task_by_number(project_id=project_id, task_number=task_number)
        if task is None:
            raise TaskNotFoundError(
                f"Task {task_number} not found",
                metadata={"project_id": project_id, "task_number": task_number},
            )

        suffix = feedback or ""
        if outcome is CompletionResult.PASS:
            final_status = TaskStatus.APPROVED
            spec_review = f"PASS: Subagent completed successfully. {suffix}".strip()
            quality_review: str | None = f"PASS: Auto-reviewed. {suffix}".strip()
        else:
            final_status = TaskStatus.FAILED
            spec_review = f"FAIL: {feedback or 'Subagent reported failure'}"
            quality_review = None

        recorded = self.repository.record_task_completion(
            project_id=project_id,
            task_id=task.id,
            status=final_status,
            spec_review=spec_review,
            quality_review=quality_review,
            details={"task": task_number, "status": final_status.value, "feedback": feedback},
        )
        if not recorded:
            raise TaskStateConflictError(
                f"Task {task_number} is not in progress (status={task.status.value}); "
                "it may have been completed concurrently.",
                metadata={"project_id": project_id, "task_number": task_number},
            )
        logger.info("Project %s: task %d -> %s", project_id, task_number, final_status.value)

        updated = self.repository.get_task(task_id=task.id)
        if updated is None:
            raise TaskNotFoundError(f"Task {task_number} disappeared after completion")
        return updated

    def get_next_batch(self, project_id: str, batch_size: int | None = None) -> BatchPlan | None:
        """Next contiguous group of pending tasks, or None while any task is in progress."""

        size = _checked_batch_size(self.batch_size if batch_size is None else batch_size)
        tasks = self.repository.list_tasks(project_id=project_id)
        if any(task.status is TaskStatus.IN_PROGRESS for task in tasks):
            return None

        pending = [task for task in tasks if task.status is TaskStatus.PENDING]
        if not pending:
            return None

        batch = pending[:size]
        return BatchPlan(
            batch_number=math.ceil((len(tasks) - len(pending)) / size) + 1,
            tasks=batch,
            parallel=len(batch) > 1,
        )

    def status(self, project_id: str) -> OrchestrateResult:
        """Classify the project and recommend the next action."""

        self._require_project(project_id)
        progress = self.get_progress(project_id)

        if progress.total > 0 and progress.done == progress.total:
            return OrchestrateResult(
                action=OrchestrateAction.ALL_DONE,
                total_progress=progress,
                message=(
                    f"🔴 All {progress.total} tasks complete! "
                    "Ready to advance to review phase."
                ),
                buttons=advance_buttons(project_id),
            )

        if progress.in_progress > 0:
            return OrchestrateResult(
                action=OrchestrateAction.WAITING,
                total_progress=progress,
                message=(
                    f"⏳ {progress.in_progress} task(s) in progress "
                    f"({progress.done}/{progress.total} done)"
                ),
            )

        batch = self.get_next_batch(project_id)
        if batch is not None:
            numbers = batch.task_numbers
            return OrchestrateResult(
                action=OrchestrateAction.SPAWN_BATCH,
                total_progress=progress,
                batch=batch,
                message=(
                    f"🚀 Batch {batch.batch_number}: Tasks {', '.join(map(str, numbers))} "
                    f"ready to spawn ({progress.done}/{progress.total} done)"
                ),
                buttons=launch_batch_buttons(project_id, batch.batch_number, numbers),
            )

        return OrchestrateResult(
            action=OrchestrateAction.CHECKPOINT,
            total_progress=progress,
            message=f"📊 Checkpoint: {progress.done}/{progress.total} tasks complete",
        )

    def progress_message(self, project_id: str) -> str:
        """Progress bar plus one line per task, for posting into a chat channel."""

        project = self._require_project(project_id)
        tasks = self.repository.list_tasks(project_id=project_id)
        progress = _progress(tasks)

        bar = "".join(_BAR_GLYPHS.get(task.status, "⚪") for task in tasks)
        lines = [f"**{project.name}** — {progress.done}/{progress.total}", bar]
        lines.extend(
            f"{_TASK_ICONS.get(task.status, '⏳')} #{task.task_number} {task.title}"
            for task in tasks
        )
        return "\n".join(lines)

    def _require_project(self, project_id: str) -> ProjectView:
        project = self.repository.get_project(project_id=project_id)
        if project is None:
            raise ProjectNotFoundError(
                f"Project not found: {project_id}",
                metadata={"project_id": project_id},
            )
        return project


_BAR_GLYPHS = {
    TaskStatus.DONE: "🟢",
    TaskStatus.APPROVED: "🟢",
    TaskStatus.IN_PROGRESS: "🔵",
    TaskStatus.FAILED: "🔴",
}

_TASK_ICONS = {
    TaskStatus.DONE: "✅",
    TaskStatus.APPROVED: "✅",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.FAILED: "❌",
}


def _checked_batch_size(size: int) -> int:
    if size < 1:
        raise ValueError(f"batch_size must be >= 1, got {size}")
    return size


def _progress(tasks: list[TaskView]) -> Progress:
    return Progress(
        done=sum(1 for task in tasks if task.status in COMPLETED_STATUSES),
        total=len(tasks),
        pending=sum(1 for task in tasks if task.status is TaskStatus.PENDING),
        in_progress=sum(1 for task in tasks if task.status is TaskStatus.IN_PROGRESS),
    )
