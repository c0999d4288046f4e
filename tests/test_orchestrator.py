from __future__ import annotations

import allure
import pytest

from grid_engine.errors import ProjectNotFoundError, TaskNotFoundError, TaskStateConflictError
from grid_engine.models import TaskCreate, TaskStatus
from grid_engine.notifications import CallbackAction, parse_grid_callback
from grid_engine.orchestrator import CompletionResult, OrchestrateAction, Orchestrator
from grid_engine.repository import GridRepository

pytestmark = [
    allure.epic("Execute Phase"),
    allure.feature("Batch Orchestration"),
]


def _pass(orchestrator: Orchestrator, project_id: str, *numbers: int) -> None:
    orchestrator.start_batch(project_id, list(numbers))
    for number in numbers:
        orchestrator.complete_task(project_id, number, CompletionResult.PASS)


def test_first_batch_for_five_pending_tasks(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    batch = orchestrator.get_next_batch(five_task_project)

    assert batch is not None
    assert batch.task_numbers == [1, 2, 3]
    assert batch.parallel is True
    assert batch.batch_number == 1

    single = orchestrator.get_next_batch(five_task_project, batch_size=1)
    assert single is not None
    assert single.task_numbers == [1]
    assert single.parallel is False


def test_status_recommends_spawn_with_launch_buttons(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    result = orchestrator.status(five_task_project)

    assert result.action is OrchestrateAction.SPAWN_BATCH
    assert result.batch is not None
    assert result.message == "🚀 Batch 1: Tasks 1, 2, 3 ready to spawn (0/5 done)"
    launch = parse_grid_callback(result.buttons[0][0].callback_data)
    assert launch is not None
    assert launch.action is CallbackAction.BATCH
    assert launch.target_id == five_task_project
    assert launch.task_numbers() == [1, 2, 3]


def test_in_progress_tasks_block_next_batch(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    started = orchestrator.start_batch(five_task_project, [1, 2, 3])

    assert started == [1, 2, 3]
    assert orchestrator.get_next_batch(five_task_project) is None
    result = orchestrator.status(five_task_project)
    assert result.action is OrchestrateAction.WAITING
    assert result.message == "⏳ 3 task(s) in progress (0/5 done)"
    assert result.buttons == []


def test_start_batch_skips_non_pending_and_unknown(
    repository: GridRepository,
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    orchestrator.start_batch(five_task_project, [1])

    started = orchestrator.start_batch(five_task_project, [1, 2, 99])

    assert started == [2]
    events = repository.list_events(project_id=five_task_project)
    assert [event.details for event in events] == [
        {"task": 2, "status": "in-progress"},
        {"task": 1, "status": "in-progress"},
    ]


def test_second_batch_after_first_passes(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    _pass(orchestrator, five_task_project, 1, 2, 3)

    result = orchestrator.status(five_task_project)

    assert result.action is OrchestrateAction.SPAWN_BATCH
    assert result.batch is not None
    assert result.batch.task_numbers == [4, 5]
    assert result.batch.batch_number == 2
    assert result.total_progress.done == 3


def test_pass_completion_records_reviews_and_approves(
    repository: GridRepository,
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    orchestrator.start_batch(five_task_project, [1])

    task = orchestrator.complete_task(five_task_project, 1, "pass", "all green")

    assert task.status is TaskStatus.APPROVED
    assert task.spec_review == "PASS: Subagent completed successfully. all green"
    assert task.quality_review == "PASS: Auto-reviewed. all green"
    assert task.completed_at is not None
    latest = repository.list_events(project_id=five_task_project, limit=1)[0]
    assert latest.details == {"task": 1, "status": "approved", "feedback": "all green"}


def test_fail_completion_records_spec_review_and_fails(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    orchestrator.start_batch(five_task_project, [1, 2])

    failed = orchestrator.complete_task(five_task_project, 1, CompletionResult.FAIL)
    explained = orchestrator.complete_task(five_task_project, 2, "fail", "tests broke")

    assert failed.status is TaskStatus.FAILED
    assert failed.spec_review == "FAIL: Subagent reported failure"
    assert failed.quality_review is None
    assert explained.spec_review == "FAIL: tests broke"


def test_complete_requires_in_progress_task(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    with pytest.raises(TaskStateConflictError):
        orchestrator.complete_task(five_task_project, 1, CompletionResult.PASS)

    orchestrator.start_batch(five_task_project, [1])
    orchestrator.complete_task(five_task_project, 1, CompletionResult.PASS)
    with pytest.raises(TaskStateConflictError):
        orchestrator.complete_task(five_task_project, 1, CompletionResult.FAIL)


def test_complete_unknown_task(orchestrator: Orchestrator, five_task_project: str) -> None:
    with pytest.raises(TaskNotFoundError):
        orchestrator.complete_task(five_task_project, 42, CompletionResult.PASS)


def test_unknown_project_is_reported(orchestrator: Orchestrator) -> None:
    with pytest.raises(ProjectNotFoundError):
        orchestrator.status("missing")
    with pytest.raises(ProjectNotFoundError):
        orchestrator.progress_message("missing")


def test_all_done_offers_advance(orchestrator: Orchestrator, five_task_project: str) -> None:
    _pass(orchestrator, five_task_project, 1, 2, 3)
    _pass(orchestrator, five_task_project, 4, 5)

    result = orchestrator.status(five_task_project)

    assert result.action is OrchestrateAction.ALL_DONE
    assert result.message == "🔴 All 5 tasks complete! Ready to advance to review phase."
    advance = parse_grid_callback(result.buttons[0][0].callback_data)
    assert advance is not None
    assert advance.action is CallbackAction.ADVANCE
    assert orchestrator.get_next_batch(five_task_project) is None


def test_failed_task_leads_to_checkpoint(
    orchestrator: Orchestrator,
    five_task_project: str,
) -> None:
    _pass(orchestrator, five_task_project, 1, 2, 3)
    orchestrator.start_batch(five_task_project, [4, 5])
    orchestrator.complete_task(five_task_project, 4, CompletionResult.PASS)
    orchestrator.complete_task(five_task_project, 5, CompletionResult.FAIL)

    result = orchestrator.status(five_task_project)

    assert result.action is OrchestrateAction.CHECKPOINT
    assert result.message == "📊 Checkpoint: 4/5 tasks complete"


def test_project_without_tasks_is_a_checkpoint(
    orchestrator: Orchestrator,
    project_id: str,
) -> None:
    result = orchestrator.status(project_id)

    assert result.action is OrchestrateAction.CHECKPOINT
    assert result.total_progress.total == 0


def test_done_counts_as_complete_without_approval(
    repository: GridRepository,
    orchestrator: Orchestrator,
    project_id: str,
) -> None:
    task = repository.create_task(
        project_id=project_id,
        payload=TaskCreate(task_number=1, title="Only", description="one"),
    )
    repository.update_task_status(task_id=task.id, status=TaskStatus.DONE)

    assert orchestrator.status(project_id).action is OrchestrateAction.ALL_DONE


def test_progress_message(orchestrator: Orchestrator, five_task_project: str) -> None:
    _pass(orchestrator, five_task_project, 1)
    orchestrator.start_batch(five_task_project, [2])
    orchestrator.start_batch(five_task_project, [3])
    orchestrator.complete_task(five_task_project, 3, CompletionResult.FAIL)

    lines = orchestrator.progress_message(five_task_project).splitlines()

    assert lines[0] == "**Test** — 1/5"
    assert lines[1] == "🟢🔵🔴⚪⚪"
    assert lines[2:] == [
        "✅ #1 Scaffolding",
        "🔄 #2 Server",
        "❌ #3 Client",
        "⏳ #4 Integration",
        "⏳ #5 Polish",
    ]


@pytest.mark.parametrize("size", [0, -1])
def test_batch_size_must_be_positive(
    repository: GridRepository,
    orchestrator: Orchestrator,
    five_task_project: str,
    size: int,
) -> None:
    with pytest.raises(ValueError, match="batch_size"):
        orchestrator.get_next_batch(five_task_project, batch_size=size)
    with pytest.raises(ValueError, match="batch_size"):
        Orchestrator(repository, batch_size=size)
