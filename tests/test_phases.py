from __future__ import annotations

import allure

from grid_engine.models import ArtifactStatus, ArtifactType, Phase, TaskCreate, TaskStatus
from grid_engine.phases import PhaseStateMachine
from grid_engine.repository import GridRepository

pytestmark = [
    allure.epic("Project Lifecycle"),
    allure.feature("Phase Gates"),
]


def _approved_artifact(repository: GridRepository, project_id: str, kind: ArtifactType) -> str:
    artifact = repository.create_artifact(project_id=project_id, type=kind, content="# doc")
    repository.update_artifact_status(artifact_id=artifact.id, status=ArtifactStatus.APPROVED)
    return artifact.id


def test_brainstorm_needs_approved_design(repository: GridRepository, project_id: str) -> None:
    machine = PhaseStateMachine(repository)

    blocked = machine.advance(project_id)
    assert blocked.success is False
    assert blocked.from_phase is Phase.BRAINSTORM
    assert blocked.reason == "Need at least one approved design artifact"

    _approved_artifact(repository, project_id, ArtifactType.DESIGN)
    advanced = machine.advance(project_id)

    assert advanced.success is True
    assert advanced.to_phase is Phase.DESIGN
    event = repository.list_events(project_id=project_id, limit=1)[0]
    assert event.event_type == "phase_change"
    assert event.details == {"from": "brainstorm", "to": "design"}


def test_design_needs_every_design_approved(repository: GridRepository, project_id: str) -> None:
    machine = PhaseStateMachine(repository)
    repository.update_project_phase(project_id=project_id, phase=Phase.DESIGN)
    _approved_artifact(repository, project_id, ArtifactType.DESIGN)
    repository.create_artifact(project_id=project_id, type=ArtifactType.DESIGN, content="v2")

    result = machine.advance(project_id)

    assert result.success is False
    assert result.reason == "All design artifacts must be approved"


def test_plan_needs_plan_and_active_worktree(repository: GridRepository, project_id: str) -> None:
    machine = PhaseStateMachine(repository)
    repository.update_project_phase(project_id=project_id, phase=Phase.PLAN)
    _approved_artifact(repository, project_id, ArtifactType.PLAN)

    assert machine.advance(project_id).reason == "Need an active worktree"

    repository.create_worktree(project_id=project_id, branch="grid/exec", path="/wt")
    result = machine.advance(project_id)

    assert result.success is True
    assert result.to_phase is Phase.EXECUTE


def test_execute_needs_all_tasks_approved(repository: GridRepository, project_id: str) -> None:
    machine = PhaseStateMachine(repository)
    repository.update_project_phase(project_id=project_id, phase=Phase.EXECUTE)

    assert machine.advance(project_id).reason == "No tasks found"

    tasks = repository.create_task_batch(
        project_id=project_id,
        tasks=[
            TaskCreate(task_number=1, title="A", description="a"),
            TaskCreate(task_number=2, title="B", description="b"),
        ],
    )
    repository.approve_task(task_id=tasks[0].id)
    repository.update_task_status(task_id=tasks[1].id, status=TaskStatus.DONE)
    assert machine.advance(project_id).success is False

    repository.approve_task(task_id=tasks[1].id)
    assert machine.advance(project_id).to_phase is Phase.REVIEW


def test_review_advances_to_done_which_is_terminal(
    repository: GridRepository,
    project_id: str,
) -> None:
    machine = PhaseStateMachine(repository)
    repository.update_project_phase(project_id=project_id, phase=Phase.REVIEW)

    assert machine.advance(project_id).to_phase is Phase.DONE

    terminal = machine.advance(project_id)
    assert terminal.success is False
    assert terminal.reason == "Project is already done"


def test_unknown_project_cannot_advance(repository: GridRepository) -> None:
    result = PhaseStateMachine(repository).advance("missing")

    assert result.success is False
    assert result.reason == "Project not found"
