"""Project phase transitions guarded by per-phase gates."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from grid_engine.models import (
    PHASE_ORDER,
    ArtifactStatus,
    ArtifactType,
    EventType,
    Phase,
    TaskStatus,
    WorktreeStatus,
)
from grid_engine.repository import GridRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AdvanceResult:
    success: bool
    from_phase: Phase | None = None
    to_phase: Phase | None = None
    reason: str | None = None


@dataclass(slots=True)
class GateCheck:
    passed: bool
    reason: str | None = None


class PhaseStateMachine:
    """Moves a project one phase forward once the current phase's gate passes."""

    def __init__(self, repository: GridRepository) -> None:
        self.repository = repository

    def advance(self, project_id: str) -> AdvanceResult:
        project = self.repository.get_project(project_id=project_id)
        if project is None:
            return AdvanceResult(success=False, reason="Project not found")

        index = PHASE_ORDER.index(project.phase)
        if index == len(PHASE_ORDER) - 1:
            return AdvanceResult(
                success=False,
                from_phase=project.phase,
                reason="Project is already done",
            )

        gate = self.check_gate(project_id, project.phase)
        if not gate.passed:
            return AdvanceResult(success=False, from_phase=project.phase, reason=gate.reason)

        next_phase = PHASE_ORDER[index + 1]
        self.repository.update_project_phase(project_id=project_id, phase=next_phase)
        self.repository.create_event(
            project_id=project_id,
            event_type=EventType.PHASE_CHANGE,
            details={"from": project.phase.value, "to": next_phase.value},
        )
        logger.info("Project %s: %s -> %s", project_id, project.phase.value, next_phase.value)
        return AdvanceResult(success=True, from_phase=project.phase, to_phase=next_phase)

    def check_gate(self, project_id: str, phase: Phase) -> GateCheck:  # noqa: PLR0911
        if phase is Phase.BRAINSTORM:
            designs = self.repository.list_artifacts(
                project_id=project_id,
                type=ArtifactType.DESIGN,
            )
            if not any(artifact.status is ArtifactStatus.APPROVED for artifact in designs):
                return GateCheck(False, "Need at least one approved design artifact")
            return GateCheck(True)

        if phase is Phase.DESIGN:
            designs = self.repository.list_artifacts(
                project_id=project_id,
                type=ArtifactType.DESIGN,
            )
            if not designs or any(a.status is not ArtifactStatus.APPROVED for a in designs):
                return GateCheck(False, "All design artifacts must be approved")
            return GateCheck(True)

        if phase is Phase.PLAN:
            plans = self.repository.list_artifacts(project_id=project_id, type=ArtifactType.PLAN)
            if not any(artifact.status is ArtifactStatus.APPROVED for artifact in plans):
                return GateCheck(False, "Need an approved plan artifact")
            worktrees = self.repository.list_worktrees(project_id=project_id)
            if not any(worktree.status is WorktreeStatus.ACTIVE for worktree in worktrees):
                return GateCheck(False, "Need an active worktree")
            return GateCheck(True)

        if phase is Phase.EXECUTE:
            tasks = self.repository.list_tasks(project_id=project_id)
            if not tasks:
                return GateCheck(False, "No tasks found")
            if any(task.status is not TaskStatus.APPROVED for task in tasks):
                return GateCheck(
                    False,
                    "All tasks must be approved (spec + quality reviews passed)",
                )
            return GateCheck(True)

        if phase is Phase.REVIEW:
            return GateCheck(True)

        return GateCheck(False, f"Unknown phase: {phase.value}")
