"""Domain models for project orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Phase(str, Enum):
    """Ordered project lifecycle phases."""

    BRAINSTORM = "brainstorm"
    DESIGN = "design"
    PLAN = "plan"
    EXECUTE = "execute"
    REVIEW = "review"
    DONE = "done"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)


class ArtifactType(str, Enum):
    """Reviewable documents produced before execution."""

    DESIGN = "design"
    PLAN = "plan"


class ArtifactStatus(str, Enum):
    """Artifact review states."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class WorktreeStatus(str, Enum):
    """Worktree lifecycle states."""

    ACTIVE = "active"
    MERGED = "merged"
    DISCARDED = "discarded"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    DONE = "done"
    APPROVED = "approved"
    FAILED = "failed"


COMPLETED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.APPROVED})


class ReviewKind(str, Enum):
    """Review gates recorded on a task."""

    SPEC = "spec"
    QUALITY = "quality"


class EventType(str, Enum):
    """Audit event categories."""

    PHASE_CHANGE = "phase_change"
    APPROVAL = "approval"
    TASK_UPDATE = "task_update"
    REVIEW = "review"


DEFAULT_MODEL_CONFIG: dict[Phase, str] = {
    Phase.BRAINSTORM: "opus",
    Phase.DESIGN: "opus",
    Phase.PLAN: "opus",
    Phase.EXECUTE: "sonnet",
    Phase.REVIEW: "opus",
    Phase.DONE: "sonnet",
}


@dataclass(slots=True)
class ProjectView:
    """Project row with decoded model config."""

    id: str
    name: str
    repo_path: str
    phase: Phase
    model_config: dict[str, str] | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ArtifactView:
    """Design or plan document attached to a project."""

    id: str
    project_id: str
    type: ArtifactType
    content: str
    file_path: str | None
    status: ArtifactStatus
    feedback: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class WorktreeView:
    """Isolated checkout registered for a project."""

    id: str
    project_id: str
    branch: str
    path: str
    status: WorktreeStatus
    created_at: datetime


@dataclass(slots=True)
class TaskCreate:
    """Input payload for one task insert."""

    task_number: int
    title: str
    description: str
    artifact_id: str | None = None
    worktree_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for orchestrator and CLI."""

    id: str
    project_id: str
    artifact_id: str | None
    worktree_id: str | None
    task_number: int
    title: str
    description: str
    status: TaskStatus
    agent_session: str | None
    spec_review: str | None
    quality_review: str | None
    started_at: datetime | None
    completed_at: datetime | None


@dataclass(slots=True)
class EventView:
    """Append-only audit trail entry."""

    id: int
    project_id: str
    event_type: str
    created_at: datetime
    details: dict[str, Any] | None = field(default=None)
