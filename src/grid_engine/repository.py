"""Persistent store for projects, artifacts, worktrees, tasks and events."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from grid_engine.models import (
    DEFAULT_MODEL_CONFIG,
    ArtifactStatus,
    ArtifactType,
    ArtifactView,
    EventType,
    EventView,
    Phase,
    ProjectView,
    ReviewKind,
    TaskCreate,
    TaskStatus,
    TaskView,
    WorktreeStatus,
    WorktreeView,
)
from grid_engine.storage.alembic_runner import upgrade_head
from grid_engine.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from grid_engine.storage.sqlmodel_models import (
    GridArtifact,
    GridEvent,
    GridProject,
    GridTask,
    GridWorktree,
)

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = frozenset({TaskStatus.APPROVED, TaskStatus.FAILED})


class GridRepository:
    """Store facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations. Idempotent, safe on every startup."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)
        logger.debug("Schema ready at %s", self.db_path)

    # --- Projects ---

    def create_project(self, *, name: str, repo_path: str) -> ProjectView:
        now = utc_now()
        with Session(self.engine) as session:
            row = GridProject(
                id=str(uuid4()),
                name=name,
                repo_path=repo_path,
                phase=Phase.BRAINSTORM.value,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_project_view(row)

    def get_project(self, *, project_id: str) -> ProjectView | None:
        """Return the project or ``None`` when it does not exist."""

        with Session(self.engine) as session:
            row = session.get(GridProject, project_id)
            return _to_project_view(row) if row is not None else None

    def list_projects(self) -> list[ProjectView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(GridProject).order_by(col(GridProject.created_at).desc()),
            ).all()
            return [_to_project_view(row) for row in rows]

    def update_project_phase(self, *, project_id: str, phase: Phase) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(GridProject)
                .where(col(GridProject.id) == project_id)
                .values(phase=phase.value, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()

    def set_model_config(self, *, project_id: str, config: Mapping[str, str]) -> None:
        """Replace per-phase model overrides for a project."""

        encoded = json.dumps(dict(config), ensure_ascii=False, sort_keys=True)
        with Session(self.engine) as session:
            row = session.get(GridProject, project_id)
            if row is None:
                return
            row.phase_models_json = encoded
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def get_model_for_phase(self, *, project_id: str, phase: Phase | str) -> str:
        """Return the project's model override for a phase, or the default model."""

        resolved = Phase(phase)
        project = self.get_project(project_id=project_id)
        if project is not None and project.model_config:
            override = project.model_config.get(resolved.value)
            if override:
                return override
        return DEFAULT_MODEL_CONFIG[resolved]

    # --- Artifacts ---

    def create_artifact(
        self,
        *,
        project_id: str,
        type: ArtifactType,  # noqa: A002
        content: str,
        file_path: str | None = None,
    ) -> ArtifactView:
        now = utc_now()
        with Session(self.engine) as session:
            row = GridArtifact(
                id=str(uuid4()),
                project_id=project_id,
                type=type.value,
                content=content,
                file_path=file_path,
                status=ArtifactStatus.DRAFT.value,
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_artifact_view(row)

    def get_artifact(self, *, artifact_id: str) -> ArtifactView | None:
        with Session(self.engine) as session:
            row = session.get(GridArtifact, artifact_id)
            return _to_artifact_view(row) if row is not None else None

    def list_artifacts(
        self,
        *,
        project_id: str,
        type: ArtifactType | None = None,  # noqa: A002
    ) -> list[ArtifactView]:
        with Session(self.engine) as session:
            statement = select(GridArtifact).where(GridArtifact.project_id == project_id)
            if type is not None:
                statement = statement.where(GridArtifact.type == type.value)
            rows = session.exec(statement.order_by(col(GridArtifact.created_at).asc())).all()
            return [_to_artifact_view(row) for row in rows]

    def update_artifact_status(
        self,
        *,
        artifact_id: str,
        status: ArtifactStatus,
        feedback: str | None = None,
    ) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(GridArtifact)
                .where(col(GridArtifact.id) == artifact_id)
                .values(
                    status=status.value,
                    feedback=feedback,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    # --- Worktrees ---

    def create_worktree(self, *, project_id: str, branch: str, path: str) -> WorktreeView:
        with Session(self.engine) as session:
            row = GridWorktree(
                id=str(uuid4()),
                project_id=project_id,
                branch=branch,
                path=path,
                status=WorktreeStatus.ACTIVE.value,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_worktree_view(row)

    def get_worktree(self, *, worktree_id: str) -> WorktreeView | None:
        with Session(self.engine) as session:
            row = session.get(GridWorktree, worktree_id)
            return _to_worktree_view(row) if row is not None else None

    def list_worktrees(self, *, project_id: str) -> list[WorktreeView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(GridWorktree)
                .where(GridWorktree.project_id == project_id)
                .order_by(col(GridWorktree.created_at).asc()),
            ).all()
            return [_to_worktree_view(row) for row in rows]

    def update_worktree_status(self, *, worktree_id: str, status: WorktreeStatus) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(GridWorktree)
                .where(col(GridWorktree.id) == worktree_id)
                .values(status=status.value),
            )
            session.commit()

    # --- Tasks ---

    def create_task(self, *, project_id: str, payload: TaskCreate) -> TaskView:
        return self.create_task_batch(project_id=project_id, tasks=[payload])[0]

    def create_task_batch(self, *, project_id: str, tasks: Sequence[TaskCreate]) -> list[TaskView]:
        """Insert all tasks in one transaction: every row lands or none does."""

        with Session(self.engine) as session:
            rows = [
                GridTask(
                    id=str(uuid4()),
                    project_id=project_id,
                    artifact_id=payload.artifact_id,
                    worktree_id=payload.worktree_id,
                    task_number=payload.task_number,
                    title=payload.title,
                    description=payload.description,
                    status=TaskStatus.PENDING.value,
                )
                for payload in tasks
            ]
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
            views = [_to_task_view(row) for row in rows]
        logger.info("Created %d task(s) for project %s", len(views), project_id)
        return views

    def get_task(self, *, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(GridTask, task_id)
            return _to_task_view(row) if row is not None else None

    def get_task_by_number(self, *, project_id: str, task_number: int) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(GridTask).where(
                    GridTask.project_id == project_id,
                    GridTask.task_number == task_number,
                ),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(self, *, project_id: str) -> list[TaskView]:
        """List project tasks in execution order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(GridTask)
                .where(GridTask.project_id == project_id)
                .order_by(col(GridTask.task_number).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def get_task_batch(self, *, project_id: str, start: int, end: int) -> list[TaskView]:
        """Tasks with ``start <= task_number <= end`` in execution order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(GridTask)
                .where(
                    GridTask.project_id == project_id,
                    col(GridTask.task_number) >= start,
                    col(GridTask.task_number) <= end,
                )
                .order_by(col(GridTask.task_number).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def start_task(self, *, task_id: str) -> bool:
        """Move a pending task to in-progress. Returns False when it was not pending."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GridTask)
                .where(
                    col(GridTask.id) == task_id,
                    col(GridTask.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.IN_PROGRESS.value,
                    started_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def update_task_status(self, *, task_id: str, status: TaskStatus) -> None:
        """Unconditional status write, used by direct board moves."""

        with Session(self.engine) as session:
            session.exec(
                sa_update(GridTask)
                .where(col(GridTask.id) == task_id)
                .values(**_status_values(status)),
            )
            session.commit()

    def transition_task_status(
        self,
        *,
        task_id: str,
        expected: TaskStatus,
        status: TaskStatus,
    ) -> bool:
        """Conditional status write. Returns False when the task left ``expected`` first."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GridTask)
                .where(
                    col(GridTask.id) == task_id,
                    col(GridTask.status) == expected.value,
                )
                .values(**_status_values(status)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def record_task_completion(
        self,
        *,
        project_id: str,
        task_id: str,
        status: TaskStatus,
        spec_review: str | None,
        quality_review: str | None,
        details: Mapping[str, Any],
    ) -> bool:
        """Move an in-progress task through done to ``status`` with its reviews and event.

        Everything commits together. Returns False, writing nothing, when the
        task was no longer in progress.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(GridTask)
                .where(
                    col(GridTask.id) == task_id,
                    col(GridTask.status) == TaskStatus.IN_PROGRESS.value,
                )
                .values(**_status_values(TaskStatus.DONE)),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            values = _status_values(status)
            if spec_review is not None:
                values["spec_review"] = spec_review
            if quality_review is not None:
                values["quality_review"] = quality_review
            session.exec(sa_update(GridTask).where(col(GridTask.id) == task_id).values(**values))
            session.add(
                GridEvent(
                    project_id=project_id,
                    event_type=EventType.TASK_UPDATE.value,
                    details_json=json.dumps(dict(details), ensure_ascii=False, sort_keys=True),
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
            return True

    def set_task_review(self, *, task_id: str, kind: ReviewKind, result: str) -> None:
        column = "spec_review" if ReviewKind(kind) is ReviewKind.SPEC else "quality_review"
        with Session(self.engine) as session:
            session.exec(
                sa_update(GridTask).where(col(GridTask.id) == task_id).values({column: result}),
            )
            session.commit()

    def approve_task(self, *, task_id: str) -> None:
        self.update_task_status(task_id=task_id, status=TaskStatus.APPROVED)

    def set_task_agent(self, *, task_id: str, session_key: str) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(GridTask)
                .where(col(GridTask.id) == task_id)
                .values(agent_session=session_key),
            )
            session.commit()

    # --- Events ---

    def create_event(
        self,
        *,
        project_id: str,
        event_type: EventType | str,
        details: Mapping[str, Any] | None = None,
    ) -> EventView:
        """Append one audit event."""

        with Session(self.engine) as session:
            row = GridEvent(
                project_id=project_id,
                event_type=event_type.value if isinstance(event_type, EventType) else event_type,
                details_json=(
                    json.dumps(dict(details), ensure_ascii=False, sort_keys=True)
                    if details is not None
                    else None
                ),
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_event_view(row)

    def list_events(self, *, project_id: str, limit: int | None = None) -> list[EventView]:
        """List events newest first. A falsy ``limit`` returns the whole trail."""

        with Session(self.engine) as session:
            statement = (
                select(GridEvent)
                .where(GridEvent.project_id == project_id)
                .order_by(col(GridEvent.id).desc())
            )
            if limit:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
            return [_to_event_view(row) for row in rows]


def _status_values(status: TaskStatus) -> dict[str, object]:
    values: dict[str, object] = {"status": status.value}
    if status in _TERMINAL_STATUSES:
        values["completed_at"] = to_db_datetime(utc_now())
    return values


def _optional_datetime(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None


def _decode_model_config(raw: str | None) -> dict[str, str] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        return None
    return {str(key): str(value) for key, value in parsed.items()}


def _to_project_view(row: GridProject) -> ProjectView:
    return ProjectView(
        id=row.id,
        name=row.name,
        repo_path=row.repo_path,
        phase=Phase(row.phase),
        model_config=_decode_model_config(row.phase_models_json),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_artifact_view(row: GridArtifact) -> ArtifactView:
    return ArtifactView(
        id=row.id,
        project_id=row.project_id,
        type=ArtifactType(row.type),
        content=row.content,
        file_path=row.file_path,
        status=ArtifactStatus(row.status),
        feedback=row.feedback,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_worktree_view(row: GridWorktree) -> WorktreeView:
    return WorktreeView(
        id=row.id,
        project_id=row.project_id,
        branch=row.branch,
        path=row.path,
        status=WorktreeStatus(row.status),
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_task_view(row: GridTask) -> TaskView:
    return TaskView(
        id=row.id,
        project_id=row.project_id,
        artifact_id=row.artifact_id,
        worktree_id=row.worktree_id,
        task_number=row.task_number,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        agent_session=row.agent_session,
        spec_review=row.spec_review,
        quality_review=row.quality_review,
        started_at=_optional_datetime(row.started_at),
        completed_at=_optional_datetime(row.completed_at),
    )


def _to_event_view(row: GridEvent) -> EventView:
    details = None
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return EventView(
        id=row.id or 0,
        project_id=row.project_id,
        event_type=row.event_type,
        created_at=to_utc_aware_datetime(row.created_at),
        details=details,
    )
