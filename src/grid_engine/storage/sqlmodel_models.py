"""SQLModel ORM tables for the orchestration store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class GridProject(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    name: str
    repo_path: str
    phase: str = "brainstorm"
    # pydantic reserves "model_config" and the "model_" prefix, so the attribute is renamed.
    phase_models_json: str | None = Field(
        default=None,
        sa_column=Column("model_config", Text, nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GridArtifact(SQLModel, table=True):
    __tablename__ = "artifacts"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id")
    type: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    file_path: str | None = None
    status: str = "draft"
    feedback: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GridWorktree(SQLModel, table=True):
    __tablename__ = "worktrees"  # type: ignore[bad-override]

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id")
    branch: str
    path: str
    status: str = "active"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class GridTask(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("project_id", "task_number", name="uq_tasks_project_number"),
    )

    id: str = Field(primary_key=True)
    project_id: str = Field(foreign_key="projects.id")
    artifact_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("artifacts.id"), nullable=True),
    )
    worktree_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("worktrees.id"), nullable=True),
    )
    task_number: int
    title: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    status: str = "pending"
    agent_session: str | None = None
    spec_review: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    quality_review: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class GridEvent(SQLModel, table=True):
    __tablename__ = "events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    project_id: str = Field(foreign_key="projects.id")
    event_type: str
    details_json: str | None = Field(
        default=None,
        sa_column=Column("details", Text, nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
