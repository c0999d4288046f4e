"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from grid_engine.models import TaskCreate
from grid_engine.orchestrator import Orchestrator
from grid_engine.repository import GridRepository

FIVE_TASKS = [
    TaskCreate(task_number=1, title="Scaffolding", description="Setup project"),
    TaskCreate(task_number=2, title="Server", description="Build server"),
    TaskCreate(task_number=3, title="Client", description="Build client"),
    TaskCreate(task_number=4, title="Integration", description="Wire up"),
    TaskCreate(task_number=5, title="Polish", description="Final touches"),
]


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[GridRepository]:
    """Fresh migrated store per test."""
    repo = GridRepository(tmp_path / "grid.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def project_id(repository: GridRepository) -> str:
    return repository.create_project(name="Test", repo_path="/tmp/test").id  # noqa: S108


@pytest.fixture()
def five_task_project(repository: GridRepository, project_id: str) -> str:
    """Project with five pending tasks."""
    repository.create_task_batch(project_id=project_id, tasks=FIVE_TASKS)
    return project_id


@pytest.fixture()
def orchestrator(repository: GridRepository) -> Orchestrator:
    return Orchestrator(repository)
