"""Error types raised by the orchestration engine."""

from __future__ import annotations

from typing import Any


class GridError(RuntimeError):
    """Base error for engine components. Carries metadata for structured logging."""

    def __init__(self, message: str, *, metadata: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.metadata = metadata or {}


class ProjectNotFoundError(GridError):
    """Raised when an operation requires a project that does not exist."""


class TaskNotFoundError(GridError):
    """Raised when a task number is unknown within a project."""


class TaskStateConflictError(GridError):
    """Raised when a conditional task transition loses against a concurrent writer."""


class GitCommandError(GridError):
    """Raised when git worktree commands fail."""


class WorktreeNotFoundError(GridError):
    """Raised when a worktree id is unknown within a project."""
