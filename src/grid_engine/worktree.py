"""Thin wrapper over ``git worktree`` for per-project execution checkouts."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from grid_engine.errors import GitCommandError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GitWorktree:
    path: str
    head: str | None = None
    branch: str | None = None


class WorktreeManager:
    """Creates worktrees next to the repository under ``.worktrees/<branch>``."""

    def __init__(self, repo_path: Path) -> None:
        self.repo_path = repo_path

    def create(self, branch: str) -> Path:
        worktree_path = self.repo_path.parent / ".worktrees" / branch.replace("/", "-")
        worktree_path.parent.mkdir(parents=True, exist_ok=True)
        self._git("worktree", "add", "-b", branch, str(worktree_path))
        return worktree_path

    def list(self) -> list[GitWorktree]:
        return parse_porcelain(self._git("worktree", "list", "--porcelain"))

    def remove(self, worktree_path: str) -> None:
        self._git("worktree", "remove", worktree_path, "--force")

    def _git(self, *args: str) -> str:
        logger.debug("git %s (cwd=%s)", " ".join(args), self.repo_path)
        try:
            completed = subprocess.run(  # noqa: S603
                ["git", *args],  # noqa: S607
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            raise GitCommandError(
                f"Failed to run git: {error}",
                metadata={"args": list(args)},
            ) from error
        if completed.returncode != 0:
            raise GitCommandError(
                f"git {' '.join(args)} failed: {completed.stderr.strip()}",
                metadata={"args": list(args), "exit_code": completed.returncode},
            )
        return completed.stdout


def parse_porcelain(output: str) -> list[GitWorktree]:
    """Parse ``git worktree list --porcelain`` blocks."""

    worktrees: list[GitWorktree] = []
    current: GitWorktree | None = None
    for line in output.splitlines():
        if line.startswith("worktree "):
            if current is not None:
                worktrees.append(current)
            current = GitWorktree(path=line[len("worktree ") :])
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[len("HEAD ") :]
        elif line.startswith("branch "):
            current.branch = line[len("branch ") :].removeprefix("refs/heads/")
        elif not line:
            worktrees.append(current)
            current = None
    if current is not None:
        worktrees.append(current)
    return worktrees
