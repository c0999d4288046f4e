from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner

from grid_engine.main import grid
from grid_engine.repository import GridRepository

pytestmark = [
    allure.epic("Platform"),
    allure.feature("CLI Flows"),
]

PLAN = """# Plan

### Task 1: Scaffolding
Create the layout.

### Task 2: Server
Build the server.
"""


def _invoke(runner: CliRunner, db_path: Path, *args: str):
    group, command, *rest = args
    return runner.invoke(grid, [group, command, "--db-path", str(db_path), *rest])


def _create_project(runner: CliRunner, db_path: Path, repo: Path) -> str:
    result = _invoke(runner, db_path, "project", "create", "--name", "Demo", "--repo", str(repo))
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)["id"]


def test_cli_execute_flow(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    project_id = _create_project(runner, db_path, tmp_path)

    plan_file = tmp_path / "plan.md"
    plan_file.write_text(PLAN, encoding="utf-8")
    parsed = _invoke(runner, db_path, "task", "parse", project_id, "--file", str(plan_file))
    assert parsed.exit_code == 0, parsed.output
    assert json.loads(parsed.stdout)["tasks_created"] == 2

    status = _invoke(runner, db_path, "orch", "status", project_id)
    assert status.exit_code == 0, status.output
    payload = json.loads(status.stdout)
    assert payload["action"] == "spawn_batch"
    assert [task["task_number"] for task in payload["batch"]["tasks"]] == [1, 2]

    started = _invoke(runner, db_path, "orch", "start-batch", project_id, "--tasks", "1,2")
    assert json.loads(started.stdout) == {"requested": [1, 2], "started": [1, 2]}

    waiting = _invoke(runner, db_path, "orch", "next", project_id)
    assert "No tasks ready to spawn" in json.loads(waiting.stdout)["message"]

    for number in ("1", "2"):
        completed = _invoke(runner, db_path, "orch", "complete", project_id, number)
        assert completed.exit_code == 0, completed.output
        assert json.loads(completed.stdout)["status"] == "approved"

    done = _invoke(runner, db_path, "orch", "status", project_id)
    assert json.loads(done.stdout)["action"] == "all_done"

    conflict = _invoke(runner, db_path, "orch", "complete", project_id, "1")
    assert conflict.exit_code == 1
    assert "not in progress" in conflict.output

    progress = _invoke(runner, db_path, "orch", "progress", project_id)
    assert progress.stdout.splitlines()[:2] == ["**Demo** — 2/2", "🟢🟢"]


def test_cli_review_approves_after_both_passes(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    project_id = _create_project(runner, db_path, tmp_path)
    plan_file = tmp_path / "plan.md"
    plan_file.write_text(PLAN, encoding="utf-8")
    _invoke(runner, db_path, "task", "parse", project_id, "--file", str(plan_file))

    updated = _invoke(runner, db_path, "task", "update", project_id, "1", "--status", "review")
    assert json.loads(updated.stdout)["status"] == "review"

    spec = _invoke(
        runner, db_path, "task", "review", project_id, "1", "--type", "spec", "--result", "pass",
    )
    assert json.loads(spec.stdout)["status"] == "review"
    quality = _invoke(
        runner,
        db_path,
        "task",
        "review",
        project_id,
        "1",
        "--type",
        "quality",
        "--result",
        "pass",
        "--feedback",
        "clean",
    )
    task = json.loads(quality.stdout)
    assert task["status"] == "approved"
    assert task["quality_review"] == "PASS: clean"


def test_cli_phase_advance_and_log(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    project_id = _create_project(runner, db_path, tmp_path)

    blocked = runner.invoke(grid, ["advance", "--db-path", str(db_path), project_id])
    assert blocked.exit_code == 1
    assert json.loads(blocked.stdout)["reason"] == "Need at least one approved design artifact"

    created = _invoke(
        runner, db_path, "artifact", "create", project_id, "--type", "design", "--content", "# D",
    )
    artifact_id = json.loads(created.stdout)["id"]
    approved = _invoke(runner, db_path, "artifact", "approve", project_id, artifact_id)
    assert json.loads(approved.stdout)["status"] == "approved"

    advanced = runner.invoke(grid, ["advance", "--db-path", str(db_path), project_id])
    assert advanced.exit_code == 0, advanced.output
    assert json.loads(advanced.stdout)["to_phase"] == "design"

    phase = _invoke(runner, db_path, "project", "phase", project_id)
    assert json.loads(phase.stdout)["phase"] == "design"

    log = runner.invoke(grid, ["log", "--db-path", str(db_path), project_id, "--limit", "2"])
    events = json.loads(log.stdout)
    assert [event["event_type"] for event in events] == ["phase_change", "approval"]


def test_cli_model_override(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    project_id = _create_project(runner, db_path, tmp_path)

    default = _invoke(runner, db_path, "project", "model", project_id, "--phase", "execute")
    assert json.loads(default.stdout)["model"] == "sonnet"

    _invoke(
        runner,
        db_path,
        "project",
        "set-model",
        project_id,
        "--phase",
        "execute",
        "--model",
        "opus",
    )
    override = _invoke(runner, db_path, "project", "model", project_id, "--phase", "execute")
    assert json.loads(override.stdout)["model"] == "opus"


def test_cli_missing_project_exits_with_not_found(tmp_path: Path) -> None:
    runner = CliRunner()

    result = _invoke(runner, tmp_path / "cli.db", "orch", "status", "missing")

    assert result.exit_code == 2
    assert "Project not found: missing" in result.output


def test_cli_worktree_mark_and_cleanup_reports_git_failures(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    runner = CliRunner()
    project_id = _create_project(runner, db_path, tmp_path / "not-a-repo")
    repository = GridRepository(db_path)
    worktree = repository.create_worktree(
        project_id=project_id,
        branch="grid/exec",
        path=str(tmp_path / ".worktrees" / "grid-exec"),
    )
    repository.close()

    marked = _invoke(
        runner, db_path, "worktree", "mark", project_id, worktree.id, "--status", "discarded",
    )
    assert marked.exit_code == 0, marked.output
    assert json.loads(marked.stdout)["status"] == "discarded"

    cleanup = _invoke(runner, db_path, "worktree", "cleanup", project_id)
    assert cleanup.exit_code == 0, cleanup.output
    assert json.loads(cleanup.stdout) == {"removed": [], "failed": [worktree.id]}

    missing = _invoke(
        runner, db_path, "worktree", "mark", project_id, "missing", "--status", "merged",
    )
    assert missing.exit_code == 2
