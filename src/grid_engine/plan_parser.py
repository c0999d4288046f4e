"""Extract numbered tasks from a markdown implementation plan."""

from __future__ import annotations

import re

from grid_engine.models import TaskCreate

_FENCE_RE = re.compile(r"^```.*?^```", re.MULTILINE | re.DOTALL)
_TASK_HEADER_RE = re.compile(r"^### Task (\d+): (.+)$", re.MULTILINE)


def parse_plan(
    markdown: str,
    *,
    artifact_id: str | None = None,
    worktree_id: str | None = None,
) -> list[TaskCreate]:
    """Turn ``### Task N: Title`` sections into task payloads.

    Headers inside fenced code blocks are ignored. A task's description is the
    text between its header and the next task header (or the end of the plan).
    """

    fences = [(match.start(), match.end()) for match in _FENCE_RE.finditer(markdown)]
    headers = [
        match
        for match in _TASK_HEADER_RE.finditer(markdown)
        if not any(start <= match.start() < end for start, end in fences)
    ]

    tasks: list[TaskCreate] = []
    for position, header in enumerate(headers):
        body_end = headers[position + 1].start() if position + 1 < len(headers) else len(markdown)
        tasks.append(
            TaskCreate(
                task_number=int(header.group(1)),
                title=header.group(2).strip(),
                description=markdown[header.end() : body_end].strip(),
                artifact_id=artifact_id,
                worktree_id=worktree_id,
            ),
        )
    return tasks
