"""Chat action buttons and ``grid:`` callback payloads.

Every button carries ``callback_data`` in the form
``grid:<action>:<id>[:<args>]`` where ``args`` is a comma-separated list
(task numbers for batch launches). The functions here are pure; rendering
and dispatching the buttons is left to the chat handler.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum

CALLBACK_PREFIX = "grid"


class CallbackAction(str, Enum):
    """Verbs understood by the chat handler."""

    APPROVE = "approve"
    REJECT = "reject"
    VIEW = "view"
    CONTINUE = "continue"
    PAUSE = "pause"
    ADVANCE = "advance"
    BATCH = "batch"


@dataclass(frozen=True, slots=True)
class InlineButton:
    """One chat button."""

    text: str
    callback_data: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "callback_data": self.callback_data}


@dataclass(frozen=True, slots=True)
class GridCallback:
    """Decoded callback payload."""

    action: CallbackAction
    target_id: str
    extra: str | None = None

    def task_numbers(self) -> list[int]:
        if not self.extra:
            return []
        return [int(part) for part in self.extra.split(",") if part.strip()]


ButtonRows = list[list[InlineButton]]


def encode_callback(action: CallbackAction, target_id: str, args: Iterable[object] = ()) -> str:
    parts = [CALLBACK_PREFIX, action.value, target_id]
    joined = ",".join(str(arg) for arg in args)
    if joined:
        parts.append(joined)
    return ":".join(parts)


def parse_grid_callback(data: str) -> GridCallback | None:
    """Decode ``callback_data``; returns ``None`` for foreign or malformed payloads."""

    parts = data.split(":")
    if len(parts) < 3 or parts[0] != CALLBACK_PREFIX:  # noqa: PLR2004
        return None
    try:
        action = CallbackAction(parts[1])
    except ValueError:
        return None
    extra = ":".join(parts[3:]) if len(parts) > 3 else None  # noqa: PLR2004
    return GridCallback(action=action, target_id=parts[2], extra=extra)


def rows_to_payload(rows: ButtonRows) -> list[list[dict[str, str]]]:
    return [[button.to_dict() for button in row] for row in rows]


def advance_buttons(project_id: str) -> ButtonRows:
    """Offered when every task in the execute phase is complete."""

    return [
        [
            InlineButton(
                "✅ Advance to Review",
                encode_callback(CallbackAction.ADVANCE, project_id),
            ),
        ],
    ]


def launch_batch_buttons(
    project_id: str,
    batch_number: int,
    task_numbers: Sequence[int],
) -> ButtonRows:
    return [
        [
            InlineButton(
                f"▶️ Launch Batch {batch_number}",
                encode_callback(CallbackAction.BATCH, project_id, task_numbers),
            ),
            InlineButton("⏸️ Pause", encode_callback(CallbackAction.PAUSE, project_id)),
        ],
    ]


def approval_buttons(artifact_id: str, project_id: str) -> ButtonRows:
    """Approve / revise prompt for a design or plan artifact."""

    return [
        [
            InlineButton("✅ Approve", encode_callback(CallbackAction.APPROVE, artifact_id)),
            InlineButton("❌ Revise", encode_callback(CallbackAction.REJECT, artifact_id)),
            InlineButton("💬 Dashboard", encode_callback(CallbackAction.VIEW, project_id)),
        ],
    ]


def checkpoint_buttons(project_id: str) -> ButtonRows:
    return [
        [
            InlineButton("▶️ Continue", encode_callback(CallbackAction.CONTINUE, project_id)),
            InlineButton("⏸ Pause", encode_callback(CallbackAction.PAUSE, project_id)),
            InlineButton("🔍 Dashboard", encode_callback(CallbackAction.VIEW, project_id)),
        ],
    ]


def progress_buttons(project_id: str) -> ButtonRows:
    return [[InlineButton("📊 Progress", encode_callback(CallbackAction.VIEW, project_id))]]
