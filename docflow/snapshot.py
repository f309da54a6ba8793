"""Per-document copies of a workflow's sequenced stages.

A snapshot is taken once, when the document is created, and stored on the
document.  Later edits to the workflow template never reach it.  The only
field that may change afterwards is ``action_by_id``.
"""

from __future__ import annotations

import copy

from errors import MalformedWorkflowError, NotFoundError
from sequencer import sequence_stages


def take_snapshot(stages, workflow_id=None) -> list[dict]:
    return copy.deepcopy(sequence_stages(stages, workflow_id=workflow_id))


def find_stage(snapshot: list[dict], sequence: int) -> dict | None:
    for stage in snapshot or []:
        if stage.get("sequence") == sequence:
            return stage
    return None


def find_stage_by_id(snapshot: list[dict], stage_id: int) -> dict | None:
    for stage in snapshot or []:
        if stage.get("id") == stage_id:
            return stage
    return None


def assign_action_by(snapshot: list[dict], stage_id: int, user_id: int) -> list[dict]:
    """Return a copy of ``snapshot`` with ``user_id`` bound to ``stage_id``."""
    updated = copy.deepcopy(snapshot)
    stage = find_stage_by_id(updated, stage_id)
    if stage is None:
        raise NotFoundError("Stage", stage_id)
    stage["action_by_id"] = user_id
    return updated


def validate_snapshot(snapshot: list[dict]) -> None:
    sequences = [stage.get("sequence") for stage in snapshot]
    if sequences != list(range(1, len(snapshot) + 1)):
        raise MalformedWorkflowError(
            "Stage snapshot sequences must be contiguous and start at 1",
            sequences=sequences,
        )


__all__ = [
    "take_snapshot",
    "find_stage",
    "find_stage_by_id",
    "assign_action_by",
    "validate_snapshot",
]
