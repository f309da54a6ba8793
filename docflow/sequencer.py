"""Linearize a workflow's stage graph into an ordered sequence.

A workflow template is a set of stages linked by ``next_stage_id``.  The only
supported shape is a simple path from the single ``Start`` node to the
``End`` node; :func:`sequence_stages` walks that path and numbers each stage
``1..N``.  Stages that are not reachable from ``Start`` are left out of the
result.
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

from errors import CycleDetectedError, MalformedWorkflowError, NoStartStageError
from models import NodeStage

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "id",
    "name",
    "description",
    "status",
    "role_id",
    "node_stage",
    "stage_type",
    "workflow_id",
    "action_by_id",
    "next_stage_id",
)


def _as_dict(stage) -> dict:
    """Copy the snapshot fields of an ORM ``Stage`` or a mapping."""
    if isinstance(stage, Mapping):
        return {key: stage.get(key) for key in SNAPSHOT_FIELDS}
    return {key: getattr(stage, key, None) for key in SNAPSHOT_FIELDS}


def build_successor_map(stages: Iterable) -> dict[int, int | None]:
    """Return ``{stage_id: next_stage_id}`` for the given stages."""
    return {data["id"]: data["next_stage_id"] for data in map(_as_dict, stages)}


def sequence_stages(stages: Iterable, workflow_id=None) -> list[dict]:
    """Return the stages on the Start -> End path with ``sequence`` assigned.

    The input is never modified; every returned item is a fresh ``dict``.

    Raises :class:`NoStartStageError` when there is no Start node,
    :class:`CycleDetectedError` when the walk reaches a stage twice and
    :class:`MalformedWorkflowError` when there are several Start nodes or the
    path does not end at an End node.
    """
    nodes: dict[int, dict] = {}
    for stage in stages:
        data = _as_dict(stage)
        nodes[data["id"]] = data

    starts = [node for node in nodes.values() if node["node_stage"] == NodeStage.START]
    if not starts:
        raise NoStartStageError(workflow_id)
    if len(starts) > 1:
        raise MalformedWorkflowError(
            "Invalid workflow: more than one Start node",
            workflow_id=workflow_id,
            start_ids=[node["id"] for node in starts],
        )

    successors = build_successor_map(nodes.values())
    sequenced: list[dict] = []
    visited: set[int] = set()
    current = starts[0]
    while current is not None:
        if current["id"] in visited:
            raise CycleDetectedError(current["id"])
        visited.add(current["id"])
        sequenced.append(dict(current, sequence=len(sequenced) + 1))
        current = nodes.get(successors[current["id"]])

    last = sequenced[-1]
    if last["node_stage"] != NodeStage.END:
        raise MalformedWorkflowError(
            "Invalid workflow: The last stage must have node_stage set to 'End'",
            workflow_id=workflow_id,
            last_stage_id=last["id"],
        )

    dropped = len(nodes) - len(sequenced)
    if dropped:
        logger.debug(
            "Workflow %s: %d stage(s) not reachable from Start were skipped",
            workflow_id,
            dropped,
        )
    return sequenced


__all__ = ["SNAPSHOT_FIELDS", "build_successor_map", "sequence_stages"]
