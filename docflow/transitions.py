"""Document status transitions.

The functions here are pure: they read a :class:`DocumentState` and return a
:class:`TransitionPlan` describing the new counters and the ledger version to
write, or raise a :class:`errors.StateError`.  Persisting the plan is the job
of :mod:`documents`.

===========  ============  =============  ===============  ==============
action       status        current_stage  current_version  ledger version
===========  ============  =============  ===============  ==============
Submit       InTransition  1              1                1
Rejected     Rejected      unchanged      unchanged        current
Review       Review        stage - 1      + 1              current
Reviewed     InTransition  stage + 1      + 1              current
Accepted     InTransition  stage + 1      + 1              current
Completed    Completed     stage + 1      + 1              current
===========  ============  =============  ===============  ==============

Rejected and Review need ``current_version > 1``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from errors import (
    DocumentFinalizedError,
    InvalidOperationError,
    NoFieldsBoundError,
    NoFurtherStageError,
    NotYetBoundError,
    ValidationError,
)
from models import DocumentStatus
from snapshot import find_stage

SUBMITTED = "Submitted"


class VersionAction(str, Enum):
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    REVIEW = "Review"
    REVIEWED = "Reviewed"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value) -> "VersionAction":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(member.value for member in cls)
            raise ValidationError(
                f"Invalid status '{value}', expected one of: {allowed}"
            ) from None


TERMINAL_STATUSES = frozenset(
    {DocumentStatus.COMPLETED.value, DocumentStatus.REJECTED.value}
)


@dataclass(frozen=True)
class DocumentState:
    status: str | None
    current_stage: int
    current_version: int

    @classmethod
    def of(cls, document) -> "DocumentState":
        return cls(
            status=document.status,
            current_stage=document.current_stage or 0,
            current_version=document.current_version or 0,
        )

    @property
    def finalized(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class TransitionPlan:
    action: str
    status: str
    current_stage: int
    current_version: int
    ledger_version: int
    record_signature: bool = False
    embed_signature: bool = False

    def as_update(self) -> dict:
        return {
            "status": self.status,
            "current_stage": self.current_stage,
            "current_version": self.current_version,
        }


def plan_submit(state: DocumentState, field_count: int) -> TransitionPlan:
    if state.finalized:
        raise DocumentFinalizedError()
    if state.current_stage > 0 or state.current_version > 0:
        raise InvalidOperationError("Document has already been submitted")
    if field_count <= 0:
        raise NoFieldsBoundError()
    return TransitionPlan(
        action=SUBMITTED,
        status=DocumentStatus.IN_TRANSITION.value,
        current_stage=1,
        current_version=1,
        ledger_version=1,
    )


def current_stage_for(state: DocumentState, snapshot: list[dict]) -> dict:
    """Return the snapshot stage a version may be created at.

    Checks, in order: the document is not finalized, it has been submitted,
    and its ``current_stage`` exists in the snapshot.
    """
    if state.finalized:
        raise DocumentFinalizedError()
    if state.current_stage <= 0:
        raise NotYetBoundError()
    stage = find_stage(snapshot, state.current_stage)
    if stage is None:
        raise NoFurtherStageError()
    return stage


def plan_version(state: DocumentState, action, stage: dict) -> TransitionPlan:
    action = VersionAction.parse(action)
    version = state.current_version
    sequence = stage["sequence"]

    if action is VersionAction.REJECTED:
        if version <= 1:
            raise InvalidOperationError()
        return TransitionPlan(
            action=action.value,
            status=DocumentStatus.REJECTED.value,
            current_stage=state.current_stage,
            current_version=version,
            ledger_version=version,
        )

    if action is VersionAction.REVIEW:
        if version <= 1:
            raise InvalidOperationError()
        if sequence <= 1:
            raise InvalidOperationError("There is no previous stage to send the document back to")
        return TransitionPlan(
            action=action.value,
            status=DocumentStatus.REVIEW.value,
            current_stage=sequence - 1,
            current_version=version + 1,
            ledger_version=version,
        )

    status = (
        DocumentStatus.COMPLETED.value
        if action is VersionAction.COMPLETED
        else DocumentStatus.IN_TRANSITION.value
    )
    return TransitionPlan(
        action=action.value,
        status=status,
        current_stage=sequence + 1,
        current_version=version + 1,
        ledger_version=version,
        record_signature=action in (VersionAction.ACCEPTED, VersionAction.COMPLETED),
        embed_signature=action is VersionAction.COMPLETED,
    )


__all__ = [
    "SUBMITTED",
    "VersionAction",
    "TERMINAL_STATUSES",
    "DocumentState",
    "TransitionPlan",
    "plan_submit",
    "current_stage_for",
    "plan_version",
]
