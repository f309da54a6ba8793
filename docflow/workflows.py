"""Workflow templates: workflow types, workflows and their stages."""

from __future__ import annotations

import logging
import math

from errors import DuplicateNameError, DuplicateNodeStageError, NotFoundError, ValidationError
from models import (
    get_session,
    NodeStage,
    Role,
    Stage,
    User,
    Workflow,
    WorkflowType,
)
from sequencer import sequence_stages

logger = logging.getLogger(__name__)

STAGE_FIELDS = (
    "name",
    "description",
    "role_id",
    "action_by_id",
    "action_required",
    "node_stage",
    "stage_type",
    "status",
    "next_stage_id",
    "node_position_x",
    "node_position_y",
)


def _pagination(total: int, page: int, size: int) -> dict:
    return {
        "total": total,
        "page": page,
        "size": size,
        "totalPages": math.ceil(total / size) if size else 0,
    }


# -- workflow types --------------------------------------------------------


def create_workflow_type(name: str, description: str | None, user_id: int) -> WorkflowType:
    session = get_session()
    try:
        if session.query(WorkflowType).filter_by(name=name).first():
            raise DuplicateNameError("Workflow Type", name)
        workflow_type = WorkflowType(name=name, description=description, created_by_id=user_id)
        session.add(workflow_type)
        session.commit()
        return workflow_type
    finally:
        session.close()


def list_workflow_types() -> list[WorkflowType]:
    session = get_session()
    try:
        return (
            session.query(WorkflowType)
            .filter(WorkflowType.deleted.is_(False))
            .order_by(WorkflowType.id)
            .all()
        )
    finally:
        session.close()


# -- workflows -------------------------------------------------------------


def _get_workflow(session, workflow_id: int) -> Workflow:
    workflow = session.get(Workflow, workflow_id)
    if not workflow or workflow.deleted:
        raise NotFoundError("Workflow", workflow_id)
    return workflow


def create_workflow(name: str, description: str | None, workflow_type_id: int, user_id: int) -> Workflow:
    session = get_session()
    try:
        if session.query(Workflow).filter_by(name=name).first():
            raise DuplicateNameError("Workflow", name)
        if not session.get(WorkflowType, workflow_type_id):
            raise NotFoundError("Workflow Type", workflow_type_id)
        workflow = Workflow(
            name=name,
            description=description,
            workflow_type_id=workflow_type_id,
            created_by_id=user_id,
        )
        session.add(workflow)
        session.commit()
        logger.info("Workflow %s created by user %s", workflow.id, user_id)
        return workflow
    finally:
        session.close()


def search_workflows(
    name: str | None = None,
    workflow_type_id: int | None = None,
    created_by_id: int | None = None,
    page: int = 1,
    size: int = 10,
) -> tuple[list[Workflow], dict]:
    session = get_session()
    try:
        query = session.query(Workflow).filter(Workflow.deleted.is_(False))
        if name:
            query = query.filter(Workflow.name.ilike(f"%{name}%"))
        if workflow_type_id:
            query = query.filter(Workflow.workflow_type_id == workflow_type_id)
        if created_by_id:
            query = query.filter(Workflow.created_by_id == created_by_id)
        total = query.count()
        items = query.order_by(Workflow.id).offset((page - 1) * size).limit(size).all()
        return items, _pagination(total, page, size)
    finally:
        session.close()


def get_workflow(workflow_id: int) -> tuple[Workflow, list[Stage]]:
    session = get_session()
    try:
        workflow = _get_workflow(session, workflow_id)
        stages = (
            session.query(Stage)
            .filter(Stage.workflow_id == workflow_id)
            .order_by(Stage.id)
            .all()
        )
        return workflow, stages
    finally:
        session.close()


def update_workflow(workflow_id: int, **changes) -> Workflow:
    session = get_session()
    try:
        workflow = _get_workflow(session, workflow_id)
        name = changes.get("name")
        if name and name != workflow.name:
            if session.query(Workflow).filter_by(name=name).first():
                raise DuplicateNameError("Workflow", name)
            workflow.name = name
        if changes.get("description") is not None:
            workflow.description = changes["description"]
        workflow_type_id = changes.get("workflow_type_id")
        if workflow_type_id:
            if not session.get(WorkflowType, workflow_type_id):
                raise NotFoundError("Workflow Type", workflow_type_id)
            workflow.workflow_type_id = workflow_type_id
        session.commit()
        return workflow
    finally:
        session.close()


def delete_workflow(workflow_id: int) -> None:
    """Soft delete; documents keep their own stage snapshots."""
    session = get_session()
    try:
        workflow = _get_workflow(session, workflow_id)
        workflow.deleted = True
        session.commit()
    finally:
        session.close()


def preview_sequence(workflow_id: int) -> list[dict]:
    """Sequence the live template, raising the same errors document creation would."""
    session = get_session()
    try:
        workflow = _get_workflow(session, workflow_id)
        return sequence_stages(workflow.stages, workflow_id=workflow.id)
    finally:
        session.close()


# -- stages ----------------------------------------------------------------


def _check_node_stage(session, workflow_id: int, node_stage: str | None, exclude_id: int | None = None) -> None:
    """At most one Start and one End node per workflow."""
    if node_stage not in (NodeStage.START.value, NodeStage.END.value):
        return
    query = session.query(Stage).filter(
        Stage.workflow_id == workflow_id, Stage.node_stage == node_stage
    )
    if exclude_id is not None:
        query = query.filter(Stage.id != exclude_id)
    if query.first():
        raise DuplicateNodeStageError(node_stage)


def _check_references(session, data: dict) -> None:
    if data.get("role_id") is not None and not session.get(Role, data["role_id"]):
        raise NotFoundError("Role", data["role_id"])
    if data.get("action_by_id") is not None and not session.get(User, data["action_by_id"]):
        raise NotFoundError("User", data["action_by_id"])


def _check_next_stage(session, workflow_id: int, stage_id: int | None, next_stage_id: int | None) -> None:
    if next_stage_id is None:
        return
    if next_stage_id == stage_id:
        raise ValidationError("A stage cannot be its own next stage", stage_id=stage_id)
    next_stage = session.get(Stage, next_stage_id)
    if not next_stage:
        raise ValidationError(
            f"Invalid next_stage_id: {next_stage_id} does not exist.",
            next_stage_id=next_stage_id,
        )
    if next_stage.workflow_id != workflow_id:
        raise ValidationError(
            f"Invalid next_stage_id: {next_stage_id} belongs to another workflow.",
            next_stage_id=next_stage_id,
        )


def create_stage(workflow_id: int, **data) -> Stage:
    session = get_session()
    try:
        _get_workflow(session, workflow_id)
        _check_references(session, data)
        _check_node_stage(session, workflow_id, data.get("node_stage"))
        _check_next_stage(session, workflow_id, None, data.get("next_stage_id"))
        stage = Stage(
            workflow_id=workflow_id,
            **{key: value for key, value in data.items() if key in STAGE_FIELDS},
        )
        session.add(stage)
        session.commit()
        return stage
    finally:
        session.close()


def list_stages(workflow_id: int | None = None, role_id: int | None = None) -> list[Stage]:
    session = get_session()
    try:
        query = session.query(Stage)
        if workflow_id:
            query = query.filter(Stage.workflow_id == workflow_id)
        if role_id:
            query = query.filter(Stage.role_id == role_id)
        return query.order_by(Stage.id).all()
    finally:
        session.close()


def get_stage(stage_id: int) -> Stage:
    session = get_session()
    try:
        stage = session.get(Stage, stage_id)
        if not stage:
            raise NotFoundError("Stage", stage_id)
        return stage
    finally:
        session.close()


def update_stage(stage_id: int, **data) -> Stage:
    session = get_session()
    try:
        stage = session.get(Stage, stage_id)
        if not stage:
            raise NotFoundError("Stage", stage_id)
        previous_workflow_id = stage.workflow_id
        workflow_id = data.get("workflow_id") or previous_workflow_id
        moved = workflow_id != previous_workflow_id
        if moved:
            _get_workflow(session, workflow_id)
        _check_references(session, data)
        _check_node_stage(
            session, workflow_id, data.get("node_stage", stage.node_stage), exclude_id=stage.id
        )
        if "next_stage_id" in data:
            _check_next_stage(session, workflow_id, stage.id, data["next_stage_id"])
        if moved:
            # links never cross workflows
            session.query(Stage).filter(
                Stage.workflow_id == previous_workflow_id,
                Stage.next_stage_id == stage.id,
            ).update({"next_stage_id": None}, synchronize_session="fetch")
            if "next_stage_id" not in data:
                stage.next_stage_id = None
            stage.workflow_id = workflow_id
        for key, value in data.items():
            if key in STAGE_FIELDS:
                setattr(stage, key, value)
        session.commit()
        return stage
    finally:
        session.close()


def delete_stage(stage_id: int) -> None:
    session = get_session()
    try:
        stage = session.get(Stage, stage_id)
        if not stage:
            raise NotFoundError("Stage", stage_id)
        # unlink predecessors so no pointer dangles
        session.query(Stage).filter(Stage.next_stage_id == stage_id).update(
            {"next_stage_id": None}, synchronize_session="fetch"
        )
        session.delete(stage)
        session.commit()
    finally:
        session.close()


def update_links(links: list[dict]) -> list[Stage]:
    """Set ``next_stage_id`` and node positions of several stages at once.

    All updates are applied in one transaction; an invalid ``next_stage_id``
    rolls back the whole batch.
    """
    session = get_session()
    try:
        updated_ids = []
        for link in links:
            stage = session.get(Stage, link["id"])
            if not stage:
                raise NotFoundError("Stage", link["id"])
            next_stage_id = link.get("next_stage_id")
            _check_next_stage(session, stage.workflow_id, stage.id, next_stage_id)
            stage.next_stage_id = next_stage_id
            stage.node_position_x = link.get("node_position_x", stage.node_position_x)
            stage.node_position_y = link.get("node_position_y", stage.node_position_y)
            updated_ids.append(stage.id)
        session.commit()
        return (
            session.query(Stage)
            .filter(Stage.id.in_(updated_ids))
            .order_by(Stage.id)
            .all()
        )
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
