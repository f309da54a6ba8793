"""Document lifecycle: creation, stage assignment, field binding, submission
and version transitions.

The state rules live in :mod:`transitions`; this module loads the document,
asks for a plan, talks to storage and the signing service, and persists the
plan.  A transition is written with one conditional ``UPDATE`` guarded by the
document's ``row_version`` so that two concurrent actions on the same
document cannot both succeed.  Artifacts are uploaded before the database
transaction starts; if the transaction fails the artifact is deleted again,
or recorded as an :class:`models.OrphanedBlob` for :mod:`cleanup_job`.
"""

from __future__ import annotations

import logging
import math
import os
import uuid

from sqlalchemy.orm.exc import StaleDataError

import cleanup_job
from audit import log_action
from errors import (
    ConcurrentModificationError,
    DocumentFinalizedError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from ledger import append, display_file_key, recent_versions
from models import (
    get_session,
    Document,
    DocumentField,
    FieldType,
    Stage,
    User,
    Workflow,
    WorkflowType,
)
from permissions import can_assign, require_actor
from signing import create_signature_data, embed_signature, record_signature, signatures_for
from snapshot import assign_action_by, find_stage, take_snapshot, validate_snapshot
from storage import generate_presigned_url, storage_client
from transitions import (
    DocumentState,
    VersionAction,
    current_stage_for,
    plan_submit,
    plan_version,
)

logger = logging.getLogger(__name__)

SUBMIT_CONTENT = "Document Submitted"


def _load_document(session, document_id: int) -> Document:
    document = session.get(Document, document_id)
    if not document or document.deleted:
        raise NotFoundError("Document", document_id)
    return document


def _discard_blob(key: str, reason: str) -> None:
    """Delete an artifact whose transition did not commit."""
    try:
        storage_client.delete(key)
    except StorageError:
        logger.exception("Could not delete %s, scheduling cleanup", key)
        cleanup_job.mark_orphaned(key, reason)


def _pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


# -- creation --------------------------------------------------------------


def create_document(
    name: str,
    workflow_type_id: int,
    workflow_id: int,
    filename: str,
    body: bytes,
    content_type: str | None,
    user_id: int,
) -> Document:
    """Create a document bound to a frozen copy of its workflow's stages."""
    session = get_session()
    try:
        if not session.get(WorkflowType, workflow_type_id):
            raise NotFoundError("Workflow Type", workflow_type_id)
        workflow = session.get(Workflow, workflow_id)
        if not workflow or workflow.deleted:
            raise NotFoundError("Workflow", workflow_id)
        if workflow.workflow_type_id != workflow_type_id:
            raise ValidationError(
                "Workflow does not belong to the given workflow type",
                workflow_id=workflow_id,
                workflow_type_id=workflow_type_id,
            )

        stages = session.query(Stage).filter(Stage.workflow_id == workflow_id).all()
        snapshot = take_snapshot(stages, workflow_id=workflow_id)
        validate_snapshot(snapshot)

        _, ext = os.path.splitext(filename or "")
        key = f"documents/{uuid.uuid4()}{ext.lower()}"
        location = storage_client.put(key, body, content_type)

        document = Document(
            name=name,
            workflow_id=workflow_id,
            workflow_type_id=workflow_type_id,
            workflow_stages=snapshot,
            file_key=key,
            file_url=location,
            file_size=len(body),
            file_type=content_type,
            created_by_id=user_id,
        )
        try:
            session.add(document)
            session.commit()
        except Exception:
            session.rollback()
            _discard_blob(key, "document insert failed")
            raise
        logger.info("Document %s created with %d stages", document.id, len(snapshot))
        return document
    finally:
        session.close()


# -- preparation -----------------------------------------------------------


def assign_stage(document_id: int, stage_id: int, action_by_id: int) -> Document:
    """Bind ``action_by_id`` as the only user who may act at ``stage_id``."""
    session = get_session()
    try:
        document = _load_document(session, document_id)
        if DocumentState.of(document).finalized:
            raise DocumentFinalizedError()
        user = session.get(User, action_by_id)
        if not user:
            raise NotFoundError("User", action_by_id)

        snapshot = assign_action_by(document.workflow_stages, stage_id, action_by_id)
        stage = next(item for item in snapshot if item["id"] == stage_id)
        if not can_assign(stage, user):
            raise UnauthorizedError(
                "User role does not match the stage role",
                user_id=action_by_id,
                stage_id=stage_id,
            )

        document.workflow_stages = snapshot
        try:
            session.commit()
        except StaleDataError:
            session.rollback()
            raise ConcurrentModificationError(document_id) from None
        return document
    finally:
        session.close()


def validate_fields(doc_data) -> list[dict]:
    """Check field placement entries and return them unchanged."""
    if not isinstance(doc_data, list) or not doc_data:
        raise ValidationError("doc_data must be a non-empty list of fields")
    errors = {}
    for index, field in enumerate(doc_data):
        if not isinstance(field, dict):
            errors[index] = "field must be an object"
            continue
        problems = []
        for key in ("field_name", "field_label"):
            value = field.get(key)
            if not isinstance(value, str) or len(value) < 3:
                problems.append(f"{key} must be at least 3 characters")
        for key in ("page_numbers", "x_coordinates", "y_coordinates"):
            if not isinstance(field.get(key), (int, float)):
                problems.append(f"{key} must be a number")
        stages = field.get("stages")
        if not isinstance(stages, int) or stages <= 0:
            problems.append("stages must be a positive integer")

        field_type = field.get("field_type")
        if field_type == FieldType.TEXT.value:
            if not (field.get("font_size") or 0) > 0:
                problems.append("Text fields need a positive font_size")
        elif field_type == FieldType.SIGNATURE.value:
            if not ((field.get("width") or 0) > 0 and (field.get("height") or 0) > 0):
                problems.append("Signature fields need a positive width and height")
        else:
            problems.append("field_type must be Text or Signature")
        if problems:
            errors[index] = problems
    if errors:
        raise ValidationError("Please Add Valid Text and Signature Field.", fields=errors)
    return doc_data


def bind_fields(document_id: int, doc_data) -> DocumentField:
    fields = validate_fields(doc_data)
    session = get_session()
    try:
        document = _load_document(session, document_id)
        if DocumentState.of(document).finalized:
            raise DocumentFinalizedError()
        record = DocumentField(document_id=document.id, doc_data=fields)
        session.add(record)
        session.commit()
        return record
    finally:
        session.close()


def search_fields(document_id: int | None = None, stage: int | None = None) -> list[dict]:
    """Field records, newest first; with ``stage`` only that stage's entries."""
    session = get_session()
    try:
        query = session.query(DocumentField).filter(DocumentField.deleted.is_(False))
        if document_id:
            query = query.filter(DocumentField.document_id == document_id)
        records = []
        for record in query.order_by(DocumentField.created_at.desc(), DocumentField.id.desc()):
            data = record.to_dict()
            if stage is not None:
                data["doc_data"] = [
                    field for field in record.doc_data or [] if field.get("stages") == stage
                ]
            records.append(data)
        return records
    finally:
        session.close()


def _apply_plan(session, document: Document, state: DocumentState, plan, user_id: int | None) -> None:
    """Write ``plan`` only if nobody changed the document since it was read."""
    matched = (
        session.query(Document)
        .filter(
            Document.id == document.id,
            Document.row_version == document.row_version,
            Document.current_version == state.current_version,
        )
        .update(
            {**plan.as_update(), "row_version": Document.row_version + 1},
            synchronize_session=False,
        )
    )
    if matched != 1:
        raise ConcurrentModificationError(document.id)
    log_action(
        user_id=user_id,
        doc_id=document.id,
        action="update",
        entity_type="Document",
        entity_id=document.id,
        payload={
            "transition": plan.action,
            "from": {
                "status": state.status,
                "current_stage": state.current_stage,
                "current_version": state.current_version,
            },
            "to": plan.as_update(),
        },
        connection=session.connection(),
    )


def submit_document(document_id: int, user_id: int) -> Document:
    """Move a document with bound fields into its first stage."""
    session = get_session()
    try:
        document = _load_document(session, document_id)
        state = DocumentState.of(document)
        field_count = (
            session.query(DocumentField)
            .filter(
                DocumentField.document_id == document.id,
                DocumentField.deleted.is_(False),
            )
            .count()
        )
        plan = plan_submit(state, field_count)
        try:
            _apply_plan(session, document, state, plan, user_id)
            append(
                session,
                document.id,
                plan.ledger_version,
                SUBMIT_CONTENT,
                document.file_key,
                document.file_url,
                user_id,
                action=plan.action,
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(document)
        logger.info("Document %s submitted by user %s", document.id, user_id)
        return document
    finally:
        session.close()


# -- transitions -----------------------------------------------------------


def create_version(
    document_id: int,
    action: str,
    user_id: int,
    content: str | None,
    filename: str,
    body: bytes,
    content_type: str | None = None,
    signature_image: bytes | None = None,
):
    """Run one workflow action on a document and record it in the ledger.

    Returns ``(document, version)``.  Nothing is persisted and no artifact
    is left behind when any step fails.
    """
    action = VersionAction.parse(action)
    session = get_session()
    try:
        document = _load_document(session, document_id)
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User", user_id)

        state = DocumentState.of(document)
        stage = current_stage_for(state, document.workflow_stages)
        require_actor(stage, user_id)
        plan = plan_version(state, action, stage)

        signature = None
        if plan.record_signature:
            if not signature_image:
                raise ValidationError("A signature file is required", action=action.value)
            signature = create_signature_data(document.name, signature_image, user)

        artifact = body
        if plan.embed_signature:
            existing = signatures_for(session, document.id)
            artifact = embed_signature(body, [*existing, signature], document_id=document.id)

        key = f"documents/{document.id}/{stage['sequence']}/{uuid.uuid4()}{filename}"
        location = storage_client.put(key, artifact, content_type or "application/pdf")

        try:
            _apply_plan(session, document, state, plan, user_id)
            if signature is not None:
                record_signature(session, document.id, signature)
            entry = append(
                session,
                document.id,
                plan.ledger_version,
                content,
                key,
                location,
                user_id,
                action=plan.action,
            )
            session.commit()
        except Exception:
            session.rollback()
            _discard_blob(key, f"{plan.action} on document {document.id} rolled back")
            raise

        session.refresh(document)
        logger.info(
            "Document %s: %s by user %s at stage %s, now stage %s version %s",
            document.id,
            plan.action,
            user_id,
            stage["sequence"],
            document.current_stage,
            document.current_version,
        )
        return document, entry
    finally:
        session.close()


# -- queries ---------------------------------------------------------------


def document_file_url(session, document: Document) -> str | None:
    return generate_presigned_url(display_file_key(session, document))


def display_url(document: Document) -> str | None:
    """Presigned URL of the file currently shown for ``document``."""
    session = get_session()
    try:
        return document_file_url(session, document)
    finally:
        session.close()


def get_document(document_id: int) -> dict:
    session = get_session()
    try:
        document = _load_document(session, document_id)
        data = document.to_dict()
        data["file_url"] = document_file_url(session, document)
        data["current_stage_details"] = find_stage(
            document.workflow_stages, document.current_stage
        )
        data["document_fields"] = [
            field.to_dict()
            for field in session.query(DocumentField)
            .filter(
                DocumentField.document_id == document.id,
                DocumentField.deleted.is_(False),
            )
            .order_by(DocumentField.id)
        ]
        data["versions"] = [
            _version_dict(entry) for entry in recent_versions(session, document.id)
        ]
        return data
    finally:
        session.close()


def _version_dict(entry) -> dict:
    data = entry.to_dict()
    data["file_url"] = generate_presigned_url(entry.file_key)
    return data


def search_documents(
    workflow_type_id: int | None = None,
    workflow_id: int | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[dict], dict]:
    session = get_session()
    try:
        query = session.query(Document).filter(Document.deleted.is_(False))
        if workflow_type_id:
            query = query.filter(Document.workflow_type_id == workflow_type_id)
        if workflow_id:
            query = query.filter(Document.workflow_id == workflow_id)
        total = query.count()
        documents = (
            query.order_by(Document.created_at.desc(), Document.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        items = []
        for document in documents:
            data = document.to_dict()
            data["file_url"] = document_file_url(session, document)
            items.append(data)
        return items, _pagination(total, page, limit)
    finally:
        session.close()


def _awaits(document: Document, user_id: int, current_only: bool) -> bool:
    if current_only:
        if DocumentState.of(document).finalized:
            return False
        stage = find_stage(document.workflow_stages, document.current_stage)
        return stage is not None and stage.get("action_by_id") == user_id
    return any(
        stage.get("action_by_id") == user_id for stage in document.workflow_stages or []
    )


def pending_requests(
    user_id: int,
    search: str = "",
    page: int = 1,
    limit: int = 10,
    current_only: bool = True,
) -> tuple[list[dict], dict]:
    """Documents waiting on ``user_id``.

    By default only documents whose current stage is bound to the user are
    returned; ``current_only=False`` lists every document with any stage
    bound to them.  Snapshots are JSON, so the match runs in Python before
    paginating.
    """
    session = get_session()
    try:
        query = session.query(Document).filter(Document.deleted.is_(False))
        if search:
            query = query.filter(Document.name.ilike(f"%{search}%"))
        matching = [
            document
            for document in query.order_by(Document.created_at.desc(), Document.id.desc())
            if _awaits(document, user_id, current_only)
        ]
        start = (page - 1) * limit
        items = []
        for document in matching[start:start + limit]:
            data = document.to_dict()
            data["file_url"] = document_file_url(session, document)
            items.append(data)
        return items, _pagination(len(matching), page, limit)
    finally:
        session.close()


def document_versions(document_id: int, limit: int | None = None) -> list[dict]:
    session = get_session()
    try:
        _load_document(session, document_id)
        return [_version_dict(entry) for entry in recent_versions(session, document_id, limit)]
    finally:
        session.close()
