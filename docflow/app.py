import json
import os
from pathlib import Path

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

import documents
import workflows
from auth import current_identity
from auth import init_app as auth_init
from auth import permission_required, token_required
from errors import DocflowError, InternalError, PayloadTooLargeError, ValidationError
from models import NodeStage, StageStatus, StageType
from storage import generate_presigned_url

MAX_UPLOAD_BYTES = int(os.environ.get("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))
DOCUMENT_EXTENSIONS = {".pdf"}
SIGNATURE_EXTENSIONS = {".png", ".jpg", ".jpeg"}
# a document and a signature image plus the form fields
MAX_REQUEST_BYTES = 2 * MAX_UPLOAD_BYTES + 1024 * 1024


# Automatically run database migrations in non-SQLite environments.
def _run_migrations() -> None:
    db_url = os.environ.get("DATABASE_URL", "")
    if not db_url or db_url.startswith("sqlite"):
        return
    from alembic import command
    from alembic.config import Config

    repo_root = Path(__file__).resolve().parent.parent
    cfg = Config(str(repo_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(repo_root / "alembic"))
    command.upgrade(cfg, "head")


_run_migrations()

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev")
app.config["MAX_CONTENT_LENGTH"] = MAX_REQUEST_BYTES
auth_init(app)


@app.after_request
def set_security_headers(response):
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.errorhandler(DocflowError)
def handle_docflow_error(error):
    if error.status_code >= 500:
        app.logger.error("%s %s failed: %s", request.method, request.path, error.message)
    elif error.status_code in (401, 403):
        app.logger.warning(
            "%s %s refused: %s", request.method, request.path, error.message
        )
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(RequestEntityTooLarge)
def handle_request_too_large(error):
    app.logger.warning("%s %s refused: body too large", request.method, request.path)
    too_large = PayloadTooLargeError(
        f"Request exceeds the {MAX_REQUEST_BYTES // (1024 * 1024)}MB limit"
    )
    return jsonify(too_large.to_dict()), too_large.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    internal = InternalError()
    return jsonify(internal.to_dict()), internal.status_code


# -- request helpers -------------------------------------------------------


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _form_data() -> dict:
    """Parse the JSON document sent as the ``data`` form field."""
    raw = request.form.get("data")
    if not raw:
        raise ValidationError("data is required")
    try:
        data = json.loads(raw)
    except ValueError:
        raise ValidationError("data must be valid JSON") from None
    if not isinstance(data, dict):
        raise ValidationError("data must be a JSON object")
    return data


def _require(data: dict, *fields) -> None:
    missing = {field: f"{field} is required." for field in fields if data.get(field) in (None, "")}
    if missing:
        raise ValidationError("Validation Error", errors=missing)


def _int_value(data: dict, field: str, required: bool = True):
    value = data.get(field)
    if value in (None, ""):
        if required:
            raise ValidationError("Validation Error", errors={field: f"{field} is required."})
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            "Validation Error", errors={field: f"{field} must be an integer."}
        ) from None


def _int_arg(name: str, default=None):
    return _int_value(request.args, name, required=False) or default


def _read_upload(field: str, extensions: set, required: bool = True):
    """Return ``(filename, body, content_type)`` of an uploaded file."""
    upload = request.files.get(field)
    if upload is None or not upload.filename:
        if required:
            raise ValidationError(f"{field} file is required")
        return None
    _, ext = os.path.splitext(upload.filename)
    if ext.lower() not in extensions:
        allowed = ", ".join(sorted(ext.lstrip(".").upper() for ext in extensions))
        raise ValidationError(f"Only {allowed} files are allowed for {field}")
    body = upload.read()
    if len(body) > MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"{field} exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit",
            size=len(body),
        )
    return os.path.basename(upload.filename), body, upload.mimetype


def _enum_field(data: dict, field: str, enum_cls) -> None:
    value = data.get(field)
    allowed = [member.value for member in enum_cls]
    if value is not None and value not in allowed:
        raise ValidationError(
            "Validation Error",
            errors={field: f"{field} must be one of: {', '.join(allowed)}"},
        )


def _respond(message: str, status: int = 200, **payload):
    return jsonify({"status": status, "message": message, **payload}), status


# -- health ----------------------------------------------------------------


@app.get("/health")
def health():
    return jsonify(status="ok")


# -- workflow types --------------------------------------------------------


@app.post("/api/workflow-types")
@permission_required("CREATE_WORKFLOW_TYPE")
def create_workflow_type():
    data = _json_body()
    _require(data, "name")
    workflow_type = workflows.create_workflow_type(
        data["name"], data.get("description"), current_identity().user_id
    )
    return _respond("Workflow Type created successfully", 201, data=workflow_type.to_dict())


@app.get("/api/workflow-types")
@permission_required("VIEW_WORKFLOW_TYPE")
def list_workflow_types():
    items = [item.to_dict() for item in workflows.list_workflow_types()]
    return _respond("Workflow Types fetched successfully", data=items)


# -- workflows -------------------------------------------------------------


@app.post("/api/workflows")
@permission_required("CREATE_WORKFLOW")
def create_workflow():
    data = _json_body()
    _require(data, "name")
    workflow = workflows.create_workflow(
        data["name"],
        data.get("description"),
        _int_value(data, "workflow_type_id"),
        current_identity().user_id,
    )
    return _respond("Workflow created successfully", 201, data=workflow.to_dict())


@app.get("/api/workflows/search")
@permission_required("VIEW_WORKFLOW")
def search_workflows():
    items, pagination = workflows.search_workflows(
        name=request.args.get("name"),
        workflow_type_id=_int_arg("workflow_type_id"),
        created_by_id=_int_arg("created_by_id"),
        page=max(_int_arg("page", 1), 1),
        size=max(_int_arg("size", 10), 1),
    )
    return _respond(
        "Workflows fetched successfully",
        data=[item.to_dict() for item in items],
        pagination=pagination,
    )


@app.get("/api/workflows/<int:workflow_id>")
@permission_required("VIEW_WORKFLOW")
def get_workflow(workflow_id: int):
    workflow, stages = workflows.get_workflow(workflow_id)
    data = workflow.to_dict()
    data["stages"] = [stage.to_dict() for stage in stages]
    return _respond("Workflow fetched successfully", data=data)


@app.put("/api/workflows/<int:workflow_id>")
@permission_required("EDIT_WORKFLOW")
def update_workflow(workflow_id: int):
    data = _json_body()
    workflow = workflows.update_workflow(
        workflow_id,
        name=data.get("name"),
        description=data.get("description"),
        workflow_type_id=_int_value(data, "workflow_type_id", required=False),
    )
    return _respond("Workflow updated successfully", data=workflow.to_dict())


@app.delete("/api/workflows/<int:workflow_id>")
@permission_required("DELETE_WORKFLOW")
def delete_workflow(workflow_id: int):
    workflows.delete_workflow(workflow_id)
    return _respond("Workflow deleted successfully")


@app.get("/api/workflows/<int:workflow_id>/sequence")
@permission_required("VIEW_WORKFLOW")
def workflow_sequence(workflow_id: int):
    return _respond(
        "Workflow sequence fetched successfully",
        data=workflows.preview_sequence(workflow_id),
    )


# -- stages ----------------------------------------------------------------


def _stage_payload(data: dict) -> dict:
    _enum_field(data, "node_stage", NodeStage)
    _enum_field(data, "stage_type", StageType)
    _enum_field(data, "status", StageStatus)
    payload = {key: data[key] for key in workflows.STAGE_FIELDS if key in data}
    for key in ("role_id", "action_by_id", "next_stage_id"):
        if key in payload:
            payload[key] = _int_value(data, key, required=False)
    return payload


@app.post("/api/stages")
@permission_required("CREATE_STAGE")
def create_stage():
    data = _json_body()
    _require(data, "name", "role_id", "workflow_id")
    stage = workflows.create_stage(_int_value(data, "workflow_id"), **_stage_payload(data))
    return _respond("Stage created successfully", 201, data=stage.to_dict())


@app.get("/api/stages")
@permission_required("VIEW_WORKFLOW")
def list_stages():
    stages = workflows.list_stages(
        workflow_id=_int_arg("workflow_id"), role_id=_int_arg("role_id")
    )
    return _respond("Stages fetched successfully", data=[stage.to_dict() for stage in stages])


@app.put("/api/stages/links")
@permission_required("EDIT_STAGE")
def update_stage_links():
    data = request.get_json(silent=True)
    links = data.get("stages") if isinstance(data, dict) else data
    if not isinstance(links, list) or not links:
        raise ValidationError("A non-empty list of stage links is required")
    parsed = []
    for link in links:
        if not isinstance(link, dict):
            raise ValidationError("Each stage link must be an object")
        item = {"id": _int_value(link, "id"), "next_stage_id": _int_value(link, "next_stage_id", required=False)}
        for key in ("node_position_x", "node_position_y"):
            if key in link:
                item[key] = link[key]
        parsed.append(item)
    stages = workflows.update_links(parsed)
    return _respond("Stages updated successfully", data=[stage.to_dict() for stage in stages])


@app.get("/api/stages/<int:stage_id>")
@permission_required("VIEW_WORKFLOW")
def get_stage(stage_id: int):
    return _respond("Stage fetched successfully", data=workflows.get_stage(stage_id).to_dict())


@app.put("/api/stages/<int:stage_id>")
@permission_required("EDIT_STAGE")
def update_stage(stage_id: int):
    data = _json_body()
    payload = _stage_payload(data)
    if "workflow_id" in data:
        payload["workflow_id"] = _int_value(data, "workflow_id")
    stage = workflows.update_stage(stage_id, **payload)
    return _respond("Stage updated successfully", data=stage.to_dict())


@app.delete("/api/stages/<int:stage_id>")
@permission_required("DELETE_STAGE")
def delete_stage(stage_id: int):
    workflows.delete_stage(stage_id)
    return _respond("Stage deleted successfully")


# -- documents -------------------------------------------------------------


def _document_response(document) -> dict:
    data = document.to_dict()
    data["file_url"] = documents.display_url(document)
    return data


@app.post("/api/documents")
@permission_required("CREATE_DOCUMENT")
def create_document():
    data = _form_data()
    _require(data, "name")
    filename, body, content_type = _read_upload("document", DOCUMENT_EXTENSIONS)
    document = documents.create_document(
        name=data["name"],
        workflow_type_id=_int_value(data, "workflow_type_id"),
        workflow_id=_int_value(data, "workflow_id"),
        filename=filename,
        body=body,
        content_type=content_type,
        user_id=current_identity().user_id,
    )
    return _respond("Document created successfully", 201, data=_document_response(document))


@app.get("/api/documents/search")
@permission_required("VIEW_DOCUMENT")
def search_documents():
    items, pagination = documents.search_documents(
        workflow_type_id=_int_arg("workflow_type_id"),
        workflow_id=_int_arg("workflow_id"),
        page=max(_int_arg("page", 1), 1),
        limit=max(_int_arg("limit", 10), 1),
    )
    return _respond("Documents fetched successfully", data=items, pagination=pagination)


@app.get("/api/documents/requests/me")
@token_required
def my_document_requests():
    scope = request.args.get("scope", "current")
    if scope not in ("current", "all"):
        raise ValidationError("scope must be current or all")
    items, pagination = documents.pending_requests(
        current_identity().user_id,
        search=request.args.get("search", ""),
        page=max(_int_arg("page", 1), 1),
        limit=max(_int_arg("limit", 10), 1),
        current_only=scope == "current",
    )
    return _respond("Documents fetched successfully", data=items, pagination=pagination)


@app.get("/api/documents/<int:document_id>")
@permission_required("VIEW_DOCUMENT")
def get_document(document_id: int):
    return _respond("Document fetched successfully", data=documents.get_document(document_id))


@app.get("/api/documents/<int:document_id>/versions")
@permission_required("VIEW_DOCUMENT")
def document_versions(document_id: int):
    limit = _int_arg("limit")
    return _respond(
        "Document versions fetched successfully",
        data=documents.document_versions(document_id, limit=limit),
    )


@app.put("/api/documents/<int:document_id>/stage")
@permission_required("ASSIGN_STAGE")
def assign_document_stage(document_id: int):
    data = _json_body()
    document = documents.assign_stage(
        document_id, _int_value(data, "stage_id"), _int_value(data, "action_by_id")
    )
    return _respond("Document stage assigned successfully", data=_document_response(document))


@app.post("/api/documents/<int:document_id>/submit")
@permission_required("SUBMIT_DOCUMENT")
def submit_document(document_id: int):
    document = documents.submit_document(document_id, current_identity().user_id)
    return _respond("Document submitted successfully", data=_document_response(document))


# -- document fields -------------------------------------------------------


@app.post("/api/document-fields")
@permission_required("BIND_FIELDS")
def create_document_fields():
    data = _json_body()
    record = documents.bind_fields(_int_value(data, "document_id"), data.get("doc_data"))
    return _respond("Document fields created successfully", 201, data=record.to_dict())


@app.get("/api/document-fields/search")
@permission_required("VIEW_DOCUMENT")
def search_document_fields():
    records = documents.search_fields(
        document_id=_int_arg("document_id"), stage=_int_arg("stages")
    )
    return _respond("Document Field fetched successfully", data=records)


# -- document versions -----------------------------------------------------


@app.post("/api/document-versions")
@token_required
def create_document_version():
    data = _form_data()
    _require(data, "status")
    filename, body, content_type = _read_upload("documents", DOCUMENT_EXTENSIONS)
    signature = _read_upload("signatureFile", SIGNATURE_EXTENSIONS, required=False)
    document, version = documents.create_version(
        document_id=_int_value(data, "document_id"),
        action=data["status"],
        user_id=current_identity().user_id,
        content=data.get("content"),
        filename=filename,
        body=body,
        content_type=content_type,
        signature_image=signature[1] if signature else None,
    )
    entry = version.to_dict()
    entry["file_url"] = generate_presigned_url(version.file_key)
    return _respond(
        "Document version created successfully",
        201,
        data={"document": _document_response(document), "version": entry},
    )


if __name__ == "__main__":
    bind = os.environ.get("BIND", "0.0.0.0:5000")
    host, port = bind.split(":")
    debug = os.environ.get("DEBUG", "").lower() in {"1", "true", "yes"}
    app.run(host=host, port=int(port), debug=debug)
