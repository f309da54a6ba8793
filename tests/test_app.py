import importlib
import io
import json

import pytest

from conftest import PDF_BYTES, PNG_BYTES


@pytest.fixture
def app_module():
    return importlib.import_module("app")


@pytest.fixture
def admin(session):
    models = importlib.import_module("models")
    permissions = importlib.import_module("permissions")
    granted = [models.Permission(name=p["name"]) for p in permissions.PERMISSIONS]
    role = models.Role(name="ADMIN", permissions=granted)
    reader = models.Role(name="Reader")
    user = models.User(name="admin", email="admin@example.com", role=role)
    guest = models.User(name="guest", email="guest@example.com", role=reader)
    session.add_all([*granted, role, reader, user, guest])
    session.commit()
    return user, guest


@pytest.fixture
def client(app_module):
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as client:
        yield client


def _headers(app_module, user):
    auth = importlib.import_module("auth")
    token = auth.create_access_token(user, app_module.app.config["JWT_SECRET"])
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_missing_token(client):
    resp = client.get("/api/workflow-types")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "UNAUTHENTICATED"


def test_permission_refused(client, app_module, admin):
    _, guest = admin
    resp = client.post(
        "/api/workflow-types", json={"name": "x"}, headers=_headers(app_module, guest)
    )
    assert resp.status_code == 403
    assert resp.get_json()["code"] == "FORBIDDEN"


def test_validation_error_shape(client, app_module, admin):
    user, _ = admin
    resp = client.post("/api/workflows", json={}, headers=_headers(app_module, user))
    assert resp.status_code == 400
    body = resp.get_json()
    assert body["code"] == "VALIDATION_ERROR"
    assert "name" in body["details"]["errors"]


def test_unknown_document(client, app_module, admin):
    user, _ = admin
    resp = client.get("/api/documents/999", headers=_headers(app_module, user))
    assert resp.status_code == 404
    assert resp.get_json()["message"] == "Document not found"


def test_unexpected_errors_hide_internals(client, app_module, admin, monkeypatch):
    user, _ = admin

    def boom(document_id):
        raise RuntimeError("password=hunter2")

    monkeypatch.setattr(app_module.documents, "get_document", boom)
    resp = client.get("/api/documents/1", headers=_headers(app_module, user))
    assert resp.status_code == 500
    body = resp.get_json()
    assert body["code"] == "INTERNAL_ERROR"
    assert "hunter2" not in resp.get_data(as_text=True)


def _build_workflow(client, headers, role_id):
    resp = client.post("/api/workflow-types", json={"name": "Contracts"}, headers=headers)
    assert resp.status_code == 201
    type_id = resp.get_json()["data"]["id"]

    resp = client.post(
        "/api/workflows",
        json={"name": "Contract approval", "workflow_type_id": type_id},
        headers=headers,
    )
    assert resp.status_code == 201
    workflow_id = resp.get_json()["data"]["id"]

    stage_ids = []
    for name, node in (("Draft", "Start"), ("Sign off", "End")):
        resp = client.post(
            "/api/stages",
            json={"workflow_id": workflow_id, "name": name, "role_id": role_id, "node_stage": node},
            headers=headers,
        )
        assert resp.status_code == 201
        stage_ids.append(resp.get_json()["data"]["id"])

    resp = client.put(
        "/api/stages/links",
        json=[{"id": stage_ids[0], "next_stage_id": stage_ids[1]}],
        headers=headers,
    )
    assert resp.status_code == 200
    return type_id, workflow_id, stage_ids


def test_duplicate_start_node(client, app_module, admin):
    user, _ = admin
    headers = _headers(app_module, user)
    _, workflow_id, _ = _build_workflow(client, headers, user.role_id)
    resp = client.post(
        "/api/stages",
        json={"workflow_id": workflow_id, "name": "Again", "role_id": user.role_id, "node_stage": "Start"},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "DUPLICATE_NODE_STAGE"


def test_document_lifecycle(client, app_module, admin, monkeypatch):
    user, _ = admin
    headers = _headers(app_module, user)
    type_id, workflow_id, stage_ids = _build_workflow(client, headers, user.role_id)

    resp = client.get(f"/api/workflows/{workflow_id}/sequence", headers=headers)
    assert [s["sequence"] for s in resp.get_json()["data"]] == [1, 2]

    resp = client.post(
        "/api/documents",
        data={
            "data": json.dumps({"name": "Lease", "workflow_type_id": type_id, "workflow_id": workflow_id}),
            "document": (io.BytesIO(PDF_BYTES), "lease.pdf"),
        },
        content_type="multipart/form-data",
        headers=headers,
    )
    assert resp.status_code == 201
    document = resp.get_json()["data"]
    assert document["file_url"].startswith("/fs/documents/")

    resp = client.post(f"/api/documents/{document['id']}/submit", headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "NO_FIELDS_BOUND"

    field = {
        "field_name": "signature",
        "field_type": "Signature",
        "page_numbers": 1,
        "field_label": "Landlord",
        "x_coordinates": 100,
        "y_coordinates": 600,
        "width": 120,
        "height": 40,
        "stages": 2,
    }
    resp = client.post(
        "/api/document-fields",
        json={"document_id": document["id"], "doc_data": [field]},
        headers=headers,
    )
    assert resp.status_code == 201

    for stage_id in stage_ids:
        resp = client.put(
            f"/api/documents/{document['id']}/stage",
            json={"stage_id": stage_id, "action_by_id": user.id},
            headers=headers,
        )
        assert resp.status_code == 200

    resp = client.post(f"/api/documents/{document['id']}/submit", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["current_stage"] == 1

    resp = client.get("/api/documents/requests/me", headers=headers)
    assert [d["id"] for d in resp.get_json()["data"]] == [document["id"]]

    def version(status, with_signature=True):
        data = {
            "data": json.dumps({"document_id": document["id"], "status": status, "content": status}),
            "documents": (io.BytesIO(PDF_BYTES), "lease.pdf"),
        }
        if with_signature:
            data["signatureFile"] = (io.BytesIO(PNG_BYTES), "sig.png")
        return client.post(
            "/api/document-versions",
            data=data,
            content_type="multipart/form-data",
            headers=headers,
        )

    resp = version("Accepted")
    assert resp.status_code == 201
    body = resp.get_json()["data"]
    assert body["document"]["current_stage"] == 2
    assert body["document"]["file_url"] == body["version"]["file_url"]

    documents = importlib.import_module("documents")
    monkeypatch.setattr(documents, "embed_signature", lambda pdf, signatures, document_id=None: b"%PDF signed")
    resp = version("Completed")
    assert resp.status_code == 201
    assert resp.get_json()["data"]["document"]["status"] == "Completed"

    resp = version("Accepted")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "DOCUMENT_FINALIZED"

    resp = client.get(f"/api/documents/{document['id']}/versions", headers=headers)
    assert [v["content"] for v in resp.get_json()["data"]] == [
        "Completed",
        "Accepted",
        "Document Submitted",
    ]


def test_upload_type_and_size_limits(client, app_module, admin, monkeypatch):
    user, _ = admin
    headers = _headers(app_module, user)
    payload = json.dumps({"name": "Lease", "workflow_type_id": 1, "workflow_id": 1})

    resp = client.post(
        "/api/documents",
        data={"data": payload, "document": (io.BytesIO(b"text"), "lease.docx")},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert resp.status_code == 400
    assert "PDF" in resp.get_json()["message"]

    monkeypatch.setattr(app_module, "MAX_UPLOAD_BYTES", 4)
    resp = client.post(
        "/api/documents",
        data={"data": payload, "document": (io.BytesIO(PDF_BYTES), "lease.pdf")},
        content_type="multipart/form-data",
        headers=headers,
    )
    assert resp.status_code == 400
    assert "limit" in resp.get_json()["message"]


def test_oversized_request_is_refused_before_parsing(client, app_module, admin, monkeypatch):
    user, _ = admin
    assert app_module.app.config["MAX_CONTENT_LENGTH"] == app_module.MAX_REQUEST_BYTES
    monkeypatch.setitem(app_module.app.config, "MAX_CONTENT_LENGTH", 64)
    payload = json.dumps({"name": "Lease", "workflow_type_id": 1, "workflow_id": 1})

    resp = client.post(
        "/api/documents",
        data={"data": payload, "document": (io.BytesIO(PDF_BYTES * 20), "lease.pdf")},
        content_type="multipart/form-data",
        headers=_headers(app_module, user),
    )
    assert resp.status_code == 413
    assert resp.get_json()["code"] == "PAYLOAD_TOO_LARGE"
