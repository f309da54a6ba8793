import importlib

import pytest

from conftest import PDF_BYTES

audit = importlib.import_module("audit")
documents = importlib.import_module("documents")
models = importlib.import_module("models")


def _logs(session, **filters):
    return (
        session.query(models.AuditLog)
        .filter_by(**filters)
        .order_by(models.AuditLog.id)
        .all()
    )


def test_log_action_defaults_entity_to_document(session):
    audit.log_action(3, 7, "viewed")
    entry = _logs(session)[0]
    assert (entry.user_id, entry.doc_id, entry.action) == (3, 7, "viewed")
    assert (entry.entity_type, entry.entity_id) == ("Document", 7)


def test_document_lifecycle_is_audited(session, scenario, submitted_document):
    documents.create_version(
        submitted_document.id, "Reviewed", scenario.users[0], "looks fine",
        "upload.pdf", PDF_BYTES, "application/pdf",
    )

    actions = [entry.action for entry in _logs(session, doc_id=submitted_document.id)]
    assert actions[0] == "create"
    assert actions.count("version_created") == 2

    transitions = [
        entry.payload["transition"]
        for entry in _logs(session, doc_id=submitted_document.id, action="update")
        if "transition" in (entry.payload or {})
    ]
    assert transitions == ["Submitted", "Reviewed"]


def test_rolled_back_transition_leaves_no_audit(session, scenario, submitted_document, monkeypatch):
    before = len(_logs(session))

    def broken_append(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(documents, "append", broken_append)
    with pytest.raises(RuntimeError):
        documents.create_version(
            submitted_document.id, "Reviewed", scenario.users[0], None,
            "upload.pdf", PDF_BYTES, "application/pdf",
        )
    assert len(_logs(session)) == before


def test_transition_audit_records_the_actor(session, scenario, submitted_document):
    documents.create_version(
        submitted_document.id, "Reviewed", scenario.users[0], None,
        "upload.pdf", PDF_BYTES, "application/pdf",
    )

    actors = {
        entry.payload["transition"]: entry.user_id
        for entry in _logs(session, doc_id=submitted_document.id, action="update")
        if "transition" in (entry.payload or {})
    }
    assert actors == {"Submitted": scenario.users[0], "Reviewed": scenario.users[0]}
