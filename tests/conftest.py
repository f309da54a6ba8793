import os
import sys
import importlib
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root / "docflow"))

_tmp = Path(tempfile.mkdtemp(prefix="docflow-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp / 'test.db'}"
os.environ["STORAGE__TYPE"] = "fs"
os.environ["STORAGE__FS_PATH"] = str(_tmp / "files")
os.environ["STORAGE__FS_PUBLIC_URL"] = "/fs"
os.environ["DOCFLOW_JWT_SECRET"] = "test-secret"
os.environ["SIGNER_API_URL"] = "http://signer.test/sign"

PDF_BYTES = b"%PDF-1.4\n% docflow test document\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\nsignature"


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    models = importlib.import_module("models")
    models.Base.metadata.create_all(bind=models.engine)

    yield

    models.Base.metadata.drop_all(bind=models.engine)


@pytest.fixture(autouse=True)
def reset_database():
    m = importlib.import_module("models")
    m.Base.metadata.drop_all(bind=m.engine)
    m.Base.metadata.create_all(bind=m.engine)
    yield


@pytest.fixture(autouse=True)
def clean_storage():
    storage = importlib.import_module("storage")
    base = storage.storage_client.base_path
    shutil.rmtree(base, ignore_errors=True)
    base.mkdir(parents=True, exist_ok=True)
    yield


@pytest.fixture
def session():
    m = importlib.import_module("models")
    db = m.SessionLocal()
    yield db
    db.close()


@pytest.fixture
def scenario():
    """Start -> Intermediate -> End workflow with one role and user per stage."""
    m = importlib.import_module("models")
    db = m.SessionLocal()
    try:
        roles = [m.Role(name=name) for name in ("Author", "Reviewer", "Approver")]
        db.add_all(roles)
        db.flush()
        users = [
            m.User(name=f"user{i}", email=f"user{i}@example.com", role_id=role.id)
            for i, role in enumerate(roles, start=1)
        ]
        outsider = m.User(name="outsider", email="outsider@example.com", role_id=roles[0].id)
        db.add_all([*users, outsider])

        workflow_type = m.WorkflowType(name="Contracts")
        workflow = m.Workflow(name="Contract approval", workflow_type=workflow_type)
        start = m.Stage(
            workflow=workflow, name="Draft", role_id=roles[0].id,
            node_stage="Start", stage_type="Draft",
        )
        middle = m.Stage(
            workflow=workflow, name="Legal review", role_id=roles[1].id,
            node_stage="Intermediate", stage_type="Signature",
        )
        end = m.Stage(
            workflow=workflow, name="Sign off", role_id=roles[2].id,
            node_stage="End", stage_type="Finish",
        )
        db.add_all([workflow_type, workflow, start, middle, end])
        db.flush()
        start.next_stage_id = middle.id
        middle.next_stage_id = end.id
        db.commit()

        return SimpleNamespace(
            roles=[role.id for role in roles],
            users=[user.id for user in users],
            outsider=outsider.id,
            workflow_type_id=workflow_type.id,
            workflow_id=workflow.id,
            stages=[start.id, middle.id, end.id],
        )
    finally:
        db.close()


@pytest.fixture
def new_document(scenario):
    """Create an unsubmitted document on the scenario workflow."""
    documents = importlib.import_module("documents")

    def create(name="Supply contract"):
        return documents.create_document(
            name=name,
            workflow_type_id=scenario.workflow_type_id,
            workflow_id=scenario.workflow_id,
            filename="contract.pdf",
            body=PDF_BYTES,
            content_type="application/pdf",
            user_id=scenario.users[0],
        )

    return create


@pytest.fixture
def text_field():
    return {
        "field_name": "client_name",
        "field_type": "Text",
        "page_numbers": 1,
        "field_label": "Client name",
        "x_coordinates": 10,
        "y_coordinates": 20,
        "font_size": 12,
        "stages": 1,
    }


@pytest.fixture
def submitted_document(scenario, new_document, text_field):
    """A submitted document with every stage bound to its scenario user."""
    documents = importlib.import_module("documents")
    document = new_document()
    documents.bind_fields(document.id, [text_field])
    for stage_id, user_id in zip(scenario.stages, scenario.users):
        documents.assign_stage(document.id, stage_id, user_id)
    return documents.submit_document(document.id, scenario.users[0])
