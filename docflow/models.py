import os
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Text,
    ForeignKey,
    DateTime,
    JSON,
    Enum,
    UniqueConstraint,
    Boolean,
    Table,
    event,
    inspect,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from errors import InvalidOperationError

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///docflow.db")

engine = create_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
Base = declarative_base()


class NodeStage(str, PyEnum):
    START = "Start"
    INTERMEDIATE = "Intermediate"
    END = "End"


class StageType(str, PyEnum):
    DRAFT = "Draft"
    SIGNATURE = "Signature"
    REVIEW = "Review"
    FINISH = "Finish"


class StageStatus(str, PyEnum):
    CREATED = "Created"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    REVIEW = "Review"
    REVIEWED = "Reviewed"
    OPENED = "Opened"
    COMPLETED = "Completed"


class DocumentStatus(str, PyEnum):
    IN_TRANSITION = "InTransition"
    REVIEW = "Review"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


class FieldType(str, PyEnum):
    TEXT = "Text"
    SIGNATURE = "Signature"


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class SerializerMixin:
    def to_dict(self) -> dict:
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = value.isoformat()
            data[column.key] = value
        return data


role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("id", Integer, primary_key=True),
    Column("role_id", ForeignKey("roles.id"), nullable=False),
    Column("permission_id", ForeignKey("permissions.id"), nullable=False),
    UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
)


class Permission(SerializerMixin, Base):
    __tablename__ = "permissions"
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String)

    roles = relationship(
        "Role", secondary=role_permissions, back_populates="permissions"
    )


class Role(SerializerMixin, Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String)

    permissions = relationship(
        Permission, secondary=role_permissions, back_populates="roles"
    )
    users = relationship("User", back_populates="role")


class User(SerializerMixin, Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True)

    role = relationship(Role, back_populates="users")


class WorkflowType(SerializerMixin, Base):
    __tablename__ = "workflow_types"
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    workflows = relationship("Workflow", back_populates="workflow_type")


class Workflow(SerializerMixin, Base):
    __tablename__ = "workflows"
    id = Column(Integer, primary_key=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(Text)
    workflow_type_id = Column(Integer, ForeignKey("workflow_types.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    workflow_type = relationship(WorkflowType, back_populates="workflows")
    created_by = relationship(User)


class Stage(SerializerMixin, Base):
    __tablename__ = "stages"
    id = Column(Integer, primary_key=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)
    action_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action_required = Column(Boolean, default=True, nullable=False)
    node_stage = Column(
        Enum(*_values(NodeStage), name="node_stage"),
        default=NodeStage.INTERMEDIATE.value,
        nullable=False,
    )
    stage_type = Column(
        Enum(*_values(StageType), name="stage_type"),
        default=StageType.REVIEW.value,
        nullable=False,
    )
    status = Column(
        Enum(*_values(StageStatus), name="stage_status"),
        default=StageStatus.CREATED.value,
        nullable=False,
    )
    next_stage_id = Column(Integer, ForeignKey("stages.id"), nullable=True)
    # presentation only
    node_position_x = Column(String)
    node_position_y = Column(String)

    workflow = relationship(Workflow, back_populates="stages")
    role = relationship(Role)
    action_by = relationship(User)


class Document(SerializerMixin, Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True)
    name = Column(String, index=True, nullable=False)
    workflow_id = Column(Integer, ForeignKey("workflows.id"), nullable=False)
    workflow_type_id = Column(Integer, ForeignKey("workflow_types.id"), nullable=False)
    # frozen copy of the sequenced stages, see snapshot.take_snapshot
    workflow_stages = Column(JSON, nullable=False, default=list)
    current_stage = Column(Integer, default=0, nullable=False)
    current_version = Column(Integer, default=0, nullable=False)
    status = Column(
        Enum(*_values(DocumentStatus), name="document_status"),
        nullable=True,
    )
    file_key = Column(String, nullable=False)
    file_url = Column(String)
    file_size = Column(Integer)
    file_type = Column(String)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    row_version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": row_version}

    workflow = relationship(Workflow, back_populates="documents")
    workflow_type = relationship(WorkflowType)
    created_by = relationship(User)


class DocumentField(SerializerMixin, Base):
    __tablename__ = "document_fields"
    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    doc_data = Column(JSON, nullable=False, default=list)
    deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    document = relationship(Document, back_populates="fields")


class DocumentVersion(SerializerMixin, Base):
    __tablename__ = "document_versions"
    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    action = Column(String)
    content = Column(Text)
    file_key = Column(String)
    file_url = Column(String)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    document = relationship(Document, back_populates="versions")
    created_by = relationship(User)


class DocumentSignature(SerializerMixin, Base):
    __tablename__ = "document_signatures"
    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False, unique=True)
    signature_data = Column(JSON, nullable=False, default=list)

    document = relationship(Document)


class OrphanedBlob(SerializerMixin, Base):
    """Uploaded artifacts whose transition was rolled back."""
    __tablename__ = "orphaned_blobs"
    id = Column(Integer, primary_key=True)
    file_key = Column(String, nullable=False)
    reason = Column(String)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    purged_at = Column(DateTime)


class AuditLog(SerializerMixin, Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    doc_id = Column(Integer, ForeignKey("documents.id"))
    entity_type = Column(String)
    entity_id = Column(Integer)
    action = Column(String, nullable=False)
    payload = Column(JSON)
    at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User")


# establish relationships defined after class declarations
Workflow.stages = relationship(
    Stage,
    back_populates="workflow",
    cascade="all, delete-orphan",
    foreign_keys=[Stage.workflow_id],
)
Workflow.documents = relationship(Document, back_populates="workflow")
Document.fields = relationship(
    DocumentField, back_populates="document", cascade="all, delete-orphan"
)
Document.versions = relationship(
    DocumentVersion,
    back_populates="document",
    order_by=DocumentVersion.version.desc(),
)


def _capture_changes(target):
    state = inspect(target)
    changes: dict[str, dict[str, object]] = {}
    for attr in state.mapper.column_attrs:
        if attr.key in {"id", "created_at", "row_version", "workflow_stages"}:
            continue
        hist = state.get_history(attr.key, True)
        if hist.has_changes():
            old = hist.deleted[0] if hist.deleted else None
            new = hist.added[0] if hist.added else None
            changes[attr.key] = {"old": old, "new": new}
    if state.get_history("workflow_stages", True).has_changes():
        changes["workflow_stages"] = {"old": None, "new": "reassigned"}
    return changes


@event.listens_for(Document, "after_insert")
def _log_document_insert(mapper, connection, target):
    from audit import log_action

    log_action(
        user_id=target.created_by_id,
        doc_id=target.id,
        action="create",
        entity_type="Document",
        entity_id=target.id,
        payload={"name": target.name, "workflow_id": target.workflow_id},
        connection=connection,
    )


@event.listens_for(Document, "after_update")
def _log_document_update(mapper, connection, target):
    from audit import log_action

    changes = _capture_changes(target)
    if changes:
        log_action(
            user_id=None,
            doc_id=target.id,
            action="update",
            entity_type="Document",
            entity_id=target.id,
            payload={"changes": changes},
            connection=connection,
        )


@event.listens_for(DocumentVersion, "after_insert")
def _log_version_insert(mapper, connection, target):
    from audit import log_action

    log_action(
        user_id=target.created_by_id,
        doc_id=target.document_id,
        action="version_created",
        entity_type="DocumentVersion",
        entity_id=target.id,
        payload={"version": target.version, "action": target.action},
        connection=connection,
    )


@event.listens_for(DocumentVersion, "before_update")
def _refuse_version_update(mapper, connection, target):
    raise InvalidOperationError("Document versions are append-only")


@event.listens_for(DocumentVersion, "before_delete")
def _refuse_version_delete(mapper, connection, target):
    raise InvalidOperationError("Document versions are append-only")


# Database schema migrations are managed via Alembic for server databases;
# SQLite development databases are created from the metadata.

def get_session():
    return SessionLocal()


__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "get_session",
    "NodeStage",
    "StageType",
    "StageStatus",
    "DocumentStatus",
    "FieldType",
    "Permission",
    "Role",
    "User",
    "WorkflowType",
    "Workflow",
    "Stage",
    "Document",
    "DocumentField",
    "DocumentVersion",
    "DocumentSignature",
    "OrphanedBlob",
    "AuditLog",
]
