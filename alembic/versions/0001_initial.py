"""Initial database schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

NODE_STAGES = ("Start", "Intermediate", "End")
STAGE_TYPES = ("Draft", "Signature", "Review", "Finish")
STAGE_STATUSES = ("Created", "Accepted", "Rejected", "Review", "Reviewed", "Opened", "Completed")
DOCUMENT_STATUSES = ("InTransition", "Review", "Completed", "Rejected")


def upgrade() -> None:
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String()),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String()),
    )
    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id"), nullable=False),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permission"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), unique=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=True),
    )
    op.create_table(
        "workflow_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("workflow_type_id", sa.Integer(), sa.ForeignKey("workflow_types.id"), nullable=False),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_table(
        "stages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("action_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("node_stage", sa.Enum(*NODE_STAGES, name="node_stage"), nullable=False),
        sa.Column("stage_type", sa.Enum(*STAGE_TYPES, name="stage_type"), nullable=False),
        sa.Column("status", sa.Enum(*STAGE_STATUSES, name="stage_status"), nullable=False),
        sa.Column("next_stage_id", sa.Integer(), sa.ForeignKey("stages.id"), nullable=True),
        sa.Column("node_position_x", sa.String()),
        sa.Column("node_position_y", sa.String()),
    )
    op.create_index("ix_stages_workflow_id", "stages", ["workflow_id"])
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("workflows.id"), nullable=False),
        sa.Column("workflow_type_id", sa.Integer(), sa.ForeignKey("workflow_types.id"), nullable=False),
        sa.Column("workflow_stages", sa.JSON(), nullable=False),
        sa.Column("current_stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Enum(*DOCUMENT_STATUSES, name="document_status"), nullable=True),
        sa.Column("file_key", sa.String(), nullable=False),
        sa.Column("file_url", sa.String()),
        sa.Column("file_size", sa.Integer()),
        sa.Column("file_type", sa.String()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_documents_name", "documents", ["name"])
    op.create_table(
        "document_fields",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("doc_data", sa.JSON(), nullable=False),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_document_fields_document_id", "document_fields", ["document_id"])
    op.create_table(
        "document_versions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("action", sa.String()),
        sa.Column("content", sa.Text()),
        sa.Column("file_key", sa.String()),
        sa.Column("file_url", sa.String()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_document_versions_document_id", "document_versions", ["document_id"])
    op.create_table(
        "document_signatures",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=False, unique=True),
        sa.Column("signature_data", sa.JSON(), nullable=False),
    )
    op.create_table(
        "orphaned_blobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("file_key", sa.String(), nullable=False),
        sa.Column("reason", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("purged_at", sa.DateTime()),
    )
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("doc_id", sa.Integer(), sa.ForeignKey("documents.id")),
        sa.Column("entity_type", sa.String()),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON()),
        sa.Column("at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "orphaned_blobs",
        "document_signatures",
        "document_versions",
        "document_fields",
        "documents",
        "stages",
        "workflows",
        "workflow_types",
        "users",
        "role_permissions",
        "roles",
        "permissions",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for name in ("document_status", "stage_status", "stage_type", "node_stage"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
