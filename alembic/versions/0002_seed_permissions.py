"""Seed permissions and the ADMIN role

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

PERMISSIONS = [
    ("CREATE_WORKFLOW_TYPE", "Create a Workflow Type"),
    ("VIEW_WORKFLOW_TYPE", "View Workflow Types"),
    ("CREATE_WORKFLOW", "Create a Workflow"),
    ("VIEW_WORKFLOW", "View Workflow Details"),
    ("EDIT_WORKFLOW", "Edit Existing Workflow"),
    ("DELETE_WORKFLOW", "Delete a Workflow"),
    ("CREATE_STAGE", "Add a Stage to a Workflow"),
    ("EDIT_STAGE", "Edit Existing Stage"),
    ("DELETE_STAGE", "Delete a Stage"),
    ("CREATE_DOCUMENT", "Upload a Document"),
    ("VIEW_DOCUMENT", "View Document Details"),
    ("ASSIGN_STAGE", "Assign a User to a Document Stage"),
    ("BIND_FIELDS", "Bind Fields to a Document"),
    ("SUBMIT_DOCUMENT", "Submit a Document for Approval"),
]


def upgrade() -> None:
    for name, description in PERMISSIONS:
        op.execute(
            sa.text(
                "INSERT INTO permissions (name, description) VALUES (:name, :description) "
                "ON CONFLICT (name) DO NOTHING"
            ).bindparams(name=name, description=description)
        )

    op.execute(
        "INSERT INTO roles (name, description) VALUES ('ADMIN', 'Administrator') "
        "ON CONFLICT (name) DO NOTHING"
    )

    op.execute(
        """
        INSERT INTO role_permissions (role_id, permission_id)
        SELECT r.id, p.id FROM roles r, permissions p
        WHERE r.name='ADMIN'
        ON CONFLICT DO NOTHING
        """
    )


def downgrade() -> None:
    op.execute(
        "DELETE FROM role_permissions WHERE role_id = (SELECT id FROM roles WHERE name='ADMIN')"
    )
    op.execute("DELETE FROM roles WHERE name='ADMIN'")
    names = ", ".join(f"'{name}'" for name, _ in PERMISSIONS)
    op.execute(f"DELETE FROM permissions WHERE name IN ({names})")
