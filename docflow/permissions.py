import logging

from errors import UnauthorizedActorError
from models import get_session, Permission, Role

logger = logging.getLogger(__name__)

PERMISSIONS = [
    # Workflow types
    {"name": "CREATE_WORKFLOW_TYPE", "description": "Create a Workflow Type"},
    {"name": "VIEW_WORKFLOW_TYPE", "description": "View Workflow Types"},
    # Workflows
    {"name": "CREATE_WORKFLOW", "description": "Create a Workflow"},
    {"name": "VIEW_WORKFLOW", "description": "View Workflow Details"},
    {"name": "EDIT_WORKFLOW", "description": "Edit Existing Workflow"},
    {"name": "DELETE_WORKFLOW", "description": "Delete a Workflow"},
    # Stages
    {"name": "CREATE_STAGE", "description": "Add a Stage to a Workflow"},
    {"name": "EDIT_STAGE", "description": "Edit Existing Stage"},
    {"name": "DELETE_STAGE", "description": "Delete a Stage"},
    # Documents
    {"name": "CREATE_DOCUMENT", "description": "Upload a Document"},
    {"name": "VIEW_DOCUMENT", "description": "View Document Details"},
    {"name": "ASSIGN_STAGE", "description": "Assign a User to a Document Stage"},
    {"name": "BIND_FIELDS", "description": "Bind Fields to a Document"},
    {"name": "SUBMIT_DOCUMENT", "description": "Submit a Document for Approval"},
]


def can_assign(stage: dict, user) -> bool:
    """Return True if ``user`` may be bound to ``stage``.

    Binding is role based: the user's role must be the role the stage was
    configured with.
    """
    if stage is None or user is None:
        return False
    return user.role_id is not None and user.role_id == stage.get("role_id")


def can_act(stage: dict, user_id: int) -> bool:
    """Return True if ``user_id`` may run a transition at ``stage``.

    Once a stage is bound, only the bound user may act on it, whatever role
    other users hold.
    """
    if stage is None or user_id is None:
        return False
    return stage.get("action_by_id") == user_id


def require_actor(stage: dict, user_id: int) -> None:
    if not can_act(stage, user_id):
        logger.warning(
            "User %s refused at stage %s (bound to %s)",
            user_id,
            stage.get("sequence"),
            stage.get("action_by_id"),
        )
        raise UnauthorizedActorError(user_id, stage.get("sequence"))


def has_permission(role_id: int | None, permission: str) -> bool:
    """Return True if the role holds the named permission."""
    if role_id is None:
        return False
    session = get_session()
    try:
        return (
            session.query(Permission.id)
            .join(Permission.roles)
            .filter(Role.id == role_id, Permission.name == permission.upper())
            .first()
            is not None
        )
    finally:
        session.close()
