"""Audit trail helpers."""

from datetime import datetime

from models import AuditLog, get_session


def log_action(
    user_id=None,
    doc_id=None,
    action=None,
    *,
    entity_type=None,
    entity_id=None,
    payload=None,
    connection=None,
):
    """Persist an audit log entry.

    When ``connection`` is given the row is written through it, so it commits
    or rolls back together with the surrounding transaction.
    """
    if entity_type is None and entity_id is None and doc_id is not None:
        entity_type = "Document"
        entity_id = doc_id

    data = {
        "user_id": user_id,
        "doc_id": doc_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "payload": payload,
        "at": datetime.utcnow(),
    }

    if connection is not None:
        connection.execute(AuditLog.__table__.insert(), [data])
    else:
        session = get_session()
        try:
            session.execute(AuditLog.__table__.insert(), [data])
            session.commit()
        finally:
            session.close()
