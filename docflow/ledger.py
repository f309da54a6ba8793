"""Append-only record of document versions."""

from __future__ import annotations

from datetime import datetime

from models import Document, DocumentVersion


def append(
    session,
    document_id: int,
    version: int,
    content: str | None,
    file_key: str | None,
    file_url: str | None,
    actor_id: int | None,
    action: str | None = None,
    timestamp: datetime | None = None,
) -> DocumentVersion:
    """Add a ledger row to ``session``'s transaction and flush it.

    The caller commits; nothing is written if the transaction rolls back.
    """
    entry = DocumentVersion(
        document_id=document_id,
        version=version,
        action=action,
        content=content,
        file_key=file_key,
        file_url=file_url,
        created_by_id=actor_id,
        created_at=timestamp or datetime.utcnow(),
    )
    session.add(entry)
    session.flush()
    return entry


def recent_versions(session, document_id: int, limit: int | None = None) -> list[DocumentVersion]:
    query = (
        session.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version.desc(), DocumentVersion.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def latest_version(session, document_id: int) -> DocumentVersion | None:
    versions = recent_versions(session, document_id, limit=1)
    return versions[0] if versions else None


def display_file_key(session, document: Document) -> str:
    """Storage key of the file to show for ``document``.

    Once a document has been submitted the newest ledger entry wins over the
    key stored on the document itself.
    """
    if (document.current_version or 0) > 0:
        latest = latest_version(session, document.id)
        if latest is not None and latest.file_key:
            return latest.file_key
    return document.file_key


__all__ = ["append", "recent_versions", "latest_version", "display_file_key"]
