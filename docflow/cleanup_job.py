"""Background job that removes artifacts left behind by failed transitions.

An artifact is uploaded before its transition is committed.  When the commit
fails and the immediate delete fails too, the key is recorded as an
:class:`models.OrphanedBlob` and this job deletes it later.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from sqlalchemy.exc import SQLAlchemyError

from errors import StorageError
from models import OrphanedBlob, get_session
from storage import storage_client

logger = logging.getLogger(__name__)

redis_conn = Redis(
    host=os.getenv("REDIS_HOST", "localhost"),
    port=int(os.getenv("REDIS_PORT", "6379")),
    db=int(os.getenv("REDIS_DB", "0")),
    password=os.getenv("REDIS_PASSWORD"),
)

queue: Queue = Queue("blob_cleanup", connection=redis_conn)


def purge_orphaned_blobs(limit: int = 100) -> int:
    """Delete pending orphaned blobs and return how many were purged."""
    session = get_session()
    purged = 0
    try:
        pending = (
            session.query(OrphanedBlob)
            .filter(OrphanedBlob.purged_at.is_(None))
            .order_by(OrphanedBlob.id)
            .limit(limit)
            .all()
        )
        for blob in pending:
            try:
                storage_client.delete(blob.file_key)
            except StorageError:
                logger.warning("Orphaned blob %s is still not deletable", blob.file_key)
                continue
            blob.purged_at = datetime.utcnow()
            purged += 1
        session.commit()
        return purged
    finally:
        session.close()


def enqueue_cleanup() -> None:
    """Queue a purge run; the cron entry point picks up anything missed."""
    try:
        queue.enqueue(purge_orphaned_blobs, retry=Retry(max=3))
    except RedisError:
        logger.warning("Cleanup queue unavailable; orphaned blobs wait for the next cron run")


def mark_orphaned(file_key: str, reason: str) -> None:
    session = get_session()
    try:
        session.add(OrphanedBlob(file_key=file_key, reason=reason))
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Could not record orphaned blob %s", file_key)
        return
    finally:
        session.close()
    enqueue_cleanup()


def run() -> None:
    purge_orphaned_blobs()


if __name__ == "__main__":
    run()
