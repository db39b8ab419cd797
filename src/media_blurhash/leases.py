"""Database-backed leases that coordinate work across processes.

Celery workers, the web trigger and the scheduler each run their own
pipeline, so in-process locks cannot see one another. A lease is a row in
``processing_lease`` claimed with ``INSERT ... ON CONFLICT DO NOTHING``;
whoever inserts the row holds the lease until it releases it or the row
expires.
"""

from __future__ import annotations

import os
import socket
import time
import uuid
from pathlib import Path

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from media_blurhash.db import ProcessingLease, open_primary_session
from media_blurhash.db_helpers import dialect_insert
from media_blurhash.errors import PersistenceError
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "leases"})

BATCH_LEASE_KEY = "backfill:batch"


def asset_lease_key(asset_id: str) -> str:
    return f"asset:{asset_id}"


def new_lease_owner() -> str:
    """Return a token unique to this process and call."""

    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"


class LeaseStore:
    """Acquire and release named leases in the shared database."""

    def __init__(self, database_url: str | Path) -> None:
        self.database_url = database_url

    def acquire(self, key: str, owner: str, ttl_seconds: float) -> bool:
        """Claim ``key`` for ``owner``; return False while someone else holds it.

        An expired lease is removed in the same transaction, so a crashed
        holder blocks others for at most ``ttl_seconds``.

        Raises:
            PersistenceError: The lease table could not be read or written.
        """

        now = time.time()
        try:
            with open_primary_session(self.database_url) as session:
                session.execute(
                    delete(ProcessingLease).where(
                        ProcessingLease.lease_key == key,
                        ProcessingLease.expires_at <= now,
                    )
                )
                stmt = dialect_insert(session, ProcessingLease).values(
                    lease_key=key,
                    owner=owner,
                    acquired_at=now,
                    expires_at=now + ttl_seconds,
                )
                result = session.execute(stmt.on_conflict_do_nothing(index_elements=["lease_key"]))
                acquired = result.rowcount == 1
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to claim lease {key}: {exc}") from exc

        if not acquired:
            LOGGER.debug("lease_busy", extra={"lease_key": key})
        return acquired

    def release(self, key: str, owner: str) -> None:
        """Drop ``key`` if ``owner`` still holds it; a failed release leaves the row to expire."""

        try:
            with open_primary_session(self.database_url) as session:
                session.execute(
                    delete(ProcessingLease).where(
                        ProcessingLease.lease_key == key,
                        ProcessingLease.owner == owner,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            LOGGER.warning("lease_release_error", extra={"lease_key": key, "error": str(exc)})

    def holder(self, key: str) -> str | None:
        """Return the current unexpired holder of ``key``, if any."""

        try:
            with open_primary_session(self.database_url) as session:
                row = session.get(ProcessingLease, key)
                if row is None or row.expires_at <= time.time():
                    return None
                return row.owner
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to read lease {key}: {exc}") from exc


__all__ = ["BATCH_LEASE_KEY", "LeaseStore", "asset_lease_key", "new_lease_owner"]
