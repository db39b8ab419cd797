"""Access to media assets: file references, pending selection, and counts."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from media_blurhash.db import IMAGE_MIME_PREFIX, Asset, AssetAttempt, image_asset_filter, open_primary_session
from media_blurhash.db_helpers import dialect_insert
from media_blurhash.errors import PersistenceError, SelectionError
from media_blurhash.metadata_store import MetadataStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "media_store"})


class MediaStore(ABC):
    """Read-side view of the media library used by the pipeline."""

    @abstractmethod
    def get_file_path(self, asset_id: str) -> Path | None:
        """Return the image file for ``asset_id``, or None when there is none to hash."""

    @abstractmethod
    def select_pending(self, limit: int) -> list[str]:
        """Return up to ``limit`` image asset ids without a hash.

        Never-attempted assets come first, oldest first; assets whose last
        attempt failed follow, least recently attempted first.
        """

    @abstractmethod
    def count_total(self) -> int:
        """Count image assets."""

    @abstractmethod
    def record_attempt(self, asset_id: str, reason: str) -> None:
        """Remember that processing ``asset_id`` ended without a hash."""


class SqlMediaStore(MediaStore):
    """Media store backed by the ``assets`` table.

    Pending selection consults the configured metadata store so that "has a
    hash" means the same thing for selection, statistics, and writes.
    """

    def __init__(self, database_url: str | Path, metadata_store: MetadataStore) -> None:
        self.database_url = database_url
        self.metadata_store = metadata_store

    def get_file_path(self, asset_id: str) -> Path | None:
        try:
            with open_primary_session(self.database_url) as session:
                row = session.get(Asset, asset_id)
                if row is None:
                    LOGGER.warning("asset_missing", extra={"asset_id": asset_id})
                    return None
                file_path, mime_type = row.file_path, row.mime_type
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load asset {asset_id}: {exc}", asset_id=asset_id) from exc

        if not file_path:
            return None
        if not mime_type.startswith(IMAGE_MIME_PREFIX):
            LOGGER.info("asset_not_an_image", extra={"asset_id": asset_id, "mime_type": mime_type})
            return None

        path = Path(file_path)
        if not path.is_file():
            LOGGER.error("asset_file_missing", extra={"asset_id": asset_id, "path": file_path})
            return None
        return path

    def select_pending(self, limit: int) -> list[str]:
        if limit < 1:
            return []

        stmt = (
            select(Asset.asset_id)
            .outerjoin(AssetAttempt, AssetAttempt.asset_id == Asset.asset_id)
            .where(image_asset_filter(), ~self.metadata_store.hash_exists_clause())
            .order_by(func.coalesce(AssetAttempt.attempted_at, 0.0), Asset.created_at, Asset.asset_id)
            .limit(limit)
        )
        try:
            with open_primary_session(self.database_url) as session:
                return list(session.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            LOGGER.error("pending_selection_error", extra={"limit": limit, "error": str(exc)})
            raise SelectionError(f"pending asset query failed: {exc}") from exc

    def count_total(self) -> int:
        stmt = select(func.count()).select_from(Asset).where(image_asset_filter())
        try:
            with open_primary_session(self.database_url) as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to count assets: {exc}") from exc

    def record_attempt(self, asset_id: str, reason: str) -> None:
        now = time.time()
        try:
            with open_primary_session(self.database_url) as session:
                stmt = dialect_insert(session, AssetAttempt).values(asset_id=asset_id, attempted_at=now, reason=reason)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["asset_id"],
                    set_={"attempted_at": now, "reason": reason},
                )
                session.execute(stmt)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to record attempt for {asset_id}: {exc}", asset_id=asset_id) from exc

    def register_asset(
        self,
        asset_id: str,
        file_path: Path | None,
        mime_type: str,
        size_bytes: int = 0,
        created_at: float | None = None,
    ) -> bool:
        """Insert an asset row if it does not exist; return True when it was created."""

        now = time.time()
        with open_primary_session(self.database_url) as session:
            existing = session.get(Asset, asset_id)
            if existing is not None:
                resolved = str(file_path.resolve()) if file_path is not None else None
                if resolved and existing.file_path != resolved:
                    existing.file_path = resolved
                    existing.updated_at = now
                    session.commit()
                return False

            session.add(
                Asset(
                    asset_id=asset_id,
                    file_path=str(file_path.resolve()) if file_path is not None else None,
                    mime_type=mime_type,
                    size_bytes=size_bytes,
                    created_at=created_at if created_at is not None else now,
                    updated_at=now,
                )
            )
            session.commit()
        return True


__all__ = ["MediaStore", "SqlMediaStore"]
