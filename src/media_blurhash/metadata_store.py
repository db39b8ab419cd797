"""Persistence of per-asset hash records.

Two backends share the :class:`MetadataStore` interface. The backend is chosen
once, from ``metadata.backend`` in the settings, when the runtime is built:

- ``asset_meta`` stores the hash as a key-value row in ``asset_meta``;
- ``custom_field`` registers a ``Blurhash`` text field (group
  ``group_blurhash``) and stores the hash as that field's value.

Each backend has exactly one write path, :meth:`MetadataStore.set_hash`,
which upserts on a unique key and is serialized within the process.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from sqlalchemy import and_, exists, func, select
from sqlalchemy.exc import SQLAlchemyError

from media_blurhash.config import Settings
from media_blurhash.db import Asset, AssetMeta, CustomField, CustomFieldValue, image_asset_filter, open_primary_session
from media_blurhash.db_helpers import dialect_insert
from media_blurhash.errors import PersistenceError
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "metadata_store"})

DEFAULT_META_KEY = "blurhash"
BLURHASH_FIELD_KEY = "field_blurhash"
BLURHASH_GROUP_KEY = "group_blurhash"


class MetadataStore(ABC):
    """Read and write hash presence for assets."""

    def __init__(self, database_url: str | Path) -> None:
        self.database_url = database_url
        self._write_lock = threading.Lock()

    @abstractmethod
    def hash_exists_clause(self) -> Any:
        """SQL EXISTS clause, correlated to :class:`Asset`, true when the asset has a hash."""

    @abstractmethod
    def _upsert(self, session: Any, asset_id: str, value: str, now: float) -> None:
        ...

    @abstractmethod
    def _select_value(self, asset_id: str) -> Any:
        ...

    def get_hash(self, asset_id: str) -> str | None:
        try:
            with open_primary_session(self.database_url) as session:
                return session.execute(self._select_value(asset_id)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to read hash for {asset_id}: {exc}", asset_id=asset_id) from exc

    def has_hash(self, asset_id: str) -> bool:
        return self.get_hash(asset_id) is not None

    def set_hash(self, asset_id: str, value: str) -> None:
        """Create or overwrite the single hash record for ``asset_id``.

        Raises:
            PersistenceError: The write failed; no partial record is left behind.
        """

        now = time.time()
        with self._write_lock:
            try:
                with open_primary_session(self.database_url) as session:
                    self._upsert(session, asset_id, value, now)
                    session.commit()
            except SQLAlchemyError as exc:
                LOGGER.error("hash_write_error", extra={"asset_id": asset_id, "error": str(exc)})
                raise PersistenceError(f"failed to store hash for {asset_id}: {exc}", asset_id=asset_id) from exc

    def count_with_hash(self) -> int:
        """Count image assets that currently have a hash record."""

        stmt = select(func.count()).select_from(Asset).where(image_asset_filter(), self.hash_exists_clause())
        try:
            with open_primary_session(self.database_url) as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to count hash records: {exc}") from exc


class AssetMetaStore(MetadataStore):
    """Hash records stored as ``asset_meta`` rows under ``meta_key``."""

    def __init__(self, database_url: str | Path, meta_key: str = DEFAULT_META_KEY) -> None:
        super().__init__(database_url)
        self.meta_key = meta_key

    def hash_exists_clause(self) -> Any:
        return exists().where(and_(AssetMeta.asset_id == Asset.asset_id, AssetMeta.meta_key == self.meta_key))

    def _select_value(self, asset_id: str) -> Any:
        return select(AssetMeta.meta_value).where(AssetMeta.asset_id == asset_id, AssetMeta.meta_key == self.meta_key)

    def _upsert(self, session: Any, asset_id: str, value: str, now: float) -> None:
        stmt = dialect_insert(session, AssetMeta).values(
            asset_id=asset_id,
            meta_key=self.meta_key,
            meta_value=value,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["asset_id", "meta_key"],
            set_={"meta_value": value, "updated_at": now},
        )
        session.execute(stmt)


class CustomFieldStore(MetadataStore):
    """Hash records stored as values of a registered custom text field."""

    def __init__(
        self,
        database_url: str | Path,
        field_name: str = DEFAULT_META_KEY,
        field_key: str = BLURHASH_FIELD_KEY,
        group_key: str = BLURHASH_GROUP_KEY,
    ) -> None:
        super().__init__(database_url)
        self.field_name = field_name
        self.field_key = field_key
        self.group_key = group_key
        self.ensure_field_group()

    def ensure_field_group(self) -> None:
        """Register the field definition if it does not exist yet."""

        with self._write_lock:
            try:
                with open_primary_session(self.database_url) as session:
                    stmt = dialect_insert(session, CustomField).values(
                        key=self.field_key,
                        group_key=self.group_key,
                        group_title="Blurhash",
                        name=self.field_name,
                        label="Blurhash",
                        field_type="text",
                        location="attachment == all",
                        created_at=time.time(),
                    )
                    session.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))
                    session.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"failed to register custom field {self.field_key}: {exc}") from exc

        LOGGER.info("custom_field_registered", extra={"field_key": self.field_key, "group_key": self.group_key})

    def hash_exists_clause(self) -> Any:
        return exists().where(
            and_(CustomFieldValue.asset_id == Asset.asset_id, CustomFieldValue.field_key == self.field_key)
        )

    def _select_value(self, asset_id: str) -> Any:
        return select(CustomFieldValue.value).where(
            CustomFieldValue.asset_id == asset_id,
            CustomFieldValue.field_key == self.field_key,
        )

    def _upsert(self, session: Any, asset_id: str, value: str, now: float) -> None:
        stmt = dialect_insert(session, CustomFieldValue).values(
            field_key=self.field_key,
            asset_id=asset_id,
            value=value,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["field_key", "asset_id"],
            set_={"value": value, "updated_at": now},
        )
        session.execute(stmt)


def build_metadata_store(settings: Settings) -> MetadataStore:
    """Construct the metadata backend named by ``settings.metadata.backend``."""

    backend = settings.metadata.backend
    url = settings.databases.primary_url
    if backend == "asset_meta":
        return AssetMetaStore(url, meta_key=settings.metadata.meta_key)
    if backend == "custom_field":
        return CustomFieldStore(url, field_name=settings.metadata.meta_key)
    raise ValueError(f"Unsupported metadata backend: {backend!r}")


__all__ = [
    "MetadataStore",
    "AssetMetaStore",
    "CustomFieldStore",
    "BLURHASH_FIELD_KEY",
    "BLURHASH_GROUP_KEY",
    "DEFAULT_META_KEY",
    "build_metadata_store",
]
