"""SQLAlchemy schema definitions and session management."""

from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Any

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from media_blurhash.db_helpers import normalize_database_url
from utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class Asset(Base):
    """A media library entry; ``file_path`` is null for assets without a stored file."""

    __tablename__ = "assets"

    asset_id: Mapped[str] = mapped_column(String, primary_key=True)
    file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    mime_type: Mapped[str] = mapped_column(String, nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        Index("idx_assets_created", "created_at", "asset_id"),
        Index("idx_assets_mime_type", "mime_type"),
    )


class AssetMeta(Base):
    """Key-value metadata attached to an asset."""

    __tablename__ = "asset_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_id: Mapped[str] = mapped_column(String, ForeignKey("assets.asset_id"), nullable=False)
    meta_key: Mapped[str] = mapped_column(String, nullable=False)
    meta_value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("asset_id", "meta_key", name="uq_asset_meta_asset_key"),
        Index("idx_asset_meta_key", "meta_key"),
    )


class CustomField(Base):
    """Custom field definition, grouped and bound to a location rule."""

    __tablename__ = "custom_field"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    group_key: Mapped[str] = mapped_column(String, nullable=False)
    group_title: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False)
    field_type: Mapped[str] = mapped_column(String, nullable=False)
    location: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_custom_field_group", "group_key"),)


class CustomFieldValue(Base):
    """Value of a custom field for one asset."""

    __tablename__ = "custom_field_value"

    field_key: Mapped[str] = mapped_column(String, ForeignKey("custom_field.key"), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String, ForeignKey("assets.asset_id"), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (Index("idx_custom_field_value_asset", "asset_id"),)


class AssetAttempt(Base):
    """Most recent unsuccessful processing attempt for an asset."""

    __tablename__ = "asset_attempt"

    asset_id: Mapped[str] = mapped_column(String, primary_key=True)
    attempted_at: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)


class ProcessingLease(Base):
    """Claim on a named unit of work shared by every process using the database.

    A row is held by ``owner`` until it is deleted or ``expires_at`` passes.
    """

    __tablename__ = "processing_lease"

    lease_key: Mapped[str] = mapped_column(String, primary_key=True)
    owner: Mapped[str] = mapped_column(String, nullable=False)
    acquired_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)


IMAGE_MIME_PREFIX = "image/"


def image_asset_filter() -> Any:
    """Clause restricting queries to assets whose file is an image."""

    return Asset.mime_type.like(f"{IMAGE_MIME_PREFIX}%")


_ENGINE_CACHE: dict[str, Engine] = {}
_ENGINE_LOCK = Lock()


def _ensure_parent_directory(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.error("db_parent_directory_error", extra={"path": str(path), "error": str(exc)})
        raise


def get_engine(target: str | Path) -> Engine:
    """Return a cached engine for ``target``, creating the schema on first use."""

    normalized = normalize_database_url(target)
    engine = _ENGINE_CACHE.get(normalized)
    if engine is not None:
        return engine

    with _ENGINE_LOCK:
        engine = _ENGINE_CACHE.get(normalized)
        if engine is not None:
            return engine

        sa_url = make_url(normalized)
        is_sqlite = sa_url.drivername.startswith("sqlite")

        engine_kwargs: dict[str, object] = {}
        if is_sqlite:
            if sa_url.database and sa_url.database != ":memory:":
                _ensure_parent_directory(Path(sa_url.database))
            engine_kwargs["connect_args"] = {"timeout": 30.0, "check_same_thread": False}
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_engine(normalized, **engine_kwargs)

        if is_sqlite:

            @event.listens_for(engine, "connect")
            def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
                """Configure SQLite for concurrent readers and a single writer."""

                cursor = dbapi_connection.cursor()
                try:
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA busy_timeout = 30000")
                    cursor.execute("PRAGMA foreign_keys = ON")
                finally:
                    cursor.close()

        try:
            Base.metadata.create_all(engine)
        except OperationalError as exc:
            # Several workers may race on CREATE TABLE for a fresh SQLite file.
            if "already exists" in str(exc).lower():
                LOGGER.info("db_create_all_table_exists_race", extra={"target": normalized, "error": str(exc)})
            else:
                raise

        _ENGINE_CACHE[normalized] = engine
        return engine


def open_primary_session(target: str | Path) -> Session:
    """Open a session on the media database."""

    return Session(get_engine(target))


def dispose_engines() -> None:
    """Dispose every cached engine (used on shutdown and between tests)."""

    with _ENGINE_LOCK:
        for engine in _ENGINE_CACHE.values():
            engine.dispose()
        _ENGINE_CACHE.clear()


__all__ = [
    "Base",
    "Asset",
    "AssetMeta",
    "CustomField",
    "CustomFieldValue",
    "AssetAttempt",
    "ProcessingLease",
    "IMAGE_MIME_PREFIX",
    "image_asset_filter",
    "get_engine",
    "open_primary_session",
    "dispose_engines",
]
