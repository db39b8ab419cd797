"""Configuration loader and typed settings for the blurhash service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

METADATA_BACKENDS: frozenset[str] = frozenset({"asset_meta", "custom_field"})


@dataclass
class DatabaseConfig:
    """Database holding the media asset table and hash metadata."""

    primary_url: str = "sqlite:///data/media.db"


@dataclass
class BlurhashConfig:
    """Encoder component counts; the output length depends on both."""

    components_x: int = 4
    components_y: int = 3


@dataclass
class MetadataConfig:
    """Which metadata backend stores hash records.

    ``asset_meta`` keeps one key-value row per asset. ``custom_field`` stores
    the hash as a value of a registered custom field definition.
    """

    backend: str = "asset_meta"
    meta_key: str = "blurhash"


@dataclass
class BackfillConfig:
    """Limits for scheduled and manual backfill runs."""

    batch_limit: int = 50
    workers: int = 1
    asset_timeout_seconds: float = 30.0
    interval_seconds: float = 3600.0
    run_on_start: bool = False


@dataclass
class QueueConfig:
    """Celery broker and queue names for the upload and backfill triggers."""

    broker_url: str = "redis://localhost:6379/0"
    result_backend: str = "redis://localhost:6379/1"
    upload_queue: str = "blurhash_upload"
    backfill_queue: str = "blurhash_backfill"


@dataclass
class WebUIConfig:
    api_token: str | None = None
    host: str = "127.0.0.1"
    port: int = 5000


@dataclass
class Settings:
    """Top-level application settings."""

    databases: DatabaseConfig = field(default_factory=DatabaseConfig)
    blurhash: BlurhashConfig = field(default_factory=BlurhashConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    backfill: BackfillConfig = field(default_factory=BackfillConfig)
    queues: QueueConfig = field(default_factory=QueueConfig)
    webui: WebUIConfig = field(default_factory=WebUIConfig)


def _project_root() -> Path:
    """Best-effort detection of the repository root for config discovery."""

    module_path = Path(__file__).resolve()
    try:
        return module_path.parents[2]
    except IndexError:  # pragma: no cover
        return module_path.parent


def _default_settings_paths() -> list[Path]:
    cwd_candidate = (Path.cwd() / "config" / "settings.yaml").resolve()
    repo_candidate = (_project_root() / "config" / "settings.yaml").resolve()
    if cwd_candidate == repo_candidate:
        return [cwd_candidate]
    return [cwd_candidate, repo_candidate]


def _resolve_settings_path(settings_path: Path | str | None) -> Path:
    """Pick the settings file: explicit path, then env override, then defaults."""

    if settings_path:
        return Path(settings_path).expanduser().resolve()

    env_override = os.getenv("MEDIA_BLURHASH_SETTINGS")
    if env_override:
        return Path(env_override).expanduser().resolve()

    candidates = _default_settings_paths()
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def load_settings(settings_path: Path | str | None = None) -> Settings:
    """Load settings from YAML, falling back to defaults.

    A missing or malformed file yields default :class:`Settings`; individual
    keys with the wrong type are ignored. ``MEDIA_BLURHASH_API_TOKEN`` always
    overrides ``webui.api_token``.
    """

    path = _resolve_settings_path(settings_path)
    settings = Settings()

    raw: Any = {}
    if path.exists() and path.is_file():
        with path.open("r", encoding="utf-8") as fp:
            raw = yaml.safe_load(fp) or {}
    if not isinstance(raw, dict):
        raw = {}

    databases_raw = _as_dict(raw.get("databases"))
    if isinstance(databases_raw.get("primary_url"), str):
        settings.databases.primary_url = databases_raw["primary_url"]

    blurhash_raw = _as_dict(raw.get("blurhash"))
    blurhash_cfg = settings.blurhash
    for key in ("components_x", "components_y"):
        value = blurhash_raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 9:
            setattr(blurhash_cfg, key, value)

    metadata_raw = _as_dict(raw.get("metadata"))
    metadata_cfg = settings.metadata
    backend = metadata_raw.get("backend")
    if isinstance(backend, str):
        if backend not in METADATA_BACKENDS:
            raise ValueError(f"Unsupported metadata backend: {backend!r}")
        metadata_cfg.backend = backend
    if isinstance(metadata_raw.get("meta_key"), str) and metadata_raw["meta_key"].strip():
        metadata_cfg.meta_key = metadata_raw["meta_key"].strip()

    backfill_raw = _as_dict(raw.get("backfill"))
    backfill_cfg = settings.backfill
    if isinstance(backfill_raw.get("batch_limit"), int) and backfill_raw["batch_limit"] > 0:
        backfill_cfg.batch_limit = backfill_raw["batch_limit"]
    if isinstance(backfill_raw.get("workers"), int) and backfill_raw["workers"] > 0:
        backfill_cfg.workers = backfill_raw["workers"]
    if _is_number(backfill_raw.get("asset_timeout_seconds")) and backfill_raw["asset_timeout_seconds"] > 0:
        backfill_cfg.asset_timeout_seconds = float(backfill_raw["asset_timeout_seconds"])
    if _is_number(backfill_raw.get("interval_seconds")) and backfill_raw["interval_seconds"] > 0:
        backfill_cfg.interval_seconds = float(backfill_raw["interval_seconds"])
    if isinstance(backfill_raw.get("run_on_start"), bool):
        backfill_cfg.run_on_start = backfill_raw["run_on_start"]

    queue_raw = _as_dict(raw.get("queues"))
    queue_cfg = settings.queues
    for key in ("broker_url", "result_backend", "upload_queue", "backfill_queue"):
        if isinstance(queue_raw.get(key), str):
            setattr(queue_cfg, key, queue_raw[key])

    webui_raw = _as_dict(raw.get("webui"))
    webui_cfg = settings.webui
    if isinstance(webui_raw.get("api_token"), str) and webui_raw["api_token"]:
        webui_cfg.api_token = webui_raw["api_token"]
    if isinstance(webui_raw.get("host"), str):
        webui_cfg.host = webui_raw["host"]
    if isinstance(webui_raw.get("port"), int):
        webui_cfg.port = webui_raw["port"]

    env_token = os.getenv("MEDIA_BLURHASH_API_TOKEN")
    if env_token:
        webui_cfg.api_token = env_token

    return settings


__all__ = [
    "DatabaseConfig",
    "BlurhashConfig",
    "MetadataConfig",
    "BackfillConfig",
    "QueueConfig",
    "WebUIConfig",
    "Settings",
    "METADATA_BACKENDS",
    "load_settings",
]
