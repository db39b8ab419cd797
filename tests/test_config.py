"""Tests for YAML settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from media_blurhash.config import load_settings


def _write(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_missing_file_yields_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEDIA_BLURHASH_API_TOKEN", raising=False)

    settings = load_settings(tmp_path / "absent.yaml")

    assert settings.blurhash.components_x == 4
    assert settings.blurhash.components_y == 3
    assert settings.metadata.backend == "asset_meta"
    assert settings.backfill.batch_limit == 50
    assert settings.backfill.asset_timeout_seconds == 30.0
    assert settings.webui.api_token is None


def test_values_are_read_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MEDIA_BLURHASH_API_TOKEN", raising=False)
    path = _write(
        tmp_path / "settings.yaml",
        {
            "databases": {"primary_url": "sqlite:///other.db"},
            "blurhash": {"components_x": 5, "components_y": 4},
            "metadata": {"backend": "custom_field", "meta_key": " placeholder "},
            "backfill": {"batch_limit": 10, "workers": 3, "asset_timeout_seconds": 2, "run_on_start": True},
            "queues": {"upload_queue": "uploads"},
            "webui": {"api_token": "abc", "port": 8080},
        },
    )

    settings = load_settings(path)

    assert settings.databases.primary_url == "sqlite:///other.db"
    assert (settings.blurhash.components_x, settings.blurhash.components_y) == (5, 4)
    assert settings.metadata.backend == "custom_field"
    assert settings.metadata.meta_key == "placeholder"
    assert settings.backfill.batch_limit == 10
    assert settings.backfill.workers == 3
    assert settings.backfill.asset_timeout_seconds == 2.0
    assert settings.backfill.run_on_start is True
    assert settings.queues.upload_queue == "uploads"
    assert settings.webui.api_token == "abc"
    assert settings.webui.port == 8080


def test_invalid_values_are_ignored(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "settings.yaml",
        {
            "blurhash": {"components_x": 12, "components_y": True},
            "backfill": {"batch_limit": 0, "workers": "many", "asset_timeout_seconds": -1},
        },
    )

    settings = load_settings(path)

    assert (settings.blurhash.components_x, settings.blurhash.components_y) == (4, 3)
    assert settings.backfill.batch_limit == 50
    assert settings.backfill.workers == 1
    assert settings.backfill.asset_timeout_seconds == 30.0


def test_unknown_metadata_backend_is_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path / "settings.yaml", {"metadata": {"backend": "postmeta_or_acf"}})

    with pytest.raises(ValueError):
        load_settings(path)


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path / "custom.yaml", {"webui": {"api_token": "from-file"}, "backfill": {"batch_limit": 7}})
    monkeypatch.setenv("MEDIA_BLURHASH_SETTINGS", str(path))
    monkeypatch.setenv("MEDIA_BLURHASH_API_TOKEN", "from-env")

    settings = load_settings()

    assert settings.backfill.batch_limit == 7
    assert settings.webui.api_token == "from-env"
