"""Tests for the media and metadata stores."""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from media_blurhash.config import Settings
from media_blurhash.db import AssetMeta, CustomField, CustomFieldValue, open_primary_session
from media_blurhash.errors import PersistenceError, SelectionError
from media_blurhash.metadata_store import (
    BLURHASH_FIELD_KEY,
    AssetMetaStore,
    CustomFieldStore,
    build_metadata_store,
)
from tests.utils.media import add_asset, build_stores, write_image

HASH_A = "LEHV6nWB2yk8pyo0adR*.7kCMdnj"
HASH_B = "LKO2?U%2Tw=w]~RBVZRi};RPxuwH"


@pytest.mark.parametrize("backend", ["asset_meta", "custom_field"])
def test_set_hash_overwrites_a_single_record(tmp_path: Path, backend: str) -> None:
    media, metadata = build_stores(tmp_path, backend)
    add_asset(media, "a1", write_image(tmp_path / "a1.png", (40, 30)))

    assert not metadata.has_hash("a1")
    metadata.set_hash("a1", HASH_A)
    metadata.set_hash("a1", HASH_B)

    assert metadata.get_hash("a1") == HASH_B
    table = CustomFieldValue if backend == "custom_field" else AssetMeta
    with open_primary_session(metadata.database_url) as session:
        assert session.execute(select(func.count()).select_from(table)).scalar_one() == 1


def test_set_hash_for_unknown_asset_is_a_persistence_error(tmp_path: Path) -> None:
    _, metadata = build_stores(tmp_path)

    with pytest.raises(PersistenceError):
        metadata.set_hash("ghost", HASH_A)


def test_select_pending_is_ordered_limited_and_excludes_hashed(tmp_path: Path) -> None:
    media, metadata = build_stores(tmp_path)
    image = write_image(tmp_path / "img.png", (20, 20))
    add_asset(media, "c", image, created_at=100.0)
    add_asset(media, "b", image, created_at=100.0)
    add_asset(media, "a", image, created_at=300.0)
    add_asset(media, "d", image, created_at=50.0)
    add_asset(media, "doc", tmp_path / "file.pdf", mime_type="application/pdf", created_at=10.0)
    metadata.set_hash("d", HASH_A)

    assert media.select_pending(10) == ["b", "c", "a"]
    assert media.select_pending(2) == ["b", "c"]
    assert media.select_pending(0) == []


def test_selection_reflects_writes_between_calls(tmp_path: Path) -> None:
    media, metadata = build_stores(tmp_path, "custom_field")
    image = write_image(tmp_path / "img.png", (20, 20))
    for idx in range(3):
        add_asset(media, f"a{idx}", image, created_at=float(idx))

    first = media.select_pending(2)
    for asset_id in first:
        metadata.set_hash(asset_id, HASH_A)

    assert first == ["a0", "a1"]
    assert media.select_pending(2) == ["a2"]


def test_recorded_attempts_move_assets_to_the_back(tmp_path: Path) -> None:
    media, _ = build_stores(tmp_path)
    image = write_image(tmp_path / "img.png", (20, 20))
    for idx in range(4):
        add_asset(media, f"a{idx}", image, created_at=float(idx))

    media.record_attempt("a0", "decode_error")
    time.sleep(0.01)
    media.record_attempt("a1", "resource_not_found")

    assert media.select_pending(10) == ["a2", "a3", "a0", "a1"]

    time.sleep(0.01)
    media.record_attempt("a0", "decode_error")

    assert media.select_pending(10) == ["a2", "a3", "a1", "a0"]
    assert media.select_pending(2) == ["a2", "a3"]


def test_count_total_only_counts_images(tmp_path: Path) -> None:
    media, metadata = build_stores(tmp_path)
    image = write_image(tmp_path / "img.png", (20, 20))
    add_asset(media, "img", image)
    add_asset(media, "video", tmp_path / "clip.mp4", mime_type="video/mp4")
    metadata.set_hash("video", HASH_A)

    assert media.count_total() == 1
    assert metadata.count_with_hash() == 0


def test_get_file_path_returns_none_when_nothing_to_hash(tmp_path: Path) -> None:
    media, _ = build_stores(tmp_path)
    image = write_image(tmp_path / "img.png", (20, 20))
    add_asset(media, "ok", image)
    add_asset(media, "no_file", None)
    add_asset(media, "pdf", image, mime_type="application/pdf")
    add_asset(media, "gone", tmp_path / "deleted.png")

    assert media.get_file_path("ok") == image.resolve()
    assert media.get_file_path("no_file") is None
    assert media.get_file_path("pdf") is None
    assert media.get_file_path("gone") is None
    assert media.get_file_path("unknown") is None


def test_register_asset_is_idempotent(tmp_path: Path) -> None:
    media, _ = build_stores(tmp_path)
    image = write_image(tmp_path / "img.png", (20, 20))

    assert media.register_asset("a", image, "image/png") is True
    assert media.register_asset("a", image, "image/png") is False
    assert media.count_total() == 1


def test_selection_failure_raises_selection_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    media, _ = build_stores(tmp_path)

    def _broken_session(_target: object) -> None:
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr("media_blurhash.media_store.open_primary_session", _broken_session)

    with pytest.raises(SelectionError):
        media.select_pending(5)


def test_custom_field_is_registered_once(tmp_path: Path) -> None:
    url = f"sqlite:///{tmp_path / 'media.db'}"
    CustomFieldStore(url)
    CustomFieldStore(url)

    with open_primary_session(url) as session:
        fields = session.execute(select(CustomField)).scalars().all()

    assert [field.key for field in fields] == [BLURHASH_FIELD_KEY]
    assert fields[0].group_key == "group_blurhash"
    assert fields[0].field_type == "text"


def test_build_metadata_store_follows_configuration(tmp_path: Path) -> None:
    settings = Settings()
    settings.databases.primary_url = f"sqlite:///{tmp_path / 'media.db'}"

    assert isinstance(build_metadata_store(settings), AssetMetaStore)

    settings.metadata.backend = "custom_field"
    assert isinstance(build_metadata_store(settings), CustomFieldStore)

    settings.metadata.backend = "capability_check"
    with pytest.raises(ValueError):
        build_metadata_store(settings)
