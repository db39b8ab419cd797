"""Shared builders for test images, settings, and stores."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import numpy as np
from PIL import Image

from media_blurhash.config import Settings
from media_blurhash.encoder import encode_pixels
from media_blurhash.media_store import SqlMediaStore
from media_blurhash.metadata_store import AssetMetaStore, CustomFieldStore, MetadataStore


def write_image(path: Path, size: tuple[int, int], mode: str = "RGB", fmt: str = "PNG") -> Path:
    """Write a horizontal/vertical gradient image so the hash has non-zero AC terms."""

    width, height = size
    xs = np.linspace(0, 255, width, dtype=np.float64)
    ys = np.linspace(0, 255, height, dtype=np.float64)
    red = np.tile(xs, (height, 1))
    green = np.tile(ys[:, None], (1, width))
    blue = np.full((height, width), 96.0)
    pixels = np.stack([red, green, blue], axis=-1).astype(np.uint8)

    image = Image.fromarray(pixels)
    if mode != "RGB":
        image = image.convert(mode)
    path.parent.mkdir(parents=True, exist_ok=True)
    image.save(path, format=fmt)
    return path


def write_corrupt(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x89PNG\r\n\x1a\nthis is not really a png")
    return path


def make_settings(tmp_path: Path, backend: str = "asset_meta", **backfill: object) -> Settings:
    settings = Settings()
    settings.databases.primary_url = f"sqlite:///{tmp_path / 'media.db'}"
    settings.metadata.backend = backend
    for key, value in backfill.items():
        setattr(settings.backfill, key, value)
    return settings


def build_stores(tmp_path: Path, backend: str = "asset_meta") -> tuple[SqlMediaStore, MetadataStore]:
    url = f"sqlite:///{tmp_path / 'media.db'}"
    metadata: MetadataStore = CustomFieldStore(url) if backend == "custom_field" else AssetMetaStore(url)
    return SqlMediaStore(url, metadata), metadata


def add_asset(
    media_store: SqlMediaStore,
    asset_id: str,
    path: Path | None,
    mime_type: str = "image/png",
    created_at: float | None = None,
) -> str:
    media_store.register_asset(asset_id, path, mime_type, created_at=created_at)
    return asset_id


class CountingAssetMetaStore(AssetMetaStore):
    """Asset-meta store that records every successful write."""

    def __init__(self, database_url: str) -> None:
        super().__init__(database_url)
        self.writes: list[tuple[str, str]] = []
        self._writes_lock = threading.Lock()

    def set_hash(self, asset_id: str, value: str) -> None:
        super().set_hash(asset_id, value)
        with self._writes_lock:
            self.writes.append((asset_id, value))


class SlowWriteAssetMetaStore(CountingAssetMetaStore):
    """Asset-meta store whose writes take ``delay`` seconds before committing."""

    def __init__(self, database_url: str, delay: float) -> None:
        super().__init__(database_url)
        self.delay = delay

    def set_hash(self, asset_id: str, value: str) -> None:
        time.sleep(self.delay)
        super().set_hash(asset_id, value)


class GatedEncoder:
    """Encoder that blocks on selected assets until released."""

    def __init__(self, block_calls: int = 1) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.block_calls = block_calls
        self._lock = threading.Lock()

    def __call__(self, grid: np.ndarray, components_x: int, components_y: int) -> str:
        with self._lock:
            self.calls += 1
            should_block = self.calls <= self.block_calls
        if should_block:
            self.entered.set()
            self.release.wait(10)
        return encode_pixels(grid, components_x, components_y)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
