"""Normalize source images into the fixed pixel grid consumed by the encoder."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Final

import numpy as np
from PIL import Image, ImageOps
from PIL.Image import Resampling

from media_blurhash.errors import DecodeError
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "resizer"})

GRID_SIZE: Final[int] = 32

_DECODE_FAILURES = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def _close_all(images: list[Image.Image]) -> None:
    for image in reversed(images):
        image.close()


@contextmanager
def resized_image(path: Path | str) -> Iterator[Image.Image]:
    """Yield a temporary RGB copy of ``path`` cropped to fill ``GRID_SIZE``×``GRID_SIZE``.

    The aspect ratio is not preserved: the source is centre-cropped to a
    square and scaled down. Every intermediate image, including the yielded
    one, is closed when the block exits, whether it raised or not.

    Raises:
        DecodeError: The file is missing, truncated, or not a supported image.
    """

    opened: list[Image.Image] = []
    try:
        try:
            source = Image.open(path)
            opened.append(source)
            oriented = ImageOps.exif_transpose(source)
            opened.append(oriented)
            rgb = oriented.convert("RGB")
            opened.append(rgb)
            fitted = ImageOps.fit(rgb, (GRID_SIZE, GRID_SIZE), method=Resampling.LANCZOS)
            opened.append(fitted)
        except _DECODE_FAILURES as exc:
            LOGGER.warning("image_decode_error", extra={"path": str(path), "error": str(exc)})
            raise DecodeError(f"cannot decode image {path}: {exc}") from exc

        yield fitted
    finally:
        _close_all(opened)


def pixel_grid(image: Image.Image) -> np.ndarray:
    """Return the ``(GRID_SIZE, GRID_SIZE, 3)`` uint8 RGB array for a resized image."""

    if image.size != (GRID_SIZE, GRID_SIZE) or image.mode != "RGB":
        raise DecodeError(f"expected a {GRID_SIZE}x{GRID_SIZE} RGB image, got {image.mode} {image.size}")
    return np.array(image, dtype=np.uint8)


def load_pixel_grid(path: Path | str) -> np.ndarray:
    """Decode ``path`` and return its fixed-size pixel grid."""

    with resized_image(path) as image:
        return pixel_grid(image)


__all__ = ["GRID_SIZE", "resized_image", "pixel_grid", "load_pixel_grid"]
