"""Filesystem scanner that discovers media files to register as assets."""

from __future__ import annotations

import mimetypes
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_MEDIA_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".jpg",
        ".jpeg",
        ".png",
        ".webp",
        ".gif",
        ".bmp",
        ".tif",
        ".tiff",
        ".pdf",
        ".mp4",
    }
)

_FALLBACK_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class FileInfo:
    """Lightweight file metadata for scanning results."""

    path: Path
    size_bytes: int
    mtime: float
    mime_type: str


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or _FALLBACK_MIME_TYPE


def scan_roots(roots: Sequence[Path], extensions: frozenset[str] | None = None) -> Iterator[FileInfo]:
    """Recursively scan media roots and yield file descriptors in path order.

    Args:
        roots: Directories to scan.
        extensions: Allowed lowercased extensions including the leading dot.
            Defaults to :data:`DEFAULT_MEDIA_EXTENSIONS`.
    """

    allowed = extensions or DEFAULT_MEDIA_EXTENSIONS

    for root in roots:
        if not root.exists() or not root.is_dir():
            LOGGER.warning("scan_root_missing", extra={"root": str(root)})
            continue

        for path in sorted(root.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in allowed:
                continue

            stat = path.stat()
            yield FileInfo(path=path, size_bytes=stat.st_size, mtime=stat.st_mtime, mime_type=guess_mime_type(path))


__all__ = ["FileInfo", "DEFAULT_MEDIA_EXTENSIONS", "guess_mime_type", "scan_roots"]
