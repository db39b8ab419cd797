"""Content hashing used to derive stable asset identifiers."""

from __future__ import annotations

from pathlib import Path
from typing import Final

import xxhash

CONTENT_HASH_ALGO: Final[str] = "xxhash64-v1"


def compute_content_hash(path: Path, chunk_size: int = 1 << 20) -> str:
    """Return the xxhash64 digest of a file as 16 lowercase hex characters.

    Identical bytes map to the same asset id, so re-ingesting a file is a
    no-op for the media store.
    """

    hasher = xxhash.xxh64()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            hasher.update(chunk)

    return f"{hasher.intdigest():016x}"


__all__ = ["CONTENT_HASH_ALGO", "compute_content_hash"]
