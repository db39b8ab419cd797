"""Live completed/pending counts for hash coverage."""

from __future__ import annotations

from dataclasses import dataclass

from media_blurhash.media_store import MediaStore
from media_blurhash.metadata_store import MetadataStore
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "stats"})


@dataclass(frozen=True)
class HashStats:
    total: int
    with_hash: int
    without_hash: int
    consistent: bool = True

    def as_payload(self) -> dict[str, int]:
        """Response body used by the admin page and the manual trigger."""

        return {"completed": self.with_hash, "pending": self.without_hash, "total": self.total}


class StatsReporter:
    """Recompute coverage counts from the stores on every call."""

    def __init__(self, media_store: MediaStore, metadata_store: MetadataStore) -> None:
        self.media_store = media_store
        self.metadata_store = metadata_store

    def compute_stats(self) -> HashStats:
        """Return ``total``, ``with_hash`` and ``without_hash``.

        The two counts are separate queries, so a write landing between them
        can make ``with_hash`` exceed ``total``. In that case ``with_hash`` is
        capped at ``total``, ``without_hash`` is clamped to zero, and the
        result is flagged ``consistent=False`` so that
        ``with_hash + without_hash == total`` still holds.
        """

        total = self.media_store.count_total()
        with_hash = self.metadata_store.count_with_hash()
        without_hash = total - with_hash

        if without_hash < 0:
            LOGGER.warning("stats_inconsistent", extra={"total": total, "with_hash": with_hash})
            return HashStats(total=total, with_hash=total, without_hash=0, consistent=False)

        return HashStats(total=total, with_hash=with_hash, without_hash=without_hash)


__all__ = ["HashStats", "StatsReporter"]
