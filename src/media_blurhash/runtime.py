"""Construction of the stores, pipeline, and reporter from settings."""

from __future__ import annotations

from dataclasses import dataclass

from media_blurhash.config import Settings, load_settings
from media_blurhash.encoder import HashEncoder, encode_pixels
from media_blurhash.errors import BlurhashError
from media_blurhash.media_store import SqlMediaStore
from media_blurhash.metadata_store import MetadataStore, build_metadata_store
from media_blurhash.pipeline import BatchResult, ProcessingPipeline
from media_blurhash.scheduler import Scheduler
from media_blurhash.stats import StatsReporter
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "runtime"})


@dataclass
class Runtime:
    """Everything a trigger needs, wired once per process."""

    settings: Settings
    metadata_store: MetadataStore
    media_store: SqlMediaStore
    pipeline: ProcessingPipeline
    stats: StatsReporter

    def run_scheduled_backfill(self) -> BatchResult | None:
        """Scheduler callback: run one batch and record the outcome in the log only."""

        try:
            result = self.pipeline.process_batch(self.settings.backfill.batch_limit)
        except BlurhashError as exc:
            LOGGER.error("scheduled_backfill_error", extra={"kind": exc.kind.value, "error": str(exc)})
            return None

        if result.already_running:
            LOGGER.info("scheduled_backfill_skipped_overlap")
        else:
            LOGGER.info("scheduled_backfill_complete", extra=result.summary())
        return result

    def build_scheduler(self) -> Scheduler:
        backfill = self.settings.backfill
        return Scheduler(
            self.run_scheduled_backfill,
            backfill.interval_seconds,
            run_immediately=backfill.run_on_start,
        )


def build_runtime(settings: Settings | None = None, encoder: HashEncoder = encode_pixels) -> Runtime:
    """Build the runtime; the metadata backend is fixed here from configuration."""

    resolved = settings or load_settings()
    metadata_store = build_metadata_store(resolved)
    media_store = SqlMediaStore(resolved.databases.primary_url, metadata_store)
    pipeline = ProcessingPipeline.from_settings(resolved, media_store, metadata_store, encoder=encoder)
    stats = StatsReporter(media_store, metadata_store)

    LOGGER.info(
        "runtime_ready",
        extra={
            "database": resolved.databases.primary_url,
            "metadata_backend": resolved.metadata.backend,
            "workers": resolved.backfill.workers,
        },
    )
    return Runtime(
        settings=resolved,
        metadata_store=metadata_store,
        media_store=media_store,
        pipeline=pipeline,
        stats=stats,
    )


__all__ = ["Runtime", "build_runtime"]
