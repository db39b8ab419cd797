"""Register media files as assets and fire the upload hook for new ones.

Each discovered file becomes an asset keyed by its content hash. Newly created
assets are hashed immediately (or enqueued to Celery with ``--enqueue``),
which is the same path an upload takes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from media_blurhash.config import load_settings
from media_blurhash.hasher import compute_content_hash
from media_blurhash.pipeline import Outcome
from media_blurhash.runtime import build_runtime
from media_blurhash.scanner import scan_roots
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "ingest"})


def main(
    root: list[Path] = typer.Option(
        ...,
        "--root",
        file_okay=False,
        help="Media directory to scan; repeat for several roots.",
    ),
    settings_path: Optional[Path] = typer.Option(
        None,
        "--settings",
        help="Settings YAML; defaults to MEDIA_BLURHASH_SETTINGS or config/settings.yaml.",
    ),
    enqueue: bool = typer.Option(
        False,
        "--enqueue",
        help="Send new assets to the Celery upload queue instead of hashing inline.",
    ),
    process: bool = typer.Option(
        True,
        "--process/--no-process",
        help="Fire the upload hook for newly registered assets.",
    ),
) -> None:
    """Scan media roots, register assets, and hash the new ones."""

    runtime = build_runtime(load_settings(settings_path))
    created: list[str] = []
    discovered = 0

    for file_info in scan_roots(root):
        discovered += 1
        asset_id = compute_content_hash(file_info.path)
        is_new = runtime.media_store.register_asset(
            asset_id,
            file_info.path,
            file_info.mime_type,
            size_bytes=file_info.size_bytes,
            created_at=file_info.mtime,
        )
        if is_new:
            created.append(asset_id)

    LOGGER.info("ingest_registered", extra={"discovered": discovered, "created": len(created)})

    if not process or not created:
        return

    if enqueue:
        from media_blurhash.task_queue import generate_blurhash

        for asset_id in created:
            generate_blurhash.delay(asset_id)
        LOGGER.info("ingest_enqueued", extra={"count": len(created)})
        return

    failures = 0
    for asset_id in created:
        result = runtime.pipeline.process_single(asset_id)
        if result.outcome is Outcome.FAILED:
            failures += 1

    stats = runtime.stats.compute_stats()
    typer.echo(
        f"registered={len(created)} failed={failures} "
        f"completed={stats.with_hash} pending={stats.without_hash} total={stats.total}"
    )


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["cli", "main"]
