"""Run a single bounded backfill batch from the command line."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from media_blurhash.config import load_settings
from media_blurhash.errors import BlurhashError
from media_blurhash.runtime import build_runtime
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "backfill_cli"})


def main(
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        min=1,
        help="Maximum number of pending assets to process (defaults to backfill.batch_limit).",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        min=1,
        help="Override backfill.workers for this run.",
    ),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings YAML path."),
    stats_only: bool = typer.Option(False, "--stats-only", help="Print coverage counts without processing."),
) -> None:
    """Process pending assets once and print the resulting counts."""

    settings = load_settings(settings_path)
    if workers is not None:
        settings.backfill.workers = workers
    runtime = build_runtime(settings)

    if not stats_only:
        try:
            result = runtime.pipeline.process_batch(limit)
        except BlurhashError as exc:
            LOGGER.error("backfill_cli_error", extra={"kind": exc.kind.value, "error": str(exc)})
            typer.echo(f"backfill failed: {exc}", err=True)
            raise typer.Exit(code=1)

        summary = result.summary()
        typer.echo(" ".join(f"{key}={value}" for key, value in summary.items()))
        for item in result.results:
            if item.is_failure:
                typer.echo(f"  failed {item.asset_id}: {item.reason} {item.message or ''}".rstrip())

    stats = runtime.stats.compute_stats()
    typer.echo(f"completed={stats.with_hash} pending={stats.without_hash} total={stats.total}")


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["cli", "main"]
