"""Long-running process that executes backfill batches on a fixed cadence."""

from __future__ import annotations

import signal
from pathlib import Path
from types import FrameType
from typing import Optional

import typer

from media_blurhash.config import load_settings
from media_blurhash.db import dispose_engines
from media_blurhash.runtime import build_runtime
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "schedule_cli"})


def main(
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        min=1.0,
        help="Seconds between runs (defaults to backfill.interval_seconds).",
    ),
    run_now: bool = typer.Option(False, "--run-now", help="Run a batch immediately on start."),
    settings_path: Optional[Path] = typer.Option(None, "--settings", help="Settings YAML path."),
) -> None:
    """Run the backfill scheduler until SIGINT or SIGTERM."""

    settings = load_settings(settings_path)
    if interval is not None:
        settings.backfill.interval_seconds = interval
    if run_now:
        settings.backfill.run_on_start = True

    runtime = build_runtime(settings)
    scheduler = runtime.build_scheduler()

    def _handle_signal(signum: int, _frame: FrameType | None) -> None:
        LOGGER.info("schedule_signal_received", extra={"signal": signum})
        runtime.pipeline.shutdown()
        scheduler.stop(timeout=0)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    scheduler.wait()
    dispose_engines()


def cli() -> None:
    typer.run(main)


if __name__ == "__main__":
    cli()


__all__ = ["cli", "main"]
