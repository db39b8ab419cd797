"""Tests for the recurring backfill scheduler."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from media_blurhash.errors import SelectionError
from media_blurhash.runtime import build_runtime
from media_blurhash.scheduler import Scheduler
from tests.utils.media import add_asset, make_settings, wait_until, write_image


def test_runs_repeatedly_until_stopped() -> None:
    calls: list[int] = []
    scheduler = Scheduler(lambda: calls.append(1), 0.02, run_immediately=True)

    scheduler.start()
    assert wait_until(lambda: len(calls) >= 3)
    scheduler.stop(timeout=1)

    assert not scheduler.is_running
    settled = len(calls)
    assert scheduler.runs == settled


def test_first_run_waits_for_the_interval() -> None:
    calls: list[int] = []
    scheduler = Scheduler(lambda: calls.append(1), 60)

    scheduler.start()
    scheduler.stop(timeout=1)

    assert calls == []
    assert not scheduler.is_running


def test_failing_callback_does_not_stop_later_ticks() -> None:
    attempts: list[int] = []

    def _flaky() -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("transient failure")

    scheduler = Scheduler(_flaky, 0.02, run_immediately=True)
    scheduler.start()
    assert wait_until(lambda: len(attempts) >= 2)
    scheduler.stop(timeout=1)


def test_start_is_idempotent() -> None:
    gate = threading.Event()
    scheduler = Scheduler(gate.wait, 60, run_immediately=True)

    scheduler.start()
    first_thread = scheduler._thread
    scheduler.start()

    assert scheduler._thread is first_thread
    gate.set()
    scheduler.stop(timeout=1)


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Scheduler(lambda: None, 0)


def test_scheduled_backfill_runs_a_batch_and_absorbs_selection_errors(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    runtime = build_runtime(make_settings(tmp_path, batch_limit=1))
    image = write_image(tmp_path / "img.png", (40, 40))
    add_asset(runtime.media_store, "a", image, created_at=1.0)
    add_asset(runtime.media_store, "b", image, created_at=2.0)

    result = runtime.run_scheduled_backfill()
    assert result is not None and result.succeeded == 1
    assert runtime.media_store.select_pending(5) == ["b"]

    def _fail(limit: int) -> list[str]:
        raise SelectionError("database unavailable")

    monkeypatch.setattr(runtime.media_store, "select_pending", _fail)
    assert runtime.run_scheduled_backfill() is None


def test_runtime_scheduler_uses_backfill_settings(tmp_path: Path) -> None:
    runtime = build_runtime(make_settings(tmp_path, interval_seconds=120.0, run_on_start=True))

    scheduler = runtime.build_scheduler()

    assert scheduler.interval_seconds == 120.0
    assert scheduler.run_immediately is True
    assert not scheduler.is_running
