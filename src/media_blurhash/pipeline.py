"""Resize → encode → persist orchestration for single assets and backfill batches."""

from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from media_blurhash.config import Settings
from media_blurhash.encoder import DEFAULT_COMPONENTS_X, DEFAULT_COMPONENTS_Y, HashEncoder, encode_pixels
from media_blurhash.errors import (
    BlurhashError,
    EncodeError,
    ErrorKind,
    ProcessingTimeout,
    ResourceNotFound,
)
from media_blurhash.leases import BATCH_LEASE_KEY, LeaseStore, asset_lease_key, new_lease_owner
from media_blurhash.media_store import MediaStore
from media_blurhash.metadata_store import MetadataStore
from media_blurhash.resizer import pixel_grid, resized_image
from media_blurhash.single_flight import SingleFlight
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "pipeline"})

DEFAULT_BATCH_LIMIT = 50
DEFAULT_ASSET_TIMEOUT_SECONDS = 30.0
ALREADY_HASHED = "already_hashed"

# Added to lease lifetimes so a slow final write does not outlive its lease.
LEASE_GRACE_SECONDS = 60.0
CLAIM_POLL_SECONDS = 0.05


class Outcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of processing one asset.

    ``reason`` is an :class:`ErrorKind` value for failures and for the
    missing-file skip, or :data:`ALREADY_HASHED` when a batch found the
    asset already done. ``shared`` is set when the result came from another
    caller's in-flight run for the same asset.
    """

    asset_id: str
    outcome: Outcome
    reason: str | None = None
    message: str | None = None
    blurhash: str | None = None
    duration_seconds: float = 0.0
    shared: bool = False

    @classmethod
    def success(cls, asset_id: str, blurhash: str, duration_seconds: float = 0.0) -> ProcessingResult:
        return cls(asset_id=asset_id, outcome=Outcome.SUCCESS, blurhash=blurhash, duration_seconds=duration_seconds)

    @classmethod
    def skipped(
        cls, asset_id: str, reason: str, duration_seconds: float = 0.0, message: str | None = None
    ) -> ProcessingResult:
        return cls(
            asset_id=asset_id,
            outcome=Outcome.SKIPPED,
            reason=reason,
            message=message,
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failed(
        cls, asset_id: str, kind: ErrorKind, message: str, duration_seconds: float = 0.0
    ) -> ProcessingResult:
        return cls(
            asset_id=asset_id,
            outcome=Outcome.FAILED,
            reason=kind.value,
            message=message,
            duration_seconds=duration_seconds,
        )

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.outcome is Outcome.FAILED


@dataclass
class BatchResult:
    """Aggregate of one backfill run."""

    limit: int
    selected: list[str] = field(default_factory=list)
    results: list[ProcessingResult] = field(default_factory=list)
    already_running: bool = False
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.FAILED)

    @property
    def skipped(self) -> int:
        return sum(1 for result in self.results if result.outcome is Outcome.SKIPPED)

    def summary(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "already_running": self.already_running,
            "cancelled": self.cancelled,
        }


class _CommitGuard:
    """Settles, once per flight, whether the write happens or the callers time out.

    The worker calls :meth:`begin_commit` right before writing; a caller whose
    wait expired calls :meth:`abandon`. Whichever comes first wins, so a
    reported timeout never has a hash written behind it.
    """

    _RUNNING = "running"
    _COMMITTING = "committing"
    _ABANDONED = "abandoned"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = self._RUNNING

    def begin_commit(self) -> bool:
        with self._lock:
            if self._state == self._ABANDONED:
                return False
            self._state = self._COMMITTING
            return True

    def abandon(self) -> bool:
        """Return True when the work will not be persisted; False when a write is under way."""

        with self._lock:
            if self._state == self._COMMITTING:
                return False
            self._state = self._ABANDONED
            return True


class ProcessingPipeline:
    """Compute and persist placeholder hashes for media assets.

    ``process_single`` serves the upload trigger, ``process_batch`` serves the
    scheduled and manual backfill triggers. Both are safe to call from any
    thread of any process sharing the database:

    - work on one asset id is single-flight within the process and guarded by
      a database lease across processes, so racing triggers write once;
    - only one batch runs at a time, system-wide; overlapping calls return
      immediately with ``already_running`` set;
    - each asset is bounded by ``asset_timeout`` seconds, after which the
      caller gets ``Failed(timeout)`` and the abandoned work is not persisted.
      A write that already started is waited for and reported as it ends.
    """

    def __init__(
        self,
        media_store: MediaStore,
        metadata_store: MetadataStore,
        *,
        encoder: HashEncoder = encode_pixels,
        components_x: int = DEFAULT_COMPONENTS_X,
        components_y: int = DEFAULT_COMPONENTS_Y,
        workers: int = 1,
        asset_timeout: float = DEFAULT_ASSET_TIMEOUT_SECONDS,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        leases: LeaseStore | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        if asset_timeout <= 0:
            raise ValueError("asset_timeout must be positive")

        self.media_store = media_store
        self.metadata_store = metadata_store
        self.encoder = encoder
        self.components_x = components_x
        self.components_y = components_y
        self.workers = workers
        self.asset_timeout = asset_timeout
        self.batch_limit = batch_limit
        self.leases = leases or LeaseStore(metadata_store.database_url)

        self._asset_flight: SingleFlight[ProcessingResult] = SingleFlight()
        self._batch_lock = threading.Lock()
        self._shutdown = threading.Event()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        media_store: MediaStore,
        metadata_store: MetadataStore,
        encoder: HashEncoder = encode_pixels,
    ) -> ProcessingPipeline:
        return cls(
            media_store,
            metadata_store,
            encoder=encoder,
            components_x=settings.blurhash.components_x,
            components_y=settings.blurhash.components_y,
            workers=settings.backfill.workers,
            asset_timeout=settings.backfill.asset_timeout_seconds,
            batch_limit=settings.backfill.batch_limit,
        )

    # -- single asset -----------------------------------------------------------------

    def process_single(self, asset_id: str, *, skip_if_hashed: bool = False) -> ProcessingResult:
        """Hash one asset and persist it; never raises for per-asset failures.

        ``skip_if_hashed`` is used by the batch path: once it holds the asset,
        it re-checks the metadata store and skips assets another trigger has
        already finished.
        """

        started = time.monotonic()
        deadline = started + self.asset_timeout
        flight, leader = self._asset_flight.join(asset_id, _CommitGuard)
        guard: _CommitGuard = flight.context
        outcome: dict[str, ProcessingResult] = {}
        done = threading.Event()

        def _run() -> None:
            try:
                if leader:
                    outcome["result"] = flight.run(lambda: self._process(asset_id, deadline, skip_if_hashed, guard))
                else:
                    outcome["result"] = replace(flight.wait(), shared=True)
            except Exception as exc:  # pragma: no cover
                LOGGER.exception("blurhash_unexpected_error", extra={"asset_id": asset_id})
                outcome["result"] = ProcessingResult.failed(
                    asset_id, ErrorKind.UNEXPECTED_ERROR, str(exc), time.monotonic() - started
                )
            finally:
                done.set()

        worker = threading.Thread(target=_run, name=f"blurhash-asset-{asset_id}", daemon=True)
        worker.start()

        if done.wait(self.asset_timeout):
            return outcome["result"]

        if guard.abandon():
            LOGGER.warning("blurhash_timeout", extra={"asset_id": asset_id, "timeout": self.asset_timeout})
            return ProcessingResult.failed(
                asset_id,
                ErrorKind.TIMEOUT,
                f"processing exceeded {self.asset_timeout:.1f}s",
                time.monotonic() - started,
            )

        LOGGER.info("blurhash_timeout_write_in_progress", extra={"asset_id": asset_id})
        done.wait()
        return outcome["result"]

    def _process(
        self, asset_id: str, deadline: float, skip_if_hashed: bool, guard: _CommitGuard
    ) -> ProcessingResult:
        started = time.monotonic()
        owner = new_lease_owner()
        claimed = False
        try:
            had_hash = self.metadata_store.has_hash(asset_id)
            if skip_if_hashed and had_hash:
                return self._already_hashed(asset_id, started)

            claimed = self._claim_asset(asset_id, owner, deadline, had_hash)
            if not claimed or (not had_hash and self.metadata_store.has_hash(asset_id)):
                return self._finished_elsewhere(asset_id, skip_if_hashed, started)

            path = self.media_store.get_file_path(asset_id)
            if path is None:
                raise ResourceNotFound(f"no image file to hash for asset {asset_id}", asset_id=asset_id)

            with resized_image(path) as image:
                grid = pixel_grid(image)
                self._check_deadline(asset_id, deadline, "encode")
                value = self._encode(asset_id, grid)
                self._check_deadline(asset_id, deadline, "persist")
                if not guard.begin_commit():
                    raise ProcessingTimeout("caller stopped waiting before persist", asset_id=asset_id)
                self.metadata_store.set_hash(asset_id, value)
        except ResourceNotFound as exc:
            LOGGER.info("blurhash_skipped_no_file", extra={"asset_id": asset_id})
            self._record_attempt(asset_id, exc.kind)
            return ProcessingResult.skipped(asset_id, exc.kind.value, time.monotonic() - started, message=str(exc))
        except BlurhashError as exc:
            duration = time.monotonic() - started
            LOGGER.error(
                "blurhash_failed",
                extra={"asset_id": asset_id, "kind": exc.kind.value, "error": str(exc), "duration": duration},
            )
            self._record_attempt(asset_id, exc.kind)
            return ProcessingResult.failed(asset_id, exc.kind, str(exc), duration)
        finally:
            if claimed:
                self.leases.release(asset_lease_key(asset_id), owner)

        duration = time.monotonic() - started
        LOGGER.info("blurhash_saved", extra={"asset_id": asset_id, "blurhash": value, "duration": duration})
        return ProcessingResult.success(asset_id, value, duration)

    def _claim_asset(self, asset_id: str, owner: str, deadline: float, had_hash: bool) -> bool:
        """Take the asset's lease, waiting while another process holds it.

        Returns False when the other holder wrote a hash while we waited.
        """

        key = asset_lease_key(asset_id)
        ttl = self.asset_timeout + LEASE_GRACE_SECONDS
        waiting = False
        while True:
            if self.leases.acquire(key, owner, ttl):
                return True
            if not waiting:
                LOGGER.info("blurhash_claim_wait", extra={"asset_id": asset_id})
                waiting = True
            if not had_hash and self.metadata_store.has_hash(asset_id):
                return False
            if time.monotonic() > deadline:
                raise ProcessingTimeout("asset is held by another worker", asset_id=asset_id)
            time.sleep(CLAIM_POLL_SECONDS)

    def _already_hashed(self, asset_id: str, started: float) -> ProcessingResult:
        LOGGER.info("blurhash_already_present", extra={"asset_id": asset_id})
        return ProcessingResult.skipped(asset_id, ALREADY_HASHED, time.monotonic() - started)

    def _finished_elsewhere(self, asset_id: str, skip_if_hashed: bool, started: float) -> ProcessingResult:
        if skip_if_hashed:
            return self._already_hashed(asset_id, started)
        value = self.metadata_store.get_hash(asset_id)
        LOGGER.info("blurhash_finished_elsewhere", extra={"asset_id": asset_id})
        result = ProcessingResult.success(asset_id, value or "", time.monotonic() - started)
        return replace(result, shared=True)

    def _record_attempt(self, asset_id: str, kind: ErrorKind) -> None:
        try:
            self.media_store.record_attempt(asset_id, kind.value)
        except BlurhashError as exc:
            LOGGER.warning("attempt_record_error", extra={"asset_id": asset_id, "error": str(exc)})

    def _encode(self, asset_id: str, grid: Any) -> str:
        try:
            return self.encoder(grid, self.components_x, self.components_y)
        except EncodeError:
            raise
        except Exception as exc:
            raise EncodeError(f"encoder failed: {exc}", asset_id=asset_id) from exc

    @staticmethod
    def _check_deadline(asset_id: str, deadline: float, stage: str) -> None:
        if time.monotonic() > deadline:
            raise ProcessingTimeout(f"deadline passed before {stage}", asset_id=asset_id)

    # -- batches --------------------------------------------------------------------

    def process_batch(self, limit: int | None = None) -> BatchResult:
        """Hash up to ``limit`` pending assets.

        Returns a result with ``already_running`` set, without selecting
        anything, when another batch is in progress in this or any other
        process sharing the database.

        Raises:
            SelectionError: The pending query failed and nothing was processed.
            PersistenceError: The batch lease could not be claimed.
            ValueError: ``limit`` is below 1.
        """

        effective_limit = self.batch_limit if limit is None else limit
        if effective_limit < 1:
            raise ValueError("batch limit must be at least 1")

        if not self._batch_lock.acquire(blocking=False):
            LOGGER.info("backfill_already_running", extra={"limit": effective_limit, "scope": "process"})
            return BatchResult(limit=effective_limit, already_running=True)

        try:
            owner = new_lease_owner()
            if not self.leases.acquire(BATCH_LEASE_KEY, owner, self._batch_lease_ttl(effective_limit)):
                LOGGER.info("backfill_already_running", extra={"limit": effective_limit, "scope": "database"})
                return BatchResult(limit=effective_limit, already_running=True)
            try:
                return self._run_batch(effective_limit)
            finally:
                self.leases.release(BATCH_LEASE_KEY, owner)
        finally:
            self._batch_lock.release()

    def _batch_lease_ttl(self, limit: int) -> float:
        return self.asset_timeout * math.ceil(limit / self.workers) + LEASE_GRACE_SECONDS

    def _run_batch(self, limit: int) -> BatchResult:
        started = time.monotonic()
        if self._shutdown.is_set():
            LOGGER.info("backfill_cancelled_before_start", extra={"limit": limit})
            return BatchResult(limit=limit, cancelled=True)

        LOGGER.info("backfill_start", extra={"limit": limit, "workers": self.workers})
        selected = self.media_store.select_pending(limit)[:limit]

        results: list[ProcessingResult] = []
        if selected:
            pool_size = min(self.workers, len(selected))
            with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="blurhash-batch") as executor:
                futures = [executor.submit(self._batch_item, asset_id) for asset_id in selected]
                for future in futures:
                    result = future.result()
                    if result is not None:
                        results.append(result)

        batch = BatchResult(
            limit=limit,
            selected=selected,
            results=results,
            cancelled=len(results) < len(selected),
            duration_seconds=time.monotonic() - started,
        )
        LOGGER.info("backfill_complete", extra={"limit": limit, "duration": batch.duration_seconds, **batch.summary()})
        return batch

    def _batch_item(self, asset_id: str) -> ProcessingResult | None:
        if self._shutdown.is_set():
            return None
        return self.process_single(asset_id, skip_if_hashed=True)

    @property
    def batch_running(self) -> bool:
        """True while this pipeline instance is running a batch."""

        return self._batch_lock.locked()

    def shutdown(self) -> None:
        """Stop picking up new batch items; in-flight assets finish or time out."""

        self._shutdown.set()
        LOGGER.info("pipeline_shutdown_requested")


__all__ = [
    "ALREADY_HASHED",
    "DEFAULT_BATCH_LIMIT",
    "DEFAULT_ASSET_TIMEOUT_SECONDS",
    "Outcome",
    "ProcessingResult",
    "BatchResult",
    "ProcessingPipeline",
]
