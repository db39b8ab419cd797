"""Celery tasks for the upload hook and queue-driven backfill runs."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from celery import Celery

from media_blurhash.config import Settings, load_settings
from media_blurhash.runtime import Runtime, build_runtime
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "task_queue"})


@lru_cache(maxsize=1)
def _load_settings() -> Settings:
    return load_settings()


@lru_cache(maxsize=1)
def _runtime() -> Runtime:
    return build_runtime(_load_settings())


def _init_celery() -> Celery:
    settings = _load_settings()
    app = Celery("media_blurhash")
    app.conf.update(
        broker_url=settings.queues.broker_url,
        result_backend=settings.queues.result_backend,
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        task_default_queue=settings.queues.upload_queue,
        task_routes={
            "media_blurhash.task_queue.generate_blurhash": {"queue": settings.queues.upload_queue},
            "media_blurhash.task_queue.backfill_blurhashes": {"queue": settings.queues.backfill_queue},
        },
    )
    return app


celery_app = _init_celery()


@celery_app.task(name="media_blurhash.task_queue.generate_blurhash", acks_late=True)
def generate_blurhash(asset_id: str) -> dict[str, Any]:
    """Upload hook: hash a newly created asset."""

    result = _runtime().pipeline.process_single(asset_id)
    LOGGER.info(
        "upload_hook_complete",
        extra={"asset_id": asset_id, "outcome": result.outcome.value, "reason": result.reason},
    )
    return {"asset_id": asset_id, "outcome": result.outcome.value, "reason": result.reason, "blurhash": result.blurhash}


@celery_app.task(name="media_blurhash.task_queue.backfill_blurhashes", acks_late=True)
def backfill_blurhashes(limit: int | None = None) -> dict[str, Any]:
    """Run one backfill batch; selection failures fail the task."""

    runtime = _runtime()
    result = runtime.pipeline.process_batch(limit)
    payload: dict[str, Any] = dict(result.summary())
    payload.update(runtime.stats.compute_stats().as_payload())
    return payload


__all__ = ["celery_app", "generate_blurhash", "backfill_blurhashes"]
