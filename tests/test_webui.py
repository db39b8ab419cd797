"""Tests for the admin statistics page and the manual backfill trigger."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from media_blurhash.errors import PersistenceError, SelectionError
from media_blurhash.runtime import Runtime, build_runtime
from media_blurhash.webui import create_app
from tests.utils.media import GatedEncoder, add_asset, make_settings, write_image

TOKEN = "s3cret-token"


@pytest.fixture()
def runtime(tmp_path: Path) -> Runtime:
    settings = make_settings(tmp_path, batch_limit=2)
    settings.webui.api_token = TOKEN
    rt = build_runtime(settings)
    image = write_image(tmp_path / "img.png", (64, 48))
    for idx in range(3):
        add_asset(rt.media_store, f"a{idx}", image, created_at=float(idx))
    return rt


def _auth() -> dict[str, str]:
    return {"Authorization": f"Bearer {TOKEN}"}


def test_stats_endpoint_reports_counts(runtime: Runtime) -> None:
    client = create_app(runtime).test_client()

    response = client.get("/api/stats")

    assert response.status_code == 200
    assert response.get_json() == {
        "success": True,
        "data": {"completed": 0, "pending": 3, "total": 3, "consistent": True},
    }


def test_index_page_shows_counts(runtime: Runtime) -> None:
    client = create_app(runtime).test_client()

    body = client.get("/").get_data(as_text=True)

    assert 'id="js-blurhash-count-pending">3<' in body
    assert 'id="js-blurhash-count-completed">0<' in body


def test_index_page_reports_unavailable_statistics(runtime: Runtime, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail() -> None:
        raise PersistenceError("database is locked")

    monkeypatch.setattr(runtime.stats, "compute_stats", _fail)
    client = create_app(runtime).test_client()

    response = client.get("/")

    assert response.status_code == 500
    assert "Statistics are unavailable: database is locked" in response.get_data(as_text=True)


def test_backfill_requires_a_valid_token(runtime: Runtime) -> None:
    client = create_app(runtime).test_client()

    assert client.post("/api/backfill").status_code == 403
    wrong = client.post("/api/backfill", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 403
    assert wrong.get_json() == {"success": False, "data": "unauthorized"}
    assert runtime.stats.compute_stats().with_hash == 0


def test_backfill_is_disabled_without_a_configured_token(runtime: Runtime) -> None:
    runtime.settings.webui.api_token = None
    client = create_app(runtime).test_client()

    assert client.post("/api/backfill", headers={"Authorization": "Bearer "}).status_code == 403


def test_backfill_runs_one_batch_and_returns_fresh_counts(runtime: Runtime) -> None:
    client = create_app(runtime).test_client()

    response = client.post("/api/backfill", headers=_auth())

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["data"]["succeeded"] == 2
    assert (payload["data"]["completed"], payload["data"]["pending"], payload["data"]["total"]) == (2, 1, 3)


def test_backfill_accepts_limit_and_alternate_header(runtime: Runtime) -> None:
    client = create_app(runtime).test_client()

    response = client.post("/api/backfill?limit=1", headers={"X-Blurhash-Token": TOKEN})
    assert response.get_json()["data"]["completed"] == 1

    response = client.post("/api/backfill", json={"limit": 5}, headers=_auth())
    assert response.get_json()["data"]["pending"] == 0


@pytest.mark.parametrize("limit", ["0", "many"])
def test_backfill_rejects_bad_limits(runtime: Runtime, limit: str) -> None:
    client = create_app(runtime).test_client()

    response = client.post(f"/api/backfill?limit={limit}", headers=_auth())

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_backfill_selection_failure_is_a_server_error(runtime: Runtime, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(limit: int) -> list[str]:
        raise SelectionError("pending asset query failed")

    monkeypatch.setattr(runtime.media_store, "select_pending", _fail)
    client = create_app(runtime).test_client()

    response = client.post("/api/backfill", headers=_auth())

    assert response.status_code == 500
    assert response.get_json() == {"success": False, "data": "pending asset query failed"}


def test_backfill_conflicts_with_a_running_batch(tmp_path: Path) -> None:
    settings = make_settings(tmp_path, asset_timeout_seconds=10.0)
    settings.webui.api_token = TOKEN
    encoder = GatedEncoder(block_calls=1)
    rt = build_runtime(settings, encoder=encoder)
    add_asset(rt.media_store, "a", write_image(tmp_path / "a.png", (40, 40)))
    client = create_app(rt).test_client()

    thread = threading.Thread(target=rt.pipeline.process_batch)
    thread.start()
    assert encoder.entered.wait(5)

    response = client.post("/api/backfill", headers=_auth())
    encoder.release.set()
    thread.join(10)

    assert response.status_code == 409
    assert response.get_json()["success"] is False
