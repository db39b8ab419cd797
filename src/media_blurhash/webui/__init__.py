"""Flask admin surface: coverage statistics and the manual backfill trigger."""

from __future__ import annotations

import hmac
from typing import Any

from flask import Flask, current_app, jsonify, render_template_string, request

from media_blurhash.errors import BlurhashError
from media_blurhash.runtime import Runtime, build_runtime
from utils.logging import get_logger

LOGGER = get_logger(__name__, extra={"component": "webui"})

_RUNTIME_KEY = "MEDIA_BLURHASH_RUNTIME"

_STATS_PAGE = """<!doctype html>
<html>
<head><title>Blurhash Statistics</title></head>
<body>
  <h2>Blurhash Statistics</h2>
  <p>Images with Blurhash: <span id="js-blurhash-count-completed">{{ stats.with_hash }}</span></p>
  <p>Images without Blurhash: <span id="js-blurhash-count-pending">{{ stats.without_hash }}</span></p>
  <p>Total images: {{ stats.total }}</p>
  <p>Process {{ batch_limit }} more images with <code>POST {{ backfill_url }}</code>.</p>
</body>
</html>
"""

_ERROR_PAGE = """<!doctype html>
<html>
<head><title>Blurhash Statistics</title></head>
<body>
  <h2>Blurhash Statistics</h2>
  <p>Statistics are unavailable: {{ message }}</p>
</body>
</html>
"""


def _runtime() -> Runtime:
    return current_app.config[_RUNTIME_KEY]


def _failure(message: str, status: int) -> Any:
    return jsonify({"success": False, "data": message}), status


def _provided_token() -> str:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.headers.get("X-Blurhash-Token", "").strip()


def _authorized(runtime: Runtime) -> bool:
    expected = runtime.settings.webui.api_token
    if not expected:
        return False
    return hmac.compare_digest(_provided_token().encode("utf-8"), expected.encode("utf-8"))


def _parse_limit(runtime: Runtime) -> int:
    raw = request.args.get("limit")
    if raw is None:
        body = request.get_json(silent=True)
        raw = body.get("limit") if isinstance(body, dict) else None
    if raw is None:
        return runtime.settings.backfill.batch_limit
    limit = int(raw)
    if limit < 1:
        raise ValueError("limit must be at least 1")
    return limit


def create_app(runtime: Runtime | None = None) -> Flask:
    """Build the Flask app around an injected runtime (built from settings by default)."""

    app = Flask(__name__)
    app.config[_RUNTIME_KEY] = runtime or build_runtime()

    @app.route("/")
    def index() -> Any:
        """Render the coverage statistics page."""

        rt = _runtime()
        try:
            current = rt.stats.compute_stats()
        except BlurhashError as exc:
            LOGGER.error("stats_page_error", extra={"error": str(exc)})
            return render_template_string(_ERROR_PAGE, message=str(exc)), 500
        return render_template_string(
            _STATS_PAGE,
            stats=current,
            batch_limit=rt.settings.backfill.batch_limit,
            backfill_url="/api/backfill",
        )

    @app.route("/api/stats")
    def stats() -> Any:
        try:
            current = _runtime().stats.compute_stats()
        except BlurhashError as exc:
            LOGGER.error("stats_error", extra={"error": str(exc)})
            return _failure(str(exc), 500)
        payload: dict[str, Any] = dict(current.as_payload())
        payload["consistent"] = current.consistent
        return jsonify({"success": True, "data": payload})

    @app.route("/api/backfill", methods=["POST"])
    def backfill() -> Any:
        """Run one authenticated batch and answer with refreshed counts."""

        rt = _runtime()
        if not _authorized(rt):
            LOGGER.warning("manual_backfill_unauthorized", extra={"remote_addr": request.remote_addr})
            return _failure("unauthorized", 403)

        try:
            limit = _parse_limit(rt)
        except (TypeError, ValueError) as exc:
            return _failure(f"invalid limit: {exc}", 400)

        try:
            result = rt.pipeline.process_batch(limit)
            if result.already_running:
                return _failure("a backfill batch is already running", 409)
            counts = rt.stats.compute_stats().as_payload()
        except BlurhashError as exc:
            LOGGER.error("manual_backfill_error", extra={"kind": exc.kind.value, "error": str(exc)})
            return _failure(str(exc), 500)

        payload: dict[str, Any] = dict(result.summary())
        payload.update(counts)
        LOGGER.info("manual_backfill_complete", extra=payload)
        return jsonify({"success": True, "data": payload})

    return app


def main() -> None:
    runtime = build_runtime()
    app = create_app(runtime)
    app.run(host=runtime.settings.webui.host, port=runtime.settings.webui.port)


if __name__ == "__main__":
    main()


__all__ = ["create_app", "main"]
