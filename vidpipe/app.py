from __future__ import annotations

import logging
import os
import secrets
import time

import sentry_sdk
from flask import Flask, g, has_request_context, jsonify, request
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import HTTPException

from . import config
from .errors import MediaToolError, PipelineError
from .logging_config import REQUEST_ID_HEADER, REQUEST_ID_RE, configure_logging
from .metrics import METRICS_ENABLED, REQUEST_COUNT, REQUEST_IN_FLIGHT, REQUEST_LATENCY
from .middleware.rate_limit import init_rate_limiter
from .routes.health import health_bp
from .routes.lessons import create_lessons_blueprint
from .routes.metrics import metrics_bp
from .routes.uploads import create_uploads_blueprint
from .routes.videos import create_videos_blueprint
from .tracing import configure_tracing

logger = logging.getLogger("vidpipe.app")

SENTRY_DSN = (os.environ.get("VIDPIPE_SENTRY_DSN") or "").strip()
SENTRY_ENV = (
    os.environ.get("VIDPIPE_SENTRY_ENV") or os.environ.get("SENTRY_ENVIRONMENT") or "production"
).strip()
SENTRY_RELEASE = (os.environ.get("VIDPIPE_RELEASE") or "").strip() or None
try:
    SENTRY_TRACES_SAMPLE_RATE = float(os.environ.get("VIDPIPE_SENTRY_TRACES_SAMPLE_RATE", "0"))
except (TypeError, ValueError):
    SENTRY_TRACES_SAMPLE_RATE = 0.0

_sentry_ready = False


def _sentry_before_send(event, _hint):
    if has_request_context():
        request_id = getattr(g, "request_id", None)
        if request_id:
            event.setdefault("tags", {})["request_id"] = request_id
    return event


def _init_sentry() -> None:
    global _sentry_ready
    if _sentry_ready or not SENTRY_DSN:
        return
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENV,
        release=SENTRY_RELEASE,
        integrations=[FlaskIntegration()],
        traces_sample_rate=max(0.0, SENTRY_TRACES_SAMPLE_RATE),
        send_default_pii=False,
        before_send=_sentry_before_send,
    )
    _sentry_ready = True


def _generate_request_id(raw: str | None) -> str:
    candidate = (raw or "").strip()
    if candidate and REQUEST_ID_RE.fullmatch(candidate):
        return candidate
    return secrets.token_urlsafe(12)


def _record_request_metrics(response) -> None:
    if not METRICS_ENABLED or REQUEST_COUNT is None:
        return
    if getattr(g, "_metrics_done", False):
        return
    g._metrics_done = True
    if getattr(g, "_metrics_inflight", False):
        if REQUEST_IN_FLIGHT is not None:
            REQUEST_IN_FLIGHT.dec()
        g._metrics_inflight = False

    endpoint = request.endpoint or "unknown"
    method = request.method
    REQUEST_COUNT.labels(method, endpoint, str(response.status_code)).inc()
    if REQUEST_LATENCY is not None and hasattr(g, "_request_started_at"):
        REQUEST_LATENCY.labels(method, endpoint).observe(
            time.perf_counter() - g._request_started_at
        )


def _register_request_hooks(app) -> None:
    @app.before_request
    def _init_request_context():
        g.request_id = _generate_request_id(request.headers.get(REQUEST_ID_HEADER))
        g._request_started_at = time.perf_counter()
        if METRICS_ENABLED and REQUEST_IN_FLIGHT is not None:
            REQUEST_IN_FLIGHT.inc()
            g._metrics_inflight = True

    @app.after_request
    def _finalize_request(response):
        if hasattr(g, "request_id"):
            response.headers[REQUEST_ID_HEADER] = g.request_id
        _record_request_metrics(response)
        return response

    @app.teardown_request
    def _teardown_request(_exc):
        if (
            METRICS_ENABLED
            and getattr(g, "_metrics_inflight", False)
            and REQUEST_IN_FLIGHT is not None
        ):
            REQUEST_IN_FLIGHT.dec()
            g._metrics_inflight = False


def _register_error_handlers(app) -> None:
    @app.errorhandler(PipelineError)
    def _handle_pipeline_error(exc: PipelineError):
        if isinstance(exc, MediaToolError):
            logger.error("Media tool failure (%s): %s %s", exc.reason, exc.message, exc.output)
        elif exc.status_code >= 500:
            logger.error("Pipeline error: %s", exc.message)
        return jsonify({"error": exc.to_dict()}), exc.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": {"code": code, "message": exc.description}}), exc.code


def create_app(overrides: dict | None = None) -> Flask:
    config.validate_config()

    app = Flask(__name__)
    for key, value in config.load_flask_config().items():
        app.config.setdefault(key, value)
    if overrides:
        app.config.update(overrides)

    configure_logging(app)
    configure_tracing(app)
    _init_sentry()
    init_rate_limiter(app)

    os.makedirs(config.STORAGE_ROOT, exist_ok=True)

    _register_request_hooks(app)
    _register_error_handlers(app)

    app.register_blueprint(health_bp)
    app.register_blueprint(metrics_bp)
    app.register_blueprint(create_uploads_blueprint())
    app.register_blueprint(create_videos_blueprint())
    app.register_blueprint(create_lessons_blueprint())
    return app
