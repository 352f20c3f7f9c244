import os

from flask import Blueprint, jsonify

from .. import config
from ..middleware.rate_limit import limiter
from ..services.database import _pipeline_conn

health_bp = Blueprint("health", __name__)

VERSION = os.environ.get("VIDPIPE_VERSION", "0.1.0-dev")


@health_bp.route("/health")
@limiter.exempt
def health_check():
    status = {"status": "healthy", "services": {}}
    overall_healthy = True

    try:
        with _pipeline_conn() as conn:
            conn.execute("SELECT 1").fetchone()
        status["services"]["database"] = "ok"
    except Exception as exc:
        status["services"]["database"] = f"error: {exc}"
        overall_healthy = False

    if os.path.isdir(config.STORAGE_ROOT) and os.access(config.STORAGE_ROOT, os.W_OK):
        status["services"]["storage"] = "ok"
    else:
        status["services"]["storage"] = "unwritable"
        overall_healthy = False

    if not overall_healthy:
        status["status"] = "unhealthy"
        return jsonify(status), 503

    return jsonify(status)


@health_bp.route("/version")
def version():
    return jsonify(
        {
            "version": VERSION,
            "release": os.environ.get("VIDPIPE_RELEASE", "none"),
            "environment": os.environ.get("VIDPIPE_ENV", "production"),
        }
    )
