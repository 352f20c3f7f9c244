from __future__ import annotations

from flask import Blueprint, Response, jsonify
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..metrics import METRICS_ENABLED, VIDEOS_BY_STATUS, _get_metrics_registry
from ..middleware.rate_limit import limiter
from ..models.states import VideoStatus
from ..services.database import _pipeline_conn

metrics_bp = Blueprint("metrics", __name__)


def _refresh_video_gauges() -> None:
    if VIDEOS_BY_STATUS is None:
        return
    with _pipeline_conn() as conn:
        rows = conn.execute("SELECT status, COUNT(*) AS n FROM videos GROUP BY status").fetchall()
    counts = {status.value: 0 for status in VideoStatus}
    for row in rows:
        counts[row["status"]] = int(row["n"])
    for status, count in counts.items():
        VIDEOS_BY_STATUS.labels(status).set(count)


@metrics_bp.route("/metrics")
@limiter.exempt
def metrics():
    if not METRICS_ENABLED:
        return jsonify({"error": "Metrics disabled"}), 404
    _refresh_video_gauges()
    registry = _get_metrics_registry()
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
