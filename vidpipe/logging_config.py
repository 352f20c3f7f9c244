from __future__ import annotations

import json
import logging
import os
import re
import threading
from contextlib import contextmanager
from datetime import UTC, datetime

from flask import g, has_request_context, request

LOG_FORMAT = (os.environ.get("VIDPIPE_LOG_FORMAT", "json") or "json").strip().lower()
LOG_LEVEL = (os.environ.get("VIDPIPE_LOG_LEVEL", "INFO") or "INFO").strip().upper()
REQUEST_ID_HEADER = (
    os.environ.get("VIDPIPE_REQUEST_ID_HEADER", "X-Request-ID") or "X-Request-ID"
).strip()
REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,128}$")

_job_context = threading.local()


@contextmanager
def job_log_context(kind: str, job_id: str):
    """Tag log records emitted by the current thread with the running job."""
    previous = getattr(_job_context, "value", None)
    _job_context.value = (kind, job_id)
    try:
        yield
    finally:
        _job_context.value = previous


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            setattr(record, "request_id", getattr(g, "request_id", None))
            setattr(
                record,
                "remote_addr",
                request.headers.get("X-Real-IP") or request.remote_addr,
            )
            setattr(record, "method", request.method)
            setattr(record, "path", request.path)
        else:
            setattr(record, "request_id", None)
            setattr(record, "remote_addr", None)
            setattr(record, "method", None)
            setattr(record, "path", None)

        job = getattr(_job_context, "value", None)
        setattr(record, "job_kind", job[0] if job else None)
        setattr(record, "job_id", job[1] if job else None)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "remote_addr", "method", "path", "job_kind", "job_id"):
            value = getattr(record, key, None)
            if value:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True)


def configure_logging(app=None) -> None:
    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    formatter = (
        JsonFormatter()
        if LOG_FORMAT == "json"
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    for handler in root.handlers:
        handler.setFormatter(formatter)
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(RequestContextFilter())
    root.setLevel(LOG_LEVEL)
    if app is not None:
        app.logger.handlers = root.handlers
        app.logger.setLevel(LOG_LEVEL)
        app.logger.propagate = False
