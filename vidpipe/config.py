from __future__ import annotations

import logging
import os
from typing import Any

logger = logging.getLogger("vidpipe.config")


def parse_bool(value) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except (TypeError, ValueError):
        return default


STORAGE_ROOT = os.environ.get("VIDPIPE_STORAGE_ROOT", "/data/vidpipe")
LOCK_DIR = os.environ.get("VIDPIPE_LOCK_DIR", os.path.join(STORAGE_ROOT, ".locks"))
MEDIA_BASE_URL = (os.environ.get("VIDPIPE_MEDIA_BASE_URL", "/media") or "/media").rstrip("/")

SESSION_TTL_HOURS = _env_int("VIDPIPE_SESSION_TTL_HOURS", 24)
MAX_CHUNK_BYTES = _env_int("VIDPIPE_MAX_CHUNK_BYTES", 64 * 1024 * 1024)

DEFAULT_PAGE_SIZE = _env_int("VIDPIPE_DEFAULT_PAGE_SIZE", 15)
MAX_PAGE_SIZE = max(1, _env_int("VIDPIPE_MAX_PAGE_SIZE", 100))

FFMPEG_BIN = os.environ.get("VIDPIPE_FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.environ.get("VIDPIPE_FFPROBE_BIN", "ffprobe")
FFPROBE_TIMEOUT_SECONDS = _env_float("VIDPIPE_FFPROBE_TIMEOUT_SECONDS", 30)
TRANSCODE_TIMEOUT_SECONDS = _env_float("VIDPIPE_TRANSCODE_TIMEOUT_SECONDS", 3600)
THUMB_TIMEOUT_SECONDS = _env_float("VIDPIPE_THUMB_TIMEOUT_SECONDS", 30)
THUMB_MAX_WIDTH = _env_int("VIDPIPE_THUMB_MAX_WIDTH", 1280)
FFMPEG_MAX_CONCURRENCY = max(1, _env_int("VIDPIPE_FFMPEG_MAX_CONCURRENCY", 2))
TRANSCODE_MAX_ATTEMPTS = max(1, _env_int("VIDPIPE_TRANSCODE_MAX_ATTEMPTS", 3))
TRANSCODE_RETRY_BACKOFF_SECONDS = _env_float("VIDPIPE_TRANSCODE_RETRY_BACKOFF_SECONDS", 10)

CELERY_BROKER_URL = (os.environ.get("VIDPIPE_CELERY_BROKER_URL") or "").strip()
CELERY_RESULT_BACKEND = (
    os.environ.get("VIDPIPE_CELERY_RESULT_BACKEND") or ""
).strip() or CELERY_BROKER_URL
JOB_MODE = (os.environ.get("VIDPIPE_JOB_MODE", "auto") or "auto").strip().lower()

RATE_LIMIT_CHUNKS = os.environ.get("VIDPIPE_RATE_LIMIT_CHUNKS", "600 per minute")
RATE_LIMIT_UPLOADS = os.environ.get("VIDPIPE_RATE_LIMIT_UPLOADS", "60 per hour")

_JOB_MODES = {"auto", "celery", "thread", "inline"}


def load_flask_config() -> dict[str, Any]:
    return {
        "RATELIMIT_STORAGE_URI": os.environ.get("VIDPIPE_RATE_LIMIT_STORAGE_URI", "memory://"),
        "MAX_CONTENT_LENGTH": MAX_CHUNK_BYTES + 1024 * 1024,
    }


def validate_config() -> list[str]:
    problems = []
    if JOB_MODE not in _JOB_MODES:
        problems.append(f"VIDPIPE_JOB_MODE={JOB_MODE!r} is not one of {sorted(_JOB_MODES)}")
    if JOB_MODE == "celery" and not CELERY_BROKER_URL:
        problems.append("VIDPIPE_JOB_MODE=celery requires VIDPIPE_CELERY_BROKER_URL")
    if SESSION_TTL_HOURS <= 0:
        problems.append("VIDPIPE_SESSION_TTL_HOURS must be positive")
    if MAX_CHUNK_BYTES <= 0:
        problems.append("VIDPIPE_MAX_CHUNK_BYTES must be positive")

    for problem in problems:
        logger.warning(problem)
    return problems
