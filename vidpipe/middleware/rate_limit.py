"""Per-client request limits for the upload endpoints."""

from __future__ import annotations

import logging

from flask_limiter import Limiter

from .. import config
from ..utils.request import _get_rate_limit_key

logger = logging.getLogger("vidpipe.rate_limit")

limiter = Limiter(key_func=_get_rate_limit_key, default_limits=[])


def _session_limit() -> str:
    return config.RATE_LIMIT_UPLOADS


def _chunk_limit() -> str:
    return config.RATE_LIMIT_CHUNKS


limit_session_creation = limiter.limit(
    _session_limit, error_message="Too many upload sessions opened; try again later"
)
limit_chunk_uploads = limiter.limit(
    _chunk_limit, error_message="Too many chunk uploads; slow down"
)


def init_rate_limiter(app) -> None:
    limiter.init_app(app)
    if app.config.get("RATELIMIT_ENABLED", True):
        logger.debug(
            "Upload limits: sessions=%s chunks=%s", config.RATE_LIMIT_UPLOADS, config.RATE_LIMIT_CHUNKS
        )
    else:
        logger.info("Rate limiting disabled")
