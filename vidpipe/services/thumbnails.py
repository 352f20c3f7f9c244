from __future__ import annotations

import logging

from ..metrics import THUMBNAIL_COUNT
from . import ffmpeg, storage
from .database import _now, _pipeline_conn

logger = logging.getLogger("vidpipe.thumbnails")

DEFAULT_THUMBNAIL_SECONDS = 5
SHORT_VIDEO_THUMBNAIL_SECONDS = 1


def thumbnail_time(duration: float | None) -> int:
    if duration and duration < DEFAULT_THUMBNAIL_SECONDS:
        return SHORT_VIDEO_THUMBNAIL_SECONDS
    return DEFAULT_THUMBNAIL_SECONDS


def generate_video_thumbnail(video_id: int) -> str | None:
    """
    Capture a still frame for a video. Failures are logged and never raised;
    the video's status and progress are left alone either way.
    """
    try:
        with _pipeline_conn() as conn:
            video = conn.execute(
                "SELECT id, original_path, duration_seconds FROM videos WHERE id = ?",
                (video_id,),
            ).fetchone()
        if video is None:
            logger.warning("Thumbnail skipped: video %s not found", video_id)
            if THUMBNAIL_COUNT:
                THUMBNAIL_COUNT.labels("skipped").inc()
            return None

        rel_path = storage.thumbnail_path(storage.asset_dir_of(video["original_path"]))
        ffmpeg.generate_thumbnail(
            storage.absolute_path(video["original_path"]),
            storage.absolute_path(rel_path),
            thumbnail_time(video["duration_seconds"]),
        )

        with _pipeline_conn() as conn:
            conn.execute(
                "UPDATE videos SET thumbnail_path = ?, updated_at = ? WHERE id = ?",
                (rel_path, _now(), video_id),
            )
    except Exception as exc:
        if THUMBNAIL_COUNT:
            THUMBNAIL_COUNT.labels("error").inc()
        logger.warning("Thumbnail generation failed for video %s: %s", video_id, exc)
        return None

    if THUMBNAIL_COUNT:
        THUMBNAIL_COUNT.labels("success").inc()
    return rel_path
