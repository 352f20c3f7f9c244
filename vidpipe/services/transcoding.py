from __future__ import annotations

import logging
import time

from ..errors import InvalidArgument, VideoNotFound
from ..metrics import VIDEO_TRANSCODE_COUNT, VIDEO_TRANSCODE_LATENCY
from ..models.states import (
    QUALITIES,
    QUALITY_COUNT,
    TERMINAL_QUALITY_STATES,
    QualityStatus,
    VideoStatus,
    ensure_transition,
)
from . import ffmpeg, storage
from .database import _now, _pipeline_conn, _row_to_dict
from .locks import video_lock

logger = logging.getLogger("vidpipe.transcoding")


def _fetch_quality(conn, video_id: int, quality: str) -> dict | None:
    row = conn.execute(
        "SELECT * FROM video_qualities WHERE video_id = ? AND quality = ? LIMIT 1",
        (video_id, quality),
    ).fetchone()
    return _row_to_dict(row)


def _set_quality_status(
    video_id: int,
    quality: str,
    target: QualityStatus,
    **fields,
) -> dict:
    with _pipeline_conn() as conn:
        row = _fetch_quality(conn, video_id, quality)
        if row is None:
            raise VideoNotFound(video_id)
        ensure_transition(row["status"], target)
        assignments = ["status = ?", "updated_at = ?"]
        params: list = [target.value, _now()]
        for key, value in fields.items():
            assignments.append(f"{key} = ?")
            params.append(value)
        params += [video_id, quality]
        conn.execute(
            f"UPDATE video_qualities SET {', '.join(assignments)} "
            "WHERE video_id = ? AND quality = ?",
            tuple(params),
        )
        return _fetch_quality(conn, video_id, quality)


def _progress_writer(video_id: int, quality: str):
    last = {"value": 0}

    def on_progress(percent: int) -> None:
        percent = max(0, min(99, int(percent)))
        if percent <= last["value"]:
            return
        last["value"] = percent
        with _pipeline_conn() as conn:
            conn.execute(
                """
                UPDATE video_qualities
                SET processing_progress = ?, updated_at = ?
                WHERE video_id = ? AND quality = ? AND status = ?
                """,
                (percent, _now(), video_id, quality, QualityStatus.PROCESSING.value),
            )

    return on_progress


def recompute_video_state(video_id: int) -> dict:
    """
    Derive the video's aggregate progress and status from its quality rows.

    Runs inside the per-video exclusive region so sibling renditions that
    finish together are applied one after another; the counts are always
    re-read, never incremented.
    """
    with video_lock(video_id):
        with _pipeline_conn() as conn:
            video = conn.execute(
                "SELECT id, status, processing_progress FROM videos WHERE id = ?",
                (video_id,),
            ).fetchone()
            if video is None:
                raise VideoNotFound(video_id)
            rows = conn.execute(
                "SELECT status FROM video_qualities WHERE video_id = ?",
                (video_id,),
            ).fetchall()
            statuses = [QualityStatus(r["status"]) for r in rows]
            completed = sum(1 for s in statuses if s == QualityStatus.COMPLETED)
            terminal = sum(1 for s in statuses if s in TERMINAL_QUALITY_STATES)
            progress = round(100 * completed / QUALITY_COUNT)

            current = VideoStatus(video["status"])
            target = current
            if terminal >= QUALITY_COUNT and current != VideoStatus.COMPLETED:
                target = ensure_transition(current, VideoStatus.COMPLETED)

            conn.execute(
                """
                UPDATE videos
                SET status = ?, processing_progress = ?, updated_at = ?
                WHERE id = ?
                """,
                (target.value, progress, _now(), video_id),
            )

    if target != current:
        logger.info(
            "Video %d finished processing: %d/%d renditions completed",
            video_id,
            completed,
            QUALITY_COUNT,
        )
    return {
        "video_id": video_id,
        "status": target.value,
        "progress": progress,
        "completed_qualities": completed,
    }


def transcode_quality(video_id: int, quality: str) -> dict:
    """
    Produce one rendition of a video and fold the outcome into the video's
    aggregate state. Adapter failures mark the rendition failed and are
    re-raised so the queue can retry the unit.
    """
    if quality not in QUALITIES:
        raise InvalidArgument(f"Unknown quality {quality!r}", field="quality")

    with _pipeline_conn() as conn:
        video = conn.execute(
            "SELECT id, original_path, duration_seconds FROM videos WHERE id = ?",
            (video_id,),
        ).fetchone()
        if video is None:
            raise VideoNotFound(video_id)
        row = _fetch_quality(conn, video_id, quality)
    if row is None:
        raise InvalidArgument(f"Video {video_id} has no {quality} rendition", field="quality")

    if row["status"] == QualityStatus.COMPLETED.value:
        logger.info("Rendition %s of video %d already completed; skipping", quality, video_id)
        recompute_video_state(video_id)
        return row

    _set_quality_status(
        video_id,
        quality,
        QualityStatus.PROCESSING,
        processing_progress=0,
        error_message=None,
        attempts=int(row["attempts"] or 0) + 1,
    )

    asset_dir = storage.asset_dir_of(video["original_path"])
    output_rel = storage.quality_path(asset_dir, quality)
    start_time = time.perf_counter()
    try:
        ffmpeg.transcode_video(
            storage.absolute_path(video["original_path"]),
            storage.absolute_path(output_rel),
            quality,
            on_progress=_progress_writer(video_id, quality),
            duration=video["duration_seconds"],
        )
        output_size = storage.file_size(output_rel)
    except Exception as exc:
        if VIDEO_TRANSCODE_COUNT:
            VIDEO_TRANSCODE_COUNT.labels(quality, "error").inc()
        logger.error("Transcode %s failed for video %d: %s", quality, video_id, exc)
        storage.delete_file(output_rel)
        _set_quality_status(
            video_id,
            quality,
            QualityStatus.FAILED,
            error_message=str(exc),
        )
        recompute_video_state(video_id)
        raise

    if VIDEO_TRANSCODE_LATENCY:
        VIDEO_TRANSCODE_LATENCY.labels(quality).observe(time.perf_counter() - start_time)
    if VIDEO_TRANSCODE_COUNT:
        VIDEO_TRANSCODE_COUNT.labels(quality, "success").inc()

    result = _set_quality_status(
        video_id,
        quality,
        QualityStatus.COMPLETED,
        file_path=output_rel,
        file_size=output_size,
        processing_progress=100,
        error_message=None,
    )
    recompute_video_state(video_id)
    return result
