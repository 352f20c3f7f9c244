from __future__ import annotations

import logging
import time

from ..errors import IncompleteUpload, InvalidSession, InvalidTransition
from ..metrics import ASSEMBLY_COUNT, ASSEMBLY_LATENCY
from ..models.states import QUALITIES, QualityStatus, SessionStatus, VideoStatus, ensure_transition
from . import ffmpeg, storage
from .database import _now, _pipeline_conn
from .locks import session_lock
from .uploads import _fetch_session, _missing_chunks, _received_indices

logger = logging.getLogger("vidpipe.assembly")


def _mark_session(
    session_id: str,
    target: SessionStatus,
    error: str | None = None,
    video_id: int | None = None,
) -> None:
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
        if session is None:
            return
        ensure_transition(session["status"], target)
        conn.execute(
            """
            UPDATE upload_sessions
            SET status = ?, error = ?, video_id = COALESCE(?, video_id), updated_at = ?
            WHERE session_id = ?
            """,
            (target.value, error, video_id, _now(), session_id),
        )


def _chunk_bytes(conn, session_id: str) -> int:
    row = conn.execute(
        "SELECT COALESCE(SUM(size), 0) AS total FROM upload_chunks WHERE session_id = ?",
        (session_id,),
    ).fetchone()
    return int(row["total"] or 0)


def _create_video_records(session: dict, original_rel: str, size: int, meta: dict) -> int:
    now = _now()
    with _pipeline_conn() as conn:
        status = ensure_transition(VideoStatus.PENDING, VideoStatus.PROCESSING)
        result = conn.execute(
            """
            INSERT INTO videos (
                original_filename,
                display_name,
                file_size,
                duration_seconds,
                resolution,
                codec,
                format,
                original_path,
                status,
                processing_progress,
                created_at,
                updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            RETURNING id
            """,
            (
                session["filename"],
                session["filename"],
                size,
                meta.get("duration_seconds"),
                meta.get("resolution"),
                meta.get("codec"),
                meta.get("format"),
                original_rel,
                status.value,
                now,
                now,
            ),
        ).fetchone()
        video_id = int(result["id"])
        for quality in QUALITIES:
            conn.execute(
                """
                INSERT INTO video_qualities (
                    video_id, quality, status, processing_progress, attempts, created_at, updated_at
                )
                VALUES (?, ?, ?, 0, 0, ?, ?)
                """,
                (video_id, quality, QualityStatus.PENDING.value, now, now),
            )
    return video_id


def _load_video(video_id: int) -> dict:
    with _pipeline_conn() as conn:
        row = conn.execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
    return dict(row)


def _assemble_locked(session_id: str) -> tuple[int, bool]:
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
    if session is None:
        if ASSEMBLY_COUNT:
            ASSEMBLY_COUNT.labels("error").inc()
        logger.error("Assembly failed: session %s not found", session_id)
        raise InvalidSession(session_id)
    if session["status"] == SessionStatus.COMPLETED.value and session["video_id"]:
        logger.info(
            "Session %s already assembled into video %s", session_id, session["video_id"]
        )
        return int(session["video_id"]), False

    asset_dir = None
    video_id = None
    try:
        ensure_transition(session["status"], SessionStatus.COMPLETED)
        total_chunks = int(session["total_chunks"])
        with _pipeline_conn() as conn:
            missing = _missing_chunks(total_chunks, _received_indices(conn, session_id))
            if missing:
                raise IncompleteUpload(missing)
            expected_bytes = _chunk_bytes(conn, session_id)

        asset_dir = storage.new_asset_dir()
        original_rel = storage.original_path(asset_dir, session["filename"])
        written = storage.concatenate_chunks(session_id, total_chunks, original_rel)
        if written != expected_bytes:
            raise OSError(
                f"Assembled {written} bytes but chunks recorded {expected_bytes} bytes"
            )
        if written != int(session["file_size"]):
            logger.warning(
                "Session %s declared %s bytes but assembled %d",
                session_id,
                session["file_size"],
                written,
            )

        meta = ffmpeg.extract_metadata(storage.absolute_path(original_rel))
        video_id = _create_video_records(session, original_rel, written, meta)

        storage.remove_session_dir(session_id)
        with _pipeline_conn() as conn:
            conn.execute("DELETE FROM upload_chunks WHERE session_id = ?", (session_id,))
        _mark_session(session_id, SessionStatus.COMPLETED, video_id=video_id)
    except Exception as exc:
        if ASSEMBLY_COUNT:
            ASSEMBLY_COUNT.labels("error").inc()
        logger.error("Assembly failed for session %s: %s", session_id, exc)
        if video_id is None and asset_dir:
            storage.remove_tree(asset_dir)
        try:
            _mark_session(session_id, SessionStatus.FAILED, str(exc), video_id=video_id)
        except InvalidTransition as mark_exc:
            logger.error("Could not mark session %s failed: %s", session_id, mark_exc)
        raise

    logger.info("Session %s assembled into video %d (%d bytes)", session_id, video_id, written)
    return video_id, True


def assemble_session(session_id: str) -> dict:
    """
    Turn a fully received upload session into a durable video.

    Chunks are concatenated in index order, the result is probed, and the
    video plus its four pending quality rows are written in one transaction.
    Only after that are the chunk blobs removed, the session completed and
    the rendition and thumbnail jobs queued. Any failure before that point
    marks the session failed and propagates.

    Runs for the same session are serialized; a run that finds the session
    already assembled returns the existing video and queues nothing.
    """
    from ..jobs import GenerateThumbnail, Transcode, enqueue

    start_time = time.perf_counter()
    with session_lock(session_id):
        video_id, created = _assemble_locked(session_id)
    if not created:
        return _load_video(video_id)

    for quality in QUALITIES:
        enqueue(Transcode(video_id=video_id, quality=quality))
    enqueue(GenerateThumbnail(video_id=video_id))

    if ASSEMBLY_COUNT:
        ASSEMBLY_COUNT.labels("success").inc()
    if ASSEMBLY_LATENCY:
        ASSEMBLY_LATENCY.observe(time.perf_counter() - start_time)
    return _load_video(video_id)
