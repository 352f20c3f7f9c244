from __future__ import annotations

import logging

from ..errors import InvalidArgument, LessonNotFound, VideoNotFound, VideoNotReady
from ..models.states import VideoStatus
from .database import _now, _pipeline_conn, _row_to_dict
from .locks import video_lock

logger = logging.getLogger("vidpipe.lessons")


def _fetch_lesson(conn, lesson_id) -> dict | None:
    try:
        lesson_id = int(lesson_id)
    except (TypeError, ValueError):
        return None
    row = conn.execute("SELECT * FROM lessons WHERE id = ? LIMIT 1", (lesson_id,)).fetchone()
    return _row_to_dict(row)


def _fetch_video(conn, video_id) -> dict | None:
    try:
        video_id = int(video_id)
    except (TypeError, ValueError):
        return None
    row = conn.execute(
        "SELECT id, status, processing_progress FROM videos WHERE id = ? LIMIT 1",
        (video_id,),
    ).fetchone()
    return _row_to_dict(row)


def create_lesson(title: str) -> dict:
    title = str(title or "").strip()
    if not title:
        raise InvalidArgument("title is required", field="title")
    now = _now()
    with _pipeline_conn() as conn:
        row = conn.execute(
            "INSERT INTO lessons (title, created_at, updated_at) VALUES (?, ?, ?) RETURNING id",
            (title, now, now),
        ).fetchone()
        return _fetch_lesson(conn, row["id"])


def get_lesson(lesson_id) -> dict:
    with _pipeline_conn() as conn:
        lesson = _fetch_lesson(conn, lesson_id)
    if lesson is None:
        raise LessonNotFound(lesson_id)
    return lesson


def attach_video_to_lesson(lesson_id, video_id) -> dict:
    """
    Point a lesson at a completed video and record the association.

    Repeating the call is a no-op for the association (its ``attached_at``
    is kept). Associations to videos the lesson pointed at before are
    retained.
    """
    with _pipeline_conn() as conn:
        video = _fetch_video(conn, video_id)
    if video is None:
        raise VideoNotFound(video_id)
    video_id = video["id"]

    with video_lock(video_id):
        with _pipeline_conn() as conn:
            video = _fetch_video(conn, video_id)
            if video is None:
                raise VideoNotFound(video_id)
            if video["status"] != VideoStatus.COMPLETED.value:
                raise VideoNotReady(video["status"], int(video["processing_progress"] or 0))
            lesson = _fetch_lesson(conn, lesson_id)
            if lesson is None:
                raise LessonNotFound(lesson_id)

            now = _now()
            conn.execute(
                "UPDATE lessons SET current_video_id = ?, updated_at = ? WHERE id = ?",
                (video_id, now, lesson["id"]),
            )
            conn.execute(
                """
                INSERT INTO video_lessons (video_id, lesson_id, attached_at)
                VALUES (?, ?, ?)
                ON CONFLICT(video_id, lesson_id) DO NOTHING
                """,
                (video_id, lesson["id"], now),
            )
            lesson = _fetch_lesson(conn, lesson["id"])

    logger.info("Attached video %d to lesson %d", video_id, lesson["id"])
    return lesson


def detach_video_from_lesson(lesson_id) -> dict:
    """Clear the lesson's pointer and drop every association it holds."""
    with _pipeline_conn() as conn:
        lesson = _fetch_lesson(conn, lesson_id)
        if lesson is None:
            raise LessonNotFound(lesson_id)
        conn.execute(
            "UPDATE lessons SET current_video_id = NULL, updated_at = ? WHERE id = ?",
            (_now(), lesson["id"]),
        )
        removed = conn.execute(
            "DELETE FROM video_lessons WHERE lesson_id = ? RETURNING video_id",
            (lesson["id"],),
        ).fetchall()
        lesson = _fetch_lesson(conn, lesson["id"])

    if removed:
        logger.info("Detached %d video(s) from lesson %d", len(removed), lesson["id"])
    return lesson


def get_lessons_for_video(video_id) -> list[dict]:
    with _pipeline_conn() as conn:
        video = _fetch_video(conn, video_id)
        if video is None:
            raise VideoNotFound(video_id)
        rows = conn.execute(
            """
            SELECT l.*, vl.attached_at
            FROM video_lessons vl
            JOIN lessons l ON l.id = vl.lesson_id
            WHERE vl.video_id = ?
            ORDER BY vl.attached_at, l.id
            """,
            (video["id"],),
        ).fetchall()
    return [dict(r) for r in rows]
