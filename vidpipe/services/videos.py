from __future__ import annotations

import logging

from .. import config
from ..errors import InvalidArgument, PipelineError, VideoInUse, VideoNotFound
from ..models.states import QUALITIES, QUALITY_COUNT, QualityStatus, VideoStatus
from . import storage
from .database import _now, _pipeline_conn, _row_to_dict
from .locks import video_lock

logger = logging.getLogger("vidpipe.videos")

_LIKE_ESCAPE = "\\"


def _like_pattern(value: str) -> str:
    escaped = (
        value.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )
    return f"%{escaped.lower()}%"


def _fetch_video(conn, video_id: int) -> dict | None:
    row = conn.execute("SELECT * FROM videos WHERE id = ? LIMIT 1", (video_id,)).fetchone()
    return _row_to_dict(row)


def _fetch_qualities(conn, video_id: int) -> list[dict]:
    rows = conn.execute(
        "SELECT * FROM video_qualities WHERE video_id = ?",
        (video_id,),
    ).fetchall()
    order = {q: i for i, q in enumerate(QUALITIES)}
    return sorted((dict(r) for r in rows), key=lambda r: order.get(r["quality"], len(order)))


def _attached_lesson_ids(conn, video_id: int) -> list[int]:
    rows = conn.execute(
        """
        SELECT lesson_id FROM video_lessons WHERE video_id = ?
        UNION
        SELECT id AS lesson_id FROM lessons WHERE current_video_id = ?
        ORDER BY lesson_id
        """,
        (video_id, video_id),
    ).fetchall()
    return [int(r["lesson_id"]) for r in rows]


def _require_video(conn, video_id) -> dict:
    try:
        video_id = int(video_id)
    except (TypeError, ValueError):
        raise VideoNotFound(video_id) from None
    video = _fetch_video(conn, video_id)
    if video is None:
        raise VideoNotFound(video_id)
    return video


def _media_url(rel_path: str) -> str:
    return f"{config.MEDIA_BASE_URL}/{rel_path.lstrip('/')}"


def _clamp_page_size(page_size) -> int:
    try:
        page_size = int(page_size)
    except (TypeError, ValueError):
        page_size = config.DEFAULT_PAGE_SIZE
    return max(1, min(config.MAX_PAGE_SIZE, page_size))


def list_videos(
    status: str | None = None,
    search: str | None = None,
    lesson_id: int | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> dict:
    """
    Newest-first page of videos, each annotated with ``lessons_count``.
    """
    page_size = _clamp_page_size(config.DEFAULT_PAGE_SIZE if page_size is None else page_size)
    try:
        page = max(1, int(page))
    except (TypeError, ValueError):
        page = 1

    where: list[str] = []
    params: list = []
    if status:
        try:
            status = VideoStatus(status).value
        except ValueError:
            raise InvalidArgument(f"Unknown status {status!r}", field="status") from None
        where.append("v.status = ?")
        params.append(status)
    if search:
        pattern = _like_pattern(str(search).strip())
        where.append(
            "(LOWER(v.original_filename) LIKE ? ESCAPE '\\' "
            "OR LOWER(v.display_name) LIKE ? ESCAPE '\\')"
        )
        params += [pattern, pattern]
    if lesson_id is not None:
        where.append(
            "EXISTS (SELECT 1 FROM video_lessons vl WHERE vl.video_id = v.id AND vl.lesson_id = ?)"
        )
        params.append(int(lesson_id))
    where_sql = f"WHERE {' AND '.join(where)}" if where else ""

    with _pipeline_conn() as conn:
        total = conn.execute(
            f"SELECT COUNT(*) AS n FROM videos v {where_sql}", tuple(params)
        ).fetchone()["n"]
        rows = conn.execute(
            f"""
            SELECT
                v.*,
                (SELECT COUNT(*) FROM video_lessons vl WHERE vl.video_id = v.id) AS lessons_count
            FROM videos v
            {where_sql}
            ORDER BY v.created_at DESC, v.id DESC
            LIMIT ? OFFSET ?
            """,
            (*params, page_size, (page - 1) * page_size),
        ).fetchall()

    return {
        "items": [dict(r) for r in rows],
        "total": int(total),
        "page": page,
        "page_size": page_size,
    }


def get_video(video_id) -> dict:
    with _pipeline_conn() as conn:
        video = _require_video(conn, video_id)
        video["qualities"] = _fetch_qualities(conn, video["id"])
        video["lesson_ids"] = _attached_lesson_ids(conn, video["id"])
    return video


def update_video(video_id, data: dict) -> dict:
    """Only ``display_name`` is mutable; other keys are ignored."""
    data = data or {}
    with _pipeline_conn() as conn:
        video = _require_video(conn, video_id)
        if "display_name" in data:
            display_name = str(data.get("display_name") or "").strip()
            if not display_name:
                raise InvalidArgument("display_name must not be empty", field="display_name")
            conn.execute(
                "UPDATE videos SET display_name = ?, updated_at = ? WHERE id = ?",
                (display_name, _now(), video["id"]),
            )
            video = _fetch_video(conn, video["id"])
    return video


def delete_video(video_id) -> bool:
    """
    Remove a video that no lesson references: its original, thumbnail and
    rendition files first (each best-effort), then its records.
    """
    with _pipeline_conn() as conn:
        video_id = _require_video(conn, video_id)["id"]

    with video_lock(video_id):
        with _pipeline_conn() as conn:
            video = _require_video(conn, video_id)
            lesson_ids = _attached_lesson_ids(conn, video_id)
            qualities = _fetch_qualities(conn, video_id)
        if lesson_ids:
            raise VideoInUse(lesson_ids)

        storage.delete_file(video["original_path"])
        storage.delete_file(video["thumbnail_path"])
        for quality in qualities:
            storage.delete_file(quality["file_path"])

        with _pipeline_conn() as conn:
            conn.execute("DELETE FROM video_qualities WHERE video_id = ?", (video_id,))
            conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))

    storage.remove_dir_if_empty(storage.asset_dir_of(video["original_path"]))
    logger.info("Deleted video %d", video_id)
    return True


def bulk_delete_videos(ids) -> dict:
    success: list = []
    failed: list[dict] = []
    for video_id in ids or []:
        try:
            delete_video(video_id)
            success.append(video_id)
        except VideoNotFound:
            failed.append({"id": video_id, "reason": "Video not found"})
        except VideoInUse:
            failed.append({"id": video_id, "reason": "Video is associated with active lessons"})
        except (PipelineError, OSError) as exc:
            logger.error("Bulk delete failed for video %s: %s", video_id, exc)
            failed.append({"id": video_id, "reason": str(exc)})
    return {"success": success, "failed": failed}


def get_processing_progress(video_id) -> dict:
    with _pipeline_conn() as conn:
        video = _require_video(conn, video_id)
        completed = conn.execute(
            "SELECT COUNT(*) AS n FROM video_qualities WHERE video_id = ? AND status = ?",
            (video["id"], QualityStatus.COMPLETED.value),
        ).fetchone()["n"]
    return {
        "status": video["status"],
        "progress": int(video["processing_progress"] or 0),
        "completed_qualities": int(completed),
        "total_qualities": QUALITY_COUNT,
    }


def get_video_urls(video_id) -> dict:
    with _pipeline_conn() as conn:
        video = _require_video(conn, video_id)
        qualities = _fetch_qualities(conn, video["id"])

    urls: dict[str, str] = {}
    for quality in qualities:
        if quality["status"] != QualityStatus.COMPLETED.value:
            continue
        if not storage.file_exists(quality["file_path"]):
            continue
        urls[quality["quality"]] = _media_url(quality["file_path"])

    thumbnail = None
    if storage.file_exists(video["thumbnail_path"]):
        thumbnail = _media_url(video["thumbnail_path"])
    return {"qualities": urls, "thumbnail": thumbnail}
