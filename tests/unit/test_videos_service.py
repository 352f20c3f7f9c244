from __future__ import annotations

import os

import pytest

from vidpipe import config
from vidpipe.errors import InvalidArgument, VideoInUse, VideoNotFound
from vidpipe.models.states import QUALITIES
from vidpipe.services import lessons, storage, uploads, videos
from vidpipe.services.assembly import assemble_session
from vidpipe.services.database import _pipeline_conn
from vidpipe.services.thumbnails import generate_video_thumbnail
from vidpipe.services.transcoding import transcode_quality


def _make_video(filename: str = "lecture.mp4", created_at: int | None = None) -> dict:
    session = uploads.initialize_upload(filename, 4, 1)
    uploads.store_chunk(session["session_id"], 0, b"data")
    video = assemble_session(session["session_id"])
    if created_at is not None:
        with _pipeline_conn() as conn:
            conn.execute("UPDATE videos SET created_at = ? WHERE id = ?", (created_at, video["id"]))
    return video


def _complete(video: dict) -> None:
    for quality in QUALITIES:
        transcode_quality(video["id"], quality)


def test_list_videos_newest_first(media_tool, enqueued):
    old = _make_video("old.mp4", created_at=1_000)
    new = _make_video("new.mp4", created_at=2_000)

    result = videos.list_videos()

    assert [v["id"] for v in result["items"]] == [new["id"], old["id"]]
    assert result["total"] == 2
    assert result["page"] == 1
    assert result["page_size"] == config.DEFAULT_PAGE_SIZE
    assert all(v["lessons_count"] == 0 for v in result["items"])


def test_list_videos_filters(media_tool, enqueued):
    intro = _make_video("Intro_Course.mp4")
    other = _make_video("other.mov")
    videos.update_video(other["id"], {"display_name": "Week 2 recap"})
    _complete(intro)
    lesson = lessons.create_lesson("Lesson 1")
    lessons.attach_video_to_lesson(lesson["id"], intro["id"])

    assert [v["id"] for v in videos.list_videos(search="intro")["items"]] == [intro["id"]]
    assert [v["id"] for v in videos.list_videos(search="RECAP")["items"]] == [other["id"]]
    assert videos.list_videos(search="%")["total"] == 0
    assert [v["id"] for v in videos.list_videos(status="completed")["items"]] == [intro["id"]]
    by_lesson = videos.list_videos(lesson_id=lesson["id"])["items"]
    assert [v["id"] for v in by_lesson] == [intro["id"]]
    assert by_lesson[0]["lessons_count"] == 1

    with pytest.raises(InvalidArgument):
        videos.list_videos(status="bogus")


def test_list_videos_page_size_is_clamped(media_tool, enqueued):
    for i in range(3):
        _make_video(f"v{i}.mp4")
    assert videos.list_videos(page_size=1000)["page_size"] == config.MAX_PAGE_SIZE
    assert videos.list_videos(page_size=0)["page_size"] == 1
    page = videos.list_videos(page=2, page_size=2)
    assert len(page["items"]) == 1
    assert page["total"] == 3


def test_get_video_not_found():
    with pytest.raises(VideoNotFound):
        videos.get_video(123456)


def test_update_video_only_changes_display_name(media_tool, enqueued):
    video = _make_video()
    updated = videos.update_video(
        video["id"], {"display_name": "  Nice title  ", "status": "completed", "codec": "x"}
    )
    assert updated["display_name"] == "Nice title"
    assert updated["status"] == "processing"
    assert updated["codec"] == "h264"

    with pytest.raises(InvalidArgument):
        videos.update_video(video["id"], {"display_name": "   "})
    assert videos.get_video(video["id"])["display_name"] == "Nice title"


def test_delete_video_removes_files_and_records(media_tool, enqueued):
    video = _make_video()
    _complete(video)
    generate_video_thumbnail(video["id"])
    detail = videos.get_video(video["id"])
    paths = [detail["original_path"], detail["thumbnail_path"]] + [
        q["file_path"] for q in detail["qualities"]
    ]
    assert all(storage.file_exists(p) for p in paths)

    assert videos.delete_video(video["id"]) is True

    assert not any(storage.file_exists(p) for p in paths)
    assert not os.path.exists(storage.absolute_path(storage.asset_dir_of(detail["original_path"])))
    with pytest.raises(VideoNotFound):
        videos.get_video(video["id"])
    with _pipeline_conn() as conn:
        count = conn.execute(
            "SELECT COUNT(*) AS n FROM video_qualities WHERE video_id = ?", (video["id"],)
        ).fetchone()["n"]
    assert count == 0


def test_delete_video_tolerates_missing_files(media_tool, enqueued):
    video = _make_video()
    storage.delete_file(video["original_path"])
    assert videos.delete_video(video["id"]) is True


def test_delete_video_in_use(media_tool, enqueued):
    video = _make_video()
    _complete(video)
    lesson = lessons.create_lesson("Lesson")
    lessons.attach_video_to_lesson(lesson["id"], video["id"])

    with pytest.raises(VideoInUse) as exc_info:
        videos.delete_video(video["id"])
    assert exc_info.value.lesson_ids == [lesson["id"]]
    assert storage.file_exists(video["original_path"])


def test_bulk_delete_reports_per_item(media_tool, enqueued):
    free = _make_video("free.mp4")
    used = _make_video("used.mp4")
    _complete(used)
    lesson = lessons.create_lesson("Lesson")
    lessons.attach_video_to_lesson(lesson["id"], used["id"])

    result = videos.bulk_delete_videos([free["id"], used["id"], 999999])

    assert result["success"] == [free["id"]]
    assert result["failed"] == [
        {"id": used["id"], "reason": "Video is associated with active lessons"},
        {"id": 999999, "reason": "Video not found"},
    ]


def test_processing_progress(media_tool, enqueued):
    video = _make_video()
    transcode_quality(video["id"], "360p")
    transcode_quality(video["id"], "480p")
    assert videos.get_processing_progress(video["id"]) == {
        "status": "processing",
        "progress": 50,
        "completed_qualities": 2,
        "total_qualities": 4,
    }


def test_video_urls_only_list_existing_completed_files(media_tool, enqueued):
    video = _make_video()
    assert videos.get_video_urls(video["id"]) == {"qualities": {}, "thumbnail": None}

    transcode_quality(video["id"], "360p")
    transcode_quality(video["id"], "720p")
    generate_video_thumbnail(video["id"])
    detail = videos.get_video(video["id"])
    q720 = next(q for q in detail["qualities"] if q["quality"] == "720p")
    storage.delete_file(q720["file_path"])

    urls = videos.get_video_urls(video["id"])
    assert list(urls["qualities"]) == ["360p"]
    assert urls["qualities"]["360p"].startswith("/media/videos/")
    assert urls["qualities"]["360p"].endswith("/360p.mp4")
    assert urls["thumbnail"].endswith("/thumbnail.jpg")


def test_list_videos_combines_filters_with_paging(media_tool, enqueued):
    first = _make_video("course-a.mp4", created_at=1_000)
    second = _make_video("course-b.mp4", created_at=2_000)
    _make_video("other.mp4", created_at=3_000)
    for video in (first, second):
        _complete(video)
    lesson = lessons.create_lesson("Lesson")
    for video in (first, second):
        lessons.attach_video_to_lesson(lesson["id"], video["id"])

    page = videos.list_videos(
        status="completed", search="course", lesson_id=lesson["id"], page=2, page_size=1
    )

    assert page["total"] == 2
    assert [v["id"] for v in page["items"]] == [first["id"]]
