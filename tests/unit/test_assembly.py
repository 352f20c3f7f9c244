from __future__ import annotations

import os
import threading
import time

import pytest

from vidpipe.errors import IncompleteUpload, InvalidSession, InvalidTransition, MediaToolError
from vidpipe.jobs import GenerateThumbnail, Transcode
from vidpipe.services import ffmpeg, storage, uploads
from vidpipe.services.assembly import assemble_session
from vidpipe.services.database import _pipeline_conn
from vidpipe.services.videos import get_video


def _video_count() -> int:
    with _pipeline_conn() as conn:
        return conn.execute("SELECT COUNT(*) AS n FROM videos").fetchone()["n"]


def test_assemble_creates_video_and_jobs(media_tool, enqueued, uploaded_session):
    session, payload = uploaded_session
    sid = session["session_id"]

    video = assemble_session(sid)

    assert video["status"] == "processing"
    assert video["processing_progress"] == 0
    assert video["original_filename"] == "lecture.mp4"
    assert video["display_name"] == "lecture.mp4"
    assert video["file_size"] == len(payload)
    assert video["duration_seconds"] == 12.5
    assert video["resolution"] == "1920x1080"
    assert video["codec"] == "h264"
    assert video["original_path"].endswith("original.mp4")
    with open(storage.absolute_path(video["original_path"]), "rb") as f:
        assert f.read() == payload

    detail = get_video(video["id"])
    assert [q["quality"] for q in detail["qualities"]] == ["360p", "480p", "720p", "1080p"]
    assert {q["status"] for q in detail["qualities"]} == {"pending"}

    assert enqueued == [
        Transcode(video_id=video["id"], quality="360p"),
        Transcode(video_id=video["id"], quality="480p"),
        Transcode(video_id=video["id"], quality="720p"),
        Transcode(video_id=video["id"], quality="1080p"),
        GenerateThumbnail(video_id=video["id"]),
    ]

    record = uploads.get_session(sid)
    assert record["status"] == "completed"
    assert record["video_id"] == video["id"]
    assert record["received_chunks"] == []
    assert not os.path.exists(storage.absolute_path(storage.session_dir(sid)))


def test_redelivered_assembly_returns_existing_video(media_tool, enqueued, uploaded_session):
    session, _ = uploaded_session
    first = assemble_session(session["session_id"])
    enqueued.clear()

    again = assemble_session(session["session_id"])

    assert again["id"] == first["id"]
    assert enqueued == []
    assert _video_count() == 1


def test_assemble_unknown_session():
    with pytest.raises(InvalidSession):
        assemble_session("missing")


def test_assemble_incomplete_session_fails(media_tool, enqueued):
    session = uploads.initialize_upload("a.mp4", 4, 2)
    uploads.store_chunk(session["session_id"], 0, b"ab")
    with pytest.raises(IncompleteUpload):
        assemble_session(session["session_id"])
    assert uploads.get_session(session["session_id"])["status"] == "failed"
    assert enqueued == []


def test_metadata_failure_keeps_chunks(monkeypatch, media_tool, enqueued, uploaded_session):
    session, _ = uploaded_session
    sid = session["session_id"]
    monkeypatch.setattr(storage, "new_asset_dir", lambda: os.path.join("videos", "doomed"))
    media_tool.meta = MediaToolError("no video", reason="no_video_stream")

    with pytest.raises(MediaToolError):
        assemble_session(sid)

    record = uploads.get_session(sid)
    assert record["status"] == "failed"
    assert "no video" in record["error"]
    assert record["received_chunks"] == [0, 1, 2]
    assert os.path.isdir(storage.absolute_path(storage.session_dir(sid)))
    assert _video_count() == 0
    assert enqueued == []
    assert not os.path.exists(storage.absolute_path(os.path.join("videos", "doomed")))


def test_failed_session_cannot_be_assembled_again(media_tool, enqueued, uploaded_session):
    session, _ = uploaded_session
    media_tool.meta = MediaToolError("broken", reason="tool_failed")
    with pytest.raises(MediaToolError):
        assemble_session(session["session_id"])

    media_tool.meta = {"duration_seconds": 1.0, "resolution": "1x1", "codec": "h264", "format": "mp4"}
    with pytest.raises(InvalidTransition):
        assemble_session(session["session_id"])
    assert _video_count() == 0


def test_concurrent_assembly_creates_one_video(monkeypatch, media_tool, enqueued, uploaded_session):
    session, _ = uploaded_session
    probe = ffmpeg.extract_metadata

    def slow_probe(path):
        time.sleep(0.2)
        return probe(path)

    monkeypatch.setattr(ffmpeg, "extract_metadata", slow_probe)
    results = []
    errors = []

    def worker():
        try:
            results.append(assemble_session(session["session_id"]))
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len({video["id"] for video in results}) == 1
    assert len(media_tool.probe_calls) == 1
    assert len(enqueued) == 5
    with _pipeline_conn() as conn:
        count = conn.execute("SELECT COUNT(*) AS n FROM videos").fetchone()["n"]
    assert count == 1
