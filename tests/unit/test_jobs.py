from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from vidpipe import config, jobs
from vidpipe.errors import MediaToolError
from vidpipe.jobs import AssembleSession, GenerateThumbnail, Transcode
from vidpipe.services import uploads
from vidpipe.services.videos import get_video


def test_payload_round_trip_keeps_kind():
    job = Transcode(video_id=7, quality="720p")
    payload = jobs.to_payload(job)
    assert payload == {"kind": "transcode", "video_id": 7, "quality": "720p"}
    assert jobs.decode_job(payload) == job


def test_decode_rejects_unknown_kind():
    with pytest.raises(ValueError):
        jobs.decode_job({"kind": "explode"})
    with pytest.raises(ValueError):
        jobs.decode_job(["transcode"])


def test_job_ids_are_stable():
    assert AssembleSession("abc").job_id == "assemble:abc"
    assert Transcode(3, "360p").job_id == "transcode:3:360p"
    assert GenerateThumbnail(3).job_id == "thumbnail:3"


def test_max_attempts():
    assert jobs.max_attempts(Transcode(1, "360p")) == config.TRANSCODE_MAX_ATTEMPTS
    assert jobs.max_attempts(AssembleSession("x")) == 1
    assert jobs.max_attempts(GenerateThumbnail(1)) == 1


@patch("vidpipe.services.transcoding.transcode_quality")
def test_dispatch_routes_by_variant(mock_transcode):
    jobs.dispatch(Transcode(video_id=5, quality="480p"))
    mock_transcode.assert_called_once_with(5, "480p")


def test_dispatch_rejects_unknown_job():
    with pytest.raises(TypeError):
        jobs.dispatch(object())


def test_inline_retries_transcode(monkeypatch):
    calls = []

    def flaky(job):
        calls.append(job)
        if len(calls) < 3:
            raise MediaToolError("try again")

    monkeypatch.setattr(jobs, "dispatch", flaky)
    jobs.run_inline(Transcode(video_id=1, quality="360p"))
    assert len(calls) == 3


def test_inline_gives_up_after_max_attempts(monkeypatch):
    calls = []

    def always_fails(job):
        calls.append(job)
        raise MediaToolError("nope")

    monkeypatch.setattr(jobs, "dispatch", always_fails)
    jobs.run_inline(Transcode(video_id=1, quality="360p"))
    assert len(calls) == config.TRANSCODE_MAX_ATTEMPTS


def test_assembly_is_not_retried(monkeypatch):
    calls = []

    def fails(job):
        calls.append(job)
        raise MediaToolError("bad input")

    monkeypatch.setattr(jobs, "dispatch", fails)
    jobs.run_inline(AssembleSession("abc"))
    assert len(calls) == 1


def test_celery_mode_sends_payload(monkeypatch):
    fake_celery = MagicMock()
    monkeypatch.setattr(jobs, "celery_app", fake_celery)
    monkeypatch.setattr(config, "JOB_MODE", "auto")

    assert jobs.enqueue(GenerateThumbnail(video_id=9)) is True
    fake_celery.send_task.assert_called_once_with(
        "vidpipe.run_job", args=[{"kind": "generate_thumbnail", "video_id": 9}]
    )


def test_celery_failure_falls_back_to_thread(monkeypatch):
    fake_celery = MagicMock()
    fake_celery.send_task.side_effect = ConnectionError("broker down")
    spawned = []
    monkeypatch.setattr(jobs, "celery_app", fake_celery)
    monkeypatch.setattr(config, "JOB_MODE", "celery")
    monkeypatch.setattr(jobs, "_spawn_background", lambda job: spawned.append(job) or True)

    assert jobs.enqueue(GenerateThumbnail(video_id=9)) is True
    assert spawned == [GenerateThumbnail(video_id=9)]


def test_auto_mode_without_broker_uses_threads(monkeypatch):
    monkeypatch.setattr(jobs, "celery_app", None)
    monkeypatch.setattr(config, "JOB_MODE", "auto")
    assert jobs._resolve_mode() == "thread"


def test_inline_pipeline_end_to_end(media_tool):
    chunks = [b"0123", b"4567", b"89"]
    session = uploads.initialize_upload("full.mp4", 10, 3)
    for index, data in enumerate(chunks):
        uploads.store_chunk(session["session_id"], index, data)

    uploads.complete_upload(session["session_id"])

    video_id = uploads.get_session(session["session_id"])["video_id"]
    video = get_video(video_id)
    assert video["status"] == "completed"
    assert video["processing_progress"] == 100
    assert video["thumbnail_path"].endswith("thumbnail.jpg")
    assert {q["status"] for q in video["qualities"]} == {"completed"}
