from __future__ import annotations

from vidpipe.errors import (
    IncompleteUpload,
    InvalidArgument,
    InvalidChunk,
    MediaToolError,
    PipelineError,
    VideoInUse,
    VideoNotReady,
)


def test_incomplete_upload_carries_missing_chunks():
    exc = IncompleteUpload([1, 3])
    assert exc.missing_chunks == [1, 3]
    assert exc.status_code == 409
    assert exc.to_dict()["missing_chunks"] == [1, 3]
    assert exc.to_dict()["code"] == "incomplete_upload"


def test_video_not_ready_details():
    exc = VideoNotReady("processing", 50)
    assert exc.to_dict() == {
        "code": "video_not_ready",
        "message": "Video is not ready to be attached",
        "status": "processing",
        "progress": 50,
    }


def test_video_in_use_lists_lessons():
    exc = VideoInUse([4, 7])
    assert exc.lesson_ids == [4, 7]
    assert exc.to_dict()["lesson_ids"] == [4, 7]


def test_media_tool_error_keeps_output_off_the_wire():
    exc = MediaToolError("ffmpeg failed", reason="tool_failed", output="stderr dump")
    assert isinstance(exc, PipelineError)
    assert exc.output == "stderr dump"
    assert "stderr dump" not in str(exc.to_dict())
    assert exc.to_dict()["reason"] == "tool_failed"


def test_invalid_chunk_and_argument():
    assert InvalidChunk(5, 3).to_dict()["total_chunks"] == 3
    assert InvalidArgument("bad").to_dict() == {"code": "invalid_argument", "message": "bad"}
    assert InvalidArgument("bad", field="x").to_dict()["field"] == "x"
