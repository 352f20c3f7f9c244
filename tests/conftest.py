import os
import sys
import tempfile

BASE_DIR = tempfile.mkdtemp(prefix="vidpipe-tests-")
STORAGE_DIR = os.path.join(BASE_DIR, "storage")

os.environ["VIDPIPE_DB_PATH"] = os.path.join(BASE_DIR, "vidpipe.sqlite3")
os.environ["VIDPIPE_STORAGE_ROOT"] = STORAGE_DIR
os.environ["VIDPIPE_LOCK_DIR"] = os.path.join(BASE_DIR, "locks")
os.environ["VIDPIPE_MEDIA_BASE_URL"] = "/media"
os.environ["VIDPIPE_JOB_MODE"] = "inline"
os.environ["VIDPIPE_CELERY_BROKER_URL"] = ""
os.environ["VIDPIPE_LOG_FORMAT"] = "plain"
os.environ["VIDPIPE_METRICS_ENABLED"] = "false"
os.environ["VIDPIPE_OTEL_ENABLED"] = "false"
os.environ["VIDPIPE_SENTRY_DSN"] = ""
os.environ["VIDPIPE_TRANSCODE_RETRY_BACKOFF_SECONDS"] = "0"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from vidpipe import jobs
from vidpipe.services import ffmpeg
from vidpipe.services.database import _pipeline_conn

_TABLES = ("video_lessons", "lessons", "upload_chunks", "upload_sessions", "video_qualities", "videos")


@pytest.fixture(autouse=True)
def clean_db():
    with _pipeline_conn() as conn:
        for table in _TABLES:
            conn.execute(f"DELETE FROM {table}")
    jobs.configure_enqueue(None)
    yield
    jobs.configure_enqueue(None)


@pytest.fixture()
def enqueued():
    """Record jobs instead of running them."""
    recorded = []
    jobs.configure_enqueue(lambda job: recorded.append(job) or True)
    return recorded


class FakeMediaTool:
    """Stand-in for ffmpeg/ffprobe that writes small files."""

    def __init__(self):
        self.meta = {
            "duration_seconds": 12.5,
            "resolution": "1920x1080",
            "codec": "h264",
            "format": "mov,mp4,m4a,3gp,3g2,mj2",
        }
        self.transcode_failures: dict[str, int] = {}
        self.thumbnail_error: Exception | None = None
        self.transcode_calls: list[str] = []
        self.thumbnail_calls: list[float] = []
        self.probe_calls: list[str] = []

    def extract_metadata(self, path):
        self.probe_calls.append(path)
        if isinstance(self.meta, Exception):
            raise self.meta
        return dict(self.meta)

    def transcode_video(self, input_path, output_path, quality, on_progress=None, duration=None):
        self.transcode_calls.append(quality)
        remaining = self.transcode_failures.get(quality, 0)
        if remaining:
            self.transcode_failures[quality] = remaining - 1
            raise ffmpeg.MediaToolError(f"encode {quality} failed", output="boom")
        if on_progress:
            on_progress(50)
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(quality.encode() * 10)
        return output_path

    def generate_thumbnail(self, input_path, output_path, at_seconds):
        self.thumbnail_calls.append(at_seconds)
        if self.thumbnail_error:
            raise self.thumbnail_error
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
        with open(output_path, "wb") as f:
            f.write(b"\xff\xd8jpeg")
        return output_path


@pytest.fixture()
def media_tool(monkeypatch):
    tool = FakeMediaTool()
    monkeypatch.setattr(ffmpeg, "extract_metadata", tool.extract_metadata)
    monkeypatch.setattr(ffmpeg, "transcode_video", tool.transcode_video)
    monkeypatch.setattr(ffmpeg, "generate_thumbnail", tool.generate_thumbnail)
    return tool


@pytest.fixture()
def uploaded_session():
    """A session with every chunk received; returns (session, payload bytes)."""
    from vidpipe.services import uploads

    chunks = [b"first-", b"second-", b"third"]
    session = uploads.initialize_upload("lecture.mp4", sum(len(c) for c in chunks), len(chunks))
    for index in (2, 0, 1):
        uploads.store_chunk(session["session_id"], index, chunks[index])
    return session, b"".join(chunks)


@pytest.fixture()
def app():
    from vidpipe import create_app

    application = create_app({"TESTING": True, "RATELIMIT_ENABLED": False})
    return application


@pytest.fixture()
def client(app):
    return app.test_client()
