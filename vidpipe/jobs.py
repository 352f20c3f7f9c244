"""
Units of work and the queue that carries them.

Three job variants exist; each is a frozen dataclass encoded as a
``{"kind": ..., ...}`` payload and executed by ``dispatch``. Delivery is
at-least-once in every mode, so every worker tolerates running twice.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import ClassVar

from celery import Celery

from . import config
from .errors import MediaToolError
from .logging_config import job_log_context
from .metrics import JOBS_RUNNING
from .tracing import tracer

logger = logging.getLogger("vidpipe.jobs")


@dataclass(frozen=True)
class AssembleSession:
    session_id: str

    kind: ClassVar[str] = "assemble_session"

    @property
    def job_id(self) -> str:
        return f"assemble:{self.session_id}"


@dataclass(frozen=True)
class Transcode:
    video_id: int
    quality: str

    kind: ClassVar[str] = "transcode"

    @property
    def job_id(self) -> str:
        return f"transcode:{self.video_id}:{self.quality}"


@dataclass(frozen=True)
class GenerateThumbnail:
    video_id: int

    kind: ClassVar[str] = "generate_thumbnail"

    @property
    def job_id(self) -> str:
        return f"thumbnail:{self.video_id}"


JOB_TYPES = {cls.kind: cls for cls in (AssembleSession, Transcode, GenerateThumbnail)}


def to_payload(job) -> dict:
    payload = asdict(job)
    payload["kind"] = job.kind
    return payload


def decode_job(payload: dict):
    if not isinstance(payload, dict):
        raise ValueError(f"Job payload must be a dict, got {type(payload).__name__}")
    data = dict(payload)
    kind = data.pop("kind", None)
    cls = JOB_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown job kind: {kind!r}")
    return cls(**data)


def max_attempts(job) -> int:
    if isinstance(job, Transcode):
        return config.TRANSCODE_MAX_ATTEMPTS
    return 1


def dispatch(job):
    """Run one unit of work in the current process."""
    from .services.assembly import assemble_session
    from .services.thumbnails import generate_video_thumbnail
    from .services.transcoding import transcode_quality

    if isinstance(job, AssembleSession):
        runner = lambda: assemble_session(job.session_id)  # noqa: E731
    elif isinstance(job, Transcode):
        runner = lambda: transcode_quality(job.video_id, job.quality)  # noqa: E731
    elif isinstance(job, GenerateThumbnail):
        runner = lambda: generate_video_thumbnail(job.video_id)  # noqa: E731
    else:
        raise TypeError(f"Unsupported job: {job!r}")

    if JOBS_RUNNING:
        JOBS_RUNNING.inc()
    try:
        with job_log_context(job.kind, job.job_id), tracer.start_as_current_span(
            f"vidpipe.job.{job.kind}"
        ) as span:
            span.set_attribute("vidpipe.job_id", job.job_id)
            return runner()
    finally:
        if JOBS_RUNNING:
            JOBS_RUNNING.dec()


def _run_with_retries(job, *, backoff_seconds: float) -> None:
    attempts = max_attempts(job)
    for attempt in range(1, attempts + 1):
        try:
            dispatch(job)
            return
        except MediaToolError as exc:
            if attempt >= attempts:
                logger.error(
                    "Job %s failed after %d attempt(s): %s", job.job_id, attempt, exc
                )
                return
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "Job %s attempt %d/%d failed: %s; retrying in %.1fs",
                job.job_id,
                attempt,
                attempts,
                exc,
                delay,
            )
            if delay > 0:
                time.sleep(delay)
        except Exception as exc:
            logger.error("Job %s failed: %s", job.job_id, exc)
            return


def run_inline(job) -> None:
    _run_with_retries(job, backoff_seconds=0)


_background_lock = threading.Lock()
_background_tasks: set[str] = set()


def _spawn_background(job) -> bool:
    with _background_lock:
        if job.job_id in _background_tasks:
            return False
        _background_tasks.add(job.job_id)

    def runner():
        try:
            _run_with_retries(job, backoff_seconds=config.TRANSCODE_RETRY_BACKOFF_SECONDS)
        finally:
            with _background_lock:
                _background_tasks.discard(job.job_id)

    t = threading.Thread(target=runner, name=job.job_id, daemon=True)
    t.start()
    return True


def _resolve_mode() -> str:
    mode = config.JOB_MODE
    if mode == "auto":
        return "celery" if celery_app else "thread"
    if mode == "celery" and not celery_app:
        logger.warning("VIDPIPE_JOB_MODE=celery without a broker; using threads")
        return "thread"
    if mode not in {"celery", "thread", "inline"}:
        return "thread"
    return mode


CELERY_ENABLED = bool(config.CELERY_BROKER_URL)
celery_app = (
    Celery("vidpipe", broker=config.CELERY_BROKER_URL, backend=config.CELERY_RESULT_BACKEND)
    if CELERY_ENABLED
    else None
)
if celery_app:
    celery_app.conf.update(
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
    )

    @celery_app.task(name="vidpipe.run_job", bind=True)
    def _celery_run_job(self, payload: dict) -> None:
        job = decode_job(payload)
        try:
            dispatch(job)
        except MediaToolError as exc:
            if self.request.retries + 1 >= max_attempts(job):
                raise
            countdown = config.TRANSCODE_RETRY_BACKOFF_SECONDS * (2**self.request.retries)
            raise self.retry(exc=exc, countdown=countdown, max_retries=max_attempts(job) - 1)


def _default_enqueue(job) -> bool:
    mode = _resolve_mode()
    if mode == "inline":
        run_inline(job)
        return True
    if mode == "celery":
        try:
            celery_app.send_task("vidpipe.run_job", args=[to_payload(job)])
            return True
        except Exception as e:
            logger.warning("Celery enqueue failed for %s: %s", job.job_id, e)
    return _spawn_background(job)


_enqueue_fn = None


def configure_enqueue(fn) -> None:
    """Replace the enqueue strategy; ``None`` restores the default."""
    global _enqueue_fn
    _enqueue_fn = fn


def enqueue(job) -> bool:
    fn = _enqueue_fn or _default_enqueue
    logger.debug("Enqueue %s", job.job_id)
    return fn(job)
