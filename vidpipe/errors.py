from __future__ import annotations


class PipelineError(Exception):
    """
    Base class for every caller-facing pipeline failure.

    Carries a stable machine code, an HTTP status for the web adapter and a
    details dict that is rendered next to the message.
    """

    code = "pipeline_error"
    status_code = 500

    def __init__(self, message: str | None = None, **details) -> None:
        self.message = message or self.default_message()
        self.details = details
        super().__init__(self.message)

    def default_message(self) -> str:
        return "Pipeline error"

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class InvalidSession(PipelineError):
    code = "invalid_session"
    status_code = 404

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Upload session {session_id} not found", session_id=session_id)


class ExpiredSession(PipelineError):
    code = "expired_session"
    status_code = 410

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Upload session {session_id} has expired", session_id=session_id)


class InvalidChunk(PipelineError):
    code = "invalid_chunk"
    status_code = 422

    def __init__(self, chunk_index: int, total_chunks: int) -> None:
        self.chunk_index = chunk_index
        self.total_chunks = total_chunks
        super().__init__(
            f"Chunk index {chunk_index} is outside [0, {total_chunks})",
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )


class IncompleteUpload(PipelineError):
    code = "incomplete_upload"
    status_code = 409

    def __init__(self, missing_chunks: list[int]) -> None:
        self.missing_chunks = list(missing_chunks)
        super().__init__(
            f"Upload is missing {len(self.missing_chunks)} chunk(s)",
            missing_chunks=self.missing_chunks,
        )


class VideoNotFound(PipelineError):
    code = "video_not_found"
    status_code = 404

    def __init__(self, video_id) -> None:
        self.video_id = video_id
        super().__init__(f"Video {video_id} not found", video_id=video_id)


class LessonNotFound(PipelineError):
    code = "lesson_not_found"
    status_code = 404

    def __init__(self, lesson_id) -> None:
        self.lesson_id = lesson_id
        super().__init__(f"Lesson {lesson_id} not found", lesson_id=lesson_id)


class VideoNotReady(PipelineError):
    code = "video_not_ready"
    status_code = 409

    def __init__(self, status: str, progress: int) -> None:
        self.status = status
        self.progress = progress
        super().__init__(
            "Video is not ready to be attached", status=status, progress=progress
        )


class VideoInUse(PipelineError):
    code = "video_in_use"
    status_code = 409

    def __init__(self, lesson_ids: list[int]) -> None:
        self.lesson_ids = list(lesson_ids)
        super().__init__(
            "Video is associated with active lessons", lesson_ids=self.lesson_ids
        )


class InvalidArgument(PipelineError):
    code = "invalid_argument"
    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)


class InvalidTransition(PipelineError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal {entity} transition {current} -> {target}",
            entity=entity,
            **{"from": current, "to": target},
        )


class MediaToolError(PipelineError):
    """
    Raised by the media tool adapter. ``output`` holds the raw tool output and
    is kept off the wire; ``reason`` is one of not_found, no_video_stream,
    invalid_quality, tool_failed, timeout, bad_output.
    """

    code = "media_tool_error"
    status_code = 502

    def __init__(self, message: str, reason: str = "tool_failed", output: str = "") -> None:
        self.reason = reason
        self.output = output or ""
        super().__init__(message, reason=reason)
