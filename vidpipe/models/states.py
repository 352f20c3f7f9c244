from __future__ import annotations

from enum import Enum

from ..errors import InvalidTransition


class SessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QualityStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


SESSION_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}

VIDEO_TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.PENDING: frozenset({VideoStatus.PROCESSING, VideoStatus.FAILED}),
    VideoStatus.PROCESSING: frozenset({VideoStatus.COMPLETED, VideoStatus.FAILED}),
    VideoStatus.COMPLETED: frozenset(),
    VideoStatus.FAILED: frozenset(),
}

# failed -> processing is the queue retry re-entering the same unit.
QUALITY_TRANSITIONS: dict[QualityStatus, frozenset[QualityStatus]] = {
    QualityStatus.PENDING: frozenset({QualityStatus.PROCESSING}),
    QualityStatus.PROCESSING: frozenset({QualityStatus.COMPLETED, QualityStatus.FAILED}),
    QualityStatus.COMPLETED: frozenset(),
    QualityStatus.FAILED: frozenset({QualityStatus.PROCESSING}),
}

_TABLES = {
    SessionStatus: ("session", SESSION_TRANSITIONS),
    VideoStatus: ("video", VIDEO_TRANSITIONS),
    QualityStatus: ("quality", QUALITY_TRANSITIONS),
}

TERMINAL_QUALITY_STATES = frozenset({QualityStatus.COMPLETED, QualityStatus.FAILED})


def ensure_transition(current, target):
    """
    Validate a status move and return the target. Re-entering the current
    state is allowed so that redelivered work can rewrite the same status.
    """
    enum_cls = type(target)
    entity, table = _TABLES[enum_cls]
    current = enum_cls(current)
    if current == target or target in table[current]:
        return target
    raise InvalidTransition(entity, current.value, target.value)


QUALITY_PROFILES: dict[str, dict] = {
    "360p": {"width": 640, "height": 360, "bitrate": "800k"},
    "480p": {"width": 854, "height": 480, "bitrate": "1400k"},
    "720p": {"width": 1280, "height": 720, "bitrate": "2800k"},
    "1080p": {"width": 1920, "height": 1080, "bitrate": "5000k"},
}
QUALITIES: tuple[str, ...] = tuple(QUALITY_PROFILES)
QUALITY_COUNT = len(QUALITIES)
AUDIO_BITRATE = "128k"


def quality_profile(quality: str) -> dict | None:
    return QUALITY_PROFILES.get(quality)
