from __future__ import annotations

import fcntl
import hashlib
import os
from contextlib import contextmanager

from .. import config


def _lock_path(key: str) -> str:
    digest = hashlib.sha256(key.encode()).hexdigest()
    return os.path.join(config.LOCK_DIR, f"{digest}.lock")


@contextmanager
def exclusive(key: str):
    """
    Hold an exclusive flock for ``key``. Serializes holders across threads
    and processes sharing ``LOCK_DIR``.
    """
    os.makedirs(config.LOCK_DIR, exist_ok=True)
    with open(_lock_path(key), "w") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file, fcntl.LOCK_UN)


def video_lock(video_id: int):
    return exclusive(f"video:{int(video_id)}")


def session_lock(session_id: str):
    return exclusive(f"session:{session_id}")
