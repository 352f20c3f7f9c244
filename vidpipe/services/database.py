from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError

from ..models import PIPELINE_DB_PATH, PipelineBase, get_pipeline_engine
from ..models import uploads as _upload_models  # noqa: F401
from ..models import videos as _video_models  # noqa: F401

logger = logging.getLogger("vidpipe.database")

_PIPELINE_ENGINE = get_pipeline_engine()
_pipeline_db_ready: bool = False


class _DriverConnection:
    def __init__(self, conn) -> None:
        self._conn = conn

    def execute(self, sql, params: dict | tuple | None = None):
        if isinstance(sql, str):
            return self._conn.exec_driver_sql(sql, params or ()).mappings()
        return self._conn.execute(sql, params or {})


@contextmanager
def _pipeline_conn():
    """
    Context manager yielding a connection inside one transaction on the
    pipeline SQLite database. Commits on exit, rolls back on error.
    """
    _ensure_pipeline_db()

    with _PIPELINE_ENGINE.begin() as conn:
        yield _DriverConnection(conn)


def _init_pipeline_db() -> None:
    db_dir = os.path.dirname(PIPELINE_DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    PipelineBase.metadata.create_all(_PIPELINE_ENGINE)


def _ensure_pipeline_db() -> None:
    global _pipeline_db_ready

    if _pipeline_db_ready:
        return

    db_dir = os.path.dirname(PIPELINE_DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    lock_path = f"{PIPELINE_DB_PATH}.init.lock"
    with open(lock_path, "w") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        try:
            for attempt in range(10):
                try:
                    _init_pipeline_db()
                    _pipeline_db_ready = True
                    return
                except OperationalError as exc:
                    if "locked" in str(exc).lower() and attempt < 9:
                        time.sleep(0.05 * (attempt + 1))
                        continue
                    logger.error("Pipeline database init failed: %s", exc)
                    raise
        finally:
            fcntl.flock(lock_file, fcntl.LOCK_UN)


def _now() -> int:
    return int(time.time())


def _row_to_dict(row) -> dict | None:
    if row is None:
        return None
    return dict(row)
