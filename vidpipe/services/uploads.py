from __future__ import annotations

import logging
import time
import uuid

from .. import config
from ..errors import (
    ExpiredSession,
    IncompleteUpload,
    InvalidArgument,
    InvalidChunk,
    InvalidSession,
    InvalidTransition,
)
from ..metrics import CHUNK_BYTES, CHUNKS_STORED, UPLOADS_COMPLETED
from ..models.states import SessionStatus, VideoStatus
from . import storage
from .database import _now, _pipeline_conn, _row_to_dict

logger = logging.getLogger("vidpipe.uploads")

_SESSION_COLUMNS = """
    session_id,
    filename,
    file_size,
    total_chunks,
    status,
    error,
    video_id,
    created_at,
    updated_at
"""


def _fetch_session(conn, session_id: str) -> dict | None:
    row = conn.execute(
        f"SELECT {_SESSION_COLUMNS} FROM upload_sessions WHERE session_id = ? LIMIT 1",
        (session_id,),
    ).fetchone()
    return _row_to_dict(row)


def _received_indices(conn, session_id: str) -> list[int]:
    rows = conn.execute(
        "SELECT chunk_index FROM upload_chunks WHERE session_id = ? ORDER BY chunk_index",
        (session_id,),
    ).fetchall()
    return [int(r["chunk_index"]) for r in rows]


def _missing_chunks(total_chunks: int, received: list[int]) -> list[int]:
    have = set(received)
    return [i for i in range(total_chunks) if i not in have]


def _is_expired(session: dict, now: int | None = None) -> bool:
    now = _now() if now is None else now
    return now - int(session["created_at"]) > config.SESSION_TTL_HOURS * 3600


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidArgument(f"{field} must be a positive integer", field=field)
    try:
        out = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{field} must be a positive integer", field=field) from None
    if out <= 0:
        raise InvalidArgument(f"{field} must be a positive integer", field=field)
    return out


def initialize_upload(filename: str, file_size: int, total_chunks: int) -> dict:
    """
    Open a new upload session expecting ``total_chunks`` fragments.
    """
    filename = str(filename or "").strip()
    if not filename:
        raise InvalidArgument("filename is required", field="filename")
    file_size = _positive_int(file_size, "file_size")
    total_chunks = _positive_int(total_chunks, "total_chunks")

    session_id = uuid.uuid4().hex
    now = _now()
    with _pipeline_conn() as conn:
        conn.execute(
            """
            INSERT INTO upload_sessions (
                session_id, filename, file_size, total_chunks, status, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                filename,
                file_size,
                total_chunks,
                SessionStatus.PENDING.value,
                now,
                now,
            ),
        )
        session = _fetch_session(conn, session_id)

    logger.info(
        "Upload session %s opened for %s (%d bytes, %d chunks)",
        session_id,
        filename,
        file_size,
        total_chunks,
    )
    session["received_chunks"] = []
    return session


def store_chunk(session_id: str, chunk_index: int, data: bytes) -> bool:
    """
    Persist one fragment. Storing the same index twice overwrites the blob
    and leaves the received set unchanged.
    """
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
    if session is None:
        raise InvalidSession(session_id)
    if _is_expired(session):
        raise ExpiredSession(session_id)

    total_chunks = int(session["total_chunks"])
    try:
        chunk_index = int(chunk_index)
    except (TypeError, ValueError):
        raise InvalidChunk(chunk_index, total_chunks) from None
    if chunk_index < 0 or chunk_index >= total_chunks:
        raise InvalidChunk(chunk_index, total_chunks)

    data = bytes(data or b"")
    storage.write_chunk(session_id, chunk_index, data)

    now = _now()
    with _pipeline_conn() as conn:
        conn.execute(
            """
            INSERT INTO upload_chunks (session_id, chunk_index, size, received_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(session_id, chunk_index) DO UPDATE SET
                size = excluded.size,
                received_at = excluded.received_at
            """,
            (session_id, chunk_index, len(data), now),
        )
        conn.execute(
            "UPDATE upload_sessions SET updated_at = ? WHERE session_id = ?",
            (now, session_id),
        )

    if CHUNKS_STORED:
        CHUNKS_STORED.inc()
    if CHUNK_BYTES:
        CHUNK_BYTES.inc(len(data))
    logger.debug("Stored chunk %d/%d for session %s", chunk_index, total_chunks, session_id)
    return True


def get_upload_progress(session_id: str) -> dict:
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
        if session is None:
            raise InvalidSession(session_id)
        received = len(_received_indices(conn, session_id))

    total = int(session["total_chunks"])
    percentage = round(received / total * 100, 2) if total else 0
    return {"received": received, "total": total, "percentage": percentage}


def get_session(session_id: str) -> dict:
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
        if session is None:
            raise InvalidSession(session_id)
        session["received_chunks"] = _received_indices(conn, session_id)
    session["expired"] = _is_expired(session)
    return session


def complete_upload(session_id: str) -> dict:
    """
    Hand a fully received session to the assembly worker.

    Returns an unsaved placeholder describing the future video; the durable
    record is created by assembly.
    """
    from ..jobs import AssembleSession, enqueue

    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
        if session is None:
            raise InvalidSession(session_id)
        received = _received_indices(conn, session_id)

    missing = _missing_chunks(int(session["total_chunks"]), received)
    if missing:
        raise IncompleteUpload(missing)

    if session["status"] != SessionStatus.PENDING.value:
        raise InvalidTransition("session", session["status"], SessionStatus.COMPLETED.value)
    enqueue(AssembleSession(session_id=session_id))
    if UPLOADS_COMPLETED:
        UPLOADS_COMPLETED.inc()
    logger.info("Upload session %s complete; assembly queued", session_id)

    return {
        "id": None,
        "session_id": session_id,
        "original_filename": session["filename"],
        "display_name": session["filename"],
        "file_size": int(session["file_size"]),
        "status": VideoStatus.PENDING.value,
        "processing_progress": 0,
    }


def cancel_upload(session_id: str) -> bool:
    with _pipeline_conn() as conn:
        session = _fetch_session(conn, session_id)
    if session is None:
        raise InvalidSession(session_id)

    storage.remove_session_dir(session_id)
    with _pipeline_conn() as conn:
        conn.execute("DELETE FROM upload_chunks WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM upload_sessions WHERE session_id = ?", (session_id,))

    logger.info("Upload session %s cancelled", session_id)
    return True


def cleanup_expired_sessions(max_age_hours: int | None = None) -> int:
    """
    Delete pending or failed sessions older than ``max_age_hours`` together
    with their chunk directories. Returns the number of sessions removed.
    """
    max_age_hours = config.SESSION_TTL_HOURS if max_age_hours is None else max_age_hours
    cutoff = int(time.time()) - int(max_age_hours * 3600)

    with _pipeline_conn() as conn:
        rows = conn.execute(
            """
            SELECT session_id FROM upload_sessions
            WHERE created_at < ? AND status IN (?, ?)
            """,
            (cutoff, SessionStatus.PENDING.value, SessionStatus.FAILED.value),
        ).fetchall()
    session_ids = [r["session_id"] for r in rows]

    for session_id in session_ids:
        storage.remove_session_dir(session_id)
        with _pipeline_conn() as conn:
            conn.execute("DELETE FROM upload_chunks WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM upload_sessions WHERE session_id = ?", (session_id,))

    if session_ids:
        logger.info("Removed %d expired upload session(s)", len(session_ids))
    return len(session_ids)
