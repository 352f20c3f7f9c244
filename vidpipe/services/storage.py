"""
Blob layout on the local filesystem.

    temp/uploads/<session_id>/chunk_<index>
    videos/<asset_id>/original.<ext>
    videos/<asset_id>/<quality>.mp4
    videos/<asset_id>/thumbnail.jpg

Paths stored in the database are relative to ``STORAGE_ROOT``.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid

from .. import config

logger = logging.getLogger("vidpipe.storage")

UPLOADS_PREFIX = os.path.join("temp", "uploads")
VIDEOS_PREFIX = "videos"
COPY_BUFFER_SIZE = 1024 * 1024


def storage_root() -> str:
    return config.STORAGE_ROOT


def absolute_path(rel_path: str) -> str:
    root = os.path.realpath(storage_root())
    full = os.path.realpath(os.path.join(root, rel_path))
    if full != root and not full.startswith(root + os.sep):
        raise ValueError(f"Path escapes storage root: {rel_path}")
    return full


def session_dir(session_id: str) -> str:
    return os.path.join(UPLOADS_PREFIX, session_id)


def chunk_path(session_id: str, chunk_index: int) -> str:
    return os.path.join(session_dir(session_id), f"chunk_{int(chunk_index)}")


def write_chunk(session_id: str, chunk_index: int, data: bytes) -> str:
    """
    Write a chunk blob, replacing any previous blob for the same index.
    Returns the relative path.
    """
    rel_path = chunk_path(session_id, chunk_index)
    full_path = absolute_path(rel_path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)

    tmp_path = f"{full_path}.{uuid.uuid4().hex}.tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, full_path)
    except OSError:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise
    return rel_path


def remove_session_dir(session_id: str) -> None:
    full_path = absolute_path(session_dir(session_id))
    shutil.rmtree(full_path, ignore_errors=True)


def asset_extension(filename: str | None) -> str:
    _, ext = os.path.splitext(os.path.basename(filename or ""))
    ext = ext.lstrip(".").lower()
    if not ext or not ext.isalnum():
        return "mp4"
    return ext


def new_asset_dir() -> str:
    return os.path.join(VIDEOS_PREFIX, uuid.uuid4().hex)


def original_path(asset_dir: str, filename: str | None) -> str:
    return os.path.join(asset_dir, f"original.{asset_extension(filename)}")


def quality_path(asset_dir: str, quality: str) -> str:
    return os.path.join(asset_dir, f"{quality}.mp4")


def thumbnail_path(asset_dir: str) -> str:
    return os.path.join(asset_dir, "thumbnail.jpg")


def asset_dir_of(rel_path: str) -> str:
    return os.path.dirname(rel_path)


def concatenate_chunks(session_id: str, total_chunks: int, dest_rel_path: str) -> int:
    """
    Stream chunk blobs ``0..total_chunks-1`` into ``dest_rel_path`` in index
    order and return the number of bytes written. A missing chunk blob raises
    ``FileNotFoundError``.
    """
    dest = absolute_path(dest_rel_path)
    os.makedirs(os.path.dirname(dest), exist_ok=True)

    written = 0
    with open(dest, "wb") as target_file:
        for chunk_index in range(total_chunks):
            src = absolute_path(chunk_path(session_id, chunk_index))
            with open(src, "rb") as chunk_file:
                while True:
                    buf = chunk_file.read(COPY_BUFFER_SIZE)
                    if not buf:
                        break
                    target_file.write(buf)
                    written += len(buf)
    return written


def file_exists(rel_path: str | None) -> bool:
    if not rel_path:
        return False
    try:
        return os.path.isfile(absolute_path(rel_path))
    except ValueError:
        return False


def file_size(rel_path: str) -> int:
    return os.path.getsize(absolute_path(rel_path))


def delete_file(rel_path: str | None) -> bool:
    """Best-effort delete. Returns True when a file was removed."""
    if not rel_path:
        return False
    try:
        os.remove(absolute_path(rel_path))
        return True
    except FileNotFoundError:
        return False
    except (OSError, ValueError) as exc:
        logger.warning("Failed to delete %s: %s", rel_path, exc)
        return False


def remove_dir_if_empty(rel_dir: str | None) -> None:
    if not rel_dir:
        return
    try:
        os.rmdir(absolute_path(rel_dir))
    except OSError:
        pass


def remove_tree(rel_dir: str | None) -> None:
    if not rel_dir:
        return
    shutil.rmtree(absolute_path(rel_dir), ignore_errors=True)
