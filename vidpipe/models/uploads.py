from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Index, Integer, Text

from . import PipelineBase


class UploadSession(PipelineBase):
    __tablename__ = "upload_sessions"

    session_id = Column(Text, primary_key=True)
    filename = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    total_chunks = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    error = Column(Text)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="SET NULL"))
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_upload_sessions_status", "status"),
        Index("idx_upload_sessions_created", "created_at"),
    )


class UploadChunk(PipelineBase):
    __tablename__ = "upload_chunks"

    session_id = Column(
        Text,
        ForeignKey("upload_sessions.session_id", ondelete="CASCADE"),
        primary_key=True,
    )
    chunk_index = Column(Integer, primary_key=True)
    size = Column(Integer, nullable=False)
    received_at = Column(Integer, nullable=False)
