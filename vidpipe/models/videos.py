from __future__ import annotations

from sqlalchemy import Column, Float, ForeignKey, Index, Integer, Text, UniqueConstraint

from . import PipelineBase


class Video(PipelineBase):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    original_filename = Column(Text, nullable=False)
    display_name = Column(Text, nullable=False)
    file_size = Column(Integer, nullable=False)
    duration_seconds = Column(Float)
    resolution = Column(Text)
    codec = Column(Text)
    format = Column(Text)
    original_path = Column(Text, nullable=False)
    thumbnail_path = Column(Text)
    status = Column(Text, nullable=False, default="pending")
    processing_progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_videos_status", "status"),
        Index("idx_videos_created", "created_at"),
    )


class VideoQuality(PipelineBase):
    __tablename__ = "video_qualities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    quality = Column(Text, nullable=False)
    file_path = Column(Text)
    file_size = Column(Integer)
    status = Column(Text, nullable=False, default="pending")
    processing_progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("video_id", "quality", name="uq_video_qualities_video_quality"),
        Index("idx_video_qualities_status", "video_id", "status"),
    )


class Lesson(PipelineBase):
    __tablename__ = "lessons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(Text, nullable=False)
    current_video_id = Column(Integer, ForeignKey("videos.id", ondelete="SET NULL"))
    created_at = Column(Integer, nullable=False)
    updated_at = Column(Integer, nullable=False)


class VideoLesson(PipelineBase):
    __tablename__ = "video_lessons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False)
    lesson_id = Column(Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    attached_at = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("video_id", "lesson_id", name="uq_video_lessons_pair"),
        Index("idx_video_lessons_lesson", "lesson_id"),
    )
