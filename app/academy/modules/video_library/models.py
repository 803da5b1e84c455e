from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.academy.models import Base, JSONType

PRIVACY_CHOICES = ("public", "private")


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instructor_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # seconds
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)  # bytes
    storage_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    file_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    video_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "instructor_id": self.instructor_id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "file_size": self.file_size,
            "file_path": self.storage_key,
            "file_url": self.file_url,
            "thumbnail_url": self.thumbnail_url,
            "upload_date": self.upload_date.isoformat() if self.upload_date else None,
            "is_public": self.is_public,
            "tags": self.tags or [],
            "usage_count": self.usage_count,
            "metadata": self.video_metadata or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class LessonVideo(Base):
    __tablename__ = "lesson_videos"
    __table_args__ = (UniqueConstraint("lesson_id", "video_id", name="uq_lesson_videos_lesson_video"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lesson_id: Mapped[int] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    video_id: Mapped[int] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class VideoLibrarySettings(Base):
    __tablename__ = "video_library_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    instructor_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    default_privacy: Mapped[str] = mapped_column(String(16), nullable=False, default="private")
    auto_generate_thumbnails: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notify_on_storage_limit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    storage_limit_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=80)  # percent
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "instructor_id": self.instructor_id,
            "default_privacy": self.default_privacy,
            "auto_generate_thumbnails": self.auto_generate_thumbnails,
            "notify_on_storage_limit": self.notify_on_storage_limit,
            "storage_limit_threshold": self.storage_limit_threshold,
        }
