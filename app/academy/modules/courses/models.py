from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.academy.models import Base, JSONType

COURSE_LEVELS = ("beginner", "intermediate", "advanced")
PAYMENT_TYPES = ("one-time", "subscription", "installment")
RECURRING_INTERVALS = ("month", "year")
LESSON_TYPES = ("video", "text", "pdf", "audio", "quiz", "survey", "assignment")


def _money(v: Decimal | None) -> float | None:
    return float(v) if v is not None else None


class Course(Base):
    __tablename__ = "courses"
    __table_args__ = (
        Index("idx_courses_instructor", "instructor_id"),
        Index("idx_courses_published", "is_published"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    instructor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    level: Mapped[str | None] = mapped_column(String(32), nullable=True)

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minutes

    payment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="one-time")
    recurring_interval: Mapped[str | None] = mapped_column(String(16), nullable=True)
    recurring_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    installment_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    settings: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    landing_page_settings: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    chapters: Mapped[list["Chapter"]] = relationship(
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="Chapter.position",
        lazy="selectin",
    )

    def to_dict(self, *, details: bool = False) -> dict:
        d = {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "image": self.image,
            "instructor_id": self.instructor_id,
            "category": self.category,
            "level": self.level,
            "price": _money(self.price),
            "is_published": self.is_published,
            "duration": self.duration,
            "payment_type": self.payment_type,
            "recurring_interval": self.recurring_interval,
            "recurring_price": _money(self.recurring_price),
            "installment_count": self.installment_count,
            "settings": self.settings or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if details:
            d["sections"] = [c.to_dict(with_lessons=True) for c in self.chapters]
        return d


class Chapter(Base):
    """A course section. `position` is 1-based on create, list-index based after a reorder."""

    __tablename__ = "chapters"
    __table_args__ = (Index("idx_chapters_course", "course_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    info: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    course: Mapped[Course] = relationship(back_populates="chapters")
    lessons: Mapped[list["Lesson"]] = relationship(
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="Lesson.position",
        lazy="selectin",
    )

    def to_dict(self, *, with_lessons: bool = False) -> dict:
        d = {
            "id": self.id,
            "course_id": self.course_id,
            "title": self.title,
            "info": self.info,
            "position": self.position,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if with_lessons:
            d["lessons"] = [lesson.to_dict() for lesson in self.lessons]
        return d


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        Index("idx_lessons_chapter", "chapter_id"),
        CheckConstraint(
            "type IN ('video','text','pdf','audio','quiz','survey','assignment')",
            name="ck_lessons_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    chapter_id: Mapped[int] = mapped_column(ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="text")
    content: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    downloadable_file: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    position: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # minutes
    is_free_preview: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_prerequisite: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_discussions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_downloadable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    chapter: Mapped[Chapter] = relationship(back_populates="lessons")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "chapter_id": self.chapter_id,
            "title": self.title,
            "type": self.type,
            "content": self.content or {},
            "description": self.description,
            "downloadable_file": self.downloadable_file,
            "order": self.position,
            "duration": self.duration,
            "is_free_preview": self.is_free_preview,
            "is_prerequisite": self.is_prerequisite,
            "enable_discussions": self.enable_discussions,
            "is_downloadable": self.is_downloadable,
        }


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("course_id", "student_id", name="uq_reviews_course_student"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "course_id": self.course_id,
            "student_id": self.student_id,
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
