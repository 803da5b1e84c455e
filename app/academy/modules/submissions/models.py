from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.academy.models import Base, JSONType

QUIZ_STATUSES = ("in_progress", "submitted", "graded")
SUBMISSION_STATUSES = ("pending", "approved", "rejected")


class QuizAttempt(Base):
    """
    One student's run through a quiz lesson. `responses` is a list of
    {questionId, questionText, studentAnswer, isCorrect, pointsEarned, maxPoints, overrideReason?}.
    """

    __tablename__ = "quiz_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # seconds
    total_points: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    earned_points: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    passing_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=70)
    is_passing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="in_progress")
    responses: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "student_id": self.student_id,
            "course_id": self.course_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "total_points": self.total_points,
            "earned_points": self.earned_points,
            "percentage": self.percentage,
            "passing_percentage": self.passing_percentage,
            "is_passing": self.is_passing,
            "status": self.status,
            "responses": self.responses or [],
        }


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    # the assignment is a lesson of type "assignment"
    assignment_id: Mapped[int] = mapped_column(ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    submitted_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_file_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "course_id": self.course_id,
            "assignment_id": self.assignment_id,
            "submitted_content": self.submitted_content,
            "submitted_file_url": self.submitted_file_url,
            "file_name": self.file_name,
            "status": self.status,
            "admin_feedback": self.admin_feedback,
            "admin_id": self.admin_id,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }


PRACTICAL_STATUSES = ("pending", "approved", "needs_revision")
MASTERY_LEVELS = ("mastery", "proficient", "needs_work")
RUBRIC_CRITERIA = ("communication", "technical", "safety", "efficiency", "service")
RUBRIC_MAX_SCORE = 5


class Competency(Base):
    __tablename__ = "competencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_critical: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class StudentCompetency(Base):
    """A student's mastery (0-100) of one competency; one row per pair."""

    __tablename__ = "student_competencies"
    __table_args__ = (UniqueConstraint("student_id", "competency_id", name="uq_student_competencies_student_competency"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    competency_id: Mapped[int] = mapped_column(
        ForeignKey("competencies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mastery_level: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    days_to_master: Mapped[int | None] = mapped_column(Integer, nullable=True)
    achieved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    last_assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class PracticalAssessment(Base):
    """
    Hands-on evidence (video/photo) a student submits for a competency.
    `rubric_scores` maps criterion -> 0..5; `admin_feedback` holds
    {strengths, improvements, recommendations}.
    """

    __tablename__ = "practical_assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    competency_id: Mapped[int | None] = mapped_column(
        ForeignKey("competencies.id", ondelete="SET NULL"), nullable=True
    )
    competency_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    evidence_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending", index=True)
    rubric_scores: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    admin_feedback: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    mastery_level: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "competency_id": self.competency_id,
            "competency_name": self.competency_name,
            "role": self.role,
            "evidence_url": self.evidence_url,
            "status": self.status,
            "rubric_scores": self.rubric_scores or {},
            "overall_score": self.overall_score,
            "admin_feedback": self.admin_feedback or {},
            "mastery_level": self.mastery_level,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }
