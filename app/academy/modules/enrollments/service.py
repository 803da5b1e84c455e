from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.academy.audit import record_event
from app.academy.modules.courses.models import Chapter, Lesson
from app.academy.modules.courses.service import lesson_count
from app.academy.modules.enrollments.models import Certificate, Enrollment, LessonProgress

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.academy.models import User
    from app.academy.modules.courses.models import Course

logger = logging.getLogger(__name__)

ALREADY_ENROLLED = "Student is already enrolled in this course"
_CERT_ALPHABET = string.ascii_uppercase + string.digits


def generate_certificate_number() -> str:
    """CERT-<epoch millis>-<6 uppercase alphanumerics>."""
    suffix = "".join(secrets.choice(_CERT_ALPHABET) for _ in range(6))
    return f"CERT-{int(time.time() * 1000)}-{suffix}"


def enroll_student(s: "Session", course: "Course", student: "User", actor: "User") -> Enrollment:
    existing = (
        s.query(Enrollment)
        .filter(Enrollment.student_id == student.id, Enrollment.course_id == course.id)
        .one_or_none()
    )
    if existing:
        raise ValueError(ALREADY_ENROLLED)
    enrollment = Enrollment(
        student_id=student.id,
        course_id=course.id,
        enrolled_at=datetime.utcnow(),
        progress_percentage=0,
    )
    s.add(enrollment)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="enrollment.create",
        entity_type="Enrollment",
        entity_id=str(enrollment.id),
        metadata={"student_id": student.id, "course_id": course.id},
    )
    return enrollment


def unenroll(s: "Session", enrollment: Enrollment, actor: "User") -> None:
    record_event(
        s,
        actor=actor,
        action="enrollment.delete",
        entity_type="Enrollment",
        entity_id=str(enrollment.id),
        metadata={"student_id": enrollment.student_id, "course_id": enrollment.course_id},
    )
    s.delete(enrollment)


def lesson_in_course(s: "Session", lesson_id: int, course_id: int) -> bool:
    return (
        s.query(Lesson.id)
        .join(Chapter, Chapter.id == Lesson.chapter_id)
        .filter(Lesson.id == lesson_id, Chapter.course_id == course_id)
        .first()
        is not None
    )


def recalculate_course_progress(s: "Session", enrollment: Enrollment) -> int:
    """
    Percentage of the course's lessons completed, rounded. A course without
    lessons is 0%. Reaching 100% stamps the enrollment as completed.
    """
    s.flush()
    total = lesson_count(s, enrollment.course_id)
    if total == 0:
        pct = 0
    else:
        completed = (
            s.query(func.count(LessonProgress.id))
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .join(Chapter, Chapter.id == Lesson.chapter_id)
            .filter(
                LessonProgress.enrollment_id == enrollment.id,
                LessonProgress.is_completed.is_(True),
                Chapter.course_id == enrollment.course_id,
            )
            .scalar()
            or 0
        )
        pct = round(completed / total * 100)
    enrollment.progress_percentage = pct
    if pct >= 100:
        if enrollment.completed_at is None:
            enrollment.completed_at = datetime.utcnow()
    else:
        enrollment.completed_at = None
    return pct


def _get_or_create_progress(s: "Session", enrollment: Enrollment, lesson_id: int) -> LessonProgress:
    progress = (
        s.query(LessonProgress)
        .filter(LessonProgress.enrollment_id == enrollment.id, LessonProgress.lesson_id == lesson_id)
        .one_or_none()
    )
    if not progress:
        progress = LessonProgress(
            enrollment_id=enrollment.id, lesson_id=lesson_id, is_completed=False, time_spent=0, last_position=0
        )
        s.add(progress)
    return progress


def update_progress(s: "Session", enrollment: Enrollment, lesson_id: int, payload: dict, actor: "User") -> LessonProgress:
    """Upsert the lesson progress row; completion triggers a course progress recalculation."""
    if not lesson_in_course(s, lesson_id, enrollment.course_id):
        raise LookupError("Lesson not found in this course")
    progress = _get_or_create_progress(s, enrollment, lesson_id)
    now = datetime.utcnow()
    for field in ("time_spent", "last_position"):
        if field in payload:
            value = payload[field]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValueError(f"{field} must be a non-negative integer")
            setattr(progress, field, value)
    completed_changed = False
    if "is_completed" in payload:
        if not isinstance(payload["is_completed"], bool):
            raise ValueError("is_completed must be a boolean")
        completed_changed = payload["is_completed"] != progress.is_completed
        progress.is_completed = payload["is_completed"]
        progress.completed_at = now if progress.is_completed else None
    progress.updated_at = now

    if completed_changed:
        recalculate_course_progress(s, enrollment)
        record_event(
            s,
            actor=actor,
            action="progress.complete" if progress.is_completed else "progress.reopen",
            entity_type="Enrollment",
            entity_id=str(enrollment.id),
            metadata={"lesson_id": lesson_id, "progress_percentage": enrollment.progress_percentage},
        )
    return progress


def set_lesson_completion(s: "Session", enrollment: Enrollment, lesson_id: int, completed: bool, actor: "User") -> LessonProgress:
    return update_progress(s, enrollment, lesson_id, {"is_completed": completed}, actor)


def progress_summary(s: "Session", enrollment: Enrollment) -> dict:
    rows = s.query(LessonProgress).filter(LessonProgress.enrollment_id == enrollment.id).all()
    total = lesson_count(s, enrollment.course_id)
    completed = sum(1 for r in rows if r.is_completed)
    return {
        "enrollment_id": enrollment.id,
        "total": total,
        "completed": completed,
        "percentage": enrollment.progress_percentage,
        "completed_at": enrollment.completed_at.isoformat() if enrollment.completed_at else None,
        "lessons": [r.to_dict() for r in rows],
    }


def issue_certificate(s: "Session", enrollment: Enrollment, actor: "User") -> tuple[Certificate, bool]:
    """Returns (certificate, created). The enrollment must be complete."""
    from app.academy.modules.platform_settings.service import get_setting_value

    existing = s.query(Certificate).filter(Certificate.enrollment_id == enrollment.id).one_or_none()
    if existing:
        return existing, False
    if get_setting_value(s, "enable_certificates", True) is False:
        raise ValueError("Certificates are disabled")
    if enrollment.completed_at is None:
        raise ValueError("Course is not completed yet")
    cert = Certificate(
        enrollment_id=enrollment.id,
        certificate_number=generate_certificate_number(),
        issued_at=datetime.utcnow(),
    )
    s.add(cert)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="certificate.issue",
        entity_type="Certificate",
        entity_id=str(cert.id),
        metadata={"enrollment_id": enrollment.id, "certificate_number": cert.certificate_number},
    )
    logger.info("Issued certificate %s for enrollment %s", cert.certificate_number, enrollment.id)
    return cert, True
