from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm.attributes import flag_modified

from app.academy.audit import record_event
from app.academy.modules.courses.models import Course
from app.academy.modules.enrollments.models import Enrollment
from app.academy.modules.enrollments.service import set_lesson_completion
from app.academy.modules.submissions.models import (
    MASTERY_LEVELS,
    PRACTICAL_STATUSES,
    RUBRIC_CRITERIA,
    RUBRIC_MAX_SCORE,
    AssignmentSubmission,
    Competency,
    PracticalAssessment,
    QuizAttempt,
    StudentCompetency,
)
from app.academy.utils import month_key

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.academy.models import User

logger = logging.getLogger(__name__)


def _find_response(responses: list[dict], question_id: Any) -> dict | None:
    for r in responses:
        if str(r.get("questionId")) == str(question_id):
            return r
    return None


def override_quiz_score(
    s: "Session",
    attempt: QuizAttempt,
    *,
    question_id: Any,
    new_score: Any,
    reason: str | None,
    user: "User",
) -> dict:
    """
    Replace one question's points, then recompute the attempt totals.
    Raises LookupError when the question is not part of the attempt.
    """
    responses = [dict(r) for r in (attempt.responses or [])]
    response = _find_response(responses, question_id)
    if response is None:
        raise LookupError("Question not found in attempt")
    if isinstance(new_score, bool) or not isinstance(new_score, (int, float)):
        raise ValueError("newScore must be a number")
    max_points = response.get("maxPoints")
    if new_score < 0 or (isinstance(max_points, (int, float)) and new_score > max_points):
        raise ValueError("newScore must be between 0 and the question's maxPoints")

    old_score = response.get("pointsEarned")
    response["pointsEarned"] = new_score
    response["overrideReason"] = reason

    earned = sum((r.get("pointsEarned") or 0) for r in responses)
    percentage = (earned / attempt.total_points * 100) if attempt.total_points else 0
    attempt.responses = responses
    flag_modified(attempt, "responses")
    attempt.earned_points = earned
    attempt.percentage = percentage
    attempt.is_passing = percentage >= attempt.passing_percentage
    attempt.status = "graded"
    attempt.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="quiz_attempt.override_score",
        entity_type="QuizAttempt",
        entity_id=str(attempt.id),
        reason=reason,
        metadata={"question_id": question_id, "old": old_score, "new": new_score},
    )
    return {
        "success": True,
        "newOverallScore": earned,
        "newPercentage": percentage,
        "isPassing": attempt.is_passing,
    }


def _student_enrollment(s: "Session", submission: AssignmentSubmission) -> Enrollment | None:
    return (
        s.query(Enrollment)
        .filter(Enrollment.student_id == submission.student_id, Enrollment.course_id == submission.course_id)
        .one_or_none()
    )


def review_submission(
    s: "Session",
    submission: AssignmentSubmission,
    *,
    approved: bool,
    feedback: str | None,
    send_email: bool,
    user: "User",
) -> AssignmentSubmission:
    """Approve or reject; the assignment lesson's progress follows the decision."""
    submission.status = "approved" if approved else "rejected"
    submission.admin_feedback = feedback
    submission.admin_id = user.id
    submission.reviewed_at = datetime.utcnow()

    enrollment = _student_enrollment(s, submission)
    if enrollment is not None:
        try:
            set_lesson_completion(s, enrollment, submission.assignment_id, approved, user)
        except LookupError:
            logger.warning(
                "Assignment %s is not a lesson of course %s; progress not updated",
                submission.assignment_id,
                submission.course_id,
            )

    record_event(
        s,
        actor=user,
        action="submission.approve" if approved else "submission.reject",
        entity_type="AssignmentSubmission",
        entity_id=str(submission.id),
        reason=feedback,
        metadata={"student_id": submission.student_id, "assignment_id": submission.assignment_id},
    )
    if send_email:
        logger.info("Review email queued for student %s (submission %s)", submission.student_id, submission.id)
    return submission


# ---------- Practical assessments ----------
FEEDBACK_FIELDS = ("strengths", "improvements", "recommendations")


def _validate_rubric(raw: Any) -> dict[str, float]:
    if not isinstance(raw, dict) or not raw:
        raise ValueError("rubricScores must be a non-empty object")
    scores: dict[str, float] = {}
    for criterion, score in raw.items():
        if criterion not in RUBRIC_CRITERIA:
            raise ValueError(f"Unknown rubric criterion: {criterion}")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= RUBRIC_MAX_SCORE:
            raise ValueError(f"{criterion} score must be between 0 and {RUBRIC_MAX_SCORE}")
        scores[criterion] = score
    return scores


def _validate_feedback(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("feedback must be an object")
    feedback: dict[str, str] = {}
    for key, value in raw.items():
        if key not in FEEDBACK_FIELDS:
            raise ValueError(f"feedback may only contain: {', '.join(FEEDBACK_FIELDS)}")
        if not isinstance(value, str):
            raise ValueError(f"feedback.{key} must be a string")
        feedback[key] = value.strip()
    return feedback


def evaluate_practical_assessment(s: "Session", assessment: PracticalAssessment, payload: dict, user: "User") -> dict:
    """
    Score the rubric, record the decision and, on approval, refresh the
    student's mastery of the linked competency as (average / 5) * 100.
    """
    scores = _validate_rubric(payload.get("rubricScores"))
    feedback = _validate_feedback(payload.get("feedback"))
    status = payload.get("status")
    if status not in PRACTICAL_STATUSES:
        raise ValueError(f"status must be one of: {', '.join(PRACTICAL_STATUSES)}")
    mastery_level = payload.get("masteryLevel")
    if mastery_level is not None and mastery_level not in MASTERY_LEVELS:
        raise ValueError(f"masteryLevel must be one of: {', '.join(MASTERY_LEVELS)}")

    now = datetime.utcnow()
    average = sum(scores.values()) / len(scores)
    assessment.rubric_scores = scores
    assessment.admin_feedback = feedback
    assessment.overall_score = average
    assessment.status = status
    assessment.mastery_level = mastery_level
    assessment.reviewed_by = user.id
    assessment.reviewed_at = now

    if status == "approved" and assessment.competency_id:
        record = (
            s.query(StudentCompetency)
            .filter(
                StudentCompetency.student_id == assessment.student_id,
                StudentCompetency.competency_id == assessment.competency_id,
            )
            .one_or_none()
        )
        if record is None:
            record = StudentCompetency(student_id=assessment.student_id, competency_id=assessment.competency_id)
            s.add(record)
        record.mastery_level = average / RUBRIC_MAX_SCORE * 100
        record.achieved_at = now
        record.last_assessed_at = now

    record_event(
        s,
        actor=user,
        action="practical_assessment.evaluate",
        entity_type="PracticalAssessment",
        entity_id=str(assessment.id),
        metadata={"status": status, "overall_score": average, "student_id": assessment.student_id},
    )
    return {"success": True, "overallScore": average}


# ---------- Competency analytics ----------
MASTERED_AT = 80
PROFICIENT_AT = 60


def _band(mastery: float) -> str:
    if mastery >= MASTERED_AT:
        return "mastery"
    if mastery >= PROFICIENT_AT:
        return "proficient"
    return "needsAttention"


def _color(rate: float) -> str:
    return {"mastery": "green", "proficient": "yellow", "needsAttention": "red"}[_band(rate)]


def _avg(total: float, count: int) -> float:
    return round(total / count, 2) if count else 0


def competency_analytics(s: "Session", *, start: datetime, end: datetime, course_ids: list[int]) -> dict:
    """
    Mastery metrics over student competencies last assessed in [start, end].
    With `course_ids`, only students enrolled in those courses count.
    A student's role is the role of their most recent practical assessment.
    """
    rows = (
        s.query(StudentCompetency, Competency)
        .join(Competency, Competency.id == StudentCompetency.competency_id)
        .filter(StudentCompetency.last_assessed_at >= start, StudentCompetency.last_assessed_at <= end)
        .order_by(StudentCompetency.last_assessed_at.asc(), StudentCompetency.id.asc())
        .all()
    )
    student_ids = {sc.student_id for sc, _ in rows}

    courses_by_student: dict[int, list[str]] = defaultdict(list)
    if student_ids:
        enrolled = (
            s.query(Enrollment.student_id, Course.title)
            .join(Course, Course.id == Enrollment.course_id)
            .filter(Enrollment.student_id.in_(student_ids))
        )
        if course_ids:
            enrolled = enrolled.filter(Enrollment.course_id.in_(course_ids))
        for student_id, title in enrolled.order_by(Course.title.asc()).all():
            courses_by_student[student_id].append(title)

    role_by_student: dict[int, str] = {}
    if student_ids:
        recent = (
            s.query(PracticalAssessment.student_id, PracticalAssessment.role)
            .filter(PracticalAssessment.student_id.in_(student_ids), PracticalAssessment.role.isnot(None))
            .order_by(PracticalAssessment.submitted_at.desc(), PracticalAssessment.id.desc())
        )
        for student_id, role in recent.all():
            role_by_student.setdefault(student_id, role)

    per_competency: dict[int, dict] = {}
    heatmap: dict[tuple[str, str], list[float]] = defaultdict(list)
    trend: dict[str, dict[str, list[float]]] = {}
    by_role: dict[str, dict[str, list[float]]] = {}
    bands = {"mastery": 0, "proficient": 0, "needsAttention": 0}
    total_mastery = 0.0
    counted = 0
    critical_total = critical_mastered = 0
    days: list[int] = []

    for sc, comp in rows:
        if course_ids and not courses_by_student.get(sc.student_id):
            continue
        mastery = sc.mastery_level or 0
        counted += 1
        total_mastery += mastery
        mastered = mastery >= MASTERED_AT
        if comp.is_critical:
            critical_total += 1
            critical_mastered += int(mastered)
        if sc.days_to_master:
            days.append(sc.days_to_master)

        stats = per_competency.setdefault(
            comp.id,
            {"comp": comp, "count": 0, "mastered": 0, "days": []},
        )
        stats["count"] += 1
        stats["mastered"] += int(mastered)
        if sc.days_to_master:
            stats["days"].append(sc.days_to_master)

        for title in courses_by_student.get(sc.student_id, []):
            heatmap[(comp.name, title)].append(mastery)

        month = trend.setdefault(month_key(sc.last_assessed_at), defaultdict(list))
        month[comp.name].append(mastery)
        month["Average Mastery"].append(mastery)

        role = role_by_student.get(sc.student_id)
        if role:
            by_role.setdefault(comp.name, defaultdict(list))[role].append(mastery)

        bands[_band(mastery)] += 1

    competencies = []
    for stats in per_competency.values():
        comp = stats["comp"]
        rate = stats["mastered"] / stats["count"] * 100
        competencies.append(
            {
                "id": comp.id,
                "name": comp.name,
                "category": comp.category,
                "isCritical": comp.is_critical,
                "masteryPercentage": round(rate, 2),
                "averageDaysToMastery": _avg(sum(stats["days"]), len(stats["days"])),
                "studentsAttempted": stats["count"],
                "studentsMastered": stats["mastered"],
                "colorCode": _color(rate),
            }
        )
    competencies.sort(key=lambda c: c["name"])

    band_total = sum(bands.values())
    labels = {"mastery": "Mastery", "proficient": "Proficient", "needsAttention": "Needs Attention"}
    return {
        "competencies": competencies,
        "overallMasteryRate": _avg(total_mastery, counted),
        "criticalCompetenciesMastered": round(critical_mastered / critical_total * 100, 2) if critical_total else 0,
        "averageDaysToMastery": _avg(sum(days), len(days)),
        "heatmapData": [
            {"competency": name, "course": course, "masteryRate": _avg(sum(v), len(v))}
            for (name, course), v in sorted(heatmap.items())
        ],
        # rows were read oldest first, so months come out in order
        "trendData": [
            {"month": month, **{name: round(sum(v) / len(v)) for name, v in values.items()}}
            for month, values in trend.items()
        ],
        "roleComparisonData": [
            {"competency": name, **{role: round(sum(v) / len(v)) for role, v in roles.items()}}
            for name, roles in sorted(by_role.items())
        ],
        "masteryDistribution": [
            {
                "level": labels[band],
                "studentCount": n,
                "percentage": round(n / band_total * 100) if band_total else 0,
            }
            for band, n in bands.items()
        ],
    }
