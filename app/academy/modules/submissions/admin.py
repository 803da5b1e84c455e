from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, jsonify, request
from sqlalchemy import case

from app.academy.db import db_session
from app.academy.models import User
from app.academy.modules.courses.models import Course, Lesson
from app.academy.modules.submissions.models import (
    PRACTICAL_STATUSES,
    QUIZ_STATUSES,
    SUBMISSION_STATUSES,
    AssignmentSubmission,
    PracticalAssessment,
    QuizAttempt,
)
from app.academy.modules.submissions.service import (
    competency_analytics,
    evaluate_practical_assessment,
    override_quiz_score,
    review_submission,
)
from app.academy.rbac import require_permission
from app.academy.utils import (
    current_user,
    get_json_payload,
    json_error,
    parse_analytics_window,
    parse_bool,
    parse_id_csv,
    parse_int,
    payload_text,
)

bp = Blueprint("submissions", __name__)


@bp.get("/quiz-results")
@require_permission("grading.manage")
def quiz_results_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    course_id = parse_int(request.args.get("courseId"), 0)

    q = (
        s.query(QuizAttempt, User, Course, Lesson)
        .join(User, User.id == QuizAttempt.student_id)
        .join(Course, Course.id == QuizAttempt.course_id)
        .join(Lesson, Lesson.id == QuizAttempt.quiz_id)
    )
    if status and status != "all":
        if status not in QUIZ_STATUSES:
            return json_error(f"Invalid status. Must be one of: {', '.join(QUIZ_STATUSES)}", 400)
        q = q.filter(QuizAttempt.status == status)
    if course_id:
        q = q.filter(QuizAttempt.course_id == course_id)

    # unfinished attempts sort after finished ones
    q = q.order_by(
        case((QuizAttempt.completed_at.is_(None), 1), else_=0),
        QuizAttempt.completed_at.desc(),
        QuizAttempt.id.desc(),
    )
    results = []
    for attempt, student, course, quiz in q.all():
        d = attempt.to_dict()
        d.update(
            {
                "student_name": student.name,
                "student_email": student.email,
                "course_title": course.title,
                "quiz_title": quiz.title,
            }
        )
        results.append(d)
    return jsonify({"results": results})


@bp.put("/quiz-results/<int:attempt_id>/override-score")
@require_permission("grading.manage")
def quiz_override_score(attempt_id: int):
    s = db_session()
    attempt = s.get(QuizAttempt, attempt_id)
    if not attempt:
        return json_error("Quiz attempt not found", 404)
    payload = get_json_payload()
    if payload.get("questionId") is None:
        return json_error("questionId is required", 400)
    try:
        result = override_quiz_score(
            s,
            attempt,
            question_id=payload.get("questionId"),
            new_score=payload.get("newScore"),
            reason=payload_text(payload, "reason").strip() or None,
            user=current_user(),
        )
    except LookupError as e:
        return json_error(str(e), 404)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify(result)


@bp.get("/submissions")
@require_permission("grading.manage")
def submissions_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    course_id = parse_int(request.args.get("courseId"), 0)
    search = (request.args.get("search") or "").strip()

    q = (
        s.query(AssignmentSubmission, User, Course, Lesson)
        .join(User, User.id == AssignmentSubmission.student_id)
        .join(Course, Course.id == AssignmentSubmission.course_id)
        .join(Lesson, Lesson.id == AssignmentSubmission.assignment_id)
    )
    if status and status != "all":
        if status not in SUBMISSION_STATUSES:
            return json_error(f"Invalid status. Must be one of: {', '.join(SUBMISSION_STATUSES)}", 400)
        q = q.filter(AssignmentSubmission.status == status)
    if course_id:
        q = q.filter(AssignmentSubmission.course_id == course_id)
    if search:
        q = q.filter(AssignmentSubmission.file_name.ilike(f"%{search}%"))

    out = []
    for sub, student, course, lesson in q.order_by(AssignmentSubmission.submitted_at.desc()).all():
        d = sub.to_dict()
        d.update(
            {
                "student_name": student.name,
                "student_email": student.email,
                "course_title": course.title,
                "assignment_title": lesson.title,
            }
        )
        out.append(d)
    return jsonify({"submissions": out})


def _review(submission_id: int, approved: bool):
    s = db_session()
    submission = s.get(AssignmentSubmission, submission_id)
    if not submission:
        abort(404, description="Submission not found")
    payload = get_json_payload()
    review_submission(
        s,
        submission,
        approved=approved,
        feedback=payload_text(payload, "feedback").strip() or None,
        send_email=parse_bool(payload.get("sendEmail")) is True,
        user=current_user(),
    )
    s.commit()
    return jsonify({"success": True, "submission": submission.to_dict()})


@bp.post("/submissions/<int:submission_id>/approve")
@require_permission("grading.manage")
def submission_approve(submission_id: int):
    return _review(submission_id, True)


@bp.post("/submissions/<int:submission_id>/reject")
@require_permission("grading.manage")
def submission_reject(submission_id: int):
    return _review(submission_id, False)


@bp.get("/practical-assessments")
@require_permission("grading.manage")
def practical_assessments_list():
    s = db_session()
    role = (request.args.get("role") or "").strip()
    status = (request.args.get("status") or "").strip()

    q = s.query(PracticalAssessment, User).join(User, User.id == PracticalAssessment.student_id)
    if role and role != "all":
        q = q.filter(PracticalAssessment.role == role)
    if status and status != "all":
        if status not in PRACTICAL_STATUSES:
            return json_error(f"Invalid status. Must be one of: {', '.join(PRACTICAL_STATUSES)}", 400)
        q = q.filter(PracticalAssessment.status == status)

    out = []
    q = q.order_by(PracticalAssessment.submitted_at.desc(), PracticalAssessment.id.desc())
    for assessment, student in q.all():
        d = assessment.to_dict()
        d.update({"student_name": student.name, "student_email": student.email})
        out.append(d)
    return jsonify({"assessments": out})


@bp.post("/practical-assessments/<int:assessment_id>/evaluate")
@require_permission("grading.manage")
def practical_assessment_evaluate(assessment_id: int):
    s = db_session()
    assessment = s.get(PracticalAssessment, assessment_id)
    if not assessment:
        return json_error("Practical assessment not found", 404)
    try:
        result = evaluate_practical_assessment(s, assessment, get_json_payload(), current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    result["assessment"] = assessment.to_dict()
    return jsonify(result)


@bp.get("/analytics/competencies")
@require_permission("stats.view")
def analytics_competencies_get():
    now = datetime.utcnow()
    try:
        start, end = parse_analytics_window(request.args, now)
        course_ids = parse_id_csv(request.args.get("courses"), "courses")
    except ValueError as e:
        return json_error(str(e), 400)
    data = competency_analytics(db_session(), start=start, end=end, course_ids=course_ids)
    return jsonify({"data": data, "timestamp": now.isoformat()})
