from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.academy.db import db_session
from app.academy.models import User
from app.academy.modules.courses.models import Course
from app.academy.modules.courses.service import can_manage_course
from app.academy.modules.enrollments.models import Certificate, Enrollment
from app.academy.modules.enrollments.service import (
    enroll_student,
    issue_certificate,
    progress_summary,
    set_lesson_completion,
    unenroll,
    update_progress,
)
from app.academy.rbac import login_required, user_has_permission
from app.academy.utils import current_user, get_json_payload, json_error, parse_int

bp = Blueprint("enrollments", __name__)


def _is_enrollment_admin(user: User) -> bool:
    return user_has_permission(user, "enrollments.manage")


def _own_enrollment(enrollment_id: int) -> Enrollment:
    """The caller's enrollment (admins may act on any). Foreign enrollments are a 403."""
    enrollment = db_session().get(Enrollment, enrollment_id)
    if not enrollment:
        abort(404, description="Enrollment not found")
    u = current_user()
    if enrollment.student_id != u.id and not _is_enrollment_admin(u):
        abort(403)
    return enrollment


@bp.get("/enrollments")
@login_required
def enrollments_list():
    s = db_session()
    u = current_user()
    student_id = parse_int(request.args.get("student_id"), 0)
    course_id = parse_int(request.args.get("course_id"), 0)
    if not student_id and not course_id:
        return json_error("student_id or course_id is required", 400)

    q = s.query(Enrollment)
    if student_id:
        if student_id != u.id and not _is_enrollment_admin(u):
            abort(403)
        q = q.filter(Enrollment.student_id == student_id)
    if course_id:
        course = s.get(Course, course_id)
        if not course:
            return json_error("Course not found", 404)
        if not student_id and not can_manage_course(u, course):
            abort(403)
        q = q.filter(Enrollment.course_id == course_id)

    enrollments = q.order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc()).all()
    return jsonify({"enrollments": [e.to_dict() for e in enrollments]})


@bp.post("/enrollments")
@login_required
def enrollments_create():
    s = db_session()
    u = current_user()
    payload = get_json_payload()
    course_id = parse_int(payload.get("course_id"), 0)
    student_id = parse_int(payload.get("student_id"), 0) or u.id
    if not course_id:
        return json_error("course_id is required", 400)
    if student_id != u.id and not _is_enrollment_admin(u):
        abort(403)

    course = s.get(Course, course_id)
    if not course:
        return json_error("Course not found", 404)
    if not course.is_published and not can_manage_course(u, course):
        return json_error("Course is not available for enrollment", 400)
    student = s.get(User, student_id)
    if not student or not student.is_active:
        return json_error("Student not found", 404)

    try:
        enrollment = enroll_student(s, course, student, u)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"enrollment": enrollment.to_dict()}), 201


@bp.delete("/enrollments/<int:enrollment_id>")
@login_required
def enrollments_delete(enrollment_id: int):
    s = db_session()
    enrollment = _own_enrollment(enrollment_id)
    unenroll(s, enrollment, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.get("/enrollments/<int:enrollment_id>/progress")
@login_required
def enrollment_progress(enrollment_id: int):
    enrollment = _own_enrollment(enrollment_id)
    return jsonify(progress_summary(db_session(), enrollment))


@bp.put("/progress")
@login_required
def progress_update():
    s = db_session()
    payload = get_json_payload()
    enrollment_id = parse_int(payload.get("enrollment_id"), 0)
    lesson_id = parse_int(payload.get("lesson_id"), 0)
    if not enrollment_id or not lesson_id:
        return json_error("enrollment_id and lesson_id are required", 400)
    enrollment = _own_enrollment(enrollment_id)
    try:
        progress = update_progress(s, enrollment, lesson_id, payload, current_user())
    except LookupError as e:
        return json_error(str(e), 404)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"progress": progress.to_dict(), "course_progress": enrollment.progress_percentage})


@bp.post("/progress/complete")
@login_required
def progress_complete():
    s = db_session()
    payload = get_json_payload()
    enrollment_id = parse_int(payload.get("enrollment_id"), 0)
    lesson_id = parse_int(payload.get("lesson_id"), 0)
    if not enrollment_id or not lesson_id:
        return json_error("enrollment_id and lesson_id are required", 400)
    enrollment = _own_enrollment(enrollment_id)
    try:
        progress = set_lesson_completion(s, enrollment, lesson_id, True, current_user())
    except LookupError as e:
        return json_error(str(e), 404)
    s.commit()
    return jsonify(
        {
            "progress": progress.to_dict(),
            "course_progress": enrollment.progress_percentage,
            "course_completed": enrollment.completed_at is not None,
        }
    )


@bp.post("/enrollments/<int:enrollment_id>/certificate")
@login_required
def enrollment_certificate(enrollment_id: int):
    s = db_session()
    enrollment = _own_enrollment(enrollment_id)
    try:
        cert, created = issue_certificate(s, enrollment, current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"certificate": cert.to_dict()}), 201 if created else 200


@bp.get("/certificates")
@login_required
def certificates_mine():
    s = db_session()
    u = current_user()
    certs = (
        s.query(Certificate)
        .join(Enrollment, Enrollment.id == Certificate.enrollment_id)
        .filter(Enrollment.student_id == u.id)
        .order_by(Certificate.issued_at.desc())
        .all()
    )
    return jsonify({"certificates": [c.to_dict() for c in certs]})
