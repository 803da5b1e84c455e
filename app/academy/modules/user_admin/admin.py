from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, jsonify, request

from app.academy.db import db_session
from app.academy.models import User
from app.academy.modules.user_admin.service import (
    STUDENTS_VIEW,
    USERS_VIEW,
    AudienceView,
    account_details,
    analytics_overview,
    audience_analytics,
    audience_stats,
    create_account,
    query_accounts,
    reactivate_account,
    reset_password,
    serialize_accounts,
    suspend_account,
    update_account,
    validate_account_payload,
    verify_email,
)
from app.academy.rbac import require_permission
from app.academy.utils import (
    ConflictError,
    current_user,
    get_json_payload,
    json_error,
    paginate,
    parse_analytics_window,
    parse_bool,
    parse_id_csv,
    parse_page_args,
    payload_text,
    total_pages,
)

bp = Blueprint("user_admin", __name__)


def _target(view: AudienceView, user_id: int) -> User:
    user = db_session().get(User, user_id)
    if not user or (view.role and user.role != view.role):
        abort(404, description=f"{view.noun.capitalize()} not found")
    return user


def _list(view: AudienceView):
    s = db_session()
    now = datetime.utcnow()
    page, limit = parse_page_args(default_limit=10)
    params = {
        "search": (request.args.get("search") or "").strip(),
        "status": (request.args.get("status") or "").strip(),
        "role": (request.args.get("role") or "").strip(),
        "verified": parse_bool(request.args.get("verified")),
        "sort_by": (request.args.get("sortBy") or "created_at").strip(),
        "sort_order": (request.args.get("sortOrder") or "desc").strip().lower(),
    }
    users, total = paginate(query_accounts(s, view, params, now), page, limit)
    return jsonify(
        {
            f"{view.noun}s": serialize_accounts(s, view, users, now),
            "pagination": {"total": total, "page": page, "limit": limit, "pages": total_pages(total, limit)},
            "stats": audience_stats(s, view, now),
        }
    )


def _update(view: AudienceView, user_id: int):
    s = db_session()
    target = _target(view, user_id)
    payload = get_json_payload()
    errors = validate_account_payload(payload, view.editable_fields)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    try:
        update_account(s, target, payload, current_user())
    except ConflictError as e:
        return json_error(str(e), 409)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({view.noun: target.to_dict()})


def _suspend(view: AudienceView, user_id: int, *, action: str, reason: str | None):
    s = db_session()
    target = _target(view, user_id)
    try:
        suspend_account(s, target, current_user(), reason=reason, action=action)
    except ValueError as e:
        return None, json_error(str(e), 400)
    s.commit()
    return target, None


def _verify(view: AudienceView, user_id: int):
    s = db_session()
    target = _target(view, user_id)
    verify_email(s, target, current_user())
    s.commit()
    return jsonify({view.noun: target.to_dict()})


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.manage")
def users_list():
    return _list(USERS_VIEW)


@bp.post("/users")
@require_permission("users.manage")
def users_create():
    s = db_session()
    try:
        user = create_account(s, get_json_payload(), current_user())
    except ConflictError as e:
        return json_error(str(e), 409)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"user": user.to_dict()}), 201


@bp.get("/users/analytics")
@require_permission("users.manage")
def users_analytics():
    return jsonify(audience_analytics(db_session(), USERS_VIEW, datetime.utcnow()))


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def users_detail(user_id: int):
    return jsonify(account_details(db_session(), _target(USERS_VIEW, user_id)))


@bp.put("/users/<int:user_id>")
@require_permission("users.manage")
def users_update(user_id: int):
    return _update(USERS_VIEW, user_id)


@bp.delete("/users/<int:user_id>")
@require_permission("users.manage")
def users_delete(user_id: int):
    _deleted, err = _suspend(USERS_VIEW, user_id, action="user.delete", reason=None)
    if err:
        return err
    return jsonify({"message": "User deleted"})


@bp.post("/users/<int:user_id>/suspend")
@require_permission("users.manage")
def users_suspend(user_id: int):
    reason = payload_text(get_json_payload(), "reason").strip() or None
    target, err = _suspend(USERS_VIEW, user_id, action="user.suspend", reason=reason)
    if err:
        return err
    return jsonify({"user": target.to_dict()})


@bp.post("/users/<int:user_id>/reactivate")
@require_permission("users.manage")
def users_reactivate(user_id: int):
    s = db_session()
    target = _target(USERS_VIEW, user_id)
    reactivate_account(s, target, current_user())
    s.commit()
    return jsonify({"user": target.to_dict()})


@bp.post("/users/<int:user_id>/verify-email")
@require_permission("users.manage")
def users_verify_email(user_id: int):
    return _verify(USERS_VIEW, user_id)


@bp.post("/users/<int:user_id>/reset-password")
@require_permission("users.manage")
def users_reset_password(user_id: int):
    s = db_session()
    target = _target(USERS_VIEW, user_id)
    payload = get_json_payload()
    try:
        reset_password(s, target, current_user(), payload_text(payload, "password"), payload.get("password_confirm"))
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"message": f"Password reset for {target.email}."})


# ---------- Students ----------
@bp.get("/students")
@require_permission("students.manage")
def students_list():
    return _list(STUDENTS_VIEW)


@bp.get("/students/analytics")
@require_permission("students.manage")
def students_analytics():
    return jsonify(audience_analytics(db_session(), STUDENTS_VIEW, datetime.utcnow()))


@bp.get("/students/<int:student_id>")
@require_permission("students.manage")
def students_detail(student_id: int):
    return jsonify(account_details(db_session(), _target(STUDENTS_VIEW, student_id)))


@bp.put("/students/<int:student_id>")
@require_permission("students.manage")
def students_update(student_id: int):
    return _update(STUDENTS_VIEW, student_id)


@bp.delete("/students/<int:student_id>")
@require_permission("students.manage")
def students_delete(student_id: int):
    _deleted, err = _suspend(STUDENTS_VIEW, student_id, action="student.delete", reason=None)
    if err:
        return err
    return jsonify({"message": "Student deleted"})


@bp.post("/students/<int:student_id>/suspend")
@require_permission("students.manage")
def students_suspend(student_id: int):
    reason = payload_text(get_json_payload(), "reason").strip() or None
    target, err = _suspend(STUDENTS_VIEW, student_id, action="student.suspend", reason=reason)
    if err:
        return err
    return jsonify({"student": target.to_dict()})


@bp.post("/students/<int:student_id>/verify-email")
@require_permission("students.manage")
def students_verify_email(student_id: int):
    return _verify(STUDENTS_VIEW, student_id)


@bp.get("/analytics/overview")
@require_permission("stats.view")
def analytics_overview_get():
    now = datetime.utcnow()
    try:
        start, end = parse_analytics_window(request.args, now)
        course_ids = parse_id_csv(request.args.get("courses"), "courses")
    except ValueError as e:
        return json_error(str(e), 400)
    data = analytics_overview(db_session(), start=start, end=end, course_ids=course_ids, now=now)
    return jsonify({"data": data, "timestamp": now.isoformat()})
