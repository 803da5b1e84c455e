from __future__ import annotations

from datetime import date, datetime, time, timedelta

from flask import Blueprint, jsonify, request

from app.academy.audit import AUDIT_ENTITY_TYPES
from app.academy.db import db_session
from app.academy.models import ROLE_STUDENT, AuditEvent, User
from app.academy.modules.courses.models import Course
from app.academy.rbac import require_permission
from app.academy.utils import json_error

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


@bp.get("/stats/general")
@require_permission("stats.view")
def stats_general():
    s = db_session()
    total_users = s.query(User).filter(User.role == ROLE_STUDENT, User.deleted_at.is_(None)).count()
    active_courses = s.query(Course).filter(Course.is_published.is_(True)).count()
    return jsonify({"totalUsers": total_users, "activeCourses": active_courses})


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actor_email (contains)
    - entity_type (one of AUDIT_ENTITY_TYPES), entity_id (exact)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    entity_type = (request.args.get("entity_type") or "").strip()
    entity_id = (request.args.get("entity_id") or "").strip()
    if entity_type and entity_type not in AUDIT_ENTITY_TYPES:
        return json_error(f"entity_type must be one of: {', '.join(AUDIT_ENTITY_TYPES)}", 400)
    raw_from = (request.args.get("date_from") or "").strip()
    raw_to = (request.args.get("date_to") or "").strip()
    date_from = _parse_date(raw_from)
    date_to = _parse_date(raw_to)
    if raw_from and not date_from:
        return json_error("date_from must be YYYY-MM-DD", 400)
    if raw_to and not date_to:
        return json_error("date_to must be YYYY-MM-DD", 400)

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify({"events": [e.to_dict() for e in events]})
