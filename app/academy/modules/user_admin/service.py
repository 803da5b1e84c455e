from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, or_, select
from werkzeug.security import generate_password_hash

from app.academy.audit import record_event
from app.academy.auth import revoke_user_sessions
from app.academy.models import ROLE_STUDENT, ROLES, LoginAttempt, User
from app.academy.modules.courses.models import Course, Review
from app.academy.modules.enrollments.models import Certificate, Enrollment
from app.academy.modules.submissions.models import QuizAttempt
from app.academy.utils import ConflictError, is_valid_email, month_key, month_starts, payload_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session

SORTABLE_COLUMNS = ("created_at", "updated_at", "name", "email", "last_active", "role")


@dataclass(frozen=True)
class AudienceView:
    """
    How an admin list screen slices the users table. `activity_column` and
    `activity_window` decide who counts as active.
    """

    noun: str
    role: str | None
    activity_column: str
    activity_window: timedelta
    editable_fields: tuple[str, ...]

    def cutoff(self, now: datetime) -> datetime:
        return now - self.activity_window

    def is_recent(self, user: User, now: datetime) -> bool:
        value = getattr(user, self.activity_column)
        return value is not None and value >= self.cutoff(now)


USERS_VIEW = AudienceView(
    noun="user",
    role=None,
    activity_column="created_at",
    activity_window=timedelta(days=30),
    editable_fields=("name", "email", "bio", "role", "is_email_verified"),
)
STUDENTS_VIEW = AudienceView(
    noun="student",
    role=ROLE_STUDENT,
    activity_column="last_active",
    activity_window=timedelta(days=7),
    editable_fields=("name", "email", "bio"),
)


def _population(s: "Session", view: AudienceView) -> "Query":
    q = s.query(User)
    if view.role:
        q = q.filter(User.role == view.role)
    return q


def account_status(view: AudienceView, user: User, now: datetime) -> str:
    if user.deleted_at is not None:
        return "suspended"
    return "active" if view.is_recent(user, now) else "inactive"


def query_accounts(s: "Session", view: AudienceView, params: dict, now: datetime) -> "Query":
    q = _population(s, view)
    status = params.get("status")
    if status == "suspended":
        q = q.filter(User.deleted_at.isnot(None))
    else:
        q = q.filter(User.deleted_at.is_(None))
        activity = getattr(User, view.activity_column)
        if status == "active":
            q = q.filter(activity >= view.cutoff(now))
        elif status == "inactive":
            q = q.filter(or_(activity.is_(None), activity < view.cutoff(now)))

    if params.get("role") and view.role is None:
        q = q.filter(User.role == params["role"])
    if params.get("search"):
        like = f"%{params['search']}%"
        q = q.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    if params.get("verified") is not None:
        q = q.filter(User.is_email_verified.is_(params["verified"]))

    sort_by = params.get("sort_by") if params.get("sort_by") in SORTABLE_COLUMNS else "created_at"
    column = getattr(User, sort_by)
    ordering = column.asc() if params.get("sort_order") == "asc" else column.desc()
    return q.order_by(ordering, User.id.asc())


def enrollment_counts(s: "Session", user_ids: list[int]) -> dict[int, tuple[int, int]]:
    """student_id -> (enrolled, completed)."""
    if not user_ids:
        return {}
    rows = (
        s.query(
            Enrollment.student_id,
            func.count(Enrollment.id),
            func.sum(case((Enrollment.completed_at.isnot(None), 1), else_=0)),
        )
        .filter(Enrollment.student_id.in_(user_ids))
        .group_by(Enrollment.student_id)
        .all()
    )
    return {sid: (int(total or 0), int(done or 0)) for sid, total, done in rows}


def certificate_counts(s: "Session", user_ids: list[int]) -> dict[int, int]:
    if not user_ids:
        return {}
    rows = (
        s.query(Enrollment.student_id, func.count(Certificate.id))
        .join(Certificate, Certificate.enrollment_id == Enrollment.id)
        .filter(Enrollment.student_id.in_(user_ids))
        .group_by(Enrollment.student_id)
        .all()
    )
    return {sid: int(n) for sid, n in rows}


def serialize_accounts(s: "Session", view: AudienceView, users: list[User], now: datetime) -> list[dict]:
    ids = [u.id for u in users]
    counts = enrollment_counts(s, ids)
    certs = certificate_counts(s, ids) if view.role == ROLE_STUDENT else {}
    out = []
    for u in users:
        d = u.to_dict()
        enrolled, completed = counts.get(u.id, (0, 0))
        d["courses_enrolled"] = enrolled
        d["courses_completed"] = completed
        d["status"] = account_status(view, u, now)
        if view.role == ROLE_STUDENT:
            d["certificates"] = certs.get(u.id, 0)
        out.append(d)
    return out


def audience_stats(s: "Session", view: AudienceView, now: datetime) -> dict:
    live = _population(s, view).filter(User.deleted_at.is_(None))
    total = live.count()
    activity = getattr(User, view.activity_column)
    active = live.filter(activity >= view.cutoff(now)).count()
    verified = live.filter(User.is_email_verified.is_(True)).count()

    enroll_q = s.query(Enrollment)
    if view.role:
        enroll_q = enroll_q.join(User, User.id == Enrollment.student_id).filter(User.role == view.role)
    total_enrollments = enroll_q.count()
    avg = enroll_q.with_entities(func.avg(Enrollment.progress_percentage)).scalar()

    plural = f"{view.noun}s"
    return {
        f"total_{plural}": total,
        f"active_{plural}": active,
        f"inactive_{plural}": total - active,
        "total_enrollments": total_enrollments,
        "avg_progress": round(float(avg), 2) if avg is not None else 0,
        "verified_percentage": round(verified / total * 100) if total else 0,
    }


def account_details(s: "Session", user: User) -> dict:
    enrollments = (
        s.query(Enrollment)
        .filter(Enrollment.student_id == user.id)
        .order_by(Enrollment.enrolled_at.desc())
        .all()
    )
    certificates = (
        s.query(Certificate)
        .join(Enrollment, Enrollment.id == Certificate.enrollment_id)
        .filter(Enrollment.student_id == user.id)
        .order_by(Certificate.issued_at.desc())
        .all()
    )
    logins = (
        s.query(LoginAttempt)
        .filter(LoginAttempt.email == user.email)
        .order_by(LoginAttempt.created_at.desc(), LoginAttempt.id.desc())
        .limit(10)
        .all()
    )
    return {
        "user": user.to_dict(),
        "enrollments": [e.to_dict() for e in enrollments],
        "certificates": [c.to_dict() for c in certificates],
        "login_history": [a.to_dict() for a in logins],
    }


def _ensure_email_free(s: "Session", email: str, *, exclude_id: int | None = None) -> None:
    q = s.query(User.id).filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("An account with this email already exists.")


def validate_account_payload(payload: dict, fields: tuple[str, ...]) -> list[str]:
    errors: list[str] = []
    unknown = sorted(set(payload) - set(fields))
    if unknown:
        errors.append(f"Fields not editable here: {', '.join(unknown)}")
    if "email" in payload and not is_valid_email(payload_text(payload, "email").strip()):
        errors.append("Invalid email format.")
    if "name" in payload:
        name = payload_text(payload, "name").strip()
        if not name:
            errors.append("Name cannot be empty.")
        elif len(name) > 100:
            errors.append("Name must be 100 characters or fewer.")
    if "bio" in payload and len(payload_text(payload, "bio")) > 500:
        errors.append("Bio must be 500 characters or fewer.")
    if "role" in payload and payload["role"] not in ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(ROLES)}")
    if "is_email_verified" in payload and not isinstance(payload["is_email_verified"], bool):
        errors.append("is_email_verified must be a boolean.")
    return errors


def update_account(s: "Session", target: User, payload: dict, actor: User) -> User:
    before = {k: getattr(target, k) for k in payload}
    if "role" in payload and target.id == actor.id and payload["role"] != target.role:
        raise ValueError("You cannot change your own role.")
    if "email" in payload:
        email = payload["email"].strip().lower()
        if email != target.email:
            _ensure_email_free(s, email, exclude_id=target.id)
            target.email = email
    if "name" in payload:
        target.name = payload["name"].strip()
    if "bio" in payload:
        target.bio = payload_text(payload, "bio").strip() or None
    if "role" in payload:
        target.role = payload["role"]
    if "is_email_verified" in payload:
        target.is_email_verified = payload["is_email_verified"]
    target.updated_at = datetime.utcnow()
    after = {k: getattr(target, k) for k in payload}
    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"before": before, "after": after},
    )
    return target


def create_account(s: "Session", payload: dict, actor: User) -> User:
    """Admin-created account. Raises ValueError/ConflictError."""
    email = payload_text(payload, "email").strip().lower()
    name = payload_text(payload, "name").strip()
    password = payload_text(payload, "password")
    role = payload.get("role") or ROLE_STUDENT

    errors = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    if not name:
        errors.append("Name is required.")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    elif payload.get("password_confirm") is not None and password != payload.get("password_confirm"):
        errors.append("Passwords do not match.")
    if role not in ROLES:
        errors.append(f"Invalid role. Must be one of: {', '.join(ROLES)}")
    if errors:
        raise ValueError("; ".join(errors))
    _ensure_email_free(s, email)

    now = datetime.utcnow()
    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(password),
        role=role,
        is_email_verified=bool(payload.get("is_email_verified")),
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "role": role},
    )
    return user


def suspend_account(s: "Session", target: User, actor: User, *, reason: str | None, action: str = "user.suspend") -> User:
    """Soft delete. The account keeps its data but can no longer sign in."""
    if target.id == actor.id:
        raise ValueError("You cannot suspend or delete your own account.")
    if target.deleted_at is None:
        target.deleted_at = datetime.utcnow()
    target.suspension_reason = reason
    target.updated_at = datetime.utcnow()
    revoke_user_sessions(s, target.id)
    record_event(
        s,
        actor=actor,
        action=action,
        entity_type="User",
        entity_id=str(target.id),
        reason=reason,
        metadata={"email": target.email},
    )
    return target


def reactivate_account(s: "Session", target: User, actor: User) -> User:
    target.deleted_at = None
    target.suspension_reason = None
    target.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.reactivate", entity_type="User", entity_id=str(target.id))
    return target


def verify_email(s: "Session", target: User, actor: User) -> User:
    target.is_email_verified = True
    target.updated_at = datetime.utcnow()
    record_event(s, actor=actor, action="user.verify_email", entity_type="User", entity_id=str(target.id))
    return target


def reset_password(s: "Session", target: User, actor: User, password: str, password_confirm: str | None) -> None:
    if len(password) < 8:
        raise ValueError("Password must be at least 8 characters.")
    if password_confirm is not None and password != password_confirm:
        raise ValueError("Passwords do not match.")
    target.password_hash = generate_password_hash(password)
    target.updated_at = datetime.utcnow()
    revoke_user_sessions(s, target.id)
    record_event(
        s,
        actor=actor,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_email": target.email, "reset_by": actor.email},
    )


def audience_analytics(s: "Session", view: AudienceView, now: datetime) -> dict[str, Any]:
    starts = month_starts(now, 12)
    created = [
        row[0]
        for row in _population(s, view)
        .with_entities(User.created_at)
        .filter(User.created_at >= starts[0])
        .all()
    ]
    buckets = {month_key(m): 0 for m in starts}
    for ts in created:
        key = month_key(ts)
        if key in buckets:
            buckets[key] += 1
    growth = [{"date": k, "count": n, f"new_{view.noun}s": n} for k, n in buckets.items()]

    enroll_q = s.query(Enrollment)
    if view.role:
        enroll_q = enroll_q.join(User, User.id == Enrollment.student_id).filter(User.role == view.role)
    completed = enroll_q.filter(Enrollment.completed_at.isnot(None)).count()
    active = enroll_q.filter(Enrollment.completed_at.is_(None)).count()

    population = _population(s, view).filter(User.deleted_at.is_(None))
    total = population.count()
    verified = population.filter(User.is_email_verified.is_(True)).count()

    top = (
        enroll_q.join(Course, Course.id == Enrollment.course_id)
        .with_entities(Course.title, func.count(Enrollment.id).label("n"))
        .group_by(Course.id, Course.title)
        .order_by(func.count(Enrollment.id).desc(), Course.title.asc())
        .limit(5)
        .all()
    )

    result: dict[str, Any] = {
        f"{view.noun}_growth": growth,
        "enrollment_status": [
            {"status": "Active", "count": active},
            {"status": "Completed", "count": completed},
        ],
        "verification_status": {"verified": verified, "unverified": total - verified},
        "course_distribution": [{"course_title": title, "count": n} for title, n in top],
    }
    if view.role is None:
        roles = (
            population.with_entities(User.role, func.count(User.id)).group_by(User.role).order_by(User.role.asc()).all()
        )
        result["role_distribution"] = [{"role": r, "count": n} for r, n in roles]
    return result


# KPI -> (label, target, unit); a target of 0 means the KPI has no goal.
OVERVIEW_KPIS = {
    "totalStudents": ("Total Students", 0, None),
    "activeUsers7d": ("Active Users", 0, None),
    "courseCompletionRate": ("Completion Rate", 85, "percentage"),
    "assessmentPassRate": ("Pass Rate", 85, "percentage"),
    "certificationsIssued": ("Certifications", 0, None),
    "studentSatisfaction": ("Satisfaction", 4.6, "rating"),
}
ACTIVE_USER_WINDOW = timedelta(days=7)


def _kpi(key: str, value: float) -> dict[str, Any]:
    label, target, unit = OVERVIEW_KPIS[key]
    card: dict[str, Any] = {
        "value": round(value, 2),
        "target": target,
        "percentToTarget": round(value / target * 100, 2) if target else 100,
        "label": label,
    }
    if unit:
        card["unit"] = unit
    return card


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def analytics_overview(
    s: "Session", *, start: datetime, end: datetime, course_ids: list[int], now: datetime
) -> dict[str, Any]:
    """
    Executive KPIs for the admin analytics page. Window-bound figures
    (completion, pass rate, certificates, satisfaction) use [start, end];
    `course_ids` narrows every figure to those courses.
    """
    students = s.query(User).filter(User.role == ROLE_STUDENT, User.deleted_at.is_(None))
    if course_ids:
        enrolled = select(Enrollment.student_id).where(Enrollment.course_id.in_(course_ids))
        students = students.filter(User.id.in_(enrolled))
    total_students = students.count()
    active_users = students.filter(User.last_active >= now - ACTIVE_USER_WINDOW).count()

    enrollments = s.query(Enrollment).filter(Enrollment.enrolled_at >= start, Enrollment.enrolled_at <= end)
    if course_ids:
        enrollments = enrollments.filter(Enrollment.course_id.in_(course_ids))
    enrolled_count = enrollments.count()
    completed_count = enrollments.filter(Enrollment.completed_at.isnot(None)).count()

    attempts = s.query(QuizAttempt).filter(
        QuizAttempt.status != "in_progress",
        QuizAttempt.completed_at >= start,
        QuizAttempt.completed_at <= end,
    )
    if course_ids:
        attempts = attempts.filter(QuizAttempt.course_id.in_(course_ids))
    attempt_count = attempts.count()
    passed_count = attempts.filter(QuizAttempt.is_passing.is_(True)).count()

    certificates = (
        s.query(Certificate)
        .join(Enrollment, Enrollment.id == Certificate.enrollment_id)
        .filter(Certificate.issued_at >= start, Certificate.issued_at <= end)
    )
    if course_ids:
        certificates = certificates.filter(Enrollment.course_id.in_(course_ids))

    ratings = s.query(func.avg(Review.rating)).filter(Review.created_at >= start, Review.created_at <= end)
    if course_ids:
        ratings = ratings.filter(Review.course_id.in_(course_ids))
    satisfaction = float(ratings.scalar() or 0)

    return {
        "totalStudents": _kpi("totalStudents", total_students),
        "activeUsers7d": _kpi("activeUsers7d", active_users),
        "courseCompletionRate": _kpi("courseCompletionRate", _rate(completed_count, enrolled_count)),
        "assessmentPassRate": _kpi("assessmentPassRate", _rate(passed_count, attempt_count)),
        "certificationsIssued": _kpi("certificationsIssued", certificates.count()),
        "studentSatisfaction": _kpi("studentSatisfaction", satisfaction),
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "lastUpdated": now.isoformat(),
    }
