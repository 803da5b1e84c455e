from __future__ import annotations

import csv
import io
import json
import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING

from werkzeug.security import check_password_hash, generate_password_hash
from werkzeug.utils import secure_filename

from app.academy.audit import record_event
from app.academy.auth import issue_verification_token, revoke_user_sessions
from app.academy.models import ROLE_ADMIN, User, UserSession
from app.academy.modules.account.models import PROFILE_TEXT_FIELDS, UserProfile
from app.academy.modules.enrollments.models import Certificate, Enrollment
from app.academy.utils import ConflictError, is_valid_email, payload_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.academy.storage import Storage

AVATAR_MAX_BYTES = 2 * 1024 * 1024
EXPORT_CSV_HEADER = ["User ID", "Email", "Name", "Profile Data"]


class InvalidPassword(Exception):
    """The caller's current password did not match; maps to 401."""


def get_or_create_profile(s: "Session", user: User) -> UserProfile:
    profile = s.query(UserProfile).filter(UserProfile.user_id == user.id).one_or_none()
    if profile is None:
        profile = UserProfile(user_id=user.id, timezone="UTC", language="en", social_links={}, preferences={})
        s.add(profile)
        s.flush()
    return profile


def validate_basic_profile(payload: dict) -> list[str]:
    errors: list[str] = []
    if "name" in payload:
        name = payload_text(payload, "name").strip()
        if not name:
            errors.append("Name cannot be empty.")
        elif len(name) > 100:
            errors.append("Name must be 100 characters or fewer.")
    if "bio" in payload and len(payload_text(payload, "bio")) > 500:
        errors.append("Bio must be 500 characters or fewer.")
    return errors


def update_basic_profile(s: "Session", user: User, payload: dict) -> User:
    if "name" in payload:
        user.name = payload["name"].strip()
    if "bio" in payload:
        user.bio = payload_text(payload, "bio").strip() or None
    if "avatar" in payload:
        user.avatar = payload_text(payload, "avatar").strip() or None
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="profile.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"fields": sorted(k for k in ("name", "bio", "avatar") if k in payload)},
    )
    return user


def validate_profile_details(payload: dict) -> list[str]:
    errors: list[str] = []
    for field in PROFILE_TEXT_FIELDS:
        if field in payload and payload[field] is not None and not isinstance(payload[field], str):
            errors.append(f"{field} must be a string.")
    if "social_links" in payload and payload["social_links"] is not None:
        links = payload["social_links"]
        if not isinstance(links, dict) or not all(isinstance(v, str) for v in links.values()):
            errors.append("social_links must be an object of strings.")
    website = payload.get("website")
    if isinstance(website, str) and website and not website.startswith(("http://", "https://")):
        errors.append("website must start with http:// or https://")
    dob = payload.get("date_of_birth")
    if dob:
        try:
            date.fromisoformat(str(dob))
        except ValueError:
            errors.append("date_of_birth must be YYYY-MM-DD.")
    return errors


def update_profile_details(s: "Session", user: User, payload: dict) -> UserProfile:
    profile = get_or_create_profile(s, user)
    for field in PROFILE_TEXT_FIELDS:
        if field in payload:
            value = (payload.get(field) or "").strip() or None
            if field == "timezone":
                value = value or "UTC"
            elif field == "language":
                value = value or "en"
            setattr(profile, field, value)
    if "social_links" in payload:
        profile.social_links = payload.get("social_links") or {}
    if "date_of_birth" in payload:
        dob = payload.get("date_of_birth")
        profile.date_of_birth = date.fromisoformat(str(dob)) if dob else None
    profile.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="profile.details.update", entity_type="UserProfile", entity_id=str(user.id))
    return profile


def merge_preferences(s: "Session", user: User, preferences: dict) -> dict:
    profile = get_or_create_profile(s, user)
    merged = dict(profile.preferences or {})
    merged.update(preferences)
    profile.preferences = merged
    profile.updated_at = datetime.utcnow()
    return merged


def upload_avatar(s: "Session", storage: "Storage", user: User, *, data: bytes, filename: str, content_type: str) -> str:
    if not content_type.startswith("image/"):
        raise ValueError("Avatar must be an image file.")
    if len(data) > AVATAR_MAX_BYTES:
        raise ValueError("Avatar must be 2MB or smaller.")
    key = f"avatars/{user.id}/{uuid.uuid4().hex}_{secure_filename(filename) or 'avatar'}"
    storage.put_bytes(key, data, content_type=content_type)
    user.avatar = storage.public_url(key)
    user.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="profile.avatar.update", entity_type="User", entity_id=str(user.id))
    return user.avatar


def change_password(s: "Session", user: User, current: str, new: str, *, keep_token: str | None) -> None:
    if not current or not new:
        raise ValueError("Current password and new password are required")
    if len(new) < 8:
        raise ValueError("New password must be at least 8 characters")
    if not check_password_hash(user.password_hash, current):
        raise InvalidPassword("Current password is incorrect")
    user.password_hash = generate_password_hash(new)
    user.updated_at = datetime.utcnow()
    revoke_user_sessions(s, user.id, keep_token=keep_token)
    record_event(s, actor=user, action="account.password_change", entity_type="User", entity_id=str(user.id))


def change_email(s: "Session", user: User, new_email: str, password: str) -> User:
    new_email = (new_email or "").strip().lower()
    if not new_email or not is_valid_email(new_email):
        raise ValueError("A valid email is required")
    if not check_password_hash(user.password_hash, password or ""):
        raise InvalidPassword("Password is incorrect")
    if new_email == user.email:
        raise ValueError("New email is the same as the current email")
    if s.query(User.id).filter(User.email == new_email).first() is not None:
        raise ConflictError("An account with this email already exists.")
    old = user.email
    user.email = new_email
    user.is_email_verified = False
    user.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="account.email_change",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"old": old, "new": new_email},
    )
    issue_verification_token(s, user)
    return user


def list_sessions(s: "Session", user: User) -> list[UserSession]:
    return (
        s.query(UserSession)
        .filter(UserSession.user_id == user.id)
        .order_by(UserSession.last_activity.desc(), UserSession.id.desc())
        .all()
    )


def revoke_sessions(s: "Session", user: User, *, session_id: int | None, revoke_all: bool, current_token: str | None) -> int:
    """revoke_all keeps the caller's own session alive."""
    if revoke_all:
        n = revoke_user_sessions(s, user.id, keep_token=current_token)
    else:
        n = (
            s.query(UserSession)
            .filter(UserSession.user_id == user.id, UserSession.id == session_id)
            .delete(synchronize_session=False)
        )
        if n == 0:
            raise LookupError("Session not found")
    record_event(
        s,
        actor=user,
        action="account.sessions.revoke",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"revoked": n, "all": revoke_all},
    )
    return n


def export_data(s: "Session", user: User) -> dict:
    profile = get_or_create_profile(s, user)
    enrollments = s.query(Enrollment).filter(Enrollment.student_id == user.id).all()
    certificates = (
        s.query(Certificate)
        .join(Enrollment, Enrollment.id == Certificate.enrollment_id)
        .filter(Enrollment.student_id == user.id)
        .all()
    )
    return {
        "user": user.to_dict(),
        "profile": profile.to_dict(),
        "enrollments": [e.to_dict() for e in enrollments],
        "certificates": [c.to_dict() for c in certificates],
        "exported_at": datetime.utcnow().isoformat(),
    }


def export_csv(data: dict) -> str:
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(EXPORT_CSV_HEADER)
    user = data["user"]
    w.writerow([user["id"], user["email"], user["name"] or "", json.dumps(data["profile"], sort_keys=True)])
    return buf.getvalue()


def delete_account(s: "Session", user: User, password: str) -> None:
    """Hard delete. Enrollments, progress, sessions and the profile go with the user row."""
    if not check_password_hash(user.password_hash, password or ""):
        raise InvalidPassword("Password is incorrect")
    if user.role == ROLE_ADMIN:
        other_admins = (
            s.query(User.id)
            .filter(User.role == ROLE_ADMIN, User.id != user.id, User.deleted_at.is_(None))
            .count()
        )
        if other_admins == 0:
            raise ValueError("The last admin account cannot be deleted")
    record_event(
        s,
        actor=None,
        action="account.delete",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": user.email},
    )
    s.delete(user)
