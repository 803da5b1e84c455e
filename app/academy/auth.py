from __future__ import annotations

import hashlib
import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.academy.audit import record_event
from app.academy.db import db_session
from app.academy.models import (
    ROLE_STUDENT,
    EmailVerificationToken,
    LoginAttempt,
    PasswordResetToken,
    User,
    UserSession,
)
from app.academy.security import ensure_csrf_token
from app.academy.utils import get_json_payload, is_valid_email, json_error, payload_text

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_SESSION_TOUCH_INTERVAL = timedelta(minutes=1)
RESET_TOKEN_TTL = timedelta(hours=1)
VERIFY_TOKEN_TTL = timedelta(hours=24)
SESSION_TTL = timedelta(hours=8)
FORGOT_PASSWORD_MESSAGE = "If the email exists, a reset link has been sent"


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def describe_user_agent(ua: str) -> tuple[str, str | None, str | None]:
    """(device_type, browser, device_name) from a User-Agent header."""
    low = (ua or "").lower()
    if "ipad" in low or "tablet" in low:
        device_type = "tablet"
    elif "mobile" in low or "android" in low or "iphone" in low:
        device_type = "mobile"
    else:
        device_type = "desktop"

    browser = None
    for needle, label in (("edg/", "Edge"), ("opr/", "Opera"), ("chrome/", "Chrome"), ("firefox/", "Firefox"), ("safari/", "Safari")):
        if needle in low:
            browser = label
            break

    device_name = None
    for needle, label in (("iphone", "iPhone"), ("ipad", "iPad"), ("android", "Android"), ("windows", "Windows"), ("mac os", "Mac"), ("linux", "Linux")):
        if needle in low:
            device_name = label
            break
    return device_type, browser, device_name


def start_user_session(s: Session, user: User) -> UserSession:
    """Create the server-side session row and bind the cookie to it."""
    device_type, browser, device_name = describe_user_agent(request.headers.get("User-Agent", ""))
    now = datetime.utcnow()
    us = UserSession(
        user_id=user.id,
        session_token=secrets.token_urlsafe(32),
        device_type=device_type,
        browser=browser,
        device_name=device_name,
        ip_address=request.remote_addr,
        created_at=now,
        last_activity=now,
        expires_at=now + SESSION_TTL,
    )
    s.add(us)
    session.clear()
    session["user_id"] = user.id
    session["session_token"] = us.session_token
    session.permanent = True
    return us


def revoke_user_sessions(s: Session, user_id: int, *, keep_token: str | None = None) -> int:
    q = s.query(UserSession).filter(UserSession.user_id == user_id)
    if keep_token:
        q = q.filter(UserSession.session_token != keep_token)
    return q.delete(synchronize_session=False)


def issue_reset_token(s: Session, user: User) -> str:
    """Store a hashed reset token and return the raw value for the reset link."""
    raw = secrets.token_urlsafe(32)
    s.add(
        PasswordResetToken(
            user_id=user.id,
            token_hash=_hash_token(raw),
            expires_at=datetime.utcnow() + RESET_TOKEN_TTL,
        )
    )
    return raw


def issue_verification_token(s: Session, user: User) -> str:
    """Hashed single-use token confirming the user's current email address."""
    raw = secrets.token_urlsafe(32)
    s.add(
        EmailVerificationToken(
            user_id=user.id,
            email=user.email,
            token_hash=_hash_token(raw),
            expires_at=datetime.utcnow() + VERIFY_TOKEN_TTL,
        )
    )
    # Delivery of the link belongs to the mail provider integration.
    current_app.logger.info("Email verification token issued (user_id=%s)", user.id)
    return raw


def _clear_login() -> None:
    session.pop("user_id", None)
    session.pop("session_token", None)
    g.current_user = None


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie and its UserSession row.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.current_session = None

    user_id = session.get("user_id")
    token = session.get("session_token")
    if not user_id or not token:
        return

    s = db_session()
    user = s.get(User, int(user_id))
    us = s.query(UserSession).filter(UserSession.session_token == token).one_or_none()
    now = datetime.utcnow()
    if not user or not user.is_active or not us or us.user_id != user.id:
        _clear_login()
        return
    if us.expires_at and us.expires_at < now:
        s.delete(us)
        s.commit()
        _clear_login()
        return

    if now - us.last_activity > _SESSION_TOUCH_INTERVAL or user.last_active is None:
        us.last_activity = now
        us.expires_at = now + SESSION_TTL
        user.last_active = now
        s.commit()
    g.current_user = user
    g.current_session = us


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.get("/session")
def current_session():
    user = getattr(g, "current_user", None)
    if not user:
        return json_error("Unauthorized", 401)
    return jsonify({"user": user.to_dict(), "csrf_token": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    data = request.get_json(silent=True) if request.is_json else request.form
    data = data if hasattr(data, "get") else {}
    email = payload_text(data, "email").strip().lower()
    password = payload_text(data, "password")
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return json_error("Too many login attempts. Please wait 5 minutes.", 429)

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    failure = None
    if not user:
        failure = "unknown_email"
    elif not check_password_hash(user.password_hash, password):
        failure = "bad_password"
    elif not user.is_active:
        failure = "suspended"

    s.add(
        LoginAttempt(
            email=email,
            ip_address=ip,
            user_agent=(request.headers.get("User-Agent") or "")[:512] or None,
            success=failure is None,
            failure_reason=failure,
        )
    )

    if failure:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Account suspended" if failure == "suspended" else "Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        if failure == "suspended":
            return json_error("Account suspended", 403)
        return json_error("Invalid credentials", 401)

    start_user_session(s, user)
    _login_attempts[ip].clear()
    user.last_active = datetime.utcnow()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"user": user.to_dict(), "csrf_token": ensure_csrf_token()})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    token = session.get("session_token")
    if token:
        s.query(UserSession).filter(UserSession.session_token == token).delete(synchronize_session=False)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
    s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.post("/register")
def register():
    data = get_json_payload()
    email = payload_text(data, "email").strip().lower()
    name = payload_text(data, "name").strip()
    password = payload_text(data, "password")

    errors = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    if not name:
        errors.append("Name is required.")
    elif len(name) > 100:
        errors.append("Name must be 100 characters or fewer.")
    if len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if errors:
        return json_error(errors[0], 400, errors=errors)

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        return json_error("An account with this email already exists.", 409)

    now = datetime.utcnow()
    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(password),
        role=ROLE_STUDENT,
        created_at=now,
        updated_at=now,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    issue_verification_token(s, user)
    s.commit()
    return jsonify({"user": user.to_dict()}), 201


@bp.post("/forgot-password")
def forgot_password():
    data = get_json_payload()
    email = payload_text(data, "email").strip().lower()
    if not email:
        return json_error("Email is required", 400)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if user and user.is_active:
        issue_reset_token(s, user)
        record_event(s, actor=None, action="auth.password_reset_requested", entity_type="User", entity_id=str(user.id))
        s.commit()
        # Delivery of the link belongs to the mail provider integration.
        current_app.logger.info("Password reset token issued (user_id=%s)", user.id)
    return jsonify({"message": FORGOT_PASSWORD_MESSAGE})


@bp.post("/reset-password")
def reset_password():
    data = get_json_payload()
    raw = payload_text(data, "token").strip()
    password = payload_text(data, "password")
    if not raw or not password:
        return json_error("Token and password are required", 400)
    if len(password) < 8:
        return json_error("Password must be at least 8 characters", 400)

    s = db_session()
    now = datetime.utcnow()
    prt = s.query(PasswordResetToken).filter(PasswordResetToken.token_hash == _hash_token(raw)).one_or_none()
    if not prt or prt.used_at is not None or prt.expires_at < now:
        return json_error("Invalid or expired reset token", 400)
    user = s.get(User, prt.user_id)
    if not user or not user.is_active:
        return json_error("Invalid or expired reset token", 400)

    user.password_hash = generate_password_hash(password)
    user.updated_at = now
    prt.used_at = now
    revoke_user_sessions(s, user.id)
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"message": "Password has been reset"})


@bp.post("/verify-email")
def verify_email():
    raw = payload_text(get_json_payload(), "token").strip()
    if not raw:
        return json_error("Token is required", 400)

    s = db_session()
    now = datetime.utcnow()
    evt = s.query(EmailVerificationToken).filter(EmailVerificationToken.token_hash == _hash_token(raw)).one_or_none()
    if not evt or evt.verified_at is not None or evt.expires_at < now:
        return json_error("Invalid or expired verification token", 400)
    user = s.get(User, evt.user_id)
    # the address changed since the token was issued
    if not user or user.email != evt.email:
        return json_error("Invalid or expired verification token", 400)

    evt.verified_at = now
    user.is_email_verified = True
    user.updated_at = now
    record_event(s, actor=user, action="auth.email_verified", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"success": True, "message": "Email verified successfully"})
