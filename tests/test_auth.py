"""Tests for session auth, CSRF and role gating."""
from app.academy.auth import FORGOT_PASSWORD_MESSAGE, issue_reset_token, issue_verification_token
from app.academy.db import session_scope
from app.academy.models import AuditEvent, EmailVerificationToken, LoginAttempt, User, UserSession


def test_session_requires_login(client):
    r = client.get("/api/auth/session")
    assert r.status_code == 401


def test_login_returns_user_and_csrf(client, make_user):
    make_user("ana@example.com", "lecturer")
    r = client.post("/api/auth/login", json={"email": "ANA@example.com ", "password": "password123"})
    assert r.status_code == 200
    assert r.json["user"]["email"] == "ana@example.com"
    assert r.json["user"]["role"] == "lecturer"
    assert r.json["csrf_token"]

    r = client.get("/api/auth/session")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "ana@example.com"


def test_login_accepts_form_post(client, make_user):
    make_user("form@example.com")
    r = client.post("/api/auth/login", data={"email": "form@example.com", "password": "password123"})
    assert r.status_code == 200


def test_login_bad_password_records_attempt(app, client, make_user):
    make_user("ana@example.com")
    r = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"

    with session_scope(app) as s:
        attempt = s.query(LoginAttempt).one()
        assert attempt.success is False
        assert attempt.failure_reason == "bad_password"
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_suspended_account_forbidden(client, make_user):
    from datetime import datetime

    make_user("gone@example.com", deleted_at=datetime.utcnow())
    # Wrong password stays generic.
    r = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "wrong-guess"})
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials"

    r = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["error"] == "Account suspended"


def test_login_rate_limited_after_five_attempts(client, make_user):
    make_user("ana@example.com")
    for _ in range(5):
        r = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "nope-nope"})
        assert r.status_code == 401
    r = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "password123"})
    assert r.status_code == 429


def test_logout_revokes_server_session(app, client, make_user, login):
    make_user("ana@example.com")
    login(client, "ana@example.com")
    r = client.post("/api/auth/logout")
    assert r.status_code == 200
    assert client.get("/api/auth/session").status_code == 401
    with session_scope(app) as s:
        assert s.query(UserSession).count() == 0


def test_deleted_session_row_invalidates_cookie(app, client, make_user, login):
    make_user("ana@example.com")
    login(client, "ana@example.com")
    with session_scope(app) as s:
        s.query(UserSession).delete()
    assert client.get("/api/auth/session").status_code == 401


def test_register_creates_student(client):
    r = client.post(
        "/api/auth/register",
        json={"email": "new@example.com", "name": "New Person", "password": "longenough"},
    )
    assert r.status_code == 201
    assert r.json["user"]["role"] == "student"

    r = client.post(
        "/api/auth/register",
        json={"email": "new@example.com", "name": "Again", "password": "longenough"},
    )
    assert r.status_code == 409


def test_register_validates_input(client):
    r = client.post("/api/auth/register", json={"email": "not-an-email", "name": "", "password": "short"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_forgot_password_does_not_leak_accounts(client, make_user):
    make_user("ana@example.com")
    known = client.post("/api/auth/forgot-password", json={"email": "ana@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json["message"] == unknown.json["message"] == FORGOT_PASSWORD_MESSAGE


def test_reset_password_with_token(app, client, make_user):
    uid = make_user("ana@example.com")
    with session_scope(app) as s:
        raw = issue_reset_token(s, s.get(User, uid))

    r = client.post("/api/auth/reset-password", json={"token": raw, "password": "brand-new-pass"})
    assert r.status_code == 200

    r = client.post("/api/auth/reset-password", json={"token": raw, "password": "another-pass"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid or expired reset token"

    r = client.post("/api/auth/login", json={"email": "ana@example.com", "password": "brand-new-pass"})
    assert r.status_code == 200


def test_mutation_without_csrf_rejected(client, make_user, login):
    make_user("lec@example.com", "lecturer")
    login(client, "lec@example.com")
    client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/api/courses", json={"title": "T", "description": "D"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_csrf_token_accepted_in_json_body(client, make_user, login):
    make_user("lec@example.com", "lecturer")
    login(client, "lec@example.com")
    token = client.environ_base.pop("HTTP_X_CSRF_TOKEN")
    r = client.post("/api/courses", json={"title": "T", "description": "D", "csrf_token": token})
    assert r.status_code == 201


def test_student_cannot_reach_admin_routes(client, make_user, login):
    make_user("stu@example.com")
    login(client, "stu@example.com")
    assert client.get("/api/admin/users").status_code == 403
    assert client.get("/api/admin/settings").status_code == 403
    assert client.get("/api/video-library").status_code == 403


def test_anonymous_admin_route_is_401(client):
    r = client.get("/api/admin/users")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized"


def test_admin_outside_allowlist_is_demoted(app, client, make_user, login):
    make_user("root@example.com", "admin")
    app.config["ADMIN_ALLOWED_EMAILS"] = ("someone-else@example.com",)
    login(client, "root@example.com")
    assert client.get("/api/admin/users").status_code == 403

    app.config["ADMIN_ALLOWED_EMAILS"] = ("root@example.com",)
    assert client.get("/api/admin/users").status_code == 200


def test_non_text_credentials_are_rejected(client, make_user):
    make_user("ana@example.com")
    r = client.post("/api/auth/login", json={"email": ["ana@example.com"], "password": "password123"})
    assert r.status_code == 400
    assert r.json["error"] == "email must be a string."
    r = client.post("/api/auth/register", json={"email": "new@example.com", "name": "New", "password": 12345678})
    assert r.status_code == 400
    assert client.post("/api/auth/forgot-password", json=["ana@example.com"]).status_code == 400


def _verification_token(app, uid):
    with app.app_context(), session_scope(app) as s:
        return issue_verification_token(s, s.get(User, uid))


def test_register_issues_verification_token(app, client):
    r = client.post(
        "/api/auth/register",
        json={"email": "new@example.com", "name": "New Person", "password": "longenough"},
    )
    assert r.status_code == 201
    with session_scope(app) as s:
        token = s.query(EmailVerificationToken).one()
        assert token.email == "new@example.com"
        assert token.verified_at is None


def test_verify_email_is_single_use(app, client, make_user):
    uid = make_user("ana@example.com")
    raw = _verification_token(app, uid)

    r = client.post("/api/auth/verify-email", json={"token": raw})
    assert r.status_code == 200
    assert r.json == {"success": True, "message": "Email verified successfully"}
    with session_scope(app) as s:
        assert s.get(User, uid).is_email_verified is True
        assert s.query(EmailVerificationToken).one().verified_at is not None

    r = client.post("/api/auth/verify-email", json={"token": raw})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid or expired verification token"


def test_verify_email_rejects_bad_tokens(app, client, make_user):
    from datetime import datetime, timedelta

    uid = make_user("ana@example.com")
    assert client.post("/api/auth/verify-email", json={}).status_code == 400
    assert client.post("/api/auth/verify-email", json={"token": "nonsense"}).status_code == 400

    expired = _verification_token(app, uid)
    with session_scope(app) as s:
        s.query(EmailVerificationToken).update({"expires_at": datetime.utcnow() - timedelta(minutes=1)})
    r = client.post("/api/auth/verify-email", json={"token": expired})
    assert r.status_code == 400

    # Token for an address the user no longer has.
    stale = _verification_token(app, uid)
    with session_scope(app) as s:
        s.get(User, uid).email = "moved@example.com"
    r = client.post("/api/auth/verify-email", json={"token": stale})
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.get(User, uid).is_email_verified is False
