"""Tests for platform settings, email templates and admin notifications."""
from app.academy.db import session_scope
from app.academy.modules.platform_settings.models import EmailTemplate, PlatformSetting
from scripts.init_db import DEFAULT_EMAIL_TEMPLATES, seed_admin, seed_email_templates


def _admin(client, make_user, login):
    uid = make_user("root@example.com", "admin")
    login(client, "root@example.com")
    return uid


def test_settings_upsert_and_read(app, client, make_user, login):
    uid = _admin(client, make_user, login)
    r = client.put(
        "/api/admin/settings",
        json={"category": "general", "settings": {"site_name": "Academy", "maintenance_mode": False}},
    )
    assert r.status_code == 200
    assert r.json == {"success": True, "updated": ["site_name", "maintenance_mode"]}

    r = client.put("/api/admin/settings", json={"category": "general", "settings": {"site_name": "Academy Pro"}})
    assert r.json["updated"] == ["site_name"]

    r = client.get("/api/admin/settings")
    assert r.json == {"maintenance_mode": False, "site_name": "Academy Pro"}
    with session_scope(app) as s:
        row = s.query(PlatformSetting).filter(PlatformSetting.setting_key == "site_name").one()
        assert row.updated_by == uid
        assert s.query(PlatformSetting).count() == 2


def test_settings_filter_by_category(client, make_user, login):
    _admin(client, make_user, login)
    client.put("/api/admin/settings", json={"category": "general", "settings": {"site_name": "Academy"}})
    client.put("/api/admin/settings", json={"category": "feature", "settings": {"enable_certificates": True}})
    r = client.get("/api/admin/settings?category=feature")
    assert r.json == {"enable_certificates": True}


def test_sensitive_settings_are_masked(client, make_user, login):
    _admin(client, make_user, login)
    r = client.put(
        "/api/admin/settings",
        json={"category": "payment", "settings": {"stripe_secret_key": "sk_live_abcdef1234", "stripe_public_key": "pk_test_xyz"}},
    )
    assert r.status_code == 200

    r = client.get("/api/admin/settings?category=payment")
    assert r.json["stripe_secret_key"] == "********1234"
    assert r.json["stripe_public_key"] == "pk_test_xyz"

    r = client.put(
        "/api/admin/settings",
        json={"category": "payment", "settings": {"stripe_secret_key": "********1234", "stripe_public_key": "pk_test_new"}},
    )
    assert r.json["updated"] == ["stripe_public_key"]

    r = client.get("/api/admin/payment/stripe/status")
    assert r.json == {"connected": True, "verified": False, "test_mode": True}


def test_settings_validation(client, make_user, login):
    _admin(client, make_user, login)
    assert client.put("/api/admin/settings", json={"settings": ["nope"]}).status_code == 400
    r = client.put("/api/admin/settings", json={"category": "cosmic", "settings": {"a": 1}})
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid category")
    r = client.put("/api/admin/settings", json={"settings": {"maintenance_mode": "yes", "tax_rate": -1}})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 2
    r = client.put("/api/admin/settings", json={"settings": {"support_email": "not-an-email"}})
    assert r.status_code == 400


def test_stripe_status_when_unconfigured(client, make_user, login):
    _admin(client, make_user, login)
    r = client.get("/api/admin/payment/stripe/status")
    assert r.json == {"connected": False, "verified": False, "test_mode": False}


def test_email_templates_seed_and_update(app, client, make_user, login):
    _admin(client, make_user, login)
    with session_scope(app) as s:
        assert seed_email_templates(s) == len(DEFAULT_EMAIL_TEMPLATES)
    with session_scope(app) as s:
        assert seed_email_templates(s) == 0

    r = client.get("/api/admin/email/templates")
    templates = r.json["templates"]
    assert len(templates) == len(DEFAULT_EMAIL_TEMPLATES)
    welcome = next(t for t in templates if t["template_key"] == "welcome")

    r = client.put(f"/api/admin/email/templates/{welcome['id']}", json={"subject": "Hello there", "is_active": False})
    assert r.status_code == 200
    assert r.json["template"]["subject"] == "Hello there"
    assert r.json["template"]["is_active"] is False

    assert client.put(f"/api/admin/email/templates/{welcome['id']}", json={"subject": " "}).status_code == 400
    assert client.put("/api/admin/email/templates/99999", json={"subject": "x"}).status_code == 404

    with session_scope(app) as s:
        seed_email_templates(s)
        assert s.query(EmailTemplate).filter(EmailTemplate.template_key == "welcome").one().subject == "Hello there"


def test_seed_admin_is_idempotent(app):
    with session_scope(app) as s:
        first = seed_admin(s, email="boss@example.com", password="secret-pass")
        s.flush()
        first_id = first.id
    with session_scope(app) as s:
        again = seed_admin(s, email="boss@example.com", password="other-pass")
        assert again.id == first_id
        assert again.role == "admin"


def test_notification_settings(client, make_user, login):
    _admin(client, make_user, login)
    r = client.get("/api/admin/notification-settings")
    assert r.json == {"recipient_emails": [], "preferences": {}}

    r = client.put(
        "/api/admin/notification-settings",
        json={"recipient_emails": ["Ops@Example.com"], "preferences": {"new_student": "daily"}},
    )
    assert r.status_code == 200
    assert r.json["recipient_emails"] == ["ops@example.com"]
    assert r.json["preferences"]["new_student"] == "daily"
    assert r.json["preferences"]["job_failed"] == "immediate"

    r = client.put(
        "/api/admin/notification-settings",
        json={"recipient_emails": ["bad"], "preferences": {"made_up": "daily", "new_student": "hourly"}},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Invalid settings"
    assert len(r.json["details"]) == 3

    r = client.get("/api/admin/notification-settings")
    assert r.json["preferences"]["new_student"] == "daily"


def test_notification_test_send(client, make_user, login):
    _admin(client, make_user, login)
    r = client.post(
        "/api/admin/notification-settings/test",
        json={"type": "new_student", "recipients": ["a@example.com", "b@example.com"]},
    )
    assert r.status_code == 200
    assert r.json["message"] == "Test email (new_student) sent to 2 recipients."
    r = client.post("/api/admin/notification-settings/test", json={"type": "nope", "recipients": []})
    assert r.status_code == 400


def test_lecturer_cannot_manage_settings(client, make_user, login):
    make_user("lec@example.com", "lecturer")
    login(client, "lec@example.com")
    assert client.get("/api/admin/settings").status_code == 403
    assert client.put("/api/admin/settings", json={"settings": {"a": 1}}).status_code == 403
