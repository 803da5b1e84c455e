import json

import pytest

from app.academy.audit import record_event
from app.academy.db import session_scope


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_is_plain_text(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nowhere")
    assert r.status_code == 404
    assert "error" in r.json


def test_missing_media_is_404(client):
    assert client.get("/media/nothing/here.png").status_code == 404


def test_login_and_admin_stats(client, make_user, make_course, login):
    lec = make_user("lec@example.com", "lecturer")
    make_user("stu@example.com")
    make_course(lec, title="Live", published=True)
    make_course(lec, title="Draft")

    # Anonymous is rejected
    assert client.get("/api/admin/stats/general").status_code == 401

    make_user("admin@example.com", "admin")
    login(client, "admin@example.com")
    r = client.get("/api/admin/stats/general")
    assert r.status_code == 200
    assert r.json == {"totalUsers": 1, "activeCourses": 1}


def test_audit_log_filters(client, make_user, login):
    make_user("admin@example.com", "admin")
    login(client, "admin@example.com")
    client.put("/api/admin/settings", json={"settings": {"site_name": "Academy"}})

    r = client.get("/api/admin/audit?action=settings")
    assert r.status_code == 200
    assert [e["action"] for e in r.json["events"]] == ["settings.update"]

    r = client.get("/api/admin/audit?actor_email=admin@")
    assert {e["action"] for e in r.json["events"]} == {"auth.login", "settings.update"}

    assert client.get("/api/admin/audit?date_from=yesterday").status_code == 400
    r = client.get("/api/admin/audit?date_from=2000-01-01&date_to=2000-01-31")
    assert r.json["events"] == []


def test_audit_entity_filters_and_actor_role(app, client, make_user, login, make_course):
    uid = make_user("admin@example.com", "admin")
    login(client, "admin@example.com")
    ids = make_course(uid)
    client.post(f"/api/courses/{ids['course_id']}/publish")

    r = client.get(f"/api/admin/audit?entity_type=Course&entity_id={ids['course_id']}")
    assert r.status_code == 200
    events = r.json["events"]
    assert [e["action"] for e in events] == ["course.publish"]
    assert json.loads(events[0]["metadata_json"])["actor_role"] == "admin"

    assert client.get("/api/admin/audit?entity_type=Device").status_code == 400


def test_audit_rejects_unknown_entity_type(app):
    with session_scope(app) as s:
        with pytest.raises(ValueError):
            record_event(s, actor=None, action="device.register", entity_type="Device", entity_id="1")
