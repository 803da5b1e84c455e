"""Tests for the instructor video library and the local upload flow."""
from pathlib import Path

import pytest

from app.academy.db import session_scope
from app.academy.modules.courses.models import Lesson
from app.academy.modules.video_library.models import LessonVideo, Video
from app.academy.storage import LocalStorage, StorageError


def _lecturer(client, make_user, login, email="lec@example.com"):
    uid = make_user(email, "lecturer")
    login(client, email)
    return uid


def _upload(client, uid, *, title="Lecture 1", data=b"fake-mp4-bytes"):
    r = client.post("/api/video-library/upload-token", json={"filename": "intro.MP4", "contentType": "video/mp4"})
    assert r.status_code == 200
    token = r.json
    assert token["path"] == f"{uid}/{token['videoId']}/{token['videoId']}.mp4"
    assert token["signedUrl"].startswith("/api/storage/upload/")

    r = client.put(token["signedUrl"], data=data, content_type="video/mp4")
    assert r.status_code == 200
    assert r.json["path"] == token["path"]

    r = client.post(
        "/api/video-library/upload",
        json={
            "file_path": token["path"],
            "title": title,
            "file_size": len(data),
            "duration": 90,
            "width": 1920,
            "height": 1080,
            "codecs": "avc1",
            "tags": ["intro", "python"],
        },
    )
    assert r.status_code == 201
    return r.json["video"]


def test_student_has_no_library_access(client, make_user, login):
    make_user("stu@example.com")
    login(client, "stu@example.com")
    assert client.get("/api/video-library").status_code == 403
    assert client.post("/api/video-library/upload-token", json={"filename": "a.mp4"}).status_code == 403


def test_upload_flow_creates_video(client, make_user, login):
    uid = _lecturer(client, make_user, login)
    video = _upload(client, uid)
    assert video["file_url"] == f"/media/{video['file_path']}"
    assert video["metadata"]["resolution"] == "1920x1080"
    assert video["metadata"]["videoCodec"] == "avc1"
    assert video["is_public"] is False

    r = client.get(video["file_url"])
    assert r.status_code == 200
    assert r.data == b"fake-mp4-bytes"

    r = client.get("/api/video-library")
    assert [v["id"] for v in r.json["videos"]] == [video["id"]]


def test_upload_token_validation(client, make_user, login):
    _lecturer(client, make_user, login)
    assert client.post("/api/video-library/upload-token", json={}).status_code == 400
    r = client.post("/api/video-library/upload-token", json={"filename": "noext"})
    assert r.status_code == 400
    r = client.post("/api/video-library/upload-token", json={"filename": "a.mp4", "resourceType": "audio"})
    assert r.status_code == 400


def test_thumbnail_token_reuses_video_key(client, make_user, login):
    uid = _lecturer(client, make_user, login)
    r = client.post(
        "/api/video-library/upload-token",
        json={"filename": "cover.jpg", "videoId": "abc123", "resourceType": "thumbnail"},
    )
    assert r.status_code == 200
    assert r.json["videoId"] == "abc123"
    assert r.json["path"].startswith(f"{uid}/abc123/thumbnail_")
    assert r.json["path"].endswith(".jpg")


def test_tampered_upload_token_rejected(client, make_user, login):
    _lecturer(client, make_user, login)
    r = client.put("/api/storage/upload/not-a-real-token", data=b"x")
    assert r.status_code == 400


def test_upload_requires_path_in_own_area(client, make_user, login):
    _lecturer(client, make_user, login)
    r = client.post("/api/video-library/upload", json={"file_path": "999/abc/abc.mp4", "title": "Stolen"})
    assert r.status_code == 403
    r = client.post("/api/video-library/upload", json={"title": "No path"})
    assert r.status_code == 400
    r = client.post("/api/video-library/upload", data="file_path=x&title=y")
    assert r.status_code == 400


def test_metadata_only_create_and_search(client, make_user, login):
    _lecturer(client, make_user, login)
    r = client.post("/api/video-library", json={"title": "Decorators deep dive", "description": "Python decorators", "tags": "python, advanced"})
    assert r.status_code == 201
    assert r.json["video"]["tags"] == ["python", "advanced"]
    client.post("/api/video-library", json={"title": "Cooking pasta", "description": "Not python"})
    assert client.post("/api/video-library", json={"title": " "}).status_code == 400

    r = client.get("/api/video-library/search?q=decorators")
    assert [v["title"] for v in r.json["videos"]] == ["Decorators deep dive"]
    r = client.get("/api/video-library/search?q=python")
    assert len(r.json["videos"]) == 2
    r = client.get("/api/video-library/search?tag=advanced")
    assert [v["title"] for v in r.json["videos"]] == ["Decorators deep dive"]


def test_private_videos_hidden_from_other_lecturers(app, client, make_user, login):
    _lecturer(client, make_user, login)
    private = client.post("/api/video-library", json={"title": "Mine"}).json["video"]
    public = client.post("/api/video-library", json={"title": "Shared", "is_public": True}).json["video"]

    other = app.test_client()
    _lecturer(other, make_user, login, email="other@example.com")
    assert other.get(f"/api/video-library/{private['id']}").status_code == 404
    assert other.get(f"/api/video-library/{public['id']}").status_code == 200
    assert other.put(f"/api/video-library/{public['id']}", json={"title": "Hijacked"}).status_code == 403
    assert other.delete(f"/api/video-library/{public['id']}").status_code == 403

    admin = app.test_client()
    make_user("root@example.com", "admin")
    login(admin, "root@example.com")
    r = admin.put(f"/api/video-library/{private['id']}", json={"title": "Moderated"})
    assert r.status_code == 200
    assert r.json["video"]["title"] == "Moderated"


def test_duplicate_copies_object(client, make_user, login):
    uid = _lecturer(client, make_user, login)
    video = _upload(client, uid)
    r = client.post(f"/api/video-library/{video['id']}/duplicate")
    assert r.status_code == 201
    copy = r.json["video"]
    assert copy["title"] == "Lecture 1 (Copy)"
    assert copy["file_path"] != video["file_path"]
    assert copy["file_path"].startswith(f"{uid}/")
    assert copy["usage_count"] == 0
    assert client.get(copy["file_url"]).data == b"fake-mp4-bytes"


def test_duplicate_fails_when_object_missing(app, client, make_user, login):
    uid = _lecturer(client, make_user, login)
    with session_scope(app) as s:
        v = Video(instructor_id=uid, title="Ghost", storage_key=f"{uid}/gone/gone.mp4", usage_count=0)
        s.add(v)
        s.flush()
        video_id = v.id
    r = client.post(f"/api/video-library/{video_id}/duplicate")
    assert r.status_code == 500
    assert r.json["error"] == "Failed to copy video file"
    with session_scope(app) as s:
        assert s.query(Video).count() == 1


def test_delete_removes_object_and_links(app, client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    video = _upload(client, uid)
    ids = make_course(uid, layout=(1,))
    client.put(f"/api/lessons/{ids['lesson_ids'][0]}/video", json={"video_id": video["id"]})

    r = client.get(f"/api/video-library/{video['id']}/analytics")
    assert r.json["usage_count"] == 1
    assert r.json["courses_count"] == 1
    assert r.json["lessons"] == [{"lesson_title": "Lesson 1.1", "course_title": "Intro to Python"}]

    assert client.delete(f"/api/video-library/{video['id']}").status_code == 200
    assert client.get(video["file_url"]).status_code == 404
    with session_scope(app) as s:
        assert s.query(Video).count() == 0
        assert s.query(LessonVideo).count() == 0
        assert s.query(Lesson).count() == 1


def test_library_settings_and_storage_usage(app, client, make_user, login):
    uid = _lecturer(client, make_user, login)
    r = client.get("/api/video-library/settings")
    assert r.json["settings"]["default_privacy"] == "private"

    r = client.post("/api/video-library/settings", json={"storage_limit_threshold": 150})
    assert r.status_code == 400
    r = client.post("/api/video-library/settings", json={"default_privacy": "public", "storage_limit_threshold": 50})
    assert r.status_code == 200
    assert r.json["settings"]["default_privacy"] == "public"

    r = client.post("/api/video-library", json={"title": "Now public by default"})
    assert r.json["video"]["is_public"] is True

    app.config["VIDEO_STORAGE_LIMIT_BYTES"] = 1000
    with session_scope(app) as s:
        s.add(Video(instructor_id=uid, title="Big", file_size=600, usage_count=0))
    r = client.get("/api/video-library/storage-usage")
    assert r.json["used"] == 600
    assert r.json["limit"] == 1000
    assert r.json["percentage"] == 60
    assert r.json["warning"] is True


def test_delete_survives_storage_failure(app, client, make_user, login, monkeypatch):
    uid = _lecturer(client, make_user, login)
    video = _upload(client, uid)

    def _read_only(self, missing_ok=False):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(Path, "unlink", _read_only)
    r = client.delete(f"/api/video-library/{video['id']}")
    assert r.status_code == 200
    assert r.json == {"success": True}
    with session_scope(app) as s:
        assert s.query(Video).count() == 0


def test_local_delete_wraps_os_errors(tmp_path, monkeypatch):
    storage = LocalStorage(root=tmp_path)
    storage.put_bytes("1/a.mp4", b"x")

    def _busy(self, missing_ok=False):
        raise OSError("device busy")

    monkeypatch.setattr(Path, "unlink", _busy)
    with pytest.raises(StorageError):
        storage.delete("1/a.mp4")
