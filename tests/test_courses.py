"""Tests for course authoring: courses, chapters, lessons, publishing."""
import io

from app.academy.db import session_scope
from app.academy.modules.courses.models import Chapter, Course, Lesson, Review
from app.academy.modules.video_library.models import LessonVideo, Video


def _lecturer(client, make_user, login, email="lec@example.com"):
    uid = make_user(email, "lecturer")
    login(client, email)
    return uid


def test_create_course_generates_unique_slug(client, make_user, login):
    _lecturer(client, make_user, login)
    r = client.post("/api/courses", json={"title": "Data Science 101", "description": "Numbers"})
    assert r.status_code == 201
    assert r.json["course"]["slug"] == "data-science-101"
    assert r.json["course"]["is_published"] is False

    r = client.post("/api/courses", json={"title": "Data Science 101", "description": "Again"})
    assert r.status_code == 201
    assert r.json["course"]["slug"] == "data-science-101-1"


def test_create_course_validation(client, make_user, login):
    _lecturer(client, make_user, login)
    r = client.post("/api/courses", json={"title": "", "level": "expert", "price": -5})
    assert r.status_code == 400
    errors = r.json["errors"]
    assert "Title is required." in errors
    assert "Description is required." in errors
    assert any("Invalid level" in e for e in errors)
    assert "price cannot be negative." in errors


def test_student_cannot_create_course(client, make_user, login):
    make_user("stu@example.com")
    login(client, "stu@example.com")
    r = client.post("/api/courses", json={"title": "Nope", "description": "Nope"})
    assert r.status_code == 403


def test_publish_requires_a_lesson(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    empty = make_course(uid, title="Empty Course", layout=())
    r = client.post(f"/api/courses/{empty['course_id']}/publish")
    assert r.status_code == 400

    full = make_course(uid, title="Full Course", layout=(1,))
    r = client.post(f"/api/courses/{full['course_id']}/publish")
    assert r.status_code == 200
    assert r.json["course"]["is_published"] is True

    r = client.post(f"/api/courses/{full['course_id']}/unpublish")
    assert r.json["course"]["is_published"] is False


def test_listing_hides_drafts_from_students(app, client, make_user, login, make_course):
    lec = make_user("lec@example.com", "lecturer")
    make_course(lec, title="Draft Course")
    make_course(lec, title="Live Course", published=True)

    r = client.get("/api/courses")
    assert r.status_code == 200
    assert [c["title"] for c in r.json["courses"]] == ["Live Course"]
    assert r.json["total"] == 1
    assert r.json["totalPages"] == 1

    other = app.test_client()
    login(other, "lec@example.com")
    r = other.get("/api/courses")
    assert r.json["total"] == 2


def test_draft_course_is_404_for_outsiders(client, make_user, login, make_course):
    lec = make_user("lec@example.com", "lecturer")
    ids = make_course(lec, title="Secret")
    make_user("stu@example.com")
    login(client, "stu@example.com")
    assert client.get(f"/api/courses/{ids['course_id']}").status_code == 404


def test_course_details_include_sections(client, make_user, make_course):
    lec = make_user("lec@example.com", "lecturer")
    ids = make_course(lec, published=True, layout=(2, 1))
    r = client.get(f"/api/courses/{ids['course_id']}?details=true")
    assert r.status_code == 200
    sections = r.json["course"]["sections"]
    assert [len(s["lessons"]) for s in sections] == [2, 1]


def test_other_lecturer_cannot_edit(app, client, make_user, login, make_course):
    owner = make_user("owner@example.com", "lecturer")
    ids = make_course(owner)
    _lecturer(client, make_user, login, email="intruder@example.com")
    r = client.put(f"/api/courses/{ids['course_id']}", json={"title": "Mine now"})
    assert r.status_code == 403

    admin = app.test_client()
    make_user("root@example.com", "admin")
    login(admin, "root@example.com")
    r = admin.put(f"/api/courses/{ids['course_id']}", json={"title": "Renamed Course"})
    assert r.status_code == 200
    assert r.json["course"]["slug"] == "renamed-course"


def test_delete_course_cascades(app, client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(2,))
    r = client.delete(f"/api/courses/{ids['course_id']}")
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.query(Course).count() == 0
        assert s.query(Chapter).count() == 0
        assert s.query(Lesson).count() == 0


def test_chapter_crud_and_reorder(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(1,))
    cid = ids["course_id"]

    r = client.post(f"/api/courses/{cid}/chapters", json={"title": "Second"})
    assert r.status_code == 201
    second = r.json["chapter"]
    assert second["position"] == 2

    r = client.post(f"/api/courses/{cid}/chapters/reorder", json={"ids": [second["id"], ids["chapter_ids"][0]]})
    assert r.status_code == 200
    assert [c["id"] for c in r.json["chapters"]] == [second["id"], ids["chapter_ids"][0]]

    r = client.post(f"/api/courses/{cid}/chapters/reorder", json={"ids": [second["id"], 99999]})
    assert r.status_code == 400

    r = client.put(f"/api/chapters/{second['id']}", json={"title": "Renamed"})
    assert r.json["chapter"]["title"] == "Renamed"

    r = client.delete(f"/api/chapters/{second['id']}")
    assert r.status_code == 200
    r = client.get(f"/api/courses/{cid}/chapters")
    assert len(r.json["chapters"]) == 1


def test_lessons_append_in_order(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(0,))
    chapter_id = ids["chapter_ids"][0]

    first = client.post(f"/api/chapters/{chapter_id}/lessons", json={"title": "A", "type": "video"})
    second = client.post(f"/api/chapters/{chapter_id}/lessons", json={"title": "B"})
    assert first.status_code == second.status_code == 201
    assert first.json["lesson"]["order"] == 0
    assert second.json["lesson"]["order"] == 1
    assert second.json["lesson"]["type"] == "text"

    r = client.post(f"/api/chapters/{chapter_id}/lessons", json={"title": "C", "type": "podcast"})
    assert r.status_code == 400

    r = client.post(
        f"/api/chapters/{chapter_id}/lessons/reorder",
        json={"ids": [second.json["lesson"]["id"], first.json["lesson"]["id"]]},
    )
    assert [lesson["title"] for lesson in r.json["lessons"]] == ["B", "A"]


def test_next_and_previous_cross_chapters(client, make_user, make_course):
    lec = make_user("lec@example.com", "lecturer")
    ids = make_course(lec, published=True, layout=(2, 1))
    l1, l2, l3 = ids["lesson_ids"]

    assert client.get(f"/api/lessons/{l2}/next").json["lesson"]["id"] == l3
    assert client.get(f"/api/lessons/{l3}/previous").json["lesson"]["id"] == l2
    assert client.get(f"/api/lessons/{l3}/next").json["lesson"] is None
    assert client.get(f"/api/lessons/{l1}/previous").json["lesson"] is None


def test_lesson_update_and_delete(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(1,))
    lesson_id = ids["lesson_ids"][0]
    r = client.put(f"/api/lessons/{lesson_id}", json={"title": "Updated", "is_free_preview": True, "duration": 12})
    assert r.status_code == 200
    assert r.json["lesson"]["is_free_preview"] is True
    assert r.json["lesson"]["duration"] == 12

    assert client.delete(f"/api/lessons/{lesson_id}").status_code == 200
    assert client.get(f"/api/lessons/{lesson_id}").status_code == 404


def test_attach_video_is_idempotent(app, client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(1,))
    with session_scope(app) as s:
        v = Video(instructor_id=uid, title="Clip", file_url="/media/clip.mp4", usage_count=0)
        s.add(v)
        s.flush()
        video_id = v.id

    lesson_id = ids["lesson_ids"][0]
    r = client.put(f"/api/lessons/{lesson_id}/video", json={"video_id": video_id})
    assert r.status_code == 200
    assert r.json["linked"] is True
    assert r.json["lesson"]["content"]["video_id"] == video_id

    r = client.put(f"/api/lessons/{lesson_id}/video", json={"video_id": video_id})
    assert r.json["linked"] is False
    with session_scope(app) as s:
        assert s.get(Video, video_id).usage_count == 1


def test_landing_page_merge_and_hero_upload(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    cid = make_course(uid)["course_id"]

    r = client.put(f"/api/courses/{cid}/landing-page", json={"settings": {"headline": "Learn fast"}})
    assert r.status_code == 200
    r = client.put(f"/api/courses/{cid}/landing-page", json={"settings": {"cta": "Join"}})
    settings = r.json["settings"]
    assert settings["headline"] == "Learn fast"
    assert settings["cta"] == "Join"
    assert settings["updated_by"] == uid

    r = client.post(
        f"/api/courses/{cid}/landing-page/hero-image",
        data={"file": (io.BytesIO(b"\x89PNG fake"), "hero.png", "image/png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["url"].startswith("/media/courses/")

    r = client.post(
        f"/api/courses/{cid}/landing-page/hero-image",
        data={"file": (io.BytesIO(b"text"), "notes.txt", "text/plain")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400


def test_reviews_summary(app, client, make_user, make_course):
    lec = make_user("lec@example.com", "lecturer")
    a = make_user("a@example.com")
    b = make_user("b@example.com")
    cid = make_course(lec, published=True)["course_id"]
    with session_scope(app) as s:
        s.add_all([Review(course_id=cid, student_id=a, rating=5), Review(course_id=cid, student_id=b, rating=4)])

    r = client.get(f"/api/courses/{cid}/reviews")
    assert r.status_code == 200
    assert r.json["total_reviews"] == 2
    assert r.json["average_rating"] == 4.5


def test_chapter_positions_stay_unique_after_delete(client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    cid = make_course(uid, layout=())["course_id"]
    a = client.post(f"/api/courses/{cid}/chapters", json={"title": "A"}).json["chapter"]
    b = client.post(f"/api/courses/{cid}/chapters", json={"title": "B"}).json["chapter"]
    assert (a["position"], b["position"]) == (1, 2)

    client.delete(f"/api/chapters/{a['id']}")
    c = client.post(f"/api/courses/{cid}/chapters", json={"title": "C"}).json["chapter"]
    assert c["position"] == 3

    r = client.post(f"/api/courses/{cid}/chapters/reorder", json={"ids": [c["id"], b["id"]]})
    assert [(x["title"], x["position"]) for x in r.json["chapters"]] == [("C", 1), ("B", 2)]
    d = client.post(f"/api/courses/{cid}/chapters", json={"title": "D"}).json["chapter"]
    assert d["position"] == 3
    r = client.get(f"/api/courses/{cid}/chapters")
    assert [x["title"] for x in r.json["chapters"]] == ["C", "B", "D"]


def test_usage_count_follows_lesson_links(app, client, make_user, login, make_course):
    uid = _lecturer(client, make_user, login)
    ids = make_course(uid, layout=(2, 1))
    with session_scope(app) as s:
        clips = [Video(instructor_id=uid, title=t, file_url=f"/media/{t}.mp4", usage_count=0) for t in ("a", "b")]
        s.add_all(clips)
        s.flush()
        first, second = (v.id for v in clips)
    l1, l2, l3 = ids["lesson_ids"]

    client.put(f"/api/lessons/{l1}/video", json={"video_id": first})
    client.put(f"/api/lessons/{l2}/video", json={"video_id": first})
    client.put(f"/api/lessons/{l3}/video", json={"video_id": first})
    # Swapping the video on a lesson replaces its link.
    r = client.put(f"/api/lessons/{l1}/video", json={"video_id": second})
    assert r.json["linked"] is True

    def counts():
        with session_scope(app) as s:
            links = s.query(LessonVideo).filter(LessonVideo.lesson_id == l1).count()
            return links, s.get(Video, first).usage_count, s.get(Video, second).usage_count

    assert counts() == (1, 2, 1)

    assert client.delete(f"/api/lessons/{l2}").status_code == 200
    assert counts() == (1, 1, 1)

    assert client.delete(f"/api/chapters/{ids['chapter_ids'][0]}").status_code == 200
    assert counts() == (0, 1, 0)
    r = client.get(f"/api/video-library/{first}/analytics")
    assert r.json["usage_count"] == len(r.json["lessons"]) == 1
