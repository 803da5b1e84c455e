from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.academy import auth, create_app
from app.academy.db import session_scope
from app.academy.models import Base, User
from app.academy.modules.courses.models import Chapter, Course, Lesson

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    for k in (
        "S3_ENDPOINT",
        "S3_REGION",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "PUBLIC_MEDIA_BASE_URL",
        "ADMIN_ALLOWED_EMAILS",
        "VIDEO_STORAGE_LIMIT_BYTES",
    ):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    yield app
    engine.dispose()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth._login_attempts.clear()
    yield
    auth._login_attempts.clear()


@pytest.fixture()
def make_user(app):
    def _make(email: str, role: str = "student", *, name: str | None = None, password: str = PASSWORD, **fields) -> int:
        with session_scope(app) as s:
            u = User(
                email=email,
                name=name or email.split("@")[0].title(),
                password_hash=generate_password_hash(password),
                role=role,
                **fields,
            )
            s.add(u)
            s.flush()
            return u.id

    return _make


@pytest.fixture()
def login():
    def _login(client, email: str, password: str = PASSWORD):
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.json
        client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]
        return r.json["user"]

    return _login


@pytest.fixture()
def make_course(app):
    """Course with chapters of lessons. `layout` is lessons-per-chapter, e.g. (2, 1)."""

    def _make(instructor_id: int, *, title: str = "Intro to Python", published: bool = False, layout=(2,)) -> dict:
        with session_scope(app) as s:
            course = Course(
                title=title,
                slug=title.lower().replace(" ", "-"),
                description="A course",
                instructor_id=instructor_id,
                price=Decimal("0"),
                is_published=published,
            )
            s.add(course)
            s.flush()
            chapter_ids, lesson_ids = [], []
            for ci, n in enumerate(layout):
                chapter = Chapter(course_id=course.id, title=f"Chapter {ci + 1}", position=ci + 1)
                s.add(chapter)
                s.flush()
                chapter_ids.append(chapter.id)
                for li in range(n):
                    lesson = Lesson(chapter_id=chapter.id, title=f"Lesson {ci + 1}.{li + 1}", type="text", position=li)
                    s.add(lesson)
                    s.flush()
                    lesson_ids.append(lesson.id)
            return {"course_id": course.id, "chapter_ids": chapter_ids, "lesson_ids": lesson_ids}

    return _make
