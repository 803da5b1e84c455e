from __future__ import annotations

import re
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from werkzeug.utils import secure_filename

from app.academy.audit import record_event
from app.academy.modules.courses.models import (
    COURSE_LEVELS,
    LESSON_TYPES,
    PAYMENT_TYPES,
    RECURRING_INTERVALS,
    Chapter,
    Course,
    Lesson,
    Review,
)
from app.academy.utils import payload_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.academy.models import User
    from app.academy.modules.video_library.models import Video
    from app.academy.storage import Storage

HERO_IMAGE_MAX_BYTES = 5 * 1024 * 1024
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """'Intro to Python 3!' -> 'intro-to-python-3'."""
    return _SLUG_STRIP.sub("-", (title or "").lower()).strip("-")


def unique_slug(s: "Session", title: str, *, exclude_id: int | None = None) -> str:
    base = slugify(title) or "course"
    candidate = base
    n = 0
    while True:
        q = s.query(Course.id).filter(Course.slug == candidate)
        if exclude_id is not None:
            q = q.filter(Course.id != exclude_id)
        if q.first() is None:
            return candidate
        n += 1
        candidate = f"{base}-{n}"


def can_manage_course(user: "User", course: Course) -> bool:
    from app.academy.rbac import user_has_permission

    if user_has_permission(user, "courses.manage_any"):
        return True
    return user_has_permission(user, "courses.create") and course.instructor_id == user.id


def _parse_money(value: Any, field: str, errors: list[str]) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        d = Decimal(str(value))
    except InvalidOperation:
        errors.append(f"{field} must be a number.")
        return None
    if d < 0:
        errors.append(f"{field} cannot be negative.")
        return None
    return d


def validate_course_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate course create/update payload. Returns list of errors."""
    errors: list[str] = []
    if not partial or "title" in payload:
        if not payload_text(payload, "title").strip():
            errors.append("Title is required.")
    if not partial and not payload_text(payload, "description").strip():
        errors.append("Description is required.")
    level = payload.get("level")
    if level and level not in COURSE_LEVELS:
        errors.append(f"Invalid level. Must be one of: {', '.join(COURSE_LEVELS)}")
    payment_type = payload.get("payment_type")
    if payment_type and payment_type not in PAYMENT_TYPES:
        errors.append(f"Invalid payment_type. Must be one of: {', '.join(PAYMENT_TYPES)}")
    interval = payload.get("recurring_interval")
    if interval and interval not in RECURRING_INTERVALS:
        errors.append(f"Invalid recurring_interval. Must be one of: {', '.join(RECURRING_INTERVALS)}")
    _parse_money(payload.get("price"), "price", errors)
    _parse_money(payload.get("recurring_price"), "recurring_price", errors)
    for key in ("duration", "installment_count"):
        v = payload.get(key)
        if v is not None and (not isinstance(v, int) or isinstance(v, bool) or v < 0):
            errors.append(f"{key} must be a non-negative integer.")
    if "settings" in payload and payload["settings"] is not None and not isinstance(payload["settings"], dict):
        errors.append("settings must be an object.")
    return errors


def query_courses(s: "Session", filters: dict) -> "Query":
    q = s.query(Course)
    if filters.get("instructor_id"):
        q = q.filter(Course.instructor_id == filters["instructor_id"])
    if filters.get("category"):
        q = q.filter(Course.category == filters["category"])
    if filters.get("level"):
        q = q.filter(Course.level == filters["level"])
    if filters.get("is_published") is not None:
        q = q.filter(Course.is_published == filters["is_published"])
    if filters.get("search"):
        like = f"%{filters['search']}%"
        q = q.filter(or_(Course.title.ilike(like), Course.description.ilike(like)))
    return q.order_by(Course.created_at.desc(), Course.id.desc())


_COURSE_TEXT_FIELDS = ("description", "image", "category", "level", "payment_type", "recurring_interval")


def create_course(s: "Session", payload: dict, user: "User") -> Course:
    """Create a draft course owned by `user`."""
    now = datetime.utcnow()
    title = payload_text(payload, "title").strip()
    course = Course(
        title=title,
        slug=unique_slug(s, title),
        description=payload_text(payload, "description").strip() or None,
        image=payload_text(payload, "image").strip() or None,
        instructor_id=user.id,
        category=payload_text(payload, "category").strip() or None,
        level=payload.get("level") or None,
        price=_parse_money(payload.get("price"), "price", []) or Decimal("0"),
        is_published=False,
        duration=0,
        payment_type=payload.get("payment_type") or "one-time",
        recurring_interval=payload.get("recurring_interval") or None,
        recurring_price=_parse_money(payload.get("recurring_price"), "recurring_price", []),
        installment_count=payload.get("installment_count"),
        settings=payload.get("settings") or {},
        created_at=now,
        updated_at=now,
    )
    s.add(course)
    s.flush()
    record_event(
        s,
        actor=user,
        action="course.create",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"title": course.title, "slug": course.slug},
    )
    return course


def update_course(s: "Session", course: Course, payload: dict, user: "User") -> Course:
    changes: dict[str, Any] = {}

    if "title" in payload:
        new_title = payload_text(payload, "title").strip()
        if new_title and new_title != course.title:
            changes["title"] = {"old": course.title, "new": new_title}
            course.title = new_title
            course.slug = unique_slug(s, new_title, exclude_id=course.id)

    for field in _COURSE_TEXT_FIELDS:
        if field in payload:
            new_val = payload.get(field)
            new_val = new_val.strip() if isinstance(new_val, str) else new_val
            new_val = new_val or None
            if new_val != getattr(course, field):
                changes[field] = {"old": getattr(course, field), "new": new_val}
                setattr(course, field, new_val)
    if course.payment_type is None:
        course.payment_type = "one-time"

    for field in ("price", "recurring_price"):
        if field in payload:
            new_money = _parse_money(payload.get(field), field, [])
            if field == "price" and new_money is None:
                new_money = Decimal("0")
            if new_money != getattr(course, field):
                changes[field] = {"old": str(getattr(course, field)), "new": str(new_money)}
                setattr(course, field, new_money)

    for field in ("duration", "installment_count"):
        if field not in payload:
            continue
        new_int = payload.get(field)
        if field == "duration" and new_int is None:
            new_int = 0
        if new_int != getattr(course, field):
            changes[field] = {"old": getattr(course, field), "new": new_int}
            setattr(course, field, new_int)

    if "settings" in payload:
        course.settings = payload.get("settings") or {}
        changes["settings"] = "updated"

    course.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="course.update",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"changes": changes},
    )
    return course


def delete_course(s: "Session", course: Course, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="course.delete",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"title": course.title, "slug": course.slug},
    )
    release_video_links(s, [lesson.id for chapter in course.chapters for lesson in chapter.lessons])
    s.delete(course)


def lesson_count(s: "Session", course_id: int) -> int:
    return (
        s.query(func.count(Lesson.id))
        .join(Chapter, Chapter.id == Lesson.chapter_id)
        .filter(Chapter.course_id == course_id)
        .scalar()
        or 0
    )


def set_published(s: "Session", course: Course, published: bool, user: "User") -> Course:
    if published and lesson_count(s, course.id) == 0:
        raise ValueError("Add at least one lesson before publishing.")
    if course.is_published != published:
        course.is_published = published
        course.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="course.publish" if published else "course.unpublish",
            entity_type="Course",
            entity_id=str(course.id),
        )
    return course


# ---------- Landing page ----------
def update_landing_page(s: "Session", course: Course, settings: dict, user: "User") -> dict:
    """Shallow-merge landing page keys into the stored settings."""
    merged = dict(course.landing_page_settings or {})
    merged.update(settings)
    merged["updated_at"] = datetime.utcnow().isoformat()
    merged["updated_by"] = user.id
    course.landing_page_settings = merged
    course.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="course.landing_page.update",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"keys": sorted(settings.keys())},
    )
    return merged


def upload_hero_image(
    s: "Session",
    storage: "Storage",
    course: Course,
    *,
    data: bytes,
    filename: str,
    content_type: str,
    user: "User",
) -> str:
    if not content_type.startswith("image/"):
        raise ValueError("Hero image must be an image file.")
    if len(data) > HERO_IMAGE_MAX_BYTES:
        raise ValueError("Hero image must be 5MB or smaller.")
    safe_name = secure_filename(filename) or "hero.bin"
    key = f"courses/{course.id}/hero/{uuid.uuid4().hex}_{safe_name}"
    storage.put_bytes(key, data, content_type=content_type)
    url = storage.public_url(key)
    update_landing_page(s, course, {"hero_image_url": url}, user)
    return url


# ---------- Chapters ----------
def validate_chapter_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "title" in payload:
        title = payload_text(payload, "title").strip()
        if not title:
            errors.append("Title is required.")
        elif len(title) > 255:
            errors.append("Title must be 255 characters or fewer.")
    return errors


def create_chapter(s: "Session", course: Course, payload: dict, user: "User") -> Chapter:
    last = s.query(func.max(Chapter.position)).filter(Chapter.course_id == course.id).scalar() or 0
    chapter = Chapter(
        course_id=course.id,
        title=payload_text(payload, "title").strip(),
        info=payload_text(payload, "info").strip() or None,
        position=last + 1,
    )
    s.add(chapter)
    s.flush()
    course.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="chapter.create",
        entity_type="Chapter",
        entity_id=str(chapter.id),
        metadata={"course_id": course.id, "title": chapter.title},
    )
    return chapter


def update_chapter(s: "Session", chapter: Chapter, payload: dict, user: "User") -> Chapter:
    if "title" in payload:
        chapter.title = payload_text(payload, "title").strip()
    if "info" in payload:
        chapter.info = payload_text(payload, "info").strip() or None
    chapter.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="chapter.update", entity_type="Chapter", entity_id=str(chapter.id))
    return chapter


def delete_chapter(s: "Session", chapter: Chapter, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="chapter.delete",
        entity_type="Chapter",
        entity_id=str(chapter.id),
        metadata={"course_id": chapter.course_id, "title": chapter.title},
    )
    release_video_links(s, [lesson.id for lesson in chapter.lessons])
    s.delete(chapter)


def _parse_id_list(ids: Any) -> list[int]:
    if not isinstance(ids, list) or not ids:
        raise ValueError("ids must be a non-empty list.")
    out: list[int] = []
    for raw in ids:
        try:
            out.append(int(raw))
        except (TypeError, ValueError) as e:
            raise ValueError("ids must contain integers.") from e
    if len(set(out)) != len(out):
        raise ValueError("ids must not contain duplicates.")
    return out


def reorder_chapters(s: "Session", course: Course, ids: Any, user: "User") -> list[Chapter]:
    """Assign 1-based positions by list order. Every id must belong to the course."""
    wanted = _parse_id_list(ids)
    by_id = {c.id: c for c in course.chapters}
    if set(wanted) - set(by_id):
        raise ValueError("One or more chapters do not belong to this course.")
    for index, chapter_id in enumerate(wanted):
        by_id[chapter_id].position = index + 1
    record_event(
        s,
        actor=user,
        action="chapter.reorder",
        entity_type="Course",
        entity_id=str(course.id),
        metadata={"order": wanted},
    )
    s.flush()
    return sorted(by_id.values(), key=lambda c: c.position)


# ---------- Lessons ----------
_LESSON_FLAGS = ("is_free_preview", "is_prerequisite", "enable_discussions", "is_downloadable")


def validate_lesson_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "title" in payload:
        if not payload_text(payload, "title").strip():
            errors.append("Title is required.")
    if not partial or "type" in payload:
        lesson_type = payload.get("type")
        if lesson_type not in LESSON_TYPES:
            errors.append(f"Invalid lesson type. Must be one of: {', '.join(LESSON_TYPES)}")
    if "content" in payload and payload["content"] is not None and not isinstance(payload["content"], dict):
        errors.append("content must be an object.")
    duration = payload.get("duration")
    if duration is not None and (not isinstance(duration, int) or isinstance(duration, bool) or duration < 0):
        errors.append("duration must be a non-negative integer.")
    for flag in _LESSON_FLAGS:
        if flag in payload and not isinstance(payload[flag], bool):
            errors.append(f"{flag} must be a boolean.")
    return errors


def _apply_lesson_fields(lesson: Lesson, payload: dict) -> None:
    if "title" in payload:
        lesson.title = payload_text(payload, "title").strip()
    if "type" in payload:
        lesson.type = payload["type"]
    if "content" in payload:
        lesson.content = payload.get("content") or {}
    if "description" in payload:
        lesson.description = payload_text(payload, "description").strip() or None
    if "downloadable_file" in payload:
        lesson.downloadable_file = payload_text(payload, "downloadable_file").strip() or None
    if "duration" in payload:
        lesson.duration = payload.get("duration") or 0
    for flag in _LESSON_FLAGS:
        if flag in payload:
            setattr(lesson, flag, payload[flag])


def create_lesson(s: "Session", chapter: Chapter, payload: dict, user: "User") -> Lesson:
    last = s.query(func.max(Lesson.position)).filter(Lesson.chapter_id == chapter.id).scalar()
    lesson = Lesson(chapter_id=chapter.id, position=(last + 1) if last is not None else 0, content={})
    _apply_lesson_fields(lesson, payload)
    s.add(lesson)
    s.flush()
    record_event(
        s,
        actor=user,
        action="lesson.create",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"chapter_id": chapter.id, "type": lesson.type, "title": lesson.title},
    )
    return lesson


def update_lesson(s: "Session", lesson: Lesson, payload: dict, user: "User") -> Lesson:
    _apply_lesson_fields(lesson, payload)
    lesson.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="lesson.update",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"fields": sorted(k for k in payload if k != "csrf_token")},
    )
    return lesson


def delete_lesson(s: "Session", lesson: Lesson, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="lesson.delete",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"chapter_id": lesson.chapter_id, "title": lesson.title},
    )
    release_video_links(s, [lesson.id])
    s.delete(lesson)


def reorder_lessons(s: "Session", chapter: Chapter, ids: Any, user: "User") -> list[Lesson]:
    wanted = _parse_id_list(ids)
    by_id = {lesson.id: lesson for lesson in chapter.lessons}
    if set(wanted) - set(by_id):
        raise ValueError("One or more lessons do not belong to this chapter.")
    for index, lesson_id in enumerate(wanted):
        by_id[lesson_id].position = index
    record_event(
        s,
        actor=user,
        action="lesson.reorder",
        entity_type="Chapter",
        entity_id=str(chapter.id),
        metadata={"order": wanted},
    )
    s.flush()
    return sorted(by_id.values(), key=lambda lesson: lesson.position)


def course_lessons_in_order(s: "Session", course_id: int) -> list[Lesson]:
    return (
        s.query(Lesson)
        .join(Chapter, Chapter.id == Lesson.chapter_id)
        .filter(Chapter.course_id == course_id)
        .order_by(Chapter.position.asc(), Chapter.id.asc(), Lesson.position.asc(), Lesson.id.asc())
        .all()
    )


def adjacent_lesson(s: "Session", lesson: Lesson, *, direction: int) -> Lesson | None:
    """Next (+1) or previous (-1) lesson in course order, crossing chapter boundaries."""
    ordered = course_lessons_in_order(s, lesson.chapter.course_id)
    ids = [x.id for x in ordered]
    idx = ids.index(lesson.id) + direction
    if idx < 0 or idx >= len(ordered):
        return None
    return ordered[idx]


def release_video_links(s: "Session", lesson_ids: list[int]) -> None:
    """Drop the video links of these lessons, decrementing each video's usage_count."""
    from app.academy.modules.video_library.models import LessonVideo, Video

    if not lesson_ids:
        return
    counts = (
        s.query(LessonVideo.video_id, func.count(LessonVideo.lesson_id))
        .filter(LessonVideo.lesson_id.in_(lesson_ids))
        .group_by(LessonVideo.video_id)
        .all()
    )
    for video_id, n in counts:
        video = s.get(Video, video_id)
        if video is not None:
            video.usage_count = max((video.usage_count or 0) - n, 0)
    s.query(LessonVideo).filter(LessonVideo.lesson_id.in_(lesson_ids)).delete(synchronize_session=False)


def attach_video(s: "Session", lesson: Lesson, video: "Video", user: "User") -> bool:
    """Link a library video to a lesson. Returns False when the link already existed."""
    from app.academy.modules.video_library.models import LessonVideo

    existing = (
        s.query(LessonVideo)
        .filter(LessonVideo.lesson_id == lesson.id, LessonVideo.video_id == video.id)
        .one_or_none()
    )
    if existing:
        return False
    release_video_links(s, [lesson.id])
    s.add(LessonVideo(lesson_id=lesson.id, video_id=video.id))
    video.usage_count = (video.usage_count or 0) + 1
    content = dict(lesson.content or {})
    content["video_id"] = video.id
    content["video_url"] = video.file_url
    lesson.content = content
    record_event(
        s,
        actor=user,
        action="lesson.video.attach",
        entity_type="Lesson",
        entity_id=str(lesson.id),
        metadata={"video_id": video.id},
    )
    return True


# ---------- Reviews ----------
def review_summary(s: "Session", course_id: int) -> dict:
    reviews = s.query(Review).filter(Review.course_id == course_id).order_by(Review.created_at.desc()).all()
    count = len(reviews)
    average = round(sum(r.rating for r in reviews) / count, 2) if count else 0
    return {"reviews": [r.to_dict() for r in reviews], "average_rating": average, "total_reviews": count}
