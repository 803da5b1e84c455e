from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.academy.db import db_session
from app.academy.modules.courses.models import Chapter, Course, Lesson
from app.academy.modules.courses.service import (
    adjacent_lesson,
    attach_video,
    can_manage_course,
    create_chapter,
    create_course,
    create_lesson,
    delete_chapter,
    delete_course,
    delete_lesson,
    query_courses,
    reorder_chapters,
    reorder_lessons,
    review_summary,
    set_published,
    update_chapter,
    update_course,
    update_landing_page,
    update_lesson,
    upload_hero_image,
    validate_chapter_payload,
    validate_course_payload,
    validate_lesson_payload,
)
from app.academy.modules.video_library.models import Video
from app.academy.rbac import login_required, require_permission, user_has_permission
from app.academy.storage import StorageError, storage_from_config
from app.academy.utils import (
    current_user,
    get_json_payload,
    json_error,
    paginate,
    parse_bool,
    parse_int,
    parse_page_args,
    total_pages,
)

bp = Blueprint("courses", __name__)


def _get_course(course_id: int) -> Course:
    course = db_session().get(Course, course_id)
    if not course:
        abort(404, description="Course not found")
    return course


def _can_view(course: Course) -> bool:
    user = getattr(g, "current_user", None)
    return course.is_published or (user is not None and can_manage_course(user, course))


def _managed_course(course_id: int) -> Course:
    course = _get_course(course_id)
    if not can_manage_course(current_user(), course):
        abort(403)
    return course


def _managed_chapter(chapter_id: int) -> Chapter:
    chapter = db_session().get(Chapter, chapter_id)
    if not chapter:
        abort(404, description="Chapter not found")
    if not can_manage_course(current_user(), chapter.course):
        abort(403)
    return chapter


def _get_lesson(lesson_id: int) -> Lesson:
    lesson = db_session().get(Lesson, lesson_id)
    if not lesson:
        abort(404, description="Lesson not found")
    return lesson


def _managed_lesson(lesson_id: int) -> Lesson:
    lesson = _get_lesson(lesson_id)
    if not can_manage_course(current_user(), lesson.chapter.course):
        abort(403)
    return lesson


# ---------- Courses ----------
@bp.get("/courses")
def courses_list():
    s = db_session()
    page, limit = parse_page_args(default_limit=20)
    filters = {
        "instructor_id": parse_int(request.args.get("instructor_id"), 0) or None,
        "category": (request.args.get("category") or "").strip(),
        "level": (request.args.get("level") or "").strip(),
        "is_published": parse_bool(request.args.get("is_published")),
        "search": (request.args.get("search") or "").strip(),
    }
    user = getattr(g, "current_user", None)
    if not user_has_permission(user, "courses.create"):
        # Drafts are only listed for course authors and admins.
        filters["is_published"] = True

    courses, total = paginate(query_courses(s, filters), page, limit)
    return jsonify(
        {
            "courses": [c.to_dict() for c in courses],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": total_pages(total, limit),
        }
    )


@bp.post("/courses")
@require_permission("courses.create")
def courses_create():
    s = db_session()
    payload = get_json_payload()
    errors = validate_course_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    course = create_course(s, payload, current_user())
    s.commit()
    return jsonify({"course": course.to_dict()}), 201


@bp.get("/courses/<int:course_id>")
def course_detail(course_id: int):
    course = _get_course(course_id)
    if not _can_view(course):
        abort(404, description="Course not found")
    details = parse_bool(request.args.get("details")) is True
    return jsonify({"course": course.to_dict(details=details)})


@bp.put("/courses/<int:course_id>")
@login_required
def course_update(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    payload = get_json_payload()
    errors = validate_course_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_course(s, course, payload, current_user())
    s.commit()
    return jsonify({"course": course.to_dict()})


@bp.delete("/courses/<int:course_id>")
@login_required
def course_delete(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    delete_course(s, course, current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/courses/<int:course_id>/publish")
@login_required
def course_publish(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    try:
        set_published(s, course, True, current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"course": course.to_dict()})


@bp.post("/courses/<int:course_id>/unpublish")
@login_required
def course_unpublish(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    set_published(s, course, False, current_user())
    s.commit()
    return jsonify({"course": course.to_dict()})


# ---------- Landing page ----------
@bp.get("/courses/<int:course_id>/landing-page")
@login_required
def landing_page_get(course_id: int):
    course = _managed_course(course_id)
    return jsonify({"settings": course.landing_page_settings or {}})


@bp.put("/courses/<int:course_id>/landing-page")
@login_required
def landing_page_update(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    payload = get_json_payload()
    settings = payload.get("settings", payload)
    if not isinstance(settings, dict) or not settings:
        return json_error("settings must be a non-empty object", 400)
    merged = update_landing_page(s, course, settings, current_user())
    s.commit()
    return jsonify({"settings": merged})


@bp.post("/courses/<int:course_id>/landing-page/hero-image")
@login_required
def landing_page_hero_image(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    f = request.files.get("file")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    data = f.read()
    try:
        url = upload_hero_image(
            s,
            storage_from_config(current_app.config),
            course,
            data=data,
            filename=f.filename,
            content_type=f.mimetype or "application/octet-stream",
            user=current_user(),
        )
    except ValueError as e:
        return json_error(str(e), 400)
    except StorageError as e:
        current_app.logger.error("Hero image upload failed (course_id=%s): %s", course.id, e)
        return json_error("Failed to upload image", 500)
    s.commit()
    return jsonify({"url": url, "settings": course.landing_page_settings})


# ---------- Chapters ----------
@bp.get("/courses/<int:course_id>/chapters")
def chapters_list(course_id: int):
    course = _get_course(course_id)
    if not _can_view(course):
        abort(404, description="Course not found")
    return jsonify({"chapters": [c.to_dict(with_lessons=True) for c in course.chapters]})


@bp.post("/courses/<int:course_id>/chapters")
@login_required
def chapters_create(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    payload = get_json_payload()
    errors = validate_chapter_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    chapter = create_chapter(s, course, payload, current_user())
    s.commit()
    return jsonify({"chapter": chapter.to_dict()}), 201


@bp.post("/courses/<int:course_id>/chapters/reorder")
@login_required
def chapters_reorder(course_id: int):
    s = db_session()
    course = _managed_course(course_id)
    payload = get_json_payload()
    try:
        chapters = reorder_chapters(s, course, payload.get("ids"), current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"chapters": [c.to_dict() for c in chapters]})


@bp.put("/chapters/<int:chapter_id>")
@login_required
def chapter_update(chapter_id: int):
    s = db_session()
    chapter = _managed_chapter(chapter_id)
    payload = get_json_payload()
    errors = validate_chapter_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_chapter(s, chapter, payload, current_user())
    s.commit()
    return jsonify({"chapter": chapter.to_dict()})


@bp.delete("/chapters/<int:chapter_id>")
@login_required
def chapter_delete(chapter_id: int):
    s = db_session()
    chapter = _managed_chapter(chapter_id)
    delete_chapter(s, chapter, current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Lessons ----------
@bp.post("/chapters/<int:chapter_id>/lessons")
@login_required
def lessons_create(chapter_id: int):
    s = db_session()
    chapter = _managed_chapter(chapter_id)
    payload = get_json_payload()
    errors = validate_lesson_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    lesson = create_lesson(s, chapter, payload, current_user())
    s.commit()
    return jsonify({"lesson": lesson.to_dict()}), 201


@bp.post("/chapters/<int:chapter_id>/lessons/reorder")
@login_required
def lessons_reorder(chapter_id: int):
    s = db_session()
    chapter = _managed_chapter(chapter_id)
    payload = get_json_payload()
    try:
        lessons = reorder_lessons(s, chapter, payload.get("ids"), current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"lessons": [lesson.to_dict() for lesson in lessons]})


@bp.get("/lessons/<int:lesson_id>")
def lesson_detail(lesson_id: int):
    lesson = _get_lesson(lesson_id)
    if not _can_view(lesson.chapter.course):
        abort(404, description="Lesson not found")
    return jsonify({"lesson": lesson.to_dict()})


@bp.put("/lessons/<int:lesson_id>")
@login_required
def lesson_update(lesson_id: int):
    s = db_session()
    lesson = _managed_lesson(lesson_id)
    payload = get_json_payload()
    errors = validate_lesson_payload(payload, partial=True)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_lesson(s, lesson, payload, current_user())
    s.commit()
    return jsonify({"lesson": lesson.to_dict()})


@bp.delete("/lessons/<int:lesson_id>")
@login_required
def lesson_delete(lesson_id: int):
    s = db_session()
    lesson = _managed_lesson(lesson_id)
    delete_lesson(s, lesson, current_user())
    s.commit()
    return jsonify({"success": True})


def _neighbour(lesson_id: int, direction: int):
    s = db_session()
    lesson = _get_lesson(lesson_id)
    if not _can_view(lesson.chapter.course):
        abort(404, description="Lesson not found")
    other = adjacent_lesson(s, lesson, direction=direction)
    return jsonify({"lesson": other.to_dict() if other else None})


@bp.get("/lessons/<int:lesson_id>/next")
def lesson_next(lesson_id: int):
    return _neighbour(lesson_id, 1)


@bp.get("/lessons/<int:lesson_id>/previous")
def lesson_previous(lesson_id: int):
    return _neighbour(lesson_id, -1)


@bp.put("/lessons/<int:lesson_id>/video")
@login_required
def lesson_attach_video(lesson_id: int):
    s = db_session()
    u = current_user()
    lesson = _managed_lesson(lesson_id)
    payload = get_json_payload()
    video = s.get(Video, parse_int(payload.get("video_id"), 0))
    if not video:
        return json_error("Video not found", 404)
    if not video.is_public and video.instructor_id != u.id and not user_has_permission(u, "videos.manage_any"):
        abort(403)
    created = attach_video(s, lesson, video, u)
    s.commit()
    return jsonify({"lesson": lesson.to_dict(), "linked": created})


# ---------- Reviews ----------
@bp.get("/courses/<int:course_id>/reviews")
def course_reviews(course_id: int):
    course = _get_course(course_id)
    if not _can_view(course):
        abort(404, description="Course not found")
    return jsonify(review_summary(db_session(), course.id))
