from __future__ import annotations

import logging
import posixpath
import re
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.academy.audit import record_event
from app.academy.modules.courses.models import Chapter, Course, Lesson
from app.academy.modules.video_library.models import PRIVACY_CHOICES, LessonVideo, Video, VideoLibrarySettings
from app.academy.storage import StorageError
from app.academy.utils import payload_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Query, Session
    from app.academy.models import User
    from app.academy.storage import Storage

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY_SETTINGS = {
    "default_privacy": "private",
    "auto_generate_thumbnails": True,
    "notify_on_storage_limit": True,
    "storage_limit_threshold": 80,
}
RESOURCE_TYPES = ("video", "thumbnail")
_EXT_RE = re.compile(r"^[a-z0-9]{1,10}$")
_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def visible_videos(s: "Session", user: "User", *, see_all: bool) -> "Query":
    q = s.query(Video)
    if not see_all:
        q = q.filter(or_(Video.instructor_id == user.id, Video.is_public.is_(True)))
    return q


def can_edit_video(user: "User", video: Video, *, is_admin: bool) -> bool:
    return is_admin or video.instructor_id == user.id


def _clean_tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        raise ValueError("tags must be a list of strings")
    out = []
    for t in raw:
        if not isinstance(t, str):
            raise ValueError("tags must be a list of strings")
        t = t.strip()
        if t and t not in out:
            out.append(t)
    return out


def _non_negative_int(payload: dict, key: str) -> int | None:
    v = payload.get(key)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)) or v < 0:
        raise ValueError(f"{key} must be a non-negative number")
    return int(v)


def get_library_settings(s: "Session", user: "User") -> dict:
    row = s.query(VideoLibrarySettings).filter(VideoLibrarySettings.instructor_id == user.id).one_or_none()
    if row is None:
        return {"instructor_id": user.id, **DEFAULT_LIBRARY_SETTINGS}
    return row.to_dict()


def validate_library_settings(payload: dict) -> list[str]:
    errors: list[str] = []
    if "default_privacy" in payload and payload["default_privacy"] not in PRIVACY_CHOICES:
        errors.append(f"default_privacy must be one of: {', '.join(PRIVACY_CHOICES)}")
    for key in ("auto_generate_thumbnails", "notify_on_storage_limit"):
        if key in payload and not isinstance(payload[key], bool):
            errors.append(f"{key} must be a boolean.")
    if "storage_limit_threshold" in payload:
        v = payload["storage_limit_threshold"]
        if isinstance(v, bool) or not isinstance(v, int) or not 1 <= v <= 100:
            errors.append("storage_limit_threshold must be an integer between 1 and 100.")
    return errors


def save_library_settings(s: "Session", user: "User", payload: dict) -> VideoLibrarySettings:
    row = s.query(VideoLibrarySettings).filter(VideoLibrarySettings.instructor_id == user.id).one_or_none()
    if row is None:
        row = VideoLibrarySettings(instructor_id=user.id, **DEFAULT_LIBRARY_SETTINGS)
        s.add(row)
    for key in DEFAULT_LIBRARY_SETTINGS:
        if key in payload:
            setattr(row, key, payload[key])
    row.updated_at = datetime.utcnow()
    return row


def storage_usage(s: "Session", user: "User", limit: int) -> dict:
    used = s.query(func.coalesce(func.sum(Video.file_size), 0)).filter(Video.instructor_id == user.id).scalar() or 0
    used = int(used)
    percentage = round(used / limit * 100, 2) if limit else 0
    threshold = get_library_settings(s, user)["storage_limit_threshold"]
    return {"used": used, "limit": limit, "percentage": percentage, "warning": percentage >= threshold}


def build_upload_path(user_id: int, filename: str, *, video_key: str | None, resource_type: str) -> tuple[str, str]:
    """
    `<user>/<video_key>/<video_key>.<ext>` for the video itself,
    `<user>/<video_key>/thumbnail_<uuid>.<ext>` for its thumbnail.
    Returns (path, video_key).
    """
    if resource_type not in RESOURCE_TYPES:
        raise ValueError(f"resourceType must be one of: {', '.join(RESOURCE_TYPES)}")
    ext = posixpath.splitext(filename or "")[1].lstrip(".").lower()
    if not _EXT_RE.match(ext):
        raise ValueError("filename must have a valid extension")
    key = video_key or uuid.uuid4().hex
    if not _KEY_RE.match(key):
        raise ValueError("videoId may only contain letters, digits, '-' and '_'")
    if resource_type == "thumbnail":
        return f"{user_id}/{key}/thumbnail_{uuid.uuid4().hex}.{ext}", key
    return f"{user_id}/{key}/{key}.{ext}", key


def create_video(s: "Session", payload: dict, user: "User", *, storage: "Storage | None" = None) -> Video:
    """Insert a library row. With `file_path`, the object is expected to be in storage already."""
    title = payload_text(payload, "title").strip()
    if not title:
        raise ValueError("Title is required")
    is_public = payload.get("is_public")
    if is_public is None:
        is_public = get_library_settings(s, user)["default_privacy"] == "public"
    elif not isinstance(is_public, bool):
        raise ValueError("is_public must be a boolean")

    file_path = payload_text(payload, "file_path").strip() or None
    if file_path and not file_path.startswith(f"{user.id}/"):
        raise PermissionError("file_path is outside your upload area")

    metadata: dict[str, Any] = {}
    width, height = _non_negative_int(payload, "width"), _non_negative_int(payload, "height")
    if width and height:
        metadata["resolution"] = f"{width}x{height}"
    if payload.get("codecs"):
        metadata["videoCodec"] = str(payload["codecs"])
    if payload.get("content_type"):
        metadata["contentType"] = str(payload["content_type"])

    now = datetime.utcnow()
    video = Video(
        instructor_id=user.id,
        title=title,
        description=payload_text(payload, "description").strip() or None,
        duration=_non_negative_int(payload, "duration") or 0,
        file_size=_non_negative_int(payload, "file_size") or 0,
        storage_key=file_path,
        file_url=storage.public_url(file_path) if (storage is not None and file_path) else payload.get("file_url"),
        thumbnail_url=payload_text(payload, "thumbnail_url").strip() or None,
        upload_date=now,
        is_public=is_public,
        tags=_clean_tags(payload.get("tags")),
        usage_count=0,
        video_metadata=metadata,
        created_at=now,
        updated_at=now,
    )
    s.add(video)
    s.flush()
    record_event(
        s,
        actor=user,
        action="video.create",
        entity_type="Video",
        entity_id=str(video.id),
        metadata={"title": video.title, "storage_key": video.storage_key},
    )
    return video


def update_video(s: "Session", video: Video, payload: dict, user: "User") -> Video:
    if "title" in payload:
        title = payload_text(payload, "title").strip()
        if not title:
            raise ValueError("Title cannot be empty")
        video.title = title
    if "description" in payload:
        video.description = payload_text(payload, "description").strip() or None
    if "tags" in payload:
        video.tags = _clean_tags(payload.get("tags"))
    if "is_public" in payload:
        if not isinstance(payload["is_public"], bool):
            raise ValueError("is_public must be a boolean")
        video.is_public = payload["is_public"]
    if "thumbnail_url" in payload:
        video.thumbnail_url = payload_text(payload, "thumbnail_url").strip() or None
    video.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="video.update",
        entity_type="Video",
        entity_id=str(video.id),
        metadata={"fields": sorted(payload.keys())},
    )
    return video


def delete_video(s: "Session", video: Video, user: "User") -> str | None:
    """Remove the row and its lesson links. Returns the storage key to drop once committed."""
    storage_key = video.storage_key
    record_event(
        s,
        actor=user,
        action="video.delete",
        entity_type="Video",
        entity_id=str(video.id),
        metadata={"title": video.title, "storage_key": video.storage_key},
    )
    s.query(LessonVideo).filter(LessonVideo.video_id == video.id).delete(synchronize_session=False)
    s.delete(video)
    return storage_key


def remove_video_object(storage: "Storage", storage_key: str | None) -> None:
    """Best effort: a failed object delete is logged and never undoes the row removal."""
    if not storage_key:
        return
    try:
        storage.delete(storage_key)
    except StorageError as e:
        logger.error("Failed to delete video object %s: %s", storage_key, e)


def duplicate_video(s: "Session", storage: "Storage", video: Video, user: "User") -> Video:
    """Copy the stored object under the caller's prefix, then insert the copy. Raises StorageError on copy failure."""
    new_key = None
    if video.storage_key:
        filename = posixpath.basename(video.storage_key)
        new_key = f"{user.id}/{uuid.uuid4().hex}/{filename}"
        storage.copy(video.storage_key, new_key)

    now = datetime.utcnow()
    copy = Video(
        instructor_id=user.id,
        title=f"{video.title} (Copy)",
        description=video.description,
        duration=video.duration,
        file_size=video.file_size,
        storage_key=new_key,
        file_url=storage.public_url(new_key) if new_key else video.file_url,
        thumbnail_url=video.thumbnail_url,
        upload_date=now,
        is_public=video.is_public,
        tags=list(video.tags or []),
        usage_count=0,
        video_metadata=dict(video.video_metadata or {}),
        created_at=now,
        updated_at=now,
    )
    s.add(copy)
    s.flush()
    record_event(
        s,
        actor=user,
        action="video.duplicate",
        entity_type="Video",
        entity_id=str(copy.id),
        metadata={"source_id": video.id},
    )
    return copy


def video_analytics(s: "Session", video: Video) -> dict:
    rows = (
        s.query(Lesson.title, Course.id, Course.title)
        .join(LessonVideo, LessonVideo.lesson_id == Lesson.id)
        .join(Chapter, Chapter.id == Lesson.chapter_id)
        .join(Course, Course.id == Chapter.course_id)
        .filter(LessonVideo.video_id == video.id)
        .order_by(Course.title.asc(), Lesson.title.asc())
        .all()
    )
    return {
        "usage_count": video.usage_count,
        "lessons": [{"lesson_title": lt, "course_title": ct} for lt, _cid, ct in rows],
        "courses_count": len({cid for _lt, cid, _ct in rows}),
    }


def search_videos(q: "Query", term: str, tag: str | None = None) -> list[Video]:
    if term:
        like = f"%{term}%"
        q = q.filter(or_(Video.title.ilike(like), Video.description.ilike(like)))
    videos = q.order_by(Video.created_at.desc(), Video.id.desc()).all()
    if tag:
        videos = [v for v in videos if tag in (v.tags or [])]
    return videos
