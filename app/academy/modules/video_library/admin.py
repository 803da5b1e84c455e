from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from app.academy.db import db_session
from app.academy.modules.video_library.models import Video
from app.academy.modules.video_library.service import (
    build_upload_path,
    can_edit_video,
    create_video,
    delete_video,
    duplicate_video,
    get_library_settings,
    remove_video_object,
    save_library_settings,
    search_videos,
    storage_usage,
    update_video,
    validate_library_settings,
    video_analytics,
    visible_videos,
)
from app.academy.rbac import require_permission, user_has_permission
from app.academy.storage import StorageError, storage_from_config
from app.academy.utils import current_user, get_json_payload, json_error, payload_text

bp = Blueprint("video_library", __name__)


def _is_library_admin() -> bool:
    return user_has_permission(current_user(), "videos.manage_any")


def _get_video(video_id: int) -> Video:
    s = db_session()
    video = s.get(Video, video_id)
    u = current_user()
    if not video or not (video.is_public or video.instructor_id == u.id or _is_library_admin()):
        abort(404, description="Video not found")
    return video


def _editable_video(video_id: int) -> Video:
    video = _get_video(video_id)
    if not can_edit_video(current_user(), video, is_admin=_is_library_admin()):
        abort(403)
    return video


@bp.get("")
@require_permission("videos.manage")
def videos_list():
    s = db_session()
    q = visible_videos(s, current_user(), see_all=_is_library_admin())
    videos = q.order_by(Video.created_at.desc(), Video.id.desc()).all()
    return jsonify({"videos": [v.to_dict() for v in videos]})


@bp.post("")
@require_permission("videos.manage")
def videos_create():
    s = db_session()
    payload = get_json_payload()
    payload.pop("file_path", None)
    try:
        video = create_video(s, payload, current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"video": video.to_dict()}), 201


@bp.get("/search")
@require_permission("videos.manage")
def videos_search():
    s = db_session()
    term = (request.args.get("q") or "").strip()
    tag = (request.args.get("tag") or "").strip() or None
    q = visible_videos(s, current_user(), see_all=_is_library_admin())
    return jsonify({"videos": [v.to_dict() for v in search_videos(q, term, tag)]})


@bp.get("/settings")
@require_permission("videos.manage")
def library_settings_get():
    return jsonify({"settings": get_library_settings(db_session(), current_user())})


@bp.post("/settings")
@require_permission("videos.manage")
def library_settings_save():
    s = db_session()
    payload = get_json_payload()
    errors = validate_library_settings(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    row = save_library_settings(s, current_user(), payload)
    s.commit()
    return jsonify({"settings": row.to_dict()})


@bp.get("/storage-usage")
@require_permission("videos.manage")
def library_storage_usage():
    limit = int(current_app.config.get("VIDEO_STORAGE_LIMIT_BYTES") or 0)
    return jsonify(storage_usage(db_session(), current_user(), limit))


@bp.post("/upload-token")
@require_permission("videos.manage")
def upload_token():
    payload = get_json_payload()
    filename = payload_text(payload, "filename").strip()
    if not filename:
        return json_error("filename is required", 400)
    content_type = payload_text(payload, "contentType").strip() or None
    resource_type = payload_text(payload, "resourceType").strip() or "video"
    video_key = payload_text(payload, "videoId").strip() or None
    try:
        path, video_key = build_upload_path(
            current_user().id, filename, video_key=video_key, resource_type=resource_type
        )
    except ValueError as e:
        return json_error(str(e), 400)
    storage = storage_from_config(current_app.config)
    try:
        signed_url, token = storage.presigned_upload_url(path, content_type=content_type)
    except StorageError as e:
        current_app.logger.error("Could not sign upload URL for %s: %s", path, e)
        return json_error("Failed to create upload URL", 500)
    return jsonify({"signedUrl": signed_url, "token": token, "path": path, "videoId": video_key})


@bp.post("/upload")
@require_permission("videos.manage")
def upload_complete():
    if not request.is_json:
        return json_error("Expected a JSON body", 400)
    s = db_session()
    payload = get_json_payload()
    if not payload_text(payload, "file_path").strip() or not payload_text(payload, "title").strip():
        return json_error("file_path and title are required", 400)
    storage = storage_from_config(current_app.config)
    try:
        video = create_video(s, payload, current_user(), storage=storage)
    except PermissionError as e:
        return json_error(str(e), 403)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"video": video.to_dict()}), 201


@bp.get("/<int:video_id>")
@require_permission("videos.manage")
def video_detail(video_id: int):
    return jsonify({"video": _get_video(video_id).to_dict()})


@bp.put("/<int:video_id>")
@require_permission("videos.manage")
def video_update(video_id: int):
    s = db_session()
    video = _editable_video(video_id)
    try:
        update_video(s, video, get_json_payload(), current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"video": video.to_dict()})


@bp.delete("/<int:video_id>")
@require_permission("videos.manage")
def video_delete(video_id: int):
    s = db_session()
    video = _editable_video(video_id)
    storage_key = delete_video(s, video, current_user())
    s.commit()
    remove_video_object(storage_from_config(current_app.config), storage_key)
    return jsonify({"success": True})


@bp.post("/<int:video_id>/duplicate")
@require_permission("videos.manage")
def video_duplicate(video_id: int):
    s = db_session()
    video = _get_video(video_id)
    try:
        copy = duplicate_video(s, storage_from_config(current_app.config), video, current_user())
    except StorageError as e:
        s.rollback()
        current_app.logger.error("Video duplicate failed (video_id=%s): %s", video_id, e)
        return json_error("Failed to copy video file", 500)
    s.commit()
    return jsonify({"video": copy.to_dict()}), 201


@bp.get("/<int:video_id>/analytics")
@require_permission("videos.manage")
def video_analytics_get(video_id: int):
    video = _get_video(video_id)
    return jsonify(video_analytics(db_session(), video))
