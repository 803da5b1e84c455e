from __future__ import annotations

import json

from flask import Blueprint, Response, current_app, g, jsonify, request, session

from app.academy.db import db_session
from app.academy.modules.account.service import (
    InvalidPassword,
    change_email,
    change_password,
    delete_account,
    export_csv,
    export_data,
    get_or_create_profile,
    list_sessions,
    merge_preferences,
    revoke_sessions,
    update_basic_profile,
    update_profile_details,
    upload_avatar,
    validate_basic_profile,
    validate_profile_details,
)
from app.academy.rbac import require_permission
from app.academy.storage import StorageError, storage_from_config
from app.academy.utils import ConflictError, current_user, get_json_payload, json_error, parse_int, payload_text

bp = Blueprint("account", __name__)


def _profile_body(s) -> dict:
    user = current_user()
    return {"user": user.to_dict(), "profile": get_or_create_profile(s, user).to_dict()}


@bp.get("/user/profile")
@require_permission("account.manage")
def profile_get():
    s = db_session()
    body = _profile_body(s)
    s.commit()
    return jsonify(body)


@bp.post("/user/profile/update")
@require_permission("account.manage")
def profile_update():
    s = db_session()
    payload = get_json_payload()
    errors = validate_basic_profile(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_basic_profile(s, current_user(), payload)
    s.commit()
    return jsonify({"user": current_user().to_dict()})


@bp.put("/user/profile/details")
@require_permission("account.manage")
def profile_details():
    s = db_session()
    payload = get_json_payload()
    errors = validate_profile_details(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    profile = update_profile_details(s, current_user(), payload)
    s.commit()
    return jsonify({"profile": profile.to_dict()})


@bp.post("/user/profile/avatar")
@require_permission("account.manage")
def profile_avatar():
    s = db_session()
    f = request.files.get("file") or request.files.get("avatar")
    if not f or not f.filename:
        return json_error("No file provided", 400)
    user = current_user()
    try:
        url = upload_avatar(
            s,
            storage_from_config(current_app.config),
            user,
            data=f.read(),
            filename=f.filename,
            content_type=f.mimetype or "application/octet-stream",
        )
    except ValueError as e:
        return json_error(str(e), 400)
    except StorageError as e:
        current_app.logger.error("Avatar upload failed (user_id=%s): %s", user.id, e)
        return json_error("Failed to upload avatar", 500)
    s.commit()
    return jsonify({"avatar": url, "user": user.to_dict()})


@bp.put("/user/preferences")
@require_permission("account.manage")
def preferences_update():
    s = db_session()
    payload = get_json_payload()
    prefs = payload.get("preferences", payload)
    if not isinstance(prefs, dict) or not prefs:
        return json_error("Preferences must be a non-empty object", 400)
    merged = merge_preferences(s, current_user(), prefs)
    s.commit()
    return jsonify({"preferences": merged})


def _change_password():
    s = db_session()
    payload = get_json_payload()
    try:
        change_password(
            s,
            current_user(),
            payload_text(payload, "currentPassword"),
            payload_text(payload, "newPassword"),
            keep_token=session.get("session_token"),
        )
    except InvalidPassword as e:
        return json_error(str(e), 401)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"message": "Password updated successfully"})


@bp.post("/user/password/change")
@require_permission("account.manage")
def password_change():
    return _change_password()


@bp.post("/account/change-password")
@require_permission("account.manage")
def account_change_password():
    return _change_password()


@bp.post("/user/email/change")
@require_permission("account.manage")
def email_change():
    s = db_session()
    payload = get_json_payload()
    try:
        user = change_email(s, current_user(), payload_text(payload, "newEmail"), payload_text(payload, "password"))
    except InvalidPassword as e:
        return json_error(str(e), 401)
    except ConflictError as e:
        return json_error(str(e), 409)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"user": user.to_dict()})


@bp.get("/user/sessions")
@require_permission("account.manage")
def sessions_list():
    token = session.get("session_token")
    rows = list_sessions(db_session(), current_user())
    return jsonify({"sessions": [r.to_dict(current_token=token) for r in rows]})


@bp.post("/user/sessions/revoke")
@require_permission("account.manage")
def sessions_revoke():
    s = db_session()
    payload = get_json_payload()
    revoke_all = payload.get("revokeAll") is True
    session_id = parse_int(payload.get("sessionId"), 0)
    if not revoke_all and session_id <= 0:
        return json_error("sessionId or revokeAll is required", 400)
    current = getattr(g, "current_session", None)
    if not revoke_all and current is not None and current.id == session_id:
        return json_error("Use logout to end the current session", 400)
    try:
        n = revoke_sessions(
            s,
            current_user(),
            session_id=session_id or None,
            revoke_all=revoke_all,
            current_token=session.get("session_token"),
        )
    except LookupError as e:
        return json_error(str(e), 404)
    s.commit()
    return jsonify({"success": True, "revoked": n})


@bp.get("/user/data/export")
@require_permission("account.manage")
def data_export():
    s = db_session()
    user = current_user()
    fmt = (request.args.get("format") or "json").strip().lower()
    if fmt not in ("json", "csv"):
        return json_error("format must be json or csv", 400)
    data = export_data(s, user)
    s.commit()
    if fmt == "csv":
        body, mimetype = export_csv(data), "text/csv"
    else:
        body, mimetype = json.dumps(data, indent=2, default=str), "application/json"
    return Response(
        body,
        mimetype=mimetype,
        headers={"Content-Disposition": f'attachment; filename="user-data-{user.id}.{fmt}"'},
    )


@bp.delete("/user/account/delete")
@require_permission("account.manage")
def account_delete():
    s = db_session()
    payload = get_json_payload()
    user = current_user()
    user_id = user.id
    try:
        delete_account(s, user, payload_text(payload, "password"))
    except InvalidPassword as e:
        return json_error(str(e), 401)
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    session.clear()
    current_app.logger.info("Account deleted (user_id=%s)", user_id)
    return jsonify({"message": "Account deleted"})
