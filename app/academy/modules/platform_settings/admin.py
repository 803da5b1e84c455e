from __future__ import annotations

from flask import Blueprint, abort, jsonify, request

from app.academy.db import db_session
from app.academy.modules.platform_settings.models import AdminNotificationSettings, EmailTemplate
from app.academy.modules.platform_settings.service import (
    DEFAULT_NOTIFICATION_PREFERENCES,
    get_settings,
    save_notification_settings,
    send_test_notification,
    stripe_status,
    update_email_template,
    update_settings,
    validate_notification_payload,
    validate_settings,
    validate_template_payload,
)
from app.academy.rbac import require_permission
from app.academy.utils import current_user, get_json_payload, is_valid_email, json_error, payload_text

bp = Blueprint("platform_settings", __name__)


@bp.get("/settings")
@require_permission("settings.manage")
def settings_get():
    category = (request.args.get("category") or "").strip() or None
    return jsonify(get_settings(db_session(), category))


@bp.put("/settings")
@require_permission("settings.manage")
def settings_update():
    s = db_session()
    payload = get_json_payload()
    settings = payload.get("settings")
    if not isinstance(settings, dict):
        return json_error("settings must be an object", 400)
    errors = validate_settings(settings)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    try:
        changed = update_settings(s, settings, payload.get("category"), current_user())
    except ValueError as e:
        return json_error(str(e), 400)
    s.commit()
    return jsonify({"success": True, "updated": changed})


@bp.get("/payment/stripe/status")
@require_permission("settings.manage")
def stripe_status_get():
    return jsonify(stripe_status(db_session()))


# ---------- Email templates ----------
@bp.get("/email/templates")
@require_permission("settings.manage")
def email_templates_list():
    s = db_session()
    templates = s.query(EmailTemplate).order_by(EmailTemplate.template_key.asc()).all()
    return jsonify({"templates": [t.to_dict() for t in templates]})


@bp.put("/email/templates/<int:template_id>")
@require_permission("settings.manage")
def email_template_update(template_id: int):
    s = db_session()
    template = s.get(EmailTemplate, template_id)
    if not template:
        abort(404, description="Template not found")
    payload = get_json_payload()
    errors = validate_template_payload(payload)
    if errors:
        return json_error(errors[0], 400, errors=errors)
    update_email_template(s, template, payload, current_user())
    s.commit()
    return jsonify({"template": template.to_dict()})


# ---------- Notification settings ----------
@bp.get("/notification-settings")
@require_permission("settings.manage")
def notification_settings_get():
    s = db_session()
    row = (
        s.query(AdminNotificationSettings)
        .filter(AdminNotificationSettings.admin_user_id == current_user().id)
        .one_or_none()
    )
    if row is None:
        return jsonify({"recipient_emails": [], "preferences": {}})
    return jsonify(row.to_dict())


@bp.put("/notification-settings")
@require_permission("settings.manage")
def notification_settings_update():
    s = db_session()
    payload = get_json_payload()
    errors = validate_notification_payload(payload)
    if errors:
        return json_error("Invalid settings", 400, details=errors)
    row = save_notification_settings(s, current_user(), payload)
    s.commit()
    return jsonify(row.to_dict())


@bp.post("/notification-settings/test")
@require_permission("settings.manage")
def notification_settings_test():
    payload = get_json_payload()
    notification_type = payload_text(payload, "type").strip()
    recipients = payload.get("recipients") or []
    if notification_type not in DEFAULT_NOTIFICATION_PREFERENCES:
        return json_error("Unknown notification type", 400)
    if not isinstance(recipients, list) or not all(isinstance(r, str) and is_valid_email(r) for r in recipients):
        return json_error("recipients must be a list of email addresses", 400)
    message = send_test_notification(recipients, notification_type)
    return jsonify({"success": True, "message": message})
