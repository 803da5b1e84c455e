from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.academy.audit import record_event
from app.academy.modules.courses.models import COURSE_LEVELS
from app.academy.modules.platform_settings.models import (
    SETTING_CATEGORIES,
    AdminNotificationSettings,
    EmailTemplate,
    PlatformSetting,
)
from app.academy.utils import is_valid_email, payload_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.academy.models import User

logger = logging.getLogger(__name__)

MASK = "********"
SENSITIVE_MARKERS = ("stripe_secret_key", "stripe_webhook_secret", "sendgrid_api_key", "payment_integrations")

_BOOL_KEYS = {
    "maintenance_mode",
    "enable_certificates",
    "enable_course_ratings",
    "enable_course_discussions",
    "enable_content_moderation",
    "auto_approve_courses",
}
_NUMBER_KEYS = {"tax_rate", "minimum_course_price", "maximum_course_price", "certificate_validity_days"}
_CHOICE_KEYS = {
    "email_provider": ("sendgrid", "smtp", "aws_ses"),
    "default_course_level": COURSE_LEVELS,
    "payment_currency": ("USD", "EUR", "EGP", "GBP", "SAR"),
}
_EMAIL_KEYS = {"support_email", "email_from_address"}

NOTIFICATION_FREQUENCIES = ("off", "immediate", "daily")
DEFAULT_NOTIFICATION_PREFERENCES = {
    # student activity
    "assignment_submission": "immediate",
    "quiz_submission": "immediate",
    "student_report": "immediate",
    "new_student": "immediate",
    # operations
    "csv_import_failed": "immediate",
    "csv_import_success": "off",
    "job_failed": "immediate",
    "analytics_refresh_failed": "daily",
    # content
    "course_published": "daily",
    "video_upload_success": "off",
    "video_upload_failed": "immediate",
    # security
    "new_device_login": "immediate",
    "failed_login_attempts": "immediate",
    "role_change": "immediate",
    "data_export": "daily",
    # platform
    "storage_limit": "daily",
    "error_spike": "immediate",
}


def is_sensitive_key(key: str) -> bool:
    return any(marker in key for marker in SENSITIVE_MARKERS)


def mask_value(value: Any) -> Any:
    """Show only the last four characters of a secret."""
    if value is None or value == "":
        return value
    if isinstance(value, str) and len(value) > 4:
        return MASK + value[-4:]
    return MASK


def validate_settings(settings: dict) -> list[str]:
    errors: list[str] = []
    for key, value in settings.items():
        if not isinstance(key, str) or not key.strip():
            errors.append("Setting keys must be non-empty strings.")
            continue
        if isinstance(value, str) and value.startswith(MASK):
            continue
        if key in _BOOL_KEYS and not isinstance(value, bool):
            errors.append(f"{key} must be a boolean.")
        elif key in _NUMBER_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                errors.append(f"{key} must be a non-negative number.")
        elif key in _CHOICE_KEYS and value not in _CHOICE_KEYS[key]:
            errors.append(f"{key} must be one of: {', '.join(_CHOICE_KEYS[key])}")
        elif key in _EMAIL_KEYS and value and not is_valid_email(str(value)):
            errors.append(f"{key} must be a valid email address.")
    lo, hi = settings.get("minimum_course_price"), settings.get("maximum_course_price")
    if isinstance(lo, (int, float)) and isinstance(hi, (int, float)) and lo > hi:
        errors.append("minimum_course_price cannot exceed maximum_course_price.")
    return errors


def get_settings(s: "Session", category: str | None = None) -> dict[str, Any]:
    """key -> value, with sensitive values masked."""
    q = s.query(PlatformSetting)
    if category:
        q = q.filter(PlatformSetting.category == category)
    out: dict[str, Any] = {}
    for row in q.order_by(PlatformSetting.setting_key.asc()).all():
        out[row.setting_key] = mask_value(row.setting_value) if row.is_sensitive else row.setting_value
    return out


def get_setting_value(s: "Session", key: str, default: Any = None) -> Any:
    row = s.query(PlatformSetting).filter(PlatformSetting.setting_key == key).one_or_none()
    if row is None or row.setting_value is None:
        return default
    return row.setting_value


def update_settings(s: "Session", settings: dict, category: str | None, user: "User") -> list[str]:
    """Upsert by key. Masked placeholders sent back by the client are ignored. Returns changed keys."""
    category = category or "general"
    if category not in SETTING_CATEGORIES:
        raise ValueError(f"Invalid category. Must be one of: {', '.join(SETTING_CATEGORIES)}")
    now = datetime.utcnow()
    existing = {
        row.setting_key: row
        for row in s.query(PlatformSetting).filter(PlatformSetting.setting_key.in_(list(settings.keys()))).all()
    }
    changed: list[str] = []
    for key, value in settings.items():
        if isinstance(value, str) and value.startswith(MASK):
            continue
        row = existing.get(key)
        if row is None:
            row = PlatformSetting(setting_key=key, created_at=now)
            s.add(row)
        row.setting_value = value
        row.category = category
        row.is_sensitive = is_sensitive_key(key)
        row.updated_by = user.id
        row.updated_at = now
        changed.append(key)

    if changed:
        record_event(
            s,
            actor=user,
            action="settings.update",
            entity_type="PlatformSetting",
            entity_id=category,
            metadata={"keys": changed},
        )
    return changed


def stripe_status(s: "Session") -> dict:
    secret = get_setting_value(s, "stripe_secret_key", "") or ""
    public = get_setting_value(s, "stripe_public_key", "") or ""
    webhook = get_setting_value(s, "stripe_webhook_secret", "") or ""
    connected = bool(secret and public)
    return {
        "connected": connected,
        "verified": connected and bool(webhook),
        "test_mode": str(public).startswith("pk_test_"),
    }


# ---------- Email templates ----------
def validate_template_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if "subject" in payload and not payload_text(payload, "subject").strip():
        errors.append("Subject cannot be empty.")
    if "template_html" in payload and not payload_text(payload, "template_html").strip():
        errors.append("HTML body cannot be empty.")
    if "variables" in payload and not (
        isinstance(payload["variables"], list) and all(isinstance(v, str) for v in payload["variables"])
    ):
        errors.append("variables must be a list of strings.")
    if "is_active" in payload and not isinstance(payload["is_active"], bool):
        errors.append("is_active must be a boolean.")
    return errors


def update_email_template(s: "Session", template: EmailTemplate, payload: dict, user: "User") -> EmailTemplate:
    changed = []
    for field in ("subject", "template_html", "template_text", "variables", "is_active"):
        if field in payload:
            setattr(template, field, payload[field])
            changed.append(field)
    template.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="email_template.update",
        entity_type="EmailTemplate",
        entity_id=str(template.id),
        metadata={"template_key": template.template_key, "fields": changed},
    )
    return template


# ---------- Admin notifications ----------
def validate_notification_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    emails = payload.get("recipient_emails")
    if not isinstance(emails, list):
        errors.append("recipient_emails must be a list.")
    else:
        for email in emails:
            if not isinstance(email, str) or not is_valid_email(email):
                errors.append(f"Invalid email: {email}")
    prefs = payload.get("preferences")
    if not isinstance(prefs, dict):
        errors.append("preferences must be an object.")
    else:
        for key, freq in prefs.items():
            if key not in DEFAULT_NOTIFICATION_PREFERENCES:
                errors.append(f"Unknown notification type: {key}")
            elif freq not in NOTIFICATION_FREQUENCIES:
                errors.append(f"{key} must be one of: {', '.join(NOTIFICATION_FREQUENCIES)}")
    return errors


def save_notification_settings(s: "Session", user: "User", payload: dict) -> AdminNotificationSettings:
    row = (
        s.query(AdminNotificationSettings)
        .filter(AdminNotificationSettings.admin_user_id == user.id)
        .one_or_none()
    )
    if row is None:
        row = AdminNotificationSettings(admin_user_id=user.id)
        s.add(row)
    prefs = dict(DEFAULT_NOTIFICATION_PREFERENCES)
    prefs.update(payload.get("preferences") or {})
    row.recipient_emails = [e.strip().lower() for e in payload.get("recipient_emails") or []]
    row.preferences = prefs
    row.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="notification_settings.update",
        entity_type="AdminNotificationSettings",
        entity_id=str(user.id),
        metadata={"recipients": len(row.recipient_emails)},
    )
    return row


def send_test_notification(recipients: list[str], notification_type: str) -> str:
    # Outbound mail is handled by the configured email provider; here we only log the dispatch.
    logger.info("Test notification %s queued for %d recipient(s)", notification_type, len(recipients))
    return f"Test email ({notification_type}) sent to {len(recipients)} recipients."
