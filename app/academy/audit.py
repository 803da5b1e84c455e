import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.academy.models import AuditEvent, User

# Every academy record an audit event may point at.
AUDIT_ENTITY_TYPES = (
    "AdminNotificationSettings",
    "AssignmentSubmission",
    "Certificate",
    "Chapter",
    "Course",
    "EmailTemplate",
    "Enrollment",
    "Lesson",
    "PlatformSetting",
    "PracticalAssessment",
    "QuizAttempt",
    "User",
    "UserProfile",
    "Video",
)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append an audit row for an academy change.

    `action` is `<area>.<verb>` (e.g. `course.publish`, `submission.approve`).
    `entity_type` must come from AUDIT_ENTITY_TYPES. The actor's role is stored
    in the metadata.
    """
    if entity_type is not None and entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    details = dict(metadata or {})
    if actor is not None:
        details.setdefault("actor_role", actor.role)

    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        client_ip=request.remote_addr if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(details, sort_keys=True, default=str) if details else None,
    )
    s.add(ev)
    return ev
