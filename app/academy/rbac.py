from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, current_app, g

from app.academy.models import ROLE_ADMIN, ROLE_LECTURER, ROLE_STUDENT, User

_ALL = (ROLE_STUDENT, ROLE_LECTURER, ROLE_ADMIN)
_STAFF = (ROLE_LECTURER, ROLE_ADMIN)
_ADMIN = (ROLE_ADMIN,)

# permission key -> roles granted it
PERMISSIONS: dict[str, tuple[str, ...]] = {
    "account.manage": _ALL,
    "enrollments.self": _ALL,
    "courses.create": _STAFF,
    "courses.manage_any": _ADMIN,
    "videos.manage": _STAFF,
    "videos.manage_any": _ADMIN,
    "users.manage": _ADMIN,
    "students.manage": _ADMIN,
    "enrollments.manage": _ADMIN,
    "settings.manage": _ADMIN,
    "grading.manage": _ADMIN,
    "audit.view": _ADMIN,
    "stats.view": _ADMIN,
}


def admin_email_allowed(user: User) -> bool:
    """Admins must also be on ADMIN_ALLOWED_EMAILS when that list is configured."""
    allowed = current_app.config.get("ADMIN_ALLOWED_EMAILS") or ()
    if not allowed:
        return True
    return user.email.lower() in allowed


def effective_role(user: User | None) -> str | None:
    if not user or not user.is_active:
        return None
    if user.role == ROLE_ADMIN and not admin_email_allowed(user):
        # Demoted to the lowest role until the allowlist includes them.
        return ROLE_STUDENT
    return user.role


def user_has_role(user: User | None, *roles: str) -> bool:
    role = effective_role(user)
    return role is not None and role in roles


def user_has_permission(user: User | None, permission_key: str) -> bool:
    role = effective_role(user)
    if role is None:
        return False
    return role in PERMISSIONS.get(permission_key, ())


def is_admin(user: User | None) -> bool:
    return user_has_role(user, ROLE_ADMIN)


def _guard(check: Callable[[User], bool], missing: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                abort(401, description="Unauthorized")
            if not check(user):
                g.missing_permission = missing
                if user.role == ROLE_ADMIN and not admin_email_allowed(user):
                    current_app.logger.warning("Admin access blocked by allowlist: %s", user.email)
                abort(403, description="Forbidden")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def login_required(fn: Callable[..., Any]) -> Callable[..., Any]:
    return _guard(lambda _u: True, "")(fn)


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return _guard(lambda u: user_has_role(u, *roles), f"role:{'|'.join(roles)}")


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    return _guard(lambda u: user_has_permission(u, permission_key), permission_key)
