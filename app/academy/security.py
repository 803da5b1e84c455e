import secrets

from flask import Request, session

# Served without a session: health checks and public media.
PUBLIC_PATH_PREFIXES = ("/health", "/healthz", "/media/")
# Mutating endpoints that carry no browser CSRF token: the auth forms and the signed upload sink.
CSRF_EXEMPT_ENDPOINTS = ("auth.", "routes.storage_upload")
_MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def is_public_path(path: str) -> bool:
    return path.startswith(PUBLIC_PATH_PREFIXES)


def ensure_csrf_token() -> str:
    """Session CSRF token; created on first use and returned to clients by /api/auth/session and login."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def csrf_required(req: Request) -> bool:
    if req.method not in _MUTATING_METHODS:
        return False
    return not (req.endpoint or "").startswith(CSRF_EXEMPT_ENDPOINTS)


def validate_csrf(req: Request) -> bool:
    """Dashboard clients send `X-CSRF-Token`; form posts and JSON bodies may carry `csrf_token`."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
