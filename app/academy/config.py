import os
from dataclasses import dataclass

DEFAULT_VIDEO_STORAGE_LIMIT = 50 * 1024 * 1024 * 1024  # 50 GiB


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    storage_backend: str
    local_storage_root: str
    public_media_base_url: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    admin_allowed_emails: tuple[str, ...]
    video_storage_limit_bytes: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _parse_email_list(raw: str) -> tuple[str, ...]:
    return tuple(e.strip().lower() for e in raw.split(",") if e.strip())


def _parse_int(raw: str, default: int) -> int:
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///academy.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        public_media_base_url=_getenv("PUBLIC_MEDIA_BASE_URL", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        admin_allowed_emails=_parse_email_list(_getenv("ADMIN_ALLOWED_EMAILS", "")),
        video_storage_limit_bytes=_parse_int(
            _getenv("VIDEO_STORAGE_LIMIT_BYTES", ""), DEFAULT_VIDEO_STORAGE_LIMIT
        ),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "STORAGE_BACKEND": s.storage_backend,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "PUBLIC_MEDIA_BASE_URL": s.public_media_base_url,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "ADMIN_ALLOWED_EMAILS": s.admin_allowed_emails,
        "VIDEO_STORAGE_LIMIT_BYTES": s.video_storage_limit_bytes,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # video bytes go straight to storage through signed URLs; this caps images and local sink uploads
        "MAX_CONTENT_LENGTH": 512 * 1024 * 1024,
        "JSON_SORT_KEYS": False,
    }
