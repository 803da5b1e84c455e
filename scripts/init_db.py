import sys
from pathlib import Path
import os
from datetime import datetime

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.academy.models import ROLE_ADMIN, User
from app.academy.modules.platform_settings.models import EmailTemplate

DEFAULT_EMAIL_TEMPLATES = (
    {
        "template_key": "welcome",
        "subject": "Welcome to {{platform_name}}",
        "template_html": "<p>Hi {{name}},</p><p>Welcome to {{platform_name}}. Your account is ready.</p>",
        "template_text": "Hi {{name}},\n\nWelcome to {{platform_name}}. Your account is ready.",
        "variables": ["name", "platform_name"],
    },
    {
        "template_key": "password_reset",
        "subject": "Reset your password",
        "template_html": "<p>Hi {{name}},</p><p><a href=\"{{reset_link}}\">Reset your password</a>. The link expires in 1 hour.</p>",
        "template_text": "Hi {{name}},\n\nReset your password: {{reset_link}}\nThe link expires in 1 hour.",
        "variables": ["name", "reset_link"],
    },
    {
        "template_key": "enrollment_confirmation",
        "subject": "You're enrolled in {{course_title}}",
        "template_html": "<p>Hi {{name}},</p><p>You are now enrolled in <strong>{{course_title}}</strong>.</p>",
        "template_text": "Hi {{name}},\n\nYou are now enrolled in {{course_title}}.",
        "variables": ["name", "course_title"],
    },
    {
        "template_key": "certificate_issued",
        "subject": "Your certificate for {{course_title}}",
        "template_html": "<p>Congratulations {{name}}!</p><p>Certificate {{certificate_number}} has been issued for {{course_title}}.</p>",
        "template_text": "Congratulations {{name}}!\n\nCertificate {{certificate_number}} has been issued for {{course_title}}.",
        "variables": ["name", "course_title", "certificate_number"],
    },
    {
        "template_key": "assignment_reviewed",
        "subject": "Your submission for {{assignment_title}} was reviewed",
        "template_html": "<p>Hi {{name}},</p><p>Your submission was {{status}}.</p><p>{{feedback}}</p>",
        "template_text": "Hi {{name}},\n\nYour submission was {{status}}.\n\n{{feedback}}",
        "variables": ["name", "assignment_title", "status", "feedback"],
    },
)


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_email_templates(s: Session) -> int:
    """Insert missing default templates; existing rows (possibly edited by admins) are left alone."""
    added = 0
    for tpl in DEFAULT_EMAIL_TEMPLATES:
        if s.query(EmailTemplate).filter(EmailTemplate.template_key == tpl["template_key"]).one_or_none():
            continue
        s.add(EmailTemplate(is_active=True, **tpl))
        added += 1
    return added


def seed_admin(s: Session, *, email: str, password: str) -> User:
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user:
        now = datetime.utcnow()
        user = User(
            email=email,
            name="Administrator",
            password_hash=generate_password_hash(password),
            role=ROLE_ADMIN,
            is_email_verified=True,
            created_at=now,
            updated_at=now,
        )
        s.add(user)
    elif user.role != ROLE_ADMIN:
        user.role = ROLE_ADMIN
    return user


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user and default email templates in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@academy.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///academy.db").strip()

    # Direct engine/session so release can seed without importing app.wsgi.
    with _session_scope(db_url) as s:
        seed_admin(s, email=admin_email, password=admin_password)
        added = seed_email_templates(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    print(f"Email templates added: {added}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
