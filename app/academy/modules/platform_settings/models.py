from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.academy.models import Base, JSONType

SETTING_CATEGORIES = ("general", "payment", "email", "course", "feature", "moderation", "advanced")


class PlatformSetting(Base):
    __tablename__ = "platform_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    setting_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    setting_value: Mapped[Any] = mapped_column(JSONType, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general", index=True)
    is_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    updated_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    template_key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    template_html: Mapped[str] = mapped_column(Text, nullable=False)
    template_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    variables: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_key": self.template_key,
            "subject": self.subject,
            "template_html": self.template_html,
            "template_text": self.template_text,
            "variables": self.variables or [],
            "is_active": self.is_active,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AdminNotificationSettings(Base):
    __tablename__ = "admin_notification_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    admin_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    recipient_emails: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    preferences: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "admin_user_id": self.admin_user_id,
            "recipient_emails": self.recipient_emails or [],
            "preferences": self.preferences or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
