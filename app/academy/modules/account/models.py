from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.academy.models import Base, JSONType

PROFILE_TEXT_FIELDS = ("phone", "location", "country", "timezone", "language", "company", "job_title", "website")


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    language: Mapped[str] = mapped_column(String(16), nullable=False, default="en")
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    social_links: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    preferences: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "phone": self.phone,
            "location": self.location,
            "country": self.country,
            "timezone": self.timezone,
            "language": self.language,
            "date_of_birth": self.date_of_birth.isoformat() if self.date_of_birth else None,
            "company": self.company,
            "job_title": self.job_title,
            "website": self.website,
            "social_links": self.social_links or {},
            "preferences": self.preferences or {},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
