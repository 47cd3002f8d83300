from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.samrambhaka.models import Base

if TYPE_CHECKING:
    from app.samrambhaka.models import User


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        Index("idx_profiles_username", "username", unique=True),
        Index("idx_profiles_location", "location"),
    )

    # Same id as the owning users row (1:1)
    id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")  # user, admin

    # Contact email + verification (independent of the login email)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verification_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email_verification_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Privacy
    show_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_mobile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    show_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Moderation
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    blocked_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    blocked_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    chat_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", back_populates="profile", foreign_keys=[id])
    skills: Mapped[list["UserSkill"]] = relationship(
        "UserSkill",
        back_populates="profile",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="UserSkill.skill_name",
    )


class UserSkill(Base):
    __tablename__ = "user_skills"
    __table_args__ = (UniqueConstraint("user_id", "skill_key", name="uq_user_skills_user_skill"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    skill_name: Mapped[str] = mapped_column(String(50), nullable=False)
    skill_key: Mapped[str] = mapped_column(String(50), nullable=False)  # lower-cased skill_name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    profile: Mapped[Profile] = relationship("Profile", back_populates="skills")
