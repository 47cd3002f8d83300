from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.samrambhaka.models import Base

if TYPE_CHECKING:
    from app.samrambhaka.modules.profiles.models import Profile


class Business(Base):
    __tablename__ = "businesses"
    __table_args__ = (
        Index("idx_businesses_owner", "owner_id"),
        Index("idx_businesses_category", "category"),
        Index("idx_businesses_approval_status", "approval_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    logo_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    cover_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    instagram_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    youtube_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending, approved, rejected
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disabled_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    owner: Mapped["Profile | None"] = relationship("Profile", lazy="selectin")
    images: Mapped[list["BusinessImage"]] = relationship(
        "BusinessImage",
        back_populates="business",
        cascade="all, delete-orphan",
        order_by="BusinessImage.created_at.desc()",
    )


class BusinessFollow(Base):
    __tablename__ = "business_follows"
    __table_args__ = (
        UniqueConstraint("business_id", "user_id", name="uq_business_follows_pair"),
        Index("idx_business_follows_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class BusinessImage(Base):
    __tablename__ = "business_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    business_id: Mapped[int] = mapped_column(ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False)
    image_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    storage_key: Mapped[str | None] = mapped_column(String(512), nullable=True)
    caption: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    business: Mapped[Business] = relationship("Business", back_populates="images")
