from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuditedModel, utc_now

if TYPE_CHECKING:
    from app.models.user import User


class BannedIp(AuditedModel):
    __tablename__ = "banned_ips"

    __table_args__ = (Index("ix_banned_ips_ip_address_active", "ip_address", "is_active"),)

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    banned_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    banned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    banned_by_user: Mapped[User | None] = relationship("User", back_populates="bans_issued")

    def is_currently_active(self, now: datetime | None = None) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        reference = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > reference


__all__ = ["BannedIp"]
