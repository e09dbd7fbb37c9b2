from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuditedModel

if TYPE_CHECKING:
    from app.models.banned_ip import BannedIp
    from app.models.security_log import SecurityLog


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"


class User(AuditedModel):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role_enum", native_enum=False, length=16),
        nullable=False,
        default=UserRole.MEMBER,
    )

    bans_issued: Mapped[list[BannedIp]] = relationship("BannedIp", back_populates="banned_by_user")
    security_logs: Mapped[list[SecurityLog]] = relationship("SecurityLog", back_populates="user")


__all__ = ["User", "UserRole"]
