from __future__ import annotations

import enum
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuditedModel

if TYPE_CHECKING:
    from app.models.user import User


class SecuritySeverity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SecurityLog(AuditedModel):
    __tablename__ = "security_logs"

    __table_args__ = (
        Index("ix_security_logs_event_type", "event_type"),
        Index("ix_security_logs_ip_address", "ip_address"),
    )

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[SecuritySeverity] = mapped_column(
        Enum(SecuritySeverity, name="security_severity_enum", native_enum=False, length=16),
        nullable=False,
        default=SecuritySeverity.INFO,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    method: Mapped[str | None] = mapped_column(String(16), nullable=True)

    user: Mapped[User | None] = relationship("User", back_populates="security_logs")


__all__ = ["SecurityLog", "SecuritySeverity"]
