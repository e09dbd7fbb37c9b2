"""initial schema: users, banned ips, security logs

Revision ID: 202501150001
Revises:
Create Date: 2025-01-15 00:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "202501150001"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("ADMIN", "MEMBER", name="user_role_enum", native_enum=False, length=16),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_users")),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "banned_ips",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("banned_by", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("banned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(
            ["banned_by"],
            ["users.id"],
            name=op.f("fk_banned_ips_banned_by_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_banned_ips")),
    )
    op.create_index("ix_banned_ips_ip_address_active", "banned_ips", ["ip_address", "is_active"])

    op.create_table(
        "security_logs",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        *_timestamps(),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column(
            "severity",
            sa.Enum("INFO", "WARNING", "CRITICAL", name="security_severity_enum", native_enum=False, length=16),
            nullable=False,
        ),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("url", sa.String(length=2048), nullable=True),
        sa.Column("method", sa.String(length=16), nullable=True),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name=op.f("fk_security_logs_user_id_users"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_security_logs")),
    )
    op.create_index("ix_security_logs_event_type", "security_logs", ["event_type"])
    op.create_index("ix_security_logs_ip_address", "security_logs", ["ip_address"])


def downgrade() -> None:
    op.drop_index("ix_security_logs_ip_address", table_name="security_logs")
    op.drop_index("ix_security_logs_event_type", table_name="security_logs")
    op.drop_table("security_logs")
    op.drop_index("ix_banned_ips_ip_address_active", table_name="banned_ips")
    op.drop_table("banned_ips")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
