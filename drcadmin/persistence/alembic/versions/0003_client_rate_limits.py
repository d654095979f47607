"""add per-client rate limit windows for credential routes

Revision ID: 0003_client_rate_limits
Revises: 0002_api_usage_audit
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0003_client_rate_limits"
down_revision = "0002_api_usage_audit"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Fixed windows keyed by client address; the maintenance sweep drops closed ones.
    op.create_table(
        "client_rate_limits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("client_key", sa.String(length=64), nullable=False),
        sa.Column("route_class", sa.String(length=32), nullable=False),
        sa.Column("request_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "client_key",
            "route_class",
            "window_start",
            name="uq_client_rate_limits_client_route_window",
        ),
    )
    op.create_index("ix_client_rate_limits_window_end", "client_rate_limits", ["window_end"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_client_rate_limits_window_end", table_name="client_rate_limits")
    op.drop_table("client_rate_limits")
