"""Instance infra and instance services tables

Revision ID: 001_instance_tables
Revises:
Create Date: 2026-10-19

Adds:
- instance_infra: one row per compute-backed agent instance
- instance_services: provisioned tool resources, one per (instance, tool)
"""
from alembic import op
import sqlalchemy as sa

revision = "001_instance_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── instance_infra ─────────────────────────────────────────────
    op.create_table(
        "instance_infra",
        sa.Column("instance_id", sa.String(64), primary_key=True),
        sa.Column("provider", sa.String(20), nullable=False, server_default="railway"),
        sa.Column("provider_service_id", sa.String(64), nullable=False, unique=True),
        sa.Column("provider_env_id", sa.String(64), nullable=False),
        sa.Column("provider_project_id", sa.String(64), nullable=True),
        sa.Column("url", sa.String(255), nullable=True),
        sa.Column("deploy_status", sa.String(20), nullable=True),
        sa.Column("runtime_image", sa.String(255), nullable=True),
        sa.Column("volume_id", sa.String(64), nullable=True),
        sa.Column("gateway_token", sa.Text, nullable=True),
        sa.Column("setup_password", sa.Text, nullable=True),
        sa.Column("wallet_key", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # ── instance_services ──────────────────────────────────────────
    op.create_table(
        "instance_services",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "instance_id", sa.String(64),
            sa.ForeignKey("instance_infra.instance_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tool_id", sa.String(20), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=False),
        sa.Column("resource_meta", sa.JSON, nullable=True),
        sa.Column("env_key", sa.String(100), nullable=False),
        sa.Column("env_value", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("instance_id", "tool_id", name="uq_instance_services_instance_tool"),
    )

    op.create_index("ix_instance_services_tool_status", "instance_services", ["tool_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_instance_services_tool_status", "instance_services")
    op.drop_table("instance_services")
    op.drop_table("instance_infra")
