"""Remediation tables: remediation_rules, remediation_actions

Revision ID: 001_remediation_tables
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "001_remediation_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # remediation_rules
    op.create_table(
        "remediation_rules",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("trigger", sa.JSON, nullable=False),
        sa.Column("conditions", sa.JSON, nullable=False),
        sa.Column("actions", sa.JSON, nullable=False),
        sa.Column("scope", sa.JSON, nullable=False),
        sa.Column("cooldown_seconds", sa.Float, nullable=True),
        sa.Column("max_executions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("require_approval", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("labels", sa.JSON, nullable=False),
        sa.Column("extra_data", sa.JSON, nullable=False),
        sa.Column("last_triggered", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execution_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_remediation_rules_enabled", "remediation_rules", ["enabled"])

    # remediation_actions
    op.create_table(
        "remediation_actions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("rule_id", sa.String(64), nullable=False),
        sa.Column("rule_name", sa.String(255), nullable=False),
        sa.Column("cluster_id", sa.String(255), nullable=False, server_default=""),
        sa.Column("namespace", sa.String(255), nullable=False, server_default=""),
        sa.Column("resource_type", sa.String(100), nullable=False, server_default=""),
        sa.Column("resource_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("dry_run", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("trigger_event", sa.JSON, nullable=False),
        sa.Column("parameters", sa.JSON, nullable=False),
        sa.Column("result", sa.JSON, nullable=False),
        sa.Column("error", sa.Text, nullable=False, server_default=""),
        sa.Column("approved_by", sa.String(255), nullable=False, server_default=""),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Float, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_remediation_actions_rule_id", "remediation_actions", ["rule_id"])
    op.create_index("ix_remediation_actions_cluster_id", "remediation_actions", ["cluster_id"])
    op.create_index("ix_remediation_actions_status", "remediation_actions", ["status"])
    op.create_index("ix_remediation_actions_status_created", "remediation_actions", ["status", "created_at"])


def downgrade() -> None:
    op.drop_table("remediation_actions")
    op.drop_table("remediation_rules")
