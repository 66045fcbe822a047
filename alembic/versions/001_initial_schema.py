"""initial schema: tenants, customers, sessions, follow-ups, team agents

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-17
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _tenant_column() -> sa.Column:
    return sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False)


def upgrade() -> None:
    # --- tenants ---
    op.create_table(
        "tenants",
        _id_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("api_key_hash", sa.Text(), nullable=False, unique=True),
        sa.Column("config", JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
    )

    # --- customers ---
    op.create_table(
        "customers",
        _id_column(),
        _tenant_column(),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("language", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB(), server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])

    # --- conversation_sessions ---
    op.create_table(
        "conversation_sessions",
        _id_column(),
        _tenant_column(),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("conversation_id", sa.Text(), nullable=True),
        sa.Column("customer_phone", sa.Text(), nullable=False),
        sa.Column("mode", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="active"),
        sa.Column("language", sa.Text(), nullable=False, server_default="en-US"),
        sa.Column("voice_config", JSONB(), nullable=False, server_default="{}"),
        sa.Column("context", JSONB(), server_default="{}"),
        sa.Column("message_count", sa.Integer(), server_default="0"),
        sa.Column("voice_message_count", sa.Integer(), server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_duration", sa.Integer(), nullable=True),
        sa.Column("end_reason", sa.Text(), nullable=True),
        sa.CheckConstraint("mode IN ('voice', 'chat', 'hybrid')", name="ck_sessions_mode"),
        sa.CheckConstraint("status IN ('active', 'paused', 'ended')", name="ck_sessions_status"),
    )
    op.create_index("ix_conversation_sessions_tenant_id", "conversation_sessions", ["tenant_id"])
    op.create_index("ix_conversation_sessions_status", "conversation_sessions", ["status"])

    # --- tasks ---
    op.create_table(
        "tasks",
        _id_column(),
        _tenant_column(),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column(
            "session_id", UUID(as_uuid=True), sa.ForeignKey("conversation_sessions.id"), nullable=True
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), server_default="pending"),
        sa.Column("priority", sa.Text(), server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_tasks_tenant_id", "tasks", ["tenant_id"])

    # --- callbacks ---
    op.create_table(
        "callbacks",
        _id_column(),
        _tenant_column(),
        sa.Column("customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column(
            "session_id", UUID(as_uuid=True), sa.ForeignKey("conversation_sessions.id"), nullable=True
        ),
        sa.Column("phone", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("preferred_time", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_callbacks_tenant_id", "callbacks", ["tenant_id"])

    # --- team_agents ---
    op.create_table(
        "team_agents",
        _id_column(),
        _tenant_column(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("agent_type", sa.Text(), nullable=False, server_default="human"),
        sa.Column("status", sa.Text(), server_default="offline"),
        sa.Column("specialization", ARRAY(sa.String()), nullable=False, server_default="{}"),
        sa.Column("active_conversations", sa.Integer(), server_default="0"),
        sa.Column("avg_response_time_seconds", sa.Integer(), nullable=True),
    )
    op.create_index("ix_team_agents_tenant_status", "team_agents", ["tenant_id", "status"])

    # --- agent_assignments ---
    op.create_table(
        "agent_assignments",
        _id_column(),
        _tenant_column(),
        sa.Column("agent_id", UUID(as_uuid=True), sa.ForeignKey("team_agents.id"), nullable=False),
        sa.Column("conversation_id", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="active"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_agent_assignments_conversation_id", "agent_assignments", ["conversation_id"])


def downgrade() -> None:
    op.drop_table("agent_assignments")
    op.drop_table("team_agents")
    op.drop_table("callbacks")
    op.drop_table("tasks")
    op.drop_table("conversation_sessions")
    op.drop_table("customers")
    op.drop_table("tenants")
