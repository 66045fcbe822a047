"""Conversation session ORM model: the durable record behind a live session."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgres import Base


class ConversationSession(Base):
    __tablename__ = "conversation_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False
    )
    conversation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_phone: Mapped[str] = mapped_column(Text, nullable=False)
    mode: Mapped[str] = mapped_column(Text, nullable=False)  # 'voice' | 'chat' | 'hybrid'
    status: Mapped[str] = mapped_column(
        Text, default="active"
    )  # 'active' | 'paused' | 'ended'
    language: Mapped[str] = mapped_column(Text, nullable=False, default="en-US")
    voice_config: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    context: Mapped[dict] = mapped_column(JSONB, default=dict, server_default="{}")
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    voice_message_count: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    total_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    end_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    tenant: Mapped["Tenant"] = relationship(back_populates="sessions")  # noqa: F821
