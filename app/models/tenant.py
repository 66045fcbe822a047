"""Tenant ORM model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.postgres import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    api_key_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    config: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships: lazy="noload" to avoid loading all rows on every request.
    customers: Mapped[list["Customer"]] = relationship(  # noqa: F821
        back_populates="tenant", lazy="noload"
    )
    sessions: Mapped[list["ConversationSession"]] = relationship(  # noqa: F821
        back_populates="tenant", lazy="noload"
    )
    agents: Mapped[list["TeamAgent"]] = relationship(  # noqa: F821
        back_populates="tenant", lazy="noload"
    )
