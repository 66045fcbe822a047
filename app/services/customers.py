"""Customer directory lookups backed by the customers table."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DatabaseConnectionError
from app.models import Customer

logger = structlog.get_logger(__name__)


@dataclass
class CustomerRecord:
    id: str
    name: str
    language: str | None = None
    phone: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class CustomerDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, customer_id: str) -> CustomerRecord | None:
        """Customer by id, or None when it does not exist or the id is malformed."""
        try:
            key = uuid.UUID(customer_id)
        except ValueError:
            return None
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(Customer).where(Customer.id == key))
                customer = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("customer_lookup_failed", customer_id=customer_id, error=str(e))
            raise DatabaseConnectionError(f"Customer lookup failed: {e}") from e

        if customer is None:
            return None
        return CustomerRecord(
            id=str(customer.id),
            name=customer.name or "Customer",
            language=customer.language,
            phone=customer.phone,
            metadata=dict(customer.metadata_ or {}),
        )
