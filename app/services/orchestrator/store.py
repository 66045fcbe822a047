"""Durable session, task and callback rows.

Every method opens its own short session from the factory and commits
before returning. SQLAlchemy errors are re-raised as
DatabaseConnectionError; the orchestrator decides whether that is fatal.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import DatabaseConnectionError
from app.models import Callback, ConversationSession, FollowUpTask
from app.services.orchestrator.types import LiveSession, SessionStatus

logger = structlog.get_logger(__name__)


class SessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _update_session(self, session_id: str, **values: Any) -> None:
        values["updated_at"] = datetime.now(timezone.utc)
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(ConversationSession)
                    .where(ConversationSession.id == uuid.UUID(session_id))
                    .values(**values)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("session_row_update_failed", session_id=session_id, error=str(e))
            raise DatabaseConnectionError(f"Session update failed: {e}") from e

    async def create_session(self, session: LiveSession) -> None:
        """Insert the row for a freshly initialised session."""
        row = ConversationSession(
            id=uuid.UUID(session.id),
            tenant_id=uuid.UUID(session.tenant_id),
            customer_id=uuid.UUID(session.customer_id),
            conversation_id=session.conversation_id,
            customer_phone=session.customer_phone,
            mode=session.mode.value,
            status=session.status.value,
            language=session.language,
            voice_config=session.voice_config.to_dict(),
            context=session.context,
            message_count=0,
            voice_message_count=0,
            started_at=session.started_at,
        )
        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("session_row_insert_failed", session_id=session.id, error=str(e))
            raise DatabaseConnectionError(f"Session insert failed: {e}") from e

    async def update_counters(self, session: LiveSession) -> None:
        await self._update_session(
            session.id,
            message_count=session.message_count,
            voice_message_count=session.voice_message_count,
        )

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        await self._update_session(session_id, status=status.value)

    async def mark_ended(
        self,
        session_id: str,
        ended_at: datetime,
        total_duration: int,
        reason: str | None,
    ) -> None:
        await self._update_session(
            session_id,
            status=SessionStatus.ENDED.value,
            ended_at=ended_at,
            total_duration=total_duration,
            end_reason=reason,
        )

    async def reopen(self, session_id: str, status: SessionStatus) -> None:
        """Clear the end markers written by mark_ended."""
        await self._update_session(
            session_id,
            status=status.value,
            ended_at=None,
            total_duration=None,
            end_reason=None,
        )

    async def insert_task(self, session: LiveSession, payload: dict[str, Any]) -> str:
        """Insert a follow-up task and return its id."""
        due_date = payload.get("due_date")
        task = FollowUpTask(
            id=uuid.uuid4(),
            tenant_id=uuid.UUID(session.tenant_id),
            customer_id=uuid.UUID(payload.get("customer_id") or session.customer_id),
            session_id=uuid.UUID(session.id),
            title=payload["title"],
            description=payload.get("description"),
            due_date=datetime.fromisoformat(due_date) if due_date else None,
            priority=payload.get("priority", "medium"),
        )
        try:
            async with self._session_factory() as db:
                db.add(task)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("task_insert_failed", session_id=session.id, error=str(e))
            raise DatabaseConnectionError(f"Task insert failed: {e}") from e
        return str(task.id)

    async def insert_callback(self, session: LiveSession, payload: dict[str, Any]) -> str:
        """Insert a scheduled callback and return its id."""
        callback = Callback(
            id=uuid.uuid4(),
            tenant_id=uuid.UUID(session.tenant_id),
            customer_id=uuid.UUID(payload.get("customer_id") or session.customer_id),
            session_id=uuid.UUID(session.id),
            phone=session.customer_phone,
            reason=payload.get("reason"),
            preferred_time=payload.get("preferred_time"),
        )
        try:
            async with self._session_factory() as db:
                db.add(callback)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("callback_insert_failed", session_id=session.id, error=str(e))
            raise DatabaseConnectionError(f"Callback insert failed: {e}") from e
        return str(callback.id)
