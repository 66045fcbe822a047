"""Conversation history window.

The last N turns of each session are kept in Redis as serialized
langchain-core messages (message_to_dict / messages_from_dict). The
classifier receives them as its history hint. Cleared on session end.
"""

from __future__ import annotations

import json

import structlog
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    message_to_dict,
    messages_from_dict,
)

from app.core.config import settings
from app.db.redis import RedisClient

logger = structlog.get_logger(__name__)


class ConversationHistory:
    """Windowed per-session history. A turn is one customer message plus one reply."""

    def __init__(self, redis: RedisClient, window_size: int = 10) -> None:
        self._redis = redis
        self._window_size = window_size

    def _key(self, session_id: str) -> str:
        return f"history:{session_id}"

    def _ttl(self) -> int:
        return settings.session_state_ttl_minutes * 60

    async def load(self, session_id: str) -> list[BaseMessage]:
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return []
        try:
            return messages_from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "history_deserialize_failed", session_id=session_id, error=str(e)
            )
            return []

    async def load_lines(self, session_id: str) -> list[str]:
        """History rendered as ``role: content`` lines for prompts."""
        lines = []
        for message in await self.load(session_id):
            role = "customer" if isinstance(message, HumanMessage) else "assistant"
            lines.append(f"{role}: {message.content}")
        return lines

    async def append_turn(self, session_id: str, customer_text: str, reply: str) -> None:
        messages = await self.load(session_id)
        messages.extend([HumanMessage(content=customer_text), AIMessage(content=reply)])
        messages = messages[-self._window_size * 2 :]
        await self._redis.set_with_ttl(
            self._key(session_id),
            json.dumps([message_to_dict(m) for m in messages]),
            self._ttl(),
        )
        logger.debug(
            "history_saved", session_id=session_id, message_count=len(messages)
        )

    async def clear(self, session_id: str) -> None:
        await self._redis.delete(self._key(session_id))
        logger.debug("history_cleared", session_id=session_id)
