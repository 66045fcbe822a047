"""Unit tests for the Redis-backed conversation history window."""

from __future__ import annotations

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from app.services.orchestrator.history import ConversationHistory
from tests.conftest import MockRedisClient


class TestConversationHistory:
    @pytest.mark.asyncio
    async def test_miss_returns_empty(self, mock_redis: MockRedisClient) -> None:
        assert await ConversationHistory(mock_redis).load("s1") == []

    @pytest.mark.asyncio
    async def test_turns_round_trip_as_langchain_messages(self, mock_redis: MockRedisClient) -> None:
        history = ConversationHistory(mock_redis)
        await history.append_turn("s1", "Where is my order?", "It ships tomorrow.")

        messages = await history.load("s1")
        assert isinstance(messages[0], HumanMessage)
        assert isinstance(messages[1], AIMessage)
        assert await history.load_lines("s1") == [
            "customer: Where is my order?",
            "assistant: It ships tomorrow.",
        ]

    @pytest.mark.asyncio
    async def test_window_keeps_last_n_turns(self, mock_redis: MockRedisClient) -> None:
        history = ConversationHistory(mock_redis, window_size=2)
        for i in range(4):
            await history.append_turn("s1", f"q{i}", f"a{i}")

        lines = await history.load_lines("s1")
        assert lines == ["customer: q2", "assistant: a2", "customer: q3", "assistant: a3"]

    @pytest.mark.asyncio
    async def test_clear(self, mock_redis: MockRedisClient) -> None:
        history = ConversationHistory(mock_redis)
        await history.append_turn("s1", "hi", "hello")
        await history.clear("s1")
        assert await history.load("s1") == []

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_ignored(self, mock_redis: MockRedisClient) -> None:
        await mock_redis.set_with_ttl("history:s1", "not json", 60)
        assert await ConversationHistory(mock_redis).load("s1") == []
