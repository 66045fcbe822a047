"""Shared pytest fixtures for the orchestrator test suite.

Provides:
  - MockLLMProvider: LLMProvider returning configurable responses
  - MockRedisClient: RedisClient stand-in with in-memory dict/set storage
  - Fake collaborators (customer directory, classifier, voice, channel,
    team assignment, session store) recording every call
  - orchestrator: ConversationOrchestrator wired with the fakes and
    in-memory registry/queue

All external service calls are faked in every test; no network or database.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pytest

from app.core.exceptions import DatabaseConnectionError, RedisConnectionError

from app.services.channels.voice import SpeechResult, VoiceSynthesizer
from app.services.channels.whatsapp import ChannelSender, OutboundMessage, SendResult
from app.services.customers import CustomerRecord
from app.services.llm.base import LLMProvider, LLMResponse
from app.services.orchestrator.classifier import ClassificationContext
from app.services.orchestrator.generator import ResponseGenerator
from app.services.orchestrator.history import ConversationHistory
from app.services.orchestrator.orchestrator import ConversationOrchestrator
from app.services.orchestrator.registry import (
    InMemoryCommandQueue,
    InMemorySessionRegistry,
    OrchestratorState,
)
from app.services.orchestrator.types import Classification, LiveSession, SessionStatus
from app.services.team.assignment import AssignmentResult

TENANT_ID = "00000000-0000-0000-0000-000000000001"
CUSTOMER_ID = "00000000-0000-0000-0000-000000000010"
CUSTOMER_PHONE = "+15551234567"


# ---------------------------------------------------------------------------
# Mock LLM Provider
# ---------------------------------------------------------------------------


class MockLLMProvider(LLMProvider):
    """Mock LLM provider for testing. Returns configurable responses."""

    def __init__(self, generate_text: str = "Mock response", error: Exception | None = None) -> None:
        self._generate_text = generate_text
        self._error = error
        self.generate_calls: list[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> LLMResponse:
        self.generate_calls.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self._error is not None:
            raise self._error
        return LLMResponse(text=self._generate_text, input_tokens=50, output_tokens=10)


# ---------------------------------------------------------------------------
# Mock Redis Client
# ---------------------------------------------------------------------------


class MockRedisClient:
    """In-memory mock of RedisClient for testing."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._sets: dict[str, set[str]] = {}
        self._ttls: dict[str, int] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value
        self._ttls[key] = ttl_seconds

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def delete(self, key: str) -> int:
        if key in self._store:
            del self._store[key]
            self._ttls.pop(key, None)
            return 1
        return 0

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self._store[key] = json.dumps(value)
        if ttl_seconds:
            self._ttls[key] = ttl_seconds

    async def get_json(self, key: str) -> Any | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def sadd(self, key: str, member: str) -> int:
        members = self._sets.setdefault(key, set())
        added = member not in members
        members.add(member)
        return int(added)

    async def srem(self, key: str, member: str) -> int:
        members = self._sets.get(key, set())
        if member in members:
            members.remove(member)
            return 1
        return 0

    async def smembers(self, key: str) -> set[str]:
        return set(self._sets.get(key, set()))

    def expire_now(self, key: str) -> None:
        """Simulate TTL expiry of a plain key."""
        self._store.pop(key, None)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeCustomerDirectory:
    def __init__(self, customers: dict[str, CustomerRecord] | None = None) -> None:
        self.customers = customers if customers is not None else {
            CUSTOMER_ID: CustomerRecord(
                id=CUSTOMER_ID,
                name="Priya",
                language="en-IN",
                phone=CUSTOMER_PHONE,
                metadata={"tier": "gold"},
            )
        }

    async def get(self, customer_id: str) -> CustomerRecord | None:
        return self.customers.get(customer_id)


class StubClassifier:
    """Returns a fixed classification and records the context it was given."""

    def __init__(self, classification: Classification | None = None) -> None:
        self.classification = classification or Classification(
            intent="general_query",
            sentiment="neutral",
            urgency_score=3,
            category="general",
            priority="medium",
            confidence=0.9,
        )
        self.calls: list[tuple[str, ClassificationContext | None]] = []

    async def classify(
        self, message: str, context: ClassificationContext | None = None
    ) -> Classification:
        self.calls.append((message, context))
        return self.classification


class FakeVoiceSynthesizer(VoiceSynthesizer):
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.calls: list[tuple[str, Any]] = []

    async def speak(self, text, voice_config) -> SpeechResult:
        self.calls.append((text, voice_config))
        if not self.succeed:
            return SpeechResult(success=False, provider="elevenlabs", error="synthesis down")
        return SpeechResult(
            success=True,
            provider="elevenlabs",
            audio_url=f"https://media.test/voice/{len(self.calls)}.mp3",
            duration=2.5,
            audio=b"ID3fake",
        )


class FakeChannelSender(ChannelSender):
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> SendResult:
        self.sent.append(message)
        if not self.succeed:
            return SendResult(success=False, message_ids=[], error="channel down")
        return SendResult(success=True, message_ids=[f"wamid.{len(self.sent)}"])

    @property
    def texts(self) -> list[str]:
        return [m.text for m in self.sent if m.text]


class FakeTeamAssignment:
    def __init__(self, result: AssignmentResult | None = None) -> None:
        self.result = result or AssignmentResult(
            success=True, agent_id=str(uuid.uuid4()), agent_name="Arjun"
        )
        self.calls: list[dict[str, Any]] = []

    async def auto_assign(
        self,
        conversation_id: str,
        tenant_id: str,
        preferred_agent_id: str | None = None,
        specialization_hints: list[str] | None = None,
    ) -> AssignmentResult:
        self.calls.append(
            {
                "conversation_id": conversation_id,
                "tenant_id": tenant_id,
                "preferred_agent_id": preferred_agent_id,
                "specialization_hints": specialization_hints,
            }
        )
        return self.result


@dataclass
class FakeSessionStore:
    """Records durable writes; set ``fail_on`` to a method name to make it raise."""

    fail_on: set[str] = field(default_factory=set)
    created: list[LiveSession] = field(default_factory=list)
    counters: list[tuple[str, int, int]] = field(default_factory=list)
    statuses: list[tuple[str, SessionStatus]] = field(default_factory=list)
    ended: list[dict[str, Any]] = field(default_factory=list)
    reopened: list[tuple[str, SessionStatus]] = field(default_factory=list)
    tasks: list[dict[str, Any]] = field(default_factory=list)
    callbacks: list[dict[str, Any]] = field(default_factory=list)

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise DatabaseConnectionError(f"{name} failed")

    async def create_session(self, session: LiveSession) -> None:
        self._maybe_fail("create_session")
        self.created.append(session)

    async def update_counters(self, session: LiveSession) -> None:
        self._maybe_fail("update_counters")
        self.counters.append((session.id, session.message_count, session.voice_message_count))

    async def update_status(self, session_id: str, status: SessionStatus) -> None:
        self._maybe_fail("update_status")
        self.statuses.append((session_id, status))

    async def mark_ended(
        self, session_id: str, ended_at: datetime, total_duration: int, reason: str | None
    ) -> None:
        self._maybe_fail("mark_ended")
        self.ended.append(
            {
                "session_id": session_id,
                "ended_at": ended_at,
                "total_duration": total_duration,
                "reason": reason,
            }
        )

    async def reopen(self, session_id: str, status: SessionStatus) -> None:
        self._maybe_fail("reopen")
        self.reopened.append((session_id, status))

    async def insert_task(self, session: LiveSession, payload: dict[str, Any]) -> str:
        self._maybe_fail("insert_task")
        self.tasks.append(payload)
        return str(uuid.uuid4())

    async def insert_callback(self, session: LiveSession, payload: dict[str, Any]) -> str:
        self._maybe_fail("insert_callback")
        self.callbacks.append(payload)
        return str(uuid.uuid4())


class FailingSessionRegistry(InMemorySessionRegistry):
    """In-memory registry; add a method name to ``fail_on`` to make it raise."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: set[str] = set()

    async def put(self, session: LiveSession) -> None:
        if "put" in self.fail_on:
            raise RedisConnectionError("registry put failed")
        await super().put(session)

    async def remove(self, session_id: str) -> bool:
        if "remove" in self.fail_on:
            raise RedisConnectionError("registry remove failed")
        return await super().remove(session_id)


class FailingCommandQueue(InMemoryCommandQueue):
    """In-memory queue whose append raises while ``fail_append`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_append = False

    async def append(self, session_id: str, commands: list) -> None:
        if self.fail_append:
            raise RedisConnectionError("queue append failed")
        await super().append(session_id, commands)


@dataclass
class OrchestratorHarness:
    """An orchestrator plus handles on every fake it was built with."""

    orchestrator: ConversationOrchestrator
    state: OrchestratorState
    customers: FakeCustomerDirectory
    classifier: StubClassifier
    llm: MockLLMProvider
    voice: FakeVoiceSynthesizer
    sender: FakeChannelSender
    team: FakeTeamAssignment
    store: FakeSessionStore
    redis: MockRedisClient

    async def start(self, mode: str = "hybrid", conversation_id: str | None = "conv-1") -> LiveSession:
        session = await self.orchestrator.initialize_session(
            TENANT_ID, CUSTOMER_ID, CUSTOMER_PHONE, mode=mode, conversation_id=conversation_id
        )
        assert session is not None
        # Drop the welcome traffic so tests only see what they trigger.
        self.sender.sent.clear()
        self.voice.calls.clear()
        return session


def build_harness(**overrides: Any) -> OrchestratorHarness:
    redis = MockRedisClient()
    parts: dict[str, Any] = {
        "state": OrchestratorState(),
        "customers": FakeCustomerDirectory(),
        "classifier": StubClassifier(),
        "llm": MockLLMProvider("Happy to help with that."),
        "voice": FakeVoiceSynthesizer(),
        "sender": FakeChannelSender(),
        "team": FakeTeamAssignment(),
        "store": FakeSessionStore(),
        "redis": redis,
    }
    parts.update(overrides)
    orchestrator = ConversationOrchestrator(
        state=parts["state"],
        customers=parts["customers"],
        classifier=parts["classifier"],
        generator=ResponseGenerator(parts["llm"]),
        voice=parts["voice"],
        sender=parts["sender"],
        team=parts["team"],
        store=parts["store"],
        history=ConversationHistory(parts["redis"], window_size=10),
    )
    return OrchestratorHarness(orchestrator=orchestrator, **parts)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm() -> MockLLMProvider:
    """Mock LLM provider fixture."""
    return MockLLMProvider()


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Mock Redis client fixture."""
    return MockRedisClient()


@pytest.fixture
def harness() -> OrchestratorHarness:
    """Orchestrator wired with fakes and in-memory state."""
    return build_harness()


@pytest.fixture
def sample_session() -> LiveSession:
    """A fresh hybrid LiveSession, not registered anywhere."""
    from app.services.orchestrator.types import SessionMode, VoiceConfig

    return LiveSession(
        id="00000000-0000-0000-0000-000000000002",
        tenant_id=TENANT_ID,
        customer_id=CUSTOMER_ID,
        customer_name="Priya",
        customer_phone=CUSTOMER_PHONE,
        mode=SessionMode.HYBRID,
        language="en-US",
        voice_config=VoiceConfig(),
        conversation_id="conv-1",
    )
