"""Integration tests for the message pipeline.

Tests:
  - Unknown / ended / paused sessions are rejected without side effects
  - Strategy per mode and escalation on urgency or complaint
  - High-priority commands run inline, the rest are queued
  - Message counters and their persistence
  - LLM and synthesis failures degrade the reply instead of failing it
  - Classifier sees the rolling history and the session context
"""

from __future__ import annotations

import asyncio

import pytest

from app.core.exceptions import (
    ProcessingError,
    RedisConnectionError,
    SessionInactiveError,
    SessionNotFoundError,
)
from app.services.orchestrator.prompts import APOLOGY_MESSAGE, transfer_message
from app.services.orchestrator.registry import OrchestratorState
from app.services.orchestrator.types import (
    Classification,
    Command,
    CommandPriority,
    CommandType,
    MessageType,
    ResponseStrategy,
    SessionStatus,
)
from app.services.team.assignment import AssignmentResult
from tests.conftest import (
    FailingCommandQueue,
    FailingSessionRegistry,
    FakeSessionStore,
    FakeTeamAssignment,
    MockLLMProvider,
    OrchestratorHarness,
    StubClassifier,
    build_harness,
)


def _classified(
    intent: str = "general_query",
    urgency: int = 3,
    category: str = "general",
    sentiment: str = "neutral",
) -> StubClassifier:
    return StubClassifier(
        Classification(
            intent=intent,
            sentiment=sentiment,
            urgency_score=urgency,
            category=category,
            priority="high" if urgency >= 7 else "medium",
            confidence=0.9,
        )
    )


class _ExplodingClassifier:
    async def classify(self, message, context=None):
        raise RuntimeError("classifier crashed")


class TestRejectedMessages:
    @pytest.mark.asyncio
    async def test_unknown_session(self, harness: OrchestratorHarness) -> None:
        result = await harness.orchestrator.process_message("missing", "hello")
        assert result.success is False
        assert isinstance(result.error, SessionNotFoundError)
        assert harness.classifier.calls == []

    @pytest.mark.asyncio
    async def test_ended_session(self, harness: OrchestratorHarness) -> None:
        session = await harness.start()
        await harness.orchestrator.end_session(session.id)

        result = await harness.orchestrator.process_message(session.id, "hello again")

        assert result.success is False
        assert isinstance(result.error, SessionNotFoundError)
        assert session.message_count == 0

    @pytest.mark.asyncio
    async def test_paused_session(self) -> None:
        h = build_harness(classifier=_classified(urgency=9))
        session = await h.start()
        await h.orchestrator.process_message(session.id, "this is urgent")
        assert session.status == SessionStatus.PAUSED

        result = await h.orchestrator.process_message(session.id, "anyone there?")

        assert result.success is False
        assert isinstance(result.error, SessionInactiveError)
        assert session.message_count == 1
        assert len(h.classifier.calls) == 1


class TestStrategies:
    @pytest.mark.asyncio
    async def test_chat_general_query_is_text_only(self) -> None:
        h = build_harness(classifier=_classified())
        session = await h.start(mode="chat")

        result = await h.orchestrator.process_message(session.id, "what are your hours?")

        assert result.success is True
        assert result.response.strategy == ResponseStrategy.TEXT_ONLY
        assert result.response.text == "Happy to help with that."
        assert result.response.voice is None
        assert result.commands == []
        assert h.voice.calls == []
        assert await h.state.queues.pending(session.id) == []

    @pytest.mark.asyncio
    async def test_hybrid_reply_carries_voice(self, harness: OrchestratorHarness) -> None:
        session = await harness.start(mode="hybrid")

        result = await harness.orchestrator.process_message(session.id, "hi")

        assert result.response.strategy == ResponseStrategy.VOICE_WITH_TEXT
        assert result.response.voice is not None
        assert result.response.voice.audio_url.endswith(".mp3")
        assert result.response.voice.duration == 2.5
        assert harness.voice.calls[0][0] == "Happy to help with that."

    @pytest.mark.asyncio
    async def test_voice_mode_is_voice_only(self, harness: OrchestratorHarness) -> None:
        session = await harness.start(mode="voice")
        result = await harness.orchestrator.process_message(session.id, "hi", MessageType.VOICE)
        assert result.response.strategy == ResponseStrategy.VOICE_ONLY
        assert result.response.voice is not None

    @pytest.mark.asyncio
    async def test_synthesis_failure_omits_voice(self) -> None:
        h = build_harness()
        h.voice.succeed = False
        session = await h.start(mode="voice")

        result = await h.orchestrator.process_message(session.id, "hi")

        assert result.success is True
        assert result.response.voice is None
        assert result.response.error is False


class TestEscalation:
    @pytest.mark.asyncio
    async def test_high_urgency_emits_one_transfer(self) -> None:
        h = build_harness(classifier=_classified(urgency=8, category="general"))
        session = await h.start()

        result = await h.orchestrator.process_message(session.id, "I need this fixed now")

        assert result.success is True
        assert result.response.strategy == ResponseStrategy.ESCALATE
        assert result.response.voice is None
        assert len(result.commands) == 1
        transfer = result.commands[0]
        assert transfer.type == CommandType.TRANSFER_AGENT
        assert transfer.priority == CommandPriority.HIGH
        assert transfer.payload["specialization"] == ["general"]
        assert h.team.calls[0]["conversation_id"] == "conv-1"
        assert h.team.calls[0]["specialization_hints"] == ["general"]
        assert session.status == SessionStatus.PAUSED
        assert h.sender.texts == [transfer_message("Arjun")]

    @pytest.mark.asyncio
    async def test_voice_complaint_escalates_transfers_and_queues_callback(self) -> None:
        h = build_harness(
            classifier=_classified(
                intent="complaint", urgency=9, category="support", sentiment="negative"
            )
        )
        session = await h.start(mode="voice")

        result = await h.orchestrator.process_message(
            session.id, "this is the third time it broke", MessageType.VOICE, b"OggS"
        )

        assert result.response.strategy == ResponseStrategy.ESCALATE
        assert [c.type for c in result.commands] == [CommandType.TRANSFER_AGENT]
        assert session.status == SessionStatus.PAUSED
        queued = await h.state.queues.pending(session.id)
        assert [c.type for c in queued] == [CommandType.SCHEDULE_CALLBACK]
        assert h.store.callbacks == []

    @pytest.mark.asyncio
    async def test_complaint_below_threshold_escalates_without_transfer(self) -> None:
        h = build_harness(classifier=_classified(intent="complaint", urgency=5))
        session = await h.start(mode="chat")

        result = await h.orchestrator.process_message(session.id, "not happy")

        assert result.response.strategy == ResponseStrategy.ESCALATE
        assert result.commands == []
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_failed_assignment_keeps_session_active(self) -> None:
        h = build_harness(
            classifier=_classified(urgency=9),
            team=FakeTeamAssignment(
                AssignmentResult(success=False, error="All agents are currently overloaded")
            ),
        )
        session = await h.start()

        result = await h.orchestrator.process_message(session.id, "urgent!")

        assert result.success is True
        assert len(result.commands) == 1
        assert session.status == SessionStatus.ACTIVE


class TestDeferredCommands:
    @pytest.mark.asyncio
    async def test_order_inquiry_queues_task(self) -> None:
        h = build_harness(classifier=_classified(intent="order_inquiry", urgency=5))
        session = await h.start(mode="chat")

        result = await h.orchestrator.process_message(session.id, "where is order 1234?")

        assert result.commands == []
        (task,) = await h.state.queues.pending(session.id)
        assert task.type == CommandType.CREATE_TASK
        assert task.priority == CommandPriority.MEDIUM
        assert task.payload["customer_id"] == session.customer_id
        assert h.store.tasks == []


class TestCounters:
    @pytest.mark.asyncio
    async def test_text_and_voice_counts(self, harness: OrchestratorHarness) -> None:
        session = await harness.start()

        await harness.orchestrator.process_message(session.id, "typed")
        await harness.orchestrator.process_message(session.id, "spoken", MessageType.VOICE)
        await harness.orchestrator.process_message(session.id, "spoken again", "voice")

        assert session.message_count == 3
        assert session.voice_message_count == 2
        assert harness.store.counters[-1] == (session.id, 3, 2)
        stored = await harness.state.sessions.get(session.id)
        assert stored.message_count == 3

    @pytest.mark.asyncio
    async def test_counter_persist_failure_still_succeeds(self) -> None:
        h = build_harness(store=FakeSessionStore(fail_on={"update_counters"}))
        session = await h.start()

        result = await h.orchestrator.process_message(session.id, "hello")

        assert result.success is True
        assert session.message_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_messages_are_serialised(self, harness: OrchestratorHarness) -> None:
        session = await harness.start()

        results = await asyncio.gather(
            *(harness.orchestrator.process_message(session.id, f"m{i}") for i in range(5))
        )

        assert all(r.success for r in results)
        assert session.message_count == 5
        assert [c[2] for c in harness.store.counters] == [0, 0, 0, 0, 0]
        assert [c[1] for c in harness.store.counters] == [1, 2, 3, 4, 5]


class TestFailures:
    @pytest.mark.asyncio
    async def test_llm_failure_returns_apology(self) -> None:
        h = build_harness(llm=MockLLMProvider(error=RuntimeError("both models down")))
        session = await h.start()

        result = await h.orchestrator.process_message(session.id, "hello")

        assert result.success is True
        assert result.response.text == APOLOGY_MESSAGE
        assert result.response.error is True
        assert result.response.voice is None
        assert session.message_count == 1
        assert await h.redis.get(f"history:{session.id}") is None

    @pytest.mark.asyncio
    async def test_classifier_crash_is_reported(self) -> None:
        h = build_harness(classifier=_ExplodingClassifier())
        session = await h.start()

        result = await h.orchestrator.process_message(session.id, "hello")

        assert result.success is False
        assert isinstance(result.error, ProcessingError)
        assert session.message_count == 0


class TestClassificationContext:
    @pytest.mark.asyncio
    async def test_history_and_session_context_reach_classifier(
        self, harness: OrchestratorHarness
    ) -> None:
        session = await harness.start()

        await harness.orchestrator.process_message(session.id, "first question")
        await harness.orchestrator.process_message(session.id, "second question")

        first_ctx = harness.classifier.calls[0][1]
        second_ctx = harness.classifier.calls[1][1]
        assert first_ctx.history == []
        assert second_ctx.history == [
            "customer: first question",
            "assistant: Happy to help with that.",
        ]
        assert second_ctx.conversation_id == "conv-1"
        assert second_ctx.session_context == {"tier": "gold"}

    @pytest.mark.asyncio
    async def test_system_prompt_names_customer_and_intent(self) -> None:
        h = build_harness(classifier=_classified(intent="product_support", urgency=4))
        session = await h.start()

        await h.orchestrator.process_message(session.id, "the app keeps crashing")

        system_prompt = h.llm.generate_calls[0]["system_prompt"]
        assert "Priya" in system_prompt
        assert "Intent: product_support" in system_prompt
        assert h.llm.generate_calls[0]["prompt"] == "the app keeps crashing"


class TestAtomicTurn:
    @pytest.mark.asyncio
    async def test_registry_write_failure_counts_and_queues_nothing(self) -> None:
        registry = FailingSessionRegistry()
        h = build_harness(
            state=OrchestratorState(sessions=registry),
            classifier=_classified(intent="order_inquiry", urgency=5),
        )
        session = await h.start(mode="chat")
        registry.fail_on.add("put")

        result = await h.orchestrator.process_message(session.id, "where is order 1234?")

        assert result.success is False
        assert isinstance(result.error, RedisConnectionError)
        assert await h.state.queues.pending(session.id) == []
        assert session.message_count == 0
        assert h.store.counters == []

    @pytest.mark.asyncio
    async def test_queue_write_failure_rolls_back_counts(self) -> None:
        queue = FailingCommandQueue()
        h = build_harness(
            state=OrchestratorState(queues=queue),
            classifier=_classified(intent="order_inquiry", urgency=5),
        )
        session = await h.start(mode="chat")
        queue.fail_append = True

        result = await h.orchestrator.process_message(session.id, "voice note", MessageType.VOICE)

        assert result.success is False
        assert session.message_count == 0
        assert session.voice_message_count == 0
        stored = await h.state.sessions.get(session.id)
        assert stored.message_count == 0
        assert await h.state.queues.pending(session.id) == []
        assert h.store.counters == []

        queue.fail_append = False
        result = await h.orchestrator.process_message(session.id, "where is order 1234?")
        assert result.success is True
        assert session.message_count == 1
        assert len(await h.state.queues.pending(session.id)) == 1


class TestLockHousekeeping:
    @pytest.mark.asyncio
    async def test_unknown_ids_leave_no_locks(self, harness: OrchestratorHarness) -> None:
        for i in range(25):
            await harness.orchestrator.end_session(f"ghost-{i}")
            await harness.orchestrator.process_message(f"ghost-msg-{i}", "hello")
            await harness.orchestrator.execute_command(
                f"ghost-cmd-{i}", Command(type=CommandType.CREATE_TASK)
            )
            await harness.orchestrator.process_queued_commands(f"ghost-queue-{i}")

        assert harness.state.lock_count == 0

    @pytest.mark.asyncio
    async def test_live_session_keeps_no_lock_between_turns(
        self, harness: OrchestratorHarness
    ) -> None:
        session = await harness.start()
        await harness.orchestrator.process_message(session.id, "hello")
        await harness.orchestrator.process_all_queued_commands()
        assert harness.state.lock_count == 0
