"""Conversation orchestrator: the session lifecycle and message pipeline.

Turn flow for one inbound message:
  classify → pick strategy → generate reply (text, plus voice when the
  strategy calls for it) → derive commands → count the message and queue
  the deferred commands together → run high-priority commands inline.
A turn that fails before that commit leaves nothing counted or queued.

All work on one session runs under that session's lock from
OrchestratorState. Apart from start_session, public methods never raise;
failures come back as False, None or ProcessResult(success=False, error=...).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog

from app.core.exceptions import (
    CustomerNotFoundError,
    OrchestratorError,
    ProcessingError,
    SessionInactiveError,
    SessionNotFoundError,
    SessionStartError,
)
from app.services.channels.voice import SpeechResult, VoiceSynthesizer
from app.services.channels.whatsapp import ChannelSender, OutboundMessage
from app.services.customers import CustomerDirectory
from app.services.orchestrator.classifier import ClassificationContext, MessageClassifier
from app.services.orchestrator.commands import generate_commands, partition_by_priority
from app.services.orchestrator.generator import ResponseGenerator
from app.services.orchestrator.history import ConversationHistory
from app.services.orchestrator.prompts import (
    APOLOGY_MESSAGE,
    FAREWELL_MESSAGE,
    build_system_prompt,
    transfer_message,
    welcome_message,
)
from app.services.orchestrator.registry import OrchestratorState
from app.services.orchestrator.store import SessionStore
from app.services.orchestrator.strategy import determine_strategy, wants_voice
from app.services.orchestrator.types import (
    Classification,
    Command,
    CommandType,
    LiveSession,
    MessageType,
    OrchestratorResponse,
    ProcessResult,
    ResponseStrategy,
    SessionMode,
    SessionStatus,
    VoiceAttachment,
    VoiceConfig,
    can_transition,
)
from app.services.team.assignment import TeamAssignmentService

logger = structlog.get_logger(__name__)

CommandHandler = Callable[[LiveSession, dict[str, Any]], Awaitable[bool]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationOrchestrator:
    """Composes classifier, generator, voice, channel, team and storage."""

    def __init__(
        self,
        state: OrchestratorState,
        customers: CustomerDirectory,
        classifier: MessageClassifier,
        generator: ResponseGenerator,
        voice: VoiceSynthesizer,
        sender: ChannelSender,
        team: TeamAssignmentService,
        store: SessionStore,
        history: ConversationHistory | None = None,
    ) -> None:
        self._state = state
        self._customers = customers
        self._classifier = classifier
        self._generator = generator
        self._voice = voice
        self._sender = sender
        self._team = team
        self._store = store
        self._history = history
        self._handlers: dict[CommandType, CommandHandler] = {
            CommandType.TRANSFER_AGENT: self._transfer_to_agent,
            CommandType.CREATE_TASK: self._create_task,
            CommandType.SCHEDULE_CALLBACK: self._schedule_callback,
            CommandType.VOICE_RESPONSE: self._send_voice_response,
            CommandType.TEXT_RESPONSE: self._send_text_response,
            CommandType.END_SESSION: self._handle_end_session,
        }

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(
        self,
        tenant_id: str,
        customer_id: str,
        customer_phone: str,
        mode: SessionMode | str = SessionMode.HYBRID,
        voice_config_overrides: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> LiveSession:
        """Create, persist and register a session, then greet the customer.

        Raises CustomerNotFoundError or SessionStartError.
        """
        customer = await self._customers.get(customer_id)
        if customer is None:
            raise CustomerNotFoundError(f"Customer {customer_id} not found")

        language = customer.language or "en-US"
        session = LiveSession(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            customer_id=customer_id,
            customer_name=customer.name,
            customer_phone=customer_phone,
            mode=SessionMode(mode),
            language=language,
            voice_config=VoiceConfig.with_overrides(language, voice_config_overrides),
            conversation_id=conversation_id,
            context=dict(customer.metadata),
        )
        try:
            await self._store.create_session(session)
            await self._state.sessions.put(session)
            await self._state.queues.create(session.id)
        except OrchestratorError as e:
            raise SessionStartError(f"Session could not be started: {e.message}") from e

        await self._send_welcome(session)
        logger.info(
            "session_initialized",
            session_id=session.id,
            tenant_id=tenant_id,
            customer_id=customer_id,
            mode=session.mode.value,
            language=language,
        )
        return session

    async def initialize_session(
        self,
        tenant_id: str,
        customer_id: str,
        customer_phone: str,
        mode: SessionMode | str = SessionMode.HYBRID,
        voice_config_overrides: dict[str, Any] | None = None,
        conversation_id: str | None = None,
    ) -> LiveSession | None:
        """start_session, returning None instead of raising."""
        try:
            return await self.start_session(
                tenant_id,
                customer_id,
                customer_phone,
                mode=mode,
                voice_config_overrides=voice_config_overrides,
                conversation_id=conversation_id,
            )
        except OrchestratorError as e:
            logger.warning(
                "session_initialize_failed",
                tenant_id=tenant_id,
                customer_id=customer_id,
                code=e.code,
                error=e.message,
            )
        except Exception as e:
            logger.error(
                "session_initialize_failed",
                tenant_id=tenant_id,
                customer_id=customer_id,
                error=str(e),
                exc_info=True,
            )
        return None

    async def get_session(self, session_id: str) -> LiveSession | None:
        return await self._state.sessions.get(session_id)

    async def get_active_sessions(self, tenant_id: str) -> list[LiveSession]:
        """Every live (active or paused) session owned by the tenant."""
        return await self._state.sessions.list_for_tenant(tenant_id)

    async def end_session(self, session_id: str, reason: str | None = None) -> bool:
        async with self._state.lock_for(session_id):
            return await self._end_session(session_id, reason)

    async def _end_session(self, session_id: str, reason: str | None) -> bool:
        """End a session. Caller holds the session lock."""
        try:
            session = await self._state.sessions.get(session_id)
            if session is None:
                return False

            ended_at = _utcnow()
            duration = int((ended_at - session.started_at).total_seconds())
            await self._store.mark_ended(session_id, ended_at, duration, reason)
            try:
                await self._state.sessions.remove(session_id)
            except OrchestratorError:
                await self._reopen_row(session)
                raise

            session.transition_to(SessionStatus.ENDED)
            session.ended_at = ended_at
            session.total_duration = duration
        except OrchestratorError as e:
            logger.error(
                "session_end_failed", session_id=session_id, code=e.code, error=e.message
            )
            return False
        except Exception as e:
            logger.error("session_end_failed", session_id=session_id, error=str(e), exc_info=True)
            return False

        try:
            await self._state.queues.delete(session_id)
        except OrchestratorError as e:
            logger.warning("command_queue_cleanup_failed", session_id=session_id, error=e.message)
        await self._clear_history(session_id)
        await self._send_text(session, FAREWELL_MESSAGE)
        logger.info(
            "session_ended",
            session_id=session_id,
            reason=reason,
            total_duration=duration,
            message_count=session.message_count,
        )
        return True

    async def resume_session(self, session_id: str) -> bool:
        """Move a paused session (e.g. after a human handoff) back to active."""
        async with self._state.lock_for(session_id):
            session = await self._state.sessions.get(session_id)
            if session is None or session.status != SessionStatus.PAUSED:
                return False
            try:
                await self._store.update_status(session_id, SessionStatus.ACTIVE)
                session.transition_to(SessionStatus.ACTIVE)
                await self._state.sessions.put(session)
            except OrchestratorError as e:
                logger.error(
                    "session_resume_failed", session_id=session_id, code=e.code, error=e.message
                )
                return False
        logger.info("session_resumed", session_id=session_id)
        return True

    # ------------------------------------------------------------------
    # Message pipeline
    # ------------------------------------------------------------------

    async def process_message(
        self,
        session_id: str,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
        audio_data: bytes | None = None,
    ) -> ProcessResult:
        async with self._state.lock_for(session_id):
            session = await self._state.sessions.get(session_id)
            if session is None:
                return ProcessResult(
                    success=False,
                    error=SessionNotFoundError(f"Session {session_id} not found"),
                )
            if session.status != SessionStatus.ACTIVE:
                return ProcessResult(
                    success=False,
                    error=SessionInactiveError(
                        f"Session {session_id} is {session.status.value}"
                    ),
                )

            try:
                return await self._process(session, content, MessageType(message_type), audio_data)
            except OrchestratorError as e:
                logger.error(
                    "message_processing_failed",
                    session_id=session_id,
                    code=e.code,
                    error=e.message,
                )
                return ProcessResult(success=False, error=e)
            except Exception as e:
                logger.error(
                    "message_processing_failed",
                    session_id=session_id,
                    error=str(e),
                    exc_info=True,
                )
                return ProcessResult(success=False, error=ProcessingError(str(e)))

    async def _process(
        self,
        session: LiveSession,
        content: str,
        message_type: MessageType,
        audio_data: bytes | None,
    ) -> ProcessResult:
        context = ClassificationContext(
            history=await self._load_history(session.id),
            conversation_id=session.conversation_id,
            session_context=session.context,
        )
        classification = await self._classifier.classify(content, context)
        strategy = determine_strategy(session, classification)
        response = await self._generate_response(session, content, classification, strategy)

        commands = generate_commands(session, classification)
        immediate, deferred = partition_by_priority(commands)
        await self._commit_turn(session, message_type, deferred)
        await self._remember_turn(session.id, content, response)

        for command in immediate:
            await self._execute(session, command)

        logger.info(
            "message_processed",
            session_id=session.id,
            message_type=message_type.value,
            audio_bytes=len(audio_data) if audio_data else 0,
            intent=classification.intent,
            urgency_score=classification.urgency_score,
            strategy=strategy.value,
            executed=len(immediate),
            queued=len(deferred),
        )
        return ProcessResult(success=True, response=response, commands=immediate)

    async def _generate_response(
        self,
        session: LiveSession,
        content: str,
        classification: Classification,
        strategy: ResponseStrategy,
    ) -> OrchestratorResponse:
        try:
            text = await self._generator.generate(
                build_system_prompt(session, classification), content
            )
        except Exception as e:
            logger.error("response_generation_failed", session_id=session.id, error=str(e))
            return OrchestratorResponse(
                text=APOLOGY_MESSAGE,
                strategy=strategy,
                classification=classification,
                error=True,
            )

        response = OrchestratorResponse(
            text=text, strategy=strategy, classification=classification
        )
        if wants_voice(strategy):
            speech = await self._synthesize(session, text)
            if speech.success:
                response.voice = VoiceAttachment(
                    audio_url=speech.audio_url,
                    duration=speech.duration,
                    provider=speech.provider,
                )
        return response

    async def _commit_turn(
        self, session: LiveSession, message_type: MessageType, deferred: list[Command]
    ) -> None:
        """Count the message and queue deferred commands, or do neither."""
        counts = (session.message_count, session.voice_message_count)
        session.message_count += 1
        if message_type == MessageType.VOICE:
            session.voice_message_count += 1
        try:
            await self._state.sessions.put(session)
            await self._state.queues.append(session.id, deferred)
        except Exception:
            session.message_count, session.voice_message_count = counts
            try:
                await self._state.sessions.put(session)
            except OrchestratorError as e:
                logger.error("session_rollback_failed", session_id=session.id, error=e.message)
            raise

        try:
            await self._store.update_counters(session)
        except OrchestratorError as e:
            logger.warning("session_metrics_persist_failed", session_id=session.id, error=e.message)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute_command(self, session_id: str, command: Command) -> bool:
        async with self._state.lock_for(session_id):
            session = await self._state.sessions.get(session_id)
            if session is None:
                logger.warning("command_session_missing", session_id=session_id, command_id=command.id)
                return False
            return await self._execute(session, command)

    async def _execute(self, session: LiveSession, command: Command) -> bool:
        """Run one command. Caller holds the session lock."""
        handler = self._handlers.get(command.type) if isinstance(command.type, CommandType) else None
        if handler is None:
            logger.warning(
                "unknown_command_type", session_id=session.id, command_type=str(command.type)
            )
            return False
        try:
            success = await handler(session, command.payload)
        except OrchestratorError as e:
            logger.error(
                "command_failed",
                session_id=session.id,
                command_type=command.type.value,
                code=e.code,
                error=e.message,
            )
            return False
        except Exception as e:
            logger.error(
                "command_failed",
                session_id=session.id,
                command_type=command.type.value,
                error=str(e),
                exc_info=True,
            )
            return False
        logger.info(
            "command_executed",
            session_id=session.id,
            command_id=command.id,
            command_type=command.type.value,
            success=success,
        )
        return success

    async def process_queued_commands(
        self, session_id: str, now: datetime | None = None
    ) -> int:
        """Run every queued command that is due, oldest first. Returns how many ran."""
        async with self._state.lock_for(session_id):
            ready = await self._state.queues.pop_ready(session_id, now or _utcnow())
            executed = 0
            for command in ready:
                session = await self._state.sessions.get(session_id)
                if session is None:
                    logger.warning(
                        "queued_command_dropped", session_id=session_id, command_id=command.id
                    )
                    continue
                await self._execute(session, command)
                executed += 1
        return executed

    async def process_all_queued_commands(self) -> int:
        """Drain the queue of every live session."""
        total = 0
        for session_id in await self._state.sessions.session_ids():
            try:
                total += await self.process_queued_commands(session_id)
            except OrchestratorError as e:
                logger.error("queue_drain_failed", session_id=session_id, error=e.message)
        if total:
            logger.info("queued_commands_drained", executed=total)
        return total

    async def _transfer_to_agent(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        if not session.conversation_id:
            logger.warning("transfer_without_conversation", session_id=session.id)
            return False
        if not can_transition(session.status, SessionStatus.PAUSED):
            return False

        assignment = await self._team.auto_assign(
            session.conversation_id,
            session.tenant_id,
            preferred_agent_id=payload.get("preferred_agent_id"),
            specialization_hints=payload.get("specialization"),
        )
        if not assignment.success:
            logger.warning(
                "transfer_unassigned", session_id=session.id, error=assignment.error
            )
            return False

        await self._store.update_status(session.id, SessionStatus.PAUSED)
        session.transition_to(SessionStatus.PAUSED)
        await self._state.sessions.put(session)
        await self._send_text(session, transfer_message(assignment.agent_name or "a team member"))
        logger.info(
            "session_transferred",
            session_id=session.id,
            agent_id=assignment.agent_id,
            reason=payload.get("reason"),
        )
        return True

    async def _create_task(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        task_id = await self._store.insert_task(session, payload)
        logger.info("task_created", session_id=session.id, task_id=task_id)
        return True

    async def _schedule_callback(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        callback_id = await self._store.insert_callback(session, payload)
        logger.info("callback_scheduled", session_id=session.id, callback_id=callback_id)
        return True

    async def _send_voice_response(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        return await self._send_voice(session, payload["message"])

    async def _send_text_response(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        return await self._send_text(session, payload["message"])

    async def _handle_end_session(self, session: LiveSession, payload: dict[str, Any]) -> bool:
        return await self._end_session(session.id, payload.get("reason"))

    # ------------------------------------------------------------------
    # Channel helpers (never raise)
    # ------------------------------------------------------------------

    async def _synthesize(self, session: LiveSession, text: str) -> SpeechResult:
        try:
            speech = await self._voice.speak(text, session.voice_config)
        except Exception as e:
            logger.warning("voice_synthesis_error", session_id=session.id, error=str(e))
            return SpeechResult(success=False, provider=session.voice_config.provider, error=str(e))
        if not speech.success:
            logger.warning("voice_synthesis_unavailable", session_id=session.id, error=speech.error)
        return speech

    async def _send_voice(self, session: LiveSession, text: str) -> bool:
        speech = await self._synthesize(session, text)
        if not speech.success:
            return False
        if not session.conversation_id:
            # Synthesised but nowhere to deliver; the clip stays addressable by URL.
            return True
        return await self._deliver(
            session,
            OutboundMessage(
                conversation_id=session.conversation_id,
                to=session.customer_phone,
                audio_url=speech.audio_url,
                audio=speech.audio,
            ),
        )

    async def _send_text(self, session: LiveSession, text: str) -> bool:
        if not session.conversation_id:
            return False
        return await self._deliver(
            session,
            OutboundMessage(
                conversation_id=session.conversation_id,
                to=session.customer_phone,
                text=text,
            ),
        )

    async def _deliver(self, session: LiveSession, message: OutboundMessage) -> bool:
        try:
            result = await self._sender.send(message)
        except Exception as e:
            logger.warning("channel_send_error", session_id=session.id, error=str(e))
            return False
        if not result.success:
            logger.warning("channel_send_failed", session_id=session.id, error=result.error)
        return result.success

    async def _send_welcome(self, session: LiveSession) -> None:
        message = welcome_message(session)
        if session.mode in (SessionMode.VOICE, SessionMode.HYBRID):
            await self._send_voice(session, message)
        if session.mode in (SessionMode.CHAT, SessionMode.HYBRID):
            await self._send_text(session, message)

    # ------------------------------------------------------------------
    # History helpers (best effort)
    # ------------------------------------------------------------------

    async def _load_history(self, session_id: str) -> list[str]:
        if self._history is None:
            return []
        try:
            return await self._history.load_lines(session_id)
        except OrchestratorError as e:
            logger.warning("history_load_failed", session_id=session_id, error=e.message)
            return []

    async def _remember_turn(
        self, session_id: str, content: str, response: OrchestratorResponse
    ) -> None:
        if self._history is None or response.error:
            return
        try:
            await self._history.append_turn(session_id, content, response.text)
        except OrchestratorError as e:
            logger.warning("history_save_failed", session_id=session_id, error=e.message)

    async def _clear_history(self, session_id: str) -> None:
        if self._history is None:
            return
        try:
            await self._history.clear(session_id)
        except OrchestratorError as e:
            logger.warning("history_clear_failed", session_id=session_id, error=e.message)

    async def _reopen_row(self, session: LiveSession) -> None:
        """Undo mark_ended when the live registry could not drop the session."""
        try:
            await self._store.reopen(session.id, session.status)
        except OrchestratorError as e:
            logger.error("session_reopen_failed", session_id=session.id, error=e.message)
