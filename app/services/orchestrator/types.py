"""Value objects and enums shared by the orchestration core.

LiveSession is the in-registry view of a conversation. It serialises to
plain JSON (to_dict / from_dict) so the Redis registry can hold it.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from app.core.exceptions import InvalidSessionTransitionError, OrchestratorError


class SessionMode(str, Enum):
    VOICE = "voice"
    CHAT = "chat"
    HYBRID = "hybrid"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class MessageType(str, Enum):
    VOICE = "voice"
    TEXT = "text"


class ResponseStrategy(str, Enum):
    VOICE_ONLY = "voice_only"
    TEXT_ONLY = "text_only"
    VOICE_WITH_TEXT = "voice_with_text"
    ESCALATE = "escalate"


class CommandType(str, Enum):
    VOICE_RESPONSE = "voice_response"
    TEXT_RESPONSE = "text_response"
    TRANSFER_AGENT = "transfer_agent"
    CREATE_TASK = "create_task"
    SCHEDULE_CALLBACK = "schedule_callback"
    END_SESSION = "end_session"


class CommandPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.ACTIVE: frozenset({SessionStatus.PAUSED, SessionStatus.ENDED}),
    SessionStatus.PAUSED: frozenset({SessionStatus.ACTIVE, SessionStatus.ENDED}),
    SessionStatus.ENDED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """True if current → target is a legal session status change."""
    return target in _ALLOWED_TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class VoiceConfig:
    """Speech synthesis settings carried on every session."""

    provider: str = "elevenlabs"
    language: str = "en-US"
    speed: float = 1.0
    pitch: float = 1.0
    stability: float = 0.5
    similarity: float = 0.75
    voice_id: str | None = None

    @classmethod
    def with_overrides(
        cls, language: str, overrides: dict[str, Any] | None = None
    ) -> VoiceConfig:
        """Defaults for *language*, with any known override fields applied."""
        config = cls(language=language)
        for key, value in (overrides or {}).items():
            if hasattr(config, key) and value is not None:
                setattr(config, key, value)
        return config

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one inbound message."""

    intent: str
    sentiment: str
    urgency_score: int
    category: str
    priority: str = "low"
    confidence: float = 0.0
    keywords_matched: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["keywords_matched"] = list(self.keywords_matched)
        return data


@dataclass
class Command:
    """A side effect emitted by a processed message."""

    type: CommandType | str
    payload: dict[str, Any] = field(default_factory=dict)
    priority: CommandPriority = CommandPriority.MEDIUM
    execute_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def is_ready(self, now: datetime) -> bool:
        return self.execute_at is None or self.execute_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value if isinstance(self.type, CommandType) else self.type,
            "payload": self.payload,
            "priority": self.priority.value,
            "execute_at": self.execute_at.isoformat() if self.execute_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        raw_type = data["type"]
        try:
            command_type: CommandType | str = CommandType(raw_type)
        except ValueError:
            command_type = raw_type
        return cls(
            id=data["id"],
            type=command_type,
            payload=data.get("payload") or {},
            priority=CommandPriority(data.get("priority", "medium")),
            execute_at=_parse_dt(data.get("execute_at")),
        )


@dataclass
class LiveSession:
    """One customer conversation as tracked by the orchestrator."""

    id: str
    tenant_id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    mode: SessionMode
    language: str
    voice_config: VoiceConfig
    status: SessionStatus = SessionStatus.ACTIVE
    conversation_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=_utcnow)
    ended_at: datetime | None = None
    total_duration: int | None = None
    message_count: int = 0
    voice_message_count: int = 0

    def transition_to(self, target: SessionStatus) -> None:
        """Apply a status change, rejecting anything outside the lifecycle."""
        if not can_transition(self.status, target):
            raise InvalidSessionTransitionError(
                f"Cannot move session {self.id} from {self.status.value} to {target.value}"
            )
        self.status = target

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "mode": self.mode.value,
            "language": self.language,
            "voice_config": self.voice_config.to_dict(),
            "status": self.status.value,
            "conversation_id": self.conversation_id,
            "context": self.context,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "total_duration": self.total_duration,
            "message_count": self.message_count,
            "voice_message_count": self.voice_message_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LiveSession:
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            customer_id=data["customer_id"],
            customer_name=data["customer_name"],
            customer_phone=data["customer_phone"],
            mode=SessionMode(data["mode"]),
            language=data["language"],
            voice_config=VoiceConfig(**data["voice_config"]),
            status=SessionStatus(data["status"]),
            conversation_id=data.get("conversation_id"),
            context=data.get("context") or {},
            started_at=datetime.fromisoformat(data["started_at"]),
            ended_at=_parse_dt(data.get("ended_at")),
            total_duration=data.get("total_duration"),
            message_count=data.get("message_count", 0),
            voice_message_count=data.get("voice_message_count", 0),
        )


@dataclass
class VoiceAttachment:
    audio_url: str | None
    duration: float | None
    provider: str


@dataclass
class OrchestratorResponse:
    """Reply produced for one inbound message."""

    text: str
    strategy: ResponseStrategy | None = None
    classification: Classification | None = None
    voice: VoiceAttachment | None = None
    error: bool = False
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "text": self.text,
            "strategy": self.strategy.value if self.strategy else None,
            "classification": self.classification.to_dict() if self.classification else None,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.voice is not None:
            data["voice"] = asdict(self.voice)
        if self.error:
            data["error"] = True
        return data


@dataclass
class ProcessResult:
    """Outcome of process_message.

    ``commands`` holds only the high-priority commands executed inline.
    ``error`` carries the typed failure when ``success`` is False.
    """

    success: bool
    response: OrchestratorResponse | None = None
    commands: list[Command] = field(default_factory=list)
    error: OrchestratorError | None = None
