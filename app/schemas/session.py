"""Session request/response schemas."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.services.orchestrator.types import LiveSession


class VoiceConfigOverrides(BaseModel):
    """Optional per-session voice settings. Unset fields keep the defaults."""

    voice_id: str | None = None
    speed: float | None = Field(default=None, gt=0, le=4)
    pitch: float | None = None
    stability: float | None = Field(default=None, ge=0, le=1)
    similarity: float | None = Field(default=None, ge=0, le=1)


class SessionStartRequest(BaseModel):
    """POST /v1/sessions request body."""

    customer_id: uuid.UUID
    customer_phone: str = Field(min_length=3)
    mode: Literal["voice", "chat", "hybrid"] = "hybrid"
    conversation_id: str | None = None
    voice_config: VoiceConfigOverrides | None = None


class SessionResponse(BaseModel):
    """A live session as returned by every /v1/sessions endpoint."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    customer_id: str
    customer_name: str
    customer_phone: str
    conversation_id: str | None = None
    mode: str
    status: str
    language: str
    voice_config: dict[str, Any]
    message_count: int
    voice_message_count: int
    started_at: datetime

    @classmethod
    def from_live(cls, session: LiveSession) -> "SessionResponse":
        return cls(
            session_id=session.id,
            customer_id=session.customer_id,
            customer_name=session.customer_name,
            customer_phone=session.customer_phone,
            conversation_id=session.conversation_id,
            mode=session.mode.value,
            status=session.status.value,
            language=session.language,
            voice_config=session.voice_config.to_dict(),
            message_count=session.message_count,
            voice_message_count=session.voice_message_count,
            started_at=session.started_at,
        )


class SessionListResponse(BaseModel):
    """GET /v1/sessions response body."""

    sessions: list[SessionResponse]


class SessionEndRequest(BaseModel):
    """POST /v1/sessions/{session_id}/end request body."""

    reason: str | None = None


class SessionActionResponse(BaseModel):
    """Response for end / resume."""

    session_id: str
    status: str


class DrainResponse(BaseModel):
    """POST /v1/sessions/{session_id}/commands/drain response body."""

    session_id: str
    executed: int
