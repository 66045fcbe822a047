"""Message request/response schemas."""

import base64
import binascii
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from app.services.orchestrator.types import Command, OrchestratorResponse


class MessageRequest(BaseModel):
    """POST /v1/sessions/{session_id}/messages request body.

    Voice messages arrive already transcribed; ``audio_base64`` is the
    original clip, kept for the record only.
    """

    content: str = Field(min_length=1)
    message_type: Literal["text", "voice"] = "text"
    audio_base64: str | None = None

    @field_validator("audio_base64")
    @classmethod
    def _valid_base64(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError("audio_base64 is not valid base64") from e
        return value

    def audio_bytes(self) -> bytes | None:
        return base64.b64decode(self.audio_base64) if self.audio_base64 else None


class VoiceOut(BaseModel):
    audio_url: str | None = None
    duration: float | None = None
    provider: str


class ClassificationOut(BaseModel):
    intent: str
    sentiment: str
    urgency_score: int
    category: str
    priority: str
    confidence: float
    keywords_matched: list[str] = []


class CommandOut(BaseModel):
    id: str
    type: str
    priority: str
    payload: dict[str, Any]

    @classmethod
    def from_command(cls, command: Command) -> "CommandOut":
        data = command.to_dict()
        return cls(
            id=data["id"], type=data["type"], priority=data["priority"], payload=data["payload"]
        )


class MessageResponse(BaseModel):
    """POST /v1/sessions/{session_id}/messages response body."""

    text: str
    strategy: str | None = None
    classification: ClassificationOut | None = None
    voice: VoiceOut | None = None
    error: bool = False
    timestamp: datetime
    commands: list[CommandOut] = []

    @classmethod
    def from_result(
        cls, response: OrchestratorResponse, commands: list[Command]
    ) -> "MessageResponse":
        data = response.to_dict()
        return cls(
            text=data["text"],
            strategy=data["strategy"],
            classification=data["classification"],
            voice=data.get("voice"),
            error=data.get("error", False),
            timestamp=response.timestamp,
            commands=[CommandOut.from_command(c) for c in commands],
        )
