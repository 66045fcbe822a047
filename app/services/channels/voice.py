"""Text-to-speech synthesis.

speak() never raises: provider errors come back as SpeechResult(success=False)
so a failed synthesis only drops the voice part of a reply.

Clips are not hosted by this service. The raw bytes ride along on the
result and the channel sender uploads them as media, so ``audio_url`` is
left unset by ElevenLabsSynthesizer.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence

import httpx
import structlog

from app.services.channels import is_transient
from app.services.orchestrator.types import VoiceConfig

logger = structlog.get_logger(__name__)

_ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech"
_OUTPUT_FORMAT = "mp3_44100_128"
_BITRATE_BPS = 128_000
_TIMEOUT_SECONDS = 10.0


@dataclass
class SpeechResult:
    success: bool
    provider: str
    audio_url: str | None = None
    duration: float | None = None
    audio: bytes | None = None
    error: str | None = None


class VoiceSynthesizer(ABC):
    @abstractmethod
    async def speak(self, text: str, voice_config: VoiceConfig) -> SpeechResult:
        """Synthesize *text* with the session's voice settings."""


def estimate_mp3_duration(audio: bytes, bitrate_bps: int = _BITRATE_BPS) -> float:
    """Seconds of audio in a constant-bitrate MP3 payload."""
    return round(len(audio) * 8 / bitrate_bps, 2)


class ElevenLabsSynthesizer(VoiceSynthesizer):
    """ElevenLabs text-to-speech over its REST API.

    Network errors, 5xx and 429 are retried with exponential backoff.
    """

    provider = "elevenlabs"

    def __init__(
        self,
        api_key: str,
        default_voice_id: str,
        model_id: str,
        backoff_seconds: Sequence[float] = (1, 2, 4),
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._default_voice_id = default_voice_id
        self._model_id = model_id
        self._backoff = list(backoff_seconds)
        self._transport = transport

    async def speak(self, text: str, voice_config: VoiceConfig) -> SpeechResult:
        if not self._api_key:
            return SpeechResult(
                success=False,
                provider=self.provider,
                error="ElevenLabs API key not configured",
            )

        voice_id = voice_config.voice_id or self._default_voice_id
        body = {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": {
                "stability": voice_config.stability,
                "similarity_boost": voice_config.similarity,
                "speed": voice_config.speed,
                "use_speaker_boost": True,
            },
        }
        try:
            async with httpx.AsyncClient(
                timeout=_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await self._post_with_retries(client, voice_id, body)
        except httpx.HTTPStatusError as e:
            logger.warning(
                "voice_synthesis_rejected",
                status_code=e.response.status_code,
                voice_id=voice_id,
            )
            return SpeechResult(
                success=False,
                provider=self.provider,
                error=f"ElevenLabs API error: {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            logger.warning("voice_synthesis_failed", error=str(e), voice_id=voice_id)
            return SpeechResult(
                success=False,
                provider=self.provider,
                error=f"ElevenLabs request failed: {e}",
            )

        audio = response.content
        result = SpeechResult(
            success=True,
            provider=self.provider,
            duration=estimate_mp3_duration(audio),
            audio=audio,
        )
        logger.debug(
            "voice_synthesized",
            voice_id=voice_id,
            text_len=len(text),
            duration=result.duration,
        )
        return result

    async def _post_with_retries(
        self, client: httpx.AsyncClient, voice_id: str, body: dict[str, Any]
    ) -> httpx.Response:
        attempts = len(self._backoff) or 1
        for attempt in range(attempts):
            try:
                response = await client.post(
                    f"{_ELEVENLABS_URL}/{voice_id}",
                    params={"output_format": _OUTPUT_FORMAT},
                    json=body,
                    headers={"xi-api-key": self._api_key, "Accept": "audio/mpeg"},
                )
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                if not is_transient(e) or attempt == attempts - 1:
                    raise
                logger.warning(
                    "voice_synthesis_retry",
                    voice_id=voice_id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self._backoff[attempt])
        raise RuntimeError("unreachable")
