"""WhatsApp Cloud API message delivery.

send() never raises. Media uploads are retried with exponential backoff
on network errors, 5xx and 429. Message posts are not idempotent, so they
are retried only when the request cannot have been accepted: connection
failures and 429. Anything else fails immediately.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

import httpx
import structlog

from app.services.channels import is_transient

logger = structlog.get_logger(__name__)

_TIMEOUT_SECONDS = 10.0


@dataclass
class OutboundMessage:
    """One message to a customer. Set text, audio, or both (sent as two messages)."""

    conversation_id: str
    to: str
    text: str | None = None
    audio_url: str | None = None
    audio: bytes | None = None


@dataclass
class SendResult:
    success: bool
    message_ids: list[str]
    error: str | None = None


class ChannelSender(ABC):
    @abstractmethod
    async def send(self, message: OutboundMessage) -> SendResult: ...


def _never_delivered(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    return isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout))


class WhatsAppSender(ChannelSender):
    """Sends text and audio through the Graph API messages endpoint.

    Audio bytes, when present, are uploaded as media first and referenced
    by id; otherwise the audio is sent by link.
    """

    def __init__(
        self,
        api_url: str,
        access_token: str,
        phone_number_id: str,
        backoff_seconds: Sequence[float] = (1, 2, 4),
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base = f"{api_url.rstrip('/')}/{phone_number_id}"
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._backoff = list(backoff_seconds)
        self._transport = transport

    async def send(self, message: OutboundMessage) -> SendResult:
        if not message.text and not message.audio_url and not message.audio:
            return SendResult(success=False, message_ids=[], error="Empty message")

        message_ids: list[str] = []
        try:
            async with httpx.AsyncClient(
                timeout=_TIMEOUT_SECONDS,
                headers=self._headers,
                transport=self._transport,
            ) as client:
                if message.audio or message.audio_url:
                    audio_ref = await self._audio_reference(client, message)
                    message_ids.append(
                        await self._post_message(
                            client, message.to, {"type": "audio", "audio": audio_ref}
                        )
                    )
                if message.text:
                    message_ids.append(
                        await self._post_message(
                            client,
                            message.to,
                            {"type": "text", "text": {"body": message.text}},
                        )
                    )
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(
                "whatsapp_send_failed",
                conversation_id=message.conversation_id,
                error=str(e),
            )
            return SendResult(success=False, message_ids=message_ids, error=str(e))

        logger.info(
            "whatsapp_message_sent",
            conversation_id=message.conversation_id,
            message_ids=message_ids,
        )
        return SendResult(success=True, message_ids=message_ids)

    async def _audio_reference(
        self, client: httpx.AsyncClient, message: OutboundMessage
    ) -> dict[str, str]:
        if message.audio:
            body = await self._with_retries(
                lambda: client.post(
                    f"{self._base}/media",
                    data={"messaging_product": "whatsapp", "type": "audio/mpeg"},
                    files={"file": ("reply.mp3", message.audio, "audio/mpeg")},
                ),
                retryable=is_transient,
                conversation_id=message.conversation_id,
            )
            return {"id": body["id"]}
        return {"link": message.audio_url}

    async def _post_message(
        self, client: httpx.AsyncClient, to: str, content: dict[str, Any]
    ) -> str:
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to}
        payload.update(content)
        body = await self._with_retries(
            lambda: client.post(f"{self._base}/messages", json=payload),
            retryable=_never_delivered,
            conversation_id=None,
        )
        return body["messages"][0]["id"]

    async def _with_retries(
        self,
        request: Callable[[], Awaitable[httpx.Response]],
        retryable: Callable[[Exception], bool],
        conversation_id: str | None,
    ) -> dict[str, Any]:
        attempts = len(self._backoff) or 1
        for attempt in range(attempts):
            try:
                response = await request()
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                if not retryable(e) or attempt == attempts - 1:
                    raise
                logger.warning(
                    "whatsapp_request_retry",
                    conversation_id=conversation_id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self._backoff[attempt])
        raise RuntimeError("unreachable")
