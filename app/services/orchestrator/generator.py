"""Text reply generation on top of an LLMProvider."""

from __future__ import annotations

import structlog

from app.core.config import settings
from app.services.llm.base import LLMProvider
from app.services.orchestrator.prompts import DEFAULT_REPLY

logger = structlog.get_logger(__name__)


class ResponseGenerator:
    """Produces the customer-facing text for one message.

    Provider errors propagate; the orchestrator turns them into the
    apology response.
    """

    def __init__(
        self,
        llm: LLMProvider,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._llm = llm
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = (
            settings.llm_temperature if temperature is None else temperature
        )

    async def generate(self, system_prompt: str, text: str) -> str:
        result = await self._llm.generate(
            prompt=text,
            system_prompt=system_prompt,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        reply = result.text.strip()
        if not reply:
            logger.warning("llm_empty_reply", model_tokens=result.output_tokens)
            return DEFAULT_REPLY
        return reply
