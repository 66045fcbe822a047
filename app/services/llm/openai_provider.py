"""OpenAI chat-completions LLM provider.

Works against api.openai.com or any OpenAI-compatible base URL.
All external calls have a 10-second timeout and structured error logging.
"""

import asyncio

import structlog
from openai import AsyncOpenAI

from app.core.exceptions import ExternalServiceError, RateLimitExceededError
from app.services.llm.base import LLMProvider, LLMResponse

logger = structlog.get_logger(__name__)

_TIMEOUT_SECONDS = 10


def _is_rate_limit(error_text: str) -> bool:
    text = error_text.lower()
    return "429" in text or "rate limit" in text or "quota" in text


class OpenAIProvider(LLMProvider):
    """Chat completions via the official AsyncOpenAI client."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
    ) -> None:
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model
        logger.info("openai_provider_initialized", model=model)

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a complete response with one chat-completions call."""
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature,
                ),
                timeout=_TIMEOUT_SECONDS,
            )
            text = response.choices[0].message.content or ""
            usage = response.usage
            result = LLMResponse(
                text=text,
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
            )
            logger.debug(
                "openai_generate_ok",
                model=self._model,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                prompt_len=len(prompt),
            )
            return result
        except asyncio.TimeoutError as e:
            logger.error("openai_generate_timeout", model=self._model, prompt_len=len(prompt))
            raise ExternalServiceError("OpenAI generate timed out") from e
        except Exception as e:
            message = str(e)
            logger.error(
                "openai_generate_failed",
                error=message,
                model=self._model,
                prompt_len=len(prompt),
            )
            if _is_rate_limit(message):
                raise RateLimitExceededError(
                    "OpenAI rate limit exceeded. Retry later."
                ) from e
            raise ExternalServiceError(f"OpenAI generate failed: {e}") from e
