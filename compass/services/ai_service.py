import logging
from typing import Optional, Protocol

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from compass.config import get_settings
from compass.exceptions import (
    InvalidResponse,
    NetworkError,
    ProviderError,
    ProviderTimeout,
    RateLimited,
)

logger = logging.getLogger(__name__)

# Anthropic answers 529 when overloaded and 429 when rate limited
CAPACITY_STATUS_CODES = (429, 529)

anthropic_client: Optional[AsyncAnthropic] = None
openai_client: Optional[AsyncOpenAI] = None


def _get_anthropic_client() -> AsyncAnthropic:
    global anthropic_client
    if anthropic_client is None:
        settings = get_settings()
        anthropic_client = AsyncAnthropic(
            api_key=settings.anthropic_api_key, timeout=settings.http_timeout_seconds * 4, max_retries=0
        )
    return anthropic_client


def _get_openai_client() -> AsyncOpenAI:
    global openai_client
    if openai_client is None:
        settings = get_settings()
        openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key, timeout=settings.http_timeout_seconds * 4, max_retries=0
        )
    return openai_client


class TextGenerator(Protocol):
    label: str

    async def generate(self, prompt: str, max_tokens: int) -> str: ...


class ClaudeTextGenerator:
    """Primary report writer. Capacity failures surface as RateLimited so callers can fall back."""

    provider = "anthropic"

    def __init__(self, model: str | None = None, client: AsyncAnthropic | None = None):
        self.model = model or get_settings().ai_model_primary
        self._client = client
        self.label = f"Claude ({self.model})"

    async def generate(self, prompt: str, max_tokens: int) -> str:
        if self._client is None and not get_settings().anthropic_api_key:
            raise InvalidResponse("ANTHROPIC_API_KEY not configured", provider=self.provider)
        client = self._client or _get_anthropic_client()
        try:
            message = await client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeout(f"Claude request timed out: {e}", provider=self.provider, cause=e) from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"Claude connection error: {e}", provider=self.provider, cause=e) from e
        except anthropic.APIStatusError as e:
            if e.status_code in CAPACITY_STATUS_CODES:
                raise RateLimited(
                    f"Claude at capacity ({e.status_code})", provider=self.provider, cause=e
                ) from e
            logger.error("Claude API error: %s", e)
            raise ProviderError(f"Claude API error: {e}", provider=self.provider, cause=e) from e

        for block in message.content or []:
            if getattr(block, "type", None) == "text" and block.text:
                return block.text
        raise InvalidResponse("Claude response contained no text content", provider=self.provider)


class OpenAITextGenerator:
    """Fallback report writer, only used after the primary reports a capacity failure."""

    provider = "openai"

    def __init__(self, model: str | None = None, client: AsyncOpenAI | None = None):
        self.model = model or get_settings().ai_model_fallback
        self._client = client
        self.label = f"OpenAI ({self.model})"

    async def generate(self, prompt: str, max_tokens: int) -> str:
        if self._client is None and not get_settings().openai_api_key:
            raise InvalidResponse("OPENAI_API_KEY not configured", provider=self.provider)
        client = self._client or _get_openai_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(f"OpenAI request timed out: {e}", provider=self.provider, cause=e) from e
        except openai.APIConnectionError as e:
            raise NetworkError(f"OpenAI connection error: {e}", provider=self.provider, cause=e) from e
        except openai.RateLimitError as e:
            raise RateLimited(f"OpenAI rate limited: {e}", provider=self.provider, cause=e) from e
        except openai.APIStatusError as e:
            logger.error("OpenAI API error: %s", e)
            raise ProviderError(f"OpenAI API error: {e}", provider=self.provider, cause=e) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InvalidResponse("OpenAI returned an empty completion", provider=self.provider)
        return content
