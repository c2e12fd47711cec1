"""Text generation adapters with stubbed SDK clients."""
from types import SimpleNamespace

import anthropic
import httpx
import openai
import pytest

from compass.exceptions import InvalidResponse, NetworkError, ProviderError, ProviderTimeout, RateLimited
from compass.services.ai_service import ClaudeTextGenerator, OpenAITextGenerator

_REQUEST = httpx.Request("POST", "https://api.example/v1/messages")


def _status_error(cls, status_code):
    return cls("error", response=httpx.Response(status_code, request=_REQUEST), body=None)


class StubAnthropic:
    def __init__(self, result=None, error=None):
        self.calls = []

        async def create(**kwargs):
            self.calls.append(kwargs)
            if error is not None:
                raise error
            return result

        self.messages = SimpleNamespace(create=create)


class StubOpenAI:
    def __init__(self, result=None, error=None):
        self.calls = []

        async def create(**kwargs):
            self.calls.append(kwargs)
            if error is not None:
                raise error
            return result

        self.chat = SimpleNamespace(completions=SimpleNamespace(create=create))


class TestClaude:
    async def test_returns_first_text_block(self):
        message = SimpleNamespace(
            content=[SimpleNamespace(type="tool_use"), SimpleNamespace(type="text", text="## EXECUTIVE SUMMARY")]
        )
        client = StubAnthropic(result=message)
        generator = ClaudeTextGenerator(model="claude-test", client=client)

        assert await generator.generate("prompt", 1000) == "## EXECUTIVE SUMMARY"
        assert client.calls[0] == {
            "model": "claude-test",
            "max_tokens": 1000,
            "messages": [{"role": "user", "content": "prompt"}],
        }
        assert generator.label == "Claude (claude-test)"

    @pytest.mark.parametrize("status_code", [429, 529])
    async def test_capacity_errors(self, status_code):
        client = StubAnthropic(error=_status_error(anthropic.APIStatusError, status_code))
        with pytest.raises(RateLimited) as exc_info:
            await ClaudeTextGenerator(model="m", client=client).generate("p", 10)
        assert exc_info.value.is_capacity

    async def test_other_status_error_is_not_capacity(self):
        client = StubAnthropic(error=_status_error(anthropic.BadRequestError, 400))
        with pytest.raises(ProviderError) as exc_info:
            await ClaudeTextGenerator(model="m", client=client).generate("p", 10)
        assert not exc_info.value.is_capacity

    async def test_timeout_and_connection_errors(self):
        client = StubAnthropic(error=anthropic.APITimeoutError(request=_REQUEST))
        with pytest.raises(ProviderTimeout):
            await ClaudeTextGenerator(model="m", client=client).generate("p", 10)

        client = StubAnthropic(error=anthropic.APIConnectionError(request=_REQUEST))
        with pytest.raises(NetworkError):
            await ClaudeTextGenerator(model="m", client=client).generate("p", 10)

    async def test_no_text_content(self):
        client = StubAnthropic(result=SimpleNamespace(content=[]))
        with pytest.raises(InvalidResponse):
            await ClaudeTextGenerator(model="m", client=client).generate("p", 10)

    async def test_missing_api_key(self):
        with pytest.raises(InvalidResponse):
            await ClaudeTextGenerator(model="m").generate("p", 10)


class TestOpenAI:
    async def test_returns_first_choice(self):
        result = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="report"))])
        client = StubOpenAI(result=result)
        generator = OpenAITextGenerator(model="gpt-test", client=client)

        assert await generator.generate("prompt", 500) == "report"
        assert client.calls[0]["model"] == "gpt-test"
        assert client.calls[0]["max_tokens"] == 500

    async def test_rate_limit(self):
        client = StubOpenAI(error=_status_error(openai.RateLimitError, 429))
        with pytest.raises(RateLimited):
            await OpenAITextGenerator(model="m", client=client).generate("p", 10)

    async def test_empty_completion(self):
        result = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=""))])
        with pytest.raises(InvalidResponse):
            await OpenAITextGenerator(model="m", client=StubOpenAI(result=result)).generate("p", 10)
