"""Unit tests for providers and the LLM retry helper."""

import asyncio
from types import SimpleNamespace

import pytest

from taleweave.errors import ProviderError
from taleweave.llm_utils import LLMClient, generate_with_retries
from taleweave.providers import (
    GenerationOptions,
    GenerationResult,
    MockProvider,
    OllamaProvider,
    RemoteProvider,
    TextProvider,
    build_provider,
    estimate_tokens,
)
from taleweave.request_queue import RequestQueue


class FlakyProvider(TextProvider):
    """Fails ``failures`` times with ``error`` before answering."""

    name = "flaky"

    def __init__(self, failures: int, error: Exception) -> None:
        super().__init__("flaky-model")
        self.failures = failures
        self.error = error
        self.calls = 0

    async def generate(self, prompt, options):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return GenerationResult(text="ok", model=self.model, provider=self.name)


class SlowFirstProvider(TextProvider):
    name = "slow"

    def __init__(self) -> None:
        super().__init__("slow-model")
        self.calls = 0

    async def generate(self, prompt, options):
        self.calls += 1
        if self.calls == 1:
            await asyncio.sleep(1)
        return GenerationResult(text="late but fine", model=self.model, provider=self.name)


@pytest.mark.asyncio
async def test_retries_provider_errors_until_success():
    provider = FlakyProvider(2, ProviderError("503"))
    result = await generate_with_retries(provider, "hi", GenerationOptions(retries=2))
    assert result.text == "ok"
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_exhausted_retries_reraise_last_error():
    provider = FlakyProvider(10, ProviderError("503"))
    with pytest.raises(ProviderError):
        await generate_with_retries(provider, "hi", GenerationOptions(retries=2))
    assert provider.calls == 3


@pytest.mark.asyncio
async def test_timeouts_are_retried():
    provider = SlowFirstProvider()
    result = await generate_with_retries(provider, "hi", GenerationOptions(timeout=0.05, retries=1))
    assert result.text == "late but fine"
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_unexpected_errors_are_not_retried():
    provider = FlakyProvider(1, ValueError("bad prompt"))
    with pytest.raises(ValueError):
        await generate_with_retries(provider, "hi", GenerationOptions(retries=3))
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_remote_provider_uses_mirascope_call(monkeypatch):
    recorded: dict[str, object] = {}

    def fake_decorator(*, provider, model, call_params):
        recorded.update(provider=provider, model=model, call_params=call_params)

        def wrapper(fn):
            async def inner(text: str):
                recorded["prompt"] = await fn(text)
                return SimpleNamespace(content="老板娘擦了擦杯子。", input_tokens=12, output_tokens=8)

            return inner

        return wrapper

    monkeypatch.setattr("taleweave.providers.llm.call", fake_decorator)

    provider = RemoteProvider("openai", "gpt-4o-mini")
    result = await provider.generate(
        [{"role": "system", "content": "System context"}, {"role": "user", "content": "What now?"}],
        GenerationOptions(temperature=0.3, max_tokens=64),
    )

    assert result.text == "老板娘擦了擦杯子。"
    assert result.provider == "openai"
    assert result.model == "gpt-4o-mini"
    assert result.usage == {"input_tokens": 12, "output_tokens": 8}
    assert recorded["prompt"] == "System context\n\nWhat now?"
    assert recorded["call_params"] == {"temperature": 0.3, "max_tokens": 64}


@pytest.mark.asyncio
async def test_remote_provider_wraps_failures_and_empty_replies(monkeypatch):
    replies = [RuntimeError("connection reset"), SimpleNamespace(content="")]

    def fake_decorator(*, provider, model, call_params):
        def wrapper(fn):
            async def inner(text: str):
                reply = replies.pop(0)
                if isinstance(reply, Exception):
                    raise reply
                return reply

            return inner

        return wrapper

    monkeypatch.setattr("taleweave.providers.llm.call", fake_decorator)
    provider = RemoteProvider("anthropic", "claude-haiku")

    with pytest.raises(ProviderError, match="connection reset"):
        await provider.generate("hi", GenerationOptions())
    with pytest.raises(ProviderError, match="empty"):
        await provider.generate("hi", GenerationOptions())


@pytest.mark.asyncio
async def test_mock_provider_matches_first_keyword():
    provider = MockProvider({"酒馆": "酒馆里很热闹。", "港口": "港口起雾了。"})
    options = GenerationOptions()

    assert (await provider.generate("描述港口和酒馆", options)).text == "酒馆里很热闹。"
    fallback = await provider.generate("说点什么", options)
    assert fallback.text == "这是一个模拟响应。"
    assert fallback.model == "mock-model"
    assert fallback.usage["input_tokens"] == estimate_tokens("说点什么")
    assert provider.calls == ["描述港口和酒馆", "说点什么"]


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("hello world!") == 3
    assert estimate_tokens("你好世界") == 3


def test_build_provider_selects_mode():
    assert isinstance(build_provider("mock"), MockProvider)
    assert isinstance(build_provider("ollama"), OllamaProvider)
    remote = build_provider("openai", model="gpt-4o-mini")
    assert isinstance(remote, RemoteProvider)
    assert (remote.name, remote.model) == ("openai", "gpt-4o-mini")


@pytest.mark.asyncio
async def test_client_sends_through_queue_with_overrides():
    provider = MockProvider(default_response="好的。")
    client = LLMClient(provider, GenerationOptions(temperature=0.7), RequestQueue(0))

    result = await client.send("来一杯", temperature=0.1)
    assert result.text == "好的。"
    assert client.options.temperature == 0.7
    assert await client.check_connection() is True

    await client.close()
    assert client.queue.closed


@pytest.mark.asyncio
async def test_client_connection_check_swallows_provider_failures():
    client = LLMClient(FlakyProvider(10, ProviderError("down")), queue=RequestQueue(0))
    assert await client.check_connection() is False
    await client.close()
