"""
Text-generation providers.

A provider turns a prompt (plain text or a chat message list) into generated
text plus usage metadata. Three modes are available:

- RemoteProvider: any hosted model reachable through mirascope (openai,
  anthropic, ...), selected by provider name and model id
- OllamaProvider: a model served locally by Ollama
- MockProvider: deterministic keyword -> canned response table for tests and
  offline play

Providers only make a single attempt. Timeouts and retries are applied by
``taleweave.llm_utils.generate_with_retries``.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from mirascope import llm
from pydantic import BaseModel, Field

from taleweave.config import Config
from taleweave.errors import ProviderError
from taleweave.local_llm import call_ollama_chat, ollama_available
from taleweave.schemas import make_id


Message = Dict[str, str]
Prompt = Union[str, Sequence[Message]]

MOCK_DEFAULT_RESPONSE = "这是一个模拟响应。"
_CJK = re.compile(r"[一-鿿]")


class GenerationOptions(BaseModel):
    """Per-request options; unset values fall back to the provider's defaults."""

    model: Optional[str] = None
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(1000, gt=0)
    timeout: float = Field(30.0, gt=0, description="Seconds before a single attempt is abandoned")
    retries: int = Field(3, ge=0, description="Extra attempts after the first failure")

    @classmethod
    def from_config(cls) -> "GenerationOptions":
        return cls(
            model=Config.LLM_MODEL,
            temperature=Config.LLM_TEMPERATURE,
            max_tokens=Config.LLM_MAX_TOKENS,
            timeout=Config.LLM_TIMEOUT_SECONDS,
            retries=Config.LLM_RETRIES,
        )


class GenerationResult(BaseModel):
    id: str = Field(default_factory=lambda: make_id("generation"))
    text: str
    role: str = "assistant"
    model: str
    provider: str
    usage: Dict[str, int] = Field(default_factory=dict)


def as_messages(prompt: Prompt) -> List[Message]:
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    return [{"role": m["role"], "content": m["content"]} for m in prompt]


def as_text(prompt: Prompt) -> str:
    """Flatten a message list into one prompt, system text first."""
    if isinstance(prompt, str):
        return prompt
    return "\n\n".join(m["content"] for m in prompt if m.get("content"))


def estimate_tokens(text: str) -> int:
    """Rough token count: CJK-heavy text ~1.5 chars per token, otherwise ~4."""
    if not text:
        return 0
    # Text that is mostly Chinese packs fewer characters into each token.
    cjk_ratio = len(_CJK.findall(text)) / len(text)
    per_token = 1.5 if cjk_ratio > 0.5 else 4
    return int(-(-len(text) // per_token))


class TextProvider(ABC):
    """A single-attempt text generator."""

    name: str = "provider"

    def __init__(self, model: Optional[str] = None) -> None:
        self.model = model or Config.LLM_MODEL

    @abstractmethod
    async def generate(self, prompt: Prompt, options: GenerationOptions) -> GenerationResult:
        """Generate text for ``prompt``; raise ProviderError on failure."""

    async def check_connection(self) -> bool:
        try:
            await self.generate("测试连接", GenerationOptions(max_tokens=5, retries=0))
        except ProviderError:
            return False
        return True


class RemoteProvider(TextProvider):
    """Hosted model called through mirascope's provider-agnostic ``llm.call``."""

    def __init__(self, provider: Optional[str] = None, model: Optional[str] = None) -> None:
        super().__init__(model)
        self.name = provider or Config.LLM_PROVIDER

    async def generate(self, prompt: Prompt, options: GenerationOptions) -> GenerationResult:
        model = options.model or self.model

        # Define the call with the Mirascope decorator. It handles the provider-specific
        # API and response parsing; the decorated function returns the prompt text.
        @llm.call(
            provider=self.name,
            model=model,
            call_params={"temperature": options.temperature, "max_tokens": options.max_tokens},
        )
        async def _invoke(text: str) -> str:
            return text

        # Any SDK failure (auth, network, rate limit) becomes a ProviderError so the
        # retry loop treats every provider the same way.
        try:
            response = await _invoke(as_text(prompt))
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"{self.name} request failed: {exc}") from exc

        content = getattr(response, "content", None)
        if not content:
            raise ProviderError(f"{self.name} returned an empty response")

        # Usage fields differ between providers; keep only the numeric ones present.
        usage: Dict[str, int] = {}
        for key in ("input_tokens", "output_tokens"):
            value = getattr(response, key, None)
            if isinstance(value, (int, float)):
                usage[key] = int(value)
        return GenerationResult(text=content, model=model, provider=self.name, usage=usage)


class OllamaProvider(TextProvider):
    """Model served by a local Ollama instance."""

    name = "local"

    def __init__(self, model: Optional[str] = None, base_url: Optional[str] = None) -> None:
        super().__init__(model)
        self.base_url = base_url or Config.OLLAMA_BASE_URL

    async def generate(self, prompt: Prompt, options: GenerationOptions) -> GenerationResult:
        model = options.model or self.model
        body = await call_ollama_chat(
            messages=as_messages(prompt),
            llm_model=model,
            base_url=self.base_url,
            timeout=options.timeout,
            options={"temperature": options.temperature, "num_predict": options.max_tokens},
        )
        # Ollama reports token counts as prompt_eval_count and eval_count.
        usage = {
            key: int(body[source])
            for key, source in (("input_tokens", "prompt_eval_count"), ("output_tokens", "eval_count"))
            if isinstance(body.get(source), int)
        }
        return GenerationResult(
            text=body["message"]["content"],
            role=body["message"].get("role", "assistant"),
            model=body.get("model", model),
            provider=self.name,
            usage=usage,
        )

    async def check_connection(self) -> bool:
        return await ollama_available(self.base_url)


class MockProvider(TextProvider):
    """Answers from a keyword table; the first keyword found in the prompt wins."""

    name = "mock"

    def __init__(
        self,
        responses: Optional[Mapping[str, str]] = None,
        *,
        default_response: str = MOCK_DEFAULT_RESPONSE,
        latency: float = 0.0,
    ) -> None:
        super().__init__("mock-model")
        self.responses = dict(responses or {})
        self.default_response = default_response
        self.latency = latency
        self.calls: List[str] = []

    async def generate(self, prompt: Prompt, options: GenerationOptions) -> GenerationResult:
        text = as_text(prompt)
        self.calls.append(text)
        if self.latency:
            await asyncio.sleep(self.latency)
        reply = next(
            (response for keyword, response in self.responses.items() if keyword in text),
            self.default_response,
        )
        return GenerationResult(
            text=reply,
            model=self.model,
            provider=self.name,
            usage={"input_tokens": estimate_tokens(text), "output_tokens": estimate_tokens(reply)},
        )


def build_provider(provider: Optional[str] = None, **kwargs: Any) -> TextProvider:
    """Provider for a configured name: ``mock``, ``local``/``ollama`` or a mirascope provider."""
    name = (provider or Config.LLM_PROVIDER).lower()
    if name == "mock":
        return MockProvider(**kwargs)
    if name in ("local", "ollama"):
        return OllamaProvider(**kwargs)
    # Every other name is passed through to mirascope as the provider id.
    return RemoteProvider(name, **kwargs)


__all__ = [
    "TextProvider",
    "RemoteProvider",
    "OllamaProvider",
    "MockProvider",
    "GenerationOptions",
    "GenerationResult",
    "build_provider",
    "estimate_tokens",
    "as_messages",
    "as_text",
]
