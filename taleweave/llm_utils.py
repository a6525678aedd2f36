"""Retry, timeout and pacing wrappers around text providers."""

from __future__ import annotations

import asyncio
from typing import Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from taleweave.config import Config
from taleweave.errors import ProviderError
from taleweave.logging_utils import log_error, log_llm, log_warning
from taleweave.providers import (
    GenerationOptions,
    GenerationResult,
    Prompt,
    TextProvider,
    build_provider,
    estimate_tokens,
)
from taleweave.request_queue import RequestQueue


async def generate_with_retries(
    provider: TextProvider,
    prompt: Prompt,
    options: Optional[GenerationOptions] = None,
) -> GenerationResult:
    """Call ``provider`` with a per-attempt timeout and bounded retries.

    ``options.retries`` counts extra attempts, so ``retries=3`` allows up to four
    calls. Provider failures and timeouts are retried; anything else propagates
    immediately. The last failure is re-raised once attempts run out.
    """

    options = options or GenerationOptions.from_config()
    max_attempts = options.retries + 1
    attempt_number = 0

    # AsyncRetrying from tenacity drives the loop. Only ProviderError and timeouts
    # are retried; a bad prompt or a programming error propagates on the first
    # attempt. reraise=True hands the last failure to the caller unchanged.
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type((ProviderError, asyncio.TimeoutError)),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            # First attempt is silent; every retry is announced with its position.
            if attempt_number > 1:
                log_warning(f"Retrying {provider.name} request ({attempt_number}/{max_attempts})")
            try:
                # The timeout applies to each attempt separately, so a slow first
                # call does not eat into the budget of the retries.
                result = await asyncio.wait_for(
                    provider.generate(prompt, options),
                    timeout=options.timeout,
                )
            except asyncio.TimeoutError:
                log_error(f"{provider.name} request timed out after {options.timeout:g}s")
                raise
            except ProviderError as exc:
                log_error(f"{provider.name} request failed: {exc}")
                raise
            # Only a completed call is tagged [AI]; failures above are logged as errors.
            log_llm(f"{provider.name}/{result.model} returned {len(result.text)} chars")
            return result

    # Unreachable: with reraise=True the loop exits via return or raise.
    raise RuntimeError("LLM retry mechanism exited unexpectedly")


class LLMClient:
    """Provider plus default options plus a rate-limited request queue.

    Every ``send`` goes through the queue, so at most one request is in flight
    and consecutive requests are spaced by the queue's minimum interval.
    """

    def __init__(
        self,
        provider: TextProvider,
        options: Optional[GenerationOptions] = None,
        queue: Optional[RequestQueue] = None,
    ) -> None:
        self.provider = provider
        self.options = options or GenerationOptions.from_config()
        self.queue = queue or RequestQueue(Config.LLM_RATE_LIMIT_DELAY_MS / 1000)

    @classmethod
    def from_config(cls) -> "LLMClient":
        return cls(build_provider())

    async def send(self, prompt: Prompt, **overrides) -> GenerationResult:
        # Per-call overrides (temperature, max_tokens, ...) never touch the defaults.
        options = self.options.model_copy(update=overrides) if overrides else self.options
        # The retry loop runs inside the queued request, so retries of one prompt
        # hold the queue and keep their place in FIFO order.
        return await self.queue.submit(lambda: generate_with_retries(self.provider, prompt, options))

    async def check_connection(self) -> bool:
        try:
            return await self.provider.check_connection()
        except Exception as exc:
            log_warning(f"Connection check for {self.provider.name} failed: {exc}")
            return False

    @staticmethod
    def estimate_tokens(text: str) -> int:
        return estimate_tokens(text)

    async def close(self) -> None:
        await self.queue.close()


__all__ = ["generate_with_retries", "LLMClient"]
