"""Utilities for calling locally hosted models through Ollama's chat API."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib import error, request

from taleweave.errors import LocalLLMError

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"
_TAGS_ENDPOINT = "/api/tags"


def resolve_base_url(base_url: str | None = None) -> str:
    return (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL).rstrip("/")


def _perform_ollama_request(
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> dict[str, Any]:
    """Execute the blocking HTTP request and return the decoded JSON body."""

    url = f"{base_url}{_CHAT_ENDPOINT}"
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        message = body or exc.reason
        raise LocalLLMError(
            f"Ollama chat request failed with status {exc.code}: {message}"
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(
            f"Could not reach Ollama at {url}: {exc.reason}"
        ) from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc

    message = parsed.get("message") or {}
    if not message.get("content"):
        raise LocalLLMError("Ollama response did not include assistant content.")

    return parsed


def _ping(base_url: str, timeout: float) -> bool:
    try:
        with request.urlopen(f"{base_url}{_TAGS_ENDPOINT}", timeout=timeout) as resp:
            return 200 <= resp.status < 300
    except (error.URLError, OSError):
        return False


async def call_ollama_chat(
    *,
    messages: list[dict[str, str]],
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 30.0,
    options: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Invoke a local Ollama model and return the raw response body."""

    cleaned = [
        {"role": m["role"], "content": m["content"].strip()}
        for m in messages
        if m.get("content", "").strip()
    ]
    if not any(m["role"] == "user" for m in cleaned):
        raise LocalLLMError("Cannot call Ollama without a user message.")

    payload: dict[str, Any] = {
        "model": llm_model,
        "messages": cleaned,
        "stream": False,
    }
    if options:
        payload["options"] = options

    return await asyncio.to_thread(
        _perform_ollama_request,
        payload,
        resolve_base_url(base_url),
        timeout,
    )


async def ollama_available(base_url: str | None = None, timeout: float = 5.0) -> bool:
    return await asyncio.to_thread(_ping, resolve_base_url(base_url), timeout)


__all__ = ["call_ollama_chat", "ollama_available", "resolve_base_url", "DEFAULT_OLLAMA_BASE_URL"]
