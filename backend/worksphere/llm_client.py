"""Async client for an OpenAI-compatible chat completions API (Groq by default)."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import httpx

from .settings import settings

_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class LLMUnavailable(RuntimeError):
    """Raised when the chat completions backend cannot produce a usable answer."""


def _headers() -> dict[str, str]:
    if not settings.llm_configured:
        raise LLMUnavailable("LLM_API_KEY not configured")
    return {
        "Authorization": f"Bearer {settings.LLM_API_KEY}",
        "Content-Type": "application/json",
    }


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        async with _client_lock:
            if _client is None:
                timeout = httpx.Timeout(
                    settings.LLM_TIMEOUT_SECONDS,
                    connect=settings.LLM_CONNECT_TIMEOUT_SECONDS,
                )
                _client = httpx.AsyncClient(
                    base_url=settings.LLM_API_BASE.rstrip("/"), timeout=timeout
                )
    return _client


async def post_json(
    path: str, payload: dict[str, Any], *, timeout: float | None = None
) -> dict[str, Any]:
    headers = _headers()
    client = await _get_client()
    try:
        response = await client.post(
            path,
            json=payload,
            headers=headers,
            timeout=timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        raise LLMUnavailable(f"Request failed: {exc}") from exc
    if response.status_code >= 400:
        raise LLMUnavailable(f"LLM error {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as exc:
        raise LLMUnavailable("Invalid JSON from LLM backend") from exc


async def complete(
    system_prompt: str,
    messages: list[dict[str, str]],
    *,
    temperature: float = 0.3,
    json_mode: bool = False,
) -> str:
    """Run one chat completion and return the assistant text."""
    payload: dict[str, Any] = {
        "model": settings.LLM_MODEL,
        "temperature": temperature,
        "messages": [{"role": "system", "content": system_prompt}, *messages],
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    response = await post_json("/chat/completions", payload)
    choices = response.get("choices") or []
    content = choices[0].get("message", {}).get("content") if choices else None
    if not content:
        raise LLMUnavailable("Empty LLM response")
    return content


def extract_json_object(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of model output that may carry prose or fences."""
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("payload is empty")
    text = raw.strip()

    fence_match = _CODE_FENCE_RE.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    decoder = json.JSONDecoder()
    for index, char in enumerate(text):
        if char != "{":
            continue
        try:
            obj, _ = decoder.raw_decode(text[index:])
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    raise ValueError("No JSON object found in payload")


async def close_async_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


__all__ = [
    "LLMUnavailable",
    "close_async_client",
    "complete",
    "extract_json_object",
    "post_json",
]
