"""
AI Chat Client
==============

Streams chat completions from OpenRouter's OpenAI-compatible API.
"""

import json
from collections.abc import AsyncIterator
from typing import Any, Optional

import httpx
import structlog

from guardian.core.config import settings

logger = structlog.get_logger()


class AIChatError(Exception):
    """The completion provider rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AIChatClient:
    """Client for streaming chat completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENROUTER_API_KEY
        self.base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        self.model = model or settings.AI_MODEL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.SITE_URL,
            "X-Title": settings.APP_NAME,
        }

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """
        Yield content deltas of one completion as they arrive.

        Raises:
            AIChatError: On a non-2xx response or transport failure.
        """
        body = {
            "model": self.model,
            "messages": messages,
            "max_tokens": settings.AI_MAX_TOKENS,
            "temperature": settings.AI_TEMPERATURE,
            "stream": True,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers=self._headers(),
                ) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        logger.warning(
                            "ai_chat_rejected",
                            status_code=response.status_code,
                            body=response.text[:500],
                        )
                        raise AIChatError("Completion request rejected", response.status_code)

                    async for line in response.aiter_lines():
                        content = _parse_event(line)
                        if content:
                            yield content
        except httpx.HTTPError as e:
            logger.error("ai_chat_error", error=str(e))
            raise AIChatError(f"Completion request failed: {e}") from e


def _parse_event(line: str) -> Optional[str]:
    """Content delta from one SSE line, or None."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        return None
    choices = chunk.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content")


def get_ai_chat_client() -> AIChatClient:
    """Dependency: client built from settings."""
    return AIChatClient()
