"""
OpenRouter backend: API access to hosted models.
Streams OpenAI-style server-sent events.
"""

from __future__ import annotations

import logging

import httpx

from chatwire.backends.base import BaseBackend
from chatwire.backends.decoders import SSEDecoder
from chatwire.errors import TransportError
from chatwire.models import ChatOptions, Message

logger = logging.getLogger(__name__)


class OpenRouterBackend(BaseBackend):
    """Backend for the OpenRouter API."""

    name = "openrouter"
    decoder_cls = SSEDecoder

    def __init__(
        self,
        url: str,
        model: str,
        api_key: str = "",
        timeout: float = 60,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ValueError("OpenRouter requires an API key. Set providers.openrouter.api_key.")
        super().__init__(url=url, model=model, timeout=timeout, client=client)
        self.api_key = api_key

    def _endpoint(self) -> str:
        return f"{self.url}/chat/completions"

    def _headers(self) -> dict:
        """Build request headers with auth."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": "https://github.com/chatwire/chatwire",
            "X-Title": "chatwire",
        }

    def _build_body(self, messages: list[Message], options: ChatOptions) -> dict:
        body = {
            "model": options.model or self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": True,
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        return body

    async def health_check(self) -> bool:
        """Check OpenRouter is reachable (lightweight models endpoint)."""
        try:
            resp = await self._client.get(f"{self.url}/models", headers=self._headers(), timeout=5)
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def list_models(self) -> list[str]:
        """Fetch available models from OpenRouter."""
        try:
            resp = await self._client.get(f"{self.url}/models", headers=self._headers(), timeout=10)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to list OpenRouter models: %s", e)
            raise TransportError(f"Failed to list OpenRouter models: {e}") from e
        models = [m.get("id", "") for m in data.get("data", [])]
        return [m for m in models if m]
