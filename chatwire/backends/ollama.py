"""
Ollama backend: local LLM inference via Ollama's native /api/chat.
Streams line-delimited JSON.
"""

from __future__ import annotations

import logging

import httpx

from chatwire.backends.base import BaseBackend
from chatwire.backends.decoders import NDJSONDecoder
from chatwire.errors import TransportError
from chatwire.models import ChatOptions, Message

logger = logging.getLogger(__name__)


class OllamaBackend(BaseBackend):
    """Backend for local Ollama instances."""

    name = "ollama"
    decoder_cls = NDJSONDecoder

    def _endpoint(self) -> str:
        return f"{self.url}/api/chat"

    def _build_body(self, messages: list[Message], options: ChatOptions) -> dict:
        body = {
            "model": options.model or self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": True,
        }
        generation = {}
        if options.temperature is not None:
            generation["temperature"] = options.temperature
        if options.max_tokens is not None:
            generation["num_predict"] = options.max_tokens
        if generation:
            body["options"] = generation
        return body

    async def health_check(self) -> bool:
        """Check Ollama is reachable."""
        try:
            resp = await self._client.get(f"{self.url}/api/tags", timeout=5)
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    async def list_models(self) -> list[str]:
        """Fetch locally available models from Ollama."""
        try:
            resp = await self._client.get(f"{self.url}/api/tags", timeout=10)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to list Ollama models from '%s': %s", self.url, e)
            raise TransportError(f"Failed to list Ollama models: {e}") from e
        models = [m.get("name", "") for m in data.get("models", [])]
        return [m for m in models if m]
