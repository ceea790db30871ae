"""
Base backend abstraction.
Every provider turns an ordered message list into a lazy stream of text
fragments, so the chat session can treat them uniformly.
"""

from __future__ import annotations

import abc
import logging
from typing import AsyncIterator

import httpx

from chatwire.backends.decoders import ChunkDecoder
from chatwire.errors import TransportError
from chatwire.models import ChatOptions, Message

logger = logging.getLogger(__name__)


class BaseBackend(abc.ABC):
    """
    Abstract base for LLM providers.

    A backend owns one httpx.AsyncClient for its whole life. Pass a client in
    to share or mock it; otherwise one is created here and released by
    aclose() (or by leaving ``async with backend:``).
    """

    name = "base"
    decoder_cls: type[ChunkDecoder]

    def __init__(
        self,
        url: str,
        model: str,
        timeout: float = 120,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @abc.abstractmethod
    def _endpoint(self) -> str:
        """Full URL of the streaming chat endpoint."""
        ...

    @abc.abstractmethod
    def _build_body(self, messages: list[Message], options: ChatOptions) -> dict:
        """Provider-specific request body."""
        ...

    def _headers(self) -> dict:
        return {"Content-Type": "application/json"}

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        """
        Send the conversation and yield assistant text fragments as they arrive.
        Raises TransportError if the request or the stream fails.
        """
        body = self._build_body(messages, options or ChatOptions())
        logger.debug("Backend '%s' streaming model '%s'", self.name, body.get("model"))
        try:
            async with self._client.stream(
                "POST",
                self._endpoint(),
                headers=self._headers(),
                json=body,
            ) as resp:
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", "replace")[:200]
                    raise TransportError(
                        f"{self.name} API error: HTTP {resp.status_code}: {detail}"
                    )
                async for fragment in self.decoder_cls().decode(resp.aiter_bytes()):
                    yield fragment
        except TransportError as e:
            # The decoder wraps read failures; a mid-stream timeout is still a timeout
            if isinstance(e.__cause__, httpx.TimeoutException):
                logger.warning("Backend '%s' stream timed out mid-response", self.name)
                raise TransportError(
                    f"Timeout after {self.timeout}s talking to {self.name}"
                ) from e.__cause__
            raise
        except httpx.TimeoutException as e:
            logger.warning("Backend '%s' stream timed out", self.name)
            raise TransportError(f"Timeout after {self.timeout}s talking to {self.name}") from e
        except httpx.HTTPError as e:
            logger.warning("Backend '%s' stream failed: %s", self.name, e)
            raise TransportError(f"Failed to connect to {self.name}: {e}") from e

    @abc.abstractmethod
    async def list_models(self) -> list[str]:
        """Return the model names this provider offers."""
        ...

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Check if this provider is reachable."""
        ...

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} url={self.url!r} model={self.model!r}>"
