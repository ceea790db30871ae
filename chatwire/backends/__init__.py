"""
Provider backends for chatwire.

Usage:
    from chatwire.backends import make_backend
    backend = make_backend("ollama", url="http://localhost:11434", model="llama3.2")
"""

from chatwire.backends.base import BaseBackend
from chatwire.backends.decoders import ChunkDecoder, NDJSONDecoder, SSEDecoder
from chatwire.backends.ollama import OllamaBackend
from chatwire.backends.openrouter import OpenRouterBackend

# Provider name → backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "ollama": OllamaBackend,
    "openrouter": OpenRouterBackend,
}


def make_backend(provider: str, **kwargs) -> BaseBackend:
    """
    Instantiate a backend by provider name.

    Args:
        provider: "ollama" or "openrouter".
        **kwargs: Passed directly to the backend constructor (url, model, ...).

    Raises:
        ValueError: If the provider is unknown or its settings are incomplete.
    """
    cls = PROVIDERS.get(provider)
    if cls is None:
        available = ", ".join(PROVIDERS)
        raise ValueError(f"Unknown provider: '{provider}'. Available: {available}")
    return cls(**kwargs)


__all__ = [
    "BaseBackend",
    "ChunkDecoder",
    "NDJSONDecoder",
    "SSEDecoder",
    "OllamaBackend",
    "OpenRouterBackend",
    "PROVIDERS",
    "make_backend",
]
