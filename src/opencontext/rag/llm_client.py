"""LiteLLM wrappers for embeddings and token counting.

Every embedding and tokenizer call in the ingestion pipeline and the
retrieval service routes through this module. Both are exposed behind small
protocols so the orchestrator and retrieval service can be handed doubles.
"""

from __future__ import annotations

import os
from typing import Protocol

import litellm
from loguru import logger

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


class Embedder(Protocol):
    model: str

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class Tokenizer(Protocol):
    name: str

    def count(self, text: str) -> int: ...


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


class LiteLLMEmbedder:
    """Embed text through ``litellm.embedding()``.

    Retries and timeouts are applied by the caller; this class makes exactly
    one request per call.
    """

    def __init__(self, model: str, api_base: str | None = None) -> None:
        self.model = model
        self.api_base = api_base

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        kwargs: dict = {"model": self.model, "input": texts}
        if self.api_base:
            kwargs["api_base"] = self.api_base
        response = litellm.embedding(**kwargs)
        vectors = [item["embedding"] for item in response.data]
        if len(vectors) != len(texts):
            raise ValueError(f"expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors


class LiteLLMTokenizer:
    """Count tokens with LiteLLM's provider-aware counter.

    Falls back to a character-based approximation (4 chars ≈ 1 token) if the
    model is not supported by ``litellm.token_counter()``. The approximation
    is monotonic in prefix length, which truncation relies on.
    """

    def __init__(self, model: str = "gpt-4", name: str = "tiktoken-cl100k_base") -> None:
        self.model = model
        self.name = name
        self._fallback = False

    def count(self, text: str) -> int:
        if not text:
            return 0
        if not self._fallback:
            try:
                return litellm.token_counter(model=self.model, text=text)
            except Exception as exc:
                logger.warning(
                    f"token_counter unavailable for {self.model} ({exc}); using 4-chars estimate"
                )
                self._fallback = True
        return max(1, len(text) // 4)
