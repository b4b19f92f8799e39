"""Embedding client — batch-embeds note texts via OpenAI-compatible APIs.

Provider failures are mapped onto an explicit taxonomy. Each error class
says whether it is ``transient`` (rate limit, quota exhaustion, provider
hiccup — worth retrying after a backoff) or terminal (the request itself is
wrong, or the response cannot be mapped back onto the inputs).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from openai import APIConnectionError, InternalServerError, OpenAI, OpenAIError, RateLimitError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from oraculum.config import EmbeddingConfig

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
VOYAGE_BASE_URL = "https://api.voyageai.com/v1"

# Error codes providers use when a quota, rather than a per-minute rate, is spent
_QUOTA_CODES = {"insufficient_quota", "resource_exhausted"}


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class EmbeddingError(Exception):
    """Unified error for all embedding providers."""

    transient = False

    def __init__(self, message: str, provider: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.original = original


class RateLimitedError(EmbeddingError):
    """Provider rejected the call for exceeding its request rate."""

    transient = True


class QuotaExhaustedError(EmbeddingError):
    """Provider quota is spent for now."""

    transient = True


class ProviderUnavailableError(EmbeddingError):
    """Connection failure or 5xx from the provider."""

    transient = True


class InvalidRequestError(EmbeddingError):
    """Provider refused the request; retrying will not help."""


class MalformedResponseError(EmbeddingError):
    """Provider answered with a shape that cannot be mapped onto the inputs."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class EmbeddingClient(Protocol):
    """Capability: turn texts into vectors, one per text, in order."""

    @property
    def provider_name(self) -> str: ...

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in a single provider call.

        Raises:
            EmbeddingError: On any provider error, classified as above.
        """
        ...


def _accepts_dimensions(config: EmbeddingConfig) -> bool:
    """Only OpenAI text-embedding-3 models can shorten their vectors on request."""
    return config.provider == "openai" and config.model.startswith("text-embedding-3")


def _is_quota_error(error: RateLimitError) -> bool:
    for value in (error.code, error.type):
        if isinstance(value, str) and value.lower() in _QUOTA_CODES:
            return True
    return False


class OpenAIEmbedder:
    """Embedding client for OpenAI, Gemini and Voyage.

    Gemini and Voyage are reached through their OpenAI-compatible endpoints,
    so a single SDK covers all three providers.
    """

    def __init__(self, config: EmbeddingConfig, api_key: str) -> None:
        self.config = config
        if config.provider == "gemini":
            self._client = OpenAI(api_key=api_key, base_url=GEMINI_BASE_URL)
        elif config.provider == "voyage":
            self._client = OpenAI(api_key=api_key, base_url=VOYAGE_BASE_URL)
        else:
            self._client = OpenAI(api_key=api_key)

    @property
    def provider_name(self) -> str:
        return self.config.provider

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        limit = self.config.max_input_chars
        batch = [t[:limit] if t.strip() else " " for t in texts]
        provider = self.provider_name

        request: dict[str, Any] = {"model": self.config.model, "input": batch}
        if _accepts_dimensions(self.config):
            request["dimensions"] = self.config.dimensions

        try:
            response = self._client.embeddings.create(**request)
        except RateLimitError as e:
            if _is_quota_error(e):
                raise QuotaExhaustedError(str(e), provider=provider, original=e) from e
            raise RateLimitedError(str(e), provider=provider, original=e) from e
        except (APIConnectionError, InternalServerError) as e:
            raise ProviderUnavailableError(str(e), provider=provider, original=e) from e
        except OpenAIError as e:
            raise InvalidRequestError(str(e), provider=provider, original=e) from e

        # Providers tag each vector with its input index; order by it
        data = sorted(response.data, key=lambda item: item.index)
        vectors = [list(item.embedding) for item in data]
        logger.debug("Embedded %d texts with %s/%s", len(vectors), provider, self.config.model)
        return vectors


def create_embedding_client(config: EmbeddingConfig, api_key: str) -> EmbeddingClient:
    """Factory: create an embedding client for the configured provider."""
    if config.provider in ("openai", "gemini", "voyage"):
        return OpenAIEmbedder(config, api_key)
    raise ValueError(f"Unknown embedding provider: {config.provider}")
