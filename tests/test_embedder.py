"""Tests for OpenAIEmbedder — request shaping and provider error mapping."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from oraculum.indexer.embedder import (
    InvalidRequestError,
    OpenAIEmbedder,
    ProviderUnavailableError,
    QuotaExhaustedError,
    RateLimitedError,
    create_embedding_client,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeEmbeddingConfig:
    """Minimal EmbeddingConfig stand-in for tests."""

    def __init__(
        self,
        provider: str = "openai",
        model: str = "text-embedding-3-small",
        max_input_chars: int = 8000,
        dimensions: int = 1536,
    ) -> None:
        self.provider = provider
        self.model = model
        self.dimensions = dimensions
        self.max_input_chars = max_input_chars


_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/embeddings")


def _status_error(cls: type[openai.APIStatusError], status: int, code: str | None = None):  # noqa: ANN202
    body = {"code": code, "type": code} if code else None
    response = httpx.Response(status, request=_REQUEST)
    return cls(f"Error code: {status}", response=response, body=body)


def _response(*vectors: list[float], shuffle: bool = False) -> SimpleNamespace:
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if shuffle:
        data.reverse()
    return SimpleNamespace(data=data)


def _embedder(**config: object) -> tuple[OpenAIEmbedder, MagicMock]:
    embedder = OpenAIEmbedder(FakeEmbeddingConfig(**config), api_key="test-key")  # type: ignore[arg-type]
    client = MagicMock()
    embedder._client = client
    return embedder, client


# ---------------------------------------------------------------------------
# Tests — requests
# ---------------------------------------------------------------------------


class TestEmbed:
    def test_returns_one_vector_per_text(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.return_value = _response([0.1, 0.2], [0.3, 0.4])

        assert embedder.embed(["alpha", "beta"]) == [[0.1, 0.2], [0.3, 0.4]]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["alpha", "beta"], dimensions=1536
        )

    def test_orders_by_response_index(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.return_value = _response([1.0], [2.0], [3.0], shuffle=True)

        assert embedder.embed(["a", "b", "c"]) == [[1.0], [2.0], [3.0]]

    def test_empty_input_makes_no_call(self) -> None:
        embedder, client = _embedder()
        assert embedder.embed([]) == []
        client.embeddings.create.assert_not_called()

    def test_truncates_long_texts(self) -> None:
        embedder, client = _embedder(max_input_chars=5)
        client.embeddings.create.return_value = _response([1.0])

        embedder.embed(["abcdefghij"])
        assert client.embeddings.create.call_args.kwargs["input"] == ["abcde"]

    def test_blank_text_sent_as_space(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.return_value = _response([1.0], [2.0])

        embedder.embed(["", "  \n"])
        assert client.embeddings.create.call_args.kwargs["input"] == [" ", " "]

    def test_requests_configured_dimensions(self) -> None:
        embedder, client = _embedder(dimensions=512)
        client.embeddings.create.return_value = _response([1.0])

        embedder.embed(["alpha"])
        assert client.embeddings.create.call_args.kwargs["dimensions"] == 512

    @pytest.mark.parametrize(
        ("provider", "model"),
        [("openai", "text-embedding-ada-002"), ("gemini", "text-embedding-004")],
    )
    def test_dimensions_omitted_for_fixed_size_models(self, provider: str, model: str) -> None:
        embedder, client = _embedder(provider=provider, model=model)
        client.embeddings.create.return_value = _response([1.0])

        embedder.embed(["alpha"])
        assert "dimensions" not in client.embeddings.create.call_args.kwargs

    def test_provider_name(self) -> None:
        embedder, _ = _embedder(provider="voyage")
        assert embedder.provider_name == "voyage"


class TestProviderEndpoints:
    def test_gemini_uses_compatible_endpoint(self) -> None:
        embedder = OpenAIEmbedder(FakeEmbeddingConfig(provider="gemini"), "k")  # type: ignore[arg-type]
        assert embedder._client.base_url.host == "generativelanguage.googleapis.com"

    def test_voyage_uses_compatible_endpoint(self) -> None:
        embedder = OpenAIEmbedder(FakeEmbeddingConfig(provider="voyage"), "k")  # type: ignore[arg-type]
        assert embedder._client.base_url.host == "api.voyageai.com"

    def test_factory_rejects_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            create_embedding_client(FakeEmbeddingConfig(provider="cohere"), "k")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Tests — error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    def test_rate_limit_is_transient(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = _status_error(
            openai.RateLimitError, 429, "rate_limit_exceeded"
        )

        with pytest.raises(RateLimitedError) as exc_info:
            embedder.embed(["x"])
        assert exc_info.value.transient is True
        assert exc_info.value.provider == "openai"
        assert isinstance(exc_info.value.original, openai.RateLimitError)

    @pytest.mark.parametrize("code", ["insufficient_quota", "RESOURCE_EXHAUSTED"])
    def test_quota_exhaustion_is_transient(self, code: str) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = _status_error(openai.RateLimitError, 429, code)

        with pytest.raises(QuotaExhaustedError) as exc_info:
            embedder.embed(["x"])
        assert exc_info.value.transient is True

    def test_server_error_is_transient(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = _status_error(openai.InternalServerError, 503)

        with pytest.raises(ProviderUnavailableError) as exc_info:
            embedder.embed(["x"])
        assert exc_info.value.transient is True

    def test_connection_error_is_transient(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = openai.APIConnectionError(request=_REQUEST)

        with pytest.raises(ProviderUnavailableError):
            embedder.embed(["x"])

    def test_bad_request_is_terminal(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = _status_error(openai.BadRequestError, 400)

        with pytest.raises(InvalidRequestError) as exc_info:
            embedder.embed(["x"])
        assert exc_info.value.transient is False

    def test_auth_error_is_terminal(self) -> None:
        embedder, client = _embedder()
        client.embeddings.create.side_effect = _status_error(openai.AuthenticationError, 401)

        with pytest.raises(InvalidRequestError):
            embedder.embed(["x"])
