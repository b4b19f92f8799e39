"""Indexer — embedding client, incremental index, scheduling queue, and related-notes ranking."""

from oraculum.indexer.builder import IndexBuilder, RebuildReport
from oraculum.indexer.embedder import (
    EmbeddingClient,
    EmbeddingError,
    InvalidRequestError,
    MalformedResponseError,
    OpenAIEmbedder,
    ProviderUnavailableError,
    QuotaExhaustedError,
    RateLimitedError,
    create_embedding_client,
)
from oraculum.indexer.persistence import (
    IndexEntry,
    IndexSettings,
    PluginData,
    PluginDataStore,
    StoreUnavailableError,
)
from oraculum.indexer.ranker import RelatedNote, SimilarityRanker
from oraculum.indexer.scheduler import (
    Priority,
    RateLimitedScheduler,
    ScheduledTask,
    SchedulerClosedError,
    TaskState,
)
from oraculum.indexer.similarity import DimensionMismatchError, cosine_similarity
from oraculum.indexer.store import IndexStore

__all__ = [
    "DimensionMismatchError",
    "EmbeddingClient",
    "EmbeddingError",
    "IndexBuilder",
    "IndexEntry",
    "IndexSettings",
    "IndexStore",
    "InvalidRequestError",
    "MalformedResponseError",
    "OpenAIEmbedder",
    "PluginData",
    "PluginDataStore",
    "Priority",
    "ProviderUnavailableError",
    "QuotaExhaustedError",
    "RateLimitedError",
    "RateLimitedScheduler",
    "RebuildReport",
    "RelatedNote",
    "ScheduledTask",
    "SchedulerClosedError",
    "SimilarityRanker",
    "StoreUnavailableError",
    "TaskState",
    "cosine_similarity",
    "create_embedding_client",
]
