"""Search manager for hybrid text and vector search.

Runs the lexical scorer first and only pays for an embedding plus a vector
lookup when the text results alone cannot fill the requested page. Both
result lists are merged by the configured fusion algorithm. The vector path
is strictly optional: when the embedding provider or the vector store is
unavailable the search degrades to text-only results instead of failing.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from libs.common.config import SearchConfig
from libs.common.logging import log_performance
from libs.common.metrics import MetricsCollector, get_metrics_collector
from libs.common.models import ContentDocument, MergedMatch, ScoredMatch
from libs.common.tracing import SearchTracer
from libs.vector_store.base import VectorStore, VectorStoreError
from libs.vector_store.factory import create_vector_store, create_vector_store_from_settings
from ..adapters.circuit_breaker import get_circuit_breaker
from ..encoders.openai_provider import (
    Embedding,
    EmbeddingProviderError,
    EmbeddingResult,
    EmbeddingUnavailable,
    OpenAIEmbeddingProvider,
)
from ..ranking.fusion import RankFusionAlgorithm, create_fusion_algorithm
from ..retrievers.cache_manager import SearchCacheManager, create_search_cache_manager
from ..retrievers.lexical import InMemoryTextScorer, PostgresTextScorer

logger = structlog.get_logger("search_service.search_manager")

VECTOR_USED = "used"
VECTOR_SKIPPED = "skipped"
VECTOR_UNAVAILABLE = "unavailable"

SERVICE_NAME = "search-service"


class SearchUnavailableError(Exception):
    """A required search backend failed; the request cannot be served."""
    pass


@dataclass
class HybridSearchOutcome:
    """Merged results plus whether the vector path contributed."""
    query: str
    results: List[MergedMatch] = field(default_factory=list)
    vector_status: str = VECTOR_SKIPPED

    def to_payload(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": [match.to_dict() for match in self.results],
            "vector_status": self.vector_status,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "HybridSearchOutcome":
        return cls(
            query=payload["query"],
            results=[MergedMatch.from_dict(item) for item in payload["results"]],
            vector_status=payload["vector_status"],
        )


@dataclass
class VectorSearchOutcome:
    results: List[ScoredMatch] = field(default_factory=list)
    vector_status: str = VECTOR_USED


class SearchManager:
    """Manages hybrid search operations.

    Responsibilities
    - Own the text scorer, vector store, embedding provider and cache
    - Decide whether the vector path runs for a query
    - Merge, truncate, cache and report on results
    - Keep both indexes in step when documents are (de)indexed
    """

    def __init__(
        self,
        config: SearchConfig,
        text_scorer: Optional[Any] = None,
        vector_store: Optional[VectorStore] = None,
        embedding_provider: Optional[Any] = None,
        cache_manager: Optional[SearchCacheManager] = None,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        """Construct a search manager.

        Parameters
        - config: ``SearchConfig`` with backend, ranking and cache settings
        - text_scorer: Object with async ``search/upsert/delete/count``
        - vector_store: ``VectorStore`` implementation
        - embedding_provider: Object with async ``embed(text)`` returning
          ``Embedding | EmbeddingUnavailable`` and a ``model`` attribute
        - cache_manager: Optional ``SearchCacheManager``
        - metrics_collector: Prometheus collector; the process-wide one if omitted

        Collaborators left as ``None`` are built from ``config`` in
        ``initialize()``.
        """
        self.config = config
        self.text_scorer = text_scorer
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.cache_manager = cache_manager
        self.metrics = metrics_collector or get_metrics_collector(SERVICE_NAME)
        self.tracer = SearchTracer(SERVICE_NAME)

        self.fusion_algorithm: RankFusionAlgorithm = create_fusion_algorithm(
            config.ml_search_fusion_algorithm,
            text_weight=config.ml_search_text_weight,
            vector_weight=config.ml_search_vector_weight,
            normalization=config.ml_search_score_normalization,
        )

    async def initialize(self) -> None:
        """Build any collaborator that was not injected."""
        config = self.config
        use_memory = config.ml_search_backend == "memory"

        if self.text_scorer is None:
            if use_memory:
                self.text_scorer = InMemoryTextScorer()
            else:
                self.text_scorer = PostgresTextScorer(
                    dsn=config.ml_vector_db_dsn,
                    pool_size=config.ml_vector_pool_size,
                    command_timeout=config.ml_vector_command_timeout,
                )

        if self.vector_store is None:
            if use_memory:
                self.vector_store = create_vector_store("memory", {})
            else:
                self.vector_store = create_vector_store_from_settings(config)

        if self.embedding_provider is None:
            self.embedding_provider = OpenAIEmbeddingProvider(
                api_key=config.ml_openai_api_key,
                model=config.ml_embedding_model,
                base_url=config.ml_openai_base_url,
                timeout=config.ml_embedding_timeout,
                max_input_chars=config.ml_embedding_max_input_chars,
                retry_attempts=config.ml_search_embedding_retry_attempts,
                retry_base_delay=config.ml_search_embedding_retry_base_delay,
                retry_max_delay=config.ml_search_embedding_retry_max_delay,
                circuit_breaker=get_circuit_breaker(
                    name="embedding_service",
                    failure_threshold=5,
                    recovery_timeout=30.0,
                    expected_exception=EmbeddingProviderError
                ),
            )

        if self.cache_manager is None and config.ml_search_cache_enabled:
            self.cache_manager = create_search_cache_manager(
                redis_url=config.ml_redis_url,
                embedding_cache_ttl=config.ml_search_embedding_cache_ttl,
                result_cache_ttl=config.ml_search_result_cache_ttl
            )

        logger.info(
            "Search manager initialized successfully",
            backend=config.ml_search_backend,
            strategy=config.ml_search_strategy,
            fusion=self.fusion_algorithm.name,
            cache_enabled=self.cache_manager is not None
        )

    async def hybrid_search(
        self,
        query: str,
        limit: Optional[int] = None,
        text_weight: Optional[float] = None,
        vector_weight: Optional[float] = None
    ) -> HybridSearchOutcome:
        """Perform hybrid search.

        Raises ``SearchUnavailableError`` only when the text scorer fails;
        vector failures degrade to text-only results.
        """
        config = self.config
        limit = config.ml_search_default_limit if limit is None else limit
        text_weight = config.ml_search_text_weight if text_weight is None else text_weight
        vector_weight = config.ml_search_vector_weight if vector_weight is None else vector_weight
        fusion = self.fusion_algorithm.with_weights(text_weight, vector_weight)

        start_time = time.perf_counter()
        cache_params = {
            "search_type": "hybrid",
            "query": query,
            "limit": limit,
            "text_weight": text_weight,
            "vector_weight": vector_weight,
        }
        cached = await self._get_cached_results(cache_params)
        if cached is not None:
            outcome = HybridSearchOutcome.from_payload(cached)
            self.metrics.record_search("hybrid", time.perf_counter() - start_time, len(outcome.results))
            return outcome

        fetch_limit = limit * config.ml_search_overfetch_factor

        with self.tracer.trace_search_query("hybrid", limit, query_length=len(query)) as span:
            if config.ml_search_strategy == "concurrent":
                text_matches, vector_matches, vector_status = await self._concurrent_matches(query, fetch_limit)
            else:
                text_matches = await self._text_matches(query, fetch_limit)
                trigger = config.ml_search_vector_trigger_threshold
                if trigger is None:
                    trigger = limit

                if len(text_matches) < trigger:
                    vector_matches, vector_status = await self._vector_matches(query, fetch_limit)
                else:
                    vector_matches, vector_status = [], VECTOR_SKIPPED

            results = fusion.fuse(text_matches, vector_matches, limit=limit)
            span.set_attribute("search.vector_status", vector_status)
            span.set_attribute("search.result_count", len(results))

        outcome = HybridSearchOutcome(query=query, results=results, vector_status=vector_status)
        # Degraded outcomes are not cached
        if vector_status != VECTOR_UNAVAILABLE:
            await self._cache_results(cache_params, outcome.to_payload())

        duration = time.perf_counter() - start_time
        self.metrics.record_search("hybrid", duration, len(results))
        log_performance(
            "hybrid_search",
            round(duration * 1000, 2),
            query=query,
            text_count=len(text_matches),
            vector_count=len(vector_matches),
            results_count=len(results),
            vector_status=vector_status
        )

        return outcome

    async def text_search(self, query: str, limit: Optional[int] = None) -> List[ScoredMatch]:
        """Lexical-only search."""
        limit = self.config.ml_search_default_limit if limit is None else limit
        start_time = time.perf_counter()

        with self.tracer.trace_search_query("text", limit, query_length=len(query)):
            matches = await self._text_matches(query, limit)

        self.metrics.record_search("text", time.perf_counter() - start_time, len(matches))
        return matches

    async def vector_search(
        self,
        query: Optional[str] = None,
        embedding: Optional[Sequence[float]] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None
    ) -> VectorSearchOutcome:
        """Similarity search from a raw embedding or from a query to embed.

        An unavailable embedding yields an empty outcome marked
        ``unavailable``; a vector store failure raises
        ``SearchUnavailableError``. An embedding whose dimension does not
        match the index raises ``ValueError``.
        """
        if embedding is None and not query:
            raise ValueError("Either query or embedding is required")

        limit = self.config.ml_search_default_limit if limit is None else limit
        threshold = self.config.ml_search_vector_threshold if threshold is None else threshold
        start_time = time.perf_counter()

        with self.tracer.trace_search_query("vector", limit, has_embedding=embedding is not None):
            if embedding is None:
                result = await self._embed_query(query)
                if isinstance(result, EmbeddingUnavailable):
                    logger.warning("Vector search unavailable", reason=result.reason.value)
                    return VectorSearchOutcome(results=[], vector_status=VECTOR_UNAVAILABLE)
                embedding = result.vector

            matches = await self._search_vectors(embedding, limit, threshold)

        self.metrics.record_search("vector", time.perf_counter() - start_time, len(matches))
        return VectorSearchOutcome(results=matches, vector_status=VECTOR_USED)

    async def _concurrent_matches(
        self,
        query: str,
        limit: int
    ) -> Tuple[List[ScoredMatch], List[ScoredMatch], str]:
        """Run both scorers at once; a text failure cancels the vector lookup."""
        text_task = asyncio.ensure_future(self._text_matches(query, limit))
        vector_task = asyncio.ensure_future(self._vector_matches(query, limit))

        try:
            text_matches = await text_task
        except BaseException:
            vector_task.cancel()
            await asyncio.wait([vector_task])
            raise

        vector_matches, vector_status = await vector_task
        return text_matches, vector_matches, vector_status

    async def _text_matches(self, query: str, limit: int) -> List[ScoredMatch]:
        try:
            return await self.text_scorer.search(query, limit)
        except Exception as e:
            logger.error("Text search failed", query=query, error=str(e))
            raise SearchUnavailableError(f"Text search failed: {e}") from e

    async def _search_vectors(
        self,
        vector: Sequence[float],
        limit: int,
        threshold: float
    ) -> List[ScoredMatch]:
        try:
            return await self.vector_store.search_similar(
                query_vector=vector,
                limit=limit,
                similarity_threshold=threshold
            )
        except VectorStoreError as e:
            logger.error("Vector search failed", error=str(e))
            raise SearchUnavailableError(f"Vector search failed: {e}") from e

    async def _vector_matches(self, query: str, limit: int) -> Tuple[List[ScoredMatch], str]:
        """Embed ``query`` and look up neighbours, degrading to no matches."""
        result = await self._embed_query(query)
        if isinstance(result, EmbeddingUnavailable):
            logger.warning(
                "Embedding unavailable, falling back to text-only results",
                reason=result.reason.value,
                detail=result.detail
            )
            self.metrics.record_vector_fallback(result.reason.value)
            return [], VECTOR_UNAVAILABLE

        try:
            matches = await self._search_vectors(result.vector, limit, self.config.ml_search_vector_threshold)
        except (SearchUnavailableError, ValueError) as e:
            logger.warning("Vector store failed, falling back to text-only results", error=str(e))
            self.metrics.record_vector_fallback("vector_store_error")
            return [], VECTOR_UNAVAILABLE

        return matches, VECTOR_USED

    async def _embed_query(self, query: str) -> EmbeddingResult:
        """Embed a query, consulting the embedding cache first."""
        model = self.embedding_provider.model

        if self.cache_manager is not None:
            cached = await self.cache_manager.get_cached_query_embedding(query, model)
            if cached is not None:
                self.metrics.record_cache_hit("embedding")
                return Embedding(vector=cached, model=model)
            self.metrics.record_cache_miss("embedding")

        start_time = time.perf_counter()
        with self.tracer.trace_embedding_generation(model):
            result = await self.embedding_provider.embed(query)

        status = "success" if isinstance(result, Embedding) else result.reason.value
        self.metrics.record_embedding(model, status, time.perf_counter() - start_time)

        if isinstance(result, Embedding) and self.cache_manager is not None:
            await self.cache_manager.cache_query_embedding(query, model, result.vector)

        return result

    async def _get_cached_results(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.cache_manager is None:
            return None

        cached = await self.cache_manager.get_cached_search_results(params)
        if cached is None:
            self.metrics.record_cache_miss("search_results")
            return None

        self.metrics.record_cache_hit("search_results")
        logger.info("Search cache hit", query=params["query"])
        return cached

    async def _cache_results(self, params: Dict[str, Any], payload: Dict[str, Any]) -> None:
        if self.cache_manager is not None:
            await self.cache_manager.cache_search_results(params, payload)

    async def _invalidate_results(self) -> None:
        if self.cache_manager is not None:
            await self.cache_manager.invalidate_results()

    async def index_document(self, document: ContentDocument) -> Dict[str, Any]:
        """Index a document for text search and, when possible, vector search.

        The text index is authoritative: its failure raises
        ``SearchUnavailableError``. A missing embedding only leaves the
        document out of vector search.
        """
        try:
            await self.text_scorer.upsert(document)
        except Exception as e:
            logger.error("Document indexing failed", content_id=document.content_id, error=str(e))
            raise SearchUnavailableError(f"Indexing failed: {e}") from e

        embedded = False
        result = await self.embedding_provider.embed(document.embedding_text)
        if isinstance(result, Embedding):
            try:
                embedded = await self.vector_store.store_embedding(
                    content_id=document.content_id,
                    vector=result.vector,
                    text=document.text,
                    metadata={"title": document.title, "tags": document.tags}
                )
            except VectorStoreError as e:
                logger.warning("Failed to store document embedding", content_id=document.content_id, error=str(e))
        else:
            logger.warning(
                "Document indexed without embedding",
                content_id=document.content_id,
                reason=result.reason.value
            )

        await self._invalidate_results()

        logger.info("Document indexed", content_id=document.content_id, embedded=embedded)
        return {"content_id": document.content_id, "embedded": embedded}

    async def remove_document(self, content_id: str) -> bool:
        """Remove a document from both indexes."""
        try:
            removed_text = await self.text_scorer.delete(content_id)
            removed_vector = await self.vector_store.delete_embedding(content_id)
        except Exception as e:
            logger.error("Document removal failed", content_id=content_id, error=str(e))
            raise SearchUnavailableError(f"Removal failed: {e}") from e

        await self._invalidate_results()

        removed = removed_text or removed_vector
        logger.info("Document removed from index", content_id=content_id, removed=removed)
        return removed

    async def get_index_stats(self) -> Dict[str, Any]:
        """Get search index statistics."""
        try:
            documents = await self.text_scorer.count()
            embeddings = await self.vector_store.get_embedding_count()
        except Exception as e:
            logger.error("Failed to get index stats", error=str(e))
            raise SearchUnavailableError(f"Index stats failed: {e}") from e

        return {"documents": documents, "embeddings": embeddings}

    async def health_check(self) -> bool:
        """Healthy when the text scorer answers; the vector path is optional."""
        try:
            if self.text_scorer is None or not await self.text_scorer.health_check():
                return False

            if self.vector_store is not None and not await self.vector_store.health_check():
                logger.warning("Vector store unhealthy, hybrid search will degrade to text-only")

            return True

        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def cleanup(self) -> None:
        """Cleanup resources."""
        for name, resource in (
            ("text_scorer", self.text_scorer),
            ("vector_store", self.vector_store),
            ("embedding_provider", self.embedding_provider),
            ("cache_manager", self.cache_manager),
        ):
            if resource is None or not hasattr(resource, "close"):
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.error("Failed to close search resource", resource=name, error=str(e))

        logger.info("Search manager cleanup completed")
