"""Tests for hybrid search orchestration."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from libs.common.models import ContentDocument, MatchOrigin
from libs.vector_store.base import VectorStoreQueryError
from libs.vector_store.memory import InMemoryVectorStore
from app.encoders.openai_provider import UnavailableReason
from app.hybrid.search_manager import (
    VECTOR_SKIPPED,
    VECTOR_UNAVAILABLE,
    VECTOR_USED,
    HybridSearchOutcome,
    SearchManager,
    SearchUnavailableError,
)
from app.retrievers.lexical import InMemoryTextScorer, TextSearchError
from tests.helpers import FakeEmbeddingProvider, text_match, vector_match


async def _manager(config, metrics, documents=(), provider=None, **kwargs) -> SearchManager:
    manager = SearchManager(
        config,
        text_scorer=kwargs.pop("text_scorer", InMemoryTextScorer()),
        vector_store=kwargs.pop("vector_store", InMemoryVectorStore()),
        embedding_provider=provider or FakeEmbeddingProvider(),
        metrics_collector=metrics,
        **kwargs
    )
    await manager.initialize()
    for document in documents:
        await manager.index_document(document)
    return manager


@pytest.mark.asyncio
async def test_index_document_populates_both_indexes(search_config, metrics_collector, documents):
    provider = FakeEmbeddingProvider()
    manager = await _manager(search_config, metrics_collector, documents, provider)

    assert await manager.get_index_stats() == {"documents": 3, "embeddings": 3}
    assert provider.calls[0] == "Python basics\n\nPython is a programming language. Python code reads well."


@pytest.mark.asyncio
async def test_vector_path_runs_when_text_results_are_sparse(search_config, metrics_collector, documents):
    manager = await _manager(search_config, metrics_collector, documents)

    outcome = await manager.hybrid_search("python", limit=5)

    assert outcome.vector_status == VECTOR_USED
    top = outcome.results[0]
    assert top.content_id == "python-intro"
    assert top.matched_by == [MatchOrigin.TEXT, MatchOrigin.VECTOR]
    # text 20 * 0.5 + cosine 1.0 * 0.5
    assert top.combined_score == pytest.approx(10.5)


@pytest.mark.asyncio
async def test_vector_path_skipped_when_text_fills_the_page(search_config, metrics_collector, documents):
    provider = FakeEmbeddingProvider()
    manager = await _manager(search_config, metrics_collector, documents, provider)
    provider.calls.clear()

    outcome = await manager.hybrid_search("python", limit=1)

    assert outcome.vector_status == VECTOR_SKIPPED
    assert provider.calls == []
    assert [m.content_id for m in outcome.results] == ["python-intro"]
    assert outcome.results[0].matched_by == [MatchOrigin.TEXT]


@pytest.mark.asyncio
async def test_trigger_threshold_overrides_limit(search_config, metrics_collector, documents):
    search_config.ml_search_vector_trigger_threshold = 0
    provider = FakeEmbeddingProvider()
    manager = await _manager(search_config, metrics_collector, documents, provider)
    provider.calls.clear()

    outcome = await manager.hybrid_search("kubernetes", limit=10)

    assert outcome.vector_status == VECTOR_SKIPPED
    assert outcome.results == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_missing_credentials_degrade_to_text_only(search_config, metrics_collector, documents):
    text_scorer = InMemoryTextScorer(documents)
    provider = FakeEmbeddingProvider(unavailable=UnavailableReason.MISSING_CREDENTIALS)
    manager = await _manager(search_config, metrics_collector, provider=provider, text_scorer=text_scorer)

    outcome = await manager.hybrid_search("search", limit=10)

    assert outcome.vector_status == VECTOR_UNAVAILABLE
    assert [m.content_id for m in outcome.results] == ["hybrid-search"]
    assert outcome.results[0].combined_score == pytest.approx(10.0)
    assert "search_vector_fallbacks_total" in metrics_collector.get_metrics()


@pytest.mark.asyncio
async def test_vector_store_failure_degrades_to_text_only(search_config, metrics_collector, documents):
    vector_store = InMemoryVectorStore()
    vector_store.search_similar = AsyncMock(side_effect=VectorStoreQueryError("db gone"))
    manager = await _manager(
        search_config,
        metrics_collector,
        text_scorer=InMemoryTextScorer(documents),
        vector_store=vector_store,
    )

    outcome = await manager.hybrid_search("python", limit=10)

    assert outcome.vector_status == VECTOR_UNAVAILABLE
    assert [m.content_id for m in outcome.results] == ["python-intro"]


@pytest.mark.asyncio
async def test_text_scorer_failure_is_search_unavailable(search_config, metrics_collector):
    text_scorer = InMemoryTextScorer()
    text_scorer.search = AsyncMock(side_effect=TextSearchError("db gone"))
    manager = await _manager(search_config, metrics_collector, text_scorer=text_scorer)

    with pytest.raises(SearchUnavailableError):
        await manager.hybrid_search("python")
    with pytest.raises(SearchUnavailableError):
        await manager.text_search("python")


@pytest.mark.asyncio
async def test_concurrent_strategy_always_runs_vector_path(search_config, metrics_collector, documents):
    search_config.ml_search_strategy = "concurrent"
    provider = FakeEmbeddingProvider()
    manager = await _manager(search_config, metrics_collector, documents, provider)
    provider.calls.clear()

    outcome = await manager.hybrid_search("python", limit=1)

    assert outcome.vector_status == VECTOR_USED
    assert provider.calls == ["python"]
    assert len(outcome.results) == 1


@pytest.mark.asyncio
async def test_request_weights_override_defaults(search_config, metrics_collector):
    text_scorer = AsyncMock()
    text_scorer.search.return_value = [text_match("a", 1.0, "a"), text_match("b", 0.5, "b")]
    vector_store = AsyncMock()
    vector_store.search_similar.return_value = [vector_match("c", 0.9, "c")]
    manager = await _manager(search_config, metrics_collector, text_scorer=text_scorer, vector_store=vector_store)

    outcome = await manager.hybrid_search("anything", limit=5, text_weight=0.0, vector_weight=1.0)

    assert [m.content_id for m in outcome.results] == ["c", "a", "b"]
    assert outcome.results[1].combined_score == 0.0
    text_scorer.search.assert_awaited_once_with("anything", 10)
    assert vector_store.search_similar.await_args.kwargs["similarity_threshold"] == 0.3


@pytest.mark.asyncio
async def test_negative_weight_is_rejected(search_config, metrics_collector):
    manager = await _manager(search_config, metrics_collector)

    with pytest.raises(ValueError):
        await manager.hybrid_search("python", text_weight=-1.0)


@pytest.mark.asyncio
async def test_result_cache_short_circuits_search(search_config, metrics_collector):
    cached = HybridSearchOutcome(query="python", results=[], vector_status=VECTOR_SKIPPED)
    cache_manager = AsyncMock()
    cache_manager.get_cached_search_results.return_value = cached.to_payload()
    text_scorer = AsyncMock()
    manager = await _manager(
        search_config,
        metrics_collector,
        text_scorer=text_scorer,
        cache_manager=cache_manager,
    )

    outcome = await manager.hybrid_search("python", limit=3)

    assert outcome == cached
    text_scorer.search.assert_not_awaited()


@pytest.mark.asyncio
async def test_results_and_embeddings_are_cached(search_config, metrics_collector, documents):
    cache_manager = AsyncMock()
    cache_manager.get_cached_search_results.return_value = None
    cache_manager.get_cached_query_embedding.return_value = None
    manager = await _manager(
        search_config,
        metrics_collector,
        text_scorer=InMemoryTextScorer(documents),
        cache_manager=cache_manager,
    )

    outcome = await manager.hybrid_search("python", limit=5)

    params, payload = cache_manager.cache_search_results.await_args.args
    assert params["query"] == "python" and params["limit"] == 5
    assert payload == outcome.to_payload()
    cache_manager.cache_query_embedding.assert_awaited_once()


@pytest.mark.asyncio
async def test_vector_search_with_embedding_and_query(search_config, metrics_collector, documents):
    provider = FakeEmbeddingProvider()
    manager = await _manager(search_config, metrics_collector, documents, provider)

    by_vector = await manager.vector_search(embedding=provider.vector_for("cooking"), limit=2)
    assert [m.content_id for m in by_vector.results] == ["pasta"]
    assert by_vector.results[0].origin == MatchOrigin.VECTOR

    by_query = await manager.vector_search(query="vector search", limit=5)
    assert by_query.vector_status == VECTOR_USED
    assert by_query.results[0].content_id == "hybrid-search"

    with pytest.raises(ValueError):
        await manager.vector_search()


@pytest.mark.asyncio
async def test_vector_search_reports_unavailable_embedding(search_config, metrics_collector):
    provider = FakeEmbeddingProvider(unavailable=UnavailableReason.PROVIDER_ERROR)
    manager = await _manager(search_config, metrics_collector, provider=provider)

    outcome = await manager.vector_search(query="python")

    assert outcome.results == []
    assert outcome.vector_status == VECTOR_UNAVAILABLE


@pytest.mark.asyncio
async def test_index_without_embedding_still_indexes_text(search_config, metrics_collector, documents):
    provider = FakeEmbeddingProvider(unavailable=UnavailableReason.MISSING_CREDENTIALS)
    manager = await _manager(search_config, metrics_collector, provider=provider)

    result = await manager.index_document(documents[0])

    assert result == {"content_id": "python-intro", "embedded": False}
    assert await manager.get_index_stats() == {"documents": 1, "embeddings": 0}


@pytest.mark.asyncio
async def test_remove_document(search_config, metrics_collector, documents):
    manager = await _manager(search_config, metrics_collector, documents)

    assert await manager.remove_document("pasta") is True
    assert await manager.remove_document("pasta") is False
    assert await manager.get_index_stats() == {"documents": 2, "embeddings": 2}


@pytest.mark.asyncio
async def test_initialize_builds_memory_backend(search_config, metrics_collector):
    manager = SearchManager(search_config, metrics_collector=metrics_collector)
    await manager.initialize()

    assert isinstance(manager.text_scorer, InMemoryTextScorer)
    assert isinstance(manager.vector_store, InMemoryVectorStore)
    assert manager.cache_manager is None
    assert await manager.health_check() is True

    # No API key configured: hybrid search still answers from text
    await manager.index_document(ContentDocument(content_id="doc", title="Doc", text="plain words"))
    outcome = await manager.hybrid_search("plain")
    assert outcome.vector_status == VECTOR_UNAVAILABLE
    assert [m.content_id for m in outcome.results] == ["doc"]

    await manager.cleanup()


class BlockingEmbeddingProvider(FakeEmbeddingProvider):
    """Blocks inside ``embed`` until cancelled."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.cancelled = False

    async def embed(self, text: str):
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_concurrent_text_failure_cancels_vector_lookup(search_config, metrics_collector):
    search_config.ml_search_strategy = "concurrent"
    provider = BlockingEmbeddingProvider()

    async def failing_search(query, limit):
        await provider.started.wait()
        raise TextSearchError("db gone")

    text_scorer = InMemoryTextScorer()
    text_scorer.search = failing_search
    manager = await _manager(search_config, metrics_collector, provider=provider, text_scorer=text_scorer)

    with pytest.raises(SearchUnavailableError):
        await manager.hybrid_search("python")

    assert provider.cancelled is True


@pytest.mark.asyncio
async def test_degraded_outcome_is_not_cached(search_config, metrics_collector, documents):
    provider = FakeEmbeddingProvider()
    cache_manager = AsyncMock()
    cache_manager.get_cached_search_results.return_value = None
    cache_manager.get_cached_query_embedding.return_value = None
    manager = await _manager(search_config, metrics_collector, documents, provider, cache_manager=cache_manager)

    provider.unavailable = UnavailableReason.PROVIDER_ERROR
    degraded = await manager.hybrid_search("python", limit=5)

    assert degraded.vector_status == VECTOR_UNAVAILABLE
    cache_manager.cache_search_results.assert_not_awaited()

    provider.unavailable = None
    recovered = await manager.hybrid_search("python", limit=5)

    assert recovered.vector_status == VECTOR_USED
    cache_manager.cache_search_results.assert_awaited_once()


@pytest.mark.asyncio
async def test_cached_results_are_counted_in_search_metrics(search_config, metrics_collector):
    cached = HybridSearchOutcome(query="python", results=[], vector_status=VECTOR_SKIPPED)
    cache_manager = AsyncMock()
    cache_manager.get_cached_search_results.return_value = cached.to_payload()
    manager = await _manager(search_config, metrics_collector, cache_manager=cache_manager)

    await manager.hybrid_search("python", limit=3)

    assert 'search_requests_total{search_type="hybrid"} 1.0' in metrics_collector.get_metrics()


@pytest.mark.asyncio
async def test_vector_search_rejects_wrong_dimension(search_config, metrics_collector, documents):
    manager = await _manager(search_config, metrics_collector, documents)

    with pytest.raises(ValueError):
        await manager.vector_search(embedding=[1.0, 0.0])


@pytest.mark.asyncio
async def test_index_document_survives_vector_store_failure(search_config, metrics_collector, documents):
    vector_store = InMemoryVectorStore()
    vector_store.store_embedding = AsyncMock(side_effect=VectorStoreQueryError("db gone"))
    manager = await _manager(search_config, metrics_collector, vector_store=vector_store)

    result = await manager.index_document(documents[0])

    assert result == {"content_id": "python-intro", "embedded": False}
    assert await manager.get_index_stats() == {"documents": 1, "embeddings": 0}
