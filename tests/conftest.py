"""Shared fixtures for the search service tests."""

import sys
from pathlib import Path
from typing import Dict, List

import pytest
from prometheus_client import CollectorRegistry

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "service-search"))

from libs.common.config import SearchConfig
from libs.common.metrics import MetricsCollector
from libs.common.models import ContentDocument
from tests.helpers import FakeEmbeddingProvider


@pytest.fixture
def search_config() -> SearchConfig:
    return SearchConfig(
        ml_search_backend="memory",
        ml_openai_api_key=None,
        ml_search_cache_enabled=False,
        ml_tracing_enabled=False,
        ml_log_format="console",
    )


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def documents() -> List[ContentDocument]:
    return [
        ContentDocument(
            content_id="python-intro",
            title="Python basics",
            text="Python is a programming language. Python code reads well.",
            tags=["python", "beginner"],
        ),
        ContentDocument(
            content_id="hybrid-search",
            title="Hybrid search",
            text="Combining text search with vector search improves recall.",
            tags=["search"],
        ),
        ContentDocument(
            content_id="pasta",
            title="Weeknight pasta",
            text="A quick cooking guide for tomato pasta.",
            tags=["cooking"],
        ),
    ]


@pytest.fixture
def documents_by_id(documents) -> Dict[str, ContentDocument]:
    return {document.content_id: document for document in documents}
