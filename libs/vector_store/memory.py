"""In-memory vector store.

Keeps vectors in a dict and scores them with numpy cosine similarity. Used
for local development and tests where no PostgreSQL instance is available.
Not shared across processes.
"""

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from libs.common.models import MatchOrigin, ScoredMatch
from .base import VectorStore, truncate_snippet

logger = structlog.get_logger("vector_store.memory")


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity; zero-magnitude vectors score 0."""
    if a.shape != b.shape:
        raise ValueError("Embedding vectors must have the same dimension")

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


class InMemoryVectorStore(VectorStore):
    """Dict-backed vector store with brute-force cosine search."""

    def __init__(self, vector_dimension: Optional[int] = None):
        self.vector_dimension = vector_dimension
        self._vectors: Dict[str, np.ndarray] = {}
        self._texts: Dict[str, str] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}

    def _as_array(self, vector: Sequence[float]) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")
        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array

    async def store_embedding(
        self,
        content_id: str,
        vector: Sequence[float],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        try:
            self._vectors[content_id] = self._as_array(vector)
        except ValueError as e:
            logger.error("Failed to store embedding", content_id=content_id, error=str(e))
            return False

        self._texts[content_id] = text
        self._metadata[content_id] = dict(metadata or {})
        return True

    async def search_similar(
        self,
        query_vector: Sequence[float],
        limit: int = 10,
        similarity_threshold: float = 0.0
    ) -> List[ScoredMatch]:
        query = self._as_array(query_vector)

        scored = []
        for content_id, vector in self._vectors.items():
            similarity = cosine_similarity(query, vector)
            if similarity >= similarity_threshold:
                scored.append((content_id, similarity))

        # sorted() is stable, so equal similarities keep insertion order
        scored = sorted(scored, key=lambda item: item[1], reverse=True)[:limit]

        return [
            ScoredMatch(
                content_id=content_id,
                snippet=truncate_snippet(self._texts.get(content_id, "")),
                score=similarity,
                origin=MatchOrigin.VECTOR,
            )
            for content_id, similarity in scored
        ]

    async def delete_embedding(self, content_id: str) -> bool:
        if content_id not in self._vectors:
            return False
        del self._vectors[content_id]
        self._texts.pop(content_id, None)
        self._metadata.pop(content_id, None)
        return True

    async def get_embedding_count(self) -> int:
        return len(self._vectors)

    async def health_check(self) -> bool:
        return True
