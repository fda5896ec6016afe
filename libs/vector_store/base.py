"""Base vector store interface.

Defines the abstract contract the search service depends on, independent of
the backing implementation (pgvector, in-memory).

All methods are asynchronous so a database-backed store can be awaited from
request handlers without blocking the event loop.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from libs.common.models import ScoredMatch

SNIPPET_LENGTH = 200


def truncate_snippet(text: str, length: int = SNIPPET_LENGTH) -> str:
    """Leading excerpt of ``text``; vector matches are never highlighted."""
    if len(text) > length:
        return text[:length] + "..."
    return text


class VectorStore(ABC):
    """Abstract base class for vector stores.

    Implementations should ensure idempotent upserts and report similarity
    as cosine similarity where higher means more similar.
    """

    @abstractmethod
    async def store_embedding(
        self,
        content_id: str,
        vector: Sequence[float],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Store an embedding vector alongside the text used for snippets.

        Returns
        - ``True`` on success, ``False`` when the vector is rejected

        Raises
        - ``VectorStoreError`` when the backend fails
        """
        pass

    @abstractmethod
    async def search_similar(
        self,
        query_vector: Sequence[float],
        limit: int = 10,
        similarity_threshold: float = 0.0
    ) -> List[ScoredMatch]:
        """Search for similar vectors.

        Returns
        - ``ScoredMatch`` values with ``origin=VECTOR`` sorted by descending
          similarity, each at or above ``similarity_threshold``
        """
        pass

    @abstractmethod
    async def delete_embedding(self, content_id: str) -> bool:
        """Delete an embedding vector.

        Returns ``True`` if an item was deleted, else ``False``.
        """
        pass

    @abstractmethod
    async def get_embedding_count(self) -> int:
        """Get count of stored embeddings."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class VectorStoreConnectionError(VectorStoreError):
    """Connection error to vector store."""
    pass


class VectorStoreQueryError(VectorStoreError):
    """Query error in vector store."""
    pass
