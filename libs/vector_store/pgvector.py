"""PgVector implementation of vector store.

Embeddings live on the ``compiled_articles`` table next to the article's
plain text. Cosine distance is computed with the ``<=>`` operator and
converted to a similarity (``1 - distance``) so higher means more similar.

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import json
from typing import Any, Dict, Iterable, List, Optional, Sequence

import asyncpg
from asyncpg import Connection, Pool
import numpy as np
from pgvector.asyncpg import register_vector
import structlog

from libs.common.models import MatchOrigin, ScoredMatch
from .base import (
    SNIPPET_LENGTH,
    VectorStore,
    VectorStoreConnectionError,
    VectorStoreQueryError,
)

logger = structlog.get_logger("vector_store.pgvector")


class PgVectorStore(VectorStore):
    """PgVector implementation of vector store."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        max_queries: int = 50000,
        command_timeout: int = 60,
        vector_dimension: Optional[int] = None,
    ):
        """Configure a PgVector-backed vector store.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - max_queries: Queries per connection before recycling
        - command_timeout: Seconds to allow per DB command
        - vector_dimension: Expected dimensionality for stored vectors
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.max_queries = max_queries
        self.command_timeout = command_timeout
        self.vector_dimension = vector_dimension
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector codec for asyncpg connections."""
        await register_vector(conn)

    async def _get_pool(self) -> Pool:
        """Get or create connection pool.

        Lazily initializes an asyncpg pool so callers don't pay startup cost
        unless/until they make a call that requires the database.
        """
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    max_queries=self.max_queries,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PgVector connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PgVector connection pool", error=str(e))
                raise VectorStoreConnectionError(f"Failed to create connection pool: {e}")

        return self._pool

    async def _execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one`` flags control how results are retrieved.
        All failures are wrapped in ``VectorStoreQueryError`` for consistency.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except Exception as e:
            logger.error("Query execution failed", error=str(e))
            raise VectorStoreQueryError(f"Query failed: {e}")

    async def store_embedding(
        self,
        content_id: str,
        vector: Sequence[float],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Store an embedding vector.

        A vector of the wrong dimension is rejected with ``False``; database
        failures raise ``VectorStoreQueryError``.
        """
        try:
            vector_array = self._ensure_vector_dimension(vector)
        except ValueError as e:
            logger.error("Failed to store embedding", content_id=content_id, error=str(e))
            return False

        query = """
            INSERT INTO compiled_articles (slug, plain_text, metadata, embedding)
            VALUES ($1, $2, $3::jsonb, $4)
            ON CONFLICT (slug)
            DO UPDATE SET embedding = EXCLUDED.embedding
        """

        await self._execute_query(
            query,
            content_id,
            text,
            json.dumps(metadata or {}),
            vector_array,
        )

        logger.info("Stored embedding", content_id=content_id)
        return True

    async def search_similar(
        self,
        query_vector: Sequence[float],
        limit: int = 10,
        similarity_threshold: float = 0.0
    ) -> List[ScoredMatch]:
        """Search for similar vectors using cosine similarity."""
        vector_array = self._ensure_vector_dimension(query_vector)

        query = f"""
            SELECT slug,
                   1 - (embedding <=> $1) AS similarity,
                   CASE
                       WHEN LENGTH(plain_text) > {SNIPPET_LENGTH}
                           THEN LEFT(plain_text, {SNIPPET_LENGTH}) || '...'
                       ELSE plain_text
                   END AS snippet
            FROM compiled_articles
            WHERE embedding IS NOT NULL
              AND 1 - (embedding <=> $1) >= $2
            ORDER BY embedding <=> $1
            LIMIT $3
        """

        rows = await self._execute_query(
            query, vector_array, similarity_threshold, limit, fetch=True
        )

        matches = [
            ScoredMatch(
                content_id=row["slug"],
                snippet=row["snippet"] or "",
                score=float(row["similarity"]),
                origin=MatchOrigin.VECTOR,
            )
            for row in rows
        ]

        logger.info(
            "Vector similarity search completed",
            query_vector_dim=len(vector_array),
            limit=limit,
            results_count=len(matches)
        )

        return matches

    async def delete_embedding(self, content_id: str) -> bool:
        """Clear an embedding vector (the article row itself is kept)."""
        try:
            result = await self._execute_query(
                """
                UPDATE compiled_articles SET embedding = NULL
                WHERE slug = $1 AND embedding IS NOT NULL
                """,
                content_id,
            )
            deleted = result.split()[-1] != "0"

            if deleted:
                logger.info("Deleted embedding", content_id=content_id)
            else:
                logger.warning("Embedding not found for deletion", content_id=content_id)

            return deleted

        except Exception as e:
            logger.error("Failed to delete embedding", content_id=content_id, error=str(e))
            return False

    async def get_embedding_count(self) -> int:
        """Get count of stored embeddings."""
        result = await self._execute_query(
            "SELECT COUNT(*) AS count FROM compiled_articles WHERE embedding IS NOT NULL",
            fetch_one=True,
        )
        return int(result["count"]) if result else 0

    async def health_check(self) -> bool:
        """Check if the vector store is healthy."""
        try:
            await self._execute_query("SELECT 1", fetch_one=True)
            return True
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed PgVector connection pool")

    def _ensure_vector_dimension(self, vector: Iterable[float]) -> np.ndarray:
        """Ensure a vector matches the expected dimensionality."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1:
            raise ValueError("Vector must be one-dimensional")

        if self.vector_dimension is not None and array.shape[0] != self.vector_dimension:
            raise ValueError(
                f"Expected vector dimension {self.vector_dimension}, "
                f"got {array.shape[0]}"
            )
        return array
