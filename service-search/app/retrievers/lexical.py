"""Lexical (text) scorers.

``PostgresTextScorer`` ranks ``compiled_articles`` rows with PostgreSQL
full-text search (``ts_rank``) and highlights a fragment with
``ts_headline``. ``InMemoryTextScorer`` is a word-match scorer over
``ContentDocument`` values for local development and tests.

Both return ``ScoredMatch`` values with ``origin=TEXT`` sorted by score.
"""

import json
import re
from typing import Dict, Iterable, List, Optional

import asyncpg
from asyncpg import Pool
import structlog

from libs.common.models import ContentDocument, MatchOrigin, ScoredMatch
from libs.vector_store.base import SNIPPET_LENGTH, truncate_snippet

logger = structlog.get_logger("search_service.lexical")

HEADLINE_OPTIONS = "MaxWords=20, MinWords=10, ShortWord=3, HighlightAll=false, MaxFragments=1"

TITLE_MATCH_WEIGHT = 10
TEXT_MATCH_WEIGHT = 1
TAG_MATCH_BONUS = 8


class TextSearchError(Exception):
    """Text scorer could not complete a query."""
    pass


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace."""
    return re.sub(r"\s+", " ", text.lower().strip())


def extract_search_terms(query: str) -> List[str]:
    """Split a query into lowercase terms."""
    normalized = normalize_text(query)
    return normalized.split(" ") if normalized else []


def count_word_occurrences(text: str, word: str) -> int:
    """Count whole-word occurrences of ``word`` in ``text``."""
    pattern = re.compile(rf"\b{re.escape(normalize_text(word))}\b")
    return len(pattern.findall(normalize_text(text)))


def excerpt_around(text: str, terms: Iterable[str], length: int = SNIPPET_LENGTH) -> str:
    """Excerpt of ``text`` centred on the first matching term.

    Falls back to the leading excerpt when no term occurs in the text.
    """
    lowered = text.lower()
    positions = [lowered.find(term) for term in terms if term]
    positions = [p for p in positions if p >= 0]
    if not positions or len(text) <= length:
        return truncate_snippet(text, length)

    start = max(0, min(positions) - length // 2)
    end = min(len(text), start + length)
    start = max(0, end - length)

    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


class PostgresTextScorer:
    """PostgreSQL full-text scorer over ``compiled_articles``."""

    def __init__(self, dsn: str, pool_size: int = 10, command_timeout: int = 60):
        """Configure the scorer.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of the asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    async def _get_pool(self) -> Pool:
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                )
                logger.info("Created text search connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create text search connection pool", error=str(e))
                raise TextSearchError(f"Failed to create connection pool: {e}")
        return self._pool

    async def search(self, query: str, limit: int = 10) -> List[ScoredMatch]:
        """Rank articles against ``query`` with ``ts_rank``."""
        if not query.strip():
            return []

        sql = f"""
            SELECT slug,
                   plain_text,
                   ts_rank(to_tsvector('english', plain_text), plainto_tsquery('english', $1)) AS score,
                   ts_headline('english', plain_text, plainto_tsquery('english', $1),
                               '{HEADLINE_OPTIONS}') AS snippet
            FROM compiled_articles
            WHERE to_tsvector('english', plain_text) @@ plainto_tsquery('english', $1)
            ORDER BY score DESC
            LIMIT $2
        """

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(sql, query, limit)
        except Exception as e:
            logger.error("Text search query failed", error=str(e))
            raise TextSearchError(f"Text search failed: {e}")

        matches = []
        for row in rows:
            snippet = row["snippet"] or truncate_snippet(row["plain_text"] or "")
            matches.append(ScoredMatch(
                content_id=row["slug"],
                snippet=snippet,
                score=float(row["score"] or 0.0),
                origin=MatchOrigin.TEXT,
            ))

        logger.info("Text search completed", results_count=len(matches))
        return matches

    async def upsert(self, document: ContentDocument) -> None:
        """Insert or refresh an article's searchable text."""
        metadata = {**document.metadata, "title": document.title, "tags": document.tags}
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO compiled_articles (slug, plain_text, metadata)
                    VALUES ($1, $2, $3::jsonb)
                    ON CONFLICT (slug)
                    DO UPDATE SET
                        plain_text = EXCLUDED.plain_text,
                        metadata = EXCLUDED.metadata
                    """,
                    document.content_id,
                    document.embedding_text,
                    json.dumps(metadata),
                )
        except Exception as e:
            logger.error("Failed to index document", content_id=document.content_id, error=str(e))
            raise TextSearchError(f"Indexing failed: {e}")

    async def delete(self, content_id: str) -> bool:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM compiled_articles WHERE slug = $1", content_id
                )
        except Exception as e:
            logger.error("Failed to delete document", content_id=content_id, error=str(e))
            raise TextSearchError(f"Delete failed: {e}")
        return result.split()[-1] != "0"

    async def count(self) -> int:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return int(await conn.fetchval("SELECT COUNT(*) FROM compiled_articles"))
        except Exception as e:
            raise TextSearchError(f"Count failed: {e}")

    async def health_check(self) -> bool:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            logger.error("Text search health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None


class InMemoryTextScorer:
    """Word-match scorer over documents held in memory.

    Each whole-word occurrence of a query term scores 10 in the title and 1
    in the body; a term contained in any tag adds a bonus of 8.
    """

    def __init__(self, documents: Optional[Iterable[ContentDocument]] = None, min_score: float = 1.0):
        self.min_score = min_score
        self._documents: Dict[str, ContentDocument] = {}
        for document in documents or []:
            self._documents[document.content_id] = document

    def score_document(self, document: ContentDocument, terms: List[str]) -> float:
        score = 0
        for term in terms:
            score += count_word_occurrences(document.title, term) * TITLE_MATCH_WEIGHT
            score += count_word_occurrences(document.text, term) * TEXT_MATCH_WEIGHT
            if any(term in tag.lower() for tag in document.tags):
                score += TAG_MATCH_BONUS
        return float(score)

    async def search(self, query: str, limit: int = 10) -> List[ScoredMatch]:
        terms = extract_search_terms(query)
        if not terms:
            return []

        matches = []
        for document in self._documents.values():
            score = self.score_document(document, terms)
            if score >= self.min_score:
                matches.append(ScoredMatch(
                    content_id=document.content_id,
                    snippet=excerpt_around(document.text, terms),
                    score=score,
                    origin=MatchOrigin.TEXT,
                ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:limit]

    async def upsert(self, document: ContentDocument) -> None:
        self._documents[document.content_id] = document

    async def delete(self, content_id: str) -> bool:
        return self._documents.pop(content_id, None) is not None

    async def count(self) -> int:
        return len(self._documents)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
