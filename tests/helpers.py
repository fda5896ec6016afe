"""Test doubles and match builders shared across test modules."""

from typing import List, Optional

from libs.common.models import MatchOrigin, ScoredMatch
from app.encoders.openai_provider import Embedding, EmbeddingUnavailable, UnavailableReason


class FakeEmbeddingProvider:
    """Deterministic embeddings: one axis per known keyword."""

    model = "fake-embedding"

    def __init__(self, keywords: Optional[List[str]] = None, unavailable: Optional[UnavailableReason] = None):
        self.keywords = keywords or ["python", "search", "vector", "cooking"]
        self.unavailable = unavailable
        self.calls: List[str] = []

    @property
    def dimension(self) -> int:
        return len(self.keywords)

    def vector_for(self, text: str) -> List[float]:
        lowered = text.lower()
        return [float(lowered.count(keyword)) for keyword in self.keywords]

    async def embed(self, text: str):
        self.calls.append(text)
        if self.unavailable is not None:
            return EmbeddingUnavailable(self.unavailable, "fake provider disabled")
        return Embedding(vector=self.vector_for(text), model=self.model)

    async def close(self) -> None:
        return None


def text_match(content_id: str, score: float, snippet: str = "") -> ScoredMatch:
    return ScoredMatch(content_id=content_id, snippet=snippet, score=score, origin=MatchOrigin.TEXT)


def vector_match(content_id: str, score: float, snippet: str = "") -> ScoredMatch:
    return ScoredMatch(content_id=content_id, snippet=snippet, score=score, origin=MatchOrigin.VECTOR)
