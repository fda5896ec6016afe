"""Match models shared by scorers, the ranking merger, and the API layer.

Scorers (text and vector) emit ``ScoredMatch`` values; the hybrid merger
folds them into ``MergedMatch`` values keyed by content id. Both are plain
dataclasses constructed per query and discarded with the response.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class MatchOrigin(Enum):
    """Which scorer produced a match."""
    TEXT = "text"
    VECTOR = "vector"


@dataclass
class ScoredMatch:
    """One candidate result from a single scorer.

    ``score`` is non-negative but its scale depends on the scorer (lexical
    rank vs. cosine similarity), so scores are only comparable after
    weighting.
    """
    content_id: str
    snippet: str
    score: float
    origin: MatchOrigin

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the public JSON field names."""
        return {
            "contentId": self.content_id,
            "snippet": self.snippet,
            "score": self.score,
            "origin": self.origin.value,
        }


@dataclass
class MergedMatch:
    """A deduplicated hybrid result.

    ``matched_by`` keeps origins in the order they contributed and never
    holds the same origin twice.
    """
    content_id: str
    snippet: str
    combined_score: float
    matched_by: List[MatchOrigin] = field(default_factory=list)

    def add_origin(self, origin: MatchOrigin) -> None:
        if origin not in self.matched_by:
            self.matched_by.append(origin)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the public JSON field names."""
        return {
            "contentId": self.content_id,
            "snippet": self.snippet,
            "combinedScore": self.combined_score,
            "matchedBy": [origin.value for origin in self.matched_by],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergedMatch":
        """Rebuild a match from ``to_dict`` output (used by the result cache)."""
        return cls(
            content_id=data["contentId"],
            snippet=data["snippet"],
            combined_score=float(data["combinedScore"]),
            matched_by=[MatchOrigin(value) for value in data["matchedBy"]],
        )


@dataclass
class ContentDocument:
    """An indexable content item (article, doc page, lab)."""
    content_id: str
    title: str
    text: str
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def embedding_text(self) -> str:
        """Text submitted to the embedding provider for this document."""
        if self.title:
            return f"{self.title}\n\n{self.text}"
        return self.text
