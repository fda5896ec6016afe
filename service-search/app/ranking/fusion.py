"""Result fusion algorithms for hybrid search.

The default strategy is a weighted linear blend: each text match contributes
``score * text_weight`` and each vector match ``score * vector_weight`` to a
single entry per content id. Reciprocal Rank Fusion is offered as a
score-free alternative for deployments where lexical and cosine scores
drift too far apart to blend linearly.
"""

from typing import Dict, List, Optional, Sequence

import structlog

from libs.common.models import MatchOrigin, MergedMatch, ScoredMatch

logger = structlog.get_logger("search_service.fusion")


def _validate(text_weight: float, vector_weight: float, limit: Optional[int]) -> None:
    if text_weight < 0 or vector_weight < 0:
        raise ValueError("Fusion weights must be non-negative")
    if limit is not None and limit < 0:
        raise ValueError("limit must be non-negative")


def _accumulate(
    merged: Dict[str, MergedMatch],
    match: ScoredMatch,
    contribution: float
) -> None:
    """Fold one match into ``merged``.

    Scores add up per content id. The snippet is only replaced by a strictly
    longer one, so the first-seen snippet wins ties.
    """
    existing = merged.get(match.content_id)
    if existing is None:
        merged[match.content_id] = MergedMatch(
            content_id=match.content_id,
            snippet=match.snippet,
            combined_score=contribution,
            matched_by=[match.origin],
        )
        return

    existing.combined_score += contribution
    existing.add_origin(match.origin)
    if len(match.snippet) > len(existing.snippet):
        existing.snippet = match.snippet


def _finalize(
    merged: Dict[str, MergedMatch],
    limit: Optional[int],
    default_limit: int
) -> List[MergedMatch]:
    # sorted() is stable: equal scores keep dict insertion order, which puts
    # text-sourced entries ahead of vector-only ones.
    ranked = sorted(merged.values(), key=lambda m: m.combined_score, reverse=True)
    return ranked[: default_limit if limit is None else limit]


def merge_matches(
    text_matches: Sequence[ScoredMatch],
    vector_matches: Sequence[ScoredMatch],
    text_weight: float = 0.5,
    vector_weight: float = 0.5,
    limit: Optional[int] = None
) -> List[MergedMatch]:
    """Blend text and vector matches into one deduplicated ranking.

    Parameters
    - text_matches: Lexical matches, in scorer order
    - vector_matches: Similarity matches, in scorer order
    - text_weight / vector_weight: Non-negative multipliers; zero disables
      a source's contribution without dropping its entries
    - limit: Maximum results; defaults to the longer input's length

    Returns
    - ``MergedMatch`` values sorted by ``combined_score`` descending. For an
      id present in both inputs the score is ``st * text_weight +
      sv * vector_weight``.
    """
    _validate(text_weight, vector_weight, limit)

    merged: Dict[str, MergedMatch] = {}
    for match in text_matches:
        _accumulate(merged, match, match.score * text_weight)
    for match in vector_matches:
        _accumulate(merged, match, match.score * vector_weight)

    return _finalize(merged, limit, max(len(text_matches), len(vector_matches)))


def min_max_normalize(matches: Sequence[ScoredMatch]) -> List[ScoredMatch]:
    """Rescale scores to ``[0, 1]``; a flat list normalizes to all ones."""
    if not matches:
        return []

    scores = [m.score for m in matches]
    low, high = min(scores), max(scores)
    span = high - low

    return [
        ScoredMatch(
            content_id=m.content_id,
            snippet=m.snippet,
            score=(m.score - low) / span if span > 0 else 1.0,
            origin=m.origin,
        )
        for m in matches
    ]


class RankFusionAlgorithm:
    """Base class for rank fusion algorithms."""

    name = "base"

    def fuse(
        self,
        text_matches: Sequence[ScoredMatch],
        vector_matches: Sequence[ScoredMatch],
        limit: Optional[int] = None
    ) -> List[MergedMatch]:
        """Fuse text and vector matches."""
        raise NotImplementedError


class WeightedMergeFusion(RankFusionAlgorithm):
    """Weighted linear blend of raw (or min-max normalized) scores."""

    name = "weighted"

    def __init__(
        self,
        text_weight: float = 0.5,
        vector_weight: float = 0.5,
        normalization: str = "none"
    ):
        if normalization not in ("none", "minmax"):
            raise ValueError(f"Unknown score normalization: {normalization}")
        _validate(text_weight, vector_weight, None)

        self.text_weight = text_weight
        self.vector_weight = vector_weight
        self.normalization = normalization

    def with_weights(self, text_weight: float, vector_weight: float) -> "WeightedMergeFusion":
        """Copy of this strategy with per-request weights."""
        return WeightedMergeFusion(text_weight, vector_weight, self.normalization)

    def fuse(
        self,
        text_matches: Sequence[ScoredMatch],
        vector_matches: Sequence[ScoredMatch],
        limit: Optional[int] = None
    ) -> List[MergedMatch]:
        if self.normalization == "minmax":
            text_matches = min_max_normalize(text_matches)
            vector_matches = min_max_normalize(vector_matches)

        results = merge_matches(
            text_matches,
            vector_matches,
            text_weight=self.text_weight,
            vector_weight=self.vector_weight,
            limit=limit,
        )

        logger.debug(
            "Weighted fusion completed",
            text_count=len(text_matches),
            vector_count=len(vector_matches),
            fused_count=len(results),
            text_weight=self.text_weight,
            vector_weight=self.vector_weight,
            normalization=self.normalization
        )

        return results


class ReciprocalRankFusion(RankFusionAlgorithm):
    """Reciprocal Rank Fusion (RRF).

    Each source contributes ``weight / (k + rank)`` with 1-based ranks, so
    only positions matter and raw score scales are ignored.
    """

    name = "rrf"

    def __init__(self, k: float = 60.0, text_weight: float = 1.0, vector_weight: float = 1.0):
        _validate(text_weight, vector_weight, None)
        self.k = k
        self.text_weight = text_weight
        self.vector_weight = vector_weight

    def with_weights(self, text_weight: float, vector_weight: float) -> "ReciprocalRankFusion":
        """Copy of this strategy with per-request weights."""
        return ReciprocalRankFusion(self.k, text_weight, vector_weight)

    def fuse(
        self,
        text_matches: Sequence[ScoredMatch],
        vector_matches: Sequence[ScoredMatch],
        limit: Optional[int] = None
    ) -> List[MergedMatch]:
        _validate(self.text_weight, self.vector_weight, limit)

        merged: Dict[str, MergedMatch] = {}
        for rank, match in enumerate(text_matches, start=1):
            _accumulate(merged, match, self.text_weight / (self.k + rank))
        for rank, match in enumerate(vector_matches, start=1):
            _accumulate(merged, match, self.vector_weight / (self.k + rank))

        results = _finalize(merged, limit, max(len(text_matches), len(vector_matches)))

        logger.debug(
            "RRF fusion completed",
            text_count=len(text_matches),
            vector_count=len(vector_matches),
            fused_count=len(results),
            k_parameter=self.k
        )

        return results


def create_fusion_algorithm(algorithm: str = "weighted", **params) -> RankFusionAlgorithm:
    """Create a fusion algorithm instance."""
    text_weight = params.get("text_weight", 0.5)
    vector_weight = params.get("vector_weight", 0.5)

    if algorithm == "weighted":
        return WeightedMergeFusion(
            text_weight=text_weight,
            vector_weight=vector_weight,
            normalization=params.get("normalization", "none"),
        )

    elif algorithm == "rrf":
        return ReciprocalRankFusion(
            k=params.get("k", 60.0),
            text_weight=text_weight,
            vector_weight=vector_weight,
        )

    else:
        raise ValueError(f"Unknown fusion algorithm: {algorithm}")
