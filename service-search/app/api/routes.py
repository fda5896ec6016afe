"""API routes for search service."""

import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import structlog

from libs.common.models import ContentDocument
from ..hybrid.search_manager import SearchManager, SearchUnavailableError

logger = structlog.get_logger("search_service.api")

router = APIRouter()


class APIModel(BaseModel):
    """Base model accepting both snake_case names and camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)


def _require_query(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    stripped = value.strip()
    if not stripped:
        raise ValueError("query must be a non-empty string")
    return stripped


class HybridSearchRequest(APIModel):
    """Request model for hybrid search."""
    query: str = Field(..., description="Search query")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of results")
    text_weight: Optional[float] = Field(
        None, ge=0.0, allow_inf_nan=False, alias="textWeight", description="Weight for text scores"
    )
    vector_weight: Optional[float] = Field(
        None, ge=0.0, allow_inf_nan=False, alias="vectorWeight", description="Weight for vector scores"
    )

    @field_validator("query")
    @classmethod
    def strip_query(cls, value: Optional[str]) -> Optional[str]:
        return _require_query(value)


class TextSearchRequest(APIModel):
    """Request model for text search."""
    query: str = Field(..., description="Search query")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of results")

    @field_validator("query")
    @classmethod
    def strip_query(cls, value: Optional[str]) -> Optional[str]:
        return _require_query(value)


class VectorSearchRequest(APIModel):
    """Request model for vector search; needs an embedding or a query."""
    embedding: Optional[List[float]] = Field(None, min_length=1, description="Query embedding")
    query: Optional[str] = Field(None, description="Query to embed")
    limit: Optional[int] = Field(None, ge=1, description="Maximum number of results")
    threshold: Optional[float] = Field(
        None, ge=-1.0, le=1.0, allow_inf_nan=False, description="Minimum cosine similarity"
    )

    @field_validator("query")
    @classmethod
    def strip_query(cls, value: Optional[str]) -> Optional[str]:
        return _require_query(value)

    @model_validator(mode="after")
    def require_embedding_or_query(self) -> "VectorSearchRequest":
        if self.embedding is None and self.query is None:
            raise ValueError("either embedding or query is required")
        return self


class ScoredMatchModel(APIModel):
    """A single-source match."""
    content_id: str = Field(..., alias="contentId")
    snippet: str
    score: float
    origin: str


class MergedMatchModel(APIModel):
    """A deduplicated hybrid result."""
    content_id: str = Field(..., alias="contentId")
    snippet: str
    combined_score: float = Field(..., alias="combinedScore")
    matched_by: List[str] = Field(..., alias="matchedBy")


class HybridSearchResponse(APIModel):
    """Response model for hybrid search."""
    query: str
    results: List[MergedMatchModel]
    total_results: int = Field(..., alias="totalResults")
    search_type: str = Field("hybrid", alias="searchType")
    vector_status: str = Field(..., alias="vectorStatus")
    latency_ms: float = Field(..., alias="latencyMs")


class TextSearchResponse(APIModel):
    """Response model for text search."""
    query: str
    results: List[ScoredMatchModel]
    total: int
    limit: int
    search_type: str = Field("text", alias="searchType")


class VectorSearchResponse(APIModel):
    """Response model for vector search."""
    results: List[ScoredMatchModel]
    total: int
    search_type: str = Field("vector", alias="searchType")
    vector_status: str = Field(..., alias="vectorStatus")


class IndexRequest(APIModel):
    """Request model for index endpoint."""
    content_id: str = Field(..., min_length=1, alias="contentId", description="Content identifier")
    title: str = Field("", description="Content title")
    text: str = Field(..., description="Content body")
    tags: List[str] = Field(default_factory=list, description="Content tags")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Content metadata")


class IndexResponse(APIModel):
    """Response model for index endpoint."""
    status: str = Field(..., description="Indexing status")
    content_id: str = Field(..., alias="contentId")
    embedded: bool = Field(..., description="Whether a vector was stored")


def get_search_manager(request: Request) -> SearchManager:
    """Get search manager from application state."""
    return request.app.state.search_manager


def _resolve_limit(limit: Optional[int], search_manager: SearchManager) -> int:
    config = search_manager.config
    if limit is None:
        return config.ml_search_default_limit
    if limit < 1 or limit > config.ml_search_max_limit:
        raise HTTPException(
            status_code=422,
            detail=f"limit must be between 1 and {config.ml_search_max_limit}"
        )
    return limit


def _query_required() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "query parameter is required"})


async def _run_hybrid_search(
    search_manager: SearchManager,
    query: str,
    limit: Optional[int],
    text_weight: Optional[float] = None,
    vector_weight: Optional[float] = None
) -> HybridSearchResponse:
    limit = _resolve_limit(limit, search_manager)
    start_time = time.time()

    try:
        outcome = await search_manager.hybrid_search(
            query=query,
            limit=limit,
            text_weight=text_weight,
            vector_weight=vector_weight
        )
    except SearchUnavailableError as e:
        logger.error("Hybrid search unavailable", query=query, error=str(e))
        raise HTTPException(status_code=503, detail="Search backend unavailable")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    latency_ms = (time.time() - start_time) * 1000

    return HybridSearchResponse(
        query=outcome.query,
        results=[MergedMatchModel(**match.to_dict()) for match in outcome.results],
        total_results=len(outcome.results),
        vector_status=outcome.vector_status,
        latency_ms=round(latency_ms, 2)
    )


async def _run_text_search(
    search_manager: SearchManager,
    query: str,
    limit: Optional[int]
) -> TextSearchResponse:
    limit = _resolve_limit(limit, search_manager)

    try:
        matches = await search_manager.text_search(query=query, limit=limit)
    except SearchUnavailableError as e:
        logger.error("Text search unavailable", query=query, error=str(e))
        raise HTTPException(status_code=503, detail="Search backend unavailable")

    return TextSearchResponse(
        query=query,
        results=[ScoredMatchModel(**match.to_dict()) for match in matches],
        total=len(matches),
        limit=limit
    )


@router.post("/search/hybrid", response_model=HybridSearchResponse)
async def hybrid_search(
    request: HybridSearchRequest,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform hybrid text + vector search."""
    return await _run_hybrid_search(
        search_manager,
        request.query,
        request.limit,
        request.text_weight,
        request.vector_weight
    )


@router.get("/search/hybrid", response_model=HybridSearchResponse)
async def hybrid_search_get(
    q: Optional[str] = Query(None, description="Search query"),
    limit: Optional[int] = Query(None, description="Maximum number of results"),
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform hybrid search from query parameters."""
    if q is None or not q.strip():
        return _query_required()
    return await _run_hybrid_search(search_manager, q.strip(), limit)


@router.post("/search/text", response_model=TextSearchResponse)
async def text_search(
    request: TextSearchRequest,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform text-only search."""
    return await _run_text_search(search_manager, request.query, request.limit)


@router.get("/search/text", response_model=TextSearchResponse)
async def text_search_get(
    q: Optional[str] = Query(None, description="Search query"),
    limit: Optional[int] = Query(None, description="Maximum number of results"),
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform text-only search from query parameters."""
    if q is None or not q.strip():
        return _query_required()
    return await _run_text_search(search_manager, q.strip(), limit)


@router.post("/search/vector", response_model=VectorSearchResponse)
async def vector_search(
    request: VectorSearchRequest,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Perform vector similarity search."""
    limit = _resolve_limit(request.limit, search_manager)

    try:
        outcome = await search_manager.vector_search(
            query=request.query,
            embedding=request.embedding,
            limit=limit,
            threshold=request.threshold
        )
    except SearchUnavailableError as e:
        logger.error("Vector search unavailable", error=str(e))
        raise HTTPException(status_code=503, detail="Vector search backend unavailable")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return VectorSearchResponse(
        results=[ScoredMatchModel(**match.to_dict()) for match in outcome.results],
        total=len(outcome.results),
        vector_status=outcome.vector_status
    )


@router.post("/index", response_model=IndexResponse)
async def index_document(
    request: IndexRequest,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Index a document for search."""
    document = ContentDocument(
        content_id=request.content_id,
        title=request.title,
        text=request.text,
        tags=request.tags,
        metadata=request.metadata
    )

    try:
        result = await search_manager.index_document(document)
    except SearchUnavailableError as e:
        logger.error("Indexing failed", content_id=request.content_id, error=str(e))
        raise HTTPException(status_code=503, detail="Search backend unavailable")

    return IndexResponse(
        status="success",
        content_id=result["content_id"],
        embedded=result["embedded"]
    )


@router.delete("/index/{content_id}")
async def remove_document(
    content_id: str,
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Remove a document from the search index."""
    try:
        removed = await search_manager.remove_document(content_id)
    except SearchUnavailableError as e:
        logger.error("Failed to remove document", content_id=content_id, error=str(e))
        raise HTTPException(status_code=503, detail="Search backend unavailable")

    if not removed:
        raise HTTPException(status_code=404, detail=f"Content {content_id} not found")

    return {"status": "success", "contentId": content_id}


@router.get("/index/stats")
async def get_index_stats(
    search_manager: SearchManager = Depends(get_search_manager)
):
    """Get search index statistics."""
    try:
        return await search_manager.get_index_stats()
    except SearchUnavailableError as e:
        logger.error("Failed to get index stats", error=str(e))
        raise HTTPException(status_code=503, detail="Search backend unavailable")
