"""OpenAI embedding provider.

Turns a query (or a document) into an embedding through the OpenAI
``/embeddings`` endpoint. Failures never raise to the caller: ``embed``
returns either an ``Embedding`` or an ``EmbeddingUnavailable`` explaining why
vector search cannot run for this input.
"""

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Union

import httpx
import structlog

from ..adapters.circuit_breaker import CircuitBreaker, CircuitBreakerError

logger = structlog.get_logger("search_service.embeddings")

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}
DEFAULT_DIMENSION = 1536


class UnavailableReason(Enum):
    """Why an embedding could not be produced."""
    MISSING_CREDENTIALS = "missing_credentials"
    PROVIDER_ERROR = "provider_error"
    INVALID_RESPONSE = "invalid_response"
    CIRCUIT_OPEN = "circuit_open"


@dataclass(frozen=True)
class Embedding:
    """A successfully generated embedding."""
    vector: List[float]
    model: str


@dataclass(frozen=True)
class EmbeddingUnavailable:
    """Vector search must be skipped for this input."""
    reason: UnavailableReason
    detail: str = ""


EmbeddingResult = Union[Embedding, EmbeddingUnavailable]


class EmbeddingProviderError(Exception):
    """Transient provider failure; eligible for retry."""
    pass


class NonRetryableEmbeddingError(EmbeddingProviderError):
    """Provider rejected the request (4xx); retrying will not help."""
    pass


class InvalidEmbeddingResponse(NonRetryableEmbeddingError):
    """Provider answered 200 with a body we cannot use."""
    pass


class OpenAIEmbeddingProvider:
    """Generates embeddings using OpenAI's embedding models."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 10.0,
        max_input_chars: int = 8000,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 4.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """Configure the provider.

        Parameters
        - api_key: OpenAI API key; ``None`` makes every call report
          ``MISSING_CREDENTIALS`` without touching the network
        - model: Embedding model name
        - base_url: API root, overridable for proxies and tests
        - timeout: Per-request timeout in seconds
        - max_input_chars: Input is cut to this many characters
        - retry_*: Exponential backoff settings for transient failures
        - circuit_breaker: Shared breaker; a private one is created if omitted
        - http_client: Injected ``httpx.AsyncClient`` (owned by the caller)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_input_chars = max_input_chars
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="embedding_provider",
            expected_exception=EmbeddingProviderError
        )
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def dimension(self) -> int:
        return MODEL_DIMENSIONS.get(self.model, DEFAULT_DIMENSION)

    @property
    def provider_name(self) -> str:
        return "openai"

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed ``text``; never raises for provider failures."""
        if not self.api_key:
            logger.warning("OpenAI API key not configured, vector search unavailable")
            return EmbeddingUnavailable(UnavailableReason.MISSING_CREDENTIALS, "api key not set")

        try:
            vector = await self._call_with_retry(
                lambda: self.circuit_breaker.call(self._request_embedding, text),
                operation_name="openai_embedding_request"
            )
            return Embedding(vector=vector, model=self.model)

        except CircuitBreakerError as e:
            return EmbeddingUnavailable(UnavailableReason.CIRCUIT_OPEN, str(e))
        except InvalidEmbeddingResponse as e:
            logger.error("Invalid embedding response", error=str(e))
            return EmbeddingUnavailable(UnavailableReason.INVALID_RESPONSE, str(e))
        except EmbeddingProviderError as e:
            logger.error("Embedding generation failed", error=str(e))
            return EmbeddingUnavailable(UnavailableReason.PROVIDER_ERROR, str(e))

    async def _request_embedding(self, text: str) -> List[float]:
        """POST one input to the embeddings endpoint."""
        try:
            response = await self.http_client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "input": text[: self.max_input_chars],
                    "encoding_format": "float",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"OpenAI request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise EmbeddingProviderError(f"OpenAI API error ({response.status_code})")
        if response.status_code >= 400:
            raise NonRetryableEmbeddingError(
                f"OpenAI API error ({response.status_code}): {response.text[:200]}"
            )

        try:
            data = response.json()
            vector = data["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise InvalidEmbeddingResponse("Invalid response format from OpenAI API") from e

        if not isinstance(vector, list) or not vector:
            raise InvalidEmbeddingResponse("Invalid embedding format in response")
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in vector):
            raise InvalidEmbeddingResponse("Embedding contains non-numeric values")

        return [float(v) for v in vector]

    async def _call_with_retry(
        self,
        func: Callable[[], Awaitable[Any]],
        operation_name: str
    ) -> Any:
        """Execute a coroutine-returning callable with retry and backoff."""
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await func()
            except (CircuitBreakerError, NonRetryableEmbeddingError):
                raise
            except EmbeddingProviderError as exc:
                if attempt == self.retry_attempts:
                    logger.error(
                        "Operation failed after retries",
                        operation=operation_name,
                        attempts=attempt,
                        error=str(exc)
                    )
                    raise

                delay = min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)
                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=self.retry_attempts,
                    delay_seconds=delay,
                    error=str(exc)
                )
                await asyncio.sleep(delay)

        raise RuntimeError(f"Retry logic failed for {operation_name}")

    def estimate_cost(self, texts: Iterable[str]) -> float:
        """Rough USD cost of embedding ``texts`` (4 characters per token)."""
        total_tokens = sum(math.ceil(len(text) / 4) for text in texts)
        price_per_million_tokens = 0.13 if self.model == "text-embedding-3-large" else 0.02
        return (total_tokens / 1_000_000) * price_per_million_tokens

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()
