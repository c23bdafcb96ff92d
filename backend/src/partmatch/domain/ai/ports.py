"""Embedding Provider Port - abstract interface for query embedding providers.

The matching engine depends on this port only. The vector signal treats the
returned vector as opaque and degrades to 0 whenever the provider fails.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class EmbeddingResult:
    """Result from an embedding call.

    Attributes:
        embedding: Vector embedding (typically 1536 floats)
        model: Model name (e.g., 'text-embedding-3-small')
        dimension: Embedding dimension
        tokens: Number of tokens used
    """
    embedding: list[float]
    model: str
    dimension: int
    tokens: int


class EmbeddingProviderPort(ABC):
    """Abstract interface for embedding providers.

    Implementations must map provider failures onto the EmbeddingError
    hierarchy below so callers can treat them uniformly.

    Example Usage:
        provider = OpenAIEmbeddingAdapter(api_key="...")
        result = provider.embed_text("hex head cap screw 5/16-18 x 2-1/2")
    """

    @property
    @abstractmethod
    def model(self) -> str:
        """Model whose vectors this provider returns."""

    @abstractmethod
    def embed_text(self, text: str) -> EmbeddingResult:
        """Generate an embedding vector for text.

        Args:
            text: Text to embed (normalized query text)

        Returns:
            EmbeddingResult with vector and metadata

        Raises:
            EmbeddingTimeoutError: Request timed out
            EmbeddingRateLimitError: Rate limit exceeded
            EmbeddingAuthError: Authentication failed
            EmbeddingServiceError: Provider service unavailable
            EmbeddingInvalidResponseError: Provider returned invalid response
        """


class EmbeddingError(Exception):
    """Base exception for embedding operations"""
    pass


class EmbeddingTimeoutError(EmbeddingError):
    """Embedding request timed out"""
    pass


class EmbeddingRateLimitError(EmbeddingError):
    """Rate limit exceeded"""
    pass


class EmbeddingAuthError(EmbeddingError):
    """Authentication failed"""
    pass


class EmbeddingServiceError(EmbeddingError):
    """Provider service unavailable or returned error"""
    pass


class EmbeddingInvalidResponseError(EmbeddingError):
    """Provider returned invalid/unexpected response"""
    pass
