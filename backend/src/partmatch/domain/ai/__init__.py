"""AI provider ports."""

from .ports import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingInvalidResponseError,
    EmbeddingProviderPort,
    EmbeddingRateLimitError,
    EmbeddingResult,
    EmbeddingServiceError,
    EmbeddingTimeoutError,
)

__all__ = [
    "EmbeddingProviderPort",
    "EmbeddingResult",
    "EmbeddingError",
    "EmbeddingTimeoutError",
    "EmbeddingRateLimitError",
    "EmbeddingAuthError",
    "EmbeddingServiceError",
    "EmbeddingInvalidResponseError",
]
