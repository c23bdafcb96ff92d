"""OpenAI Embedding Adapter - EmbeddingProviderPort backed by the OpenAI API.

Used for query embeddings on the match path and for product embeddings in
the embedding worker.
"""

from typing import Optional

from openai import APIError, APITimeoutError, AuthenticationError, OpenAI, RateLimitError

from ...config import Settings
from ...domain.ai.ports import (
    EmbeddingAuthError,
    EmbeddingError,
    EmbeddingInvalidResponseError,
    EmbeddingProviderPort,
    EmbeddingRateLimitError,
    EmbeddingResult,
    EmbeddingServiceError,
    EmbeddingTimeoutError,
)
from ...observability.logging_config import get_logger

logger = get_logger(__name__)


class OpenAIEmbeddingAdapter(EmbeddingProviderPort):
    """OpenAI implementation of EmbeddingProviderPort.

    Example Usage:
        adapter = OpenAIEmbeddingAdapter(api_key="sk-...")
        result = adapter.embed_text("hex head cap screw 5/16-18 x 2-1/2")
        # result.embedding is list[float] of length 1536
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        timeout: int = 10,
    ):
        """Initialize OpenAI embedding adapter.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            timeout: Request timeout in seconds

        Raises:
            EmbeddingAuthError: If API key is empty
        """
        if not api_key:
            raise EmbeddingAuthError("OpenAI API key not provided")

        self._model = model
        self.timeout = timeout
        # Single attempt per query; a failure degrades the vector signal to 0
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @property
    def model(self) -> str:
        return self._model

    def embed_text(self, text: str) -> EmbeddingResult:
        """Generate embedding vector for text using OpenAI API.

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult with vector and token usage

        Raises:
            ValueError: If text is empty
            EmbeddingError: Any provider failure, mapped to a subclass
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        try:
            response = self.client.embeddings.create(model=self._model, input=text)

            if not response.data:
                raise EmbeddingInvalidResponseError("No embedding returned from API")

            embedding = response.data[0].embedding
            tokens = response.usage.total_tokens if response.usage else 0

            return EmbeddingResult(
                embedding=embedding,
                model=self._model,
                dimension=len(embedding),
                tokens=tokens,
            )

        except EmbeddingError:
            raise
        except AuthenticationError as e:
            raise EmbeddingAuthError(f"OpenAI authentication failed: {e}")
        except RateLimitError as e:
            raise EmbeddingRateLimitError(f"OpenAI rate limit exceeded: {e}")
        except APITimeoutError as e:
            raise EmbeddingTimeoutError(f"OpenAI request timed out: {e}")
        except APIError as e:
            raise EmbeddingServiceError(f"OpenAI API error: {e}")
        except Exception as e:
            raise EmbeddingInvalidResponseError(f"Unexpected error from OpenAI: {e}")


def build_embedding_provider(settings: Settings) -> Optional[EmbeddingProviderPort]:
    """Create the configured embedding provider, or None when disabled.

    Args:
        settings: Application settings

    Returns:
        OpenAIEmbeddingAdapter when OPENAI_API_KEY is set, otherwise None
    """
    if not settings.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set; vector signal disabled")
        return None

    return OpenAIEmbeddingAdapter(
        api_key=settings.OPENAI_API_KEY,
        model=settings.EMBEDDING_MODEL,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
    )
