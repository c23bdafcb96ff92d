"""AI provider adapters."""

from .openai_embeddings import OpenAIEmbeddingAdapter, build_embedding_provider

__all__ = ["OpenAIEmbeddingAdapter", "build_embedding_provider"]
