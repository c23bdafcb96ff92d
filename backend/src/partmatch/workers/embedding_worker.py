"""Product Embedding Worker - generate embeddings for catalog products.

Celery task for asynchronous embedding generation with text-hash
deduplication and retry on transient provider errors. The vector signal reads
the stored vectors; products without an embedding simply score 0 on it.
"""

import hashlib
from typing import Any, Dict, List, Optional
from uuid import UUID

from celery import Task
from sqlalchemy import select

from ..config import get_settings
from ..domain.ai.ports import EmbeddingRateLimitError, EmbeddingServiceError, EmbeddingTimeoutError
from ..infrastructure.ai.openai_embeddings import build_embedding_provider
from ..models.base import utcnow
from ..models.product import Product
from ..models.product_embedding import ProductEmbedding
from ..observability.logging_config import get_logger
from .base import celery_app, get_scoped_session, validate_org_id

logger = get_logger(__name__)


def product_embedding_text(product: Product) -> str:
    """Canonical text embedded for a product.

    Example:
        "SKU: 56X212C8\\nName: Hex Head Cap Screw Grade 8 5/16-18 x 2-1/2\\nManufacturer: Fastenal"
    """
    parts = [f"SKU: {product.sku}", f"Name: {product.name}"]
    if product.manufacturer:
        parts.append(f"Manufacturer: {product.manufacturer}")
    if product.category:
        parts.append(f"Category: {product.category}")
    if product.description:
        parts.append(f"Description: {product.description}")
    return "\n".join(parts)


def calculate_text_hash(text: str) -> str:
    """SHA256 hex digest of the canonical text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbedProductTask(Task):
    """Base task class for embedding generation with retry configuration.

    Retry on timeout, rate limit and provider errors; auth and invalid
    responses are permanent failures.
    """
    autoretry_for = (EmbeddingTimeoutError, EmbeddingRateLimitError, EmbeddingServiceError)
    retry_kwargs = {"max_retries": 3, "countdown": 5}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True


@celery_app.task(base=EmbedProductTask, bind=True)
def embed_product(self: Task, product_id: str, org_id: str, force_recompute: bool = False) -> Dict[str, Any]:
    """Generate or refresh the embedding of one product.

    Idempotent: when the stored text_hash matches the product's current
    canonical text, no provider call is made.

    Args:
        product_id: UUID string of product to embed
        org_id: UUID string of organization (multi-tenant isolation)
        force_recompute: Bypass the text_hash check

    Returns:
        Dict with product_id, embedding_id, status (created|updated|skipped|disabled)
        and text_hash

    Raises:
        ValueError: If org_id or product_id is invalid
        EmbeddingError: If embedding generation fails (retried when transient)
    """
    org_uuid = validate_org_id(org_id)
    product_uuid = UUID(product_id)

    provider = build_embedding_provider(get_settings())
    if provider is None:
        return {"product_id": product_id, "embedding_id": None, "status": "disabled", "text_hash": None}

    session = get_scoped_session(org_uuid)
    try:
        product = session.scalars(
            select(Product).where(Product.id == product_uuid, Product.org_id == org_uuid)
        ).first()
        if product is None:
            raise ValueError(f"Product {product_id} not found in org {org_id}")

        text = product_embedding_text(product)
        text_hash = calculate_text_hash(text)

        embedding: Optional[ProductEmbedding] = session.scalars(
            select(ProductEmbedding).where(
                ProductEmbedding.org_id == org_uuid,
                ProductEmbedding.product_id == product_uuid,
                ProductEmbedding.embedding_model == provider.model,
            )
        ).first()

        if embedding is not None and embedding.text_hash == text_hash and not force_recompute:
            return {
                "product_id": product_id,
                "embedding_id": str(embedding.id),
                "status": "skipped",
                "text_hash": text_hash,
            }

        result = provider.embed_text(text)
        now = utcnow()

        if embedding is not None:
            embedding.embedding = result.embedding
            embedding.embedding_dim = result.dimension
            embedding.text_hash = text_hash
            embedding.updated_at = now
            status = "updated"
        else:
            embedding = ProductEmbedding(
                org_id=org_uuid,
                product_id=product_uuid,
                embedding_model=result.model,
                embedding_dim=result.dimension,
                embedding=result.embedding,
                text_hash=text_hash,
                created_at=now,
                updated_at=now,
            )
            session.add(embedding)
            status = "created"

        session.commit()
        logger.info(
            f"Product embedding {status} ({result.tokens} tokens)",
            extra={"org_id": org_id, "product_id": product_id},
        )
        return {
            "product_id": product_id,
            "embedding_id": str(embedding.id),
            "status": status,
            "text_hash": text_hash,
        }

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task
def batch_embed_products(product_ids: List[str], org_id: str, force_recompute: bool = False) -> Dict[str, Any]:
    """Enqueue embed_product for multiple products.

    Args:
        product_ids: Product UUID strings
        org_id: UUID string of organization

    Returns:
        Dict with org_id and the number of enqueued tasks
    """
    validate_org_id(org_id)
    for product_id in product_ids:
        embed_product.delay(product_id=product_id, org_id=org_id, force_recompute=force_recompute)
    return {"org_id": org_id, "enqueued": len(product_ids)}
