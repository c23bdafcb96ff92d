"""Global FastAPI dependencies for tenant scope and engine wiring.

This module provides:
- get_org_id: Tenant scope from the X-Org-ID header
- get_snapshot_loader / get_result_cache / get_embedding_provider:
  process-wide engine singletons
- get_matcher: TieredMatcher bound to the request's database session
- get_recorder: TrainingFeedbackRecorder bound to the request's session

Authentication is handled in front of this service; the gateway forwards
the caller's organization in X-Org-ID.
"""

from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .config import get_matching_config, get_settings
from .database import get_db
from .domain.ai.ports import EmbeddingProviderPort
from .feedback.services import TrainingFeedbackRecorder
from .infrastructure.ai.openai_embeddings import build_embedding_provider
from .matching.cache import MatchResultCache
from .matching.snapshot import SnapshotLoader
from .matching.tiered_matcher import TieredMatcher
from .workers.reference_worker import enqueue_reference_touch


def get_org_id(x_org_id: Optional[str] = Header(default=None, alias="X-Org-ID")) -> UUID:
    """Extract the organization from the X-Org-ID header.

    Every match and feedback call is scoped to exactly one organization.

    Args:
        x_org_id: Raw header value

    Returns:
        UUID: Organization ID for the current request context

    Raises:
        HTTPException 400: If the header is missing or not a UUID
    """
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID header is required",
        )

    try:
        return UUID(x_org_id.strip())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"X-Org-ID header is not a valid UUID: {x_org_id!r}",
        )


@lru_cache()
def get_embedding_provider() -> Optional[EmbeddingProviderPort]:
    """Process-wide query embedding provider (None when not configured)."""
    return build_embedding_provider(get_settings())


@lru_cache()
def get_snapshot_loader() -> SnapshotLoader:
    """Process-wide snapshot loader shared by all requests."""
    provider = get_embedding_provider()
    return SnapshotLoader(
        get_matching_config(),
        embedding_model=provider.model if provider is not None else None,
    )


@lru_cache()
def get_result_cache() -> MatchResultCache:
    """Process-wide match result cache."""
    config = get_matching_config()
    return MatchResultCache(
        ttl_seconds=config.cache_ttl_seconds,
        max_entries=config.cache_max_entries,
    )


def get_matcher(db: Session = Depends(get_db)) -> TieredMatcher:
    """Build a TieredMatcher for the request.

    Usage:
        @router.post("/match")
        def match(matcher: TieredMatcher = Depends(get_matcher)):
            ...
    """
    return TieredMatcher(
        db,
        get_matching_config(),
        get_snapshot_loader(),
        cache=get_result_cache(),
        embedding_provider=get_embedding_provider(),
        reference_sink=enqueue_reference_touch,
    )


def get_recorder(db: Session = Depends(get_db)) -> TrainingFeedbackRecorder:
    """Build a TrainingFeedbackRecorder for the request."""
    return TrainingFeedbackRecorder(db)
