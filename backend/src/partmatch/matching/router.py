"""Matching API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends

from ..dependencies import get_matcher, get_org_id
from .schemas import (
    BatchMatchRequest,
    BatchMatchResponse,
    BatchMatchRowSchema,
    MatchCandidateSchema,
    MatchRequest,
    MatchResponse,
)
from .tiered_matcher import TieredMatcher

router = APIRouter(prefix="/api/v1/matching", tags=["matching"])


@router.post("/match", response_model=MatchResponse)
def match_line_item(
    request: MatchRequest,
    org_id: UUID = Depends(get_org_id),
    matcher: TieredMatcher = Depends(get_matcher),
):
    """Match one free-text line item against the catalog.

    Returns ranked candidates with a per-signal score breakdown. A
    CatalogUnavailableError propagates to the application handler (503).

    Args:
        request: Query text with optional limit and threshold
        org_id: Organization from the X-Org-ID header
        matcher: Tiered matcher bound to the request's session

    Returns:
        MatchResponse with at most limit candidates
    """
    candidates = matcher.match(org_id, request.query, request.limit, request.threshold)
    return MatchResponse(
        query=request.query,
        results=[MatchCandidateSchema(**c.to_dict()) for c in candidates],
    )


@router.post("/match-batch", response_model=BatchMatchResponse)
def match_line_items(
    request: BatchMatchRequest,
    org_id: UUID = Depends(get_org_id),
    matcher: TieredMatcher = Depends(get_matcher),
):
    """Match many line items; each query is processed independently.

    Args:
        request: Query texts with shared limit and threshold
        org_id: Organization from the X-Org-ID header
        matcher: Tiered matcher bound to the request's session

    Returns:
        BatchMatchResponse with rows tagged by query_index
    """
    rows = matcher.match_batch(org_id, request.queries, request.limit, request.threshold)
    return BatchMatchResponse(results=[BatchMatchRowSchema(**row.to_dict()) for row in rows])
