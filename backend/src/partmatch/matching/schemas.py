"""Pydantic schemas for matching endpoints."""

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

MAX_BATCH_SIZE = 1000


class MatchRequest(BaseModel):
    """Single match request.

    Out-of-range limit and threshold values are accepted and clamped by the
    matcher ([1, 100] and [0, 1]); an empty query returns no results.
    """
    query: Optional[str] = None
    limit: Optional[int] = None
    threshold: Optional[float] = None


class BatchMatchRequest(BaseModel):
    """Batch match request; every query is matched independently."""
    queries: List[Optional[str]] = Field(default_factory=list, max_length=MAX_BATCH_SIZE)
    limit: Optional[int] = None
    threshold: Optional[float] = None


class MatchCandidateSchema(BaseModel):
    """Ranked candidate with per-signal breakdown."""
    product_id: UUID
    sku: str
    name: str
    manufacturer: Optional[str] = None
    vector_score: float = Field(ge=0.0, le=1.0)
    trigram_score: float = Field(ge=0.0, le=1.0)
    fuzzy_score: float = Field(ge=0.0, le=1.0)
    alias_score: float = Field(ge=0.0, le=1.0)
    learned_score: float = Field(ge=0.0, le=1.0)
    final_score: float = Field(ge=0.0, le=1.0)
    matched_via: str
    tier: int = Field(ge=1, le=4)
    dominant_signal: Optional[str] = None
    reasoning: str


class MatchResponse(BaseModel):
    """Result of a single match call."""
    query: Optional[str]
    results: List[MatchCandidateSchema]


class BatchMatchRowSchema(MatchCandidateSchema):
    """Candidate tagged with the index and text of its query."""
    query_index: int = Field(ge=0)
    query_text: str


class BatchMatchResponse(BaseModel):
    """Result of a batch match call."""
    results: List[BatchMatchRowSchema]
