"""Tiered multi-signal product matching."""

from .cache import MatchResultCache
from .normalizer import normalize
from .ports import (
    BatchMatchRow,
    CatalogUnavailableError,
    MatchCandidate,
    MatchedVia,
    MatcherError,
    MatcherPort,
    MatchQuery,
    SignalComputationError,
    SignalScores,
)
from .snapshot import MatchSnapshot, SnapshotLoader
from .tiered_matcher import TieredMatcher

__all__ = [
    "BatchMatchRow",
    "CatalogUnavailableError",
    "MatchCandidate",
    "MatchedVia",
    "MatcherError",
    "MatcherPort",
    "MatchQuery",
    "MatchResultCache",
    "MatchSnapshot",
    "SignalComputationError",
    "SignalScores",
    "SnapshotLoader",
    "TieredMatcher",
    "normalize",
]
