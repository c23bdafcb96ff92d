"""Prometheus metrics for partmatch.

Defines operational metrics for the matching engine and the feedback loop.
"""

from prometheus_client import Counter, Histogram

# Matching metrics
match_requests_total = Counter(
    "partmatch_match_requests_total",
    "Match calls by the tier that produced the result",
    ["tier"]  # training_exact|training_good|algorithmic|fallback_fuzzy|empty
)

match_latency_seconds = Histogram(
    "partmatch_match_latency_seconds",
    "Time spent computing one match call in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

match_top_score = Histogram(
    "partmatch_match_top_score",
    "Final score of the top-ranked candidate",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

signal_failures_total = Counter(
    "partmatch_signal_failures_total",
    "Signal computations that failed and degraded to zero",
    ["signal"]
)

match_cache_total = Counter(
    "partmatch_match_cache_total",
    "Result cache lookups",
    ["result"]  # hit|miss
)

snapshot_loads_total = Counter(
    "partmatch_snapshot_loads_total",
    "Catalog/training snapshot (re)loads",
    ["status"]  # success|degraded|error
)

# Feedback metrics
approvals_total = Counter(
    "partmatch_approvals_total",
    "Approved matches recorded as training examples",
    ["quality", "outcome"]  # outcome: created|updated|queued
)

feedback_failures_total = Counter(
    "partmatch_feedback_failures_total",
    "Feedback write failures",
    ["operation"]  # approval|approval_queue|alias|touch_reference|rejection|import
)
