"""Observability module for partmatch.

Provides structured logging, request correlation, metrics and health checks.
"""

from .health import ComponentHealth, HealthStatus
from .logging_config import configure_logging, get_logger
from .metrics import (
    approvals_total,
    feedback_failures_total,
    match_cache_total,
    match_latency_seconds,
    match_requests_total,
    match_top_score,
    signal_failures_total,
    snapshot_loads_total,
)
from .middleware import RequestIDMiddleware
from .request_id import bind_context, generate_request_id, get_request_id, request_id_var, set_request_id

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Metrics
    "approvals_total",
    "feedback_failures_total",
    "match_cache_total",
    "match_latency_seconds",
    "match_requests_total",
    "match_top_score",
    "signal_failures_total",
    "snapshot_loads_total",
    # Request ID
    "bind_context",
    "generate_request_id",
    "get_request_id",
    "request_id_var",
    "set_request_id",
    # Health
    "ComponentHealth",
    "HealthStatus",
    # Middleware
    "RequestIDMiddleware",
]
