"""Request ID management for request correlation.

The request ID lives in a ContextVar so it follows async handlers. Worker
threads do not inherit context automatically, so batch matching wraps each
submitted call with bind_context().
"""

import contextvars
import uuid
from contextvars import ContextVar
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

# Context variable for request_id (async-safe)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID (UUID v4)."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    """Get current request ID from context.

    Returns:
        str: Current request ID or "no-request-id" if not set
    """
    return request_id_var.get() or "no-request-id"


def set_request_id(request_id: str) -> None:
    """Set request ID in current context."""
    request_id_var.set(request_id)


def bind_context(fn: Callable[..., T]) -> Callable[..., T]:
    """Return a callable that runs fn inside a copy of the current context.

    Args:
        fn: Callable to run in another thread

    Returns:
        Callable carrying the caller's request ID (and other context vars)
    """
    ctx = contextvars.copy_context()

    def _run(*args, **kwargs) -> T:
        return ctx.run(fn, *args, **kwargs)

    return _run
