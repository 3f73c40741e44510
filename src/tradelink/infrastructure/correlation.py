"""Correlation ID management for request tracing."""

import uuid
from contextvars import ContextVar

from .logging_config import bind_correlation_id, clear_context

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Header name for HTTP correlation ID
CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id.set(correlation_id)
    bind_correlation_id(correlation_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if not set."""
    return _correlation_id.get()


def get_or_create_correlation_id() -> str:
    """Get the current correlation ID or create a new one."""
    current = get_correlation_id()
    if current is None:
        current = generate_correlation_id()
        set_correlation_id(current)
    return current


def reset_correlation_context() -> None:
    """Reset the correlation context (useful for testing)."""
    _correlation_id.set(None)
    clear_context()
