# backend/portfolio_manager/utils/context.py
"""
Correlation ID context for log tracing.

Uses Python's contextvars so the ID is scoped to the current thread or
async task. A job that computes history for many portfolios can tag each
run with its own ID and every log line emitted by the valuation engine
carries it.

Usage:
    from portfolio_manager.utils.context import correlation_scope

    with correlation_scope("nightly-history"):
        service.get_portfolio_history_with_fallback(db, start, end)
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """
    Get the current correlation ID.

    Returns:
        The correlation ID for the current context, or None if not set.
    """
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID for the current context.

    Args:
        correlation_id: Unique identifier for this unit of work
    """
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Clear the correlation ID."""
    _correlation_id_var.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Set a correlation ID for the duration of a block, restoring the previous one after.

    Args:
        correlation_id: ID to use; a random UUID is generated when omitted

    Yields:
        The correlation ID in effect inside the block
    """
    value = correlation_id or str(uuid.uuid4())
    token = _correlation_id_var.set(value)
    try:
        yield value
    finally:
        _correlation_id_var.reset(token)
