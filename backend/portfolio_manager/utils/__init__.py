# backend/portfolio_manager/utils/__init__.py
"""
Cross-cutting utilities.

- logging: Logging configuration with correlation ID support
- context: Correlation ID storage
- date_utils: UTC date normalization and day iteration
- money: Decimal conversion and rounding

Usage:
    from portfolio_manager.utils import setup_logging, get_logger
    from portfolio_manager.utils import round_money
"""

from portfolio_manager.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    correlation_scope,
)
from portfolio_manager.utils.logging import setup_logging, get_logger
from portfolio_manager.utils.money import round_money, to_decimal

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    # Context
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "correlation_scope",
    # Money
    "round_money",
    "to_decimal",
]
