# backend/portfolio_manager/services/valuation/__init__.py
"""
Valuation Service Package.

This package answers "what is this portfolio or fund worth, and what are its
gains, losses, dividends and fees, as of a date", both for today and as a
daily series.

Usage:
    from portfolio_manager.services.valuation import ValuationService

    service = ValuationService()

    # Daily series (snapshot store first, live replay otherwise)
    history = service.get_portfolio_history_with_fallback(
        db,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
    )

    # Value as of today
    summary = service.get_portfolio_summary(db, portfolio_id)

Architecture:
    valuation/
    ├── __init__.py              # This file - package exports
    ├── types.py                 # Internal data classes
    ├── calculators.py           # Point-in-time calculators
    ├── summary_builder.py       # Per-date portfolio and fund results
    ├── history_calculator.py    # Daily series (rolling state)
    ├── data_loader.py           # Batch loading of replay inputs
    ├── snapshot_repository.py   # fund_history_materialized reads
    └── service.py               # ValuationService (orchestrator)

Data Flow:
    Database → PortfolioDataLoader → PortfolioData
    Dividends → DividendCalculator → reinvested-share baselines
    Transactions + baseline + prices → FundMetricsCalculator → FundMetrics
    FundMetrics + dividends + sale records → PortfolioSummaryBuilder → PortfolioSummary
    All days → HistoryCalculator → list[PortfolioHistoryPoint]
    Snapshot store or live replay → ValuationService
"""

from portfolio_manager.services.valuation.calculators import (
    DividendCalculator,
    FundMetricsCalculator,
    RealizedGainCalculator,
)
from portfolio_manager.services.valuation.history_calculator import HistoryCalculator
from portfolio_manager.services.valuation.service import ValuationService
from portfolio_manager.services.valuation.summary_builder import PortfolioSummaryBuilder
from portfolio_manager.services.valuation.types import (
    FundHistoryEntry,
    FundHistoryPoint,
    FundMetrics,
    PortfolioData,
    PortfolioFundInfo,
    PortfolioFundValuation,
    PortfolioHistoryPoint,
    PortfolioSummary,
    RealizedGainTotals,
)

__all__ = [
    # Main service
    "ValuationService",
    # Calculators
    "FundMetricsCalculator",
    "DividendCalculator",
    "RealizedGainCalculator",
    "PortfolioSummaryBuilder",
    "HistoryCalculator",
    # Types
    "FundMetrics",
    "RealizedGainTotals",
    "PortfolioSummary",
    "PortfolioHistoryPoint",
    "FundHistoryEntry",
    "FundHistoryPoint",
    "PortfolioFundInfo",
    "PortfolioFundValuation",
    "PortfolioData",
]
