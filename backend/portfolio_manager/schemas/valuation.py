# backend/portfolio_manager/schemas/valuation.py
"""
Pydantic schemas for Portfolio Valuation.

These schemas handle:
- Portfolio summaries (as of one date)
- Portfolio history (daily series) and its date-keyed envelope
- Fund history entries
- Current per-holding metrics

All schemas read from the internal dataclasses via from_attributes.
"""

import datetime as dt
from collections.abc import Iterable
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from portfolio_manager.services.valuation.types import FundHistoryPoint, PortfolioHistoryPoint
from portfolio_manager.utils.date_utils import format_iso_date, iter_days


# =============================================================================
# PORTFOLIO SCHEMAS
# =============================================================================

class PortfolioSummaryResponse(BaseModel):
    """One portfolio valued as of one date."""

    model_config = ConfigDict(from_attributes=True)

    portfolio_id: str = Field(..., description="Portfolio ID")
    name: str = Field(..., description="Portfolio name")
    description: str = Field(default="", description="Portfolio description")
    is_archived: bool = Field(default=False, description="Whether the portfolio is archived")
    total_value: Decimal = Field(..., description="Market value of all holdings")
    total_cost: Decimal = Field(..., description="Cost basis of all holdings")
    total_dividends: Decimal = Field(..., description="Dividend cash with ex-date up to this date")
    total_unrealized_gain_loss: Decimal = Field(..., description="total_value - total_cost")
    total_realized_gain_loss: Decimal = Field(..., description="Realized gain/loss from sales")
    total_sale_proceeds: Decimal = Field(..., description="Proceeds from sales")
    total_original_cost: Decimal = Field(..., description="Cost basis of the shares sold")
    total_gain_loss: Decimal = Field(..., description="Realized plus unrealized gain/loss")


class PortfolioHistoryResponse(BaseModel):
    """All portfolio summaries for one date."""

    model_config = ConfigDict(from_attributes=True)

    date: dt.date = Field(..., description="Valuation date")
    portfolios: list[PortfolioSummaryResponse] = Field(default_factory=list)


class PortfolioHistoryEnvelope(BaseModel):
    """
    Daily portfolio history keyed by ISO date.

    Every day of the requested range has a key; days before the first
    transaction (or after today) map to an empty list.
    """

    start_date: dt.date
    end_date: dt.date
    history: dict[str, list[PortfolioSummaryResponse]] = Field(
        default_factory=dict,
        description="YYYY-MM-DD -> portfolio summaries for that day"
    )


# =============================================================================
# FUND SCHEMAS
# =============================================================================

class FundHistoryEntryResponse(BaseModel):
    """One holding valued as of one date."""

    model_config = ConfigDict(from_attributes=True)

    portfolio_fund_id: str
    fund_id: str
    fund_name: str
    shares: Decimal
    price: Decimal
    value: Decimal
    cost: Decimal
    realized_gain: Decimal
    unrealized_gain: Decimal
    total_gain_loss: Decimal
    dividends: Decimal
    fees: Decimal


class FundHistoryResponse(BaseModel):
    """All holdings of a portfolio for one date."""

    model_config = ConfigDict(from_attributes=True)

    date: dt.date
    funds: list[FundHistoryEntryResponse] = Field(default_factory=list)


class PortfolioFundValuationResponse(BaseModel):
    """Current metrics for one holding at its latest known price."""

    model_config = ConfigDict(from_attributes=True)

    portfolio_fund_id: str
    fund_id: str
    fund_name: str
    shares: Decimal = Field(..., description="Shares held, rounded to 2 dp")
    latest_price: Decimal
    average_cost: Decimal = Field(..., description="Cost basis per (rounded) share")
    total_cost: Decimal
    current_value: Decimal
    unrealized_gain: Decimal
    realized_gain: Decimal
    total_gain_loss: Decimal
    total_dividends: Decimal
    total_fees: Decimal


# =============================================================================
# BUILDERS
# =============================================================================

def build_history_envelope(
        points: Iterable[PortfolioHistoryPoint],
        start_date: dt.date,
        end_date: dt.date,
) -> PortfolioHistoryEnvelope:
    """
    Spread a history series over every day of the requested range.

    Args:
        points: Output of a portfolio history call
        start_date: First requested day
        end_date: Last requested day

    Returns:
        Envelope with one key per day, in date order
    """
    by_date = {point.date: point for point in points}

    history: dict[str, list[PortfolioSummaryResponse]] = {}
    for day in iter_days(start_date, end_date):
        point = by_date.get(day)
        history[format_iso_date(day)] = (
            [PortfolioSummaryResponse.model_validate(s) for s in point.portfolios]
            if point is not None
            else []
        )

    return PortfolioHistoryEnvelope(start_date=start_date, end_date=end_date, history=history)


def fund_history_to_response(points: Iterable[FundHistoryPoint]) -> list[FundHistoryResponse]:
    return [FundHistoryResponse.model_validate(point) for point in points]
