# backend/portfolio_manager/services/valuation/types.py
"""
Internal data types for the Valuation Service.

These dataclasses are used internally by the valuation calculators.
They are NOT Pydantic schemas - those are defined in
portfolio_manager/schemas/valuation.py for serialization.

Design Principles:
- Immutable where possible (frozen=True for value objects)
- Use Decimal for ALL financial values (never float)
- Use date (not datetime) for valuation dates
- Unrounded values stay inside the calculators; everything that leaves
  the builder (summaries, fund entries) is rounded to 2 dp

Type Hierarchy:
    FundPosition            - Mutable running state for one holding
    FundMetrics             - One holding valued as of one date
    RealizedGainTotals      - Cumulative realized results as of one date
    HoldingTotals           - Sum of FundMetrics across a portfolio
    PortfolioSummary        - One portfolio as of one date (rounded)
    PortfolioHistoryPoint   - All portfolio summaries for one date
    FundHistoryEntry        - One holding as of one date (rounded)
    FundHistoryPoint        - All fund entries for one date
    PortfolioFundValuation  - Current metrics for one holding
    PortfolioSnapshot       - Materialized portfolio row
    FundSnapshot            - Materialized fund row
    PortfolioData           - Bundle of loaded replay inputs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_manager.utils.date_utils import to_utc_date

if TYPE_CHECKING:
    from portfolio_manager.models import Dividend, FundPrice, Portfolio, RealizedGainLoss, Transaction


# =============================================================================
# PER-HOLDING CALCULATION
# =============================================================================

@dataclass
class FundPosition:
    """
    Running state of one holding while transactions are replayed.

    Starts with the reinvested-share baseline; buys, sells, fees and
    dividend-type transactions are applied in date order.

    Attributes:
        shares: Shares currently held
        cost: Weighted-average cost basis of those shares
        dividends: Cash from dividend-type transactions
        fees: Sum of fee transactions (also included in cost)
    """

    shares: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    dividends: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")


@dataclass(frozen=True)
class FundMetrics:
    """
    Valuation of one holding as of one date. Not rounded.

    Attributes:
        portfolio_fund_id: Holding the metrics belong to
        fund_id: Fund held
        shares: Shares held (baseline + replayed transactions)
        cost: Cost basis
        latest_price: Price used for valuation (0 when none available)
        dividends: Cash from dividend-type transactions
        value: shares × latest_price, 0 when there is no positive price
        unrealized_gain: value - cost
        fees: Fee total
    """

    portfolio_fund_id: str
    fund_id: str
    shares: Decimal
    cost: Decimal
    latest_price: Decimal
    dividends: Decimal
    value: Decimal
    unrealized_gain: Decimal
    fees: Decimal


@dataclass(frozen=True)
class RealizedGainTotals:
    """Cumulative realized results from sale records up to a date."""

    realized_gain_loss: Decimal
    sale_proceeds: Decimal
    cost_basis: Decimal

    @classmethod
    def zero(cls) -> RealizedGainTotals:
        return cls(Decimal("0"), Decimal("0"), Decimal("0"))


@dataclass
class HoldingTotals:
    """Sums of FundMetrics across the holdings of one portfolio."""

    shares: Decimal = Decimal("0")
    cost: Decimal = Decimal("0")
    value: Decimal = Decimal("0")
    dividends: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")

    def add(self, metrics: FundMetrics) -> None:
        self.shares += metrics.shares
        self.cost += metrics.cost
        self.value += metrics.value
        self.dividends += metrics.dividends
        self.fees += metrics.fees

    def clamped(self) -> HoldingTotals:
        """Copy with every total floored at zero."""
        zero = Decimal("0")
        return HoldingTotals(
            shares=max(zero, self.shares),
            cost=max(zero, self.cost),
            value=max(zero, self.value),
            dividends=max(zero, self.dividends),
            fees=max(zero, self.fees),
        )


# =============================================================================
# PORTFOLIO RESULTS
# =============================================================================

@dataclass(frozen=True)
class PortfolioSummary:
    """
    One portfolio valued as of one date. All amounts rounded to 2 dp.

    Note:
        total_dividends is the cash paid out by dividend records, not the
        dividend-type transactions summed in FundMetrics.dividends.
    """

    portfolio_id: str
    name: str
    description: str
    is_archived: bool
    total_value: Decimal
    total_cost: Decimal
    total_dividends: Decimal
    total_unrealized_gain_loss: Decimal
    total_realized_gain_loss: Decimal
    total_sale_proceeds: Decimal
    total_original_cost: Decimal
    total_gain_loss: Decimal


@dataclass(frozen=True)
class PortfolioHistoryPoint:
    """All portfolio summaries for one date in a history series."""

    date: date
    portfolios: list[PortfolioSummary] = field(default_factory=list)

    def summary_for(self, portfolio_id: str) -> PortfolioSummary | None:
        for summary in self.portfolios:
            if summary.portfolio_id == portfolio_id:
                return summary
        return None


# =============================================================================
# FUND RESULTS
# =============================================================================

@dataclass(frozen=True)
class PortfolioFundInfo:
    """Identity of one holding: which portfolio, which fund."""

    portfolio_fund_id: str
    portfolio_id: str
    fund_id: str
    fund_name: str


@dataclass(frozen=True)
class FundHistoryEntry:
    """One holding as of one date. All amounts rounded to 2 dp."""

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


@dataclass(frozen=True)
class FundHistoryPoint:
    """All fund entries of one portfolio for one date."""

    date: date
    funds: list[FundHistoryEntry] = field(default_factory=list)


@dataclass(frozen=True)
class PortfolioFundValuation:
    """
    Current metrics for one holding, valued at the latest known price.

    Attributes:
        average_cost: cost / shares (shares rounded to 2 dp first), 0 when
                      no shares are held
    """

    portfolio_fund_id: str
    fund_id: str
    fund_name: str
    shares: Decimal
    latest_price: Decimal
    average_cost: Decimal
    total_cost: Decimal
    current_value: Decimal
    unrealized_gain: Decimal
    realized_gain: Decimal
    total_gain_loss: Decimal
    total_dividends: Decimal
    total_fees: Decimal


# =============================================================================
# MATERIALIZED SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class PortfolioSnapshot:
    """Portfolio totals for one date, aggregated from fund_history_materialized."""

    portfolio_id: str
    date: date
    total_value: Decimal
    total_cost: Decimal
    total_dividends: Decimal
    total_unrealized_gain_loss: Decimal
    total_realized_gain_loss: Decimal
    total_sale_proceeds: Decimal
    total_original_cost: Decimal
    total_gain_loss: Decimal
    calculated_at: datetime | None = None


@dataclass(frozen=True)
class FundSnapshot:
    """One fund_history_materialized row."""

    date: date
    entry: FundHistoryEntry
    calculated_at: datetime | None = None


# =============================================================================
# LOADED INPUTS
# =============================================================================

@dataclass
class PortfolioData:
    """
    Everything needed to replay the history of a set of portfolios.

    Produced by PortfolioDataLoader; the calculators never touch the
    database. Lists are sorted ascending by their date; the dicts themselves
    carry no ordering guarantee beyond insertion order.

    Attributes:
        portfolio_funds: Holdings of the loaded portfolios
        transactions_by_holding: portfolio_fund_id -> transactions by date
        dividends_by_holding: portfolio_fund_id -> dividends by ex-date
        prices_by_fund: fund_id -> prices by date
        realized_by_portfolio: portfolio_id -> sale records by date
    """

    portfolio_funds: list[PortfolioFundInfo] = field(default_factory=list)
    transactions_by_holding: dict[str, list[Transaction]] = field(default_factory=dict)
    dividends_by_holding: dict[str, list[Dividend]] = field(default_factory=dict)
    prices_by_fund: dict[str, list[FundPrice]] = field(default_factory=dict)
    realized_by_portfolio: dict[str, list[RealizedGainLoss]] = field(default_factory=dict)

    @property
    def holding_to_fund(self) -> dict[str, str]:
        return {pf.portfolio_fund_id: pf.fund_id for pf in self.portfolio_funds}

    def holdings_for_portfolio(self, portfolio_id: str) -> list[PortfolioFundInfo]:
        return [pf for pf in self.portfolio_funds if pf.portfolio_id == portfolio_id]

    def transactions_for_portfolio(self, portfolio_id: str) -> dict[str, list[Transaction]]:
        """Transactions of the portfolio's holdings, only holdings that have any."""
        result: dict[str, list[Transaction]] = {}
        for pf in self.holdings_for_portfolio(portfolio_id):
            transactions = self.transactions_by_holding.get(pf.portfolio_fund_id)
            if transactions:
                result[pf.portfolio_fund_id] = transactions
        return result

    def dividends_for_portfolio(self, portfolio_id: str) -> list[Dividend]:
        """All dividends of the portfolio's holdings, merged and sorted by ex-date."""
        merged: list[Dividend] = []
        for pf in self.holdings_for_portfolio(portfolio_id):
            merged.extend(self.dividends_by_holding.get(pf.portfolio_fund_id, []))
        return sorted(merged, key=lambda d: to_utc_date(d.ex_dividend_date))

    def realized_for_portfolio(self, portfolio_id: str) -> list[RealizedGainLoss]:
        return self.realized_by_portfolio.get(portfolio_id, [])

    def realized_for_holding(self, holding: PortfolioFundInfo) -> list[RealizedGainLoss]:
        """Sale records of the holding's portfolio that belong to the holding's fund."""
        return [
            record
            for record in self.realized_for_portfolio(holding.portfolio_id)
            if record.fund_id == holding.fund_id
        ]

    def earliest_transaction_date(self, portfolio_id: str | None = None) -> date | None:
        """
        Date of the earliest transaction, for one portfolio or across all.

        Returns:
            The date, or None when there are no transactions
        """
        if portfolio_id is None:
            groups = self.transactions_by_holding.values()
        else:
            groups = self.transactions_for_portfolio(portfolio_id).values()

        dates = [to_utc_date(txn.date) for transactions in groups for txn in transactions]
        return min(dates) if dates else None
