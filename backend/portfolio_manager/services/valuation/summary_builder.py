# backend/portfolio_manager/services/valuation/summary_builder.py
"""
Per-date builders on top of the point-in-time calculators.

PortfolioSummaryBuilder turns the loaded PortfolioData into:
- PortfolioSummary: one portfolio as of one date
- FundHistoryEntry: one holding as of one date
- PortfolioFundValuation: one holding valued at its latest price

The summarize/entry helpers take already-computed metrics so the history
calculator can feed them from its rolling state and still produce exactly
what build() produces.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_manager.services.valuation.calculators import (
    DividendCalculator,
    FundMetricsCalculator,
    RealizedGainCalculator,
)
from portfolio_manager.services.valuation.types import (
    FundHistoryEntry,
    FundMetrics,
    HoldingTotals,
    PortfolioData,
    PortfolioFundInfo,
    PortfolioFundValuation,
    PortfolioSummary,
    RealizedGainTotals,
)
from portfolio_manager.utils.date_utils import to_utc_date
from portfolio_manager.utils.money import ZERO, round_money

if TYPE_CHECKING:
    from portfolio_manager.models import Portfolio

logger = logging.getLogger(__name__)


class PortfolioSummaryBuilder:
    """
    Builds rounded per-date results from loaded portfolio data.

    Attributes:
        _metrics_calc: Replays one holding
        _dividend_calc: Reinvestment baselines and dividend cash
        _realized_calc: Realized results from sale records
    """

    def __init__(
            self,
            metrics_calc: FundMetricsCalculator,
            dividend_calc: DividendCalculator,
            realized_calc: RealizedGainCalculator,
    ) -> None:
        self._metrics_calc = metrics_calc
        self._dividend_calc = dividend_calc
        self._realized_calc = realized_calc

    # =========================================================================
    # PORTFOLIO LEVEL
    # =========================================================================

    def build(
            self,
            portfolio: Portfolio,
            target_date: date,
            data: PortfolioData,
    ) -> PortfolioSummary | None:
        """
        Value one portfolio as of target_date.

        Returns:
            PortfolioSummary, or None when the portfolio has no transactions
            or its first transaction is after target_date
        """
        target_date = to_utc_date(target_date)

        earliest = data.earliest_transaction_date(portfolio.id)
        if earliest is None or earliest > target_date:
            return None

        totals = HoldingTotals()
        for metrics in self.fund_metrics_for_portfolio(portfolio.id, target_date, data):
            totals.add(metrics)

        dividend_amount = self._dividend_calc.dividend_amount(
            data.dividends_for_portfolio(portfolio.id),
            target_date,
        )
        realized = self._realized_calc.calculate(
            data.realized_for_portfolio(portfolio.id),
            target_date,
        )

        return self.summarize(portfolio, totals, dividend_amount, realized)

    def fund_metrics_for_portfolio(
            self,
            portfolio_id: str,
            target_date: date,
            data: PortfolioData,
    ) -> list[FundMetrics]:
        """
        Unrounded metrics for every holding of the portfolio that has transactions.

        Reinvestment references are resolved against all of the portfolio's
        transactions, so a dividend may point at a buy in another holding.
        """
        transactions_by_holding = data.transactions_for_portfolio(portfolio_id)
        all_transactions = [
            txn for transactions in transactions_by_holding.values() for txn in transactions
        ]
        holding_to_fund = data.holding_to_fund

        baselines = self._dividend_calc.reinvested_shares_by_holding(
            {
                holding_id: data.dividends_by_holding.get(holding_id, [])
                for holding_id in transactions_by_holding
            },
            all_transactions,
            target_date,
        )

        results: list[FundMetrics] = []
        for holding_id, transactions in transactions_by_holding.items():
            fund_id = holding_to_fund[holding_id]
            results.append(
                self._metrics_calc.calculate(
                    portfolio_fund_id=holding_id,
                    fund_id=fund_id,
                    target_date=target_date,
                    transactions=transactions,
                    reinvested_shares=baselines.get(holding_id, ZERO),
                    prices=data.prices_by_fund.get(fund_id, []),
                )
            )
        return results

    def summarize(
            self,
            portfolio: Portfolio,
            totals: HoldingTotals,
            dividend_amount: Decimal,
            realized: RealizedGainTotals,
    ) -> PortfolioSummary:
        """
        Clamp holding totals at zero and round everything into a summary.

        Args:
            portfolio: Portfolio the totals belong to
            totals: Unclamped sum of the holdings' FundMetrics
            dividend_amount: Dividend cash as of the date
            realized: Realized totals as of the date
        """
        clamped = totals.clamped()
        unrealized = clamped.value - clamped.cost

        return PortfolioSummary(
            portfolio_id=portfolio.id,
            name=portfolio.name,
            description=portfolio.description or "",
            is_archived=bool(portfolio.is_archived),
            total_value=round_money(clamped.value),
            total_cost=round_money(clamped.cost),
            total_dividends=round_money(dividend_amount),
            total_unrealized_gain_loss=round_money(unrealized),
            total_realized_gain_loss=round_money(realized.realized_gain_loss),
            total_sale_proceeds=round_money(realized.sale_proceeds),
            total_original_cost=round_money(realized.cost_basis),
            total_gain_loss=round_money(realized.realized_gain_loss + unrealized),
        )

    # =========================================================================
    # FUND LEVEL
    # =========================================================================

    def build_fund_entry(
            self,
            holding: PortfolioFundInfo,
            target_date: date,
            data: PortfolioData,
    ) -> FundHistoryEntry:
        """
        Value one holding as of target_date.

        Reinvestment references are resolved against the holding's own
        transactions only.
        """
        metrics, dividend_amount, realized = self._holding_inputs(
            holding, target_date, data, use_latest_price=False
        )
        return self.fund_entry(holding, metrics, dividend_amount, realized)

    def fund_entry(
            self,
            holding: PortfolioFundInfo,
            metrics: FundMetrics,
            dividend_amount: Decimal,
            realized: RealizedGainTotals,
    ) -> FundHistoryEntry:
        """Round one holding's metrics into a FundHistoryEntry."""
        return FundHistoryEntry(
            portfolio_fund_id=holding.portfolio_fund_id,
            fund_id=holding.fund_id,
            fund_name=holding.fund_name,
            shares=round_money(metrics.shares),
            price=round_money(metrics.latest_price),
            value=round_money(metrics.value),
            cost=round_money(metrics.cost),
            realized_gain=round_money(realized.realized_gain_loss),
            unrealized_gain=round_money(metrics.unrealized_gain),
            total_gain_loss=round_money(realized.realized_gain_loss + metrics.unrealized_gain),
            dividends=round_money(dividend_amount),
            fees=round_money(metrics.fees),
        )

    def build_fund_valuation(
            self,
            holding: PortfolioFundInfo,
            target_date: date,
            data: PortfolioData,
    ) -> PortfolioFundValuation:
        """
        Current metrics for one holding, valued at its latest known price.

        Average cost divides by the share count rounded to 2 dp, matching
        the share figure shown next to it.
        """
        metrics, dividend_amount, realized = self._holding_inputs(
            holding, target_date, data, use_latest_price=True
        )

        rounded_shares = round_money(metrics.shares)
        average_cost = metrics.cost / rounded_shares if rounded_shares > ZERO else ZERO

        return PortfolioFundValuation(
            portfolio_fund_id=holding.portfolio_fund_id,
            fund_id=holding.fund_id,
            fund_name=holding.fund_name,
            shares=rounded_shares,
            latest_price=round_money(metrics.latest_price),
            average_cost=round_money(average_cost),
            total_cost=round_money(metrics.cost),
            current_value=round_money(metrics.value),
            unrealized_gain=round_money(metrics.unrealized_gain),
            realized_gain=round_money(realized.realized_gain_loss),
            total_gain_loss=round_money(metrics.unrealized_gain + realized.realized_gain_loss),
            total_dividends=round_money(dividend_amount),
            total_fees=round_money(metrics.fees),
        )

    def _holding_inputs(
            self,
            holding: PortfolioFundInfo,
            target_date: date,
            data: PortfolioData,
            use_latest_price: bool,
    ) -> tuple[FundMetrics, Decimal, RealizedGainTotals]:
        target_date = to_utc_date(target_date)
        transactions = data.transactions_by_holding.get(holding.portfolio_fund_id, [])
        dividends = data.dividends_by_holding.get(holding.portfolio_fund_id, [])

        baseline = self._dividend_calc.reinvested_shares(dividends, transactions, target_date)
        metrics = self._metrics_calc.calculate(
            portfolio_fund_id=holding.portfolio_fund_id,
            fund_id=holding.fund_id,
            target_date=target_date,
            transactions=transactions,
            reinvested_shares=baseline,
            prices=data.prices_by_fund.get(holding.fund_id, []),
            use_latest_price=use_latest_price,
        )
        dividend_amount = self._dividend_calc.dividend_amount(dividends, target_date)
        realized = self._realized_calc.calculate(data.realized_for_holding(holding), target_date)

        return metrics, dividend_amount, realized
