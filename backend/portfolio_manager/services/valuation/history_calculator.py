# backend/portfolio_manager/services/valuation/history_calculator.py
"""
History Calculator for daily portfolio and fund valuation series.

Every day in a history is an as-of valuation: replaying all records dated
on or before that day. Doing that from scratch per day costs O(D × T).
This calculator uses the Rolling State pattern instead: per holding it
keeps a running FundPosition plus cursors into the (sorted) transaction,
price and dividend lists, and per portfolio running dividend and realized
totals. Moving to the next day only consumes the records dated that day.

Reinvested shares:
    A holding's share count starts from the shares bought by reinvested
    dividends up to the day. A sell scales cost by the share count right
    before the sale, so when that baseline changes the holding's position is
    rebuilt from its first transaction with the new baseline. This keeps the
    output identical to PortfolioSummaryBuilder.build() for every day.

Display window:
    [max(start, first transaction), min(end, today)], as UTC dates.
    Days outside the window are never emitted; records before the window
    are still folded into the running state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_manager.services.exceptions import CalculationCancelledError, InvalidDateRangeError
from portfolio_manager.services.valuation.calculators import (
    DividendCalculator,
    FundMetricsCalculator,
)
from portfolio_manager.services.valuation.summary_builder import PortfolioSummaryBuilder
from portfolio_manager.services.valuation.types import (
    FundHistoryPoint,
    FundMetrics,
    FundPosition,
    HoldingTotals,
    PortfolioData,
    PortfolioFundInfo,
    PortfolioHistoryPoint,
    PortfolioSummary,
    RealizedGainTotals,
)
from portfolio_manager.utils.date_utils import iter_days, to_utc_date, today_utc
from portfolio_manager.utils.money import ZERO, to_decimal

if TYPE_CHECKING:
    from portfolio_manager.models import Dividend, FundPrice, Portfolio, RealizedGainLoss, Transaction

logger = logging.getLogger(__name__)


# =============================================================================
# ROLLING STATE
# =============================================================================

class _HoldingReplay:
    """Rolling state of one holding."""

    def __init__(
            self,
            holding_id: str,
            fund_id: str,
            transactions: list[Transaction],
            dividends: list[Dividend],
            prices: list[FundPrice],
            reinvestment_lookup: dict[str, Transaction],
            metrics_calc: FundMetricsCalculator,
            dividend_calc: DividendCalculator,
    ) -> None:
        self.holding_id = holding_id
        self.fund_id = fund_id
        self._transactions = transactions
        self._dividends = dividends
        self._prices = prices
        self._lookup = reinvestment_lookup
        self._metrics_calc = metrics_calc
        self._dividend_calc = dividend_calc

        self._baseline = ZERO
        self._position = FundPosition(shares=ZERO)
        self._txn_index = 0
        self._dividend_index = 0
        self._price_index = 0
        self._price = ZERO

    def advance(self, target_date: date) -> None:
        """Fold in every record dated on or before target_date."""
        baseline = self._baseline
        while self._dividend_index < len(self._dividends):
            dividend = self._dividends[self._dividend_index]
            if to_utc_date(dividend.ex_dividend_date) > target_date:
                break
            shares = self._dividend_calc.shares_for_dividend(dividend, self._lookup)
            if shares is not None:
                baseline += shares
            self._dividend_index += 1

        if baseline != self._baseline:
            # Baseline moved: sells must be re-scaled, replay from the start
            self._baseline = baseline
            self._position = FundPosition(shares=baseline)
            self._txn_index = 0

        while self._txn_index < len(self._transactions):
            txn = self._transactions[self._txn_index]
            if to_utc_date(txn.date) > target_date:
                break
            self._metrics_calc.apply_transaction(self._position, txn)
            self._txn_index += 1

        while self._price_index < len(self._prices):
            fund_price = self._prices[self._price_index]
            if to_utc_date(fund_price.date) > target_date:
                break
            self._price = to_decimal(fund_price.price)
            self._price_index += 1

    def metrics(self) -> FundMetrics:
        return self._metrics_calc.snapshot(self.holding_id, self.fund_id, self._position, self._price)


class _RunningDividendAmount:
    """Running sum of dividend cash by ex-dividend date."""

    def __init__(self, dividends: list[Dividend]) -> None:
        self._dividends = dividends
        self._index = 0
        self.total = ZERO

    def advance(self, target_date: date) -> Decimal:
        while self._index < len(self._dividends):
            dividend = self._dividends[self._index]
            if to_utc_date(dividend.ex_dividend_date) > target_date:
                break
            self.total += to_decimal(dividend.total_amount)
            self._index += 1
        return self.total


class _RunningRealizedGains:
    """Running sums of sale records by transaction date."""

    def __init__(self, records: list[RealizedGainLoss]) -> None:
        self._records = records
        self._index = 0
        self._realized = ZERO
        self._proceeds = ZERO
        self._cost_basis = ZERO

    def advance(self, target_date: date) -> RealizedGainTotals:
        while self._index < len(self._records):
            record = self._records[self._index]
            if to_utc_date(record.transaction_date) > target_date:
                break
            self._realized += to_decimal(record.realized_gain_loss)
            self._proceeds += to_decimal(record.sale_proceeds)
            self._cost_basis += to_decimal(record.cost_basis)
            self._index += 1
        return RealizedGainTotals(
            realized_gain_loss=self._realized,
            sale_proceeds=self._proceeds,
            cost_basis=self._cost_basis,
        )


class _PortfolioReplay:
    """Rolling state of one portfolio: its holdings plus portfolio-level totals."""

    def __init__(
            self,
            portfolio: Portfolio,
            data: PortfolioData,
            metrics_calc: FundMetricsCalculator,
            dividend_calc: DividendCalculator,
    ) -> None:
        self.portfolio = portfolio
        self.earliest_date = data.earliest_transaction_date(portfolio.id)

        transactions_by_holding = data.transactions_for_portfolio(portfolio.id)
        # Dividends may reference a buy in any holding of the portfolio
        lookup = DividendCalculator.index_transactions(
            [txn for transactions in transactions_by_holding.values() for txn in transactions]
        )
        holding_to_fund = data.holding_to_fund

        self.holdings = [
            _HoldingReplay(
                holding_id=holding_id,
                fund_id=holding_to_fund[holding_id],
                transactions=transactions,
                dividends=data.dividends_by_holding.get(holding_id, []),
                prices=data.prices_by_fund.get(holding_to_fund[holding_id], []),
                reinvestment_lookup=lookup,
                metrics_calc=metrics_calc,
                dividend_calc=dividend_calc,
            )
            for holding_id, transactions in transactions_by_holding.items()
        ]
        self._dividends = _RunningDividendAmount(data.dividends_for_portfolio(portfolio.id))
        self._realized = _RunningRealizedGains(data.realized_for_portfolio(portfolio.id))

    def is_active_on(self, target_date: date) -> bool:
        return self.earliest_date is not None and self.earliest_date <= target_date

    def advance(self, target_date: date) -> tuple[HoldingTotals, Decimal, RealizedGainTotals]:
        totals = HoldingTotals()
        for holding in self.holdings:
            holding.advance(target_date)
            totals.add(holding.metrics())
        return totals, self._dividends.advance(target_date), self._realized.advance(target_date)


# =============================================================================
# HISTORY CALCULATOR
# =============================================================================

class HistoryCalculator:
    """
    Calculates daily valuation series.

    Attributes:
        _metrics_calc: Shared transaction arithmetic
        _dividend_calc: Reinvestment resolution
        _summary_builder: Rounds rolling totals into summaries and entries
        _today: Clock used to cap the display window
    """

    def __init__(
            self,
            metrics_calc: FundMetricsCalculator,
            dividend_calc: DividendCalculator,
            summary_builder: PortfolioSummaryBuilder,
            today: Callable[[], date] = today_utc,
    ) -> None:
        self._metrics_calc = metrics_calc
        self._dividend_calc = dividend_calc
        self._summary_builder = summary_builder
        self._today = today

    def calculate_portfolio_history(
            self,
            portfolios: list[Portfolio],
            data: PortfolioData,
            start_date: date | datetime,
            end_date: date | datetime,
            cancel_event: threading.Event | None = None,
    ) -> list[PortfolioHistoryPoint]:
        """
        Daily summaries of the given portfolios within the display window.

        Args:
            portfolios: Portfolios to include, in output order
            data: Loaded replay inputs covering those portfolios
            start_date: Requested first day
            end_date: Requested last day
            cancel_event: Checked before each day; when set the calculation
                          stops with CalculationCancelledError

        Returns:
            One PortfolioHistoryPoint per day, empty when there are no
            transactions or the window is empty

        Raises:
            InvalidDateRangeError: If start_date is after end_date
            UnknownTransactionTypeError: If a replayed transaction has an
                                         unrecognised type
        """
        window = self._display_window(data.earliest_transaction_date(), start_date, end_date)
        if window is None:
            return []
        window_start, window_end = window

        replays = [
            _PortfolioReplay(portfolio, data, self._metrics_calc, self._dividend_calc)
            for portfolio in portfolios
        ]

        history: list[PortfolioHistoryPoint] = []
        for day in iter_days(window_start, window_end):
            self._check_cancelled(cancel_event, len(history))

            summaries: list[PortfolioSummary] = []
            for replay in replays:
                if not replay.is_active_on(day):
                    continue
                totals, dividend_amount, realized = replay.advance(day)
                summaries.append(
                    self._summary_builder.summarize(replay.portfolio, totals, dividend_amount, realized)
                )

            history.append(PortfolioHistoryPoint(date=day, portfolios=summaries))

        logger.debug(
            f"Calculated {len(history)} day(s) of history for {len(portfolios)} portfolio(s) "
            f"({window_start} to {window_end})"
        )
        return history

    def calculate_fund_history(
            self,
            portfolio_funds: list[PortfolioFundInfo],
            data: PortfolioData,
            start_date: date | datetime,
            end_date: date | datetime,
            cancel_event: threading.Event | None = None,
    ) -> list[FundHistoryPoint]:
        """
        Daily per-holding entries for the given holdings.

        Every holding appears on every day of the window, including days
        before its own first transaction (with zero values).

        Returns:
            One FundHistoryPoint per day of the display window
        """
        holding_ids = {holding.portfolio_fund_id for holding in portfolio_funds}
        dates = [
            to_utc_date(txn.date)
            for holding_id, transactions in data.transactions_by_holding.items()
            if holding_id in holding_ids
            for txn in transactions
        ]
        window = self._display_window(min(dates) if dates else None, start_date, end_date)
        if window is None:
            return []
        window_start, window_end = window

        replays = []
        for holding in portfolio_funds:
            transactions = data.transactions_by_holding.get(holding.portfolio_fund_id, [])
            dividends = data.dividends_by_holding.get(holding.portfolio_fund_id, [])
            replays.append((
                holding,
                _HoldingReplay(
                    holding_id=holding.portfolio_fund_id,
                    fund_id=holding.fund_id,
                    transactions=transactions,
                    dividends=dividends,
                    prices=data.prices_by_fund.get(holding.fund_id, []),
                    reinvestment_lookup=DividendCalculator.index_transactions(transactions),
                    metrics_calc=self._metrics_calc,
                    dividend_calc=self._dividend_calc,
                ),
                _RunningDividendAmount(dividends),
                _RunningRealizedGains(data.realized_for_holding(holding)),
            ))

        history: list[FundHistoryPoint] = []
        for day in iter_days(window_start, window_end):
            self._check_cancelled(cancel_event, len(history))

            entries = []
            for holding, holding_replay, dividend_amount, realized in replays:
                holding_replay.advance(day)
                entries.append(
                    self._summary_builder.fund_entry(
                        holding,
                        holding_replay.metrics(),
                        dividend_amount.advance(day),
                        realized.advance(day),
                    )
                )
            history.append(FundHistoryPoint(date=day, funds=entries))

        return history

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    def _display_window(
            self,
            earliest_transaction: date | None,
            start_date: date | datetime,
            end_date: date | datetime,
    ) -> tuple[date, date] | None:
        """
        Clamp the requested range to [first transaction, today].

        Returns:
            (start, end), or None when nothing can be emitted
        """
        start = to_utc_date(start_date)
        end = to_utc_date(end_date)
        if start > end:
            raise InvalidDateRangeError(start, end)

        if earliest_transaction is None:
            logger.debug("No transactions, history is empty")
            return None

        window_start = max(start, earliest_transaction)
        window_end = min(end, self._today())

        if window_start > window_end:
            logger.debug(
                f"Requested range {start} to {end} lies outside available data "
                f"({earliest_transaction} to {self._today()}), history is empty"
            )
            return None

        if (window_start, window_end) != (start, end):
            logger.debug(f"Display window clamped from {start}..{end} to {window_start}..{window_end}")

        return window_start, window_end

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None, processed_days: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"History calculation cancelled after {processed_days} day(s)")
            raise CalculationCancelledError(processed_days)
