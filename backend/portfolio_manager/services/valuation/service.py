# backend/portfolio_manager/services/valuation/service.py
"""
Valuation Service - Main orchestrator for portfolio valuation.

This is the single entry point for all valuation operations:
- get_portfolio_history_with_fallback(): Daily series, snapshot store first
- get_portfolio_history(): Daily series, always replayed live
- get_portfolio_history_materialized(): Daily series, snapshot store only
- get_fund_history_with_fallback() and friends: Per-holding daily series
- get_portfolio_summary() / get_portfolio_summaries(): Value as of today
- get_portfolio_funds(): Current per-holding metrics at the latest price

Design Principles:
- Dependency Injection: data loader and snapshot store via constructor
- No Transport Knowledge: Raises domain exceptions only
- Composable: Uses specialized calculators for each task
- A request is answered entirely from snapshots or entirely from a live
  replay, never a mix of both

Usage:
    from portfolio_manager.services.valuation import ValuationService

    service = ValuationService()

    history = service.get_portfolio_history_with_fallback(
        db,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 12, 31),
        portfolio_id="0b7c...",
    )

    # In a job, configure logging once and tag each run's log lines
    setup_logging(log_format="json")
    with correlation_scope("nightly-history"), session_scope() as db:
        service.get_portfolio_history_with_fallback(db, start_date, end_date)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from portfolio_manager.config import settings
from portfolio_manager.services.exceptions import (
    InvalidDateRangeError,
    PortfolioNotFoundError,
    SnapshotStoreError,
)
from portfolio_manager.services.valuation.calculators import (
    DividendCalculator,
    FundMetricsCalculator,
    RealizedGainCalculator,
)
from portfolio_manager.services.valuation.history_calculator import HistoryCalculator
from portfolio_manager.services.valuation.summary_builder import PortfolioSummaryBuilder
from portfolio_manager.services.valuation.types import (
    FundHistoryPoint,
    HoldingTotals,
    PortfolioFundValuation,
    PortfolioHistoryPoint,
    PortfolioSnapshot,
    PortfolioSummary,
    RealizedGainTotals,
)
from portfolio_manager.utils.date_utils import to_utc_date, today_utc
from portfolio_manager.utils.money import ZERO

if TYPE_CHECKING:
    from portfolio_manager.models import Portfolio
    from portfolio_manager.services.protocols import (
        PortfolioDataLoaderProtocol,
        SnapshotStoreProtocol,
    )

logger = logging.getLogger(__name__)


class ValuationService:
    """
    Main service for portfolio valuation operations.

    Attributes:
        _data_loader: Loads portfolios and replay inputs
        _snapshot_store: Reads precomputed snapshots
        _use_materialized: Try the snapshot store before replaying
        _history_start: Start of the range used for "as of today" lookups
        _today: Clock; injectable for tests
        _metrics_calc: Per-holding replay
        _dividend_calc: Reinvestment resolution and dividend cash
        _realized_calc: Realized results from sale records
        _summary_builder: Per-date summaries and fund entries
        _history_calc: Daily series
    """

    def __init__(
            self,
            data_loader: PortfolioDataLoaderProtocol | None = None,
            snapshot_store: SnapshotStoreProtocol | None = None,
            strict_dividend_links: bool | None = None,
            use_materialized_history: bool | None = None,
            today: Callable[[], date] = today_utc,
    ) -> None:
        """
        Initialize the valuation service.

        Args:
            data_loader: Loader for replay inputs. Defaults to the
                         SQLAlchemy PortfolioDataLoader.
            snapshot_store: Snapshot reader. Defaults to the SQLAlchemy
                            MaterializedSnapshotRepository.
            strict_dividend_links: Overrides settings.strict_dividend_links
            use_materialized_history: Overrides settings.use_materialized_history
            today: Clock returning the current UTC date
        """
        # Lazy import to keep the calculators importable without the ORM layer
        if data_loader is None:
            from portfolio_manager.services.valuation.data_loader import PortfolioDataLoader
            data_loader = PortfolioDataLoader()
        if snapshot_store is None:
            from portfolio_manager.services.valuation.snapshot_repository import (
                MaterializedSnapshotRepository,
            )
            snapshot_store = MaterializedSnapshotRepository()

        self._data_loader: PortfolioDataLoaderProtocol = data_loader
        self._snapshot_store: SnapshotStoreProtocol = snapshot_store
        self._use_materialized = (
            settings.use_materialized_history
            if use_materialized_history is None
            else use_materialized_history
        )
        self._history_start = settings.history_start_date
        self._today = today

        strict = settings.strict_dividend_links if strict_dividend_links is None else strict_dividend_links

        self._metrics_calc = FundMetricsCalculator()
        self._dividend_calc = DividendCalculator(strict=strict)
        self._realized_calc = RealizedGainCalculator()
        self._summary_builder = PortfolioSummaryBuilder(
            metrics_calc=self._metrics_calc,
            dividend_calc=self._dividend_calc,
            realized_calc=self._realized_calc,
        )
        self._history_calc = HistoryCalculator(
            metrics_calc=self._metrics_calc,
            dividend_calc=self._dividend_calc,
            summary_builder=self._summary_builder,
            today=today,
        )

        logger.info("ValuationService initialized")

    # =========================================================================
    # PORTFOLIO HISTORY
    # =========================================================================

    def get_portfolio_history_with_fallback(
            self,
            db: Session,
            start_date: date | datetime,
            end_date: date | datetime,
            portfolio_id: str | None = None,
            cancel_event: threading.Event | None = None,
    ) -> list[PortfolioHistoryPoint]:
        """
        Daily portfolio history, served from snapshots when they cover the range.

        The snapshot result is used only when it is non-empty and its last
        date reaches the requested end date (capped at today). Anything else
        (no rows, stale rows, a store error) triggers a full live replay.

        Args:
            db: Database session
            start_date: First requested day
            end_date: Last requested day
            portfolio_id: One portfolio, or None for all active portfolios
            cancel_event: Cancels a live replay between days

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
            InvalidDateRangeError: If start_date is after end_date
        """
        start, end = self._normalize_range(start_date, end_date)
        portfolios = self._resolve_portfolios(db, portfolio_id)
        effective_end = min(end, self._today())

        logger.info(
            f"Portfolio history requested: {len(portfolios)} portfolio(s), {start} to {end}"
        )

        if self._use_materialized:
            try:
                history = self._materialized_portfolio_history(db, portfolios, start, effective_end)
            except SnapshotStoreError as e:
                logger.warning(f"Snapshot store failed, replaying live: {e}")
                history = []

            if history and history[-1].date >= effective_end:
                logger.debug(f"Serving {len(history)} day(s) from snapshot store")
                return history

            if history:
                logger.info(
                    f"Snapshots end at {history[-1].date}, before {effective_end}; replaying live"
                )
            else:
                logger.info("No snapshots for requested range; replaying live")

        return self._live_portfolio_history(db, portfolios, start, end, cancel_event)

    def get_portfolio_history(
            self,
            db: Session,
            start_date: date | datetime,
            end_date: date | datetime,
            portfolio_id: str | None = None,
            cancel_event: threading.Event | None = None,
    ) -> list[PortfolioHistoryPoint]:
        """
        Daily portfolio history, always replayed from source records.

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
            InvalidDateRangeError: If start_date is after end_date
        """
        start, end = self._normalize_range(start_date, end_date)
        portfolios = self._resolve_portfolios(db, portfolio_id)
        return self._live_portfolio_history(db, portfolios, start, end, cancel_event)

    def get_portfolio_history_materialized(
            self,
            db: Session,
            start_date: date | datetime,
            end_date: date | datetime,
            portfolio_id: str | None = None,
    ) -> list[PortfolioHistoryPoint]:
        """
        Daily portfolio history from the snapshot store only.

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
            InvalidDateRangeError: If start_date is after end_date
            SnapshotStoreError: If the snapshot store cannot be read
        """
        start, end = self._normalize_range(start_date, end_date)
        portfolios = self._resolve_portfolios(db, portfolio_id)
        return self._materialized_portfolio_history(db, portfolios, start, min(end, self._today()))

    # =========================================================================
    # FUND HISTORY
    # =========================================================================

    def get_fund_history_with_fallback(
            self,
            db: Session,
            portfolio_id: str,
            start_date: date | datetime,
            end_date: date | datetime,
            cancel_event: threading.Event | None = None,
    ) -> list[FundHistoryPoint]:
        """
        Daily per-holding history of one portfolio, snapshots first.

        Same freshness rule as get_portfolio_history_with_fallback().

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
            InvalidDateRangeError: If start_date is after end_date
        """
        start, end = self._normalize_range(start_date, end_date)
        portfolio = self._get_portfolio_or_raise(db, portfolio_id)
        effective_end = min(end, self._today())

        if self._use_materialized:
            try:
                history = self._materialized_fund_history(db, portfolio.id, start, effective_end)
            except SnapshotStoreError as e:
                logger.warning(f"Snapshot store failed for portfolio {portfolio.id}, replaying live: {e}")
                history = []

            if history and history[-1].date >= effective_end:
                logger.debug(f"Serving {len(history)} day(s) of fund history from snapshot store")
                return history

            logger.info(f"Fund snapshots incomplete for portfolio {portfolio.id}; replaying live")

        return self._live_fund_history(db, portfolio, start, end, cancel_event)

    def get_fund_history(
            self,
            db: Session,
            portfolio_id: str,
            start_date: date | datetime,
            end_date: date | datetime,
            cancel_event: threading.Event | None = None,
    ) -> list[FundHistoryPoint]:
        """Daily per-holding history of one portfolio, always replayed live."""
        start, end = self._normalize_range(start_date, end_date)
        portfolio = self._get_portfolio_or_raise(db, portfolio_id)
        return self._live_fund_history(db, portfolio, start, end, cancel_event)

    def get_fund_history_materialized(
            self,
            db: Session,
            portfolio_id: str,
            start_date: date | datetime,
            end_date: date | datetime,
    ) -> list[FundHistoryPoint]:
        """Daily per-holding history of one portfolio from the snapshot store only."""
        start, end = self._normalize_range(start_date, end_date)
        portfolio = self._get_portfolio_or_raise(db, portfolio_id)
        return self._materialized_fund_history(db, portfolio.id, start, min(end, self._today()))

    # =========================================================================
    # CURRENT VALUES
    # =========================================================================

    def get_portfolio_summary(self, db: Session, portfolio_id: str) -> PortfolioSummary:
        """
        Value one portfolio as of today.

        Returns:
            The latest summary, or an all-zero summary for a portfolio
            without any transactions

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
        """
        portfolio = self._get_portfolio_or_raise(db, portfolio_id)
        history = self.get_portfolio_history_with_fallback(
            db, self._history_start, self._today(), portfolio_id=portfolio.id
        )

        if history:
            summary = history[-1].summary_for(portfolio.id)
            if summary is not None:
                return summary

        return self._summary_builder.summarize(
            portfolio, HoldingTotals(), ZERO, RealizedGainTotals.zero()
        )

    def get_portfolio_summaries(self, db: Session) -> list[PortfolioSummary]:
        """Today's summaries of all active portfolios that have transactions."""
        history = self.get_portfolio_history_with_fallback(db, self._history_start, self._today())
        return list(history[-1].portfolios) if history else []

    def get_portfolio_funds(self, db: Session, portfolio_id: str) -> list[PortfolioFundValuation]:
        """
        Current metrics of every holding in a portfolio, at the latest known price.

        Raises:
            PortfolioNotFoundError: If portfolio_id does not exist
        """
        portfolio = self._get_portfolio_or_raise(db, portfolio_id)
        today = self._today()
        data = self._data_loader.load_for_portfolios(db, [portfolio], today)

        return [
            self._summary_builder.build_fund_valuation(holding, today, data)
            for holding in data.holdings_for_portfolio(portfolio.id)
        ]

    # =========================================================================
    # LIVE REPLAY
    # =========================================================================

    def _live_portfolio_history(
            self,
            db: Session,
            portfolios: list[Portfolio],
            start: date,
            end: date,
            cancel_event: threading.Event | None,
    ) -> list[PortfolioHistoryPoint]:
        data = self._data_loader.load_for_portfolios(db, portfolios, min(end, self._today()))
        return self._history_calc.calculate_portfolio_history(
            portfolios, data, start, end, cancel_event=cancel_event
        )

    def _live_fund_history(
            self,
            db: Session,
            portfolio: Portfolio,
            start: date,
            end: date,
            cancel_event: threading.Event | None,
    ) -> list[FundHistoryPoint]:
        data = self._data_loader.load_for_portfolios(db, [portfolio], min(end, self._today()))
        return self._history_calc.calculate_fund_history(
            data.holdings_for_portfolio(portfolio.id), data, start, end, cancel_event=cancel_event
        )

    # =========================================================================
    # SNAPSHOT STORE
    # =========================================================================

    def _materialized_portfolio_history(
            self,
            db: Session,
            portfolios: list[Portfolio],
            start: date,
            end: date,
    ) -> list[PortfolioHistoryPoint]:
        if start > end:
            return []

        snapshots = self._snapshot_store.get_portfolio_history(
            db, [portfolio.id for portfolio in portfolios], start, end
        )

        by_id = {portfolio.id: portfolio for portfolio in portfolios}
        order = {portfolio.id: index for index, portfolio in enumerate(portfolios)}
        by_date: dict[date, list[PortfolioSnapshot]] = {}
        for snapshot in snapshots:
            if snapshot.portfolio_id in by_id:
                by_date.setdefault(to_utc_date(snapshot.date), []).append(snapshot)

        history = []
        for day in sorted(by_date):
            rows = sorted(by_date[day], key=lambda s: order[s.portfolio_id])
            history.append(
                PortfolioHistoryPoint(
                    date=day,
                    portfolios=[self._summary_from_snapshot(by_id[s.portfolio_id], s) for s in rows],
                )
            )
        return history

    def _materialized_fund_history(
            self,
            db: Session,
            portfolio_id: str,
            start: date,
            end: date,
    ) -> list[FundHistoryPoint]:
        if start > end:
            return []

        by_date: dict[date, list] = {}
        for snapshot in self._snapshot_store.get_fund_history(db, portfolio_id, start, end):
            by_date.setdefault(to_utc_date(snapshot.date), []).append(snapshot.entry)

        return [FundHistoryPoint(date=day, funds=by_date[day]) for day in sorted(by_date)]

    @staticmethod
    def _summary_from_snapshot(portfolio: Portfolio, snapshot: PortfolioSnapshot) -> PortfolioSummary:
        return PortfolioSummary(
            portfolio_id=portfolio.id,
            name=portfolio.name,
            description=portfolio.description or "",
            is_archived=bool(portfolio.is_archived),
            total_value=snapshot.total_value,
            total_cost=snapshot.total_cost,
            total_dividends=snapshot.total_dividends,
            total_unrealized_gain_loss=snapshot.total_unrealized_gain_loss,
            total_realized_gain_loss=snapshot.total_realized_gain_loss,
            total_sale_proceeds=snapshot.total_sale_proceeds,
            total_original_cost=snapshot.total_original_cost,
            total_gain_loss=snapshot.total_gain_loss,
        )

    # =========================================================================
    # HELPER METHODS
    # =========================================================================

    @staticmethod
    def _normalize_range(start_date: date | datetime, end_date: date | datetime) -> tuple[date, date]:
        start = to_utc_date(start_date)
        end = to_utc_date(end_date)
        if start > end:
            raise InvalidDateRangeError(start, end)
        return start, end

    def _get_portfolio_or_raise(self, db: Session, portfolio_id: str) -> Portfolio:
        portfolio = self._data_loader.get_portfolio(db, portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)
        return portfolio

    def _resolve_portfolios(self, db: Session, portfolio_id: str | None) -> list[Portfolio]:
        if portfolio_id is not None:
            return [self._get_portfolio_or_raise(db, portfolio_id)]
        return self._data_loader.load_active_portfolios(db)
