# backend/portfolio_manager/services/valuation/data_loader.py
"""
Batch loader for history replay inputs.

Loads everything needed to value a set of portfolios in five queries
(holdings, transactions, dividends, prices, realized gains) and groups the
rows in memory. The calculators never query the database themselves.

Ordering guarantees (the calculators rely on them):
- transactions:   date, created_at
- dividends:      ex_dividend_date, created_at
- prices:         date
- realized gains: transaction_date, created_at
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_manager.models import (
    Dividend,
    Fund,
    FundPrice,
    Portfolio,
    PortfolioFund,
    RealizedGainLoss,
    Transaction,
)
from portfolio_manager.services.valuation.types import PortfolioData, PortfolioFundInfo

logger = logging.getLogger(__name__)


class PortfolioDataLoader:
    """Loads portfolios and their replay inputs with SQLAlchemy."""

    def get_portfolio(self, db: Session, portfolio_id: str) -> Portfolio | None:
        return db.get(Portfolio, portfolio_id)

    def load_active_portfolios(self, db: Session) -> list[Portfolio]:
        """Portfolios shown in overviews: not archived and not excluded."""
        query = (
            select(Portfolio)
            .where(
                Portfolio.is_archived.is_(False),
                Portfolio.exclude_from_overview.is_(False),
            )
            .order_by(Portfolio.name, Portfolio.id)
        )
        return list(db.scalars(query).all())

    def load_for_portfolios(
            self,
            db: Session,
            portfolios: list[Portfolio],
            end_date: date,
    ) -> PortfolioData:
        """
        Load the complete history of the given portfolios.

        Transactions are loaded regardless of end_date: a dividend may
        reference a reinvestment transaction recorded after its ex-dividend date,
        and the result for a day must not depend on the requested range.
        Dividends, prices and realized gains are cut off at end_date.

        Args:
            db: Database session
            portfolios: Portfolios to load
            end_date: Last day that will be valued

        Returns:
            PortfolioData with one (possibly empty) list per holding
        """
        portfolio_ids = [portfolio.id for portfolio in portfolios]
        if not portfolio_ids:
            return PortfolioData()

        portfolio_funds = self._fetch_portfolio_funds(db, portfolio_ids)
        holding_ids = [pf.portfolio_fund_id for pf in portfolio_funds]
        fund_ids = sorted({pf.fund_id for pf in portfolio_funds})

        data = PortfolioData(
            portfolio_funds=portfolio_funds,
            transactions_by_holding={holding_id: [] for holding_id in holding_ids},
            dividends_by_holding={holding_id: [] for holding_id in holding_ids},
            prices_by_fund={fund_id: [] for fund_id in fund_ids},
            realized_by_portfolio={portfolio_id: [] for portfolio_id in portfolio_ids},
        )
        if not holding_ids:
            return data

        for txn in self._fetch_transactions(db, holding_ids):
            data.transactions_by_holding[txn.portfolio_fund_id].append(txn)

        for dividend in self._fetch_dividends(db, holding_ids, end_date):
            data.dividends_by_holding[dividend.portfolio_fund_id].append(dividend)

        for fund_price in self._fetch_prices(db, fund_ids, end_date):
            data.prices_by_fund[fund_price.fund_id].append(fund_price)

        for record in self._fetch_realized_gains(db, portfolio_ids, end_date):
            data.realized_by_portfolio[record.portfolio_id].append(record)

        logger.debug(
            f"Loaded {len(portfolio_ids)} portfolio(s), {len(holding_ids)} holding(s), "
            f"{sum(len(t) for t in data.transactions_by_holding.values())} transaction(s), "
            f"{sum(len(d) for d in data.dividends_by_holding.values())} dividend(s), "
            f"{sum(len(p) for p in data.prices_by_fund.values())} price(s)"
        )
        return data

    # =========================================================================
    # DATA FETCHING (Batch Operations)
    # =========================================================================

    def _fetch_portfolio_funds(
            self,
            db: Session,
            portfolio_ids: list[str],
    ) -> list[PortfolioFundInfo]:
        """Holdings grouped by portfolio (in the order given), then by fund name."""
        query = (
            select(PortfolioFund, Fund.name)
            .join(Fund, Fund.id == PortfolioFund.fund_id)
            .where(PortfolioFund.portfolio_id.in_(portfolio_ids))
            .order_by(Fund.name, PortfolioFund.id)
        )
        position = {portfolio_id: index for index, portfolio_id in enumerate(portfolio_ids)}

        holdings = [
            PortfolioFundInfo(
                portfolio_fund_id=pf.id,
                portfolio_id=pf.portfolio_id,
                fund_id=pf.fund_id,
                fund_name=fund_name,
            )
            for pf, fund_name in db.execute(query).all()
        ]
        # Stable sort keeps the fund-name order within a portfolio
        holdings.sort(key=lambda holding: position[holding.portfolio_id])
        return holdings

    def _fetch_transactions(self, db: Session, holding_ids: list[str]) -> list[Transaction]:
        query = (
            select(Transaction)
            .where(Transaction.portfolio_fund_id.in_(holding_ids))
            .order_by(Transaction.date, Transaction.created_at, Transaction.id)
        )
        return list(db.scalars(query).all())

    def _fetch_dividends(
            self,
            db: Session,
            holding_ids: list[str],
            end_date: date,
    ) -> list[Dividend]:
        query = (
            select(Dividend)
            .where(
                Dividend.portfolio_fund_id.in_(holding_ids),
                Dividend.ex_dividend_date <= end_date,
            )
            .order_by(Dividend.ex_dividend_date, Dividend.created_at, Dividend.id)
        )
        return list(db.scalars(query).all())

    def _fetch_prices(
            self,
            db: Session,
            fund_ids: list[str],
            end_date: date,
    ) -> list[FundPrice]:
        query = (
            select(FundPrice)
            .where(
                FundPrice.fund_id.in_(fund_ids),
                FundPrice.date <= end_date,
            )
            .order_by(FundPrice.date)
        )
        return list(db.scalars(query).all())

    def _fetch_realized_gains(
            self,
            db: Session,
            portfolio_ids: list[str],
            end_date: date,
    ) -> list[RealizedGainLoss]:
        query = (
            select(RealizedGainLoss)
            .where(
                RealizedGainLoss.portfolio_id.in_(portfolio_ids),
                RealizedGainLoss.transaction_date <= end_date,
            )
            .order_by(RealizedGainLoss.transaction_date, RealizedGainLoss.created_at, RealizedGainLoss.id)
        )
        return list(db.scalars(query).all())
