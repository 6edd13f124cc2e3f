# backend/portfolio_manager/services/valuation/snapshot_repository.py
"""
Read access to precomputed valuation snapshots.

fund_history_materialized holds one row per holding per day. Portfolio
totals are aggregated in SQL; realized gains, sale proceeds, original cost
and dividend cash are cumulative per portfolio and come from correlated
subqueries against the source tables, so they do not depend on the
snapshot job having stored them.

Row contract: value, cost and the other amounts are stored at full
precision, exactly as the unrounded FundMetrics of the live replay. Totals
are summed and rounded here, once, so a day served from snapshots equals
the same day replayed live. Rows written from rounded FundHistoryEntry
values break that: summing rounded holdings can drift by a cent from the
rounded sum.

Any database error is re-raised as SnapshotStoreError, which callers treat
as a cache miss.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from portfolio_manager.models import (
    Dividend,
    Fund,
    FundHistoryMaterialized,
    PortfolioFund,
    RealizedGainLoss,
)
from portfolio_manager.services.exceptions import SnapshotStoreError
from portfolio_manager.services.valuation.types import (
    FundHistoryEntry,
    FundSnapshot,
    PortfolioSnapshot,
)
from portfolio_manager.utils.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


class MaterializedSnapshotRepository:
    """Queries fund_history_materialized for the valuation fast path."""

    def get_portfolio_history(
            self,
            db: Session,
            portfolio_ids: list[str],
            start_date: date,
            end_date: date,
    ) -> list[PortfolioSnapshot]:
        """
        Portfolio totals per day from the snapshot table.

        Returns:
            Snapshots ordered by date, then portfolio id. Days without rows
            are simply absent.

        Raises:
            SnapshotStoreError: If the query fails
        """
        if not portfolio_ids:
            return []

        try:
            rows = db.execute(self._portfolio_history_query(portfolio_ids, start_date, end_date)).all()
        except SQLAlchemyError as e:
            raise SnapshotStoreError(str(e)) from e

        snapshots = []
        for row in rows:
            # Same floor at zero as the live replay applies to holding totals
            value = max(ZERO, to_decimal(row.total_value))
            cost = max(ZERO, to_decimal(row.total_cost))
            realized = to_decimal(row.total_realized)
            unrealized = value - cost

            snapshots.append(
                PortfolioSnapshot(
                    portfolio_id=row.portfolio_id,
                    date=row.date,
                    total_value=round_money(value),
                    total_cost=round_money(cost),
                    total_dividends=round_money(to_decimal(row.total_dividends)),
                    total_unrealized_gain_loss=round_money(unrealized),
                    total_realized_gain_loss=round_money(realized),
                    total_sale_proceeds=round_money(to_decimal(row.total_sale_proceeds)),
                    total_original_cost=round_money(to_decimal(row.total_original_cost)),
                    total_gain_loss=round_money(realized + unrealized),
                    calculated_at=row.calculated_at,
                )
            )

        logger.debug(
            f"Snapshot store returned {len(snapshots)} row(s) for "
            f"{len(portfolio_ids)} portfolio(s) ({start_date} to {end_date})"
        )
        return snapshots

    def get_fund_history(
            self,
            db: Session,
            portfolio_id: str,
            start_date: date,
            end_date: date,
    ) -> list[FundSnapshot]:
        """
        Per-holding rows of one portfolio from the snapshot table.

        Returns:
            Snapshots ordered by date, then fund name

        Raises:
            SnapshotStoreError: If the query fails
        """
        query = (
            select(FundHistoryMaterialized, Fund.name)
            .join(PortfolioFund, PortfolioFund.id == FundHistoryMaterialized.portfolio_fund_id)
            .join(Fund, Fund.id == FundHistoryMaterialized.fund_id)
            .where(
                PortfolioFund.portfolio_id == portfolio_id,
                FundHistoryMaterialized.date >= start_date,
                FundHistoryMaterialized.date <= end_date,
            )
            .order_by(FundHistoryMaterialized.date, Fund.name, FundHistoryMaterialized.portfolio_fund_id)
        )

        try:
            rows = db.execute(query).all()
        except SQLAlchemyError as e:
            raise SnapshotStoreError(str(e)) from e

        return [
            FundSnapshot(
                date=row.date,
                entry=FundHistoryEntry(
                    portfolio_fund_id=row.portfolio_fund_id,
                    fund_id=row.fund_id,
                    fund_name=fund_name,
                    shares=round_money(row.shares),
                    price=round_money(row.price),
                    value=round_money(row.value),
                    cost=round_money(row.cost),
                    realized_gain=round_money(row.realized_gain),
                    unrealized_gain=round_money(row.unrealized_gain),
                    total_gain_loss=round_money(row.total_gain_loss),
                    dividends=round_money(row.dividends),
                    fees=round_money(row.fees),
                ),
                calculated_at=row.calculated_at,
            )
            for row, fund_name in rows
        ]

    # =========================================================================
    # QUERY CONSTRUCTION
    # =========================================================================

    def _portfolio_history_query(
            self,
            portfolio_ids: list[str],
            start_date: date,
            end_date: date,
    ):
        fhm = FundHistoryMaterialized
        holding = PortfolioFund

        # Subqueries correlate on the outer holding's portfolio and the row date
        realized = (
            select(func.coalesce(func.sum(RealizedGainLoss.realized_gain_loss), 0))
            .where(
                RealizedGainLoss.portfolio_id == holding.portfolio_id,
                RealizedGainLoss.transaction_date <= fhm.date,
            )
            .scalar_subquery()
        )
        sale_proceeds = (
            select(func.coalesce(func.sum(RealizedGainLoss.sale_proceeds), 0))
            .where(
                RealizedGainLoss.portfolio_id == holding.portfolio_id,
                RealizedGainLoss.transaction_date <= fhm.date,
            )
            .scalar_subquery()
        )
        original_cost = (
            select(func.coalesce(func.sum(RealizedGainLoss.cost_basis), 0))
            .where(
                RealizedGainLoss.portfolio_id == holding.portfolio_id,
                RealizedGainLoss.transaction_date <= fhm.date,
            )
            .scalar_subquery()
        )
        dividend_holding = aliased(PortfolioFund)
        dividends = (
            select(func.coalesce(func.sum(Dividend.total_amount), 0))
            .join(dividend_holding, dividend_holding.id == Dividend.portfolio_fund_id)
            .where(
                dividend_holding.portfolio_id == holding.portfolio_id,
                Dividend.ex_dividend_date <= fhm.date,
            )
            .scalar_subquery()
        )

        return (
            select(
                holding.portfolio_id.label("portfolio_id"),
                fhm.date.label("date"),
                func.sum(fhm.value).label("total_value"),
                func.sum(fhm.cost).label("total_cost"),
                realized.label("total_realized"),
                sale_proceeds.label("total_sale_proceeds"),
                original_cost.label("total_original_cost"),
                dividends.label("total_dividends"),
                func.max(fhm.calculated_at).label("calculated_at"),
            )
            .select_from(fhm)
            .join(holding, holding.id == fhm.portfolio_fund_id)
            .where(
                holding.portfolio_id.in_(portfolio_ids),
                fhm.date >= start_date,
                fhm.date <= end_date,
            )
            .group_by(holding.portfolio_id, fhm.date)
            .order_by(fhm.date, holding.portfolio_id)
        )
