# backend/tests/services/test_snapshot_repository.py
"""
Tests for MaterializedSnapshotRepository against an in-memory SQLite database.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from conftest import create_fund, create_fund_snapshot, create_holding, create_portfolio
from portfolio_manager.services.exceptions import SnapshotStoreError
from portfolio_manager.services.valuation.snapshot_repository import MaterializedSnapshotRepository


@pytest.fixture
def repository():
    return MaterializedSnapshotRepository()


class TestPortfolioHistory:
    """Tests for aggregated portfolio snapshots."""

    def test_aggregates_holdings_per_day(self, db, sample_portfolio, repository):
        portfolio = sample_portfolio["portfolio"]
        holding = sample_portfolio["holding"]
        bonds = create_fund(db, name="Bonds", isin="LU0000000001")
        bond_holding = create_holding(db, portfolio, bonds)
        create_fund_snapshot(db, holding, date(2024, 3, 1), "7", "150", "636.36")
        create_fund_snapshot(db, bond_holding, date(2024, 3, 1), "10", "20.005", "200")
        db.commit()

        snapshots = repository.get_portfolio_history(db, [portfolio.id], date(2024, 3, 1), date(2024, 3, 1))

        assert len(snapshots) == 1
        snapshot = snapshots[0]
        assert snapshot.portfolio_id == portfolio.id
        assert snapshot.date == date(2024, 3, 1)
        assert snapshot.total_value == Decimal("1250.05")
        assert snapshot.total_cost == Decimal("836.36")
        assert snapshot.total_unrealized_gain_loss == Decimal("413.69")

    def test_cumulative_amounts_come_from_source_tables(self, db, sample_portfolio, repository):
        portfolio = sample_portfolio["portfolio"]
        holding = sample_portfolio["holding"]
        create_fund_snapshot(db, holding, date(2024, 1, 31), "10", "120", "1000")
        create_fund_snapshot(db, holding, date(2024, 3, 1), "7", "150", "636.36")
        db.commit()

        before, after = repository.get_portfolio_history(
            db, [portfolio.id], date(2024, 1, 1), date(2024, 3, 31)
        )

        assert before.total_realized_gain_loss == Decimal("0.00")
        assert before.total_dividends == Decimal("0.00")
        assert after.total_realized_gain_loss == Decimal("200.00")
        assert after.total_sale_proceeds == Decimal("600.00")
        assert after.total_original_cost == Decimal("400.00")
        assert after.total_dividends == Decimal("50.00")
        assert after.total_gain_loss == after.total_realized_gain_loss + after.total_unrealized_gain_loss

    def test_negative_totals_clamped(self, db, repository):
        portfolio = create_portfolio(db)
        holding = create_holding(db, portfolio, create_fund(db))
        create_fund_snapshot(db, holding, date(2024, 1, 1), "-3", "10", "-5")
        db.commit()

        (snapshot,) = repository.get_portfolio_history(db, [portfolio.id], date(2024, 1, 1), date(2024, 1, 1))

        assert snapshot.total_value == Decimal("0.00")
        assert snapshot.total_cost == Decimal("0.00")

    def test_rows_outside_range_excluded(self, db, sample_portfolio, repository):
        holding = sample_portfolio["holding"]
        for day in (date(2024, 2, 28), date(2024, 3, 1), date(2024, 3, 2)):
            create_fund_snapshot(db, holding, day, "7", "150", "636.36")
        db.commit()

        snapshots = repository.get_portfolio_history(
            db, [sample_portfolio["portfolio"].id], date(2024, 3, 1), date(2024, 3, 1)
        )

        assert [s.date for s in snapshots] == [date(2024, 3, 1)]

    def test_no_portfolios_returns_empty(self, db, repository):
        assert repository.get_portfolio_history(db, [], date(2024, 1, 1), date(2024, 1, 31)) == []

    def test_database_error_becomes_store_error(self, repository):
        db = MagicMock()
        db.execute.side_effect = OperationalError("SELECT", {}, Exception("no such table"))

        with pytest.raises(SnapshotStoreError) as exc_info:
            repository.get_portfolio_history(db, ["p-1"], date(2024, 1, 1), date(2024, 1, 31))

        assert "no such table" in exc_info.value.reason


class TestFundHistory:
    """Tests for per-holding snapshots."""

    def test_rows_ordered_by_date_then_fund_name(self, db, sample_portfolio, repository):
        portfolio = sample_portfolio["portfolio"]
        holding = sample_portfolio["holding"]
        bond_holding = create_holding(db, portfolio, create_fund(db, name="Bonds", isin="LU0000000001"))
        create_fund_snapshot(db, holding, date(2024, 3, 2), "7", "150", "636.36")
        create_fund_snapshot(db, holding, date(2024, 3, 1), "7", "150", "636.36")
        create_fund_snapshot(db, bond_holding, date(2024, 3, 1), "10", "20", "200")
        db.commit()

        snapshots = repository.get_fund_history(db, portfolio.id, date(2024, 3, 1), date(2024, 3, 31))

        assert [(s.date, s.entry.fund_name) for s in snapshots] == [
            (date(2024, 3, 1), "Bonds"),
            (date(2024, 3, 1), "World Index Fund"),
            (date(2024, 3, 2), "World Index Fund"),
        ]
        assert snapshots[0].entry.value == Decimal("200.00")
        assert snapshots[0].calculated_at is not None

    def test_other_portfolios_excluded(self, db, sample_portfolio, repository):
        other = create_portfolio(db, name="Other")
        other_holding = create_holding(db, other, sample_portfolio["fund"])
        create_fund_snapshot(db, other_holding, date(2024, 3, 1), "1", "150", "100")
        db.commit()

        snapshots = repository.get_fund_history(
            db, sample_portfolio["portfolio"].id, date(2024, 3, 1), date(2024, 3, 31)
        )

        assert snapshots == []

    def test_database_error_becomes_store_error(self, repository):
        db = MagicMock()
        db.execute.side_effect = OperationalError("SELECT", {}, Exception("timeout"))

        with pytest.raises(SnapshotStoreError):
            repository.get_fund_history(db, "p-1", date(2024, 1, 1), date(2024, 1, 31))
