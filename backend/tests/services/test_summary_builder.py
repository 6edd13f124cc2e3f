# backend/tests/services/test_summary_builder.py
"""
Tests for PortfolioSummaryBuilder.

Covers:
- Skipping portfolios that have no (or only future) transactions
- Aggregation across holdings and clamping of negative totals
- Dividend cash from dividend records vs. dividend-type transactions
- Rounding (2 dp, halves away from zero)
- Fund entries and current fund valuations
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from portfolio_manager.models import TransactionType
from portfolio_manager.services.valuation.calculators import (
    DividendCalculator,
    FundMetricsCalculator,
    RealizedGainCalculator,
)
from portfolio_manager.services.valuation.summary_builder import PortfolioSummaryBuilder
from portfolio_manager.services.valuation.types import (
    FundMetrics,
    HoldingTotals,
    PortfolioData,
    PortfolioFundInfo,
    RealizedGainTotals,
)


# =============================================================================
# MOCK OBJECTS
# =============================================================================

@dataclass
class MockPortfolio:
    id: str
    name: str = "Retirement"
    description: str | None = None
    is_archived: bool = False


@dataclass
class MockTransaction:
    id: str
    portfolio_fund_id: str
    date: date
    type: TransactionType
    shares: Decimal
    cost_per_share: Decimal


@dataclass
class MockDividend:
    id: str
    portfolio_fund_id: str
    fund_id: str
    ex_dividend_date: date
    total_amount: Decimal
    reinvestment_transaction_id: str | None = None


@dataclass
class MockPrice:
    fund_id: str
    date: date
    price: Decimal


@dataclass
class MockRealizedGain:
    portfolio_id: str
    fund_id: str
    transaction_date: date
    realized_gain_loss: Decimal
    sale_proceeds: Decimal
    cost_basis: Decimal


def txn(txn_id, holding_id, on, txn_type, shares, price):
    return MockTransaction(txn_id, holding_id, on, txn_type, Decimal(shares), Decimal(price))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def builder():
    return PortfolioSummaryBuilder(
        FundMetricsCalculator(),
        DividendCalculator(),
        RealizedGainCalculator(),
    )


@pytest.fixture
def portfolio():
    return MockPortfolio(id="p-1", description="Long term")


@pytest.fixture
def holdings():
    return [
        PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund"),
        PortfolioFundInfo("pf-b", "p-1", "fund-b", "Beta Fund"),
    ]


@pytest.fixture
def two_fund_data(holdings):
    """
    Alpha: buy 10 @ 100 (Jan 1), sell 4 @ 150 (Feb 1), price 120 then 150.
    Beta:  buy 5 @ 20 (Jan 15), price 25, dividend 10 reinvested as 0.4 shares.
    """
    return PortfolioData(
        portfolio_funds=holdings,
        transactions_by_holding={
            "pf-a": [
                txn("a1", "pf-a", date(2024, 1, 1), TransactionType.BUY, "10", "100"),
                txn("a2", "pf-a", date(2024, 2, 1), TransactionType.SELL, "4", "150"),
            ],
            "pf-b": [
                txn("b1", "pf-b", date(2024, 1, 15), TransactionType.BUY, "5", "20"),
                txn("b2", "pf-b", date(2024, 3, 2), TransactionType.DIVIDEND, "0.4", "25"),
            ],
        },
        dividends_by_holding={
            "pf-a": [],
            "pf-b": [
                MockDividend("d1", "pf-b", "fund-b", date(2024, 3, 1), Decimal("10"), "b2"),
            ],
        },
        prices_by_fund={
            "fund-a": [
                MockPrice("fund-a", date(2024, 1, 2), Decimal("120")),
                MockPrice("fund-a", date(2024, 2, 1), Decimal("150")),
            ],
            "fund-b": [MockPrice("fund-b", date(2024, 1, 15), Decimal("25"))],
        },
        realized_by_portfolio={
            "p-1": [
                MockRealizedGain(
                    "p-1", "fund-a", date(2024, 2, 1), Decimal("200"), Decimal("600"), Decimal("400")
                ),
            ],
        },
    )


# =============================================================================
# PORTFOLIO SUMMARY TESTS
# =============================================================================

class TestBuild:
    """Tests for PortfolioSummaryBuilder.build()."""

    def test_skips_portfolio_without_transactions(self, builder, portfolio):
        data = PortfolioData(
            portfolio_funds=[PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund")],
            transactions_by_holding={"pf-a": []},
        )

        assert builder.build(portfolio, date(2024, 6, 1), data) is None

    def test_skips_dates_before_first_transaction(self, builder, portfolio, two_fund_data):
        assert builder.build(portfolio, date(2023, 12, 31), two_fund_data) is None

    def test_first_transaction_date_is_included(self, builder, portfolio, two_fund_data):
        summary = builder.build(portfolio, date(2024, 1, 1), two_fund_data)

        assert summary is not None
        assert summary.total_cost == Decimal("1000.00")
        # No price for Alpha yet
        assert summary.total_value == Decimal("0.00")

    def test_aggregates_holdings(self, builder, portfolio, two_fund_data):
        """Values and costs are summed across holdings."""
        summary = builder.build(portfolio, date(2024, 1, 31), two_fund_data)

        # Alpha 10 × 120 + Beta 5 × 25
        assert summary.total_value == Decimal("1325.00")
        assert summary.total_cost == Decimal("1100.00")
        assert summary.total_unrealized_gain_loss == Decimal("225.00")
        assert summary.total_realized_gain_loss == Decimal("0.00")
        assert summary.total_gain_loss == Decimal("225.00")

    def test_identity_fields_come_from_portfolio(self, builder, portfolio, two_fund_data):
        summary = builder.build(portfolio, date(2024, 1, 31), two_fund_data)

        assert summary.portfolio_id == "p-1"
        assert summary.name == "Retirement"
        assert summary.description == "Long term"
        assert summary.is_archived is False

    def test_missing_description_becomes_empty_string(self, builder, two_fund_data):
        summary = builder.build(MockPortfolio(id="p-1"), date(2024, 1, 31), two_fund_data)

        assert summary.description == ""

    def test_realized_gains_and_total_gain(self, builder, portfolio, two_fund_data):
        """total_gain = realized + unrealized after a partial sale."""
        summary = builder.build(portfolio, date(2024, 2, 15), two_fund_data)

        # Alpha 6 × 150 = 900 at cost 600; Beta 125 at cost 100
        assert summary.total_value == Decimal("1025.00")
        assert summary.total_cost == Decimal("700.00")
        assert summary.total_realized_gain_loss == Decimal("200.00")
        assert summary.total_sale_proceeds == Decimal("600.00")
        assert summary.total_original_cost == Decimal("400.00")
        assert summary.total_gain_loss == (
            summary.total_realized_gain_loss + summary.total_unrealized_gain_loss
        )

    def test_dividends_and_reinvested_shares(self, builder, portfolio, two_fund_data):
        """
        The dividend record counts as dividend cash from its ex-date; the
        reinvestment transaction's shares arrive through the baseline.
        """
        before = builder.build(portfolio, date(2024, 2, 29), two_fund_data)
        after = builder.build(portfolio, date(2024, 3, 2), two_fund_data)

        assert before.total_dividends == Decimal("0.00")
        assert after.total_dividends == Decimal("10.00")
        # Beta: 5.4 shares × 25
        assert after.total_value == Decimal("900.00") + Decimal("135.00")

    def test_negative_totals_are_clamped(self, builder, portfolio):
        """Overselling gives negative shares; portfolio totals floor at zero."""
        data = PortfolioData(
            portfolio_funds=[PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund")],
            transactions_by_holding={
                "pf-a": [
                    txn("a1", "pf-a", date(2024, 1, 1), TransactionType.BUY, "5", "100"),
                    txn("a2", "pf-a", date(2024, 1, 2), TransactionType.SELL, "8", "100"),
                ],
            },
            prices_by_fund={"fund-a": [MockPrice("fund-a", date(2024, 1, 1), Decimal("10"))]},
        )

        summary = builder.build(portfolio, date(2024, 1, 2), data)

        assert summary.total_value == Decimal("0.00")
        assert summary.total_cost == Decimal("0.00")
        assert summary.total_unrealized_gain_loss == Decimal("0.00")

    def test_amounts_are_rounded_half_up(self, builder, portfolio):
        """3 × 33.335 = 100.005 -> 100.01"""
        data = PortfolioData(
            portfolio_funds=[PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund")],
            transactions_by_holding={
                "pf-a": [txn("a1", "pf-a", date(2024, 1, 1), TransactionType.BUY, "3", "33.335")],
            },
            prices_by_fund={"fund-a": [MockPrice("fund-a", date(2024, 1, 1), Decimal("33.335"))]},
        )

        summary = builder.build(portfolio, date(2024, 1, 1), data)

        assert summary.total_cost == Decimal("100.01")
        assert summary.total_value == Decimal("100.01")
        assert summary.total_unrealized_gain_loss == Decimal("0.00")

    def test_dividend_may_reference_other_holding(self, builder, portfolio, holdings):
        """Portfolio-level baselines resolve against all holdings' transactions."""
        data = PortfolioData(
            portfolio_funds=holdings,
            transactions_by_holding={
                "pf-a": [txn("a1", "pf-a", date(2024, 1, 1), TransactionType.BUY, "10", "10")],
                "pf-b": [txn("b1", "pf-b", date(2024, 1, 1), TransactionType.BUY, "2", "10")],
            },
            dividends_by_holding={
                "pf-a": [MockDividend("d1", "pf-a", "fund-a", date(2024, 1, 5), Decimal("20"), "b1")],
                "pf-b": [],
            },
            prices_by_fund={
                "fund-a": [MockPrice("fund-a", date(2024, 1, 1), Decimal("10"))],
                "fund-b": [MockPrice("fund-b", date(2024, 1, 1), Decimal("10"))],
            },
        )

        metrics = builder.fund_metrics_for_portfolio("p-1", date(2024, 1, 5), data)

        shares = {m.portfolio_fund_id: m.shares for m in metrics}
        assert shares == {"pf-a": Decimal("12"), "pf-b": Decimal("2")}


class TestSummarize:
    """Tests for summarize() with precomputed totals."""

    def test_total_gain_combines_realized_and_clamped_unrealized(self, builder, portfolio):
        totals = HoldingTotals(value=Decimal("-50"), cost=Decimal("80"))
        realized = RealizedGainTotals(Decimal("12.344"), Decimal("100"), Decimal("87.656"))

        summary = builder.summarize(portfolio, totals, Decimal("4.005"), realized)

        assert summary.total_value == Decimal("0.00")
        assert summary.total_cost == Decimal("80.00")
        assert summary.total_unrealized_gain_loss == Decimal("-80.00")
        assert summary.total_realized_gain_loss == Decimal("12.34")
        assert summary.total_gain_loss == Decimal("-67.66")
        assert summary.total_dividends == Decimal("4.01")


# =============================================================================
# FUND LEVEL TESTS
# =============================================================================

class TestFundEntries:
    """Tests for per-holding entries and current valuations."""

    def test_fund_entry_on_date(self, builder, holdings, two_fund_data):
        entry = builder.build_fund_entry(holdings[0], date(2024, 2, 15), two_fund_data)

        assert entry.portfolio_fund_id == "pf-a"
        assert entry.fund_name == "Alpha Fund"
        assert entry.shares == Decimal("6.00")
        assert entry.price == Decimal("150.00")
        assert entry.value == Decimal("900.00")
        assert entry.cost == Decimal("600.00")
        assert entry.realized_gain == Decimal("200.00")
        assert entry.unrealized_gain == Decimal("300.00")
        assert entry.total_gain_loss == Decimal("500.00")

    def test_realized_gains_are_matched_by_fund(self, builder, holdings, two_fund_data):
        """Beta has no sales; Alpha's realized gain is not attributed to it."""
        entry = builder.build_fund_entry(holdings[1], date(2024, 2, 15), two_fund_data)

        assert entry.realized_gain == Decimal("0.00")

    def test_fund_entry_before_first_transaction_is_zero(self, builder, holdings, two_fund_data):
        entry = builder.build_fund_entry(holdings[1], date(2024, 1, 10), two_fund_data)

        assert entry.shares == Decimal("0.00")
        assert entry.value == Decimal("0.00")
        assert entry.cost == Decimal("0.00")

    def test_fund_valuation_uses_latest_price(self, builder, holdings, two_fund_data):
        valuation = builder.build_fund_valuation(holdings[0], date(2024, 1, 10), two_fund_data)

        assert valuation.latest_price == Decimal("150.00")
        assert valuation.current_value == Decimal("1500.00")
        assert valuation.average_cost == Decimal("100.00")

    def test_average_cost_divides_by_rounded_shares(self, builder):
        """1/3 share rounds to 0.33; average cost is cost / 0.33."""
        holding = PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund")
        data = PortfolioData(
            portfolio_funds=[holding],
            transactions_by_holding={
                "pf-a": [
                    txn("a1", "pf-a", date(2024, 1, 1), TransactionType.BUY, "0.333333", "30"),
                ],
            },
        )

        valuation = builder.build_fund_valuation(holding, date(2024, 1, 1), data)

        assert valuation.shares == Decimal("0.33")
        assert valuation.total_cost == Decimal("10.00")
        assert valuation.average_cost == Decimal("30.30")

    def test_average_cost_is_zero_without_shares(self, builder):
        holding = PortfolioFundInfo("pf-a", "p-1", "fund-a", "Alpha Fund")
        data = PortfolioData(portfolio_funds=[holding], transactions_by_holding={"pf-a": []})

        valuation = builder.build_fund_valuation(holding, date(2024, 1, 1), data)

        assert valuation.shares == Decimal("0.00")
        assert valuation.average_cost == Decimal("0.00")
        assert valuation.latest_price == Decimal("0.00")

    def test_fund_entry_from_metrics(self, builder, holdings):
        metrics = FundMetrics(
            portfolio_fund_id="pf-a",
            fund_id="fund-a",
            shares=Decimal("1.005"),
            cost=Decimal("10"),
            latest_price=Decimal("12.5"),
            dividends=Decimal("0"),
            value=Decimal("12.5625"),
            unrealized_gain=Decimal("2.5625"),
            fees=Decimal("0.125"),
        )

        entry = builder.fund_entry(holdings[0], metrics, Decimal("1"), RealizedGainTotals.zero())

        assert entry.shares == Decimal("1.01")
        assert entry.value == Decimal("12.56")
        assert entry.fees == Decimal("0.13")
        assert entry.dividends == Decimal("1.00")
        assert entry.total_gain_loss == Decimal("2.56")
