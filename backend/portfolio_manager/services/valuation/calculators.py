# backend/portfolio_manager/services/valuation/calculators.py
"""
Point-in-time valuation calculators.

Each calculator does one thing:
- FundMetricsCalculator: Replays one holding's transactions and values it
- DividendCalculator: Reinvested shares and dividend cash as of a date
- RealizedGainCalculator: Realized results from precomputed sale records

Design Principles:
- Stateless (no instance state beyond configuration flags)
- Receives all data explicitly, never touches the database
- Inputs are sorted ascending by date; every scan stops at the first
  record dated after the target date
- Uses Decimal for ALL financial calculations

Usage:
    metrics_calc = FundMetricsCalculator()
    metrics = metrics_calc.calculate(
        portfolio_fund_id="pf-1",
        fund_id="fund-1",
        target_date=date(2024, 6, 30),
        transactions=transactions,
        reinvested_shares=Decimal("0"),
        prices=prices,
    )
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_manager.models import TransactionType
from portfolio_manager.services.exceptions import (
    UnknownTransactionTypeError,
    UnresolvedReinvestmentError,
)
from portfolio_manager.services.valuation.types import (
    FundMetrics,
    FundPosition,
    RealizedGainTotals,
)
from portfolio_manager.utils.date_utils import to_utc_date
from portfolio_manager.utils.money import ZERO, to_decimal

if TYPE_CHECKING:
    from portfolio_manager.models import Dividend, FundPrice, RealizedGainLoss, Transaction

logger = logging.getLogger(__name__)


def _transaction_type(txn: Transaction) -> TransactionType:
    """Coerce the stored type (enum member or raw string) to TransactionType."""
    try:
        return TransactionType(txn.type)
    except ValueError:
        raise UnknownTransactionTypeError(txn.type, getattr(txn, "id", None)) from None


# =============================================================================
# FUND METRICS CALCULATOR
# =============================================================================

class FundMetricsCalculator:
    """
    Calculates shares, cost basis, value and gains for one holding.

    Transaction effects:
        BUY:      shares += s;  cost += s × cps
        SELL:     shares -= s;  cost scaled by remaining/previous shares,
                  or reset to 0 once no shares remain
        DIVIDEND: dividends += s × cps (shares unchanged)
        FEE:      cost += cps;  fees += cps

    Reinvesting a dividend records a DIVIDEND transaction, which does not
    add shares here. Those shares arrive as the reinvested-share baseline
    supplied by the caller, so a sell's proportional cost reduction also
    accounts for them.
    """

    def calculate(
            self,
            portfolio_fund_id: str,
            fund_id: str,
            target_date: date,
            transactions: list[Transaction],
            reinvested_shares: Decimal,
            prices: list[FundPrice],
            use_latest_price: bool = False,
    ) -> FundMetrics:
        """
        Replay transactions up to target_date and value the result.

        Args:
            portfolio_fund_id: Holding being valued
            fund_id: Fund of the holding (used for price lookup by callers)
            target_date: Valuation date (inclusive)
            transactions: Holding's transactions, sorted by date
            reinvested_shares: Baseline shares from reinvested dividends
            prices: Fund's prices, sorted by date
            use_latest_price: Value at the last price in the list regardless
                              of its date (used for "current" views)

        Returns:
            FundMetrics (unrounded)

        Raises:
            UnknownTransactionTypeError: If a transaction up to target_date
                                         has an unrecognised type
        """
        position = FundPosition(shares=to_decimal(reinvested_shares))
        target_date = to_utc_date(target_date)

        for txn in transactions:
            if to_utc_date(txn.date) > target_date:
                break
            self.apply_transaction(position, txn)

        if use_latest_price:
            price = self.latest_price(prices)
        else:
            price = self.price_for_date(prices, target_date)

        return self.snapshot(portfolio_fund_id, fund_id, position, price)

    def apply_transaction(self, position: FundPosition, txn: Transaction) -> None:
        """
        Apply a single transaction to a running position (mutates position).

        Used by the rolling state pattern in the history calculator so the
        incremental and from-scratch paths share the exact same arithmetic.
        """
        txn_type = _transaction_type(txn)
        shares = to_decimal(txn.shares)
        cost_per_share = to_decimal(txn.cost_per_share)

        if txn_type == TransactionType.BUY:
            position.shares += shares
            position.cost += shares * cost_per_share

        elif txn_type == TransactionType.SELL:
            position.shares -= shares
            if position.shares > ZERO:
                # shares + sold = holding size right before the sale
                position.cost = position.cost * (position.shares / (position.shares + shares))
            else:
                position.cost = ZERO

        elif txn_type == TransactionType.DIVIDEND:
            position.dividends += shares * cost_per_share

        elif txn_type == TransactionType.FEE:
            position.cost += cost_per_share
            position.fees += cost_per_share

    def snapshot(
            self,
            portfolio_fund_id: str,
            fund_id: str,
            position: FundPosition,
            price: Decimal,
    ) -> FundMetrics:
        """Value a position at a price."""
        value = position.shares * price if price > ZERO else ZERO

        return FundMetrics(
            portfolio_fund_id=portfolio_fund_id,
            fund_id=fund_id,
            shares=position.shares,
            cost=position.cost,
            latest_price=price,
            dividends=position.dividends,
            value=value,
            unrealized_gain=value - position.cost,
            fees=position.fees,
        )

    def price_for_date(self, prices: list[FundPrice], target_date: date) -> Decimal:
        """
        Most recent price on or before target_date (forward fill).

        Returns:
            The price, or 0 when the fund has no price yet
        """
        price = ZERO
        for fund_price in prices:
            if to_utc_date(fund_price.date) > target_date:
                break
            price = to_decimal(fund_price.price)
        return price

    def latest_price(self, prices: list[FundPrice]) -> Decimal:
        """Last price in the list regardless of date, 0 if empty."""
        if not prices:
            return ZERO
        return to_decimal(prices[-1].price)


# =============================================================================
# DIVIDEND CALCULATOR
# =============================================================================

class DividendCalculator:
    """
    Resolves dividend reinvestment and sums dividend cash.

    A dividend may reference the DIVIDEND transaction that reinvested it.
    The shares of that transaction are reported as a per-holding baseline
    because the transaction itself does not add shares.

    Attributes:
        strict: Raise UnresolvedReinvestmentError when a reference cannot be
                resolved instead of counting it as zero shares
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict

    def reinvested_shares(
            self,
            dividends: list[Dividend],
            transactions: list[Transaction],
            target_date: date,
    ) -> Decimal:
        """
        Shares bought through reinvestment of dividends up to target_date.

        Args:
            dividends: Dividends sorted by ex-dividend date
            transactions: Transactions searched for the referenced reinvestments
            target_date: Cut-off date (inclusive, on ex-dividend date)

        Returns:
            Sum of shares of the resolved reinvestment transactions
        """
        target_date = to_utc_date(target_date)
        transactions_by_id = self.index_transactions(transactions)
        total = ZERO

        for dividend in dividends:
            if to_utc_date(dividend.ex_dividend_date) > target_date:
                break
            shares = self.shares_for_dividend(dividend, transactions_by_id)
            if shares is not None:
                total += shares

        return total

    def reinvested_shares_by_holding(
            self,
            dividends_by_holding: dict[str, list[Dividend]],
            transactions: list[Transaction],
            target_date: date,
    ) -> dict[str, Decimal]:
        """
        reinvested_shares() for every holding key.

        Args:
            dividends_by_holding: portfolio_fund_id -> dividends by ex-date
            transactions: Transactions searched for the referenced reinvestments
            target_date: Cut-off date

        Returns:
            portfolio_fund_id -> reinvested shares
        """
        return {
            holding_id: self.reinvested_shares(dividends, transactions, target_date)
            for holding_id, dividends in dividends_by_holding.items()
        }

    def dividend_amount(self, dividends: list[Dividend], target_date: date) -> Decimal:
        """
        Total dividend cash with ex-dividend date on or before target_date.

        Args:
            dividends: Dividends sorted by ex-dividend date

        Returns:
            Sum of total_amount, 0 for an empty list
        """
        target_date = to_utc_date(target_date)
        total = ZERO

        for dividend in dividends:
            if to_utc_date(dividend.ex_dividend_date) > target_date:
                break
            total += to_decimal(dividend.total_amount)

        return total

    def shares_for_dividend(
            self,
            dividend: Dividend,
            transactions_by_id: dict[str, Transaction],
    ) -> Decimal | None:
        """
        Shares of the reinvestment transaction a dividend points at.

        Returns:
            The shares, or None when the dividend references nothing or the
            reference cannot be resolved (non-strict mode)

        Raises:
            UnresolvedReinvestmentError: Strict mode and unresolvable reference
        """
        reference = dividend.reinvestment_transaction_id
        if not reference:
            return None

        txn = transactions_by_id.get(reference)
        if txn is None:
            if self.strict:
                raise UnresolvedReinvestmentError(dividend.id, reference)
            logger.debug(
                f"Dividend {dividend.id} references missing transaction {reference}, "
                f"counting 0 reinvested shares"
            )
            return None

        return to_decimal(txn.shares)

    @staticmethod
    def index_transactions(transactions: list[Transaction]) -> dict[str, Transaction]:
        """Map id -> transaction, keeping the first occurrence of an id."""
        index: dict[str, Transaction] = {}
        for txn in transactions:
            index.setdefault(txn.id, txn)
        return index


# =============================================================================
# REALIZED GAIN CALCULATOR
# =============================================================================

class RealizedGainCalculator:
    """
    Sums precomputed sale records.

    Realized gains are calculated once when a sell is recorded; replay only
    needs the running totals as of a date.
    """

    def calculate(
            self,
            records: list[RealizedGainLoss],
            target_date: date,
    ) -> RealizedGainTotals:
        """
        Totals of realized gain/loss, sale proceeds and cost basis up to target_date.

        Args:
            records: Sale records sorted by transaction date

        Returns:
            RealizedGainTotals, all zero for an empty list
        """
        target_date = to_utc_date(target_date)
        realized = ZERO
        proceeds = ZERO
        cost_basis = ZERO

        for record in records:
            if to_utc_date(record.transaction_date) > target_date:
                break
            realized += to_decimal(record.realized_gain_loss)
            proceeds += to_decimal(record.sale_proceeds)
            cost_basis += to_decimal(record.cost_basis)

        return RealizedGainTotals(
            realized_gain_loss=realized,
            sale_proceeds=proceeds,
            cost_basis=cost_basis,
        )
