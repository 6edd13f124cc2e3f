# backend/tests/conftest.py
"""
Pytest configuration and fixtures.

This module provides shared fixtures for all tests:
- Test environment settings (in-memory SQLite, no .env required)
- Database session fixtures
- ORM row factories for portfolios, funds, holdings and their history
"""

import os

os.environ["ENVIRONMENT"] = "test"

from datetime import date
from decimal import Decimal
from typing import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from portfolio_manager.models import (
    Base,
    Dividend,
    Fund,
    FundHistoryMaterialized,
    FundPrice,
    Portfolio,
    PortfolioFund,
    RealizedGainLoss,
    ReinvestmentStatus,
    Transaction,
    TransactionType,
)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="function")
def db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db(db_engine) -> Iterator[Session]:
    """Create a database session for testing."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# ORM FACTORIES
# =============================================================================

def create_portfolio(
        db: Session,
        name: str = "Retirement",
        is_archived: bool = False,
        exclude_from_overview: bool = False,
) -> Portfolio:
    portfolio = Portfolio(
        name=name,
        description=f"{name} portfolio",
        is_archived=is_archived,
        exclude_from_overview=exclude_from_overview,
    )
    db.add(portfolio)
    db.flush()
    return portfolio


def create_fund(db: Session, name: str = "World Index Fund", isin: str = "IE00B4L5Y983") -> Fund:
    fund = Fund(name=name, isin=isin, symbol=name[:4].upper(), currency="EUR", exchange="XAMS")
    db.add(fund)
    db.flush()
    return fund


def create_holding(db: Session, portfolio: Portfolio, fund: Fund) -> PortfolioFund:
    holding = PortfolioFund(portfolio_id=portfolio.id, fund_id=fund.id)
    db.add(holding)
    db.flush()
    return holding


def create_transaction(
        db: Session,
        holding: PortfolioFund,
        txn_date: date,
        txn_type: TransactionType,
        shares: str,
        cost_per_share: str,
) -> Transaction:
    txn = Transaction(
        portfolio_fund_id=holding.id,
        date=txn_date,
        type=txn_type,
        shares=Decimal(shares),
        cost_per_share=Decimal(cost_per_share),
    )
    db.add(txn)
    db.flush()
    return txn


def create_price(db: Session, fund: Fund, price_date: date, price: str) -> FundPrice:
    fund_price = FundPrice(fund_id=fund.id, date=price_date, price=Decimal(price))
    db.add(fund_price)
    db.flush()
    return fund_price


def create_dividend(
        db: Session,
        holding: PortfolioFund,
        ex_date: date,
        total_amount: str,
        reinvestment_transaction: Transaction | None = None,
) -> Dividend:
    dividend = Dividend(
        fund_id=holding.fund_id,
        portfolio_fund_id=holding.id,
        record_date=ex_date,
        ex_dividend_date=ex_date,
        shares_owned=Decimal("0"),
        dividend_per_share=Decimal("0"),
        total_amount=Decimal(total_amount),
        reinvestment_status=(
            ReinvestmentStatus.COMPLETED if reinvestment_transaction else ReinvestmentStatus.PENDING
        ),
        reinvestment_transaction_id=reinvestment_transaction.id if reinvestment_transaction else None,
    )
    db.add(dividend)
    db.flush()
    return dividend


def create_realized_gain(
        db: Session,
        portfolio: Portfolio,
        fund: Fund,
        sale_date: date,
        shares_sold: str,
        cost_basis: str,
        sale_proceeds: str,
) -> RealizedGainLoss:
    record = RealizedGainLoss(
        portfolio_id=portfolio.id,
        fund_id=fund.id,
        transaction_date=sale_date,
        shares_sold=Decimal(shares_sold),
        cost_basis=Decimal(cost_basis),
        sale_proceeds=Decimal(sale_proceeds),
        realized_gain_loss=Decimal(sale_proceeds) - Decimal(cost_basis),
    )
    db.add(record)
    db.flush()
    return record


def create_fund_snapshot(
        db: Session,
        holding: PortfolioFund,
        snapshot_date: date,
        shares: str,
        price: str,
        cost: str,
) -> FundHistoryMaterialized:
    value = Decimal(shares) * Decimal(price)
    row = FundHistoryMaterialized(
        portfolio_fund_id=holding.id,
        fund_id=holding.fund_id,
        date=snapshot_date,
        shares=Decimal(shares),
        price=Decimal(price),
        value=value,
        cost=Decimal(cost),
        realized_gain=Decimal("0"),
        unrealized_gain=value - Decimal(cost),
        total_gain_loss=value - Decimal(cost),
        dividends=Decimal("0"),
        fees=Decimal("0"),
    )
    db.add(row)
    db.flush()
    return row


# =============================================================================
# SAMPLE DATA
# =============================================================================

@pytest.fixture
def sample_portfolio(db):
    """
    One portfolio holding one fund:

        2024-01-01  buy 10 @ 100
        2024-01-02  price 120
        2024-02-01  sell 4 @ 150   (realized: cost 400, proceeds 600)
        2024-02-01  price 150
        2024-03-01  dividend 50, reinvested on 2024-03-05 as 1 share @ 50
    """
    portfolio = create_portfolio(db)
    fund = create_fund(db)
    holding = create_holding(db, portfolio, fund)

    create_transaction(db, holding, date(2024, 1, 1), TransactionType.BUY, "10", "100")
    create_transaction(db, holding, date(2024, 2, 1), TransactionType.SELL, "4", "150")
    reinvestment = create_transaction(db, holding, date(2024, 3, 5), TransactionType.DIVIDEND, "1", "50")

    create_price(db, fund, date(2024, 1, 2), "120")
    create_price(db, fund, date(2024, 2, 1), "150")

    create_dividend(db, holding, date(2024, 3, 1), "50", reinvestment_transaction=reinvestment)
    create_realized_gain(db, portfolio, fund, date(2024, 2, 1), "4", "400", "600")
    db.commit()

    return {"portfolio": portfolio, "fund": fund, "holding": holding}
