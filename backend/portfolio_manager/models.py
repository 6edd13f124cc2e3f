# backend/portfolio_manager/models.py
import datetime as dt
import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, Boolean, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Enum values match the strings stored by the transaction importers
class TransactionType(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    FEE = "fee"


class ReinvestmentStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


class DividendType(str, enum.Enum):
    NONE = "none"
    CASH = "cash"
    STOCK = "stock"


class Portfolio(Base):
    __tablename__ = "portfolio"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String, default="")
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    # Hidden portfolios still have history, they are only left out of "all portfolios" views
    exclude_from_overview: Mapped[bool] = mapped_column(Boolean, default=False)

    portfolio_funds: Mapped[list["PortfolioFund"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan"
    )


class Fund(Base):
    __tablename__ = "fund"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100))
    isin: Mapped[str] = mapped_column(String(12), unique=True)
    symbol: Mapped[str | None] = mapped_column(String(10), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    exchange: Mapped[str] = mapped_column(String(50), default="")
    investment_type: Mapped[str] = mapped_column(String(10), default="fund")
    dividend_type: Mapped[DividendType] = mapped_column(Enum(DividendType), default=DividendType.NONE)

    prices: Mapped[list["FundPrice"]] = relationship(
        back_populates="fund",
        cascade="all, delete-orphan"
    )


class PortfolioFund(Base):
    """
    A fund held inside a portfolio (a "holding").

    Transactions and dividends hang off the holding rather than the fund, so
    the same fund can be held independently in several portfolios.
    """
    __tablename__ = "portfolio_fund"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "fund_id", name="uq_portfolio_fund"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_id: Mapped[str] = mapped_column(ForeignKey("portfolio.id"), index=True)
    fund_id: Mapped[str] = mapped_column(ForeignKey("fund.id"), index=True)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="portfolio_funds")
    fund: Mapped["Fund"] = relationship()
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="portfolio_fund",
        cascade="all, delete-orphan"
    )


class Transaction(Base):
    __tablename__ = "transaction"
    __table_args__ = (
        Index("ix_transaction_portfolio_fund_date", "portfolio_fund_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_fund_id: Mapped[str] = mapped_column(ForeignKey("portfolio_fund.id"))
    date: Mapped[dt.date] = mapped_column(Date)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    shares: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    # For fee transactions this holds the fee amount itself
    cost_per_share: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    portfolio_fund: Mapped["PortfolioFund"] = relationship(back_populates="transactions")


class Dividend(Base):
    __tablename__ = "dividend"
    __table_args__ = (
        Index("ix_dividend_portfolio_fund_ex_date", "portfolio_fund_id", "ex_dividend_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    fund_id: Mapped[str] = mapped_column(ForeignKey("fund.id"))
    portfolio_fund_id: Mapped[str] = mapped_column(ForeignKey("portfolio_fund.id"))
    record_date: Mapped[date] = mapped_column(Date)
    ex_dividend_date: Mapped[date] = mapped_column(Date)
    shares_owned: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    dividend_per_share: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    reinvestment_status: Mapped[ReinvestmentStatus] = mapped_column(
        Enum(ReinvestmentStatus),
        default=ReinvestmentStatus.PENDING
    )
    buy_order_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # Not a foreign key: the referenced buy may be deleted independently
    reinvestment_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class FundPrice(Base):
    __tablename__ = "fund_price"
    __table_args__ = (
        UniqueConstraint("fund_id", "date", name="uq_fund_price_fund_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    fund_id: Mapped[str] = mapped_column(ForeignKey("fund.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date)
    price: Mapped[Decimal] = mapped_column(Numeric(20, 8))

    fund: Mapped["Fund"] = relationship(back_populates="prices")


class RealizedGainLoss(Base):
    """Precomputed result of one sale, written when the sell transaction is recorded."""
    __tablename__ = "realized_gain_loss"
    __table_args__ = (
        Index("ix_realized_gain_loss_portfolio_date", "portfolio_id", "transaction_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_id: Mapped[str] = mapped_column(ForeignKey("portfolio.id"))
    fund_id: Mapped[str] = mapped_column(ForeignKey("fund.id"))
    transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date)
    shares_sold: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    cost_basis: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    sale_proceeds: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    realized_gain_loss: Mapped[Decimal] = mapped_column(Numeric(20, 8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class FundHistoryMaterialized(Base):
    """
    Precomputed per-holding, per-day valuation rows.

    Written by a background job; the valuation engine only reads it.
    Amounts are unrounded holding metrics; rounding happens on read.
    """
    __tablename__ = "fund_history_materialized"
    __table_args__ = (
        UniqueConstraint("portfolio_fund_id", "date", name="uq_fund_history_pf_date"),
        Index("ix_fund_history_date", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    portfolio_fund_id: Mapped[str] = mapped_column(ForeignKey("portfolio_fund.id"))
    fund_id: Mapped[str] = mapped_column(ForeignKey("fund.id"))
    date: Mapped[dt.date] = mapped_column(Date)
    shares: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    price: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    value: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    cost: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    realized_gain: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    unrealized_gain: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    total_gain_loss: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    dividends: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    fees: Mapped[Decimal] = mapped_column(Numeric(20, 8), default=Decimal("0"))
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
