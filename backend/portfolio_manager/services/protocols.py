# backend/portfolio_manager/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- The SQLAlchemy-backed collaborators satisfy them without inheritance
- Test fakes work without touching a database
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from portfolio_manager.models import Portfolio
    from portfolio_manager.services.valuation.types import (
        FundSnapshot,
        PortfolioData,
        PortfolioSnapshot,
    )


class PortfolioDataLoaderProtocol(Protocol):
    """Interface required by ValuationService for loading replay inputs."""

    def get_portfolio(self, db: Session, portfolio_id: str) -> Portfolio | None:
        ...

    def load_active_portfolios(self, db: Session) -> list[Portfolio]:
        ...

    def load_for_portfolios(
        self,
        db: Session,
        portfolios: list[Portfolio],
        end_date: date,
    ) -> PortfolioData:
        ...


class SnapshotStoreProtocol(Protocol):
    """Interface required by ValuationService for the materialized fast path."""

    def get_portfolio_history(
        self,
        db: Session,
        portfolio_ids: list[str],
        start_date: date,
        end_date: date,
    ) -> list[PortfolioSnapshot]:
        ...

    def get_fund_history(
        self,
        db: Session,
        portfolio_id: str,
        start_date: date,
        end_date: date,
    ) -> list[FundSnapshot]:
        ...
