# backend/portfolio_manager/services/__init__.py
"""
Service layer for the portfolio valuation engine.

Usage:
    from portfolio_manager.services.valuation import ValuationService
    from portfolio_manager.services.exceptions import PortfolioNotFoundError
"""
