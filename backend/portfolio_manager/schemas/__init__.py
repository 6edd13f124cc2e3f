# backend/portfolio_manager/schemas/__init__.py
"""Pydantic schemas for serializing valuation results."""
