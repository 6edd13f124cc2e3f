# backend/portfolio_manager/services/exceptions.py
"""
Service layer exceptions.

These exceptions represent domain-specific errors and contain NO transport
knowledge. Whatever exposes the engine (an API, a CLI, a worker) maps them
to its own responses.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidDateRangeError
    ├── NotFoundError
    │   └── PortfolioNotFoundError
    ├── ValuationError
    │   ├── UnknownTransactionTypeError
    │   ├── UnresolvedReinvestmentError
    │   └── CalculationCancelledError
    └── SnapshotStoreError
"""

from datetime import date


class ServiceError(Exception):
    """
    Base exception for all service layer errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# =============================================================================
# VALIDATION ERRORS
# =============================================================================


class ValidationError(ServiceError):
    """
    Raised when input validation fails.

    Attributes:
        field: The field that failed validation (optional)
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class InvalidDateRangeError(ValidationError):
    """Raised when a requested start date lies after the requested end date."""

    def __init__(self, start_date: date, end_date: date) -> None:
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Start date {start_date} is after end date {end_date}",
            field="start_date",
        )


# =============================================================================
# NOT FOUND ERRORS
# =============================================================================


class NotFoundError(ServiceError):
    """
    Base exception for resource not found errors.

    Attributes:
        resource_type: Type of resource (e.g., "Portfolio")
        resource_id: Identifier of the resource
    """

    def __init__(
            self,
            message: str,
            resource_type: str | None = None,
            resource_id: int | str | None = None,
    ) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(message)


class PortfolioNotFoundError(NotFoundError):
    """Raised when a portfolio cannot be found."""

    def __init__(self, portfolio_id: str) -> None:
        self.portfolio_id = portfolio_id
        super().__init__(
            f"Portfolio {portfolio_id} not found",
            resource_type="Portfolio",
            resource_id=portfolio_id,
        )


# =============================================================================
# VALUATION ERRORS
# =============================================================================


class ValuationError(ServiceError):
    """Base exception for failures while replaying transaction history."""
    pass


class UnknownTransactionTypeError(ValuationError):
    """
    Raised when a transaction carries a type the replay does not understand.

    This aborts the whole calculation: skipping the row would silently
    produce wrong share counts for every later date.
    """

    def __init__(self, transaction_type: object, transaction_id: str | None = None) -> None:
        self.transaction_type = transaction_type
        self.transaction_id = transaction_id
        super().__init__(
            f"Unknown transaction type: {transaction_type!r}"
            + (f" (transaction {transaction_id})" if transaction_id else "")
        )


class UnresolvedReinvestmentError(ValuationError):
    """
    Raised in strict mode when a dividend points at a reinvestment
    transaction that is not among the holding's transactions.
    """

    def __init__(self, dividend_id: str, transaction_id: str) -> None:
        self.dividend_id = dividend_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Dividend {dividend_id} references reinvestment transaction "
            f"{transaction_id}, which does not exist"
        )


class CalculationCancelledError(ValuationError):
    """
    Raised when a history calculation is cancelled by its caller.

    Attributes:
        processed_days: Number of days completed before cancellation
    """

    def __init__(self, processed_days: int) -> None:
        self.processed_days = processed_days
        super().__init__(f"History calculation cancelled after {processed_days} day(s)")


# =============================================================================
# SNAPSHOT STORE ERRORS
# =============================================================================


class SnapshotStoreError(ServiceError):
    """
    Raised when the materialized snapshot store cannot be read.

    The valuation service treats this as a cache miss and replays live.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Snapshot store unavailable: {reason}")


__all__ = [
    # Base
    "ServiceError",
    # Validation
    "ValidationError",
    "InvalidDateRangeError",
    # Not Found
    "NotFoundError",
    "PortfolioNotFoundError",
    # Valuation
    "ValuationError",
    "UnknownTransactionTypeError",
    "UnresolvedReinvestmentError",
    "CalculationCancelledError",
    # Snapshot store
    "SnapshotStoreError",
]
