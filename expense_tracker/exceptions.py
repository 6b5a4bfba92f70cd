"""Domain-specific exceptions for the expense_tracker services."""
from __future__ import annotations

from typing import Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .validators import ValidationIssue


class ExpenseTrackerError(Exception):
    """Base class for every error raised on purpose by this package."""


class ExpenseValidationError(ExpenseTrackerError, ValueError):
    """Raised when manual entry data fails validation.

    ``issues`` is ordered by form field, so the first entry names the field
    that should receive focus.
    """

    def __init__(self, issues: Sequence["ValidationIssue"]) -> None:
        self.issues = list(issues)
        message = "; ".join(issue.message for issue in self.issues) or "Invalid expense"
        super().__init__(message)

    @property
    def focus_field(self) -> str | None:
        return self.issues[0].field if self.issues else None


class ExpenseNotFoundError(ExpenseTrackerError, LookupError):
    """Raised when no stored expense carries the requested identifier."""


class UnknownCurrencyError(ExpenseTrackerError, ValueError):
    """Raised when a currency code is not part of the catalog."""


class RateFetchError(ExpenseTrackerError):
    """Raised when no exchange-rate source returned a usable document."""


class ImportFailedError(ExpenseTrackerError):
    """Raised when an import file cannot be parsed. Nothing is written."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NothingToExportError(ExpenseTrackerError):
    """Raised when the requested export selection contains no expenses."""
