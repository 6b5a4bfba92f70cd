"""Validation of manually entered expense data."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from .models import (
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_PRICE_DIGITS_AFTER_DECIMAL,
    MAX_PRICE_DIGITS_BEFORE_DECIMAL,
)


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    field: str
    message: str


def validate_expense_input(
    name: Optional[str],
    price_text: Optional[str],
    description: Optional[str] = "",
) -> List[ValidationIssue]:
    """Validate the entry form and return the problems in field order.

    An empty list means the data can be saved.  The first issue names the
    field the user should be sent back to.
    """

    issues: List[ValidationIssue] = []

    stripped_name = (name or "").strip()
    if not stripped_name:
        issues.append(ValidationIssue("name", "Name is required"))
    elif len(stripped_name) > MAX_NAME_LENGTH:
        issues.append(ValidationIssue("name", f"Name must be {MAX_NAME_LENGTH} characters or less"))

    if not (price_text or "").strip():
        issues.append(ValidationIssue("price", "Price is required"))
    else:
        price = parse_price_text(price_text)
        if price is None:
            issues.append(ValidationIssue("price", "Price must be a number"))
        elif price < 0:
            issues.append(ValidationIssue("price", "Price cannot be negative"))
        elif not _within_digit_limits(price_text):
            issues.append(
                ValidationIssue(
                    "price",
                    f"Price allows {MAX_PRICE_DIGITS_BEFORE_DECIMAL} digits before "
                    f"and {MAX_PRICE_DIGITS_AFTER_DECIMAL} after the decimal point",
                )
            )

    if len(description or "") > MAX_DESCRIPTION_LENGTH:
        issues.append(
            ValidationIssue("description", f"Description must be {MAX_DESCRIPTION_LENGTH} characters or less")
        )

    return issues


def parse_price_text(text: Optional[str]) -> Optional[Decimal]:
    """Parse user-typed price text, accepting ``,`` as the decimal separator."""

    if text is None:
        return None
    normalised = text.strip().replace(",", ".")
    if not normalised:
        return None
    try:
        price = Decimal(normalised)
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None
    return price


def _within_digit_limits(text: str) -> bool:
    normalised = text.strip().replace(",", ".").lstrip("+-")
    whole, _, fraction = normalised.partition(".")
    return len(whole) <= MAX_PRICE_DIGITS_BEFORE_DECIMAL and len(fraction) <= MAX_PRICE_DIGITS_AFTER_DECIMAL
