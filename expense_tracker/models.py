"""Domain models used by the expense_tracker backend.

The classes defined here are intentionally lightweight data containers that do
not know anything about persistence or transport concerns.  Decoding of loosely
shaped field maps (stored blobs, imported files) lives here too so every
adapter applies the same rules.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID, uuid4

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"

MAX_NAME_LENGTH = 35
MAX_DESCRIPTION_LENGTH = 350
MAX_PRICE_DIGITS_BEFORE_DECIMAL = 12
MAX_PRICE_DIGITS_AFTER_DECIMAL = 2

REQUIRED_STRING_FIELDS = ("name", "description", "date", "time", "currency")


@dataclass(slots=True, eq=False)
class Expense:
    """A single recorded spending event.

    Equality and hashing only look at :attr:`id` so that edits and deletions
    can locate the stored record regardless of which fields changed.  Compare
    :meth:`to_dict` outputs when a field-by-field comparison is needed.
    """

    name: str
    price: Decimal
    description: str = ""
    date: str = ""
    time: str = ""
    currency: str = "USD"
    id: UUID = field(default_factory=uuid4)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Expense):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def parsed_date(self) -> Optional[date]:
        """Return :attr:`date` as a :class:`datetime.date` or ``None``."""

        return parse_date_string(self.date)

    def to_dict(self) -> dict[str, Any]:
        """Return the persisted field map. Prices are stored as floats."""

        return {
            "id": str(self.id),
            "name": self.name,
            "price": float(self.price),
            "description": self.description,
            "date": self.date,
            "time": self.time,
            "currency": self.currency,
        }


@dataclass(frozen=True, slots=True)
class Currency:
    """Static catalog entry for a supported display currency."""

    code: str
    symbol: str
    name: str
    flag: str = ""


class DecodeError(str, Enum):
    """Reasons a field map cannot be turned into an :class:`Expense`."""

    NOT_A_MAPPING = "not_a_mapping"
    MISSING_FIELD = "missing_field"
    INVALID_FIELD = "invalid_field"


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of :func:`decode_expense`: either an expense or an error."""

    expense: Optional[Expense] = None
    error: Optional[DecodeError] = None
    field: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.expense is not None


def decode_expense(payload: object, default_currency: str = "USD") -> DecodeResult:
    """Decode a stored or imported field map into an :class:`Expense`.

    String fields are mandatory.  A missing or malformed ``id`` is replaced by
    a freshly minted one and a price that cannot be read decodes to zero, the
    same leniency the stored format has always had.  ``default_currency`` only
    applies when the currency is present but blank.
    """

    if not isinstance(payload, Mapping):
        return DecodeResult(error=DecodeError.NOT_A_MAPPING)

    values: dict[str, str] = {}
    for name in REQUIRED_STRING_FIELDS:
        if name not in payload or payload[name] is None:
            return DecodeResult(error=DecodeError.MISSING_FIELD, field=name)
        value = payload[name]
        if not isinstance(value, str):
            return DecodeResult(error=DecodeError.INVALID_FIELD, field=name)
        values[name] = value

    expense = Expense(
        id=parse_uuid(payload.get("id")) or uuid4(),
        name=values["name"],
        price=_price_or_zero(payload.get("price")),
        description=values["description"],
        date=values["date"],
        time=values["time"],
        currency=values["currency"].strip().upper() or default_currency,
    )
    return DecodeResult(expense=expense)


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def parse_decimal(value: object) -> Decimal | None:
    """Convert numbers and numeric strings to :class:`Decimal`.

    Floats go through ``repr`` so that ``5.25`` becomes ``Decimal("5.25")``
    rather than its binary expansion.  Booleans and non-finite values are
    rejected.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, int):
        parsed = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            return None
        parsed = Decimal(repr(value))
    elif isinstance(value, str):
        stringified = value.strip()
        if not stringified:
            return None
        try:
            parsed = Decimal(stringified)
        except InvalidOperation:
            return None
    else:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def _price_or_zero(value: object) -> Decimal:
    parsed = parse_decimal(value)
    return Decimal("0") if parsed is None else parsed


def parse_uuid(value: object) -> UUID | None:
    if isinstance(value, UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return UUID(value.strip())
    except ValueError:
        return None


def parse_date_string(value: object) -> date | None:
    """Parse a ``yyyy-MM-dd`` string; anything else yields ``None``."""

    if not isinstance(value, str):
        return None
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        return None


def parse_time_string(value: object) -> str | None:
    """Normalise ``HH:mm`` or ``HH:mm:ss`` to ``HH:mm``."""

    if not isinstance(value, str):
        return None
    stringified = value.strip()
    for pattern in (TIME_FORMAT, "%H:%M:%S"):
        try:
            return datetime.strptime(stringified, pattern).strftime(TIME_FORMAT)
        except ValueError:
            continue
    return None


__all__ = [
    "DATE_FORMAT",
    "TIME_FORMAT",
    "MAX_NAME_LENGTH",
    "MAX_DESCRIPTION_LENGTH",
    "MAX_PRICE_DIGITS_BEFORE_DECIMAL",
    "MAX_PRICE_DIGITS_AFTER_DECIMAL",
    "Expense",
    "Currency",
    "DecodeError",
    "DecodeResult",
    "decode_expense",
    "parse_decimal",
    "parse_uuid",
    "parse_date_string",
    "parse_time_string",
]
