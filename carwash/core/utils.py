"""
Utility helpers shared across storage back ends.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable


def new_id() -> str:
    """Random 128-bit identifier in canonical UUID text form."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))


def to_decimal(value: str | int | Decimal | None) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc


def decimal_text(value: Decimal) -> str:
    """Render a Decimal as plain text without exponent notation."""
    text = format(value, "f")
    return "0" if text in {"-0", ""} else text


def line_total(price: str, quantity: int) -> Decimal:
    return to_decimal(price) * int(quantity)


def sum_amounts(amounts: Iterable[Decimal]) -> str:
    return decimal_text(sum(amounts, Decimal("0")))


def alert_status(stock: int, minimum: int) -> str:
    """Inventory alert level derived from current stock against its minimum."""
    if stock <= 0:
        return "critico"
    if stock <= minimum:
        return "bajo"
    return "normal"
