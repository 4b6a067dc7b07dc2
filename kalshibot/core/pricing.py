from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional


PRICE_MIN = Decimal("0")
PRICE_MAX = Decimal("1")
PRICE_QUANT = Decimal("0.0001")


def parse_price(raw: Any) -> Optional[Decimal]:
    """Parse an exchange dollar string (e.g. "0.4800") into a Decimal.

    Returns None for missing, unparsable, non-finite or out-of-range values.
    Floats are routed through str() so 0.1 stays 0.1.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return None
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    if not is_valid_price(value):
        return None
    return value


def is_valid_price(price: Decimal) -> bool:
    return PRICE_MIN <= price <= PRICE_MAX


def to_decimal(raw: Any, field: str = "value") -> Decimal:
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{field}: not a decimal number: {raw!r}") from e
    if not value.is_finite():
        raise ValueError(f"{field}: not a finite number: {raw!r}")
    return value


def format_price(price: Decimal | None) -> str:
    if price is None:
        return "-"
    return str(price.quantize(PRICE_QUANT))
