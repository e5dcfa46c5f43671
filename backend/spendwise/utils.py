import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from zoneinfo import ZoneInfo

from .config import settings

MONEY_QUANT = Decimal("0.01")


def quantize_amount(value: Decimal) -> Decimal:
    """Normalize money values to NUMERIC(12,2) precision."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def money(value: Decimal) -> str:
    """Serialize Decimal values to fixed 2-decimal amount strings."""
    return str(quantize_amount(value))


def parse_amount_text(text: str) -> Decimal:
    """
    '-1,234.50 EUR' -> Decimal('-1234.50')
    Everything except digits, '.' and '-' is stripped before parsing.
    """
    cleaned = re.sub(r"[^\d.-]", "", str(text))
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError(f"Unparseable amount: {text!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Unparseable amount: {text!r}")
    return value


def local_now() -> datetime:
    """Current wall-clock time in the configured zone, as a naive datetime."""
    return datetime.now(ZoneInfo(settings.timezone)).replace(tzinfo=None)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive wall-clock time in the configured zone."""
    if value.tzinfo is None:
        return value
    return value.astimezone(ZoneInfo(settings.timezone)).replace(tzinfo=None)
