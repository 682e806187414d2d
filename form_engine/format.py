"""
Formatting of computed values for display.

Supported formats are ``decimal(N)``, ``currency``, ``percent``, ``date``
and ``datetime``. Values that do not fit the requested format fall back
to plain string conversion.
"""

import re
import logging
from datetime import date, datetime
from typing import Any, Optional

from .feel import is_number

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("currency", "percent", "date", "datetime")

DECIMAL_FORMAT_PATTERN = re.compile(r'^decimal\((\d+)\)$')

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
}


def is_valid_format(format_spec: str) -> bool:
    """Check whether a format string is one of the supported formats."""
    return format_spec in SUPPORTED_FORMATS or parse_decimal_format(format_spec) is not None


def parse_decimal_format(format_spec: str) -> Optional[int]:
    """
    Extract the precision from a ``decimal(N)`` format.

    Returns:
        Number of decimal places, or None for other formats
    """
    match = DECIMAL_FORMAT_PATTERN.match(format_spec or "")
    return int(match.group(1)) if match else None


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_currency(value, currency: str) -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    amount = f"{abs(value):,.2f}"
    sign = "-" if value < 0 else ""
    if symbol:
        return f"{sign}{symbol}{amount}"
    return f"{sign}{currency.upper()} {amount}"


def _format_percent(value) -> str:
    text = f"{round(value * 100, 2):,.2f}".rstrip("0").rstrip(".")
    return f"{'0' if text in ('', '-0') else text}%"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_value(value: Any, format_spec: Optional[str] = None,
                 currency: str = "USD", null_display: Optional[str] = None) -> str:
    """
    Format a value according to a format specification.

    Args:
        value: Value to format
        format_spec: ``decimal(N)``, ``currency``, ``percent``, ``date``, ``datetime`` or None
        currency: ISO currency code used by the currency format
        null_display: Text to show for None (defaults to ``str(None)``)

    Returns:
        Formatted string

    Examples:
        format_value(1234.567, "decimal(2)")  # "1234.57"
        format_value(1234.5, "currency")       # "$1,234.50"
        format_value(0.156, "percent")         # "15.6%"
    """
    if value is None:
        return null_display if null_display is not None else str(value)

    if not format_spec:
        return _to_text(value)

    decimals = parse_decimal_format(format_spec)
    if decimals is not None:
        return f"{value:.{decimals}f}" if is_number(value) else _to_text(value)

    if format_spec == "currency":
        return _format_currency(value, currency) if is_number(value) else _to_text(value)

    if format_spec == "percent":
        return _format_percent(value) if is_number(value) else _to_text(value)

    if format_spec in ("date", "datetime"):
        moment = _parse_datetime(value)
        if moment is None:
            return _to_text(value)
        if format_spec == "date":
            return f"{moment.month}/{moment.day}/{moment.year}"
        hour = moment.hour % 12 or 12
        meridiem = "AM" if moment.hour < 12 else "PM"
        return f"{moment.month}/{moment.day}/{moment.year % 100:02d}, {hour}:{moment.minute:02d} {meridiem}"

    logger.debug(f"Unknown format '{format_spec}', using string conversion")
    return _to_text(value)
