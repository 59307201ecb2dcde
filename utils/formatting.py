import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from utils.time_utils import parse_datetime

logger = logging.getLogger("automation_service")

DEFAULT_TIMEZONE = "America/New_York"
DATE_FORMAT = "%b %d, %Y"
TIME_FORMAT = "%I:%M %p"

_CENT = Decimal("0.01")


def format_currency(value: Any, symbol: str = "$") -> str:
    """Renders a money amount with exactly two decimals, e.g. $1,234.50."""
    try:
        amount = Decimal(str(value if value not in (None, "") else 0))
    except (InvalidOperation, ValueError):
        logger.warning(f"Cannot format '{value}' as currency, using 0.00")
        amount = Decimal(0)
    amount = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def resolve_timezone(name: Optional[str], fallback: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    for candidate in (name, fallback, DEFAULT_TIMEZONE):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{candidate}'")
    return ZoneInfo("UTC")


def _localize(value: Any, tz_name: Optional[str]) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and len(value) == 10:
        # Bare calendar dates carry no instant, so no timezone shift applies.
        try:
            d = date.fromisoformat(value)
            return datetime(d.year, d.month, d.day)
        except ValueError:
            pass
    try:
        dt = parse_datetime(value)
    except ValueError:
        logger.warning(f"Cannot parse '{value}' as a date")
        return None
    return dt.astimezone(resolve_timezone(tz_name))


def format_date(value: Any, tz_name: Optional[str] = None, fmt: str = DATE_FORMAT) -> str:
    """Renders a date in the organization's timezone; empty string when absent."""
    dt = _localize(value, tz_name)
    return dt.strftime(fmt) if dt else ""


def format_time(value: Any, tz_name: Optional[str] = None, fmt: str = TIME_FORMAT) -> str:
    dt = _localize(value, tz_name)
    return dt.strftime(fmt) if dt else ""
