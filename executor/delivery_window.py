import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from models.workflow import DeliveryWindow, WEEKDAYS
from utils.formatting import resolve_timezone

logger = logging.getLogger("automation_service")


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def is_within_window(window: Optional[DeliveryWindow], moment: datetime, default_timezone: str) -> bool:
    """True when `moment` falls on an allowed day between start_time and end_time (local)."""
    if window is None or not window.enabled:
        return True
    local = moment.astimezone(resolve_timezone(window.timezone, default_timezone))
    if WEEKDAYS[local.weekday()] not in window.allowed_days:
        return False
    return _parse_hhmm(window.start_time) <= local.time().replace(tzinfo=None) < _parse_hhmm(window.end_time)


def next_delivery_time(window: Optional[DeliveryWindow], moment: datetime, default_timezone: str) -> datetime:
    """
    Returns `moment` if it is inside the window, else the next opening.

    The result is always UTC. A window with no allowed days, or one whose end
    is not after its start, does not hold anything back.
    """
    if window is None or not window.enabled:
        return moment.astimezone(timezone.utc)

    start, end = _parse_hhmm(window.start_time), _parse_hhmm(window.end_time)
    if not window.allowed_days or end <= start:
        logger.warning(f"Ignoring unusable delivery window: {window.model_dump()}")
        return moment.astimezone(timezone.utc)

    tz = resolve_timezone(window.timezone, default_timezone)
    local = moment.astimezone(tz)
    for offset in range(8):
        day = local.date() + timedelta(days=offset)
        if WEEKDAYS[day.weekday()] not in window.allowed_days:
            continue
        opening = datetime.combine(day, start, tzinfo=tz)
        closing = datetime.combine(day, end, tzinfo=tz)
        if offset == 0 and opening <= local < closing:
            return moment.astimezone(timezone.utc)
        if local < opening:
            return opening.astimezone(timezone.utc)
    # Not reached while at least one day is allowed.
    return moment.astimezone(timezone.utc)
