# src/greencard/dates.py
"""
Date helpers shared by the composer, velocity model and progress tracking.
Month arithmetic uses the mean Gregorian month (30.4375 days) so that
add_months and months_between are consistent with each other.
"""
import logging
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.4375

# Sentinel for a bulletin cell reading "Current": every priority date is on or before it.
CURRENT = date.max

_MONTHS = {
    'jan': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'may': 5, 'jun': 6,
    'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'nov': 11, 'dec': 12,
}

_BULLETIN_CELL = re.compile(r'^(\d{2})([A-Za-z]{3})(\d{2})$')        # 01FEB23
_MONTH_YEAR = re.compile(r'^([A-Za-z]{3,9})\.?\s+(\d{4})$')          # Jul 2013 / January 2020
# Two-digit bulletin years above this are 19xx
_CENTURY_PIVOT = 50


def parse_iso_date(value: Any) -> Optional[date]:
    """
    Parse an ISO date or datetime string.

    Returns None for empty or malformed input instead of raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.debug(f"Ignoring malformed date {value!r}")
        return None


def parse_month_year(text: str) -> Optional[date]:
    """Parse "Jul 2013" or "January 2020" into the first day of that month."""
    match = _MONTH_YEAR.match(text.strip())
    if not match:
        return None
    month = _MONTHS.get(match.group(1)[:3].lower())
    if month is None:
        return None
    return date(int(match.group(2)), month, 1)


def parse_cutoff(value: Any) -> Optional[date]:
    """
    Parse a visa bulletin cell.

    Accepts "C"/"Current" (returns CURRENT), ISO dates, bulletin-style
    "01FEB23" and "Jul 2013". Returns None when the cell cannot be read.
    """
    if value is None:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    if text.lower() in ("c", "current"):
        return CURRENT

    match = _BULLETIN_CELL.match(text)
    if match:
        month = _MONTHS.get(match.group(2).lower())
        if month is not None:
            try:
                yy = int(match.group(3))
                year = 1900 + yy if yy > _CENTURY_PIVOT else 2000 + yy
                return date(year, month, int(match.group(1)))
            except ValueError:
                pass

    month_year = parse_month_year(text)
    if month_year is not None:
        return month_year

    iso = parse_iso_date(text)
    if iso is not None:
        return iso

    logger.warning(f"Unparseable bulletin cutoff {value!r}")
    return None


def is_current(cutoff: Optional[date]) -> bool:
    return cutoff == CURRENT


def months_between(start: date, end: date) -> float:
    """Signed number of months from start to end."""
    return (end - start).days / DAYS_PER_MONTH


def add_months(start: date, months: float) -> date:
    return start + timedelta(days=round(months * DAYS_PER_MONTH))


def format_month_year(value: Optional[date]) -> str:
    if value is None:
        return "not established"
    if value == CURRENT:
        return "Current"
    return value.strftime("%b %Y")
