"""
Dendrites - Date Normalizer
Layer 0: Sensory Input

Feeds publish dates as RFC 822 strings, ISO-8601 with or without a zone,
bare dates, or not at all. Everything that leaves this module is a UTC
ISO-8601 string with millisecond precision and a 'Z' suffix, so stored
pub_date values sort correctly as text.
"""
import re
from datetime import date, datetime, timezone
from typing import Any, Optional

import structlog
from dateutil import parser as date_parser

logger = structlog.get_logger(__name__)

RFC_822_PATTERN = re.compile(
    r'^(?:(?:Mon|Tue|Wed|Thu|Fri|Sat|Sun),\s+)(\d{1,2})\s+([A-Za-z]{3})\s+(\d{4})\s+'
    r'(\d{2}):(\d{2}):(\d{2})\s+([+-]\d{4}|[A-Z]{3,4})$'
)
ISO_WITHOUT_ZONE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$')
DATE_ONLY_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

# RFC 822 zone names dateutil does not know on its own (offsets in seconds)
RFC_822_ZONES = {
    'EST': -5 * 3600,
    'EDT': -4 * 3600,
    'CST': -6 * 3600,
    'CDT': -5 * 3600,
    'MST': -7 * 3600,
    'MDT': -6 * 3600,
    'PST': -8 * 3600,
    'PDT': -7 * 3600,
}


def utc_now_iso() -> str:
    """Current instant in the canonical format."""
    return to_iso(datetime.now(timezone.utc))


def to_iso(dt: datetime) -> str:
    """Render a datetime in the canonical format; naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _coerce_to_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if not value:
        return ''
    return str(value).strip()


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date-like value into an aware UTC datetime.

    Returns:
        The parsed instant, or None when the value cannot be understood
    """
    date_string = _coerce_to_string(value)
    if not date_string:
        return None

    normalized = date_string
    if RFC_822_PATTERN.match(date_string):
        logger.debug("Parsing RFC 822 date format", date_str=date_string)
    elif ISO_WITHOUT_ZONE_PATTERN.match(date_string):
        normalized = f"{date_string}Z"
    elif DATE_ONLY_PATTERN.match(date_string):
        normalized = f"{date_string}T00:00:00Z"

    try:
        dt = date_parser.parse(normalized, tzinfos=RFC_822_ZONES)
    except (ValueError, OverflowError, TypeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    try:
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def normalize_date(value: Any) -> str:
    """
    Convert any date-like value into a canonical ISO-8601 UTC string.

    Never raises: unparseable input yields the current instant.

    Args:
        value: A string, datetime, date or anything else

    Returns:
        ISO-8601 string such as '2024-01-01T12:00:00.000Z'
    """
    parsed = parse_date(value)
    if parsed is None:
        logger.warning(
            "Invalid date format encountered, falling back to current date",
            date_str=str(value)[:100] if value is not None else None,
        )
        return utc_now_iso()
    return to_iso(parsed)
