"""
Date parsing and proximity helpers.

Bills put dates in many shapes:
- Hungarian: 2024.03.15, 2024. 03. 15., 2024. március 15.
- European: 15.03.2024, 15/03/2024
- US: 03/15/2024, March 15, 2024
- ISO: 2024-03-15
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional
import re


HUNGARIAN_MONTHS = {
    'január': 1, 'február': 2, 'március': 3, 'április': 4,
    'május': 5, 'június': 6, 'július': 7, 'augusztus': 8,
    'szeptember': 9, 'október': 10, 'november': 11, 'december': 12,
    'jan': 1, 'febr': 2, 'márc': 3, 'ápr': 4, 'máj': 5, 'jún': 6,
    'júl': 7, 'aug': 8, 'szept': 9, 'okt': 10, 'nov': 11, 'dec': 12,
}

GERMAN_MONTHS = {
    'januar': 1, 'februar': 2, 'märz': 3, 'april': 4, 'mai': 5, 'juni': 6,
    'juli': 7, 'august': 8, 'september': 9, 'oktober': 10, 'november': 11, 'dezember': 12,
}

# Regex fragment matching any date shape we can parse; used by extractors
DATE_SHAPE = (
    r'(\d{4}\.\s?\d{1,2}\.\s?\d{1,2}\.?'
    r'|\d{4}\.?\s+[a-záéíóöőúüű]+\.?\s+\d{1,2}\.?'
    r'|\d{4}[-/]\d{1,2}[-/]\d{1,2}'
    r'|\d{1,2}[./-]\d{1,2}[./-]\d{4}'
    r'|\d{1,2}/\d{1,2}/\d{2}'
    r'|(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}'
    r'|\d{1,2}\.?\s+[A-Za-zäöüß]+\.?\s+\d{4})'
)

DATE_SHAPE_RE = re.compile(DATE_SHAPE, re.IGNORECASE)

_YEAR_FIRST = re.compile(r'^(\d{4})[.\-/]\s?(\d{1,2})[.\-/]\s?(\d{1,2})\.?$')
_YEAR_MONTH_NAME = re.compile(r'^(\d{4})\.?\s+([^\W\d_]+)\.?\s+(\d{1,2})\.?$')
_DAY_MONTH_NAME = re.compile(r'^(\d{1,2})\.?\s+([^\W\d_]+)\.?\s+(\d{4})$')

_ENGLISH_FORMATS = [
    '%B %d, %Y', '%b %d, %Y',
    '%B %d %Y', '%b %d %Y',
    '%d %B %Y', '%d %b %Y',
    '%Y-%m-%d',
]


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _numeric_day_first(date_str: str, language: str) -> Optional[date]:
    """
    Parse DD.MM.YYYY / MM/DD/YYYY shapes.

    Dot-separated dates are always day first. Slash dates are month first for
    English text and day first otherwise, falling back to the other order when
    the preferred one is not a valid date.
    """
    match = re.match(r'^(\d{1,2})([./-])(\d{1,2})\2(\d{2}|\d{4})$', date_str)
    if not match:
        return None

    first, sep, second, year = match.groups()
    year_value = int(year) + 2000 if len(year) == 2 else int(year)

    if sep == '.' or language != 'en':
        orders = [(int(second), int(first)), (int(first), int(second))]
    else:
        orders = [(int(first), int(second)), (int(second), int(first))]

    for month, day in orders:
        parsed = _safe_date(year_value, month, day)
        if parsed:
            return parsed
    return None


def parse_date(value: Any, language: str = 'en') -> Optional[date]:
    """
    Parse a date from a string (or pass through date/datetime values).

    Args:
        value: Raw date string, date or datetime
        language: Language hint used for month names and MM/DD vs DD/MM

    Returns:
        date or None if the value is not a recognizable date

    Examples:
        >>> parse_date("2024.03.15")
        datetime.date(2024, 3, 15)
        >>> parse_date("2024. március 15.", language="hu")
        datetime.date(2024, 3, 15)
        >>> parse_date("March 15, 2024")
        datetime.date(2024, 3, 15)
        >>> parse_date("not a date") is None
        True
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    date_str = value.strip().rstrip(',')
    if not date_str:
        return None

    # ISO timestamps ("2024-03-15T10:00:00Z")
    if re.match(r'^\d{4}-\d{2}-\d{2}T', date_str):
        try:
            return datetime.fromisoformat(date_str.replace('Z', '+00:00')).date()
        except ValueError:
            return None

    match = _YEAR_FIRST.match(date_str)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe_date(year, month, day)

    match = _YEAR_MONTH_NAME.match(date_str)
    if match:
        month = HUNGARIAN_MONTHS.get(match.group(2).lower())
        if month:
            return _safe_date(int(match.group(1)), month, int(match.group(3)))
        return None

    match = _DAY_MONTH_NAME.match(date_str)
    if match:
        month = GERMAN_MONTHS.get(match.group(2).lower())
        if month:
            return _safe_date(int(match.group(3)), month, int(match.group(1)))

    parsed = _numeric_day_first(date_str, language)
    if parsed:
        return parsed

    # English month names ("March 15th, 2024")
    cleaned = re.sub(r'(\d+)(?:st|nd|rd|th)', r'\1', date_str).replace('.', '')
    for fmt in _ENGLISH_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    return None


def days_apart(a: Optional[date], b: Optional[date]) -> Optional[int]:
    if a is None or b is None:
        return None
    return abs((a - b).days)


def dates_within(a: Any, b: Any, days: int = 7) -> bool:
    """Both values parse as dates and are at most `days` apart."""
    difference = days_apart(parse_date(a), parse_date(b))
    return difference is not None and difference <= days


def is_today(value: date, today: Optional[date] = None) -> bool:
    """
    Whether a date falls within [today, tomorrow).

    Dates equal to the processing day are usually defaults filled in when
    nothing better was found.
    """
    today = today or date.today()
    return today <= value < today + timedelta(days=1)


def to_iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None
