"""
Shared money parsing utilities with multi-locale support.

Handles the separator conventions seen on bills:
- Hungarian thousands dot: 175.945 → 175945
- Hungarian thousands space: 175 945 → 175945
- Decimal comma: 175,95 → 175.95
- Mixed: 175 945,95 or 175.945,95 → 175945.95
- US: 1,234.56 → 1234.56

A parsed amount of 0 always means "could not parse"; bills never carry a
zero amount.
"""

from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple
import re


ZERO = Decimal("0")

# Currency symbols and codes → ISO code (longest first so "HK$" wins over "$")
CURRENCY_SYMBOLS = {
    "HK$": "HKD",
    "C$": "CAD",
    "A$": "AUD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₽": "RUB",
    "₩": "KRW",
    "Ft.": "HUF",
    "Ft": "HUF",
    "forint": "HUF",
    "HUF": "HUF",
    "USD": "USD",
    "EUR": "EUR",
    "euro": "EUR",
    "GBP": "GBP",
    "CAD": "CAD",
}

# Default currency per detected language
LANGUAGE_CURRENCIES = {
    "hu": "HUF",
    "de": "EUR",
    "en": "USD",
}

_CURRENCY_PATTERNS = [
    (re.compile(
        r'(?<![A-Za-z])' + re.escape(symbol) + (r'(?![A-Za-z])' if symbol[-1].isalpha() else ''),
        re.IGNORECASE if symbol.isalpha() and len(symbol) > 3 else 0
    ), code)
    for symbol, code in CURRENCY_SYMBOLS.items()
]

_THOUSANDS_DOT = re.compile(r'\d{1,3}\.\d{3}')
_DECIMAL_DOT_ONLY = re.compile(r'^\d{1,3}\.\d{1,2}$')
_THOUSANDS_SPACE = re.compile(r'\d{1,3}\s\d{3}')
_DECIMAL_COMMA = re.compile(r',(\d{1,2})$')
_NUMERIC_PREFIX = re.compile(r'\d+(?:\.\d+)?')


def parse_amount(raw: str) -> Decimal:
    """
    Parse a free-form amount string into a Decimal.

    Args:
        raw: String containing an amount (e.g., "175.945 Ft", "1 234,56", "$45.00")

    Returns:
        Decimal amount, or Decimal("0") if nothing numeric could be parsed

    Examples:
        >>> parse_amount("175.945")
        Decimal('175945')
        >>> parse_amount("175,95")
        Decimal('175.95')
        >>> parse_amount("175 945,95")
        Decimal('175945.95')
        >>> parse_amount("abc")
        Decimal('0')
    """
    if not raw or not isinstance(raw, str):
        return ZERO

    # Keep digits and separators only; separators at the edges belong to the
    # surrounding text ("Ft. 123", "123 Ft.")
    cleaned = re.sub(r'[^\d.,\s]', '', raw).strip(' \t\r\n .,')
    if not cleaned:
        return ZERO

    has_thousand_dots = bool(_THOUSANDS_DOT.search(cleaned))
    has_thousand_spaces = bool(_THOUSANDS_SPACE.search(cleaned))
    has_comma_decimals = bool(_DECIMAL_COMMA.search(cleaned))

    if has_thousand_dots and not _DECIMAL_DOT_ONLY.match(cleaned):
        cleaned = cleaned.replace('.', '')

    if has_thousand_spaces:
        cleaned = re.sub(r'\s', '', cleaned)

    if has_comma_decimals:
        cleaned = _DECIMAL_COMMA.sub(r'.\1', cleaned)
    cleaned = cleaned.replace(',', '')

    match = _NUMERIC_PREFIX.match(cleaned)
    if not match:
        return ZERO

    try:
        return Decimal(match.group(0))
    except (InvalidOperation, ValueError):
        return ZERO


def detect_currency(text: str, default: Optional[str] = None) -> Optional[str]:
    """
    Detect the ISO currency code mentioned in text.

    Args:
        text: Text around an amount, or a whole document
        default: Returned when no currency symbol or code is present

    Returns:
        ISO code of the first currency mentioned, or default

    Examples:
        >>> detect_currency("Total Due: $45.00")
        'USD'
        >>> detect_currency("Fizetendő összeg: 45 Ft")
        'HUF'
    """
    if not text:
        return default

    best: Optional[Tuple[int, str]] = None
    for pattern, code in _CURRENCY_PATTERNS:
        match = pattern.search(text)
        if match and (best is None or match.start() < best[0]):
            best = (match.start(), code)

    return best[1] if best else default


def default_currency(language: str) -> str:
    return LANGUAGE_CURRENCIES.get(language, LANGUAGE_CURRENCIES["en"])


def relative_difference(a: Decimal, b: Decimal) -> Decimal:
    """|a - b| relative to the larger magnitude (0 when both are 0)."""
    larger = max(abs(a), abs(b))
    if larger == 0:
        return ZERO
    return abs(a - b) / larger


def amounts_within_tolerance(a: Optional[Decimal], b: Optional[Decimal], tolerance: float = 0.01) -> bool:
    """
    Check that two amounts are both non-zero and within a relative tolerance.

    Examples:
        >>> amounts_within_tolerance(Decimal("100"), Decimal("100.5"))
        True
        >>> amounts_within_tolerance(Decimal("100"), Decimal("105"))
        False
    """
    if a is None or b is None or a == 0 or b == 0:
        return False
    return relative_difference(a, b) <= Decimal(str(tolerance))


def decimal_places(amount: Decimal) -> int:
    """Number of significant digits after the decimal point."""
    normalized = amount.normalize()
    exponent = normalized.as_tuple().exponent
    return -exponent if isinstance(exponent, int) and exponent < 0 else 0


def format_money(amount: Decimal, currency: str = 'USD') -> str:
    """
    Format Decimal amount as money string.

    Examples:
        >>> format_money(Decimal('1234.56'))
        '$1,234.56'
        >>> format_money(Decimal('175945'), 'HUF')
        '175 945 Ft'
    """
    if amount is None:
        return 'N/A'

    currency = currency.upper()
    if currency == 'HUF':
        whole = f"{int(amount.quantize(Decimal('1'))):,}".replace(',', ' ')
        return f"{whole} Ft"

    symbol_map = {
        'USD': '$',
        'CAD': '$',
        'AUD': '$',
        'EUR': '€',
        'GBP': '£',
        'JPY': '¥',
    }
    symbol = symbol_map.get(currency, currency)
    return f"{symbol}{float(amount):,.2f}"
