"""
Candidate dataclasses for extraction scoring.

Each candidate represents a potential extracted value with metadata
used for scoring and selection. ExtractedField is the selected value of
one bill field together with how it was found.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class ExtractionMethod(str, Enum):
    """How a field value was found, strongest first."""
    COMPANY_SPECIFIC = "company_specific"  # Issuer-specific pattern set
    EXACT_PATTERN = "exact_pattern"  # Language pattern table
    STEM_FALLBACK = "stem_fallback"  # Best line by stem-group score
    LABEL_FALLBACK = "label_fallback"  # Generic "<label>: <value>" split


@dataclass(frozen=True)
class ExtractedField:
    """
    One extracted bill field.

    `context` holds the text the value was matched in, so that the currency
    can be read from the same line as the amount.
    """
    value: str
    confidence: float
    method: ExtractionMethod
    semantic_type: Optional[str] = None
    pattern_name: Optional[str] = None
    context: str = ""


@dataclass
class Candidate:
    """Base class for extraction candidates."""
    value: Any
    pattern_name: str
    match_span: tuple[int, int]  # (start, end) character positions
    priority: int = 100  # Lower is better (like CSS priority)
    raw_text: str = ""  # Original matched text


@dataclass
class AmountCandidate(Candidate):
    """
    Candidate for extracted amount.

    Scoring factors:
    - priority: Base pattern priority (lower = higher quality)
    - has_strong_prefix: Keywords like "Total Due", "Fizetendő"
    - proximity_to_keywords: Distance to strong keywords
    - in_subtotal_context: Near "Subtotal", "Nettó" (penalty)
    - in_blacklist_context: Near "Previous balance", "Paid" (penalty)
    """
    value: Decimal
    currency: Optional[str] = None
    proximity_to_keywords: int = 999  # Characters to nearest strong keyword
    has_strong_prefix: bool = False
    in_subtotal_context: bool = False
    in_blacklist_context: bool = False


@dataclass
class VendorCandidate(Candidate):
    """
    Candidate for extracted vendor.

    Scoring factors:
    - from_email_header: Sender display name (highest confidence)
    - from_text_label: "From:", "Billed by:" style label in the text
    - from_sender_domain: Second-level domain of the sender address
    - from_subject: Extracted from email subject
    - from_file_name: Extracted from the attachment file name
    """
    value: str
    from_email_header: bool = False
    from_text_label: bool = False
    from_sender_domain: bool = False
    from_subject: bool = False
    from_file_name: bool = False
    has_company_suffix: bool = False


# Keywords that introduce the payable total
STRONG_AMOUNT_KEYWORDS = [
    'total due', 'amount due', 'balance due', 'total amount', 'grand total', 'total',
    'fizetendő', 'fizetendo', 'végösszeg', 'vegosszeg', 'összesen', 'osszesen', 'összeg',
    'gesamtbetrag', 'rechnungsbetrag', 'zu zahlen', 'betrag',
]

SUBTOTAL_KEYWORDS = ['subtotal', 'sub-total', 'nettó', 'netto', 'áfa', 'vat', 'tax', 'mwst']

# Amounts near these are usually not what the bill asks to pay
BLACKLIST_KEYWORDS = [
    'previous balance', 'last payment', 'payment received', 'paid on', 'credit',
    'előző egyenleg', 'befizetve', 'jóváírás', 'minimum payment',
]

COMPANY_SUFFIXES = ['inc', 'llc', 'ltd', 'corp', 'co', 'gmbh', 'ag', 'kft', 'zrt', 'nyrt', 'bt']


# Helper functions for creating candidates

def create_amount_candidate(
    value: Decimal,
    pattern_name: str,
    match_span: tuple[int, int],
    raw_text: str,
    priority: int,
    text: str,
    currency: Optional[str] = None
) -> AmountCandidate:
    """
    Create AmountCandidate with computed context flags.

    Args:
        value: Parsed amount
        pattern_name: Name of pattern that matched
        match_span: Character span of match
        raw_text: Original matched text
        priority: Pattern priority
        text: Full text for context analysis
        currency: ISO code found next to the amount, if any

    Returns:
        AmountCandidate with computed flags
    """
    start, end = match_span
    context_start = max(0, start - 60)
    context = text[context_start:min(len(text), end + 20)].lower()

    # Strong prefix: keyword on the same line, right before the amount
    line_start = text.rfind('\n', 0, start) + 1
    prefix = text[max(line_start, start - 40):start].lower()
    has_strong_prefix = any(keyword in prefix for keyword in STRONG_AMOUNT_KEYWORDS) and not any(
        keyword in prefix for keyword in SUBTOTAL_KEYWORDS[:5]
    )

    proximity = 999
    for keyword in STRONG_AMOUNT_KEYWORDS:
        pos = context.rfind(keyword, 0, start - context_start)
        if pos != -1:
            proximity = min(proximity, (start - context_start) - (pos + len(keyword)))

    in_subtotal_context = any(keyword in prefix for keyword in SUBTOTAL_KEYWORDS)
    in_blacklist_context = any(keyword in prefix for keyword in BLACKLIST_KEYWORDS)

    return AmountCandidate(
        value=value,
        pattern_name=pattern_name,
        match_span=match_span,
        priority=priority,
        raw_text=raw_text,
        currency=currency,
        proximity_to_keywords=max(0, proximity),
        has_strong_prefix=has_strong_prefix,
        in_subtotal_context=in_subtotal_context,
        in_blacklist_context=in_blacklist_context
    )


def create_vendor_candidate(
    value: str,
    pattern_name: str,
    raw_text: str = "",
    from_email_header: bool = False,
    from_text_label: bool = False,
    from_sender_domain: bool = False,
    from_subject: bool = False,
    from_file_name: bool = False
) -> VendorCandidate:
    """Create VendorCandidate with computed structure flags."""
    lowered = value.lower().rstrip('.')
    has_company_suffix = any(
        lowered == suffix or lowered.endswith(' ' + suffix) for suffix in COMPANY_SUFFIXES
    )

    return VendorCandidate(
        value=value,
        pattern_name=pattern_name,
        match_span=(0, len(raw_text or value)),
        raw_text=raw_text or value,
        from_email_header=from_email_header,
        from_text_label=from_text_label,
        from_sender_domain=from_sender_domain,
        from_subject=from_subject,
        from_file_name=from_file_name,
        has_company_suffix=has_company_suffix
    )
