"""
Confidence policy and candidate scoring.

Every confidence number used by the extraction pipeline is defined here:
- per-method field confidence (company/exact > stem > label)
- per-strategy base confidence
- the trusted-source bonus
- 0..1 scores used to pick between amount and vendor candidates

Each scoring function returns a score from 0.0 (worst) to 1.0 (best).
"""

from typing import Dict, List, Optional, TypeVar
import math

from billscan.config import settings
from .candidates import (
    Candidate,
    AmountCandidate,
    ExtractedField,
    ExtractionMethod,
    VendorCandidate,
)

__all__ = [
    'METHOD_CONFIDENCE', 'STRATEGY_CONFIDENCE', 'OPTIONAL_FIELD_WEIGHTS',
    'method_confidence', 'field_confidence', 'candidate_confidence',
    'apply_trusted_bonus', 'cap_field_confidences',
    'score_amount_candidate', 'score_vendor_candidate',
    'select_best_candidate', 'select_best_amount', 'select_best_vendor',
]

T = TypeVar('T', bound=Candidate)


# Field confidence by extraction method
METHOD_CONFIDENCE: Dict[ExtractionMethod, float] = {
    ExtractionMethod.COMPANY_SPECIFIC: 0.9,
    ExtractionMethod.EXACT_PATTERN: 0.9,
    ExtractionMethod.STEM_FALLBACK: 0.6,
    ExtractionMethod.LABEL_FALLBACK: 0.4,
}

# Strategy-level base confidence; the regex strategy trusts email text more than PDF text
STRATEGY_CONFIDENCE: Dict[str, Dict[str, float]] = {
    'stem_pattern': {'email': 0.9, 'pdf': 0.9},
    'pattern': {'email': 0.8, 'pdf': 0.8},
    'regex_heuristic': {'email': 0.7, 'pdf': 0.6},
}

# Weights of optional fields in the coverage part of the candidate confidence (sum to 1.0)
OPTIONAL_FIELD_WEIGHTS: Dict[str, float] = {
    'due_date': 0.25,
    'vendor': 0.25,
    'bill_date': 0.15,
    'invoice_number': 0.2,
    'account_number': 0.15,
}

# Share of the strategy base confidence earned by the amount alone
AMOUNT_SHARE = 0.7


def method_confidence(method: ExtractionMethod) -> float:
    return METHOD_CONFIDENCE[method]


def field_confidence(method: ExtractionMethod, cap: float = 1.0) -> float:
    """Confidence of a field found by `method`, never above `cap`."""
    return round(min(METHOD_CONFIDENCE[method], cap), 2)


def candidate_confidence(
    strategy: str,
    source_kind: str,
    fields: Dict[str, ExtractedField]
) -> float:
    """
    Strategy-level confidence of a candidate bill.

    The amount earns 70% of the strategy base; the remaining 30% is earned
    by optional-field coverage, each field weighted by its own confidence.

    Args:
        strategy: Strategy name (key of STRATEGY_CONFIDENCE)
        source_kind: 'email' or 'pdf'
        fields: Extracted fields by name; must contain 'amount'

    Returns:
        Score from 0.0 to 1.0

    Example:
        A stem/pattern hit with only an exact-pattern amount scores 0.9 * 0.7 = 0.63.
    """
    base = STRATEGY_CONFIDENCE[strategy]['pdf' if source_kind == 'pdf' else 'email']

    amount = fields.get('amount')
    if amount is None:
        return 0.0

    amount_score = AMOUNT_SHARE * (amount.confidence / METHOD_CONFIDENCE[ExtractionMethod.EXACT_PATTERN])
    coverage = sum(
        weight * (fields[name].confidence / METHOD_CONFIDENCE[ExtractionMethod.EXACT_PATTERN])
        for name, weight in OPTIONAL_FIELD_WEIGHTS.items()
        if name in fields
    )
    score = base * (min(AMOUNT_SHARE, amount_score) + (1 - AMOUNT_SHARE) * min(1.0, coverage))

    # Clamp to [0.0, 1.0]
    return round(max(0.0, min(1.0, score)), 2)


def apply_trusted_bonus(confidence: float, is_trusted: bool) -> float:
    """
    Add the trusted-source bonus.

    Examples:
        >>> apply_trusted_bonus(0.7, True)
        0.85
        >>> apply_trusted_bonus(0.9, True)
        0.95
    """
    if not is_trusted:
        return confidence
    return round(min(settings.MAX_CONFIDENCE, confidence + settings.TRUSTED_SOURCE_BONUS), 2)


def cap_field_confidences(fields: Dict[str, ExtractedField], cap: float) -> Dict[str, ExtractedField]:
    """Return fields with confidences lowered to at most `cap`."""
    capped = {}
    for name, extracted in fields.items():
        if extracted.confidence > cap:
            extracted = ExtractedField(
                value=extracted.value,
                confidence=round(cap, 2),
                method=extracted.method,
                semantic_type=extracted.semantic_type,
                pattern_name=extracted.pattern_name,
                context=extracted.context,
            )
        capped[name] = extracted
    return capped


def score_amount_candidate(candidate: AmountCandidate) -> float:
    """
    Score amount candidate based on pattern quality and context.

    Scoring factors (weights):
    - Base priority: 1.0 / (1 + log10(priority))
    - Strong prefix bonus: +0.3 if "Total Due", "Fizetendő", etc.
    - Proximity bonus: Up to +0.2 based on distance to keywords
    - Currency bonus: +0.1 if a currency is written next to the amount
    - Subtotal penalty: -0.4 if near "Subtotal", "Nettó"
    - Blacklist penalty: -0.5 if near "Previous balance", "Paid"

    Returns:
        Score from 0.0 to 1.0
    """
    base_score = 1.0 / (1.0 + math.log10(max(1, candidate.priority)))

    if candidate.has_strong_prefix:
        base_score += 0.3

    # proximity=0 → +0.2, proximity=30 → +0.1, proximity=60+ → +0.0
    if candidate.proximity_to_keywords < 60:
        base_score += 0.2 * (1.0 - candidate.proximity_to_keywords / 60.0)

    if candidate.currency:
        base_score += 0.1

    if candidate.in_subtotal_context:
        base_score -= 0.4

    if candidate.in_blacklist_context:
        base_score -= 0.5

    # Clamp to [0.0, 1.0]
    return max(0.0, min(1.0, base_score))


def score_vendor_candidate(candidate: VendorCandidate) -> float:
    """
    Score vendor candidate based on where it was found.

    - Sender display name: 0.9 base
    - Labelled vendor line in the text: 0.8 base
    - Sender domain: 0.7 base
    - Email subject: 0.6 base
    - Attachment file name: 0.5 base
    - Company suffix (Kft, Zrt, Inc, LLC): +0.1
    """
    if candidate.from_email_header:
        base_score = 0.9
    elif candidate.from_text_label:
        base_score = 0.8
    elif candidate.from_sender_domain:
        base_score = 0.7
    elif candidate.from_subject:
        base_score = 0.6
    elif candidate.from_file_name:
        base_score = 0.5
    else:
        base_score = 0.4

    if candidate.has_company_suffix:
        base_score += 0.1

    # Clamp to [0.0, 1.0]
    return max(0.0, min(1.0, base_score))


def select_best_candidate(
    candidates: List[T],
    score_func,
    threshold: float = 0.3
) -> Optional[T]:
    """
    Select best candidate from list using scoring function.

    Ties keep the earliest candidate.

    Returns:
        Highest-scoring candidate, or None if empty or below threshold
    """
    if not candidates:
        return None

    scored = [(candidate, score_func(candidate)) for candidate in candidates]
    # Stable sort keeps encounter order for equal scores
    scored.sort(key=lambda x: x[1], reverse=True)

    best_candidate, best_score = scored[0]
    if best_score < threshold:
        return None

    return best_candidate


def select_best_amount(candidates: List[AmountCandidate]) -> Optional[AmountCandidate]:
    return select_best_candidate(candidates, score_amount_candidate)


def select_best_vendor(candidates: List[VendorCandidate]) -> Optional[VendorCandidate]:
    return select_best_candidate(candidates, score_vendor_candidate)
