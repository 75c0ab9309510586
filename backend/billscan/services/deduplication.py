"""
Deduplication and merge of candidate bills.

Candidates from the same message are split into email-sourced and
PDF-sourced ones. Each PDF candidate is matched against the unconsumed email
candidates with these rules, strongest first:

1. equal invoice numbers, including aliases held in extras (invoice_id, ...)
2. fuzzy vendor match and amounts within 1% (same currency)
3. fuzzy vendor match, bill dates at most 7 days apart and equal amounts
   (same currency)

Matched pairs are merged field by field; everything else passes through.
Placeholder and generic vendor names never count as a vendor match.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from billscan.config import settings
from billscan.models.bill import BillSource, CandidateBill, FieldProvenance, SourceKind
from billscan.services.field_mapping import FieldMappingService
from billscan.utils.dates import dates_within, is_today, parse_date
from billscan.utils.money import amounts_within_tolerance, decimal_places

logger = logging.getLogger(__name__)


# Fields that are never resolved value by value
UNMERGED_FIELDS = {'id', 'source', 'confidence', 'provenance', 'extras'}

# Typed fields filled from an alias held in extras when both sides lack them
ALIAS_FOLDED_FIELDS = ('vendor', 'invoice_number', 'account_number')

PLACEHOLDER_VALUES = {'unknown', 'n/a', ''}

GENERIC_VENDOR_TERMS = {'vendor', 'company', 'business', 'merchant', 'service provider', 'unknown'}

LENGTH_PREFERENCE_RATIO = 1.5

_VENDOR_LIKE = ('vendor', 'issuer', 'company', 'merchant')
_AMOUNT_LIKE = ('amount', 'total', 'price', 'sum', 'cost')
_DUE_DATE_LIKE = ('due', 'deadline', 'payment_date')
_DATE_LIKE = ('date', 'due', 'deadline')


# Matching

# Alias lookups only; no Supabase client is created
field_aliases = FieldMappingService()


def is_pdf_sourced(bill: CandidateBill) -> bool:
    """PDF kind, or any other non-email kind that carries an attachment id."""
    if bill.source.kind == SourceKind.PDF:
        return True
    if bill.source.kind == SourceKind.EMAIL:
        return False
    return bool(bill.source.attachment_id)


def _is_meaningful_vendor(value: str) -> bool:
    lowered = value.strip().lower()
    return lowered not in PLACEHOLDER_VALUES and lowered not in GENERIC_VENDOR_TERMS


def vendors_match(a: Optional[str], b: Optional[str]) -> bool:
    """
    Case-insensitive equality or substring containment in either direction.

    Placeholders ("Unknown", "N/A") and generic terms ("Vendor") never match.

    Examples:
        >>> vendors_match("MVM", "MVM Next Energiakereskedelmi Zrt.")
        True
        >>> vendors_match("Acme", "Globex")
        False
        >>> vendors_match("Unknown", "unknown")
        False
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    if not _is_meaningful_vendor(a) or not _is_meaningful_vendor(b):
        return False
    a, b = a.strip().lower(), b.strip().lower()
    return a == b or a in b or b in a


def invoice_numbers_match(first: CandidateBill, second: CandidateBill) -> bool:
    """Any invoice-number value of one bill equals one of the other's, aliases included."""
    first_values = {str(value).strip() for value in field_aliases.values_for(first, 'invoice_number')}
    second_values = {str(value).strip() for value in field_aliases.values_for(second, 'invoice_number')}
    first_values.discard('')
    second_values.discard('')
    return bool(first_values & second_values)


def any_vendors_match(first: CandidateBill, second: CandidateBill) -> bool:
    return any(
        vendors_match(a, b)
        for a in field_aliases.values_for(first, 'vendor')
        for b in field_aliases.values_for(second, 'vendor')
    )


def amounts_match(first: CandidateBill, second: CandidateBill) -> bool:
    """Same currency and amounts within the relative tolerance."""
    if first.currency != second.currency:
        return False
    return amounts_within_tolerance(first.amount, second.amount, settings.AMOUNT_TOLERANCE)


def amounts_equal(first: CandidateBill, second: CandidateBill) -> bool:
    return first.currency == second.currency and first.amount == second.amount


def vendor_and_amount(first: CandidateBill, second: CandidateBill) -> bool:
    return any_vendors_match(first, second) and amounts_match(first, second)


def vendor_date_and_amount(first: CandidateBill, second: CandidateBill) -> bool:
    return (
        any_vendors_match(first, second)
        and dates_within(first.bill_date, second.bill_date, settings.DATE_PROXIMITY_DAYS)
        and amounts_equal(first, second)
    )


# Strongest first
MATCH_RULES = [
    ('invoice_number', invoice_numbers_match),
    ('vendor_amount', vendor_and_amount),
    ('vendor_date_amount', vendor_date_and_amount),
]


def match_rule(pdf_bill: CandidateBill, email_bill: CandidateBill) -> Optional[str]:
    """
    Name of the first rule under which two candidates describe the same bill.

    Symmetric in its arguments.

    Returns:
        'invoice_number', 'vendor_amount', 'vendor_date_amount' or None
    """
    for name, rule in MATCH_RULES:
        if rule(pdf_bill, email_bill):
            return name
    return None


# Field resolution

def _is_placeholder(value: str) -> bool:
    return value.strip().lower() in PLACEHOLDER_VALUES


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _name_has(field_name: str, markers: Tuple[str, ...]) -> bool:
    lowered = field_name.lower()
    return any(marker in lowered for marker in markers)


def _resolve_string(field_name: str, pdf_value: str, email_value: str) -> str:
    if _is_placeholder(pdf_value):
        return email_value
    if _is_placeholder(email_value):
        return pdf_value

    if _name_has(field_name, _VENDOR_LIKE):
        pdf_generic = pdf_value.strip().lower() in GENERIC_VENDOR_TERMS
        email_generic = email_value.strip().lower() in GENERIC_VENDOR_TERMS
        if pdf_generic and not email_generic:
            return email_value
        if email_generic and not pdf_generic:
            return pdf_value

    if len(pdf_value) > len(email_value) * LENGTH_PREFERENCE_RATIO:
        return pdf_value
    if len(email_value) > len(pdf_value) * LENGTH_PREFERENCE_RATIO:
        return email_value
    return pdf_value


def _resolve_number(field_name: str, pdf_value: Any, email_value: Any) -> Any:
    pdf_decimal, email_decimal = _as_decimal(pdf_value), _as_decimal(email_value)
    if pdf_decimal == 0:
        return email_value
    if email_decimal == 0:
        return pdf_value

    if not _name_has(field_name, _AMOUNT_LIKE):
        return pdf_value

    if amounts_within_tolerance(pdf_decimal, email_decimal, settings.AMOUNT_TOLERANCE):
        # Same amount written with different precision
        if decimal_places(email_decimal) > decimal_places(pdf_decimal):
            return email_value
        return pdf_value

    return email_value if abs(email_decimal) > abs(pdf_decimal) else pdf_value


def _resolve_date(field_name: str, pdf_value: Any, email_value: Any, today: date) -> Any:
    pdf_date, email_date = parse_date(pdf_value), parse_date(email_value)
    if pdf_date is None and email_date is None:
        return pdf_value
    if pdf_date is None:
        return email_value
    if email_date is None:
        return pdf_value

    if _name_has(field_name, _DUE_DATE_LIKE):
        pdf_future, email_future = pdf_date > today, email_date > today
        if pdf_future and not email_future:
            return pdf_value
        if email_future and not pdf_future:
            return email_value
        return pdf_value

    # A date equal to today is usually a default filled in by the extractor
    pdf_today, email_today = is_today(pdf_date, today), is_today(email_date, today)
    if pdf_today and not email_today:
        return email_value
    if email_today and not pdf_today:
        return pdf_value

    return pdf_value


def select_best_value(field_name: str, pdf_value: Any, email_value: Any, today: Optional[date] = None) -> Any:
    """
    Pick the value of one field for a merged bill.

    Ties go to the PDF side.

    Args:
        field_name: Field name, used to recognize vendor, amount and due-date fields
        pdf_value: Value from the PDF-sourced candidate
        email_value: Value from the email-sourced candidate
        today: Reference date for future/placeholder checks (defaults to today)

    Returns:
        The preferred value
    """
    if pdf_value is None:
        return email_value
    if email_value is None:
        return pdf_value

    today = today or date.today()

    if _is_number(pdf_value) and _is_number(email_value):
        return _resolve_number(field_name, pdf_value, email_value)

    if isinstance(pdf_value, date) or isinstance(email_value, date) or _name_has(field_name, _DATE_LIKE):
        return _resolve_date(field_name, pdf_value, email_value, today)

    if isinstance(pdf_value, str) and isinstance(email_value, str):
        return _resolve_string(field_name, pdf_value, email_value)

    return pdf_value


# Merge

def resolve_money(pdf_data: Dict[str, Any], email_data: Dict[str, Any], today: Optional[date] = None) -> Dict[str, Any]:
    """
    Amount and currency of a merged bill, both taken from the same side.

    Amounts in different currencies are not compared; the PDF side is kept.
    """
    if pdf_data.get('currency') != email_data.get('currency'):
        return {'amount': pdf_data.get('amount'), 'currency': pdf_data.get('currency')}

    amount = select_best_value('amount', pdf_data.get('amount'), email_data.get('amount'), today)
    side = pdf_data if amount is pdf_data.get('amount') else email_data
    return {'amount': amount, 'currency': side.get('currency')}


def fold_aliases(merged: Dict[str, Any], pdf_bill: CandidateBill, email_bill: CandidateBill) -> None:
    """Fill empty identity fields from alias extras (e.g. invoice_id), PDF side first."""
    for key, value in list(pdf_bill.extras.items()) + list(email_bill.extras.items()):
        canonical = field_aliases.canonical_name(key)
        if canonical not in ALIAS_FOLDED_FIELDS or merged.get(canonical) is not None:
            continue
        if isinstance(value, str) and not _is_placeholder(value):
            merged[canonical] = value.strip()


def merge_bills(pdf_bill: CandidateBill, email_bill: CandidateBill, today: Optional[date] = None) -> CandidateBill:
    """
    Merge a PDF-sourced and an email-sourced candidate of the same bill.

    Starts from the email candidate and resolves every data field. Amount
    and currency always come from the same side. A field whose resolution
    fails is left out. Provenance follows the side the value came from.
    Identity fields empty on both sides are filled from alias extras.

    Raises:
        ValidationError: The merged values do not form a valid bill
    """
    pdf_data = pdf_bill.model_dump(exclude=UNMERGED_FIELDS)
    email_data = email_bill.model_dump(exclude=UNMERGED_FIELDS)

    merged: Dict[str, Any] = {}
    provenance: Dict[str, FieldProvenance] = {**email_bill.provenance, **pdf_bill.provenance}
    money = resolve_money(pdf_data, email_data, today)

    for field_name in list(email_data) + [name for name in pdf_data if name not in email_data]:
        pdf_value, email_value = pdf_data.get(field_name), email_data.get(field_name)
        if field_name in money:
            value = money[field_name]
        else:
            try:
                value = select_best_value(field_name, pdf_value, email_value, today)
            except (ValueError, TypeError, ArithmeticError) as e:
                logger.warning(
                    "Could not resolve field while merging",
                    extra={"field": field_name, "error": str(e)}
                )
                provenance.pop(field_name, None)
                continue

        merged[field_name] = value
        chosen = pdf_bill if value is pdf_value and pdf_value is not None else email_bill
        if field_name in chosen.provenance:
            provenance[field_name] = chosen.provenance[field_name]
        else:
            provenance.pop(field_name, None)

    extras: Dict[str, Any] = dict(email_bill.extras)
    for key, pdf_value in pdf_bill.extras.items():
        try:
            extras[key] = select_best_value(key, pdf_value, extras.get(key), today)
        except (ValueError, TypeError, ArithmeticError):
            extras.pop(key, None)

    fold_aliases(merged, pdf_bill, email_bill)

    return CandidateBill(
        **merged,
        id=email_bill.id,
        source=BillSource(
            kind=SourceKind.COMBINED,
            message_id=email_bill.source.message_id or pdf_bill.source.message_id,
            attachment_id=pdf_bill.source.attachment_id,
            file_name=pdf_bill.source.file_name,
        ),
        confidence=max(email_bill.confidence, pdf_bill.confidence),
        provenance=provenance,
        extras=extras,
    )


def _deduplicate_group(group: List[CandidateBill], today: Optional[date]) -> List[CandidateBill]:
    if len(group) == 1:
        return list(group)

    pdf_bills = [bill for bill in group if is_pdf_sourced(bill)]
    email_bills = [bill for bill in group if not is_pdf_sourced(bill)]
    if not pdf_bills or not email_bills:
        return list(group)

    consumed = set()
    merged: List[CandidateBill] = []
    unmatched_pdf: List[CandidateBill] = []

    for pdf_bill in pdf_bills:
        match = None
        for index, email_bill in enumerate(email_bills):
            if index in consumed:
                continue
            rule = match_rule(pdf_bill, email_bill)
            if rule is None:
                continue
            try:
                match = (index, merge_bills(pdf_bill, email_bill, today), rule)
            except ValidationError as e:
                logger.warning(
                    "Merged bill is invalid, keeping both candidates",
                    extra={"pdf_bill_id": pdf_bill.id, "email_bill_id": email_bill.id, "error": str(e)}
                )
                continue
            break

        if match is None:
            unmatched_pdf.append(pdf_bill)
            continue

        index, merged_bill, rule = match
        consumed.add(index)
        merged.append(merged_bill)
        logger.info(
            "Merged email and PDF bill",
            extra={
                "pdf_bill_id": pdf_bill.id,
                "email_bill_id": email_bills[index].id,
                "rule": rule,
            }
        )

    unmatched_email = [bill for index, bill in enumerate(email_bills) if index not in consumed]
    return merged + unmatched_pdf + unmatched_email


def deduplicate(bills: List[CandidateBill], today: Optional[date] = None) -> List[CandidateBill]:
    """
    Merge email and PDF candidates that describe the same bill.

    Candidates without a message id pass through. Groups are emitted in the
    order their message first appears; within a group, merged bills come
    first, then unmatched PDF candidates, then unmatched email candidates.

    Args:
        bills: Candidate bills from any number of messages
        today: Reference date for date resolution (defaults to today)

    Returns:
        Deduplicated bills
    """
    slots: List[Tuple[str, Any]] = []
    groups: Dict[str, List[CandidateBill]] = {}

    for bill in bills:
        message_id = bill.source.message_id
        if not message_id:
            slots.append(('bill', bill))
            continue
        if message_id not in groups:
            groups[message_id] = []
            slots.append(('group', message_id))
        groups[message_id].append(bill)

    result: List[CandidateBill] = []
    for kind, value in slots:
        if kind == 'bill':
            result.append(value)
        else:
            result.extend(_deduplicate_group(groups[value], today))

    logger.info(
        "Deduplicated bills",
        extra={"input_count": len(bills), "output_count": len(result)}
    )
    return result
