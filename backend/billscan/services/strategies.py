"""
Extraction strategies.

Each strategy turns one EmailContext or DocumentContext into an
ExtractionResult holding at most one CandidateBill:

- StemPatternStrategy: bill patterns with the stem fallback, Hungarian
  company detection first
- PatternStrategy: bill patterns only, no stemming
- RegexHeuristicStrategy: language-independent regexes and candidate scoring

Strategies raise ExtractionError subclasses internally and report them as
failed results. They hold no mutable state; the shared lookups live on the
ExtractionEngine passed in.
"""

import re
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from billscan.config import settings
from billscan.models.bill import (
    BillSource,
    CandidateBill,
    ExtractionResult,
    FieldProvenance,
    SourceKind,
)
from billscan.models.context import DocumentContext, EmailContext
from billscan.services.errors import (
    ExtractionError,
    MissingRequiredField,
    NotABillDocument,
    UnparsableAmount,
)
from billscan.services.field_extractor import is_valid_value
from billscan.services.language import SUPPORTED_LANGUAGES
from billscan.services.patterns import BillPattern, CompanyPatternSet, PatternSpec
from billscan.utils.candidates import (
    ExtractedField,
    ExtractionMethod,
    VendorCandidate,
    create_amount_candidate,
    create_vendor_candidate,
)
from billscan.utils.dates import DATE_SHAPE, parse_date
from billscan.utils.money import default_currency, detect_currency, parse_amount
from billscan.utils.scoring import (
    apply_trusted_bonus,
    candidate_confidence,
    cap_field_confidences,
    field_confidence,
    select_best_amount,
    select_best_vendor,
)
from billscan.utils.stemming import HUNGARIAN_BILL_INDICATOR_STEMS, STEM_DICTIONARIES
from billscan.utils.text import repair_encoding

logger = logging.getLogger(__name__)

Context = Union[EmailContext, DocumentContext]

# Stems whose presence marks a text as a bill, per stemmed language
BILL_INDICATOR_STEMS: Dict[str, List[str]] = {
    'hu': HUNGARIAN_BILL_INDICATOR_STEMS,
}


def source_kind_of(context: Context) -> str:
    return 'email' if isinstance(context, EmailContext) else 'pdf'


def bill_id_for(context: Context) -> str:
    """
    Stable candidate id: email-{message_id} or pdf-{message_id}-{attachment_id}.

    Documents without message or attachment ids fall back to their file name.
    """
    if isinstance(context, EmailContext):
        return f"email-{context.message_id}"
    return f"pdf-{context.message_id or context.file_name}-{context.attachment_id or context.file_name}"


def source_for(context: Context) -> BillSource:
    if isinstance(context, EmailContext):
        return BillSource(kind=SourceKind.EMAIL, message_id=context.message_id)
    return BillSource(
        kind=SourceKind.PDF,
        message_id=context.message_id,
        attachment_id=context.attachment_id,
        file_name=context.file_name,
    )


class ExtractionStrategy:
    """
    Base class for extraction strategies.

    Subclasses implement `_extract(context, text, source_kind)` returning a
    CandidateBill or raising an ExtractionError.
    """

    name = "base"

    def __init__(self, engine):
        self.engine = engine

    def extract(self, context: Context) -> ExtractionResult:
        """Run the strategy; taxonomy errors become a failed result."""
        source_kind = source_kind_of(context)
        text = repair_encoding(context.text)

        try:
            bill = self._extract(context, text, source_kind)
        except ExtractionError as e:
            logger.info(
                "Strategy did not produce a bill",
                extra={
                    "strategy": self.name,
                    "source_kind": source_kind,
                    "error_code": e.code,
                    "error": e.message,
                }
            )
            return ExtractionResult(
                success=False,
                confidence=e.confidence,
                error=e.message,
                error_code=e.code,
                strategy=self.name,
            )

        return ExtractionResult(
            success=True,
            candidate_bills=[bill],
            confidence=bill.confidence,
            strategy=self.name,
        )

    def _extract(self, context: Context, text: str, source_kind: str) -> CandidateBill:
        raise NotImplementedError

    # Shared helpers

    def resolve_language(self, context: Context, text: str) -> str:
        """Language hint when it names a supported language, else detection."""
        if context.language_hint in SUPPORTED_LANGUAGES:
            return context.language_hint
        return self.engine.detector.detect(text)

    def best_pattern_fields(
        self,
        text: str,
        patterns: List[BillPattern],
        company: Optional[CompanyPatternSet],
        source_kind: str,
        use_stemming: bool
    ) -> Tuple[BillPattern, Dict[str, ExtractedField]]:
        """
        Run every pattern and keep the highest-confidence one with an amount.

        Ties keep the earlier pattern.

        Raises:
            MissingRequiredField: No pattern produced an amount
        """
        best: Optional[Tuple[BillPattern, Dict[str, ExtractedField]]] = None
        best_confidence = -1.0

        for pattern in patterns:
            try:
                fields = self.engine.field_extractor.extract(text, pattern, company, use_stemming=use_stemming)
            except MissingRequiredField:
                continue

            confidence = candidate_confidence(self.name, source_kind, fields)
            if confidence > best_confidence:
                best, best_confidence = (pattern, fields), confidence

        if best is None:
            raise MissingRequiredField('amount', "Could not extract amount with any bill pattern", confidence=0.2)
        return best

    def infer_vendor(self, context: Context) -> Optional[ExtractedField]:
        """Vendor from the sender name, sender domain or file name."""
        return _vendor_field(select_best_vendor(_envelope_vendor_candidates(context)))

    def build_bill(
        self,
        context: Context,
        text: str,
        source_kind: str,
        fields: Dict[str, ExtractedField],
        language: str,
        category: Optional[str] = None,
        extras: Optional[Dict[str, Any]] = None
    ) -> CandidateBill:
        """
        Turn extracted fields into a CandidateBill.

        Currency comes from the amount's own line, then the whole text, then
        the language default. Without an extracted vendor, one is inferred
        from the sender or file name. Field confidences are capped at the
        bill's confidence. Dates that do not parse are dropped.

        Raises:
            UnparsableAmount: The amount is not a positive number or the
                bill fails validation
        """
        amount_field = fields['amount']
        amount = parse_amount(amount_field.value)
        if amount <= 0:
            raise UnparsableAmount(f"Amount '{amount_field.value}' is not a positive number", confidence=0.2)

        currency = (
            detect_currency(amount_field.context)
            or detect_currency(text)
            or default_currency(language)
        )

        fields = dict(fields)
        if 'vendor' not in fields:
            inferred = self.infer_vendor(context)
            if inferred:
                fields['vendor'] = inferred

        parsed_dates = {}
        for date_field in ('bill_date', 'due_date'):
            if date_field in fields:
                parsed = parse_date(fields[date_field].value, language)
                if parsed is None:
                    del fields[date_field]
                else:
                    parsed_dates[date_field] = parsed

        confidence = candidate_confidence(self.name, source_kind, fields)
        confidence = apply_trusted_bonus(confidence, context.is_trusted_source)
        fields = cap_field_confidences(fields, confidence)

        provenance = {
            name: FieldProvenance(method=extracted.method.value, confidence=extracted.confidence)
            for name, extracted in fields.items()
        }

        bill_extras = dict(extras or {})
        semantic_types = {
            name: extracted.semantic_type for name, extracted in fields.items() if extracted.semantic_type
        }
        if semantic_types:
            bill_extras['semantic_types'] = semantic_types

        def text_value(name: str) -> Optional[str]:
            extracted = fields.get(name)
            return extracted.value if extracted else None

        try:
            return CandidateBill(
                id=bill_id_for(context),
                vendor=text_value('vendor'),
                amount=amount,
                currency=currency,
                bill_date=parsed_dates.get('bill_date'),
                due_date=parsed_dates.get('due_date'),
                account_number=text_value('account_number'),
                invoice_number=text_value('invoice_number'),
                category=category,
                source=source_for(context),
                extraction_method=self.name,
                language=language,
                confidence=confidence,
                provenance=provenance,
                extras=bill_extras,
            )
        except ValidationError as e:
            raise UnparsableAmount(f"Invalid bill: {e}", confidence=0.2)


class StemPatternStrategy(ExtractionStrategy):
    """
    Bill patterns with stem fallback, for languages with a stem dictionary.

    Bails out with NotABillDocument when too few bill-indicator stems appear.
    A Hungarian issuer detected in the text contributes its company patterns.
    """

    name = "stem_pattern"

    def _extract(self, context: Context, text: str, source_kind: str) -> CandidateBill:
        language = self.resolve_language(context, text)
        stem_index = self.engine.stem_index
        if language not in STEM_DICTIONARIES or stem_index.language != language:
            raise NotABillDocument(f"No stem dictionary for language '{language}'")

        stem_score = stem_index.calculate_stem_match_score(text, BILL_INDICATOR_STEMS[language])
        if stem_score < settings.STEM_BAIL_OUT_THRESHOLD:
            raise NotABillDocument(
                f"Bill indicator stem score {stem_score:.2f} below {settings.STEM_BAIL_OUT_THRESHOLD}",
                confidence=stem_score,
            )

        registry = self.engine.registry
        company = None
        bill_type = None
        if language == 'hu':
            detection = registry.is_hungarian_bill(text)
            company = registry.company(detection.company)
            bill_type = detection.bill_type

        all_patterns = list(registry.for_language(language))
        patterns = [p for p in all_patterns if p.matches_identifiers(text)] or all_patterns

        pattern, fields = self.best_pattern_fields(text, patterns, company, source_kind, use_stemming=True)
        fields = _with_pattern_vendor(fields, pattern)

        category = (company.category if company else None) or pattern.category or registry.detect_category(text)
        extras = {
            'pattern_id': pattern.id,
            'stem_score': round(stem_score, 2),
        }
        if company:
            extras['company'] = company.key
        if bill_type:
            extras['bill_type'] = bill_type

        return self.build_bill(context, text, source_kind, fields, language, category, extras)


class PatternStrategy(ExtractionStrategy):
    """
    Plain bill-pattern matching without stemming.

    Requires an identifier pattern hit (or enough confirmation keywords)
    unless the source is trusted.
    """

    name = "pattern"

    def _extract(self, context: Context, text: str, source_kind: str) -> CandidateBill:
        language = self.resolve_language(context, text)
        registry = self.engine.registry

        all_patterns = list(registry.for_language(language))
        if not all_patterns:
            raise NotABillDocument(f"No bill patterns for language '{language}'")

        patterns = [p for p in all_patterns if p.matches_identifiers(text)]
        if not patterns:
            if not context.is_trusted_source:
                raise NotABillDocument("Text does not match any bill pattern", confidence=0.1)
            patterns = all_patterns

        company = registry.detect_company(text)
        pattern, fields = self.best_pattern_fields(text, patterns, company, source_kind, use_stemming=False)
        fields = _with_pattern_vendor(fields, pattern)

        category = (company.category if company else None) or pattern.category or registry.detect_category(text)
        extras = {'pattern_id': pattern.id}
        if company:
            extras['company'] = company.key

        return self.build_bill(context, text, source_kind, fields, language, category, extras)


def _with_pattern_vendor(fields: Dict[str, ExtractedField], pattern: BillPattern) -> Dict[str, ExtractedField]:
    """Use the pattern's fixed vendor name when no vendor was extracted."""
    if 'vendor' in fields or not pattern.vendor_name:
        return fields
    fields = dict(fields)
    fields['vendor'] = ExtractedField(
        value=pattern.vendor_name,
        confidence=field_confidence(ExtractionMethod.EXACT_PATTERN),
        method=ExtractionMethod.EXACT_PATTERN,
        semantic_type='issuer_name',
        pattern_name=f'{pattern.id}_vendor',
    )
    return fields


# Regex heuristics

# Keywords that mark a text as bill-related
BILL_KEYWORDS = [
    'bill', 'invoice', 'receipt', 'payment', 'due', 'statement', 'transaction',
    'charge', 'fee', 'subscription', 'order', 'purchase',
    'számla', 'fizetés', 'díj', 'határidő', 'fizetési', 'értesítő',
]

_NUMBER = r'(?P<amount>\d{1,3}(?:[ ,.\u00a0]\d{3})*(?:[.,]\d{1,2})?|\d+(?:[.,]\d{1,2})?)'
_SYMBOL = r'HK\$|C\$|A\$|[$€£¥₹₽₩]'
_CODE = r'Ft\.?|HUF|USD|EUR|GBP|CAD|forint'

REGEX_AMOUNT_PATTERNS = [
    PatternSpec(
        name='labelled_total',
        pattern=(
            r'(?:total(?:\s+amount)?(?:\s+due)?|amount\s+due|balance\s+due|payment\s+due|amount'
            r'|fizetendő(?:\s+összeg)?|végösszeg|összesen|gesamtbetrag|rechnungsbetrag)'
            r'[^\S\n]*:?[^\S\n]*(?P<prefix>' + _SYMBOL + r'|' + _CODE + r')?[^\S\n]*' + _NUMBER
            + r'[^\S\n]*(?P<suffix>' + _CODE + r'|€)?(?!\w)'
        ),
        example='Total Amount Due: $135.00',
        notes='Amount after a total/due label',
        priority=1,
    ),
    PatternSpec(
        name='symbol_prefix',
        pattern=r'(?P<prefix>' + _SYMBOL + r')\s*' + _NUMBER,
        example='$59.52',
        notes='Currency symbol before the amount',
        priority=3,
    ),
    PatternSpec(
        name='code_suffix',
        pattern=_NUMBER + r'[^\S\n]*(?P<suffix>' + _CODE + r'|€)(?!\w)',
        example='12 500 Ft',
        notes='Currency code after the amount',
        priority=3,
    ),
]

REGEX_DUE_DATE_PATTERNS = [
    PatternSpec(
        name='due_date_label',
        pattern=(
            r'(?:due\s+date|payment\s+due(?:\s+date)?|due\s+by|pay\s+by|due'
            r'|fizetési\s+határidő|befizetési\s+határidő|határidő|fällig(?:\s+am)?|zahlbar\s+bis)'
            r'\s*:?\s*' + DATE_SHAPE
        ),
        example='Payment Due Date: 06/15/2023',
        priority=1,
    ),
]

REGEX_BILL_DATE_PATTERNS = [
    PatternSpec(
        name='bill_date_label',
        pattern=(
            r'(?<!due\s)(?:invoice\s+date|bill(?:ing)?\s+date|statement\s+date|issue\s+date|date'
            r'|számla\s+kelte|kelte|kiállítás\s+dátuma|rechnungsdatum|datum)'
            r'\s*:?\s*' + DATE_SHAPE
        ),
        example='Date: 05/15/2023',
        priority=1,
    ),
]

REGEX_ACCOUNT_PATTERNS = [
    PatternSpec(
        name='account_label',
        pattern=r'(?:account|customer|policy|member)\s*(?:#|number|num|no\.?)?\s*[:\-]?\s*([A-Z0-9][A-Z0-9\-]{3,})',
        example='Account Number: ACCT-1234-5678',
    ),
    PatternSpec(
        name='hu_customer_id',
        pattern=r'(?:ügyfél|felhasználó|vevő)\s*(?:azonosító|szám)(?:a)?\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})',
        example='Ügyfélazonosító: 123456789',
    ),
    PatternSpec(
        name='de_customer_id',
        pattern=r'(?:kundennummer|vertragsnummer)\s*:?\s*([A-Z0-9][A-Z0-9\-]{3,})',
        example='Kundennummer: 4711-0815',
    ),
]

REGEX_INVOICE_PATTERNS = [
    PatternSpec(
        name='invoice_label',
        pattern=(
            r'(?:invoice|bill|számla|rechnung)\s*(?:#|number|no\.?|nr\.?|sorszáma?|szám)?\s*[:#]?\s*'
            r'([A-Z0-9][A-Z0-9\-/]{3,})'
        ),
        example='INVOICE #12345',
    ),
]

REGEX_VENDOR_PATTERNS = [
    PatternSpec(
        name='vendor_label',
        pattern=r'(?:^|\n)[^\S\n]*(?:from|company|billed\s+by|vendor|merchant|szolgáltató|eladó)[^\S\n]*:[^\S\n]*([^\n]+)',
        example='From: Example Vendor Inc.',
    ),
]

_FILE_EXTENSION = re.compile(r'\.(?:pdf|txt|html?)$', re.IGNORECASE)

# Words in attachment names that describe the document, not its issuer
FILE_NAME_BILL_WORDS = {
    'invoice', 'bill', 'receipt', 'statement', 'payment',
    'szamla', 'számla', 'ertesito', 'értesítő', 'dijbekero', 'díjbekérő',
    'rechnung', 'quittung',
}


class RegexHeuristicStrategy(ExtractionStrategy):
    """
    Last-resort extraction without language pattern tables.

    Keyword gate (REGEX_MIN_KEYWORDS domain keywords unless trusted), then
    scored amount candidates, labelled dates and identifiers, and vendor
    inference from the sender, labelled text or file name.
    """

    name = "regex_heuristic"

    def _extract(self, context: Context, text: str, source_kind: str) -> CandidateBill:
        if not context.is_trusted_source and not self._passes_keyword_gate(context, text):
            raise NotABillDocument("Not enough bill-related keywords found", confidence=0.1)

        language = self.resolve_language(context, text)
        fields: Dict[str, ExtractedField] = {}

        amount = self._extract_amount(text)
        if amount is None:
            raise MissingRequiredField('amount', "Could not extract valid amount", confidence=0.2)
        fields['amount'] = amount

        due_date = self._first_labelled(text, REGEX_DUE_DATE_PATTERNS, 'due_date', 'date', language)
        if due_date:
            fields['due_date'] = due_date

        bill_date = self._first_labelled(text, REGEX_BILL_DATE_PATTERNS, 'bill_date', 'date', language)
        if bill_date is None:
            bill_date = self._received_date(context)
        if bill_date:
            fields['bill_date'] = bill_date

        invoice_number = self._first_labelled(text, REGEX_INVOICE_PATTERNS, 'invoice_number', 'identifier', language)
        if invoice_number:
            fields['invoice_number'] = invoice_number

        account_number = self._first_labelled(text, REGEX_ACCOUNT_PATTERNS, 'account_number', 'identifier', language)
        if account_number:
            fields['account_number'] = account_number

        vendor = self._extract_vendor(context, text)
        if vendor:
            fields['vendor'] = vendor

        vendor_text = fields['vendor'].value if vendor else ''
        subject = context.subject if isinstance(context, EmailContext) else context.file_name
        category = self.engine.registry.detect_category(f"{vendor_text} {subject}\n{text}")

        return self.build_bill(context, text, source_kind, fields, language, category)

    def _passes_keyword_gate(self, context: Context, text: str) -> bool:
        """Any keyword in an email subject, or enough keywords in the text."""
        if isinstance(context, EmailContext):
            subject = (context.subject or '').lower()
            if any(keyword in subject for keyword in BILL_KEYWORDS):
                return True
        lowered = text.lower()
        hits = sum(1 for keyword in BILL_KEYWORDS if keyword in lowered)
        return hits >= settings.REGEX_MIN_KEYWORDS

    def _extract_amount(self, text: str) -> Optional[ExtractedField]:
        candidates = []
        for spec in REGEX_AMOUNT_PATTERNS:
            for match in spec.compiled.finditer(text):
                value = parse_amount(match.group('amount'))
                if value <= 0:
                    continue
                groups = match.groupdict()
                marker = groups.get('prefix') or groups.get('suffix')
                candidates.append(create_amount_candidate(
                    value=value,
                    pattern_name=spec.name,
                    match_span=match.span('amount'),
                    raw_text=match.group(0),
                    priority=spec.priority,
                    text=text,
                    currency=detect_currency(marker) if marker else None,
                ))

        best = select_best_amount(candidates)
        if best is None:
            return None

        method = ExtractionMethod.EXACT_PATTERN if best.has_strong_prefix else ExtractionMethod.LABEL_FALLBACK
        return ExtractedField(
            value=str(best.value),
            confidence=field_confidence(method),
            method=method,
            semantic_type='total_amount',
            pattern_name=best.pattern_name,
            # The matched text carries the currency marker next to the amount
            context=best.raw_text,
        )

    def _first_labelled(
        self,
        text: str,
        specs: List[PatternSpec],
        field_name: str,
        shape: str,
        language: str
    ) -> Optional[ExtractedField]:
        for spec in specs:
            for match in spec.compiled.finditer(text):
                value = match.group(1).strip().strip('.,:;')
                if shape == 'identifier' and not any(ch.isdigit() for ch in value):
                    continue
                if not is_valid_value(field_name, shape, value, language):
                    continue
                return ExtractedField(
                    value=value,
                    confidence=field_confidence(ExtractionMethod.EXACT_PATTERN),
                    method=ExtractionMethod.EXACT_PATTERN,
                    pattern_name=spec.name,
                    context=match.group(0),
                )
        return None

    def _received_date(self, context: Context) -> Optional[ExtractedField]:
        if not isinstance(context, EmailContext) or context.received_at is None:
            return None
        received = context.received_at
        value = received.date().isoformat() if isinstance(received, datetime) else str(received)
        return ExtractedField(
            value=value,
            confidence=field_confidence(ExtractionMethod.LABEL_FALLBACK),
            method=ExtractionMethod.LABEL_FALLBACK,
            pattern_name='received_at',
        )

    def _extract_vendor(self, context: Context, text: str) -> Optional[ExtractedField]:
        candidates = []

        for spec in REGEX_VENDOR_PATTERNS:
            match = spec.compiled.search(text)
            if match:
                value = match.group(1).strip().strip('.,;:')
                # Strip an address part ("ACME <billing@acme.com>")
                value = re.sub(r'\s*<[^>]*>\s*$', '', value)
                if is_valid_value('vendor', 'text', value):
                    candidates.append(create_vendor_candidate(value, spec.name, match.group(0), from_text_label=True))

        candidates.extend(_envelope_vendor_candidates(context))

        if isinstance(context, EmailContext):
            subject_words = (context.subject or '').split()[:3]
            if subject_words:
                candidates.append(create_vendor_candidate(
                    ' '.join(subject_words), 'subject', context.subject, from_subject=True
                ))

        return _vendor_field(select_best_vendor(candidates))


def _envelope_vendor_candidates(context: Context) -> List[VendorCandidate]:
    """Vendor candidates from the sender (emails) or the file name (documents)."""
    candidates = []
    if isinstance(context, EmailContext):
        if context.sender_name:
            candidates.append(create_vendor_candidate(
                context.sender_name, 'sender_name', context.sender_address, from_email_header=True
            ))
        domain_name = _domain_vendor(context.sender_domain)
        if domain_name:
            candidates.append(create_vendor_candidate(
                domain_name, 'sender_domain', context.sender_domain, from_sender_domain=True
            ))
    else:
        file_vendor = _file_name_vendor(context.file_name)
        if file_vendor:
            candidates.append(create_vendor_candidate(
                file_vendor, 'file_name', context.file_name, from_file_name=True
            ))
    return candidates


def _vendor_field(best: Optional[VendorCandidate]) -> Optional[ExtractedField]:
    if best is None:
        return None
    method = ExtractionMethod.EXACT_PATTERN if best.from_text_label else ExtractionMethod.LABEL_FALLBACK
    return ExtractedField(
        value=best.value,
        confidence=field_confidence(method),
        method=method,
        semantic_type='issuer_name',
        pattern_name=best.pattern_name,
        context=best.raw_text,
    )


def _domain_vendor(domain: Optional[str]) -> Optional[str]:
    """Second-level domain label, capitalized ("billing.acme.com" → "Acme")."""
    if not domain:
        return None
    labels = [label for label in domain.split('.') if label]
    if len(labels) < 2:
        return None
    name = labels[-2]
    return name[:1].upper() + name[1:]


def _file_name_vendor(file_name: Optional[str]) -> Optional[str]:
    """
    First words of a file name, title-cased, without bill words and numbers.

    Examples:
        >>> _file_name_vendor("city_power-invoice.pdf")
        'City Power'
        >>> _file_name_vendor("szamla_2024_03.pdf") is None
        True
    """
    if not file_name:
        return None
    stem = _FILE_EXTENSION.sub('', file_name)
    words = [
        word for word in re.sub(r'[_\-.]+', ' ', stem).split()
        if word.lower() not in FILE_NAME_BILL_WORDS and not word.isdigit()
    ][:3]
    if not words:
        return None
    return ' '.join(word[:1].upper() + word[1:].lower() for word in words)
